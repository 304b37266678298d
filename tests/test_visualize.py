import matplotlib.pyplot as plt

from songmatch.audio_utils import compute_spectrogram, iter_spectrogram_peaks
from songmatch.visualize import visualize_constellation_map, visualize_match
from tests.conftest import SR, make_audio


def test_constellation_map_is_saved(tmp_path):
    _, freqs, times, spec = compute_spectrogram(make_audio(2, seed=61), SR)
    peaks = list(iter_spectrogram_peaks(spec))
    path = tmp_path / "constellation.png"

    fig = visualize_constellation_map(spec, freqs, times, peaks, save_path=path)
    assert path.stat().st_size > 0
    assert not plt.fignum_exists(fig.number)


def test_match_plot_is_saved(tmp_path):
    pairs = [(t, t + 12) for t in range(30)] + [(3, 90), (8, 4)]
    path = tmp_path / "match.png"

    visualize_match(pairs, 12, 30, title="Alpha", save_path=path)
    assert path.stat().st_size > 0


def test_match_plot_without_pairs(tmp_path):
    path = tmp_path / "empty.png"
    visualize_match([], None, 0, save_path=path)
    assert path.exists()
