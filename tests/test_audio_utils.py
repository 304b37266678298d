import types

import numpy as np
import pytest

from songmatch.audio_utils import (
    extract_peaks,
    find_peak_mask,
    generate_spectrogram,
    prepare_samples,
)
from songmatch.config import AudioConfig
from songmatch.errors import UnsupportedAudioError
from tests.conftest import SR, make_audio


def test_silence_yields_no_peaks():
    assert list(extract_peaks(np.zeros(SR * 3, dtype=np.float32), SR)) == []


def test_too_short_for_one_window_yields_no_peaks():
    audio = make_audio(0.05, seed=7)
    assert len(audio) < AudioConfig.FFT_WINDOW_SIZE
    assert list(extract_peaks(audio, SR)) == []


def test_empty_input_yields_no_peaks():
    assert list(extract_peaks(np.array([], dtype=np.float32), SR)) == []


def test_peaks_are_lazy_and_ordered():
    peaks = extract_peaks(make_audio(3, seed=11), SR)
    assert isinstance(peaks, types.GeneratorType)

    peaks = list(peaks)
    assert peaks
    keys = [(p.time_offset, p.frequency_bin) for p in peaks]
    assert keys == sorted(keys)
    assert all(p.frequency_bin <= AudioConfig.MAX_FREQ_BIN for p in peaks)
    assert all(p.magnitude > 0 for p in peaks)


def test_peaks_are_deterministic():
    audio = make_audio(3, seed=12)
    assert list(extract_peaks(audio, SR)) == list(extract_peaks(audio.copy(), SR))


def test_peak_count_grows_with_duration():
    short = list(extract_peaks(make_audio(2, seed=13), SR))
    long = list(extract_peaks(make_audio(6, seed=13), SR))
    assert len(long) > len(short)


def test_frame_density_is_capped():
    _, _, spec = generate_spectrogram(make_audio(3, seed=14), SR)
    mask = find_peak_mask(spec)
    assert mask.sum(axis=0).max() <= AudioConfig.MAX_PEAKS_PER_FRAME


def test_stereo_is_downmixed_to_mono():
    mono = make_audio(3, seed=15)
    stereo = np.stack([mono, mono], axis=1)
    interleaved = stereo.reshape(-1)

    expected = list(extract_peaks(mono, SR))
    assert list(extract_peaks(stereo, SR, channels=2)) == expected
    assert list(extract_peaks(interleaved, SR, channels=2)) == expected


def test_int16_samples_are_scaled():
    audio = prepare_samples(np.array([0, 16384, -32768], dtype=np.int16))
    assert audio.dtype == np.float32
    np.testing.assert_allclose(audio, [0.0, 0.5, -1.0])


def test_uint8_samples_are_centered():
    audio = prepare_samples(np.array([128, 255, 0], dtype=np.uint8))
    np.testing.assert_allclose(audio, [0.0, 127 / 128, -1.0])


@pytest.mark.parametrize(
    "samples, channels",
    [
        (np.zeros(5, dtype=np.float32), 2),
        (np.zeros((4, 3), dtype=np.float32), 2),
        (np.zeros((2, 2, 2), dtype=np.float32), 1),
        (np.array(["a", "b"]), 1),
        (np.zeros(4, dtype=np.int64), 1),
        (np.zeros(4, dtype=np.float32), 0),
        (np.array([0.0, np.nan], dtype=np.float32), 1),
    ],
)
def test_malformed_samples_are_rejected(samples, channels):
    with pytest.raises(UnsupportedAudioError):
        prepare_samples(samples, channels)


def test_invalid_sample_rate_is_rejected():
    with pytest.raises(UnsupportedAudioError):
        extract_peaks(make_audio(1, seed=16), 0)


def test_other_sample_rates_are_resampled():
    rng = np.random.default_rng(17)
    audio = (rng.standard_normal(44100 * 2) * 0.3).astype(np.float32)
    assert list(extract_peaks(audio, 44100))


def peak_positions(mask):
    return sorted(zip(*(idx.tolist() for idx in np.nonzero(mask))))


def test_quiet_maxima_next_to_a_loud_tone_are_dropped():
    spec = np.full((1025, 30), 1e-3)
    spec[300, 15] = 1.0
    spec[700, 15] = 0.5
    spec[600, 15] = 0.1  # under a quarter of the tone in the same frames
    spec[600, 25] = 0.1  # same level, but the tone is out of reach

    assert peak_positions(find_peak_mask(spec)) == [(300, 15), (600, 25), (700, 15)]


def test_held_tone_peaks_at_its_first_frame():
    spec = np.full((1025, 40), 1e-3)
    spec[200, 10:30] = np.linspace(0.97, 1.0, 20)
    spec[200, 22] = 1.04

    assert peak_positions(find_peak_mask(spec)) == [(200, 10)]


def test_steady_sine_gives_a_single_peak():
    t = np.arange(2 * SR) / SR
    audio = (0.5 * np.sin(2 * np.pi * 1000.0 * t)).astype(np.float32)

    peaks = [(p.time_offset, p.frequency_bin) for p in extract_peaks(audio, SR)]
    assert peaks == [(0, round(1000.0 * AudioConfig.FFT_WINDOW_SIZE / SR))]
