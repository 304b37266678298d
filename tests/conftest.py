import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from songmatch.config import AudioConfig
from songmatch.database import FingerprintDatabase
from songmatch.registrar import CatalogRegistrar
from songmatch.sqlite_store import SQLiteFingerprintStore

SR = AudioConfig.SAMPLE_RATE
HOP = AudioConfig.FFT_WINDOW_SIZE - int(AudioConfig.FFT_WINDOW_SIZE * AudioConfig.OVERLAP_RATIO)


def make_audio(seconds, seed):
    """Deterministic broadband test signal."""
    rng = np.random.default_rng(seed)
    return (rng.standard_normal(int(seconds * SR)) * 0.3).astype(np.float32)


def excerpt(audio, start_frame, seconds):
    """Hop-aligned excerpt so its frames line up with the source's."""
    start = start_frame * HOP
    return audio[start : start + int(seconds * SR)]


def make_chords(seconds, seed, decay=None):
    """
    Deterministic tonal test signal: back-to-back three-note chords.

    With a decay time (seconds) every chord is plucked and dies away;
    without one each chord is held at a steady level until the next.
    """
    rng = np.random.default_rng(seed)
    n = int(seconds * SR)
    audio = np.zeros(n)
    start = 0
    while start < n:
        length = min(int(rng.uniform(0.3, 0.6) * SR), n - start)
        t = np.arange(length) / SR
        if decay is None:
            envelope = np.minimum(1.0, np.minimum(t, t[-1] - t) / 0.01)
        else:
            envelope = np.exp(-t / decay) * np.minimum(1.0, t / 0.005)
        for freq in rng.uniform(300.0, 3000.0, size=3):
            level = rng.uniform(0.6, 1.0)
            phase = rng.uniform(0.0, 2 * np.pi)
            tone = np.sin(2 * np.pi * freq * t + phase)
            audio[start : start + length] += level * envelope * tone
        start += length
    return (audio * 0.1).astype(np.float32)


def clip_at(audio, start_sample, seconds):
    """Excerpt starting at any sample, not only on a hop boundary."""
    return audio[start_sample : start_sample + int(seconds * SR)]


def add_noise(audio, snr_db, seed):
    """Mix in white noise at the given signal-to-noise ratio."""
    rng = np.random.default_rng(seed)
    rms = np.sqrt(np.mean(audio.astype(np.float64) ** 2))
    noise = rng.standard_normal(len(audio)) * rms / 10 ** (snr_db / 20)
    return (audio + noise).astype(np.float32)


@pytest.fixture(scope="session")
def songs():
    """Three synthetic 20-second songs keyed by title."""
    return {
        "Alpha": make_audio(20, seed=1),
        "Bravo": make_audio(20, seed=2),
        "Charlie": make_audio(20, seed=3),
    }


@pytest.fixture(scope="session")
def tonal_songs():
    """Synthetic 20-second chord progressions, plucked and held."""
    return {
        "Plucked One": make_chords(20, seed=4, decay=0.15),
        "Plucked Two": make_chords(20, seed=5, decay=0.15),
        "Held One": make_chords(20, seed=6),
        "Held Two": make_chords(20, seed=7),
    }


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        yield FingerprintDatabase()
    else:
        s = SQLiteFingerprintStore(tmp_path / "songmatch.sqlite3")
        yield s
        s.close()


@pytest.fixture
def catalog(store, songs):
    """Store preloaded with the synthetic songs."""
    registrar = CatalogRegistrar(store)
    registered = {
        title: registrar.register(audio, SR, title=title, artist="Test Artist")
        for title, audio in songs.items()
    }
    return store, registered
