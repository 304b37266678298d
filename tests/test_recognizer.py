import os

import numpy as np
import pytest
from scipy.io import wavfile

from songmatch.config import MatchConfig
from songmatch.errors import FallbackServiceError
from songmatch.fingerprint import fingerprint_samples
from songmatch.recognizer import SOURCE_FALLBACK, SOURCE_LOCAL, SOURCE_NONE, Recognizer
from tests.conftest import SR, excerpt, make_audio


class FakeFallback:
    def __init__(self, track_id=None, error=None):
        self.track_id = track_id
        self.error = error
        self.calls = []

    def identify_track_id(self, audio_path):
        # the sample file must exist while the service is called
        assert os.path.exists(audio_path)
        self.calls.append(str(audio_path))
        if self.error:
            raise self.error
        return self.track_id


def test_local_match_skips_fallback(catalog, songs):
    store, registered = catalog
    fallback = FakeFallback(track_id="ignored")

    recognition = Recognizer(store, fallback).identify_samples(excerpt(songs["Alpha"], 30, 5), SR)

    assert recognition.source == SOURCE_LOCAL
    assert recognition.best.song_id == registered["Alpha"].song_id
    assert recognition.query_hashes > 0
    assert fallback.calls == []


def test_identify_fingerprint_never_uses_fallback(catalog):
    store, _ = catalog
    fallback = FakeFallback(track_id="abc")
    query, _ = fingerprint_samples(make_audio(4, seed=41), SR)

    recognition = Recognizer(store, fallback).identify_fingerprint(query)
    assert recognition.source == SOURCE_NONE
    assert recognition.matches == []
    assert fallback.calls == []


def test_fallback_used_when_nothing_matches(catalog):
    store, registered = catalog
    store.set_external_ref(registered["Bravo"].song_id, "track-b")
    fallback = FakeFallback(track_id="track-b")

    recognition = Recognizer(store, fallback).identify_samples(make_audio(4, seed=42), SR)

    assert recognition.source == SOURCE_FALLBACK
    assert recognition.external_track_id == "track-b"
    assert recognition.catalog_song.song_id == registered["Bravo"].song_id
    assert recognition.matches == []
    assert len(fallback.calls) == 1
    # temporary sample file is cleaned up
    assert not os.path.exists(fallback.calls[0])


def test_fallback_track_outside_catalog(catalog):
    store, _ = catalog
    recognition = Recognizer(store, FakeFallback(track_id="elsewhere")).identify_samples(
        make_audio(4, seed=43), SR
    )
    assert recognition.source == SOURCE_FALLBACK
    assert recognition.catalog_song is None


@pytest.mark.parametrize("fallback", [FakeFallback(), FakeFallback(error=FallbackServiceError("boom"))])
def test_fallback_failure_degrades_to_no_match(catalog, fallback):
    store, _ = catalog
    recognition = Recognizer(store, fallback).identify_samples(make_audio(4, seed=44), SR)
    assert recognition.source == SOURCE_NONE
    assert recognition.external_track_id is None
    assert recognition.matches == []


def test_identify_file(catalog, songs, tmp_path):
    store, registered = catalog
    path = tmp_path / "clip.wav"
    clip = excerpt(songs["Charlie"], 50, 5)
    wavfile.write(path, SR, clip.astype(np.float32))

    recognition = Recognizer(store).identify_file(path)
    assert recognition.source == SOURCE_LOCAL
    assert recognition.best.song_id == registered["Charlie"].song_id
    assert recognition.best.offset == 50


def test_identify_file_passes_original_file_to_fallback(catalog, tmp_path):
    store, _ = catalog
    path = tmp_path / "unknown.wav"
    wavfile.write(path, SR, make_audio(4, seed=45))
    fallback = FakeFallback(track_id="t")

    Recognizer(store, fallback).identify_file(path)
    assert fallback.calls == [str(path)]


def test_max_results_zero_is_respected(catalog, songs):
    store, _ = catalog
    clip, _ = fingerprint_samples(excerpt(songs["Alpha"], 30, 5), SR)

    assert Recognizer(store).max_results == MatchConfig.MAX_RESULTS
    assert Recognizer(store).identify_fingerprint(clip).matches

    recognition = Recognizer(store, max_results=0).identify_fingerprint(clip)
    assert recognition.matches == []
    assert recognition.source == SOURCE_NONE
