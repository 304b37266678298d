import os
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
from scipy.io import wavfile

from songmatch.audio_utils import load_audio, prepare_samples
from songmatch.config import MatchConfig
from songmatch.errors import FallbackServiceError
from songmatch.fingerprint import fingerprint_samples
from songmatch.logging_config import setup_logger
from songmatch.matcher import match_query
from songmatch.models import MatchResult, Song

logger = setup_logger(__name__)

SOURCE_LOCAL = "local"
SOURCE_FALLBACK = "fallback"
SOURCE_NONE = "none"


@dataclass
class Recognition:
    """Outcome of one identification request"""

    matches: List[MatchResult] = field(default_factory=list)
    inconclusive: bool = False
    source: str = SOURCE_NONE
    external_track_id: Optional[str] = None
    catalog_song: Optional[Song] = None
    query_hashes: int = 0
    query_time: float = 0.0

    @property
    def best(self):
        return self.matches[0] if self.matches else None


class Recognizer:
    """
    Identification pipeline: fingerprint → local match → optional fallback.

    The store and the fallback client are injected; nothing here holds
    per-query state between calls.
    """

    def __init__(self, store, fallback=None, timeout=None, min_confidence=None,
                 max_results=None):
        self.store = store
        self.fallback = fallback
        self.timeout = timeout
        self.min_confidence = min_confidence
        self.max_results = MatchConfig.MAX_RESULTS if max_results is None else max_results

    def identify_fingerprint(self, fingerprint):
        """Match an already-computed fingerprint. Never calls the fallback."""
        outcome = match_query(
            fingerprint,
            self.store,
            min_confidence=self.min_confidence,
            max_results=self.max_results,
            timeout=self.timeout,
        )
        return Recognition(
            matches=outcome.matches,
            inconclusive=outcome.inconclusive,
            source=SOURCE_LOCAL if outcome.matches else SOURCE_NONE,
            query_hashes=len(fingerprint),
            query_time=outcome.query_time,
        )

    def identify_samples(self, samples, sample_rate, channels=1):
        fingerprint, _ = fingerprint_samples(samples, sample_rate, channels)
        recognition = self.identify_fingerprint(fingerprint)

        if recognition.matches or self.fallback is None:
            return recognition

        # the fallback service wants a file
        audio = prepare_samples(samples, channels)
        fd, wav_path = tempfile.mkstemp(suffix=".wav")
        os.close(fd)
        try:
            pcm = (np.clip(audio, -1.0, 1.0) * 32767).astype(np.int16)
            wavfile.write(wav_path, int(sample_rate), pcm)
            return self._with_fallback(recognition, wav_path)
        finally:
            os.remove(wav_path)

    def identify_file(self, audio_path):
        """
        Complete identification pipeline:
        Load audio → Fingerprint → Match → Fallback if nothing matched
        """
        logger.info(f"Identifying: {audio_path}")
        audio, sr = load_audio(audio_path)
        fingerprint, _ = fingerprint_samples(audio, sr)
        recognition = self.identify_fingerprint(fingerprint)

        if recognition.matches or self.fallback is None:
            return recognition
        return self._with_fallback(recognition, audio_path)

    def _with_fallback(self, recognition, audio_path):
        """Ask the external service; its failures degrade to no match."""
        try:
            track_id = self.fallback.identify_track_id(audio_path)
        except FallbackServiceError as e:
            logger.warning(f"⚠ Fallback recognition failed: {e}")
            return recognition

        if track_id is None:
            return recognition

        recognition.source = SOURCE_FALLBACK
        recognition.external_track_id = track_id
        recognition.catalog_song = self.store.song_by_external_ref(track_id)

        logger.info(
            f"✓ Fallback identified external track {track_id}"
            + (
                f" (catalog song #{recognition.catalog_song.song_id})"
                if recognition.catalog_song
                else ""
            )
        )
        return recognition
