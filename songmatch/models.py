import re
import unicodedata
from dataclasses import dataclass, field, asdict, replace
from typing import Dict, List, NamedTuple, Optional

from songmatch.config import AudioConfig

# hash -> anchor time offset (frame index)
Fingerprint = Dict[int, int]


class Peak(NamedTuple):
    time_offset: int
    frequency_bin: int
    magnitude: float


@dataclass(frozen=True)
class Song:
    song_id: int
    title: str
    artist: str
    lookup_key: str
    external_ref: Optional[str] = None

    def with_external_ref(self, external_ref):
        return replace(self, external_ref=external_ref)

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        return cls(
            song_id=int(data["song_id"]),
            title=data["title"],
            artist=data["artist"],
            lookup_key=data["lookup_key"],
            external_ref=data.get("external_ref"),
        )


@dataclass
class MatchResult:
    """One ranked candidate for a query"""

    song_id: int
    score: int
    offset: int
    num_matches: int
    song: Optional[Song] = None

    @property
    def offset_seconds(self):
        return frames_to_seconds(self.offset)


@dataclass
class MatchOutcome:
    matches: List[MatchResult] = field(default_factory=list)
    timed_out: bool = False
    num_candidates: int = 0
    query_time: float = 0.0

    @property
    def inconclusive(self):
        return self.timed_out

    @property
    def best(self):
        return self.matches[0] if self.matches else None


_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text):
    text = unicodedata.normalize("NFKD", text or "")
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = _PUNCTUATION.sub(" ", text.casefold())
    return _WHITESPACE.sub(" ", text).strip()


def generate_song_key(title, artist):
    """Deterministic dedup key from normalized title and artist."""
    return f"{normalize_text(title)}---{normalize_text(artist)}"


def frames_to_seconds(frames):
    hop = AudioConfig.FFT_WINDOW_SIZE - int(
        AudioConfig.FFT_WINDOW_SIZE * AudioConfig.OVERLAP_RATIO
    )
    return frames * hop / AudioConfig.SAMPLE_RATE
