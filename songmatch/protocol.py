"""
Wire shapes for queries and results.

Query request:
    {"fingerprint": {"<hash>": <offset>, ...}}

Query response item:
    {"songID", "title", "artist", "externalRef", "score", "confidence",
     "offset", "offsetSeconds", "matchedHashes"}
"""

from songmatch.config import MatchConfig
from songmatch.errors import InvalidFingerprintError
from songmatch.matcher import confidence_label

MAX_UINT32 = 2**32 - 1


def _as_uint32(value, what):
    if isinstance(value, bool):
        raise InvalidFingerprintError(f"{what} must be an integer, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            raise InvalidFingerprintError(f"{what} must be an unsigned integer, got {value!r}")
        value = int(value)
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidFingerprintError(f"{what} must be an integer, got {value!r}")
        value = int(value)
    elif not isinstance(value, int):
        raise InvalidFingerprintError(f"{what} must be an integer, got {value!r}")

    if value < 0 or value > MAX_UINT32:
        raise InvalidFingerprintError(f"{what} out of range: {value}")
    return value


def parse_fingerprint(data):
    """
    Validate a hash -> offset mapping decoded from JSON.

    JSON object keys arrive as strings; both string and integer keys are
    accepted as long as they are unsigned 32-bit integers.
    """
    if not isinstance(data, dict):
        raise InvalidFingerprintError("Fingerprint must be an object of hash -> offset")
    return {
        _as_uint32(hash_val, "Hash"): _as_uint32(offset, "Offset")
        for hash_val, offset in data.items()
    }


def parse_fingerprint_payload(payload):
    """Extract and validate the fingerprint from a query request body."""
    if not isinstance(payload, dict) or "fingerprint" not in payload:
        raise InvalidFingerprintError("Request body must contain a 'fingerprint' object")
    return parse_fingerprint(payload["fingerprint"])


def serialize_match(match):
    song = match.song
    return {
        "songID": match.song_id,
        "title": song.title if song else None,
        "artist": song.artist if song else None,
        "externalRef": song.external_ref if song else None,
        "score": match.score,
        "confidence": confidence_label(match.score),
        "offset": match.offset,
        "offsetSeconds": round(match.offset_seconds, 2),
        "matchedHashes": match.num_matches,
    }


def serialize_matches(matches, limit=None):
    limit = MatchConfig.MAX_RESULTS if limit is None else limit
    return [serialize_match(m) for m in matches[:limit]]


def serialize_fingerprint(fingerprint):
    """JSON-friendly form of a fingerprint (string keys)."""
    return {str(hash_val): offset for hash_val, offset in fingerprint.items()}
