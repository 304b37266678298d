import pytest

from songmatch.errors import InvalidFingerprintError
from songmatch.models import MatchResult, Song
from songmatch.protocol import (
    MAX_UINT32,
    parse_fingerprint,
    parse_fingerprint_payload,
    serialize_fingerprint,
    serialize_match,
    serialize_matches,
)


def test_parse_accepts_string_and_integer_keys():
    assert parse_fingerprint({"12": 3, 7: "4", "8": 2.0}) == {12: 3, 7: 4, 8: 2}
    assert parse_fingerprint({str(MAX_UINT32): 0}) == {MAX_UINT32: 0}
    assert parse_fingerprint({}) == {}


@pytest.mark.parametrize(
    "data",
    [
        [1, 2],
        "1:2",
        None,
        {"-1": 0},
        {str(MAX_UINT32 + 1): 0},
        {"abc": 0},
        {"1": -5},
        {"1": 1.5},
        {"1": True},
        {"1": None},
        {"١٢": 0},
    ],
)
def test_parse_rejects_malformed_fingerprints(data):
    with pytest.raises(InvalidFingerprintError) as exc:
        parse_fingerprint(data)
    assert exc.value.user_facing


def test_payload_requires_fingerprint_key():
    assert parse_fingerprint_payload({"fingerprint": {"1": 2}}) == {1: 2}
    for payload in (None, {}, {"hashes": {}}, [1]):
        with pytest.raises(InvalidFingerprintError):
            parse_fingerprint_payload(payload)


def test_serialize_fingerprint_round_trips_through_parse():
    fingerprint = {123456: 7, 42: 0}
    assert parse_fingerprint(serialize_fingerprint(fingerprint)) == fingerprint


def test_serialize_match():
    song = Song(3, "Tune", "Band", "tune---band", external_ref="yt-9")
    body = serialize_match(MatchResult(3, 25, 43, 30, song))
    assert body == {
        "songID": 3,
        "title": "Tune",
        "artist": "Band",
        "externalRef": "yt-9",
        "score": 25,
        "confidence": "HIGH",
        "offset": 43,
        "offsetSeconds": 2.0,
        "matchedHashes": 30,
    }


def test_serialize_matches_is_capped():
    song = Song(1, "T", "A", "t---a")
    matches = [MatchResult(1, 10, 0, 10, song)] * 15
    assert len(serialize_matches(matches)) == 10
    assert len(serialize_matches(matches, limit=3)) == 3
