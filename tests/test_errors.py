import pytest

from songmatch.errors import (
    DuplicateSongError,
    ErrorKind,
    FallbackServiceError,
    InvalidFingerprintError,
    InvalidInputError,
    SongNotFoundError,
    StorageError,
    UnsupportedAudioError,
    UnusableAudioError,
)
from songmatch.models import Song


@pytest.mark.parametrize(
    "error, kind",
    [
        (InvalidInputError("bad"), ErrorKind.USER_FACING),
        (InvalidFingerprintError("bad"), ErrorKind.USER_FACING),
        (UnsupportedAudioError("bad"), ErrorKind.USER_FACING),
        (UnusableAudioError("bad"), ErrorKind.USER_FACING),
        (SongNotFoundError(4), ErrorKind.USER_FACING),
        (StorageError("a long and detailed message about a failed write"), ErrorKind.INTERNAL),
        (FallbackServiceError("x"), ErrorKind.INTERNAL),
    ],
)
def test_kind_is_fixed_by_error_type(error, kind):
    # message length has no say in the classification
    assert error.kind is kind
    assert error.user_facing is (kind is ErrorKind.USER_FACING)


def test_duplicate_names_the_existing_song():
    song = Song(2, "Tune", "Band", "tune---band", external_ref="yt-7")
    error = DuplicateSongError(song)
    assert error.user_facing
    assert error.song is song
    assert "Tune" in str(error) and "yt-7" in str(error)


def test_not_found_carries_the_id():
    assert SongNotFoundError(9).song_id == 9
    assert str(SongNotFoundError(9)) == "Song #9 not found"
