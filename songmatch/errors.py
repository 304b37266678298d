"""
Error types raised by the fingerprinting core and its orchestration layer.

Every error carries an explicit kind decided where it is raised:
USER_FACING messages are safe to show to a client as-is, INTERNAL ones
are logged and replaced by a generic message.
"""

from enum import Enum


class ErrorKind(Enum):
    USER_FACING = "user_facing"
    INTERNAL = "internal"


class SongMatchError(Exception):
    """Base class for all songmatch errors"""

    kind = ErrorKind.INTERNAL

    def __init__(self, message, kind=None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def user_facing(self):
        return self.kind is ErrorKind.USER_FACING


class InvalidInputError(SongMatchError):
    """Malformed request input (missing fields, wrong types)"""

    kind = ErrorKind.USER_FACING


class InvalidFingerprintError(InvalidInputError):
    """Fingerprint payload is not a mapping of unsigned hash -> offset"""


class UnsupportedAudioError(InvalidInputError):
    """PCM samples have an unsupported shape, dtype or channel layout"""


class UnusableAudioError(InvalidInputError):
    """Audio produced no fingerprint (silence or too short)"""


class DuplicateSongError(SongMatchError):
    """A song with the same lookup key is already in the catalog"""

    kind = ErrorKind.USER_FACING

    def __init__(self, song):
        message = f"'{song.title}' by '{song.artist}' already exists in the catalog"
        if song.external_ref:
            message += f" ({song.external_ref})"
        super().__init__(message)
        self.song = song


class SongNotFoundError(SongMatchError):
    kind = ErrorKind.USER_FACING

    def __init__(self, song_id):
        super().__init__(f"Song #{song_id} not found")
        self.song_id = song_id


class StorageError(SongMatchError):
    """Backing store unavailable or a write failed"""

    kind = ErrorKind.INTERNAL


class FallbackServiceError(SongMatchError):
    """External recognition service unreachable or returned garbage"""

    kind = ErrorKind.INTERNAL
