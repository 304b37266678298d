import time
from pathlib import Path

from tqdm import tqdm

from songmatch.audio_utils import load_audio
from songmatch.errors import (
    DuplicateSongError,
    InvalidInputError,
    SongMatchError,
    SongNotFoundError,
    UnusableAudioError,
)
from songmatch.fingerprint import fingerprint_samples
from songmatch.logging_config import setup_logger
from songmatch.models import Song, generate_song_key

# setting up logger
logger = setup_logger(__name__)

AUDIO_PATTERNS = ["*.wav", "*.mp3", "*.flac", "*.m4a", "*.ogg"]


class CatalogRegistrar:
    """
    Ingests songs into a fingerprint store.

    A song is either stored together with its whole fingerprint or not
    stored at all; re-registering the same title/artist is rejected.
    """

    def __init__(self, store):
        self.store = store

    def register(
        self, samples, sample_rate, title, artist, channels=1, external_ref=None
    ):
        """
        Fingerprint PCM samples and add them to the catalog as a new song.

        Args:
            samples: PCM samples
            sample_rate: Sample rate in Hz
            title: Song title
            artist: Song artist
            channels: Channel count of the samples
            external_ref: Optional external identifier (e.g. a video ID)

        Returns:
            The created Song

        Raises:
            InvalidInputError: missing title or artist
            DuplicateSongError: the song is already in the catalog
            UnusableAudioError: the audio yields no fingerprint
        """
        if not title or not str(title).strip():
            raise InvalidInputError("Song title is required")
        if not artist or not str(artist).strip():
            raise InvalidInputError("Song artist is required")
        title, artist = str(title).strip(), str(artist).strip()

        lookup_key = generate_song_key(title, artist)
        existing = self.store.song_by_key(lookup_key)
        if existing is not None:
            raise DuplicateSongError(existing)

        fingerprint, metadata = fingerprint_samples(samples, sample_rate, channels)
        if not fingerprint:
            raise UnusableAudioError(
                f"No fingerprint could be extracted for '{title}' "
                f"({metadata['duration']:.2f}s of audio)"
            )

        song = Song(
            song_id=self.store.allocate_song_id(),
            title=title,
            artist=artist,
            lookup_key=lookup_key,
            external_ref=external_ref,
        )
        return self.store.add_song(song, fingerprint)

    def register_file(self, audio_path, title=None, artist=None, external_ref=None):
        """
        Decode an audio file and register it.

        The title defaults to the file name without extension.
        """
        audio, sr = load_audio(audio_path)
        return self.register(
            audio,
            sr,
            title=title or Path(audio_path).stem,
            artist=artist or "Unknown",
            external_ref=external_ref,
        )

    def index_directory(self, directory_path, pattern=None):
        """
        Index all audio files in a directory.

        Duplicates and unusable files are logged and skipped.

        Args:
            directory_path: Path to directory containing audio files
            pattern: File pattern to match (defaults to common formats)

        Returns:
            List of Songs that were registered
        """
        directory = Path(directory_path)
        audio_files = []
        for ext in [pattern] if pattern else AUDIO_PATTERNS:
            audio_files.extend(sorted(directory.glob(ext)))

        if not audio_files:
            logger.warning(f"⚠ No audio files found in {directory_path}")
            return []

        logger.info(f"Found {len(audio_files)} audio files in {directory_path}")

        registered = []
        start_time = time.time()

        for audio_file in tqdm(audio_files, desc="Indexing"):
            try:
                registered.append(self.register_file(audio_file))
            except SongMatchError as e:
                if not e.user_facing:
                    raise
                logger.warning(f"Skipped {audio_file.name}: {e}")

        elapsed = time.time() - start_time
        logger.info(
            f"✓ INDEXING COMPLETE: {len(registered)}/{len(audio_files)} files "
            f"in {elapsed:.1f} seconds"
        )

        return registered

    def delete(self, song_id):
        if not self.store.delete_song(song_id):
            raise SongNotFoundError(song_id)
