import os
import json
import pickle
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path

from songmatch.config import DatabaseConfig
from songmatch.errors import (
    DuplicateSongError,
    InvalidFingerprintError,
    SongNotFoundError,
    StorageError,
)
from songmatch.logging_config import setup_logger
from songmatch.models import Song

# setting up logger
logger = setup_logger(__name__)


class FingerprintStore(ABC):
    """
    Storage contract for the song catalog and its inverted hash index.

    Implementations own their concurrency: a lookup never observes a
    song whose fingerprint is half written or half deleted.
    """

    @abstractmethod
    def allocate_song_id(self):
        """Reserve the next song ID. IDs are never reused."""

    @abstractmethod
    def add_song(self, song, fingerprint):
        """
        Create a song row and its index records as one atomic unit.

        Raises:
            InvalidFingerprintError: the fingerprint has no hashes
            DuplicateSongError: a song with the same lookup key exists
        """

    @abstractmethod
    def put(self, song_id, fingerprint):
        """
        Persist one index record per (hash, offset) for an existing song.

        Raises:
            SongNotFoundError: song_id is not in the catalog
        """

    @abstractmethod
    def lookup(self, hashes):
        """
        Batched hash lookup.

        Args:
            hashes: Iterable of hash values

        Returns:
            Dict mapping each hash present in the index to a list of
            (song_id, stored_offset) tuples
        """

    @abstractmethod
    def total_songs(self):
        pass

    @abstractmethod
    def song_by_key(self, lookup_key):
        """Return the Song with this lookup key, or None."""

    @abstractmethod
    def song_by_id(self, song_id):
        """Return the Song with this ID, or None."""

    @abstractmethod
    def all_songs(self):
        pass

    @abstractmethod
    def all_external_refs(self):
        """External references of every song that has one."""

    @abstractmethod
    def set_external_ref(self, song_id, external_ref):
        """Back-fill a song's external reference."""

    @abstractmethod
    def delete_song(self, song_id):
        """
        Remove a song and all its index records.

        Returns:
            True if a song was removed
        """

    @abstractmethod
    def get_stats(self):
        pass

    def song_by_external_ref(self, external_ref):
        for song in self.all_songs():
            if song.external_ref == external_ref:
                return song
        return None

    def close(self):
        pass

    def print_stats(self):
        """Log database statistics"""
        stats = self.get_stats()

        logger.info(f"\n{'='*60}")
        logger.info(f"DATABASE STATISTICS")
        logger.info(f"{'='*60}")
        logger.info(f"Songs in database:     {stats['num_songs']}")
        logger.info(f"Unique hashes:         {stats['unique_hashes']:,}")
        logger.info(f"Total hash entries:    {stats['total_hash_entries']:,}")
        logger.info(f"Avg hashes per song:   {stats['avg_hashes_per_song']:.1f}")
        logger.info(f"Avg collision rate:    {stats['avg_collisions']:.2f} songs/hash")
        logger.info(f"{'='*60}\n")


def _metadata_path_for(db_path):
    """Song metadata lives next to an explicitly chosen hash table file."""
    if db_path is None:
        return DatabaseConfig.METADATA_FILE
    return Path(db_path).with_suffix(".json")


def _stats(num_songs, unique_hashes, total_hashes):
    return {
        "num_songs": num_songs,
        "unique_hashes": unique_hashes,
        "total_hash_entries": total_hashes,
        "avg_hashes_per_song": total_hashes / max(1, num_songs),
        "avg_collisions": total_hashes / max(1, unique_hashes),
    }


class FingerprintDatabase(FingerprintStore):
    """
    In-memory hash database for audio fingerprinting.

    Structure:
        hash_table: {hash: [(song_id, time_offset), ...]}
        songs: {song_id: Song}
        song_hashes: {song_id: [hash, ...]} (for cascading deletes)

    Every public method runs under one re-entrant lock, so readers see a
    song either fully present or fully absent.
    """

    def __init__(self):
        """Initialize empty database"""
        self.hash_table = defaultdict(list)
        self.songs = {}
        self.song_hashes = {}
        self.keys = {}
        self.next_song_id = 1
        self._lock = threading.RLock()

    def allocate_song_id(self):
        with self._lock:
            song_id = self.next_song_id
            self.next_song_id += 1
            return song_id

    def add_song(self, song, fingerprint):
        if not fingerprint:
            raise InvalidFingerprintError(
                f"Refusing to add '{song.title}' with an empty fingerprint"
            )

        with self._lock:
            existing = self.song_by_key(song.lookup_key)
            if existing is not None:
                raise DuplicateSongError(existing)
            if song.song_id in self.songs:
                raise StorageError(f"Song ID {song.song_id} already in use")

            # materialize first so nothing is mutated if the fingerprint is bad
            records = [(int(h), int(t)) for h, t in fingerprint.items()]

            self.songs[song.song_id] = song
            self.keys[song.lookup_key] = song.song_id
            self.song_hashes[song.song_id] = []
            self.next_song_id = max(self.next_song_id, song.song_id + 1)
            self._insert(song.song_id, records)

        logger.info(
            f"✓ Added song #{song.song_id}: {song.title} - {song.artist} "
            f"({len(fingerprint)} hashes)"
        )
        return song

    def put(self, song_id, fingerprint):
        with self._lock:
            if song_id not in self.songs:
                raise SongNotFoundError(song_id)
            records = [(int(h), int(t)) for h, t in fingerprint.items()]
            self._insert(song_id, records)

    def _insert(self, song_id, records):
        hashes = self.song_hashes[song_id]
        for hash_val, time_offset in records:
            self.hash_table[hash_val].append((song_id, time_offset))
            hashes.append(hash_val)

    def lookup(self, hashes):
        with self._lock:
            results = {}
            for hash_val in set(hashes):
                records = self.hash_table.get(hash_val)
                if records:
                    results[hash_val] = list(records)
            return results

    def total_songs(self):
        with self._lock:
            return len(self.songs)

    def song_by_key(self, lookup_key):
        with self._lock:
            song_id = self.keys.get(lookup_key)
            return self.songs.get(song_id) if song_id is not None else None

    def song_by_id(self, song_id):
        with self._lock:
            return self.songs.get(song_id)

    def all_songs(self):
        with self._lock:
            return [self.songs[song_id] for song_id in sorted(self.songs)]

    def all_external_refs(self):
        with self._lock:
            return [
                self.songs[song_id].external_ref
                for song_id in sorted(self.songs)
                if self.songs[song_id].external_ref
            ]

    def set_external_ref(self, song_id, external_ref):
        with self._lock:
            song = self.songs.get(song_id)
            if song is None:
                raise SongNotFoundError(song_id)
            self.songs[song_id] = song.with_external_ref(external_ref)
            return self.songs[song_id]

    def delete_song(self, song_id):
        with self._lock:
            song = self.songs.pop(song_id, None)
            if song is None:
                return False
            del self.keys[song.lookup_key]

            for hash_val in set(self.song_hashes.pop(song_id, ())):
                remaining = [r for r in self.hash_table[hash_val] if r[0] != song_id]
                if remaining:
                    self.hash_table[hash_val] = remaining
                else:
                    del self.hash_table[hash_val]

        logger.info(f"✓ Deleted song #{song_id}: {song.title}")
        return True

    def get_stats(self):
        """Get database statistics"""
        with self._lock:
            total_hashes = sum(len(v) for v in self.hash_table.values())
            return _stats(len(self.songs), len(self.hash_table), total_hashes)

    def save(self, db_path=None, metadata_path=None):
        """
        Save database to disk.

        Args:
            db_path: Path for database file (pickle)
            metadata_path: Path for metadata file (json)
        """
        metadata_path = metadata_path or _metadata_path_for(db_path)
        db_path = db_path or DatabaseConfig.DB_FILE
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        Path(metadata_path).parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            # Save hash table (binary pickle)
            with open(db_path, "wb") as f:
                data = {
                    "hash_table": dict(self.hash_table),
                    "song_hashes": self.song_hashes,
                    "next_song_id": self.next_song_id,
                }
                pickle.dump(data, f)

            # Save metadata (JSON for human readability)
            with open(metadata_path, "w") as f:
                json.dump(
                    {song_id: song.to_dict() for song_id, song in self.songs.items()},
                    f,
                    indent=2,
                )

        db_size_mb = os.path.getsize(db_path) / (1024 * 1024)
        logger.info(f"✓ Database saved:")
        logger.info(f"  Hash table: {db_path} ({db_size_mb:.2f} MB)")
        logger.info(f"  Metadata: {metadata_path}")

    @classmethod
    def load(cls, db_path=None, metadata_path=None):
        """
        Load database from disk.

        Args:
            db_path: Path to database file
            metadata_path: Path to metadata file

        Returns:
            FingerprintDatabase instance
        """
        metadata_path = metadata_path or _metadata_path_for(db_path)
        db_path = db_path or DatabaseConfig.DB_FILE

        db = cls()

        if os.path.exists(db_path):
            with open(db_path, "rb") as f:
                data = pickle.load(f)
                db.hash_table = defaultdict(list, data["hash_table"])
                db.song_hashes = data["song_hashes"]
                db.next_song_id = data["next_song_id"]
            logger.info(f"✓ Loaded hash table from {db_path}")
        else:
            logger.warning(f"⚠ No database file found at {db_path}")

        if os.path.exists(metadata_path):
            with open(metadata_path, "r") as f:
                # JSON keys are strings, convert back to int
                metadata = json.load(f)
                db.songs = {int(k): Song.from_dict(v) for k, v in metadata.items()}
                db.keys = {song.lookup_key: song.song_id for song in db.songs.values()}
            logger.info(f"✓ Loaded metadata from {metadata_path}")
        else:
            logger.warning(f"⚠ No metadata file found at {metadata_path}")

        return db
