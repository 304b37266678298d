"""
SQLite-backed fingerprint store.

Schema:
    songs(song_id PK, title, artist, lookup_key UNIQUE, external_ref)
    fingerprints(hash, song_id FK -> songs ON DELETE CASCADE, time_offset)
    sequence(name PK, value)   -- song IDs are never reused

`fingerprints.hash` is indexed since it is the query-time access path.
Song creation and its index records share one transaction, and so do
the two deletes of a song, so readers never see half of either.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

from songmatch.config import DatabaseConfig
from songmatch.database import FingerprintStore, _stats
from songmatch.errors import (
    DuplicateSongError,
    InvalidFingerprintError,
    SongNotFoundError,
    StorageError,
)
from songmatch.logging_config import setup_logger
from songmatch.models import Song

logger = setup_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS songs (
    song_id INTEGER PRIMARY KEY,
    title TEXT NOT NULL,
    artist TEXT NOT NULL,
    lookup_key TEXT NOT NULL UNIQUE,
    external_ref TEXT
);
CREATE TABLE IF NOT EXISTS fingerprints (
    hash INTEGER NOT NULL,
    song_id INTEGER NOT NULL REFERENCES songs(song_id) ON DELETE CASCADE,
    time_offset INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_fingerprints_hash ON fingerprints(hash);
CREATE INDEX IF NOT EXISTS idx_fingerprints_song ON fingerprints(song_id);
CREATE TABLE IF NOT EXISTS sequence (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
INSERT OR IGNORE INTO sequence (name, value) VALUES ('song_id', 1);
"""

_SONG_COLUMNS = "song_id, title, artist, lookup_key, external_ref"


def _song_from_row(row):
    if row is None:
        return None
    return Song(
        song_id=row["song_id"],
        title=row["title"],
        artist=row["artist"],
        lookup_key=row["lookup_key"],
        external_ref=row["external_ref"],
    )


class SQLiteFingerprintStore(FingerprintStore):
    """Fingerprint store persisted in a single SQLite database file."""

    def __init__(self, db_path=None):
        self.db_path = str(db_path or DatabaseConfig.SQLITE_FILE)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                self.db_path, timeout=30, check_same_thread=False, isolation_level=None
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open fingerprint store {self.db_path}: {e}")

        logger.info(f"✓ Opened SQLite fingerprint store: {self.db_path}")

    @contextmanager
    def _transaction(self):
        """Serialized write transaction; rolls back on any error."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot start transaction: {e}")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._conn.execute("ROLLBACK")
                    raise StorageError(f"Commit failed: {e}")

    def _query(self, sql, params=()):
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}")

    def allocate_song_id(self):
        try:
            with self._transaction() as conn:
                value = conn.execute(
                    "SELECT value FROM sequence WHERE name = 'song_id'"
                ).fetchone()["value"]
                conn.execute(
                    "UPDATE sequence SET value = ? WHERE name = 'song_id'", (value + 1,)
                )
                return value
        except sqlite3.Error as e:
            raise StorageError(f"Cannot allocate song ID: {e}")

    def add_song(self, song, fingerprint):
        if not fingerprint:
            raise InvalidFingerprintError(
                f"Refusing to add '{song.title}' with an empty fingerprint"
            )

        records = [(int(h), song.song_id, int(t)) for h, t in fingerprint.items()]

        try:
            with self._transaction() as conn:
                existing = conn.execute(
                    f"SELECT {_SONG_COLUMNS} FROM songs WHERE lookup_key = ?",
                    (song.lookup_key,),
                ).fetchone()
                if existing is not None:
                    raise DuplicateSongError(_song_from_row(existing))

                conn.execute(
                    f"INSERT INTO songs ({_SONG_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
                    (
                        song.song_id,
                        song.title,
                        song.artist,
                        song.lookup_key,
                        song.external_ref,
                    ),
                )
                conn.executemany(
                    "INSERT INTO fingerprints (hash, song_id, time_offset) "
                    "VALUES (?, ?, ?)",
                    records,
                )
                conn.execute(
                    "UPDATE sequence SET value = MAX(value, ?) WHERE name = 'song_id'",
                    (song.song_id + 1,),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store song '{song.title}': {e}")

        logger.info(
            f"✓ Added song #{song.song_id}: {song.title} - {song.artist} "
            f"({len(records)} hashes)"
        )
        return song

    def put(self, song_id, fingerprint):
        records = [(int(h), song_id, int(t)) for h, t in fingerprint.items()]
        try:
            with self._transaction() as conn:
                exists = conn.execute(
                    "SELECT 1 FROM songs WHERE song_id = ?", (song_id,)
                ).fetchone()
                if exists is None:
                    raise SongNotFoundError(song_id)
                conn.executemany(
                    "INSERT INTO fingerprints (hash, song_id, time_offset) "
                    "VALUES (?, ?, ?)",
                    records,
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store fingerprint of song #{song_id}: {e}")

    def lookup(self, hashes):
        unique = sorted(set(int(h) for h in hashes))
        results = {}
        chunk_size = DatabaseConfig.LOOKUP_CHUNK_SIZE

        # one read transaction so a concurrent delete is seen entirely or not at all
        with self._lock:
            try:
                self._conn.execute("BEGIN")
                try:
                    for start in range(0, len(unique), chunk_size):
                        chunk = unique[start : start + chunk_size]
                        placeholders = ",".join("?" * len(chunk))
                        rows = self._conn.execute(
                            "SELECT hash, song_id, time_offset FROM fingerprints "
                            f"WHERE hash IN ({placeholders}) "
                            "ORDER BY hash, song_id, time_offset",
                            chunk,
                        ).fetchall()
                        for row in rows:
                            results.setdefault(row["hash"], []).append(
                                (row["song_id"], row["time_offset"])
                            )
                finally:
                    self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StorageError(f"Hash lookup failed: {e}")
        return results

    def total_songs(self):
        return self._query("SELECT COUNT(*) AS n FROM songs")[0]["n"]

    def song_by_key(self, lookup_key):
        rows = self._query(
            f"SELECT {_SONG_COLUMNS} FROM songs WHERE lookup_key = ?", (lookup_key,)
        )
        return _song_from_row(rows[0]) if rows else None

    def song_by_id(self, song_id):
        rows = self._query(
            f"SELECT {_SONG_COLUMNS} FROM songs WHERE song_id = ?", (song_id,)
        )
        return _song_from_row(rows[0]) if rows else None

    def song_by_external_ref(self, external_ref):
        rows = self._query(
            f"SELECT {_SONG_COLUMNS} FROM songs WHERE external_ref = ? "
            "ORDER BY song_id LIMIT 1",
            (external_ref,),
        )
        return _song_from_row(rows[0]) if rows else None

    def all_songs(self):
        rows = self._query(f"SELECT {_SONG_COLUMNS} FROM songs ORDER BY song_id")
        return [_song_from_row(row) for row in rows]

    def all_external_refs(self):
        rows = self._query(
            "SELECT external_ref FROM songs WHERE external_ref IS NOT NULL "
            "AND external_ref != '' ORDER BY song_id"
        )
        return [row["external_ref"] for row in rows]

    def set_external_ref(self, song_id, external_ref):
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "UPDATE songs SET external_ref = ? WHERE song_id = ?",
                    (external_ref, song_id),
                )
                if cursor.rowcount == 0:
                    raise SongNotFoundError(song_id)
        except sqlite3.Error as e:
            raise StorageError(f"Failed to update song #{song_id}: {e}")
        return self.song_by_id(song_id)

    def delete_song(self, song_id):
        try:
            with self._transaction() as conn:
                conn.execute("DELETE FROM fingerprints WHERE song_id = ?", (song_id,))
                cursor = conn.execute("DELETE FROM songs WHERE song_id = ?", (song_id,))
                deleted = cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete song #{song_id}: {e}")

        if deleted:
            logger.info(f"✓ Deleted song #{song_id}")
        return deleted

    def get_stats(self):
        num_songs = self.total_songs()
        row = self._query(
            "SELECT COUNT(*) AS total, COUNT(DISTINCT hash) AS uniq FROM fingerprints"
        )[0]
        return _stats(num_songs, row["uniq"], row["total"])

    def close(self):
        with self._lock:
            self._conn.close()
