"""Audio fingerprinting and song recognition."""

from songmatch.config import DatabaseConfig, ServerConfig
from songmatch.database import FingerprintDatabase, FingerprintStore
from songmatch.errors import ErrorKind, SongMatchError
from songmatch.fingerprint import fingerprint_samples
from songmatch.matcher import match_query
from songmatch.models import MatchResult, Peak, Song
from songmatch.registrar import CatalogRegistrar
from songmatch.sqlite_store import SQLiteFingerprintStore

__version__ = "0.1.0"


def open_store(backend=None, path=None):
    """
    Open the configured fingerprint store.

    Args:
        backend: "sqlite" or "memory" (pickle + JSON snapshot on disk)
        path: Database file for the chosen backend
    """
    backend = backend or ServerConfig.STORE_BACKEND
    if backend == "sqlite":
        return SQLiteFingerprintStore(path or DatabaseConfig.SQLITE_FILE)
    if backend == "memory":
        return FingerprintDatabase.load(path or DatabaseConfig.DB_FILE)
    raise ValueError(f"Unknown store backend: {backend!r}")
