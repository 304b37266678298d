import os


class AudioConfig:
    """Configuration parameters for spectrogram and peak extraction"""

    # Audio processing
    SAMPLE_RATE = 22050

    # Spectrogram parameters
    FFT_WINDOW_SIZE = 2048
    OVERLAP_RATIO = 0.5

    # Peak detection parameters (neighborhood radius in bins)
    PEAK_TIME_RADIUS = 5
    PEAK_FREQ_RADIUS = 10
    MAX_PEAKS_PER_FRAME = 5

    # Frequency bands (bin index ranges) for the band-relative threshold
    BANDS = [
        (0, 10),
        (10, 20),
        (20, 40),
        (40, 80),
        (80, 160),
        (160, 512),
        (512, 1024),
    ]
    BAND_THRESHOLD_RATIO = 1.5

    # Peaks above this bin are ignored so they fit in the hash
    MAX_FREQ_BIN = 1023

    # Absolute floor below which nothing counts as a peak (silence)
    MIN_MAGNITUDE = 1e-4

    # Peaks must reach this fraction of the loudest bin within
    # PEAK_TIME_RADIUS frames (-12 dB)
    PEAK_RELATIVE_THRESHOLD = 0.25

    # A bin within this fraction of its neighborhood maximum counts as
    # level with it (held tones, noisy plateaus)
    PEAK_PLATEAU_TOLERANCE = 0.1


class HashConfig:
    """Configuration for hash generation"""

    # Target zone, in frames relative to the anchor
    TARGET_T_MIN = 1
    TARGET_T_MAX = 40
    TARGET_F_MAX = 1023

    # Fan-out: max number of target points per anchor
    FAN_OUT = 10

    # Hash packing
    FREQ_BITS = 10
    TIME_BITS = 12


class DatabaseConfig:
    """Configuration for database storage"""

    # Storage paths
    DB_FILE = os.environ.get("SONGMATCH_DB_FILE", "./data/db/fingerprint_database.pkl")
    METADATA_FILE = os.environ.get(
        "SONGMATCH_METADATA_FILE", "./data/db/song_metadata.json"
    )
    SQLITE_FILE = os.environ.get("SONGMATCH_SQLITE_FILE", "./data/db/songmatch.sqlite3")

    # SQLite caps bound parameters per statement
    LOOKUP_CHUNK_SIZE = 900


class MatchConfig:
    """Configuration for matching algorithm"""

    # Minimum aligned hashes for a candidate to be reported
    MIN_CONFIDENCE = 5

    # Histogram bin width in frames (1 = exact delta)
    BIN_SIZE = 1

    # Neighboring bins (each side) counted into a match's score; a clip
    # cut between two hops lands its hashes on two adjacent deltas
    OFFSET_TOLERANCE = 1

    # Results returned to the caller
    MAX_RESULTS = 10

    # Parallelism thresholds
    PARALLEL_CANDIDATES = 200
    LOOKUP_SHARD_SIZE = 5000
    MAX_WORKERS = 4


class ServerConfig:
    """Configuration for the HTTP server"""

    HOST = os.environ.get("SONGMATCH_HOST", "0.0.0.0")
    PORT = int(os.environ.get("SONGMATCH_PORT", "5000"))
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024
    UPLOAD_FOLDER = os.environ.get("SONGMATCH_UPLOAD_FOLDER", "./data/uploads")
    STORE_BACKEND = os.environ.get("SONGMATCH_STORE", "sqlite")
    QUERY_TIMEOUT = float(os.environ.get("SONGMATCH_QUERY_TIMEOUT", "5.0"))


class LoggingConfig:
    """Configuration for module loggers"""

    LEVEL = os.environ.get("SONGMATCH_LOG_LEVEL", "INFO").upper()
    FILE = os.environ.get("SONGMATCH_LOG_FILE") or None


class FallbackConfig:
    """Configuration for the external recognition fallback"""

    HOST = os.environ.get("SONGMATCH_FALLBACK_HOST", "")
    ACCESS_KEY = os.environ.get("SONGMATCH_FALLBACK_ACCESS_KEY", "")
    ACCESS_SECRET = os.environ.get("SONGMATCH_FALLBACK_ACCESS_SECRET", "")
    ENDPOINT = "/v1/identify"
    DATA_TYPE = "audio"
    SIGNATURE_VERSION = "1"
    TIMEOUT = 10
