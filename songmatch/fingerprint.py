from collections import defaultdict, deque

from songmatch.config import AudioConfig, HashConfig
from songmatch.audio_utils import (
    compute_spectrogram,
    iter_spectrogram_peaks,
    load_audio,
)
from songmatch.logging_config import setup_logger

# setting up logger
logger = setup_logger(__name__)

FREQ_MASK = (1 << HashConfig.FREQ_BITS) - 1
TIME_MASK = (1 << HashConfig.TIME_BITS) - 1


def create_hash(freq1, freq2, delta_time):
    """
    Pack an anchor/target pair into one unsigned integer.

    Layout (MSB → LSB):
        [10 bits anchor freq][10 bits target freq][12 bits delta_time]

    Absolute time is deliberately left out so the same pair hashes the
    same wherever it occurs in a recording.

    Args:
        freq1: Anchor frequency bin
        freq2: Target frequency bin
        delta_time: Time difference in frames

    Returns:
        hash_value: 32-bit unsigned integer
    """
    return (
        (int(freq1) & FREQ_MASK) << (HashConfig.FREQ_BITS + HashConfig.TIME_BITS)
        | (int(freq2) & FREQ_MASK) << HashConfig.TIME_BITS
        | (int(delta_time) & TIME_MASK)
    )


def split_hash(hash_value):
    """Inverse of create_hash: (anchor freq, target freq, delta_time)."""
    return (
        (hash_value >> (HashConfig.FREQ_BITS + HashConfig.TIME_BITS)) & FREQ_MASK,
        (hash_value >> HashConfig.TIME_BITS) & FREQ_MASK,
        hash_value & TIME_MASK,
    )


def _pair_anchor(anchor, followers):
    """
    Hashes for one anchor and the strongest peaks of its target zone.

    At most FAN_OUT targets are paired, loudest first (earlier, then
    lower, on equal magnitude). Hashes come out in target time order.
    """
    zone = []
    for target in followers:
        delta_t = target.time_offset - anchor.time_offset
        if delta_t < HashConfig.TARGET_T_MIN:
            continue  # Too close
        if delta_t > HashConfig.TARGET_T_MAX:
            break  # Too far (and all subsequent will be too far)
        if abs(target.frequency_bin - anchor.frequency_bin) > HashConfig.TARGET_F_MAX:
            continue
        zone.append(target)

    zone.sort(key=lambda p: (-p.magnitude, p.time_offset, p.frequency_bin))
    targets = sorted(zone[: HashConfig.FAN_OUT])

    return [
        (
            create_hash(
                anchor.frequency_bin,
                target.frequency_bin,
                target.time_offset - anchor.time_offset,
            ),
            anchor.time_offset,
        )
        for target in targets
    ]


def generate_hashes(peaks):
    """
    Generate combinatorial hashes from constellation peaks.

    For each anchor point, pair it with the FAN_OUT strongest points in
    its "target zone" (TARGET_T_MIN..TARGET_T_MAX frames ahead). The peaks
    are consumed in one pass; only the peaks of the current target zone
    are buffered.

    Args:
        peaks: Iterable of Peak, ordered by time offset

    Returns:
        hashes: List of (hash, anchor_time_offset) tuples, in anchor order
    """
    hashes = []
    window = deque()

    for peak in peaks:
        while window and peak.time_offset - window[0].time_offset > HashConfig.TARGET_T_MAX:
            anchor = window.popleft()
            hashes.extend(_pair_anchor(anchor, window))
        window.append(peak)

    while window:
        anchor = window.popleft()
        hashes.extend(_pair_anchor(anchor, window))

    return hashes


def build_fingerprint(hashes):
    """
    Collapse (hash, offset) pairs into a fingerprint mapping.

    When a hash recurs, the first occurrence (earliest anchor) is kept.
    """
    fingerprint = {}
    for hash_value, time_offset in hashes:
        fingerprint.setdefault(hash_value, time_offset)
    return fingerprint


def analyze_hash_distribution(hashes):
    """
    Report hash uniqueness and collisions.

    Args:
        hashes: List of (hash, time_offset) tuples

    Returns:
        stats: Dict with total, unique, collisions and uniqueness ratio
    """
    hash_counts = defaultdict(int)
    for hash_val, _ in hashes:
        hash_counts[hash_val] += 1

    total_hashes = len(hashes)
    unique_hashes = len(hash_counts)
    duplicates = {h: c for h, c in hash_counts.items() if c > 1}

    stats = {
        "total": total_hashes,
        "unique": unique_hashes,
        "collisions": len(duplicates),
        "max_collision": max(duplicates.values()) if duplicates else 0,
        "uniqueness": unique_hashes / total_hashes if total_hashes else 0.0,
    }

    logger.debug(
        f"Hashes: {total_hashes} total, {unique_hashes} unique "
        f"({stats['uniqueness'] * 100:.1f}%), {len(duplicates)} collisions"
    )

    return stats


class _Counter:
    """Pass-through iterator that counts what flows through it."""

    def __init__(self, iterable):
        self._it = iter(iterable)
        self.count = 0

    def __iter__(self):
        return self

    def __next__(self):
        item = next(self._it)
        self.count += 1
        return item


def _fingerprint_from_peaks(peaks, duration):
    counted = _Counter(peaks)
    hashes = generate_hashes(counted)
    fingerprint = build_fingerprint(hashes)

    metadata = {
        "num_peaks": counted.count,
        "num_hashes": len(hashes),
        "num_unique_hashes": len(fingerprint),
        "duration": duration,
        "hashes_per_second": len(fingerprint) / duration if duration else 0.0,
    }
    return fingerprint, metadata


def fingerprint_samples(samples, sample_rate, channels=1):
    """
    Complete pipeline: PCM → constellation → hashes → fingerprint.

    This is what you'd call to fingerprint a song for the database or a
    query clip for matching.

    Args:
        samples: PCM samples
        sample_rate: Input sample rate in Hz
        channels: Input channel count (downmixed to mono)

    Returns:
        fingerprint: Dict mapping hash -> anchor time offset (frames)
        metadata: Dict with peak/hash counts and duration
    """
    audio, _, _, spec = compute_spectrogram(samples, sample_rate, channels)
    fingerprint, metadata = _fingerprint_from_peaks(
        iter_spectrogram_peaks(spec), len(audio) / AudioConfig.SAMPLE_RATE
    )

    logger.info(
        f"✓ Fingerprinted {metadata['duration']:.2f}s: "
        f"{metadata['num_peaks']} peaks, {len(fingerprint)} hashes"
    )

    return fingerprint, metadata


def fingerprint_file(audio_path, save_plot=None):
    """
    Load audio file → fingerprint, optionally saving a constellation plot.

    Args:
        audio_path: Path to audio file
        save_plot: Path to save the constellation map visualization

    Returns:
        fingerprint: Dict mapping hash -> anchor time offset
        metadata: Dict with additional info
    """
    audio, sr = load_audio(audio_path)

    if save_plot is None:
        fingerprint, metadata = fingerprint_samples(audio, sr)
    else:
        from songmatch.visualize import visualize_constellation_map

        _, freqs, times, spec = compute_spectrogram(audio, sr)
        peaks = list(iter_spectrogram_peaks(spec))
        visualize_constellation_map(spec, freqs, times, peaks, save_path=save_plot)
        fingerprint, metadata = _fingerprint_from_peaks(
            peaks, len(audio) / AudioConfig.SAMPLE_RATE
        )

    metadata["file"] = str(audio_path)
    return fingerprint, metadata
