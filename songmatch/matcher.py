import time
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor, wait

from songmatch.config import MatchConfig
from songmatch.logging_config import setup_logger
from songmatch.models import MatchOutcome, MatchResult

# setting up logger
logger = setup_logger(__name__)


def calculate_time_offsets(time_pairs):
    """
    Calculate time offsets (delta_t) for all matching hash pairs.

    The key insight: If sample matches database, then:
        db_time = sample_time + offset (constant)

    Args:
        time_pairs: List of (sample_time, db_time) tuples

    Returns:
        offsets: List of offset values (db_time - sample_time)
    """
    return [db_time - sample_time for sample_time, db_time in time_pairs]


def find_peak_offset(offsets, bin_size=None):
    """
    Find the most common offset using histogram analysis.
    This detects the "diagonal line" in the scatterplot.

    Args:
        offsets: List of time offset values (frames)
        bin_size: Bin width in frames

    Returns:
        peak_offset: Most common (binned) offset, smallest one on ties
        peak_count: Number of matches at this offset
        histogram: Counter object with all bins
    """
    if not offsets:
        return None, 0, Counter()

    bin_size = bin_size or MatchConfig.BIN_SIZE

    histogram = Counter((offset // bin_size) * bin_size for offset in offsets)

    peak_count = max(histogram.values())
    peak_offset = min(o for o, c in histogram.items() if c == peak_count)

    return peak_offset, peak_count, histogram


def score_match(time_pairs, bin_size=None, tolerance=None):
    """
    Score a potential match based on time alignment.

    Args:
        time_pairs: List of (sample_time, db_time) tuples
        tolerance: Neighboring bins on each side of the tallest bin that
            also count toward the score

    Returns:
        score: Number of hashes in the tallest histogram bin and its
            tolerance neighbors
        offset: Time offset (frames) of the tallest bin
    """
    if not time_pairs:
        return 0, None

    bin_size = bin_size or MatchConfig.BIN_SIZE
    tolerance = MatchConfig.OFFSET_TOLERANCE if tolerance is None else tolerance

    peak_offset, _, histogram = find_peak_offset(
        calculate_time_offsets(time_pairs), bin_size
    )
    score = sum(
        histogram[peak_offset + step * bin_size]
        for step in range(-tolerance, tolerance + 1)
    )
    return score, peak_offset


def confidence_label(score):
    if score >= 50:
        return "VERY HIGH"
    if score >= 20:
        return "HIGH"
    if score >= 10:
        return "MEDIUM"
    if score >= MatchConfig.MIN_CONFIDENCE:
        return "LOW"
    return "NONE"


def batched_lookup(store, hashes, max_workers=None):
    """
    Look up many hashes at once.

    Large queries are split into contiguous hash ranges that are looked
    up concurrently; the merged result equals a single batched call.
    """
    hashes = sorted(set(hashes))
    workers = max_workers or MatchConfig.MAX_WORKERS
    shard_size = MatchConfig.LOOKUP_SHARD_SIZE

    if workers <= 1 or len(hashes) <= shard_size:
        return store.lookup(hashes)

    shards = [hashes[i : i + shard_size] for i in range(0, len(hashes), shard_size)]
    results = {}
    with ThreadPoolExecutor(max_workers=min(workers, len(shards))) as pool:
        for part in pool.map(store.lookup, shards):
            results.update(part)
    return results


def _lookup_before(deadline, store, hashes, max_workers):
    """
    Run batched_lookup, giving up once the deadline passes.

    Returns:
        The lookup records, or None if the deadline expired first. An
        abandoned lookup keeps running on its worker thread; its result
        is discarded.
    """
    if deadline is None:
        return batched_lookup(store, hashes, max_workers)

    hashes = list(hashes)
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(batched_lookup, store, hashes, max_workers)
        done, _ = wait([future], timeout=max(0.0, deadline - time.monotonic()))
        if not done:
            future.cancel()
            return None
        return future.result()
    finally:
        pool.shutdown(wait=False)


def group_by_song(query_fingerprint, records):
    """
    Returns:
        Dict mapping song_id to list of (sample_time, db_time) pairs
    """
    matches_by_song = defaultdict(list)
    for hash_val, entries in records.items():
        sample_time = query_fingerprint[hash_val]
        for song_id, db_time in entries:
            matches_by_song[song_id].append((sample_time, db_time))
    return matches_by_song


def _score_candidates(candidates, bin_size):
    return [
        (song_id, *score_match(time_pairs, bin_size), len(time_pairs))
        for song_id, time_pairs in candidates
    ]


def _score_all(matches_by_song, deadline, max_workers, bin_size):
    """
    Score every candidate song.

    Returns:
        scored: List of (song_id, score, offset, num_matches)
        timed_out: True if the deadline cut scoring short
    """
    candidates = sorted(matches_by_song.items())
    workers = max_workers or MatchConfig.MAX_WORKERS

    if workers <= 1 or len(candidates) <= MatchConfig.PARALLEL_CANDIDATES:
        scored = []
        for song_id, time_pairs in candidates:
            if deadline is not None and time.monotonic() > deadline:
                return scored, True
            scored.extend(_score_candidates([(song_id, time_pairs)], bin_size))
        return scored, False

    chunk = -(-len(candidates) // workers)
    pool = ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [
            pool.submit(_score_candidates, candidates[i : i + chunk], bin_size)
            for i in range(0, len(candidates), chunk)
        ]
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
        done, not_done = wait(futures, timeout=remaining)
        scored = [row for future in done for row in future.result()]
        for future in not_done:
            future.cancel()
        return scored, bool(not_done)
    finally:
        pool.shutdown(wait=False)


def match_query(
    query_fingerprint,
    store,
    min_confidence=None,
    max_results=None,
    timeout=None,
    max_workers=None,
    bin_size=None,
):
    """
    Match a query fingerprint against the store.

    This is the main search function that identifies which song
    a query sample came from.

    Args:
        query_fingerprint: Dict mapping hash -> query time offset (frames)
        store: FingerprintStore instance
        min_confidence: Minimum aligned hashes to report a song
        max_results: Maximum number of results returned
        timeout: Seconds before the query is abandoned (partial ranking)
        max_workers: Thread count for sharded lookup and scoring

    Returns:
        MatchOutcome with results sorted by score (best first); ties go
        to the song with more matched hashes, then the lower song_id
    """
    start_time = time.monotonic()
    deadline = None if timeout is None else start_time + timeout
    min_confidence = MatchConfig.MIN_CONFIDENCE if min_confidence is None else min_confidence
    max_results = MatchConfig.MAX_RESULTS if max_results is None else max_results

    if not query_fingerprint:
        return MatchOutcome(query_time=time.monotonic() - start_time)

    # Step 1: Query database for all matching hashes
    records = _lookup_before(deadline, store, query_fingerprint.keys(), max_workers)
    if records is None:
        outcome = MatchOutcome(timed_out=True, query_time=time.monotonic() - start_time)
        logger.warning(
            f"⚠ Lookup timed out after {outcome.query_time * 1000:.1f} ms, no result"
        )
        return outcome

    matches_by_song = group_by_song(query_fingerprint, records)

    logger.debug(
        f"Query hashes: {len(query_fingerprint)}, "
        f"candidates: {len(matches_by_song)} song(s)"
    )

    # Step 2: Score each candidate song
    timed_out = deadline is not None and time.monotonic() > deadline
    scored = []
    if not timed_out:
        scored, timed_out = _score_all(matches_by_song, deadline, max_workers, bin_size)

    # Step 3: Filter and sort by score (best first)
    scored = [row for row in scored if row[1] >= min_confidence]
    scored.sort(key=lambda row: (-row[1], -row[3], row[0]))

    results = []
    for song_id, score, offset, num_matches in scored:
        if len(results) >= max_results:
            break
        song = store.song_by_id(song_id)
        if song is None:
            # deleted after the lookup
            continue
        results.append(MatchResult(song_id, score, offset, num_matches, song))

    outcome = MatchOutcome(
        matches=results,
        timed_out=timed_out,
        num_candidates=len(matches_by_song),
        query_time=time.monotonic() - start_time,
    )

    if timed_out:
        logger.warning(
            f"⚠ Query timed out after {outcome.query_time * 1000:.1f} ms, "
            f"returning {len(results)} partial result(s)"
        )
    elif results:
        best = results[0]
        logger.info(
            f"✓ BEST MATCH: #{best.song_id} '{best.song.title}' by {best.song.artist} "
            f"(score={best.score}, offset={best.offset_seconds:.2f}s, "
            f"{outcome.query_time * 1000:.1f} ms)"
        )
    else:
        logger.info(f"✗ NO MATCH FOUND ({len(matches_by_song)} candidates scored)")

    return outcome
