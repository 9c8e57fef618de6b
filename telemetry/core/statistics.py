# ==============================================================================
# Statistics Helpers - Pure Domain Logic
# ==============================================================================
"""
Numeric building blocks for the stats aggregator.

- percentile(): nearest-rank percentile on a sorted sample
- duration_histogram(): fixed-edge duration buckets
- top_rows(): ranked "top N" rows with fraction-of-total
- mask_visitor(): privacy mask for anonymous ids in human-facing output
"""

import math
from collections.abc import Iterable, Mapping, Sequence

# Bucket lower edges in milliseconds; the last bucket is unbounded above
HISTOGRAM_EDGES = (0, 500, 1000, 3000, 10000, 30000, 60000, 120000)

HISTOGRAM_LABELS = (
    "0-500ms",
    "500-1000ms",
    "1000-3000ms",
    "3000-10000ms",
    "10000-30000ms",
    "30000-60000ms",
    "60000-120000ms",
    "≥120000ms",
)

MASK_SUFFIX_LENGTH = 6
MASK_PREFIX = "Visitor #"


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile.

    index = ceil(p/100 * n) - 1, clamped to [0, n-1].

    Args:
        sorted_values: Sample sorted ascending
        p: Percentile in 0..100

    Returns:
        Sample value at the rank, or 0 for an empty sample
    """
    n = len(sorted_values)
    if n == 0:
        return 0
    index = math.ceil(p / 100 * n) - 1
    index = max(0, min(n - 1, index))
    return sorted_values[index]


def bucket_index(duration_ms: float) -> int:
    """Index of the histogram bucket a duration falls into."""
    index = 0
    for i, edge in enumerate(HISTOGRAM_EDGES):
        if duration_ms >= edge:
            index = i
    return index


def duration_histogram(durations: Iterable[float]) -> list[int]:
    """
    Count durations per fixed-edge bucket.

    Negative durations land in the first bucket, so the counts always sum to
    the number of durations given.
    """
    counts = [0] * len(HISTOGRAM_EDGES)
    for duration in durations:
        counts[bucket_index(duration)] += 1
    return counts


def safe_rate(numerator: int, denominator: int) -> float:
    """numerator / max(1, denominator)."""
    return numerator / max(1, denominator)


def ranked(counts: Mapping[str, int], limit: int | None = None) -> list[tuple[str, int]]:
    """Sort (key, count) pairs by count descending, then key ascending."""
    items = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return items if limit is None else items[:limit]


def top_rows(counts: Mapping[str, int], denominator: int, limit: int = 20) -> list[dict]:
    """
    Build a ranked "top N" table.

    Args:
        counts: key -> count
        denominator: Total the fractions are taken against
        limit: Maximum rows

    Returns:
        List of {"key", "count", "pct", "percent"}; pct is the fraction in
        0..1, percent is pct * 100 rounded to one decimal
    """
    rows = []
    for key, count in ranked(counts, limit):
        pct = safe_rate(count, denominator)
        rows.append({"key": key, "count": count, "pct": pct, "percent": round(pct * 100, 1)})
    return rows


def mask_visitor(anon_id: str | None) -> str:
    """Replace an anonymous id with a short suffix for display."""
    if not anon_id or len(anon_id) < MASK_SUFFIX_LENGTH:
        return f"{MASK_PREFIX}—"
    return f"{MASK_PREFIX}{anon_id[-MASK_SUFFIX_LENGTH:]}"
