"""
Timing Metrics.

Quantifies how predictable activity is in time. Values are either event
timestamps or deposit -> withdrawal delays, bucketed into fixed-width
buckets (default 1 hour).

- timing_entropy: normalized Shannon entropy of bucket occupancy (0-1)
- timing_distribution: bucket counts, raw entropy bits, mean and quartiles
- clustering_coefficient: coefficient of variation of inter-event gaps
- detect_timing_patterns: over-represented delay buckets
- time_of_day_histogram: UTC hour-of-day counts

Usage:
    from unveil.metrics.timing import timing_entropy
    entropy = timing_entropy([m.time_delta_ms for m in matches])
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

import numpy as np

from unveil.config.protocols import HOUR_MS

# Fewer samples than this make pattern detection meaningless
MIN_PATTERN_SAMPLES = 10

# A bucket is dominant when it holds more than this multiple of the average
DOMINANT_BUCKET_FACTOR = 2.0

# Minimum (1 - normalized entropy) to report a timing pattern
PATTERN_CONFIDENCE_THRESHOLD = 0.3


@dataclass(frozen=True)
class TimingDistribution:
    """
    Bucketed timing distribution.

    Attributes:
        buckets: Bucket index (value // bucket_ms) -> count
        sample_count: Number of values
        mean / median / p25 / p75: Statistics of the raw values (ms)
        entropy_bits: Shannon entropy of bucket occupancy (bits)
        normalized_entropy: entropy_bits / log2(occupied buckets), 0-1
    """

    buckets: dict[int, int] = field(default_factory=dict)
    sample_count: int = 0
    mean: float = 0.0
    median: float = 0.0
    p25: float = 0.0
    p75: float = 0.0
    entropy_bits: float = 0.0
    normalized_entropy: float = 0.0

    def to_dict(self) -> dict:
        return {
            "buckets": {str(k): v for k, v in sorted(self.buckets.items())},
            "sample_count": self.sample_count,
            "mean": self.mean,
            "median": self.median,
            "p25": self.p25,
            "p75": self.p75,
            "entropy_bits": self.entropy_bits,
            "normalized_entropy": self.normalized_entropy,
        }


@dataclass(frozen=True)
class TimingPattern:
    """Result of timing-pattern detection."""

    has_pattern: bool
    dominant_buckets: tuple[int, ...] = ()
    confidence: float = 0.0


def bucket_counts(values_ms: Iterable[int], bucket_ms: int = HOUR_MS) -> Counter:
    """Count values per fixed-width bucket."""
    if bucket_ms <= 0:
        raise ValueError(f"bucket_ms must be positive: {bucket_ms}")
    return Counter(int(v) // bucket_ms for v in values_ms)


def shannon_entropy_bits(counts: Counter) -> float:
    """Shannon entropy (bits) of a bucket-count distribution."""
    total = sum(counts.values())
    if total == 0:
        return 0.0
    entropy = 0.0
    for count in counts.values():
        if count > 0:
            p = count / total
            entropy -= p * math.log2(p)
    return entropy


def _normalize(entropy_bits: float, occupied: int) -> float:
    if occupied < 2:
        return 0.0
    # Clamp float noise at the top of the range
    return min(1.0, max(0.0, entropy_bits / math.log2(occupied)))


def timing_entropy(values_ms: Iterable[int], bucket_ms: int = HOUR_MS) -> float:
    """
    Normalized Shannon entropy of bucket occupancy.

    Args:
        values_ms: Timestamps or delays in milliseconds
        bucket_ms: Bucket width (default 1 hour)

    Returns:
        Entropy in [0, 1]; 0 when fewer than 2 buckets are occupied
    """
    counts = bucket_counts(values_ms, bucket_ms)
    return _normalize(shannon_entropy_bits(counts), len(counts))


def timing_distribution(values_ms: Iterable[int], bucket_ms: int = HOUR_MS) -> TimingDistribution:
    """Bucket counts, raw and normalized entropy, mean and quartiles."""
    values = sorted(int(v) for v in values_ms)
    if not values:
        return TimingDistribution()

    counts = bucket_counts(values, bucket_ms)
    bits = shannon_entropy_bits(counts)
    arr = np.array(values, dtype=float)

    return TimingDistribution(
        buckets=dict(counts),
        sample_count=len(values),
        mean=float(np.mean(arr)),
        median=float(np.percentile(arr, 50)),
        p25=float(np.percentile(arr, 25)),
        p75=float(np.percentile(arr, 75)),
        entropy_bits=bits,
        normalized_entropy=_normalize(bits, len(counts)),
    )


def inter_event_gaps(timestamps_ms: Iterable[int]) -> list[int]:
    """Gaps between consecutive timestamps (sorted ascending)."""
    ordered = sorted(int(t) for t in timestamps_ms)
    return [b - a for a, b in zip(ordered, ordered[1:])]


def clustering_coefficient(timestamps_ms: Iterable[int]) -> float:
    """
    Coefficient of variation of inter-event gaps, clamped to [0, 1].

    0 means perfectly regular spacing (or too little data); values near 1
    mean bursty, clustered activity.
    """
    gaps = inter_event_gaps(timestamps_ms)
    if not gaps:
        return 0.0
    arr = np.array(gaps, dtype=float)
    mean = float(np.mean(arr))
    if mean <= 0:
        return 0.0
    return min(float(np.std(arr)) / mean, 1.0)


def detect_timing_patterns(delays_ms: Iterable[int], bucket_ms: int = HOUR_MS) -> TimingPattern:
    """
    Detect over-represented delay buckets.

    A bucket is dominant when it holds more than twice the average count.
    Confidence is 1 - normalized entropy; a pattern needs at least one
    dominant bucket and confidence above 0.3.
    """
    values = list(delays_ms)
    if len(values) < MIN_PATTERN_SAMPLES:
        return TimingPattern(has_pattern=False)

    distribution = timing_distribution(values, bucket_ms)
    average = len(values) / len(distribution.buckets)
    dominant = tuple(
        sorted(b for b, c in distribution.buckets.items() if c > average * DOMINANT_BUCKET_FACTOR)
    )
    confidence = 1.0 - distribution.normalized_entropy

    return TimingPattern(
        has_pattern=bool(dominant) and confidence > PATTERN_CONFIDENCE_THRESHOLD,
        dominant_buckets=dominant,
        confidence=confidence,
    )


def time_of_day_histogram(timestamps_ms: Iterable[int]) -> dict[int, int]:
    """UTC hour of day (0-23) -> event count."""
    counts: Counter = Counter()
    for ts in timestamps_ms:
        counts[datetime.fromtimestamp(ts / 1000, tz=timezone.utc).hour] += 1
    return dict(sorted(counts.items()))


def recommend_timing(delays_ms: Iterable[int]) -> tuple[int, int, str]:
    """
    Delay range (hours) that keeps a withdrawal inside the crowd.

    Returns:
        Tuple of (min_hours, max_hours, reasoning)
    """
    values = list(delays_ms)
    if len(values) < MIN_PATTERN_SAMPLES:
        return (
            12,
            48,
            "Insufficient data for precise recommendation. General guideline: wait 12-48 hours.",
        )
    distribution = timing_distribution(values)
    low = math.floor(distribution.p25 / HOUR_MS)
    high = math.ceil(distribution.p75 / HOUR_MS)
    return (
        low,
        high,
        f"Most users withdraw between {low}-{high} hours after deposit. "
        "Staying in this range maximizes your anonymity set.",
    )
