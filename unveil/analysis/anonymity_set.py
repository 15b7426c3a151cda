"""
Anonymity Set Calculator.

For each target event, counts the source events that remain plausible
origins under the same timing/amount predicate the correlation engine uses,
but without consumption bookkeeping. The result models attacker uncertainty
and does not depend on the order targets are processed in.

Usage:
    from unveil.analysis.anonymity_set import AnonymitySetCalculator

    calc = AnonymitySetCalculator(profile)
    results = calc.anonymity_sets(withdrawals, deposits)
    stats = calc.statistics(results)
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from unveil.analysis.correlation import CorrelationEngine
from unveil.config.protocols import HOUR_MS, ProtocolProfile
from unveil.models.events import AnonymitySetResult, Event, EventKind

logger = logging.getLogger(__name__)

# Sets below this size are reported as weak
DEFAULT_WEAK_THRESHOLD = 10


@dataclass(frozen=True)
class AnonymitySetStatistics:
    """Distribution summary of anonymity-set sizes."""

    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    min: int = 0
    max: int = 0
    p25: float = 0.0
    p75: float = 0.0
    distribution: dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "mean": self.mean,
            "median": self.median,
            "min": self.min,
            "max": self.max,
            "p25": self.p25,
            "p75": self.p75,
            "distribution": {str(k): v for k, v in sorted(self.distribution.items())},
        }


@dataclass(frozen=True)
class AnonymitySnapshot:
    """Anonymity-set sizes of the targets seen in one time interval."""

    timestamp_ms: int
    avg_size: float
    min_size: int
    max_size: int
    count: int


def vulnerability_level(size: int) -> str:
    """Map an anonymity-set size to a risk level.

    0-1 sources leave the target uniquely identifiable (or unexplained).
    """
    if size <= 1:
        return "critical"
    if size <= 5:
        return "high"
    if size <= 20:
        return "medium"
    return "low"


class AnonymitySetCalculator:
    """Anonymity sets for one protocol profile."""

    def __init__(self, profile: ProtocolProfile):
        self.profile = profile
        self._engine = CorrelationEngine(profile)

    def _window_limit(self, window_ms: Optional[int]) -> int:
        window = self.profile.anonymity_window_ms if window_ms is None else window_ms
        if self.profile.max_delay_ms is not None:
            return min(window, self.profile.max_delay_ms)
        return window

    def anonymity_set(
        self,
        target: Event,
        sources: Iterable[Event],
        window_ms: Optional[int] = None,
    ) -> AnonymitySetResult:
        """
        Plausible sources for one target.

        Args:
            target: Target event (withdrawal / incoming transfer)
            sources: All source events (never mutated, never consumed)
            window_ms: Look-back window; defaults to the profile's
                anonymity window, bounded by its maximum delay

        Returns:
            AnonymitySetResult with size == len(candidate_source_ids)
        """
        sources = list(sources)
        if self.profile.addresses_visible:
            source = self._engine.plaintext_source(target, sources)
            if source is not None:
                # Plaintext link: the attacker needs no inference
                return AnonymitySetResult(
                    target_id=target.id,
                    candidate_source_ids=frozenset({source.id}),
                    size=1,
                    timestamp_ms=target.timestamp_ms,
                )

        limit = self._window_limit(window_ms)
        candidates = frozenset(
            s.id
            for s in sources
            if s.is_known
            and s.id != target.id
            and self._engine.is_candidate(s, target, max_delay_ms=limit, require_amounts=False)
        )
        return AnonymitySetResult(
            target_id=target.id,
            candidate_source_ids=candidates,
            size=len(candidates),
            timestamp_ms=target.timestamp_ms,
        )

    def anonymity_sets(
        self,
        targets: Iterable[Event],
        sources: Iterable[Event],
        window_ms: Optional[int] = None,
    ) -> list[AnonymitySetResult]:
        """One result per known target, in target time order."""
        source_list = [s for s in sources if s.is_known]
        ordered = sorted(
            (t for t in targets if t.is_known), key=lambda e: (e.timestamp_ms, e.id)
        )
        results = [self.anonymity_set(t, source_list, window_ms) for t in ordered]
        logger.debug(
            f"{self.profile.protocol_id}: computed {len(results)} anonymity sets "
            f"over {len(source_list)} sources"
        )
        return results

    def estimate_anonymity_set(
        self,
        amount: int,
        at_ms: int,
        sources: Iterable[Event],
        window_ms: Optional[int] = None,
    ) -> int:
        """
        Anonymity set a hypothetical withdrawal would get.

        Privacy-advisor helper: how many deposits would hide a withdrawal of
        `amount` made at `at_ms`.
        """
        query = Event(
            id="__estimate__",
            protocol=self.profile.protocol_id,
            kind=EventKind.WITHDRAWAL,
            timestamp_ms=at_ms,
            amount=amount,
        )
        limit = self._window_limit(window_ms)
        return sum(
            1
            for s in sources
            if s.is_known
            and self._engine.is_candidate(s, query, max_delay_ms=limit, require_amounts=False)
        )

    @staticmethod
    def statistics(results: list[AnonymitySetResult]) -> AnonymitySetStatistics:
        """
        Aggregate statistics over anonymity-set results.

        Percentiles use linear interpolation between closest ranks. Empty
        input yields all-zero statistics.
        """
        if not results:
            return AnonymitySetStatistics()

        sizes = np.array(sorted(r.size for r in results), dtype=float)
        return AnonymitySetStatistics(
            count=len(results),
            mean=float(np.mean(sizes)),
            median=float(np.percentile(sizes, 50)),
            min=int(sizes[0]),
            max=int(sizes[-1]),
            p25=float(np.percentile(sizes, 25)),
            p75=float(np.percentile(sizes, 75)),
            distribution=dict(Counter(r.size for r in results)),
        )

    @staticmethod
    def find_weak_sets(
        results: list[AnonymitySetResult], threshold: int = DEFAULT_WEAK_THRESHOLD
    ) -> list[AnonymitySetResult]:
        """Results whose anonymity set is smaller than `threshold`."""
        return [r for r in results if r.size < threshold]

    @staticmethod
    def time_series(
        results: list[AnonymitySetResult], interval_ms: int = HOUR_MS
    ) -> list[AnonymitySnapshot]:
        """
        Snapshots of anonymity-set sizes per time interval.

        Intervals start at the earliest target; empty intervals are skipped.
        """
        if not results:
            return []
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive: {interval_ms}")

        first = min(r.timestamp_ms for r in results)
        buckets: dict[int, list[int]] = {}
        for r in results:
            start = first + ((r.timestamp_ms - first) // interval_ms) * interval_ms
            buckets.setdefault(start, []).append(r.size)

        return [
            AnonymitySnapshot(
                timestamp_ms=start,
                avg_size=sum(sizes) / len(sizes),
                min_size=min(sizes),
                max_size=max(sizes),
                count=len(sizes),
            )
            for start, sizes in sorted(buckets.items())
        ]


def anonymity_set(
    target: Event,
    sources: Iterable[Event],
    profile: ProtocolProfile,
    window_ms: Optional[int] = None,
) -> AnonymitySetResult:
    """Functional wrapper around AnonymitySetCalculator.anonymity_set."""
    return AnonymitySetCalculator(profile).anonymity_set(target, sources, window_ms)
