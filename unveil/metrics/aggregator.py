"""
Metrics Aggregator.

Bundles the timing, amount, address and anonymity-set reductions of one
analysis run into a single AggregateMetrics value for the scoring engine.
Every reduction returns a defined neutral value on empty input.

Usage:
    from unveil.metrics.aggregator import MetricsAggregator

    metrics = MetricsAggregator(profile).aggregate(events, matches, anonymity)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from unveil.analysis.anonymity_set import AnonymitySetCalculator, AnonymitySetStatistics
from unveil.config.protocols import ProtocolProfile
from unveil.metrics.addresses import AddressActivity, address_activity
from unveil.metrics.amounts import (
    AmountDistribution,
    SplitFingerprints,
    amount_distribution,
    detect_split_fingerprints,
)
from unveil.metrics.confidential import ConfidentialActivity, confidential_activity
from unveil.metrics.timing import (
    TimingDistribution,
    TimingPattern,
    clustering_coefficient,
    detect_timing_patterns,
    timing_distribution,
)
from unveil.models.events import AnonymitySetResult, Event, MatchCandidate, ProtocolMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateMetrics:
    """
    All reductions of one protocol analysis.

    Attributes:
        entropy_basis: "match_deltas" or "timestamps"
        timing: Bucketed distribution of the entropy basis values
        timing_pattern: Over-represented delay buckets (match deltas only)
        clustering: Coefficient of variation of inter-event gaps (0-1)
        amounts: Amount frequency summary
        addresses: Address usage summary (pool accounts excluded)
        anonymity: Anonymity-set statistics
        target_count: Known target events
        matched_count: Accepted matches
        splits: Split-output fingerprints, for profiles that group outputs
        confidential: Account and auditor metrics, for confidential-token profiles
    """

    entropy_basis: str
    timing: TimingDistribution = field(default_factory=TimingDistribution)
    timing_pattern: TimingPattern = field(default_factory=lambda: TimingPattern(False))
    clustering: float = 0.0
    amounts: AmountDistribution = field(default_factory=AmountDistribution)
    addresses: AddressActivity = field(default_factory=AddressActivity)
    anonymity: AnonymitySetStatistics = field(default_factory=AnonymitySetStatistics)
    target_count: int = 0
    matched_count: int = 0
    splits: Optional[SplitFingerprints] = None
    confidential: Optional[ConfidentialActivity] = None

    @property
    def timing_entropy(self) -> float:
        """Normalized entropy (0-1)."""
        return self.timing.normalized_entropy

    @property
    def timing_entropy_bits(self) -> float:
        return self.timing.entropy_bits

    @property
    def unique_amount_ratio(self) -> float:
        return self.amounts.unique_ratio

    @property
    def address_reuse_rate(self) -> float:
        return self.addresses.reuse_rate

    @property
    def linkability_rate(self) -> float:
        """Share of targets with an accepted match; 0 without targets."""
        if self.target_count == 0:
            return 0.0
        return self.matched_count / self.target_count

    def snapshot(self, privacy_score: int) -> ProtocolMetrics:
        """Immutable headline metrics once the score is known."""
        return ProtocolMetrics(
            avg_anonymity_set=self.anonymity.mean,
            median_anonymity_set=self.anonymity.median,
            min_anonymity_set=self.anonymity.min,
            timing_entropy=self.timing_entropy,
            unique_amount_ratio=self.unique_amount_ratio,
            address_reuse_rate=self.address_reuse_rate,
            privacy_score=privacy_score,
        )

    def to_dict(self) -> dict:
        return {
            "entropy_basis": self.entropy_basis,
            "timing": self.timing.to_dict(),
            "timing_pattern": {
                "has_pattern": self.timing_pattern.has_pattern,
                "dominant_buckets": list(self.timing_pattern.dominant_buckets),
                "confidence": self.timing_pattern.confidence,
            },
            "clustering": self.clustering,
            "amounts": self.amounts.to_dict(),
            "addresses": self.addresses.to_dict(),
            "anonymity": self.anonymity.to_dict(),
            "target_count": self.target_count,
            "matched_count": self.matched_count,
            "linkability_rate": self.linkability_rate,
            "splits": self.splits.to_dict() if self.splits else None,
            "confidential": self.confidential.to_dict() if self.confidential else None,
        }


class MetricsAggregator:
    """Computes AggregateMetrics for one protocol profile."""

    def __init__(self, profile: ProtocolProfile):
        self.profile = profile

    def _excluded_addresses(self) -> frozenset:
        return (
            frozenset(self.profile.pool_accounts)
            | frozenset(self.profile.program_ids)
            | self.profile.placeholder_addresses
        )

    def aggregate(
        self,
        events: Iterable[Event],
        matches: list[MatchCandidate],
        anonymity: list[AnonymitySetResult],
    ) -> AggregateMetrics:
        """
        Reduce one analysis run.

        Args:
            events: All classified events (UNKNOWN ones are ignored)
            matches: Accepted correlation matches
            anonymity: One anonymity-set result per known target

        Returns:
            AggregateMetrics
        """
        known = [e for e in events if e.is_known]
        basis = self.profile.effective_entropy_basis

        if basis == "match_deltas":
            values = [m.time_delta_ms for m in matches]
            pattern = detect_timing_patterns(values, self.profile.entropy_bucket_ms)
        else:
            values = [e.timestamp_ms for e in known]
            pattern = TimingPattern(False)

        profile = self.profile
        splits = None
        if profile.split_group_window_ms is not None:
            targets = [e for e in known if e.kind in profile.target_kinds]
            splits = detect_split_fingerprints(targets, profile.split_group_window_ms)
        confidential = None
        if profile.confidential_accounts:
            confidential = confidential_activity(
                known, self._excluded_addresses(), profile.immediate_conversion_ms
            )

        metrics = AggregateMetrics(
            entropy_basis=basis,
            timing=timing_distribution(values, self.profile.entropy_bucket_ms),
            timing_pattern=pattern,
            clustering=clustering_coefficient(e.timestamp_ms for e in known),
            amounts=amount_distribution(known),
            addresses=address_activity(known, exclude=self._excluded_addresses()),
            anonymity=AnonymitySetCalculator.statistics(anonymity),
            target_count=sum(1 for e in known if e.kind in self.profile.target_kinds),
            matched_count=len(matches),
            splits=splits,
            confidential=confidential,
        )

        logger.debug(
            f"{self.profile.protocol_id}: entropy={metrics.timing_entropy:.3f} "
            f"({metrics.timing_entropy_bits:.2f} bits, basis={basis}), "
            f"unique_amounts={metrics.unique_amount_ratio:.3f}, "
            f"address_reuse={metrics.address_reuse_rate:.3f}"
        )
        return metrics
