"""
Privacy Scoring Engine.

Combines the aggregate metrics of one protocol into a weighted 0-100
privacy score with a human-readable rationale per component.

Components (default weights 40/30/30):
- anonymity: average anonymity-set size against a target (100 sources)
- timing: raw timing entropy in bits against a target (5 bits)
- amount: 1 - unique-amount ratio (amount-visible protocols)
- address: 1 - address-reuse rate, replacing the amount component for
  protocols that hide amounts but expose addresses; those protocols also
  pay a fixed structural penalty for plaintext address exposure

A component with no samples scores NEUTRAL_BASELINE: absence of data is
never rewarded with full marks. Scoring never raises.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional

from unveil.config.protocols import ProtocolProfile

# Score for a component that has no samples to judge
NEUTRAL_BASELINE = 50.0

# Component score below which a recommendation is emitted
RECOMMENDATION_THRESHOLD = 70.0

GRADE_THRESHOLDS = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _usable(value: Optional[float]) -> bool:
    return value is not None and math.isfinite(value)


@dataclass(frozen=True)
class ScoreInputs:
    """
    Metrics the scoring engine consumes.

    Sample counts distinguish "measured zero" from "nothing to measure".
    """

    avg_anonymity_set: float = 0.0
    anonymity_samples: int = 0
    timing_entropy_bits: float = 0.0
    timing_samples: int = 0
    unique_amount_ratio: float = 0.0
    amount_samples: int = 0
    address_reuse_rate: float = 0.0
    address_samples: int = 0

    @classmethod
    def from_aggregate(cls, metrics) -> "ScoreInputs":
        """Build from an AggregateMetrics value."""
        return cls(
            avg_anonymity_set=metrics.anonymity.mean,
            anonymity_samples=metrics.anonymity.count,
            timing_entropy_bits=metrics.timing_entropy_bits,
            timing_samples=metrics.timing.sample_count,
            unique_amount_ratio=metrics.unique_amount_ratio,
            amount_samples=metrics.amounts.total_count,
            address_reuse_rate=metrics.address_reuse_rate,
            address_samples=metrics.addresses.distinct_addresses,
        )


@dataclass(frozen=True)
class PrivacyScore:
    """
    Scoring result.

    Attributes:
        total: Composite score (0-100)
        components: Component name -> unweighted score (0-100)
        rationale: Component name -> explanation
        weights: Component name -> weight
        penalty: Structural penalty subtracted from the weighted sum
    """

    total: int
    components: dict[str, float] = field(default_factory=dict)
    rationale: dict[str, str] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)
    penalty: float = 0.0

    @property
    def grade(self) -> str:
        return grade(self.total)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "grade": self.grade,
            "components": {k: round(v, 2) for k, v in self.components.items()},
            "rationale": dict(self.rationale),
            "weights": dict(self.weights),
            "penalty": self.penalty,
        }


@dataclass(frozen=True)
class ProtocolComparison:
    winner: str
    score_diff: float
    anonymity_diff: float
    timing_diff: float
    amount_privacy_diff: float
    summary: str


def grade(score: float) -> str:
    """Letter grade: A (>= 90) to F (< 60)."""
    for threshold, letter in GRADE_THRESHOLDS:
        if score >= threshold:
            return letter
    return "F"


def anonymity_details(avg_anonymity_set: float) -> str:
    if avg_anonymity_set < 10:
        return "Weak - Very small anonymity sets make tracking easier"
    if avg_anonymity_set < 30:
        return "Fair - Moderate anonymity sets provide some privacy"
    if avg_anonymity_set < 100:
        return "Good - Large anonymity sets make tracking difficult"
    return "Excellent - Very large anonymity sets provide strong privacy"


def timing_details(entropy_bits: float) -> str:
    if entropy_bits < 2:
        return "Weak - Predictable timing patterns leak information"
    if entropy_bits < 3.5:
        return "Fair - Some timing variation but patterns exist"
    if entropy_bits < 5:
        return "Good - Random timing makes correlation harder"
    return "Excellent - Highly random timing provides strong protection"


def amount_details(unique_ratio: float) -> str:
    if unique_ratio > 0.7:
        return "Weak - Too many unique amounts create linkability"
    if unique_ratio > 0.4:
        return "Fair - Moderate use of common amounts"
    if unique_ratio > 0.2:
        return "Good - Most deposits use common amounts"
    return "Excellent - Strong standardization on common amounts"


def address_details(reuse_rate: float) -> str:
    if reuse_rate > 0.3:
        return "Weak - Reused addresses enable clustering attacks"
    if reuse_rate > 0.1:
        return "Fair - Some addresses are reused across transfers"
    return "Good - Addresses are rarely reused"


NO_DATA = "No data - neutral baseline applied"


class ScoringEngine:
    """Weighted privacy scoring for one protocol profile."""

    def __init__(self, profile: ProtocolProfile):
        self.profile = profile

    @property
    def third_component(self) -> str:
        """'address' for amount-hidden protocols, 'amount' otherwise."""
        return "address" if self.profile.addresses_visible else "amount"

    def score(self, inputs: ScoreInputs) -> PrivacyScore:
        """
        Score one protocol.

        Args:
            inputs: Aggregate metrics (see ScoreInputs.from_aggregate)

        Returns:
            PrivacyScore with total clamped to [0, 100]
        """
        profile = self.profile
        components: dict[str, float] = {}
        rationale: dict[str, str] = {}

        # Anonymity
        if inputs.anonymity_samples > 0 and _usable(inputs.avg_anonymity_set):
            components["anonymity"] = _clamp(
                inputs.avg_anonymity_set / profile.anonymity_target * 100
            )
            rationale["anonymity"] = anonymity_details(inputs.avg_anonymity_set)
        else:
            components["anonymity"] = NEUTRAL_BASELINE
            rationale["anonymity"] = NO_DATA

        # Timing
        if inputs.timing_samples > 0 and _usable(inputs.timing_entropy_bits):
            components["timing"] = _clamp(
                inputs.timing_entropy_bits / profile.entropy_target_bits * 100
            )
            rationale["timing"] = timing_details(inputs.timing_entropy_bits)
        else:
            components["timing"] = NEUTRAL_BASELINE
            rationale["timing"] = NO_DATA

        # Amount, or address reuse when amounts are hidden
        third = self.third_component
        if third == "address":
            value, samples, details = (
                inputs.address_reuse_rate,
                inputs.address_samples,
                address_details,
            )
        else:
            value, samples, details = (
                inputs.unique_amount_ratio,
                inputs.amount_samples,
                amount_details,
            )
        if samples > 0 and _usable(value):
            components[third] = _clamp((1 - value) * 100)
            rationale[third] = details(value)
        else:
            components[third] = NEUTRAL_BASELINE
            rationale[third] = NO_DATA

        weights = {
            "anonymity": profile.weights["anonymity"],
            "timing": profile.weights["timing"],
            third: profile.weights["amount"],
        }
        weighted = sum(components[name] * weights[name] for name in weights)

        penalty = 0.0
        if profile.addresses_visible:
            penalty = profile.address_exposure_penalty
            rationale["penalty"] = (
                f"-{penalty:g} points: sender and recipient addresses are visible on-chain"
            )

        total = int(_clamp(round(weighted - penalty)))
        return PrivacyScore(
            total=total,
            components=components,
            rationale=rationale,
            weights=weights,
            penalty=penalty,
        )

    @staticmethod
    def recommendations(score: PrivacyScore) -> list[str]:
        """Actionable advice for every component below 70."""
        advice = {
            "anonymity": "Increase anonymity set by encouraging more deposits "
            "or waiting longer before withdrawing",
            "timing": "Vary withdrawal timing more to reduce predictable patterns",
            "amount": "Use standardized amounts (0.1, 1, 10 SOL) to improve mixing",
            "address": "Use a fresh address for every transfer to prevent clustering",
        }
        result = [
            advice[name]
            for name, value in score.components.items()
            if value < RECOMMENDATION_THRESHOLD and name in advice
        ]
        if score.penalty > 0:
            result.append(
                "Amount hiding alone is insufficient - combine with address privacy "
                "(stealth addresses or external mixing)"
            )
        if not result:
            result.append("Good privacy practices! Keep up the strong operational security.")
        return result

    @staticmethod
    def compare(first, second) -> ProtocolComparison:
        """
        Compare two protocol reports.

        Both arguments need protocol, privacy_score, avg_anonymity_set,
        timing_entropy and unique_amount_ratio attributes (ProtocolReport or
        ProtocolMetrics with a protocol name).
        """
        score_diff = first.privacy_score - second.privacy_score
        anonymity_diff = first.avg_anonymity_set - second.avg_anonymity_set
        timing_diff = first.timing_entropy - second.timing_entropy
        # Lower uniqueness is better
        amount_diff = second.unique_amount_ratio - first.unique_amount_ratio

        winner = first.protocol if score_diff > 0 else second.protocol
        if abs(score_diff) < 5:
            summary = "Both protocols provide similar privacy levels. "
        else:
            summary = f"{winner} provides better overall privacy. "
        if abs(anonymity_diff) > 20:
            better = first.protocol if anonymity_diff > 0 else second.protocol
            summary += f"{better} has significantly larger anonymity sets. "

        return ProtocolComparison(
            winner=winner,
            score_diff=score_diff,
            anonymity_diff=anonymity_diff,
            timing_diff=timing_diff,
            amount_privacy_diff=amount_diff,
            summary=summary.strip(),
        )
