"""Correlation Attack Module.

Links source events (deposits, outgoing transfers) to target events
(withdrawals, incoming transfers) the way a realistic attacker would:

- Address-visible protocols: sender and recipient are plaintext, so a
  target with both endpoints concrete is linked outright (confidence 100)
- Amount-visible protocols: greedy timing + amount matching. Each target,
  in time order, picks the best-scoring unconsumed source whose amount fits
  the fee-tolerance interval; that source is then consumed

The greedy matcher is deliberately order-dependent and not globally
optimal. Anonymity sets are computed separately (see anonymity_set.py) and
are not affected by consumption.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from unveil.config.protocols import HOUR_MS, ProtocolProfile
from unveil.models.events import Event, MatchCandidate

logger = logging.getLogger(__name__)


def _sort_key(event: Event) -> tuple[int, str]:
    return (event.timestamp_ms, event.id)


def amount_ratio_in_tolerance(
    source: Event, target: Event, tolerance: tuple[float, float]
) -> bool:
    """True when target.amount / source.amount lies within the interval."""
    if source.amount is None or target.amount is None or source.amount <= 0:
        return False
    ratio = target.amount / source.amount
    return tolerance[0] <= ratio <= tolerance[1]


def delay_in_window(
    delta_ms: int, min_delay_ms: int, max_delay_ms: Optional[int]
) -> bool:
    """Strictly positive delay within [min_delay_ms, max_delay_ms]."""
    if delta_ms <= 0 or delta_ms < min_delay_ms:
        return False
    return max_delay_ms is None or delta_ms <= max_delay_ms


def base_score(candidate_count: int, tiers) -> float:
    """Base certainty from candidate-set size (smaller set, higher score)."""
    for max_size, score in tiers:
        if max_size is None or candidate_count <= max_size:
            return score
    return tiers[-1][1]


def round_interval_bonus(delta_ms: int, bonuses) -> tuple[float, Optional[float]]:
    """Bonus when the delay sits on a habitual round interval.

    Returns:
        Tuple of (bonus, matched interval in hours or None)
    """
    hours = delta_ms / HOUR_MS
    for interval_hours, tolerance_hours, bonus in bonuses:
        if abs(hours - interval_hours) < tolerance_hours:
            return bonus, interval_hours
    return 0.0, None


def describe_anonymity_set(size: int) -> str:
    if size <= 0:
        return "No plausible source inside the anonymity window"
    if size == 1:
        return "CRITICAL: only 1 source matches (uniquely identifiable)"
    if size <= 5:
        return f"HIGH RISK: only {size} possible sources"
    if size <= 20:
        return f"MEDIUM RISK: {size} possible sources"
    return f"LOW RISK: {size} possible sources"


def describe_delay(delta_ms: int, interval_hours: Optional[float]) -> str:
    hours = delta_ms // HOUR_MS
    days = hours // 24
    if interval_hours is not None:
        return f"Withdrawn ~{interval_hours:g}h later (predictable pattern)"
    if days == 0:
        return f"Withdrawn same day ({hours}h delay)"
    return f"Withdrawn {days}d {hours % 24}h later"


class CorrelationEngine:
    """Greedy source -> target matcher parameterized by a protocol profile."""

    def __init__(self, profile: ProtocolProfile):
        self.profile = profile

    # ------------------------------------------------------------------
    # Candidate predicate (shared with the anonymity-set calculator)
    # ------------------------------------------------------------------

    def is_candidate(
        self,
        source: Event,
        target: Event,
        max_delay_ms: Optional[int] = None,
        require_amounts: bool = True,
    ) -> bool:
        """Timing and amount predicate for a source -> target link.

        Args:
            source: Candidate source event
            target: Target event
            max_delay_ms: Override of the profile's maximum delay
            require_amounts: When False, a missing amount on either side
                skips the amount check instead of rejecting the pair
        """
        limit = self.profile.max_delay_ms if max_delay_ms is None else max_delay_ms
        delta = target.timestamp_ms - source.timestamp_ms
        if not delay_in_window(delta, self.profile.min_delay_ms, limit):
            return False
        if source.amount is None or target.amount is None:
            # Amount hidden on either side: timing alone decides
            return self.profile.addresses_visible or not require_amounts
        return amount_ratio_in_tolerance(source, target, self.profile.fee_tolerance)

    def plaintext_source(
        self,
        target: Event,
        sources: list[Event],
        consumed: Optional[set[str]] = None,
    ) -> Optional[Event]:
        """Source revealed in plaintext for an address-visible target.

        Returns the latest source at or before the target whose counterparty
        is the target's sender, the target itself when the transaction shows
        both endpoints but no earlier source exists, or None when the target
        is not a plaintext link.
        """
        profile = self.profile
        if not (
            profile.is_visible_address(target.sender)
            and profile.is_visible_address(target.counterparty)
        ):
            return None

        consumed = consumed or set()
        best = None
        for source in sources:
            if source.id in consumed or source.id == target.id:
                continue
            if source.counterparty != target.sender:
                continue
            if source.timestamp_ms > target.timestamp_ms:
                continue
            if best is None or _sort_key(source) > _sort_key(best):
                best = source
        if best is None and target.id not in consumed:
            return target
        return best

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def correlate(
        self,
        sources: Iterable[Event],
        targets: Iterable[Event],
        anonymity_sizes: Optional[dict[str, int]] = None,
    ) -> list[MatchCandidate]:
        """Run the correlation attack.

        Args:
            sources: Source events (UNKNOWN events are ignored)
            targets: Target events (UNKNOWN events are ignored)
            anonymity_sizes: Target id -> anonymity-set size used to label
                each match. Targets missing here are labelled with their
                candidate count before any source was consumed.

        Returns:
            Accepted MatchCandidates in target time order; each source appears
            at most once. Empty input yields an empty list.
        """
        source_list = sorted((e for e in sources if e.is_known), key=_sort_key)
        target_list = sorted((e for e in targets if e.is_known), key=_sort_key)

        if not target_list:
            return []

        if self.profile.addresses_visible:
            matches = self._correlate_plaintext(source_list, target_list)
        else:
            if not source_list:
                return []
            matches = self._correlate_amounts(source_list, target_list, anonymity_sizes or {})

        logger.info(
            f"{self.profile.protocol_id}: matched {len(matches)}/{len(target_list)} targets "
            f"against {len(source_list)} sources"
        )
        return matches

    def _correlate_plaintext(
        self, sources: list[Event], targets: list[Event]
    ) -> list[MatchCandidate]:
        matches = []
        consumed: set[str] = set()

        for target in targets:
            source = self.plaintext_source(target, sources, consumed)
            if source is None:
                continue
            consumed.add(source.id)
            reasons = ["Address link visible on-chain - not a correlation"]
            if source is not target:
                reasons.append(f"Sender {target.sender} previously funded via {source.id}")
            matches.append(
                MatchCandidate(
                    source=source,
                    target=target,
                    confidence=100.0,
                    time_delta_ms=target.timestamp_ms - source.timestamp_ms,
                    reasons=tuple(reasons),
                    anonymity_set=1,
                )
            )
        return matches

    def _correlate_amounts(
        self, sources: list[Event], targets: list[Event], anonymity_sizes: dict[str, int]
    ) -> list[MatchCandidate]:
        profile = self.profile
        matches = []
        consumed: set[str] = set()

        for target in targets:
            fitting = [s for s in sources if self.is_candidate(s, target)]
            candidates = [s for s in fitting if s.id not in consumed]
            if not candidates:
                logger.debug(f"{target.id}: no viable source")
                continue

            # Score on what is left; label with the set size before consumption
            base = base_score(len(candidates), profile.base_score_tiers)
            set_size = anonymity_sizes.get(target.id, len(fitting))
            scored = []
            for source in candidates:
                delta = target.timestamp_ms - source.timestamp_ms
                bonus, interval = round_interval_bonus(delta, profile.round_interval_bonuses)
                score = min(base + bonus, profile.confidence_cap)
                scored.append((score, delta, source.id, source, interval))

            # Highest score, then smallest delay, then source id
            scored.sort(key=lambda item: (-item[0], item[1], item[2]))
            score, delta, _, source, interval = scored[0]

            if score < profile.min_score:
                logger.debug(f"{target.id}: best score {score:.2f} below floor {profile.min_score}")
                continue

            consumed.add(source.id)
            matches.append(
                MatchCandidate(
                    source=source,
                    target=target,
                    confidence=round(score * 100, 2),
                    time_delta_ms=delta,
                    reasons=(
                        describe_anonymity_set(set_size),
                        describe_delay(delta, interval),
                        f"{len(candidates)} unclaimed matching sources out of {len(sources)} total",
                    ),
                    anonymity_set=set_size,
                )
            )
        return matches


def correlate(
    sources: Iterable[Event],
    targets: Iterable[Event],
    profile: ProtocolProfile,
    anonymity_sizes: Optional[dict[str, int]] = None,
) -> list[MatchCandidate]:
    """Functional wrapper around CorrelationEngine.correlate."""
    return CorrelationEngine(profile).correlate(sources, targets, anonymity_sizes)
