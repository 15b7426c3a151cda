"""
Amount Metrics.

Amount uniqueness is the main linkability signal of amount-visible
protocols: a deposit whose amount nobody else uses can be followed through
the pool by value alone.

Only events with a known amount are considered.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

import numpy as np

from unveil.models.events import Event

# Unique amounts above this (0.1 SOL) are flagged as linkable
SUSPICIOUS_UNIQUE_AMOUNT = 100_000_000

# Same address depositing the same exact amount this many times
SUSPICIOUS_REPEAT_COUNT = 3

TOP_AMOUNTS = 10


@dataclass(frozen=True)
class AmountDistribution:
    """
    Amount frequency summary.

    Attributes:
        counts: Amount -> number of events
        total_count: Events with a known amount
        singleton_count: Amounts used exactly once
        unique_ratio: distinct(amount) / total_count
        top_amounts: Most frequent (amount, count) pairs
        gini: Gini coefficient of the amounts (0 = all equal)
    """

    counts: dict[int, int] = field(default_factory=dict)
    total_count: int = 0
    singleton_count: int = 0
    unique_ratio: float = 0.0
    top_amounts: tuple[tuple[int, int], ...] = ()
    gini: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_count": self.total_count,
            "singleton_count": self.singleton_count,
            "unique_ratio": self.unique_ratio,
            "top_amounts": [{"amount": a, "count": c} for a, c in self.top_amounts],
            "gini": self.gini,
        }


@dataclass(frozen=True)
class SuspiciousAmount:
    amount: int
    address: str
    reason: str


def known_amounts(events: Iterable[Event]) -> list[int]:
    return [e.amount for e in events if e.is_known and e.amount is not None]


def unique_amount_ratio(events: Iterable[Event]) -> float:
    """
    distinct(amount) / count over events with a known amount.

    Returns:
        Ratio in [0, 1]; 0 when no event carries an amount
    """
    amounts = known_amounts(events)
    if not amounts:
        return 0.0
    return len(set(amounts)) / len(amounts)


def gini_coefficient(amounts: list[int]) -> float:
    """Gini coefficient; 0 for empty or all-zero input."""
    if not amounts:
        return 0.0
    arr = np.sort(np.array(amounts, dtype=float))
    total = arr.sum()
    if total <= 0:
        return 0.0
    n = len(arr)
    # Sorted-rank form of sum(|xi - xj|) / (2 * n * sum(x))
    ranks = np.arange(1, n + 1)
    return float(np.sum((2 * ranks - n - 1) * arr) / (n * total))


def amount_distribution(events: Iterable[Event], top: int = TOP_AMOUNTS) -> AmountDistribution:
    """Frequency summary of known amounts."""
    amounts = known_amounts(events)
    if not amounts:
        return AmountDistribution()

    counts = Counter(amounts)
    # Most frequent first; smaller amount first on equal counts
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return AmountDistribution(
        counts=dict(counts),
        total_count=len(amounts),
        singleton_count=sum(1 for c in counts.values() if c == 1),
        unique_ratio=len(counts) / len(amounts),
        top_amounts=tuple(ranked[:top]),
        gini=gini_coefficient(amounts),
    )


def find_common_denominations(events: Iterable[Event], min_count: int = 10) -> list[int]:
    """Top amounts used at least `min_count` times."""
    distribution = amount_distribution(events)
    return [amount for amount, count in distribution.top_amounts if count >= min_count]


def detect_suspicious_amounts(events: Iterable[Event], limit: int = 10) -> list[SuspiciousAmount]:
    """
    Flag amounts that make individual events linkable.

    - the same address used the same exact amount 3+ times
    - an amount above 0.1 SOL used by exactly one event
    """
    events = [e for e in events if e.is_known and e.amount is not None]
    findings = []

    by_address: dict[str, Counter] = defaultdict(Counter)
    for event in events:
        if event.counterparty:
            by_address[event.counterparty][event.amount] += 1

    for address in sorted(by_address):
        for amount, count in sorted(by_address[address].items()):
            if count >= SUSPICIOUS_REPEAT_COUNT:
                findings.append(
                    SuspiciousAmount(
                        amount, address, f"Same address used exact amount {count} times"
                    )
                )

    counts = Counter(e.amount for e in events)
    for event in events:
        if counts[event.amount] == 1 and event.amount > SUSPICIOUS_UNIQUE_AMOUNT:
            findings.append(
                SuspiciousAmount(
                    event.amount,
                    event.counterparty or "unknown",
                    "Unique amount makes this event easily linkable",
                )
            )

    return findings[:limit]


@dataclass(frozen=True)
class SplitFingerprints:
    """
    Split-output fingerprinting summary.

    Outputs landing within the grouping window of each other are treated as
    one swap split across several wallets; the sorted percentage split
    ("60-40", "50-30-20") identifies the user behind it.

    Attributes:
        group_count: Output groups (single outputs included)
        multi_output_groups: Groups with more than one output
        unique_patterns: Distinct split patterns among multi-output groups
        fingerprintable_rate: unique_patterns / multi_output_groups (0-1)
        patterns: Pattern -> number of groups using it
    """

    group_count: int = 0
    multi_output_groups: int = 0
    unique_patterns: int = 0
    fingerprintable_rate: float = 0.0
    patterns: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "group_count": self.group_count,
            "multi_output_groups": self.multi_output_groups,
            "unique_patterns": self.unique_patterns,
            "fingerprintable_rate": self.fingerprintable_rate,
            "patterns": dict(sorted(self.patterns.items())),
        }


def group_outputs(events: Iterable[Event], window_ms: int) -> list[list[Event]]:
    """Group amount-carrying events whose gap to the previous one is under the window."""
    ordered = sorted(
        (e for e in events if e.is_known and e.amount is not None),
        key=lambda e: (e.timestamp_ms, e.id),
    )
    groups: list[list[Event]] = []
    for event in ordered:
        if groups and event.timestamp_ms - groups[-1][-1].timestamp_ms < window_ms:
            groups[-1].append(event)
        else:
            groups.append([event])
    return groups


def split_pattern(amounts: list[int]) -> Optional[str]:
    """Sorted whole-percent split, e.g. [300, 700] -> "70-30"; None for a zero total."""
    total = sum(amounts)
    if total <= 0:
        return None
    shares = sorted((round(a / total * 100) for a in amounts), reverse=True)
    return "-".join(str(s) for s in shares)


def detect_split_fingerprints(events: Iterable[Event], window_ms: int) -> SplitFingerprints:
    """Fingerprint multi-output splits among target events."""
    groups = group_outputs(events, window_ms)
    patterns: Counter = Counter()
    multi = 0
    for group in groups:
        if len(group) < 2:
            continue
        pattern = split_pattern([e.amount for e in group])
        if pattern is None:
            continue
        multi += 1
        patterns[pattern] += 1

    return SplitFingerprints(
        group_count=len(groups),
        multi_output_groups=multi,
        unique_patterns=len(patterns),
        fingerprintable_rate=len(patterns) / multi if multi else 0.0,
        patterns=dict(patterns),
    )
