"""
Address Metrics.

Address reuse only matters where addresses are visible: every reused
address joins otherwise unrelated events into one cluster.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from unveil.models.events import Event


@dataclass(frozen=True)
class AddressActivity:
    """Per-protocol address usage summary."""

    distinct_addresses: int = 0
    reused_addresses: int = 0
    reuse_rate: float = 0.0
    avg_events_per_address: float = 0.0

    def to_dict(self) -> dict:
        return {
            "distinct_addresses": self.distinct_addresses,
            "reused_addresses": self.reused_addresses,
            "reuse_rate": self.reuse_rate,
            "avg_events_per_address": self.avg_events_per_address,
        }


def event_addresses(event: Event, exclude: frozenset = frozenset()) -> set[str]:
    """Concrete addresses an event exposes (counterparty and sender)."""
    return {a for a in (event.counterparty, event.sender) if a and a not in exclude}


def address_counts(events: Iterable[Event], exclude: Iterable[str] = ()) -> Counter:
    """Number of events each address appears in.

    Pool accounts and placeholders belong in `exclude`: they sit on every
    event and would read as universal reuse.
    """
    skip = frozenset(exclude)
    counts: Counter = Counter()
    for event in events:
        if event.is_known:
            counts.update(event_addresses(event, skip))
    return counts


def address_reuse_rate(events: Iterable[Event], exclude: Iterable[str] = ()) -> float:
    """
    Share of distinct addresses appearing in more than one event.

    Returns:
        Rate in [0, 1]; 0 when no event exposes an address
    """
    counts = address_counts(events, exclude)
    if not counts:
        return 0.0
    return sum(1 for c in counts.values() if c > 1) / len(counts)


def address_activity(events: Iterable[Event], exclude: Iterable[str] = ()) -> AddressActivity:
    counts = address_counts(events, exclude)
    if not counts:
        return AddressActivity()
    reused = sum(1 for c in counts.values() if c > 1)
    return AddressActivity(
        distinct_addresses=len(counts),
        reused_addresses=reused,
        reuse_rate=reused / len(counts),
        avg_events_per_address=sum(counts.values()) / len(counts),
    )
