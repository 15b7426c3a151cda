"""
Confidential-Token Account Metrics.

Encrypted token balances hide amounts but not owners, so the leaks are at
the account level:

- an auditor key shared by many mints can decrypt all of their amounts
- accounts that mix public-amount conversions (deposit / withdraw) with
  confidential transfers let amounts be inferred from the public side
- funds converted back to public shortly after entering the confidential
  balance gain nothing from the encryption
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional

import numpy as np

from unveil.config.protocols import HOUR_MS
from unveil.metrics.addresses import event_addresses
from unveil.models.events import Event


@dataclass(frozen=True)
class ConfidentialActivity:
    """
    Account- and mint-level summary of confidential-token usage.

    Attributes:
        account_count: Distinct owners seen
        public_mix_rate: Owners with both public-amount and confidential events
        immediate_conversion_rate: Owners with 2+ events whose whole activity
            spans less than the conversion window, over owners with 2+ events
        avg_time_confidential_ms: Mean activity span of owners with 2+ events
        mint_count: Distinct mints seen
        mints_with_auditors: Mints carrying an auditor key
        unique_auditors: Distinct auditor keys
        auditor_centralization: Largest share of mints under one auditor
    """

    account_count: int = 0
    public_mix_rate: float = 0.0
    immediate_conversion_rate: float = 0.0
    avg_time_confidential_ms: float = 0.0
    mint_count: int = 0
    mints_with_auditors: int = 0
    unique_auditors: int = 0
    auditor_centralization: float = 0.0

    def to_dict(self) -> dict:
        return {
            "account_count": self.account_count,
            "public_mix_rate": self.public_mix_rate,
            "immediate_conversion_rate": self.immediate_conversion_rate,
            "avg_time_confidential_hours": self.avg_time_confidential_ms / HOUR_MS,
            "mint_count": self.mint_count,
            "mints_with_auditors": self.mints_with_auditors,
            "unique_auditors": self.unique_auditors,
            "auditor_centralization": self.auditor_centralization,
        }


def mint_auditors(events: Iterable[Event]) -> dict[str, Optional[str]]:
    """Mint -> earliest auditor key reported for it (None when never set)."""
    auditors: dict[str, Optional[str]] = {}
    for event in sorted(events, key=lambda e: (e.timestamp_ms, e.id)):
        if not event.is_known or not event.mint:
            continue
        if auditors.get(event.mint) is None:
            auditors[event.mint] = event.auditor_key
    return auditors


def auditor_centralization(auditors: dict[str, Optional[str]]) -> float:
    """Share of all mints controlled by the busiest auditor key; 0 without auditors."""
    per_auditor = Counter(key for key in auditors.values() if key)
    if not per_auditor:
        return 0.0
    return max(per_auditor.values()) / len(auditors)


def confidential_activity(
    events: Iterable[Event],
    exclude: Iterable[str] = (),
    immediate_window_ms: int = HOUR_MS,
) -> ConfidentialActivity:
    """
    Reduce confidential-token events to account and auditor metrics.

    Args:
        events: Classified events (UNKNOWN ones are ignored)
        exclude: Addresses that are not user accounts
        immediate_window_ms: Activity span below which an account counts as
            converting straight back to public

    Returns:
        ConfidentialActivity; all zeros on empty input
    """
    known = [e for e in events if e.is_known]
    if not known:
        return ConfidentialActivity()

    skip = frozenset(exclude)
    first: dict[str, int] = {}
    last: dict[str, int] = {}
    counts: Counter = Counter()
    public: set[str] = set()
    hidden: set[str] = set()

    for event in known:
        for account in event_addresses(event, skip):
            first[account] = min(first.get(account, event.timestamp_ms), event.timestamp_ms)
            last[account] = max(last.get(account, event.timestamp_ms), event.timestamp_ms)
            counts[account] += 1
            (hidden if event.amount is None else public).add(account)

    spans = np.array(
        [last[a] - first[a] for a in counts if counts[a] > 1], dtype=float
    )
    auditors = mint_auditors(known)

    return ConfidentialActivity(
        account_count=len(counts),
        public_mix_rate=len(public & hidden) / len(counts) if counts else 0.0,
        immediate_conversion_rate=(
            float(np.mean(spans < immediate_window_ms)) if len(spans) else 0.0
        ),
        avg_time_confidential_ms=float(np.mean(spans)) if len(spans) else 0.0,
        mint_count=len(auditors),
        mints_with_auditors=sum(1 for key in auditors.values() if key),
        unique_auditors=len({key for key in auditors.values() if key}),
        auditor_centralization=auditor_centralization(auditors),
    )
