"""
Tests for confidential-token account metrics.

Test Coverage:
    - Auditor-key centralization across mints
    - Accounts mixing public-amount and confidential activity
    - Immediate conversion back to public balances
"""

import pytest

from unveil.config.protocols import DAY_MS, HOUR_MS
from unveil.metrics.confidential import (
    ConfidentialActivity,
    auditor_centralization,
    confidential_activity,
    mint_auditors,
)
from unveil.models.events import Event, EventKind

DEP = EventKind.DEPOSIT
WD = EventKind.WITHDRAWAL
XFER = EventKind.TRANSFER_IN


@pytest.fixture
def ct_event():
    """Factory for confidential-transfer events."""

    def _make(event_id, kind=DEP, timestamp_ms=0, amount=100, owner="userA",
              counterparty=None, mint="M1", auditor_key=None):
        return Event(
            id=event_id,
            protocol="confidential-transfers",
            kind=kind,
            timestamp_ms=timestamp_ms,
            amount=None if kind is XFER else amount,
            counterparty=counterparty or owner,
            sender=owner,
            mint=mint,
            auditor_key=auditor_key,
        )

    return _make


class TestAuditors:
    """Tests for mint auditor extraction and centralization."""

    def test_shared_auditor(self, ct_event):
        events = [
            ct_event("a", mint="M1", auditor_key="aud1"),
            ct_event("b", mint="M2", auditor_key="aud1"),
            ct_event("c", mint="M3"),
        ]

        auditors = mint_auditors(events)

        assert auditors == {"M1": "aud1", "M2": "aud1", "M3": None}
        assert auditor_centralization(auditors) == pytest.approx(2 / 3)

    def test_later_event_supplies_missing_auditor(self, ct_event):
        events = [
            ct_event("b", timestamp_ms=10, mint="M1", auditor_key="aud1"),
            ct_event("a", timestamp_ms=0, mint="M1"),
        ]
        assert mint_auditors(events) == {"M1": "aud1"}

    def test_no_auditors(self):
        assert auditor_centralization({"M1": None}) == 0.0
        assert auditor_centralization({}) == 0.0


class TestConfidentialActivity:
    """Tests for confidential_activity."""

    def test_public_mix_rate(self, ct_event):
        events = [
            ct_event("dep", DEP, owner="userA"),
            ct_event("tx", XFER, timestamp_ms=DAY_MS, owner="userA", counterparty="userB"),
        ]

        activity = confidential_activity(events)

        assert activity.account_count == 2
        # userA saw both sides, userB only the confidential transfer
        assert activity.public_mix_rate == 0.5

    def test_immediate_conversion(self, ct_event):
        events = [
            ct_event("a1", DEP, timestamp_ms=0, owner="userA"),
            ct_event("a2", WD, timestamp_ms=10 * 60 * 1000, owner="userA"),
            ct_event("c1", DEP, timestamp_ms=0, owner="userC"),
            ct_event("c2", WD, timestamp_ms=2 * DAY_MS, owner="userC"),
            ct_event("d1", DEP, timestamp_ms=0, owner="userD"),
        ]

        activity = confidential_activity(events, immediate_window_ms=HOUR_MS)

        assert activity.immediate_conversion_rate == 0.5
        assert activity.avg_time_confidential_ms == pytest.approx((10 * 60 * 1000 + 2 * DAY_MS) / 2)

    def test_excluded_addresses(self, ct_event):
        events = [ct_event("a", owner="userA", counterparty="vault")]
        assert confidential_activity(events, exclude=["vault"]).account_count == 1

    def test_mint_summary(self, ct_event):
        events = [
            ct_event("a", mint="M1", auditor_key="aud1"),
            ct_event("b", mint="M2", auditor_key="aud2"),
        ]

        activity = confidential_activity(events)

        assert activity.mint_count == 2
        assert activity.mints_with_auditors == 2
        assert activity.unique_auditors == 2
        assert activity.auditor_centralization == 0.5

    def test_unknown_events_ignored(self):
        events = [Event.unknown("u", "confidential-transfers")]
        assert confidential_activity(events) == ConfidentialActivity()

    def test_empty(self):
        activity = confidential_activity([])

        assert activity == ConfidentialActivity()
        assert activity.to_dict()["avg_time_confidential_hours"] == 0.0
