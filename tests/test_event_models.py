"""
Tests for the event and match value types.
"""

import pytest

from unveil.models.events import (
    Event,
    EventKind,
    MatchCandidate,
    ProtocolMetrics,
    RawInstruction,
    TokenBalance,
)


class TestEvent:
    """Test Event validation."""

    def test_unknown_cannot_carry_amount(self):
        with pytest.raises(ValueError, match="unknown events"):
            Event(id="x", protocol="p", kind=EventKind.UNKNOWN, timestamp_ms=0, amount=5)

    def test_negative_amount(self):
        with pytest.raises(ValueError):
            Event(id="x", protocol="p", kind=EventKind.DEPOSIT, timestamp_ms=0, amount=-1)

    def test_unknown_factory(self):
        event = Event.unknown("sig", "privacy-cash", timestamp_ms=10, slot=3)
        assert not event.is_known
        assert event.amount is None
        assert event.slot == 3

    def test_to_dict(self, make_event):
        data = make_event("dep1", amount=7, counterparty="userA").to_dict()
        assert data["kind"] == "deposit"
        assert data["amount"] == 7
        assert data["counterparty"] == "userA"
        assert data["auditor_key"] is None


class TestMatchCandidate:
    """Test MatchCandidate validation."""

    def test_confidence_range(self, make_event):
        source = make_event("s")
        target = make_event("t", EventKind.WITHDRAWAL, timestamp_ms=1)
        with pytest.raises(ValueError, match="confidence"):
            MatchCandidate(source=source, target=target, confidence=101.0, time_delta_ms=1)

    def test_to_dict(self, make_event):
        match = MatchCandidate(
            source=make_event("s", counterparty="userA"),
            target=make_event("t", EventKind.WITHDRAWAL, timestamp_ms=5, counterparty="userB"),
            confidence=95.0,
            time_delta_ms=5,
            reasons=("CRITICAL",),
            anonymity_set=1,
        )

        data = match.to_dict()

        assert data["source_address"] == "userA"
        assert data["target_address"] == "userB"
        assert data["reasons"] == ["CRITICAL"]


class TestProtocolMetrics:
    def test_ratio_bounds(self):
        with pytest.raises(ValueError, match="timing_entropy"):
            ProtocolMetrics(timing_entropy=1.5)

    def test_score_bounds(self):
        with pytest.raises(ValueError):
            ProtocolMetrics(privacy_score=101)

    def test_defaults(self):
        assert ProtocolMetrics().to_dict()["privacy_score"] == 0


def test_token_balance_plain_amount():
    balance = TokenBalance.from_dict(
        {"account_index": 1, "mint": "USDC", "owner": "userA", "amount": 25}
    )
    assert balance.amount == 25
    assert balance.account_index == 1


def test_token_balance_must_be_mapping():
    with pytest.raises(ValueError, match="mapping"):
        TokenBalance.from_dict("x")


class TestRawInstruction:
    """Test RawInstruction normalization."""

    def test_must_be_mapping(self):
        with pytest.raises(ValueError, match="mapping"):
            RawInstruction.from_dict("x")

    def test_parsed_instruction(self):
        instruction = RawInstruction.from_dict(
            {"programId": "P", "parsed": {"type": "confidentialTransfer", "info": {"mint": "M"}}}
        )
        assert instruction.parsed_type == "confidentialTransfer"
        assert instruction.parsed_info == {"mint": "M"}
        assert instruction.data == b""

    def test_parsed_info_must_be_mapping(self):
        with pytest.raises(ValueError, match="info"):
            RawInstruction.from_dict({"programId": "P", "parsed": {"type": "t", "info": [1]}})

    def test_byte_list(self):
        assert RawInstruction.from_dict({"programId": "P", "data": [1, 2, 3]}).data == b"\x01\x02\x03"

    def test_invalid_byte_list(self):
        with pytest.raises(ValueError, match="byte list"):
            RawInstruction.from_dict({"programId": "P", "data": [1, 300]})
