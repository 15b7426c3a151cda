"""Data models for privacy-protocol analysis."""

from unveil.models.events import (
    AnonymitySetResult,
    Event,
    EventKind,
    MatchCandidate,
    ProtocolMetrics,
    RawInstruction,
    RawTransaction,
    TokenBalance,
)
from unveil.models.report import MatchRecord, ProtocolReport

__all__ = [
    "AnonymitySetResult",
    "Event",
    "EventKind",
    "MatchCandidate",
    "MatchRecord",
    "ProtocolMetrics",
    "ProtocolReport",
    "RawInstruction",
    "RawTransaction",
    "TokenBalance",
]
