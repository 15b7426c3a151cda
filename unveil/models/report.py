"""
Pydantic models for per-protocol privacy reports.

ProtocolReport is the JSON-serializable output of one analysis run; it is
what the report repository persists and what the CLI writes.

Maps to: privacy_reports table in DuckDB (report_json column)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from unveil.models.events import MatchCandidate


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class MatchRecord(BaseModel):
    """Serializable view of an accepted MatchCandidate."""

    source_id: str = Field(..., description="Source event signature")
    target_id: str = Field(..., description="Target event signature")
    source_address: Optional[str] = Field(None, description="Depositor / sender")
    target_address: Optional[str] = Field(None, description="Recipient")
    source_amount: Optional[int] = Field(None, ge=0)
    target_amount: Optional[int] = Field(None, ge=0)
    confidence: float = Field(..., ge=0, le=100, description="Link confidence 0-100")
    time_delta_ms: int = Field(..., description="target.timestamp - source.timestamp")
    anonymity_set: int = Field(..., ge=0)
    reasons: list[str] = Field(default_factory=list)

    @classmethod
    def from_candidate(cls, match: MatchCandidate) -> "MatchRecord":
        return cls(
            source_id=match.source.id,
            target_id=match.target.id,
            source_address=match.source.counterparty,
            target_address=match.target.counterparty,
            source_amount=match.source.amount,
            target_amount=match.target.amount,
            confidence=match.confidence,
            time_delta_ms=match.time_delta_ms,
            anonymity_set=match.anonymity_set,
            reasons=list(match.reasons),
        )


class ProtocolReport(BaseModel):
    """
    Privacy report for one protocol.

    All ratios are in [0, 1]; privacy_score is an integer in [0, 100].
    """

    protocol: str = Field(..., description="Protocol profile id")
    privacy_score: int = Field(..., ge=0, le=100)
    grade: str = Field("F", description="Letter grade A-F")
    total_events: int = Field(..., ge=0, description="Classified events, UNKNOWN included")
    unknown_events: int = Field(0, ge=0)
    matched_pairs: int = Field(0, ge=0)
    linkability_rate: float = Field(0.0, ge=0, le=1)
    avg_anonymity_set: float = Field(0.0, ge=0)
    median_anonymity_set: float = Field(0.0, ge=0)
    min_anonymity_set: int = Field(0, ge=0)
    timing_entropy: float = Field(0.0, ge=0, le=1)
    unique_amount_ratio: float = Field(0.0, ge=0, le=1)
    address_reuse_rate: float = Field(0.0, ge=0, le=1)
    vulnerabilities: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    matches: list[MatchRecord] = Field(default_factory=list)
    score_components: dict[str, float] = Field(default_factory=dict)
    score_rationale: dict[str, str] = Field(default_factory=dict)
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Report generation time",
    )

    @field_validator("grade")
    @classmethod
    def validate_grade(cls, v: str) -> str:
        """Validate grade letter."""
        if v not in ("A", "B", "C", "D", "F"):
            raise ValueError(f"Invalid grade: {v}")
        return v

    @field_validator("matched_pairs")
    @classmethod
    def validate_matched_pairs(cls, v: int, info) -> int:
        """Matched pairs cannot exceed the number of events."""
        total = info.data.get("total_events")
        if total is not None and v > total:
            raise ValueError(f"matched_pairs {v} exceeds total_events {total}")
        return v

    def to_json_dict(self) -> dict:
        """camelCase dictionary in the published report shape."""
        data = self.model_dump(mode="json")
        result = {_camel(k): v for k, v in data.items() if k != "matches"}
        result["matches"] = [{_camel(k): v for k, v in m.items()} for m in data["matches"]]
        return result

    def to_db_dict(self) -> dict:
        """Convert to dictionary for database insertion."""
        return {
            "protocol": self.protocol,
            "privacy_score": self.privacy_score,
            "generated_at": self.generated_at,
            "report_json": self.model_dump_json(),
        }
