"""Correlation and Scoring Module.

Heuristic de-anonymization attacks over classified events.

Public API:
- CorrelationEngine / correlate: Greedy source -> target matching
- AnonymitySetCalculator / anonymity_set: Plausible sources per target
- ScoringEngine: Weighted 0-100 privacy score

Full per-protocol reports live in unveil.analysis.pipeline (it depends on
unveil.metrics, which depends on this package).
"""

from unveil.analysis.anonymity_set import (
    AnonymitySetCalculator,
    AnonymitySetStatistics,
    AnonymitySnapshot,
    anonymity_set,
    vulnerability_level,
)
from unveil.analysis.correlation import CorrelationEngine, correlate
from unveil.analysis.scoring import (
    NEUTRAL_BASELINE,
    PrivacyScore,
    ProtocolComparison,
    ScoreInputs,
    ScoringEngine,
    grade,
)

__all__ = [
    # Anonymity sets
    "AnonymitySetCalculator",
    "AnonymitySetStatistics",
    "AnonymitySnapshot",
    "anonymity_set",
    "vulnerability_level",
    # Correlation
    "CorrelationEngine",
    "correlate",
    # Scoring
    "NEUTRAL_BASELINE",
    "PrivacyScore",
    "ProtocolComparison",
    "ScoreInputs",
    "ScoringEngine",
    "grade",
]
