"""
Protocol Analysis Pipeline.

Runs the full de-anonymization analysis for one protocol:

    raw transactions -> classify_batch -> events
    events -> {anonymity sets, correlation, metrics} -> scoring -> report

Each run is pure and self-contained, so several protocols can be analyzed
in parallel (analyze_protocols) with every worker owning its own inputs.

Usage:
    from unveil.analysis.pipeline import analyze_protocol

    report = analyze_protocol(raw_txs, ProtocolRegistry.require("privacy-cash"))
    print(report.privacy_score)
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, Optional, Union

from unveil.analysis.anonymity_set import (
    DEFAULT_WEAK_THRESHOLD,
    AnonymitySetCalculator,
    vulnerability_level,
)
from unveil.analysis.correlation import CorrelationEngine
from unveil.analysis.scoring import ScoreInputs, ScoringEngine
from unveil.classifier.event_classifier import classify_batch
from unveil.config.protocols import HOUR_MS, ProtocolProfile, ProtocolRegistry
from unveil.metrics.aggregator import AggregateMetrics, MetricsAggregator
from unveil.metrics.amounts import detect_suspicious_amounts
from unveil.metrics.timing import recommend_timing
from unveil.models.events import AnonymitySetResult, Event, MatchCandidate, RawTransaction
from unveil.models.report import MatchRecord, ProtocolReport

logger = logging.getLogger(__name__)

# Linkability above this share of targets is reported as high risk
HIGH_LINKABILITY_RATE = 0.5

# Address reuse above this share is reported as high risk
HIGH_ADDRESS_REUSE_RATE = 0.3

# Unique-amount ratio above this is reported as high risk
HIGH_UNIQUE_AMOUNT_RATIO = 0.7

# Average anonymity set below this is reported as weak
WEAK_AVG_ANONYMITY_SET = 10

# Share of multi-output swaps with a one-off split pattern
HIGH_FINGERPRINTABLE_RATE = 0.5

# Largest share of mints one auditor key may decrypt
HIGH_AUDITOR_CENTRALIZATION = 0.5

# Share of accounts mixing public-amount and confidential activity
HIGH_PUBLIC_MIX_RATE = 0.3

# Share of accounts converting back to public within the conversion window
HIGH_IMMEDIATE_CONVERSION_RATE = 0.5


def split_events(events: Iterable[Event], profile: ProtocolProfile) -> tuple[list[Event], list[Event]]:
    """Split known events into (sources, targets) by the profile's kinds."""
    sources, targets = [], []
    for event in events:
        if not event.is_known:
            continue
        if event.kind in profile.source_kinds:
            sources.append(event)
        elif event.kind in profile.target_kinds:
            targets.append(event)
    return sources, targets


def identify_vulnerabilities(
    profile: ProtocolProfile,
    metrics: AggregateMetrics,
    anonymity: list[AnonymitySetResult],
    events: list[Event],
    weak_threshold: int = DEFAULT_WEAK_THRESHOLD,
) -> list[str]:
    """Human-readable findings, most severe first."""
    findings = []
    linkability = round(metrics.linkability_rate * 100)

    if profile.addresses_visible:
        findings.append(
            f"CRITICAL: Sender and recipient addresses are visible on-chain in "
            f"{linkability}% of transfers"
        )
        findings.append(
            "CRITICAL: Amount hiding alone leaves the transaction graph fully analyzable"
        )
    else:
        unique = sum(1 for r in anonymity if r.size == 1)
        orphaned = sum(1 for r in anonymity if r.size == 0)
        if unique:
            findings.append(
                f"CRITICAL: {unique} withdrawals have an anonymity set of 1 (fully linkable)"
            )
        if metrics.linkability_rate > HIGH_LINKABILITY_RATE:
            findings.append(
                f"HIGH: {linkability}% of withdrawals linked to a deposit by timing and amount"
            )
        if orphaned:
            findings.append(
                f"INFO: {orphaned} withdrawals have no plausible source in the observed window "
                "(anonymity set 0)"
            )
        weak = AnonymitySetCalculator.find_weak_sets(anonymity, weak_threshold)
        if weak:
            findings.append(
                f"MEDIUM: {len(weak)} withdrawals hide among fewer than {weak_threshold} sources"
            )

    high_risk = sum(1 for r in anonymity if vulnerability_level(r.size) == "high")
    if high_risk:
        findings.append(f"HIGH: {high_risk} targets hide among 5 or fewer sources")

    if metrics.anonymity.count and metrics.anonymity.mean < WEAK_AVG_ANONYMITY_SET:
        findings.append(
            f"MEDIUM: Average anonymity set is very small ({metrics.anonymity.mean:.1f} sources)"
        )

    if metrics.address_reuse_rate > HIGH_ADDRESS_REUSE_RATE:
        findings.append(
            f"HIGH: {round(metrics.address_reuse_rate * 100)}% of addresses reused - "
            "enables clustering attacks"
        )

    if metrics.amounts.total_count and metrics.unique_amount_ratio > HIGH_UNIQUE_AMOUNT_RATIO:
        findings.append(
            f"HIGH: {round(metrics.unique_amount_ratio * 100)}% of amounts are unique"
        )

    suspicious = detect_suspicious_amounts(events)
    if suspicious:
        findings.append(f"MEDIUM: {len(suspicious)} events use linkable amounts")

    if metrics.timing_pattern.has_pattern:
        hours = ", ".join(f"{b}h" for b in metrics.timing_pattern.dominant_buckets)
        findings.append(
            f"MEDIUM: Withdrawal delays cluster around {hours} "
            f"(confidence {metrics.timing_pattern.confidence:.2f})"
        )

    splits = metrics.splits
    if splits and splits.multi_output_groups and (
        splits.fingerprintable_rate > HIGH_FINGERPRINTABLE_RATE
    ):
        findings.append(
            f"MEDIUM: {round(splits.fingerprintable_rate * 100)}% of "
            f"{splits.multi_output_groups} multi-output swaps have unique split patterns"
        )

    confidential = metrics.confidential
    if confidential:
        if confidential.auditor_centralization > HIGH_AUDITOR_CENTRALIZATION:
            findings.append(
                f"HIGH: {round(confidential.auditor_centralization * 100)}% of mints share "
                "one auditor key - it can decrypt all of their amounts"
            )
        if confidential.public_mix_rate > HIGH_PUBLIC_MIX_RATE:
            findings.append(
                f"HIGH: {round(confidential.public_mix_rate * 100)}% of accounts mix "
                "public and confidential transfers - amounts can be inferred"
            )
        if confidential.immediate_conversion_rate > HIGH_IMMEDIATE_CONVERSION_RATE:
            hours = profile.immediate_conversion_ms / HOUR_MS
            findings.append(
                f"MEDIUM: {round(confidential.immediate_conversion_rate * 100)}% of accounts "
                f"convert back to public within {hours:g}h"
            )

    return findings


def build_recommendations(
    profile: ProtocolProfile,
    metrics: AggregateMetrics,
    score,
    matches: list[MatchCandidate],
) -> list[str]:
    recommendations = ScoringEngine.recommendations(score)
    if not profile.addresses_visible:
        if metrics.linkability_rate > HIGH_LINKABILITY_RATE:
            recommendations.append(
                "Wait random delays (e.g. 3-30 days) before withdrawing"
            )
        if metrics.timing_pattern.has_pattern:
            recommendations.append("Avoid habitual delays such as exactly 24h or 48h")
        if matches:
            _, _, reasoning = recommend_timing(m.time_delta_ms for m in matches)
            recommendations.append(reasoning)

    splits = metrics.splits
    if splits and splits.fingerprintable_rate > HIGH_FINGERPRINTABLE_RATE:
        recommendations.append(
            "Avoid splitting outputs to multiple wallets, or use standard split ratios "
            "(50/50, 33/33/34)"
        )

    confidential = metrics.confidential
    if confidential:
        if confidential.auditor_centralization > HIGH_AUDITOR_CENTRALIZATION:
            recommendations.append(
                "Prefer mints without auditor keys when amount privacy matters"
            )
        if confidential.public_mix_rate > HIGH_PUBLIC_MIX_RATE:
            recommendations.append(
                "Avoid mixing public and confidential transfers in the same account"
            )
        if confidential.immediate_conversion_rate > HIGH_IMMEDIATE_CONVERSION_RATE:
            recommendations.append("Keep funds confidential for days, not hours")
        recommendations.append(
            "Confidential transfers do not hide sender or recipient addresses; "
            "combine with a mixer for address privacy"
        )
    return recommendations


def analyze_events(
    events: list[Event],
    profile: ProtocolProfile,
    unknown_count: Optional[int] = None,
    weak_threshold: int = DEFAULT_WEAK_THRESHOLD,
) -> ProtocolReport:
    """
    Analyze already-classified events of one protocol.

    Args:
        events: Classified events (UNKNOWN ones are counted, not analyzed)
        profile: Protocol profile
        unknown_count: Override for the UNKNOWN count (records that never
            became events); defaults to the UNKNOWN events in `events`
        weak_threshold: Anonymity-set size below which targets are
            reported as weak

    Returns:
        ProtocolReport
    """
    start_time = time.time()
    if unknown_count is None:
        unknown_count = sum(1 for e in events if not e.is_known)

    sources, targets = split_events(events, profile)

    anonymity = AnonymitySetCalculator(profile).anonymity_sets(targets, sources)
    matches = CorrelationEngine(profile).correlate(
        sources, targets, anonymity_sizes={r.target_id: r.size for r in anonymity}
    )
    known = sources + targets
    metrics = MetricsAggregator(profile).aggregate(known, matches, anonymity)

    engine = ScoringEngine(profile)
    score = engine.score(ScoreInputs.from_aggregate(metrics))
    snapshot = metrics.snapshot(score.total)

    report = ProtocolReport(
        protocol=profile.protocol_id,
        privacy_score=snapshot.privacy_score,
        grade=score.grade,
        total_events=len(events),
        unknown_events=unknown_count,
        matched_pairs=len(matches),
        linkability_rate=metrics.linkability_rate,
        avg_anonymity_set=snapshot.avg_anonymity_set,
        median_anonymity_set=snapshot.median_anonymity_set,
        min_anonymity_set=snapshot.min_anonymity_set,
        timing_entropy=snapshot.timing_entropy,
        unique_amount_ratio=snapshot.unique_amount_ratio,
        address_reuse_rate=snapshot.address_reuse_rate,
        vulnerabilities=identify_vulnerabilities(
            profile, metrics, anonymity, known, weak_threshold
        ),
        recommendations=build_recommendations(profile, metrics, score, matches),
        matches=[MatchRecord.from_candidate(m) for m in matches],
        score_components=score.components,
        score_rationale=score.rationale,
    )

    logger.info(
        f"{profile.protocol_id}: score={report.privacy_score} ({report.grade}), "
        f"events={report.total_events} (unknown={unknown_count}), "
        f"matches={report.matched_pairs}, "
        f"linkability={report.linkability_rate:.1%} "
        f"in {time.time() - start_time:.2f}s"
    )
    return report


def analyze_protocol(
    raw_txs: Iterable[Union[RawTransaction, dict]],
    profile: ProtocolProfile,
    weak_threshold: int = DEFAULT_WEAK_THRESHOLD,
) -> ProtocolReport:
    """Classify raw transactions and analyze them."""
    classification = classify_batch(raw_txs, profile)
    return analyze_events(
        classification.events, profile, classification.unknown_count, weak_threshold
    )


def analyze_protocols(
    batches: dict[str, list],
    max_workers: Optional[int] = None,
    profiles: Optional[dict[str, ProtocolProfile]] = None,
    weak_threshold: int = DEFAULT_WEAK_THRESHOLD,
) -> dict[str, ProtocolReport]:
    """
    Analyze several protocols in parallel.

    Args:
        batches: Protocol id -> raw transactions (each worker gets its own list)
        max_workers: Thread pool size (default: one per protocol)
        profiles: Protocol id -> profile; ids missing here are resolved
            through ProtocolRegistry
        weak_threshold: Anonymity-set size below which targets are weak

    Returns:
        Protocol id -> report, for every protocol that completed. A failing
        protocol is logged and left out; the others are unaffected.

    Raises:
        ProfileValidationError: If a protocol id is unknown
    """
    overrides = profiles or {}
    resolved = {pid: overrides.get(pid) or ProtocolRegistry.require(pid) for pid in batches}
    if not resolved:
        return {}

    workers = max_workers or len(resolved)
    reports: dict[str, ProtocolReport] = {}

    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(analyze_protocol, list(batches[pid]), profile, weak_threshold): pid
            for pid, profile in resolved.items()
        }
        for future in as_completed(futures):
            pid = futures[future]
            try:
                reports[pid] = future.result()
            except Exception as e:
                logger.error(f"{pid}: analysis failed: {e}", exc_info=True)

    return {pid: reports[pid] for pid in batches if pid in reports}
