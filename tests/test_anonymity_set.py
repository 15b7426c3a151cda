"""
Tests for the anonymity set calculator.

Test Coverage:
    - Plausible-source counting independent of consumption
    - Window and tolerance behavior
    - Statistics, weak-set detection and time series
"""

import pytest

from unveil.analysis.anonymity_set import (
    AnonymitySetCalculator,
    anonymity_set,
    vulnerability_level,
)
from unveil.config.protocols import DAY_MS, HOUR_MS
from unveil.models.events import AnonymitySetResult, EventKind

SOL = 1_000_000_000
WD = EventKind.WITHDRAWAL


@pytest.fixture
def deposits(make_event):
    """Ten 1 SOL deposits one hour apart, plus two 5 SOL deposits."""
    events = [make_event(f"dep{i}", amount=SOL, timestamp_ms=i * HOUR_MS) for i in range(10)]
    events += [make_event(f"big{i}", amount=5 * SOL, timestamp_ms=i * HOUR_MS) for i in range(2)]
    return events


class TestAnonymitySet:
    """Tests for single-target anonymity sets."""

    def test_counts_matching_sources(self, make_event, deposits, privacy_cash):
        target = make_event("wd1", WD, amount=990_000_000, timestamp_ms=20 * HOUR_MS)

        result = AnonymitySetCalculator(privacy_cash).anonymity_set(target, deposits)

        assert result.size == 10
        assert result.candidate_source_ids == frozenset(f"dep{i}" for i in range(10))
        assert result.timestamp_ms == 20 * HOUR_MS

    def test_only_earlier_sources(self, make_event, deposits, privacy_cash):
        target = make_event("wd1", WD, amount=SOL, timestamp_ms=4 * HOUR_MS + 1)

        result = anonymity_set(target, deposits, privacy_cash)

        assert result.size == 5

    def test_window_excludes_old_sources(self, make_event, deposits, privacy_cash):
        target = make_event("wd1", WD, amount=SOL, timestamp_ms=9 * HOUR_MS + 1)

        result = anonymity_set(target, deposits, privacy_cash, window_ms=2 * HOUR_MS)

        assert result.candidate_source_ids == frozenset({"dep8", "dep9"})

    def test_window_bounded_by_max_delay(self, make_event, privacy_cash):
        source = make_event("dep1", amount=SOL, timestamp_ms=0)
        target = make_event("wd1", WD, amount=SOL, timestamp_ms=31 * DAY_MS)

        result = anonymity_set(target, [source], privacy_cash, window_ms=60 * DAY_MS)

        assert result.size == 0

    def test_no_sources_gives_empty_set(self, make_event, privacy_cash):
        target = make_event("wd1", WD, amount=SOL, timestamp_ms=HOUR_MS)

        result = anonymity_set(target, [], privacy_cash)

        assert result.size == 0
        assert result.candidate_source_ids == frozenset()

    def test_independent_of_other_targets(self, make_event, deposits, privacy_cash):
        """Sets are computed before consumption: every target sees every source."""
        targets = [
            make_event(f"wd{i}", WD, amount=SOL, timestamp_ms=20 * HOUR_MS + i) for i in range(3)
        ]

        results = AnonymitySetCalculator(privacy_cash).anonymity_sets(targets, deposits)

        assert [r.size for r in results] == [10, 10, 10]

    def test_narrower_tolerance_never_grows_the_set(self, make_event, privacy_cash):
        sources = [
            make_event(f"dep{i}", amount=SOL + i * 10_000_000, timestamp_ms=i) for i in range(6)
        ]
        target = make_event("wd1", WD, amount=SOL, timestamp_ms=HOUR_MS)
        narrowed = privacy_cash.with_overrides(fee_tolerance=(0.98, 1.0))

        wide = anonymity_set(target, sources, privacy_cash)
        narrow = anonymity_set(target, sources, narrowed)

        assert narrow.size <= wide.size
        assert narrow.candidate_source_ids <= wide.candidate_source_ids

    def test_hidden_amounts_fall_back_to_timing(self, make_event, shadowwire):
        sources = [make_event(f"dep{i}", timestamp_ms=i, protocol="shadowwire") for i in range(4)]
        target = make_event("wd1", WD, timestamp_ms=HOUR_MS, protocol="shadowwire")

        result = anonymity_set(target, sources, shadowwire)

        assert result.size == 4

    def test_plaintext_target_has_set_of_one(self, make_event, shadowwire):
        sources = [make_event(f"dep{i}", timestamp_ms=i, protocol="shadowwire") for i in range(4)]
        target = make_event(
            "tx1", EventKind.TRANSFER_IN, timestamp_ms=HOUR_MS,
            sender="A", counterparty="B", protocol="shadowwire",
        )

        assert anonymity_set(target, sources, shadowwire).size == 1

    def test_sources_generator_is_consumed_once(self, make_event, deposits, privacy_cash):
        target = make_event("wd1", WD, amount=SOL, timestamp_ms=20 * HOUR_MS)

        result = anonymity_set(target, (d for d in deposits), privacy_cash)

        assert result.size == 10

    def test_estimate_for_hypothetical_withdrawal(self, deposits, privacy_cash):
        calc = AnonymitySetCalculator(privacy_cash)

        assert calc.estimate_anonymity_set(5 * SOL, 3 * HOUR_MS, deposits) == 2
        assert calc.estimate_anonymity_set(SOL, 3 * HOUR_MS, deposits) == 3


class TestResultValidation:
    def test_size_must_match_candidates(self):
        with pytest.raises(ValueError):
            AnonymitySetResult(target_id="t", candidate_source_ids=frozenset({"a"}), size=2)


def _result(target_id, size, timestamp_ms=0):
    return AnonymitySetResult(
        target_id=target_id,
        candidate_source_ids=frozenset(f"{target_id}-s{i}" for i in range(size)),
        size=size,
        timestamp_ms=timestamp_ms,
    )


class TestStatistics:
    """Tests for statistics, weak sets and time series."""

    def test_statistics(self):
        results = [_result(f"t{i}", size) for i, size in enumerate([0, 1, 2, 3])]

        stats = AnonymitySetCalculator.statistics(results)

        assert stats.count == 4
        assert stats.mean == 1.5
        assert stats.median == 1.5
        assert stats.min == 0
        assert stats.max == 3
        assert stats.p25 == pytest.approx(0.75)
        assert stats.p75 == pytest.approx(2.25)
        assert stats.distribution == {0: 1, 1: 1, 2: 1, 3: 1}

    def test_statistics_empty(self):
        stats = AnonymitySetCalculator.statistics([])
        assert stats.count == 0
        assert stats.mean == 0.0

    def test_find_weak_sets(self):
        results = [_result("a", 2), _result("b", 10), _result("c", 30)]

        weak = AnonymitySetCalculator.find_weak_sets(results)

        assert [r.target_id for r in weak] == ["a"]
        assert len(AnonymitySetCalculator.find_weak_sets(results, threshold=31)) == 3

    def test_time_series(self):
        results = [
            _result("a", 2, timestamp_ms=0),
            _result("b", 4, timestamp_ms=HOUR_MS // 2),
            _result("c", 9, timestamp_ms=3 * HOUR_MS),
        ]

        series = AnonymitySetCalculator.time_series(results)

        assert [s.timestamp_ms for s in series] == [0, 3 * HOUR_MS]
        assert series[0].avg_size == 3.0
        assert series[0].count == 2
        assert series[1].min_size == series[1].max_size == 9

    def test_time_series_rejects_bad_interval(self):
        with pytest.raises(ValueError):
            AnonymitySetCalculator.time_series([_result("a", 1)], interval_ms=0)

    def test_to_dict(self):
        stats = AnonymitySetCalculator.statistics([_result("a", 2)])
        assert stats.to_dict()["distribution"] == {"2": 1}


@pytest.mark.parametrize(
    "size,level", [(0, "critical"), (1, "critical"), (5, "high"), (20, "medium"), (21, "low")]
)
def test_vulnerability_level(size, level):
    assert vulnerability_level(size) == level
