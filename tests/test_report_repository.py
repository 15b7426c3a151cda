"""
Test suite for the report repository and report models.
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from unveil.models.report import MatchRecord, ProtocolReport
from unveil.storage.report_repository import ReportRepository


def _report(protocol="privacy-cash", score=42, generated_at=None, **extra):
    return ProtocolReport(
        protocol=protocol,
        privacy_score=score,
        grade="F",
        total_events=10,
        matched_pairs=2,
        generated_at=generated_at or datetime.now(timezone.utc),
        **extra,
    )


@pytest.fixture
def repository(tmp_path):
    """Repository over a fresh database file."""
    repo = ReportRepository(db_path=tmp_path / "reports.duckdb")
    assert repo.init_schema()
    return repo


class TestProtocolReportModel:
    """Test ProtocolReport data model."""

    def test_score_range(self):
        with pytest.raises(ValidationError):
            _report(score=101)

    def test_invalid_grade(self):
        with pytest.raises(ValidationError):
            ProtocolReport(protocol="p", privacy_score=50, grade="E", total_events=1)

    def test_matched_pairs_bounded_by_events(self):
        with pytest.raises(ValidationError):
            ProtocolReport(protocol="p", privacy_score=50, total_events=1, matched_pairs=2)

    def test_ratio_range(self):
        with pytest.raises(ValidationError):
            _report(linkability_rate=1.5)

    def test_json_dict_is_camel_case(self):
        report = _report(
            matches=[
                MatchRecord(
                    source_id="dep1", target_id="wd1", confidence=95.0,
                    time_delta_ms=60_000, anonymity_set=1,
                )
            ]
        )

        data = report.to_json_dict()

        assert data["privacyScore"] == 42
        assert data["matchedPairs"] == 2
        assert data["matches"][0]["targetId"] == "wd1"
        assert data["matches"][0]["anonymitySet"] == 1
        assert "privacy_score" not in data

    def test_db_dict(self):
        data = _report().to_db_dict()
        assert set(data) == {"protocol", "privacy_score", "generated_at", "report_json"}
        assert '"protocol":"privacy-cash"' in data["report_json"]


class TestReportRepository:
    """Test repository operations."""

    def test_save_and_get_latest(self, repository):
        now = datetime.now(timezone.utc)
        assert repository.save_report(_report(score=40, generated_at=now - timedelta(hours=1)))
        assert repository.save_report(_report(score=55, generated_at=now))

        latest = repository.get_latest_report("privacy-cash")

        assert latest is not None
        assert latest.privacy_score == 55
        assert latest.total_events == 10

    def test_get_latest_missing(self, repository):
        assert repository.get_latest_report("shadowwire") is None

    def test_list_reports(self, repository):
        now = datetime.now(timezone.utc)
        for i in range(3):
            repository.save_report(_report(score=i, generated_at=now + timedelta(minutes=i)))
        repository.save_report(_report(protocol="shadowwire", score=30))

        everything = repository.list_reports()
        mine = repository.list_reports("privacy-cash", limit=2)

        assert len(everything) == 4
        assert [r.privacy_score for r in mine] == [2, 1]

    def test_delete_reports(self, repository):
        repository.save_report(_report())
        repository.save_report(_report())
        repository.save_report(_report(protocol="shadowwire"))

        assert repository.delete_reports("privacy-cash") == 2
        assert repository.list_reports("privacy-cash") == []
        assert len(repository.list_reports("shadowwire")) == 1

    def test_save_without_schema_fails_softly(self, tmp_path):
        repo = ReportRepository(db_path=tmp_path / "empty.duckdb")
        assert repo.save_report(_report()) is False
        assert repo.list_reports() == []

    def test_in_memory_database(self):
        repo = ReportRepository(db_path=":memory:")
        try:
            assert repo.init_schema()
            assert repo.save_report(_report(score=77))
            assert repo.get_latest_report("privacy-cash").privacy_score == 77
        finally:
            repo.close()

    def test_schema_is_idempotent(self, repository):
        assert repository.init_schema()
