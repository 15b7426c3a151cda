"""
Repository for persisted privacy reports.

Stores one row per analysis run in DuckDB. The full report is kept as JSON
so the schema does not change when the report grows new fields; protocol,
score and generation time are broken out for querying.

Storage failures are logged and reported through return values (False,
None, empty list); they never propagate into the analysis.
"""

import logging
from contextlib import contextmanager
from datetime import timezone
from pathlib import Path
from typing import Iterator, Optional, Union

import duckdb
from pydantic import ValidationError

from unveil.config.database import UNVEIL_DB_PATH, get_connection
from unveil.models.report import ProtocolReport

logger = logging.getLogger(__name__)

SCHEMA = [
    "CREATE SEQUENCE IF NOT EXISTS privacy_reports_id_seq START 1",
    """
    CREATE TABLE IF NOT EXISTS privacy_reports (
        id BIGINT PRIMARY KEY DEFAULT nextval('privacy_reports_id_seq'),
        protocol VARCHAR NOT NULL,
        privacy_score INTEGER NOT NULL,
        generated_at TIMESTAMP NOT NULL,
        report_json VARCHAR NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_privacy_reports_protocol ON privacy_reports (protocol)",
]


class ReportRepository:
    """DuckDB-backed storage for ProtocolReport snapshots."""

    def __init__(self, db_path: Union[str, Path, None] = None):
        """
        Initialize repository.

        Args:
            db_path: DuckDB file, or ":memory:" for a private in-memory
                database (default UNVEIL_DB_PATH)
        """
        self.db_path = str(db_path) if db_path is not None else str(UNVEIL_DB_PATH)
        # In-memory databases live as long as their connection
        self._memory_conn = (
            get_connection(":memory:") if self.db_path == ":memory:" else None
        )
        logger.debug(f"Initialized report repository: {self.db_path}")

    @contextmanager
    def _connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        if self._memory_conn is not None:
            yield self._memory_conn
            return
        conn = get_connection(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        if self._memory_conn is not None:
            self._memory_conn.close()
            self._memory_conn = None

    def init_schema(self) -> bool:
        """Create the reports table if needed."""
        try:
            with self._connection() as conn:
                for statement in SCHEMA:
                    conn.execute(statement)
            return True
        except duckdb.Error as e:
            logger.error(f"Failed to initialize schema in {self.db_path}: {e}")
            return False

    def save_report(self, report: ProtocolReport) -> bool:
        """
        Persist one report.

        Returns:
            True if successful, False otherwise
        """
        data = report.to_db_dict()
        # Stored as naive UTC
        generated_at = data["generated_at"]
        if generated_at.tzinfo is not None:
            generated_at = generated_at.astimezone(timezone.utc).replace(tzinfo=None)

        try:
            with self._connection() as conn:
                conn.execute(
                    """
                    INSERT INTO privacy_reports (protocol, privacy_score, generated_at, report_json)
                    VALUES (?, ?, ?, ?)
                    """,
                    [data["protocol"], data["privacy_score"], generated_at, data["report_json"]],
                )
            logger.debug(f"Saved report: {report.protocol} score={report.privacy_score}")
            return True
        except duckdb.Error as e:
            logger.error(f"Failed to save report for {report.protocol}: {e}")
            return False

    def get_latest_report(self, protocol: str) -> Optional[ProtocolReport]:
        """Most recent report of a protocol, or None."""
        try:
            with self._connection() as conn:
                row = conn.execute(
                    """
                    SELECT report_json FROM privacy_reports
                    WHERE protocol = ?
                    ORDER BY generated_at DESC, id DESC
                    LIMIT 1
                    """,
                    [protocol],
                ).fetchone()
        except duckdb.Error as e:
            logger.error(f"Failed to get latest report for {protocol}: {e}")
            return None

        if row is None:
            return None
        return self._row_to_report(row[0])

    def list_reports(self, protocol: Optional[str] = None, limit: int = 50) -> list[ProtocolReport]:
        """
        Recent reports, newest first.

        Args:
            protocol: Restrict to one protocol (default: all)
            limit: Maximum number of reports
        """
        query = "SELECT report_json FROM privacy_reports"
        params: list = []
        if protocol is not None:
            query += " WHERE protocol = ?"
            params.append(protocol)
        query += " ORDER BY generated_at DESC, id DESC LIMIT ?"
        params.append(limit)

        try:
            with self._connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except duckdb.Error as e:
            logger.error(f"Failed to list reports: {e}")
            return []

        reports = [self._row_to_report(row[0]) for row in rows]
        return [r for r in reports if r is not None]

    def delete_reports(self, protocol: str) -> int:
        """Delete every report of a protocol; returns the number removed."""
        try:
            with self._connection() as conn:
                count = conn.execute(
                    "SELECT COUNT(*) FROM privacy_reports WHERE protocol = ?", [protocol]
                ).fetchone()[0]
                conn.execute("DELETE FROM privacy_reports WHERE protocol = ?", [protocol])
            logger.info(f"Deleted {count} reports for {protocol}")
            return count
        except duckdb.Error as e:
            logger.error(f"Failed to delete reports for {protocol}: {e}")
            return 0

    @staticmethod
    def _row_to_report(report_json: str) -> Optional[ProtocolReport]:
        try:
            return ProtocolReport.model_validate_json(report_json)
        except ValidationError as e:
            logger.warning(f"Skipping unreadable stored report: {e}")
            return None
