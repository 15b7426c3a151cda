"""Report persistence (DuckDB)."""

from unveil.storage.report_repository import ReportRepository

__all__ = ["ReportRepository"]
