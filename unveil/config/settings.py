"""
Runtime settings for the analysis entry points.

All settings can be overridden via environment variables (or a .env file
loaded with load_settings()). The core analysis never reads settings
itself: entry points turn them into explicit arguments.

Usage:
    from unveil.config.settings import get_settings

    settings = get_settings()
    profile = settings.apply_to(ProtocolRegistry.require("privacy-cash"))
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from unveil.config.protocols import HOUR_MS, ProtocolProfile

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_MODES = ("development", "production")


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else None


@dataclass
class AnalysisSettings:
    """
    Settings for batch analysis runs.

    Profile overrides (anonymity window, entropy bucket) are None unless set
    in the environment; a None override keeps the profile's own value.
    """

    # ==================== Storage ====================
    db_path: str = field(
        default_factory=lambda: os.getenv("UNVEIL_DB_PATH", "data/unveil.duckdb")
    )

    # ==================== Logging ====================
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_mode: str = field(
        default_factory=lambda: os.getenv("LOG_MODE", "development")
    )  # development or production
    log_dir: Optional[str] = field(default_factory=lambda: os.getenv("LOG_DIR") or None)

    # ==================== Analysis ====================
    max_workers: int = field(
        default_factory=lambda: int(os.getenv("ANALYSIS_MAX_WORKERS", "4"))
    )
    anonymity_window_hours: Optional[float] = field(
        default_factory=lambda: _optional_float("ANONYMITY_WINDOW_HOURS")
    )
    entropy_bucket_minutes: Optional[float] = field(
        default_factory=lambda: _optional_float("ENTROPY_BUCKET_MINUTES")
    )
    weak_set_threshold: int = field(
        default_factory=lambda: int(os.getenv("WEAK_SET_THRESHOLD", "10"))
    )

    def __post_init__(self):
        """Validate configuration after initialization"""
        problems = self.validate()
        if problems:
            raise ValueError("Invalid settings: " + "; ".join(problems))

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if self.log_level.upper() not in LOG_LEVELS:
            problems.append(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        if self.log_mode not in LOG_MODES:
            problems.append(f"LOG_MODE must be one of {', '.join(LOG_MODES)}")
        if self.max_workers < 1:
            problems.append("ANALYSIS_MAX_WORKERS must be >= 1")
        if self.anonymity_window_hours is not None and self.anonymity_window_hours <= 0:
            problems.append("ANONYMITY_WINDOW_HOURS must be positive")
        if self.entropy_bucket_minutes is not None and self.entropy_bucket_minutes <= 0:
            problems.append("ENTROPY_BUCKET_MINUTES must be positive")
        if self.weak_set_threshold < 1:
            problems.append("WEAK_SET_THRESHOLD must be >= 1")
        return problems

    def apply_to(self, profile: ProtocolProfile) -> ProtocolProfile:
        """Profile copy with the configured analysis overrides."""
        changes = {}
        if self.anonymity_window_hours is not None:
            changes["anonymity_window_ms"] = int(self.anonymity_window_hours * HOUR_MS)
        if self.entropy_bucket_minutes is not None:
            changes["entropy_bucket_ms"] = int(self.entropy_bucket_minutes * 60 * 1000)
        return profile.with_overrides(**changes) if changes else profile

    def to_dict(self) -> dict:
        """Convert configuration to dictionary"""
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }


# Singleton instance
_settings: Optional[AnalysisSettings] = None


def load_settings(env_file: Union[str, Path, None] = None) -> AnalysisSettings:
    """
    Load a .env file (if present) and build fresh settings.

    Variables already set in the environment win over the file.
    """
    global _settings
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
    _settings = AnalysisSettings()
    return _settings


def get_settings() -> AnalysisSettings:
    """Get the cached settings instance, loading it on first use."""
    if _settings is None:
        return load_settings()
    return _settings


def reset_settings() -> None:
    """Forget the cached settings (tests, reconfiguration)."""
    global _settings
    _settings = None
