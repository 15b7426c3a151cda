"""
Logging configuration for the privacy analysis engine.

Core modules only create module loggers (logging.getLogger(__name__)); the
entry points call setup_logging() once to attach handlers to the "unveil"
logger tree:

- development: colored human-readable console output
- production: one JSON object per line (console and file)

Usage:
    from unveil.config.logging_config import setup_logging, LogContext

    logger = setup_logging(level="DEBUG")
    with LogContext(logger, protocol="privacy-cash"):
        logger.info("analysis started")
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "unveil"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging in production"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Fields attached by LogContext
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colored console formatter for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
            reset = self.COLORS["RESET"]
        else:
            color = reset = ""

        # [TIMESTAMP] LEVEL - logger:line - message [key=value ...]
        formatted = (
            f"{color}[{self.formatTime(record, '%Y-%m-%d %H:%M:%S')}] "
            f"{record.levelname:<8}{reset} - "
            f"{record.name}:{record.lineno} - "
            f"{record.getMessage()}"
        )

        extra = getattr(record, "extra_fields", None)
        if extra:
            formatted += " [" + " ".join(f"{k}={v}" for k, v in extra.items()) + "]"

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(
    name: str = ROOT_LOGGER,
    level: str = "INFO",
    mode: str = "development",
    log_dir: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        name: Logger name (children such as unveil.analysis inherit handlers)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        mode: "development" for human-readable, "production" for JSON
        log_dir: Directory for a rotating log file; None logs to console only
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup log files to keep

    Returns:
        Configured logger

    Raises:
        ValueError: If level is not a logging level name
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    # Reconfiguring must not duplicate handlers
    logger.handlers.clear()

    # Diagnostics go to stderr; stdout is reserved for report output
    console_handler = logging.StreamHandler(sys.stderr)
    if mode == "production":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(HumanReadableFormatter(use_colors=sys.stderr.isatty()))
    logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path / f"{name}.log", maxBytes=max_bytes, backupCount=backup_count
        )
        if mode == "production":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"
                )
            )
        logger.addHandler(file_handler)

    logger.propagate = False
    logger.debug(f"Logging initialized: mode={mode}, level={level}, log_dir={log_dir}")

    return logger


def get_logger(name: str = None, level: str = None, mode: str = None) -> logging.Logger:
    """
    Get the package logger, configuring it from the environment on first use.

    Args:
        name: Logger name (default: LOG_NAME or "unveil")
        level: Override LOG_LEVEL
        mode: Override LOG_MODE (development/production)
    """
    name = name or os.environ.get("LOG_NAME", ROOT_LOGGER)
    level = level or os.environ.get("LOG_LEVEL", "INFO")
    mode = mode or os.environ.get("LOG_MODE", "development")

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    return setup_logging(name=name, level=level, mode=mode, log_dir=os.environ.get("LOG_DIR"))


class LogContext:
    """Context manager adding extra fields to every record logged inside it"""

    def __init__(self, logger: logging.Logger, **kwargs):
        self.logger = logger
        self.extra_fields = kwargs
        self.old_factory = logging.getLogRecordFactory()

    def __enter__(self):
        old_factory = self.old_factory
        fields = self.extra_fields

        def record_factory(*args, **kwargs):
            record = old_factory(*args, **kwargs)
            # Nested contexts merge, inner values win
            merged = dict(getattr(record, "extra_fields", {}))
            merged.update(fields)
            record.extra_fields = merged
            return record

        logging.setLogRecordFactory(record_factory)
        return self.logger

    def __exit__(self, exc_type, exc_val, exc_tb):
        logging.setLogRecordFactory(self.old_factory)
