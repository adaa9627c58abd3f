"""Centralized logging configuration for the card advisor.

Console output is human-readable. File output is one JSON object per line:
``card_advisor.log`` gets everything, ``errors.log`` only errors, and
``pipeline.log`` only the ``card_advisor.services`` loggers (classification,
retrieval and synthesis decisions).
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).parent.parent.parent
LOG_DIR = PROJECT_ROOT / "logs"

PIPELINE_LOGGER = "card_advisor.services"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON with their structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_data["extra"] = extra_data
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges bound context into ``extra_data``."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict]:
        extra = kwargs.get("extra", {})
        extra["extra_data"] = {**self.extra, **extra.get("extra_data", {})}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextLogger":
        """Return a logger carrying this logger's context plus ``context``."""
        return ContextLogger(self.logger, {**self.extra, **context})


def _json_file_handler(
    path: Path, level: int, max_bytes: int, backup_count: int
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(
    log_level: str | None = None,
    enable_console: bool = True,
    enable_file: bool = True,
    log_dir: Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure logging for the application.

    Args:
        log_level: Logging level name. Defaults to ``LOG_LEVEL`` from the
            environment, or INFO.
        enable_console: Whether to log to stdout.
        enable_file: Whether to write the JSON log files.
        log_dir: Directory for log files. Defaults to ``<project>/logs``.
        max_bytes: Maximum size per log file before rotation.
        backup_count: Number of rotated files to keep.
    """
    level_name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    target_dir = log_dir or LOG_DIR

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name))
    root_logger.handlers.clear()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(
            logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        root_logger.addHandler(console_handler)

    if not enable_file:
        return

    target_dir.mkdir(parents=True, exist_ok=True)
    root_logger.addHandler(
        _json_file_handler(target_dir / "card_advisor.log", logging.DEBUG, max_bytes, backup_count)
    )
    root_logger.addHandler(
        _json_file_handler(target_dir / "errors.log", logging.ERROR, max_bytes, backup_count)
    )

    pipeline_logger = logging.getLogger(PIPELINE_LOGGER)
    pipeline_logger.handlers.clear()
    pipeline_logger.addHandler(
        _json_file_handler(target_dir / "pipeline.log", logging.DEBUG, max_bytes, backup_count)
    )


def get_logger(name: str, **context: Any) -> ContextLogger:
    """Get a logger with optional bound context.

    Args:
        name: Logger name (typically __name__).
        **context: Fields added to every message's ``extra_data``.

    Returns:
        ContextLogger with the specified context.
    """
    return ContextLogger(logging.getLogger(name), context)
