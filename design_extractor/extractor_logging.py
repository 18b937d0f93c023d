"""Logging setup for the design extractor.

All package loggers hang off the ``design_extractor`` root logger. Stages
log through category loggers (``design_extractor.capture`` and so on) and
attach run context with ``extra={"checkpoint_id": ..., "stage": ...}`` so
JSON output can be filtered per checkpoint.
"""

import json
import logging
import logging.config
import logging.handlers
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

ROOT_LOGGER_NAME = "design_extractor"

DEFAULT_LOG_DIR = Path.home() / ".design-extractor" / "logs"
LOG_FILENAME = "design-extractor.log"

TEXT_FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"
TEXT_CONSOLE_FORMAT = "%(levelname)s | %(message)s"


class LogCategory(Enum):
    """Pipeline areas with their own child logger."""

    PIPELINE = "pipeline"
    CAPTURE = "capture"
    VISION = "vision"
    COMPARISON = "comparison"
    STORAGE = "storage"


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object.

    Only the run context attributes listed in ``EXTRA_FIELDS`` are copied
    from ``extra``; anything else attached to the record is ignored.
    """

    RECORD_FIELDS = {
        "level": "levelname",
        "logger": "name",
        "module": "module",
        "function": "funcName",
        "line": "lineno",
    }
    EXTRA_FIELDS = ("checkpoint_id", "stage", "duration_ms", "url")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
        }
        entry.update({key: getattr(record, attr) for key, attr in self.RECORD_FIELDS.items()})
        entry["message"] = record.getMessage()
        entry.update(
            {field: getattr(record, field) for field in self.EXTRA_FIELDS if hasattr(record, field)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_default_log_file(project_path: Path | None = None) -> Path:
    """Return the log file location, creating its directory.

    Logs go under ``<project>/logs`` when a project path is given and under
    ``~/.design-extractor/logs`` otherwise.
    """
    log_dir = project_path / "logs" if project_path else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / LOG_FILENAME


def _console_level(level: str, quiet: bool, verbose: bool) -> str:
    # quiet wins over verbose
    if quiet:
        return "ERROR"
    if verbose:
        return "DEBUG"
    return level.upper()


def _formatter_name(log_format: str, text_formatter: str) -> str:
    return "json" if log_format == "json" else text_formatter


def setup_logging(
    level: str = "INFO",
    quiet: bool = False,
    verbose: bool = False,
    log_file: Path | None = None,
    enable_file_logging: bool = False,
    project_path: Path | None = None,
    log_format: str = "text",
    rotation_count: int = 3,
    max_bytes: int = 10 * 1024 * 1024,
) -> logging.Logger:
    """Configure the package root logger.

    The console handler writes to stderr at the requested level. A rotating
    file handler is added when ``log_file`` is given (or
    ``enable_file_logging`` is set) and always records DEBUG and above.

    Args:
        level: Console level name when neither quiet nor verbose is set.
        quiet: Only show errors on the console.
        verbose: Show debug output on the console.
        log_file: Explicit log file path.
        enable_file_logging: Log to the default file when ``log_file`` is unset.
        project_path: Project directory used for the default log file.
        log_format: "text" or "json".
        rotation_count: Rotated files to keep.
        max_bytes: Size at which the log file rotates.

    Returns:
        The configured ``design_extractor`` logger.
    """
    if log_file is None and enable_file_logging:
        log_file = get_default_log_file(project_path)

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "level": _console_level(level, quiet, verbose),
            "formatter": _formatter_name(log_format, "console"),
        }
    }
    if log_file is not None:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": str(log_file),
            "maxBytes": max_bytes,
            "backupCount": rotation_count,
            "level": "DEBUG",
            "formatter": _formatter_name(log_format, "file"),
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {"format": TEXT_CONSOLE_FORMAT},
                "file": {"format": TEXT_FILE_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
                "json": {"()": JSONFormatter},
            },
            "handlers": handlers,
            "loggers": {
                ROOT_LOGGER_NAME: {
                    "handlers": list(handlers),
                    "level": "DEBUG",
                    "propagate": False,
                }
            },
        }
    )
    return get_logger()


def get_logger() -> logging.Logger:
    """Return the package root logger."""
    return logging.getLogger(ROOT_LOGGER_NAME)


def get_category_logger(category: LogCategory) -> logging.Logger:
    """Return the child logger for a pipeline area.

    Example:
        >>> logger = get_category_logger(LogCategory.CAPTURE)
        >>> logger.info("Captured 3 slices")
    """
    return get_logger().getChild(category.value)


@contextmanager
def debug_context(logger: logging.Logger | None = None) -> Iterator[logging.Logger]:
    """Lower a logger and its handlers to DEBUG for the duration of the block."""
    target = logger or get_logger()
    saved_level = target.level
    saved_handler_levels = {handler: handler.level for handler in target.handlers}
    target.setLevel(logging.DEBUG)
    for handler in saved_handler_levels:
        handler.setLevel(logging.DEBUG)
    try:
        yield target
    finally:
        target.setLevel(saved_level)
        for handler, handler_level in saved_handler_levels.items():
            handler.setLevel(handler_level)
