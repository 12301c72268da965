"""
Logging configuration for chatuniverse.

Routes INFO/DEBUG to stdout and WARNING+ to stderr, and optionally writes a
rotating log file per context (cli, reindex, ...) under the XDG state dir.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from chatuniverse.config import settings

STANDARD_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _MaxLevelFilter(logging.Filter):
    """Only pass records strictly below a level (keeps stdout free of errors)."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    return logging.Formatter(STANDARD_FORMAT)


def setup_logging(context: str = "app", level: Optional[str] = None) -> None:
    """
    Configure the root logger.

    Args:
        context: Name used for the log file (``<context>.log``)
        level: Override for ``settings.log_level``

    Raises:
        PermissionError: If the log directory cannot be created
    """
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())

    # Re-running setup (tests, repeated CLI invocations) must not stack handlers
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = _build_formatter(settings.log_format)

    if settings.log_console_enabled:
        if settings.log_to_stdout:
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.setFormatter(formatter)
            if settings.log_to_stderr:
                stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
            root.addHandler(stdout_handler)
        if settings.log_to_stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(logging.WARNING)
            stderr_handler.setFormatter(formatter)
            root.addHandler(stderr_handler)

    if settings.log_file_enabled:
        log_dir = settings.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # SQL echo is far too noisy at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
