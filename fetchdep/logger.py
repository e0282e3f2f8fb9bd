"""Logging configuration for fetchdep.

Supports plain human-readable output and structured JSON output for CI.
Progress messages ("-- Checking dependency ...") are emitted at INFO level.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import json
import logging
import sys

PLAIN_FORMAT = "%(message)s"
VERBOSE_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for machine consumption."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def reset_logging() -> None:
    """Remove every handler from the root logger."""

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()


def setup_logging(level: str = "info", log_file: str | Path | None = None, json_output: bool = False) -> None:
    """Configure the root logger.

    Console output goes to stderr; when ``log_file`` is given every record is
    also appended there in the verbose format. Existing handlers are removed
    so repeated calls do not duplicate output.
    """

    reset_logging()
    root = logging.getLogger()
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    root.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stderr)
    if json_output:
        console.setFormatter(JSONFormatter())
    elif numeric_level <= logging.DEBUG:
        console.setFormatter(logging.Formatter(VERBOSE_FORMAT))
    else:
        console.setFormatter(logging.Formatter(PLAIN_FORMAT))
    root.addHandler(console)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(VERBOSE_FORMAT))
        root.addHandler(file_handler)


__all__ = ["JSONFormatter", "reset_logging", "setup_logging"]
