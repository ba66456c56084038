"""Logging setup with credential redaction and optional JSON output."""

from __future__ import annotations

import datetime as dt
import json
import logging
import sys
from typing import Optional

from .errors import sanitize_sensitive_data

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"


class RedactingFilter(logging.Filter):
    """Scrub tokens and secrets out of every record before a handler emits it."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = sanitize_sensitive_data(message)
        record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = sanitize_sensitive_data(
                logging.Formatter().formatException(record.exc_info)
            )
            record.exc_info = None
        elif record.exc_text:
            record.exc_text = sanitize_sensitive_data(record.exc_text)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per log line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }
        if record.exc_text:
            payload["exception"] = record.exc_text
        return json.dumps(payload)


def setup_logging(level: str = "INFO", json_output: bool = False, stream: Optional[object] = None) -> None:
    """Configure the root logger once per run; safe to call repeatedly."""

    log_level = getattr(logging, str(level).upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(RedactingFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=DEFAULT_FORMAT, datefmt=DEFAULT_DATEFMT))
    root.addHandler(handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


__all__ = ["RedactingFilter", "JSONFormatter", "setup_logging"]
