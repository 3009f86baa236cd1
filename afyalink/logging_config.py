"""Log formatting for the AfyaLink API (JSON for aggregators, text for humans)."""

from __future__ import annotations

import json
import logging
import sys
import traceback
from datetime import datetime, timezone

from afyalink.services.request_context import get_request_id

SERVICE_NAME = "afyalink"

# LogRecord attributes that are not user-supplied ``extra`` fields.
_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

# Third-party loggers that are too chatty at INFO for a request-per-poll API.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "anthropic")


def _utc(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with request ID and ``extra`` fields merged in."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        entry: dict = {
            "timestamp": _utc(record).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": record.message,
        }

        request_id = get_request_id()
        if request_id:
            entry["request_id"] = request_id

        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        )

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = "".join(
                traceback.format_exception(*record.exc_info)
            )

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``2024-01-01 12:00:00 INFO     [rid] logger - message``"""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        ts = _utc(record).strftime("%Y-%m-%d %H:%M:%S")

        request_id = get_request_id()
        rid = f"[{request_id[:12]}] " if request_id else ""

        line = f"{ts} {record.levelname:<8} {rid}{record.name} - {record.message}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return line


def setup_logging(log_level: str = "INFO", log_format: str = "text") -> None:
    """Install a single stderr handler on the root logger.

    Safe to call repeatedly (e.g. under ``uvicorn --reload``); existing
    handlers are replaced rather than stacked.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        JSONFormatter() if log_format.lower() == "json" else TextFormatter()
    )
    root.addHandler(handler)

    # Our middleware already writes one access line per request.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
