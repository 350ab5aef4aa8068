# backend/app/logging_config.py
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import settings
from .middleware.request_id import get_request_id

# attributes passed via `extra=` that end up as top-level keys
STRUCTURED_EXTRAS = (
    "event",
    "http_request_id",
    "status_code",
    "latency_ms",
    "user_id",
    "role",
    "appraisal_id",
    "report_id",
    "transition",
    "path",
)


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: getattr(record, k) for k in STRUCTURED_EXTRAS if getattr(record, k, None) is not None}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the active request id."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        rid = get_request_id()
        if rid:
            line["request_id"] = rid
        line.update(_extras(record))
        if record.exc_info:
            line["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(line, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable variant for local runs (LOG_FORMAT=text)."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = _extras(record)
        rid = get_request_id()
        if rid:
            extras = {"request_id": rid, **extras}
        if not extras:
            return base
        return base + " " + " ".join(f"{k}={v}" for k, v in extras.items())


def configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()
    formatter = TextFormatter() if settings.log_format.strip().lower() == "text" else JsonFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    # uvicorn --reload re-imports the app; drop handlers from the previous run
    root.handlers[:] = [handler]

    logging.getLogger("uvicorn.access").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel((settings.sql_log_level or "WARNING").upper())
