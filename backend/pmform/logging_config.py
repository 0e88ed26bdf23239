# backend/pmform/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import IO, Any

from .config import settings
from .middleware.request_id import get_request_id

# Structured extras callers may attach with logging's extra={...}
EXTRA_FIELDS = ("form_id", "submission_id", "queue_id", "client_ip", "warnings")

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, request_id, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        rid = get_request_id()
        if rid:
            payload["request_id"] = rid

        for k in EXTRA_FIELDS:
            v = getattr(record, k, None)
            if v is not None:
                payload[k] = v

        if record.exc_info:
            payload["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            payload["exc_info"] = self.formatException(record.exc_info)

        # Thai form text stays readable in log output
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for the field terminal CLI; extras are appended as k=v."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = [f"{k}={getattr(record, k)}" for k in EXTRA_FIELDS if getattr(record, k, None) is not None]
        return f"{line} [{' '.join(extras)}]" if extras else line


def configure_logging(
    *,
    level: str | None = None,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """
    Replace root handlers with a single stream handler.

    LOG_LEVEL / LOG_FORMAT (json|text) come from settings unless overridden.
    Chatty libraries get their own level so request logs stay readable.
    """
    lvl = (level or settings.log_level or "INFO").upper()
    kind = (fmt or settings.log_format or "json").lower()

    root = logging.getLogger()
    root.setLevel(lvl)

    # uvicorn --reload re-runs this; do not stack handlers
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(TextFormatter() if kind == "text" else JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(lvl)
    logging.getLogger("httpx").setLevel((os.getenv("HTTPX_LOG_LEVEL") or "WARNING").upper())
    logging.getLogger("sqlalchemy.engine").setLevel((os.getenv("SQL_LOG_LEVEL") or "WARNING").upper())
