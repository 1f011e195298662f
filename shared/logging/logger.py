"""
JSON log lines for the text engine, one object per record on stdout.

Generation code attaches structured context through
`extra={"_extra": {...}}`. Keys listed in CONTEXT_FIELDS (model, user id,
error kind and so on) are lifted to the top level of the entry so log
queries can filter on them directly; anything else stays nested under
"extra".
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = frozenset({"model", "backend", "user_id", "error_kind", "attempts"})

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai")


class JSONFormatter(logging.Formatter):

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            payload["where"] = f"{record.module}:{record.lineno}"

        context = dict(getattr(record, "_extra", None) or {})
        for key in CONTEXT_FIELDS & context.keys():
            payload[key] = context.pop(key)
        if context:
            payload["extra"] = context

        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(service_name: str, level_name: str | None = None) -> logging.Logger:
    """
    Route every logger in the process through one stdout JSON handler.

    Called from the service lifespan. `level_name` falls back to LOG_LEVEL.
    """
    level_name = (level_name or os.environ.get("LOG_LEVEL") or "INFO").upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(service_name))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    service_logger = logging.getLogger(service_name)
    service_logger.info("Logging configured", extra={"_extra": {"level": level_name}})
    return service_logger
