# Structured JSON logging. Engine modules log through plain module
# loggers and pass request-scoped fields (user_id, org_id, cache key,
# duration) via `extra`; this formatter lifts those fields into the JSON
# payload so they are queryable in the log pipeline.

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from permission_engine.core.config import settings


_STANDARD_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

_ALWAYS_FIELDS = {
    "user_id",
    "org_id",
    "plan_id",
    "duration_ms",
    "error_code",
}


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            if value is None and key not in _ALWAYS_FIELDS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


def _build_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    return handler


def get_structured_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.addHandler(_build_handler("json"))
    logger.setLevel(settings.LOG_LEVEL)
    logger.propagate = False
    return logger


def configure_logging(
    *,
    level: str | None = None,
    log_format: str | None = None,
) -> logging.Logger:
    """Attach one handler to the package logger; safe to call repeatedly."""
    logger = logging.getLogger("permission_engine")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(_build_handler(log_format or settings.LOG_FORMAT))
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    return logger
