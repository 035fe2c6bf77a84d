"""
Structured logging for the engagement engine.

Every record on the ``dailyq`` logger is stamped with the request id and the
acting user from context, so one joker charge or calendar fetch can be traced
from the HTTP request down to the store call. Production writes one JSON
object per line; everything else gets a short human-readable line.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "dailyq"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_ctx_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

# Domain fields lifted from ``extra=`` into structured output
_STRUCTURED_FIELDS = (
    "user_id",
    "day",
    "year_month",
    "event_type",
    "error_code",
    "status",
    "path",
    "method",
    "latency_bucket",
)

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

_TRUNCATE_AT = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def get_user_id(default: Optional[str] = None) -> Optional[str]:
    uid = user_id_ctx_var.get()
    return uid if uid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _utc_stamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class EngagementContextFilter(logging.Filter):
    """Fill request_id and user_id from context when the call site did not."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        if getattr(record, "user_id", None) is None:
            record.user_id = get_user_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": _utc_stamp(record),
            "level": record.levelname.lower(),
            "event": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(
            (field, getattr(record, field))
            for field in _STRUCTURED_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = []
        for label, field in (("rid", "request_id"), ("user", "user_id"), ("day", "day")):
            value = getattr(record, field, None)
            if value:
                tags.append(f"{label}={value}")
        tag_part = f" [{' '.join(tags)}]" if tags else ""
        line = f"{_utc_stamp(record)} {record.levelname:<7} dailyq{tag_part} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development") -> None:
    """JSON lines in production, pretty lines elsewhere. Safe to call twice."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(EngagementContextFilter())

    logger.handlers = [handler]
    logger.propagate = True

    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.error").propagate = False


def _safe_truncate(value, limit: int = _TRUNCATE_AT):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    day: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """
    Emit one engagement event (joker consumed, milestone shown, ...).

    ``extra`` values are stringified and truncated; they may hold user text.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id or get_user_id(),
        "day": day,
    }
    if event_type:
        fields["event_type"] = event_type
    if error_code:
        fields["error_code"] = error_code
    for key, value in (extra or {}).items():
        fields[key] = _safe_truncate(value)

    getattr(logger, level, logger.info)(msg, extra=fields)
