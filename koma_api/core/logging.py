"""
Structured logging for the koma service.

Everything logs through the "koma" logger. Production emits one JSON object per
line; other environments emit a short human-readable line. The request id of
the current HTTP request is bound in a ContextVar by RequestIdMiddleware and
stamped onto every record, so service code never passes it around.
"""

import json
import logging
import os
import sys
from bisect import bisect_right
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "koma"

_request_id: ContextVar[Optional[str]] = ContextVar("koma_request_id", default=None)

# `extra=` keys that are carried into JSON output
STRUCTURED_FIELDS = (
    "user_id",
    "event_id",
    "event_type",
    "error_code",
    "status",
    "path",
    "method",
    "latency_bucket",
    "feature",
    "plan",
    "kind",
    "applied",
    "processor_message",
)

_LATENCY_EDGES_MS = (10, 100, 500, 1000)
_LATENCY_LABELS = ("<10ms", "10-100ms", "100-500ms", "500-1000ms", ">=1000ms")

_MAX_FIELD_LENGTH = 500


def bind_request_id(request_id: str) -> Token:
    return _request_id.set(request_id)


def reset_request_id(token: Token) -> None:
    _request_id.reset(token)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    return _request_id.get() or default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label; raw timings are not logged."""
    if latency_ms is None:
        return "unknown"
    return _LATENCY_LABELS[bisect_right(_LATENCY_EDGES_MS, latency_ms)]


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id()
        return True


class KomaFormatter(logging.Formatter):
    def __init__(self, as_json: bool = False):
        super().__init__()
        self.as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        rid = getattr(record, "request_id", None)

        if not self.as_json:
            line = f"{ts} {record.levelname:<7} [{LOGGER_NAME}]"
            if rid:
                line += f" rid={rid}"
            line += f" {record.getMessage()}"
            if record.exc_info:
                line += "\n" + self.formatException(record.exc_info)
            return line

        payload = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": rid,
        }
        payload.update(
            (name, getattr(record, name))
            for name in STRUCTURED_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(env: str = "development") -> None:
    """Install the single stdout handler on the koma logger (idempotent)."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(KomaFormatter(as_json=env.lower() == "production"))
    handler.addFilter(_RequestIdFilter())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.handlers = [handler]
    logger.propagate = True


def _truncate(value) -> str:
    text = str(value)
    if len(text) > _MAX_FIELD_LENGTH:
        return text[:_MAX_FIELD_LENGTH] + "...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """
    Log a named event with structured fields.

    Values in `extra` are stringified and truncated, so exception objects and
    processor payloads can be passed as-is.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {"request_id": request_id or get_request_id(), "user_id": user_id}
    if event_type:
        fields["event_type"] = event_type
    if error_code:
        fields["error_code"] = error_code
    for key, value in (extra or {}).items():
        fields[key] = value if isinstance(value, (bool, int, float)) else _truncate(value)

    logger.log(logging.getLevelName(level.upper()), msg, extra=fields)
