"""
Structured logging with request ID support.

JSON lines in production, one readable line per record elsewhere. The
request id comes from a ContextVar set by RequestIdMiddleware, so log calls
deep in the AI pipeline are correlated without passing it around.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes copied into the output when present.
STRUCTURED_KEYS = (
    "user_id",
    "event_type",
    "error_code",
    "error_message",
    "provider",
    "fallback",
    "attempt",
    "delay_seconds",
    "upstream_status",
    "upstream",
    "capability",
    "plan",
    "status",
    "path",
    "method",
    "latency_bucket",
)

TRUNCATE_LIMIT = 500

_LATENCY_BUCKETS = (
    (100, "<100ms"),
    (1000, "100-1000ms"),
    (10000, "1-10s"),
    (60000, "10-60s"),
)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label; keeps log cardinality low."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=60s"


def safe_truncate(value: Any, limit: int = TRUNCATE_LIMIT) -> str:
    text = value if isinstance(value, str) else repr(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


class RequestIdFilter(logging.Filter):
    """Inject request_id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class StructuredFormatter(logging.Formatter):
    def __init__(self, as_json: bool = False):
        super().__init__()
        self.as_json = as_json

    @staticmethod
    def fields(record: logging.LogRecord) -> Dict[str, Any]:
        return {
            key: getattr(record, key)
            for key in STRUCTURED_KEYS
            if getattr(record, key, None) is not None
        }

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")
        rid = getattr(record, "request_id", None)
        fields = self.fields(record)

        if self.as_json:
            payload = {
                "timestamp": ts,
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
                "request_id": rid,
                **fields,
            }
            if record.exc_info:
                payload["exc_info"] = self.formatException(record.exc_info)
            return json.dumps(payload, default=str, ensure_ascii=False)

        parts = [ts, record.levelname, f"[{record.name}]"]
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{key}={value}" for key, value in fields.items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    logger = logging.getLogger("examprep")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter(as_json=env.lower() == "production"))
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]

    logging.getLogger("httpx").setLevel(logging.WARNING)


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
    """Log `msg` with correlation fields; values in `extra` are truncated."""
    payload: Dict[str, Any] = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    for key, value in (extra or {}).items():
        payload[key] = value if isinstance(value, (int, float)) or value is None else safe_truncate(value)

    logger = logging.getLogger("examprep")
    getattr(logger, level, logger.info)(msg, extra=payload)
