"""
Logging for the loqui API.

Every record under the "loqui" logger is stamped with the current request id
and rendered as one JSON object per line in production, or as a single
readable line in development. Structured fields travel through `extra=` (or
`log_event`) and are emitted as top-level keys.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "loqui"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Present on every LogRecord; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "request_id"}


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


class RequestIdFilter(logging.Filter):
    """Stamp records with the request id bound by RequestIdMiddleware."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class _FieldsFormatter(logging.Formatter):
    """Collects the fixed header and the structured fields of a record."""

    def header(self, record: logging.LogRecord) -> Dict[str, Any]:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        return {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }

    def fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and value is not None
        }


class JsonFormatter(_FieldsFormatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = self.header(record)
        payload.update(self.fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(_FieldsFormatter):
    def format(self, record: logging.LogRecord) -> str:
        head = self.header(record)
        line = f"{head['timestamp']} {head['level']:<7} {head['message']}"
        if head["request_id"]:
            line += f" rid={head['request_id']}"
        for key, value in self.fields(record).items():
            line += f" {key}={value}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development") -> logging.Logger:
    """Install a single stdout handler on the "loqui" logger. Safe to call repeatedly."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    return logger


def log_event(
    level: str,
    msg: str,
    *,
    tenant_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    **fields: Any,
) -> None:
    """Log msg on the "loqui" logger with tenant and event fields as top-level keys."""
    extra: Dict[str, Any] = {"tenant_id": tenant_id, "event_type": event_type, "error_code": error_code}
    extra.update(fields)
    logging.getLogger(LOGGER_NAME).log(
        logging.getLevelName(level.upper()),
        msg,
        extra={key: value for key, value in extra.items() if value is not None},
    )
