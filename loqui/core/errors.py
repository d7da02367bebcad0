"""Error normalization and handlers."""

import logging
import builtins
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from loqui.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id

    def to_payload(self, request_id: str) -> Dict[str, Any]:
        return _error_payload(self.code, self.message, request_id)

    def headers(self) -> Dict[str, str]:
        return {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class QuotaExceededError(AppError):
    """Plan cap reached. Recoverable by upgrading or waiting for the cycle to roll."""

    code = "plan_limit_reached"
    status_code = 403

    def __init__(
        self,
        message: str,
        *,
        plan: str,
        resource: str,
        limit: int,
        used: int,
        cycle_end: Optional[datetime] = None,
        upgrade_required: bool = True,
        request_id: Optional[str] = None,
    ):
        super().__init__(message, request_id=request_id)
        self.plan = plan
        self.resource = resource
        self.limit = limit
        self.used = used
        self.cycle_end = cycle_end
        self.upgrade_required = upgrade_required

    def to_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.message,
            "code": self.code,
            "plan": self.plan,
            "resource": self.resource,
            "limit": self.limit,
            "used": self.used,
            "upgradeRequired": self.upgrade_required,
            "request_id": request_id,
        }
        if self.cycle_end is not None:
            payload["cycleEnd"] = format_timestamp(self.cycle_end)
        return payload


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, message: str, *, retry_after: int, request_id: Optional[str] = None):
        super().__init__(message, request_id=request_id)
        self.retry_after = max(1, int(retry_after))

    def to_payload(self, request_id: str) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "retryAfter": self.retry_after,
            "request_id": request_id,
        }

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ExpansionError(AppError):
    """A scheduling request could not be expanded into a consistent set of deliveries."""

    code = "expansion_failed"
    status_code = 422


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with a trailing Z, e.g. 2026-02-15T12:00:00Z."""
    return value.isoformat().replace("+00:00", "Z")


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = exc.to_payload(rid)
    logger = logging.getLogger("loqui")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    for name, value in exc.headers().items():
        response.headers[name] = value
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if exc.status_code == 404:
        code = "not_found"
    elif exc.status_code == 401:
        code = "unauthorized"
    else:
        code = "http_error"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("loqui")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else str(first.get("msg", "Invalid request"))
    payload = _error_payload("validation_error", message, rid)
    logging.getLogger("loqui").warning(
        "request.invalid",
        extra={"request_id": rid, "error_code": "validation_error", "error_count": len(errors)},
    )
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("loqui")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
