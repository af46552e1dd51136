"""Error normalization and handlers."""

import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from examprep.core.logging import get_request_id
from examprep.models.ai import FailureKind


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id
        self.details = dict(details or {})


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class SubscriptionRequiredError(AppError):
    """Raised by the request layer when an entitlement check denies access."""
    code = "subscription_required"
    status_code = 403


class AIProviderError(AppError):
    """Final outcome of a failed provider call; carries the failure kind."""
    code = "ai_provider_error"
    status_code = 502
    kind = FailureKind.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        upstream_status: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.provider = provider
        self.upstream_status = upstream_status


class AIRateLimitedError(AIProviderError):
    code = "ai_rate_limited"
    status_code = 429
    kind = FailureKind.RATE_LIMITED


class AIProviderUnavailableError(AIProviderError):
    code = "ai_unavailable"
    status_code = 503
    kind = FailureKind.UNAVAILABLE


class AIRegionBlockedError(AIProviderError):
    code = "ai_region_blocked"
    status_code = 503
    kind = FailureKind.REGION_BLOCKED


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if details:
        error.update(details)
    return {"error": error, "detail": message}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details)
    logger = logging.getLogger("examprep")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    if exc.status_code == 401:
        code = "unauthorized"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("examprep")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("examprep")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
