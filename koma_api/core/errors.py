"""Error normalization and handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from koma_api.core.logging import get_request_id


class AppError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    hint: Optional[str] = None

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, hint: Optional[str] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        if hint:
            self.hint = hint
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthRequiredError(AppError):
    code = "AUTH_REQUIRED"
    status_code = 401


class ForbiddenError(AppError):
    """Authenticated, but the request names a different account."""
    code = "AUTH_REQUIRED"
    status_code = 403


class DemoLimitExceededError(AppError):
    code = "DEMO_LIMIT_EXCEEDED"
    status_code = 429
    hint = "Daily demo limit reached. Use your own API key (BYOK) or subscribe to a plan."


class UsageLimitExceededError(AppError):
    code = "USAGE_LIMIT_EXCEEDED"
    status_code = 429
    hint = "Monthly limit reached. Upgrade your plan or switch to BYOK mode."


class DemoUnavailableError(AppError):
    code = "DEMO_UNAVAILABLE"
    status_code = 503
    hint = "The demo is paused. You can keep generating with your own API key (BYOK)."


class BillingDisabledError(AppError):
    code = "BILLING_DISABLED"
    status_code = 503


class NoSubscriptionError(AppError):
    code = "NO_SUBSCRIPTION"
    status_code = 400


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, hint: Optional[str] = None) -> dict:
    error = {"code": code, "message": message, "request_id": request_id}
    if hint:
        error["hint"] = hint
    return {"error": error, "detail": message}


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.hint)
    logger = logging.getLogger("koma")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("koma")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {field}" if field else "Invalid request"
    logging.getLogger("koma").warning("request.invalid", extra={"request_id": rid, "error_code": "VALIDATION_ERROR"})
    response = JSONResponse(status_code=400, content=_error_payload("VALIDATION_ERROR", message, rid))
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("koma")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "INTERNAL_ERROR"})
    payload = _error_payload("INTERNAL_ERROR", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
