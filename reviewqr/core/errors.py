"""Error taxonomy and FastAPI handlers.

Validation and entitlement errors are user-facing and carry structured
`details`. Persistence and unexpected errors are logged with context and
answered with a generic message.
"""

import logging
import builtins
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from reviewqr.core.logging import get_request_id


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
        self.details = details


class ValidationError(AppError, ValueError):
    """Bad input shape or range. `errors` lists one message per failed rule."""
    code = "validation_error"
    status_code = 400

    def __init__(self, message: str, *, errors: Optional[List[str]] = None, **kwargs):
        self.errors = list(errors or [])
        details = kwargs.pop("details", None) or {}
        if self.errors:
            details = {**details, "errors": self.errors}
        super().__init__(message, details=details or None, **kwargs)


class InvalidContentError(ValidationError):
    """Review text failed the content-quality rules."""
    code = "invalid_content"


class AlreadyEnhancedError(AppError):
    code = "already_enhanced"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class EntitlementDeniedError(AppError):
    """Quota or feature gate closed for the business's current plan."""
    code = "entitlement_denied"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class PersistenceError(AppError):
    code = "persistence_error"
    status_code = 500


class ExternalServiceDegraded(Exception):
    """Remote AI call failed or timed out. Recovered locally, never returned to clients."""


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
        error["details"] = details
    return {
        "error": error,
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    logger = logging.getLogger("reviewqr")
    if exc.status_code >= 500:
        # Internal detail stays in the log
        logger.error(
            "app.error",
            extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
        )
        payload = _error_payload(exc.code, "Internal server error", rid)
    else:
        logger.warning(
            "app.error",
            extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
        )
        payload = _error_payload(exc.code, exc.message, rid, exc.details)
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    if exc.status_code == 401:
        code = "unauthorized"
    message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    details = exc.detail if isinstance(exc.detail, dict) else None
    payload = _error_payload(code, message, rid, details)
    logger = logging.getLogger("reviewqr")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    payload = _error_payload("validation_error", "Validation failed", rid, {"errors": errors})
    logging.getLogger("reviewqr").warning(
        "request.validation_failed", extra={"request_id": rid, "error_count": len(errors)}
    )
    response = JSONResponse(status_code=400, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("reviewqr")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response
