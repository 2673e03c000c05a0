"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Every error leaves the API in one envelope:

    {
      "error": {
        "code":    "VALIDATION_ERROR",
        "message": "Webhook URL must be an absolute http(s) URL",
        "status":  422,
        "details": {"field": "url"},        # omitted when empty
        "path":    "/api/v1/...",           # non-production only
        "method":  "POST"                   # non-production only
      }
    }

═══════════════════════════════════════════════════════════════════════════
HIERARCHY
═══════════════════════════════════════════════════════════════════════════

    EwersAPIError                  500  INTERNAL_ERROR
    ├── NotFoundError              404  NOT_FOUND
    ├── ValidationError            422  VALIDATION_ERROR
    ├── AuthenticationError        401  UNAUTHENTICATED   (WWW-Authenticate)
    ├── PermissionDeniedError      403  FORBIDDEN
    └── CredentialStoreError       500  STORE_ERROR

401, 403 and store failures never carry details or request echo. An
external consumer cannot tell an unknown key from a revoked one and never
sees driver output.

Usage:
    from backend.ewers.core.errors import NotFoundError, register_error_handlers

    raise NotFoundError("Webhook", id="wh_3f2a")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.ewers.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class EwersAPIError(Exception):
    """Base exception for all application errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    default_message: str = "An unexpected error occurred"
    # no details or request echo in the response
    confidential: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        self.details = details or {}
        self.headers = headers


class NotFoundError(EwersAPIError):
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, resource: str, **identifiers: Any):
        super().__init__(f"{resource} not found", details={"resource": resource, **identifiers})


class ValidationError(EwersAPIError):
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class AuthenticationError(EwersAPIError):
    """No usable credentials were presented."""

    status_code = 401
    error_code = "UNAUTHENTICATED"
    default_message = "Authentication required"
    confidential = True

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, headers={"WWW-Authenticate": "API-Key"})


class PermissionDeniedError(EwersAPIError):
    """Credentials were rejected or lack the required permission."""

    status_code = 403
    error_code = "FORBIDDEN"
    default_message = "Forbidden"
    confidential = True


class CredentialStoreError(EwersAPIError):
    """A storage call failed; the driver error stays in the log."""

    error_code = "STORE_ERROR"
    default_message = "Credential store unavailable"
    confidential = True

    def __init__(self, operation: str):
        super().__init__()
        self.operation = operation


# ═══════════════════════════════════════════════════════════════════════════
# Error Envelope
# ═══════════════════════════════════════════════════════════════════════════

def error_response(
    status_code: int,
    error_code: str,
    message: str,
    *,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {
        "code": error_code,
        "message": message,
        "status": status_code,
    }
    if details:
        body["details"] = details
    if request is not None and not settings.is_production:
        body["path"] = request.url.path
        body["method"] = request.method
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


def _field_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    errors = []
    for err in exc.errors():
        # drop the leading "body" / "query" segment
        loc = [str(part) for part in err.get("loc", ())][1:]
        errors.append({"field": ".".join(loc) or "request", "message": err.get("msg", "")})
    return errors


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(EwersAPIError)
    async def handle_api_error(request: Request, exc: EwersAPIError):
        logger.log(
            logging.ERROR if exc.status_code >= 500 else logging.WARNING,
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        if exc.confidential:
            return error_response(
                exc.status_code, exc.error_code, exc.message, headers=exc.headers,
            )
        return error_response(
            exc.status_code, exc.error_code, exc.message,
            details=exc.details, request=request, headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = _field_errors(exc)
        logger.info("Rejected request body on %s: %s", request.url.path, errors)
        return error_response(
            422, "VALIDATION_ERROR", "Request validation failed",
            details={"errors": errors}, request=request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return error_response(422, "VALIDATION_ERROR", str(exc), request=request)

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical("Unhandled exception: %s\n%s", exc, traceback.format_exc())
        if settings.DEBUG:
            return error_response(
                500, "INTERNAL_ERROR", str(exc),
                details={"traceback": traceback.format_exc().split("\n")},
                request=request,
            )
        return error_response(500, "INTERNAL_ERROR", "Internal server error", request=request)
