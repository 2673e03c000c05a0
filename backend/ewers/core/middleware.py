"""
Request middleware — correlation IDs, surface tagging and access logging.

    Path prefix                 Surface       Notes
    ─────────────────────────   ───────────   ─────────────────────────────
    /api/v1/external            external      X-API-Key gated
    /api/v1/integrations        management    responses may carry secrets
    /api/v1/alerts              alerts
    /health                     health        not logged
    anything else               other

Every response gets ``X-Request-ID`` and ``X-Process-Time``. Management
responses are marked ``Cache-Control: no-store`` because key values and
webhook secrets are returned there exactly once.

The API key itself is never copied into the log context; only whether one
was presented is recorded.
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.ewers.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

_SURFACES = (
    ("/api/v1/external", "external"),
    ("/api/v1/integrations", "management"),
    ("/api/v1/alerts", "alerts"),
    ("/health", "health"),
)
_UNLOGGED_SURFACES = {"health"}
_UNLOGGED_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon")

_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def classify_surface(path: str) -> str:
    for prefix, surface in _SURFACES:
        if path.startswith(prefix):
            return surface
    return "other"


def resolve_request_id(incoming: Optional[str]) -> str:
    """Reuse a caller's correlation ID if it is safe to echo, else mint one."""
    if incoming and _REQUEST_ID_PATTERN.match(incoming):
        return incoming
    return uuid.uuid4().hex[:16]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One access-log line per request.

    Parameters
    ----------
    app : ASGIApp
    api_key_header : str
        Header checked (for presence only) on gated requests.
    """

    def __init__(self, app, api_key_header: str = "X-API-Key"):
        super().__init__(app)
        self._api_key_header = api_key_header

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = resolve_request_id(request.headers.get("X-Request-ID"))
        path = request.url.path
        surface = classify_surface(path)
        client_ip = request.client.host if request.client else "unknown"

        set_request_context(
            request_id=request_id,
            surface=surface,
            client_ip=client_ip,
            method=request.method,
            endpoint=path,
            key_presented=bool(request.headers.get(self._api_key_header)),
        )
        start = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "%s %s → 500 (%.1fms)",
                    request.method, path, (time.perf_counter() - start) * 1000,
                    extra={"status_code": 500, "endpoint": path},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
            if surface == "management":
                response.headers["Cache-Control"] = "no-store"

            if surface not in _UNLOGGED_SURFACES and not path.startswith(_UNLOGGED_PREFIXES):
                self._log(request.method, path, response.status_code, duration_ms)
            return response
        finally:
            set_request_context()

    @staticmethod
    def _log(method: str, path: str, status_code: int, duration_ms: float) -> None:
        if status_code >= 500:
            level = logging.ERROR
        elif status_code >= 400:
            level = logging.WARNING  # gate rejections carry their reason in the gate log
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s → %d (%.1fms)",
            method, path, status_code, duration_ms,
            extra={"status_code": status_code, "duration_ms": duration_ms, "endpoint": path},
        )
