"""
api_key_gate.py — Authorization of inbound requests on key-gated routes.

═══════════════════════════════════════════════════════════════════════════
DECISION ORDER
═══════════════════════════════════════════════════════════════════════════

    1. Session user present           → allow (no key needed)
    2. No X-API-Key value             → deny  MISSING_KEY
    3. Key unknown to the store       → deny  KEY_NOT_FOUND
    4. Resolve required permission:
         declared on the route        → use it
         POST / PUT / DELETE / PATCH  → "write"
         anything else                → "read"
         path contains "/admin"       → "admin" (fallback rule only)
    5. status == revoked              → deny  KEY_REVOKED
       status == expired              → deny  KEY_EXPIRED
       expires_at <= now              → store marks expired, deny KEY_EXPIRED
    6. "*" held or exact tier held    → allow
       otherwise                      → deny  INSUFFICIENT_PERMISSION
    7. On allow                       → store records last_used_at = now

═══════════════════════════════════════════════════════════════════════════
WIRE MAPPING
═══════════════════════════════════════════════════════════════════════════

    Reason                      HTTP    Body message
    ────────────────────────    ────    ─────────────────────────────
    MISSING_KEY                 401     "API key required"
    KEY_NOT_FOUND               403     "Invalid or expired API key"
    KEY_REVOKED                 403     "Invalid or expired API key"
    KEY_EXPIRED                 403     "Invalid or expired API key"
    INSUFFICIENT_PERMISSION     403     "Insufficient permissions"

The distinct reasons are only written to the log; clients cannot tell an
unknown key from a revoked one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from backend.ewers.core.errors import (
    AuthenticationError,
    EwersAPIError,
    PermissionDeniedError,
)
from backend.ewers.integrations.models import (
    MUTATING_METHODS,
    ApiKeyStatus,
    AuthDecision,
    AuthFailureReason,
    Permission,
    utcnow,
)
from backend.ewers.integrations.store import CredentialStore

logger = logging.getLogger(__name__)

MISSING_KEY_MESSAGE = "API key required"
INVALID_KEY_MESSAGE = "Invalid or expired API key"
INSUFFICIENT_PERMISSION_MESSAGE = "Insufficient permissions"


class ApiKeyGate:
    """
    Decides whether a request may proceed on a key-gated route.

    Parameters
    ----------
    store : CredentialStore
    admin_path_segment : str
        Substring that escalates an undeclared route to the "admin" tier.
    clock : callable
        Returns the current aware datetime; injectable for tests.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        admin_path_segment: str = "/admin",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._admin_path_segment = admin_path_segment
        self._clock = clock

    def required_permission(
        self,
        method: str,
        path: str,
        declared: Optional[str] = None,
    ) -> str:
        if declared:
            return declared
        if self._admin_path_segment and self._admin_path_segment in path:
            return Permission.ADMIN.value
        if method.upper() in MUTATING_METHODS:
            return Permission.WRITE.value
        return Permission.READ.value

    async def authorize(
        self,
        *,
        session_user: Optional[Any],
        presented_key: Optional[str],
        method: str,
        path: str,
        declared: Optional[str] = None,
    ) -> AuthDecision:
        if session_user is not None:
            return AuthDecision(allowed=True, via_session=True)

        if not presented_key:
            return self._deny(AuthFailureReason.MISSING_KEY, path)

        api_key = await self._store.find_api_key_by_value(presented_key)
        if api_key is None:
            return self._deny(AuthFailureReason.KEY_NOT_FOUND, path)

        required = self.required_permission(method, path, declared)

        if api_key.status == ApiKeyStatus.REVOKED:
            return self._deny(AuthFailureReason.KEY_REVOKED, path, required, api_key)
        if api_key.status == ApiKeyStatus.EXPIRED:
            return self._deny(AuthFailureReason.KEY_EXPIRED, path, required, api_key)

        now = self._clock()
        if api_key.is_past_expiry(now):
            await self._store.mark_api_key_expired(api_key.id)
            logger.info(
                "API key %s expired at %s",
                api_key.id, api_key.expires_at,
                extra={"api_key_id": api_key.id},
            )
            return self._deny(AuthFailureReason.KEY_EXPIRED, path, required, api_key)

        if not api_key.grants(required):
            return self._deny(
                AuthFailureReason.INSUFFICIENT_PERMISSION, path, required, api_key,
            )

        await self._store.mark_api_key_used(api_key.id, now)
        api_key.last_used_at = now
        return AuthDecision(allowed=True, required_permission=required, api_key=api_key)

    @staticmethod
    def _deny(reason, path, required=None, api_key=None) -> AuthDecision:
        logger.warning(
            "API key rejected on %s: %s (required=%s)",
            path, reason.value, required,
            extra={
                "reason": reason.value,
                "api_key_id": api_key.id if api_key else None,
            },
        )
        return AuthDecision.deny(reason, required=required, api_key=api_key)


def error_for_decision(decision: AuthDecision) -> EwersAPIError:
    """Collapse a denial into the generic error sent to the client."""
    if decision.allowed:
        raise ValueError("Cannot build an error for an allowed decision")
    if decision.reason == AuthFailureReason.MISSING_KEY:
        return AuthenticationError(MISSING_KEY_MESSAGE)
    if decision.reason == AuthFailureReason.INSUFFICIENT_PERMISSION:
        return PermissionDeniedError(INSUFFICIENT_PERMISSION_MESSAGE)
    return PermissionDeniedError(INVALID_KEY_MESSAGE)
