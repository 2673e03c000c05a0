"""
models.py — Shared data structures for API keys and webhooks.

Defines:
    • Permission       — the three recognised key tiers (+ reserved admin)
    • ApiKeyStatus     — active / revoked / expired
    • WebhookStatus    — active / disabled
    • ApiKey, Webhook  — credential records held by the credential store
    • WebhookDelivery  — outcome of one signed POST to one subscriber
    • DispatchSummary  — aggregate of one event fan-out
    • AuthDecision     — allow/deny verdict from the API key gate

═══════════════════════════════════════════════════════════════════════════
PERMISSION TIERS
═══════════════════════════════════════════════════════════════════════════

    Tier     Satisfies
    ──────   ─────────────────────────────────────────
    read     requirements of "read" only
    write    requirements of "write" only
    *        any requirement, including "admin"

There is no hierarchy: "write" does NOT imply "read". A key that should
both read and write must hold both tiers, or "*".

═══════════════════════════════════════════════════════════════════════════
WEBHOOK DELIVERY HEADERS
═══════════════════════════════════════════════════════════════════════════

    X-EWERS-Webhook-Event       event tag, e.g. "alert.created"
    X-EWERS-Webhook-Signature   hex HMAC-SHA256 of the raw body
    X-EWERS-Webhook-Timestamp   epoch milliseconds, as a string
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums & Constants
# ═══════════════════════════════════════════════════════════════════════════

class Permission(str, Enum):
    READ = "read"
    WRITE = "write"
    WILDCARD = "*"
    ADMIN = "admin"  # reserved requirement; only "*" satisfies it


# Values a key may be granted
GRANTABLE_PERMISSIONS: FrozenSet[str] = frozenset(
    {Permission.READ.value, Permission.WRITE.value, Permission.WILDCARD.value}
)

MUTATING_METHODS: FrozenSet[str] = frozenset({"POST", "PUT", "DELETE", "PATCH"})


class ApiKeyStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


class WebhookStatus(str, Enum):
    ACTIVE = "active"
    DISABLED = "disabled"


class WebhookEvent(str, Enum):
    """Event tags emitted by the system."""
    ALERT_CREATED = "alert.created"
    ALERT_UPDATED = "alert.updated"
    ALERT_DELETED = "alert.deleted"
    ALERT_BROADCAST = "alert.broadcast"
    API_ACCESSED = "api.accessed"
    WEBHOOK_TEST = "webhook.test"


EVENT_HEADER = "X-EWERS-Webhook-Event"
SIGNATURE_HEADER = "X-EWERS-Webhook-Signature"
TIMESTAMP_HEADER = "X-EWERS-Webhook-Timestamp"


class AuthFailureReason(str, Enum):
    """Stable, distinguishable denial reasons (logged, never sent on the wire)."""
    MISSING_KEY = "missing_key"
    KEY_NOT_FOUND = "key_not_found"
    KEY_REVOKED = "key_revoked"
    KEY_EXPIRED = "key_expired"
    INSUFFICIENT_PERMISSION = "insufficient_permission"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (e.g. from some DB drivers) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_api_key_id() -> str:
    return f"key_{uuid.uuid4().hex[:12]}"


def new_webhook_id() -> str:
    return f"wh_{uuid.uuid4().hex[:12]}"


def redact(secret: str, visible: int = 4) -> str:
    """Show only the first few characters of a secret."""
    if len(secret) <= visible:
        return "*" * len(secret)
    return secret[:visible] + "…"


# ═══════════════════════════════════════════════════════════════════════════
# Credential Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class ApiKey:
    """
    A bearer credential for third-party API consumers.

    Attributes
    ----------
    id : str
        Opaque identifier.
    owner_id : str
        Principal that created the key.
    name : str
        Human label.
    key : str
        The secret value presented in the ``X-API-Key`` header.
    permissions : frozenset of str
        Subset of {"read", "write", "*"}.
    status : ApiKeyStatus
    expires_at : datetime | None
        After this instant the key is treated as expired.
    last_used_at : datetime | None
        Set on every successful authorization.
    """
    id: str
    owner_id: str
    name: str
    key: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    status: ApiKeyStatus = ApiKeyStatus.ACTIVE
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def is_past_expiry(self, now: Optional[datetime] = None) -> bool:
        expires_at = ensure_aware(self.expires_at)
        if expires_at is None:
            return False
        return expires_at <= (now or utcnow())

    def grants(self, required: str) -> bool:
        """Literal membership or wildcard; no implied tiers."""
        return Permission.WILDCARD.value in self.permissions or required in self.permissions

    def to_dict(self, *, include_secret: bool = False) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "key": self.key if include_secret else redact(self.key),
            "permissions": sorted(self.permissions),
            "status": self.status.value,
            "expires_at": _iso(self.expires_at),
            "last_used_at": _iso(self.last_used_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class Webhook:
    """
    A subscriber endpoint that receives signed event deliveries.

    ``secret`` is shared with the receiver at creation time and is only
    used to sign deliveries afterwards.
    """
    id: str
    owner_id: str
    name: str
    url: str
    secret: str
    events: FrozenSet[str] = field(default_factory=frozenset)
    status: WebhookStatus = WebhookStatus.ACTIVE
    last_triggered_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    def subscribes_to(self, event: str) -> bool:
        return self.status == WebhookStatus.ACTIVE and event in self.events

    def to_dict(self, *, include_secret: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "url": self.url,
            "events": sorted(self.events),
            "status": self.status.value,
            "last_triggered_at": _iso(self.last_triggered_at),
            "created_at": _iso(self.created_at),
        }
        if include_secret:
            d["secret"] = self.secret
        return d


# ═══════════════════════════════════════════════════════════════════════════
# Delivery Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class WebhookDelivery:
    """Outcome of one POST to one webhook."""
    webhook_id: str
    url: str
    event: str
    delivered: bool = False
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    duration_ms: float = 0.0
    attempted_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "webhook_id": self.webhook_id,
            "url": self.url,
            "event": self.event,
            "delivered": self.delivered,
            "status_code": self.status_code,
            "error_message": self.error_message,
            "duration_ms": round(self.duration_ms, 1),
            "attempted_at": self.attempted_at.isoformat(),
        }


@dataclass
class DispatchSummary:
    """Aggregate result of fanning one event out to its subscribers."""
    event: str
    success_count: int = 0
    failure_count: int = 0
    deliveries: List[WebhookDelivery] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.success_count + self.failure_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "deliveries": [d.to_dict() for d in self.deliveries],
        }


@dataclass(frozen=True)
class AuthDecision:
    """Verdict of the API key gate for one request."""
    allowed: bool
    required_permission: Optional[str] = None
    reason: Optional[AuthFailureReason] = None
    api_key: Optional[ApiKey] = None
    via_session: bool = False

    @classmethod
    def deny(cls, reason: AuthFailureReason, required: Optional[str] = None,
             api_key: Optional[ApiKey] = None) -> "AuthDecision":
        return cls(allowed=False, required_permission=required, reason=reason, api_key=api_key)
