"""
integration_service.py — Owner-facing management of API keys and webhooks.

Validates input, generates secrets and enforces ownership before handing
writes to the credential store. Route handlers call this service; they
never touch the store directly.

Ownership rule: an owner can only see or change records they created.
A record owned by someone else is reported as not found.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from backend.ewers.core.errors import NotFoundError, ValidationError
from backend.ewers.integrations.models import (
    GRANTABLE_PERMISSIONS,
    ApiKey,
    Webhook,
    WebhookDelivery,
    WebhookEvent,
    WebhookStatus,
    ensure_aware,
    utcnow,
)
from backend.ewers.integrations.signing import (
    API_KEY_BYTES,
    WEBHOOK_SECRET_BYTES,
    generate_secret,
)
from backend.ewers.integrations.store import CredentialStore
from backend.ewers.integrations.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

# Tags a webhook may subscribe to
SUBSCRIBABLE_EVENTS = frozenset(
    e.value for e in WebhookEvent if e != WebhookEvent.WEBHOOK_TEST
)


def _validate_permissions(permissions: Iterable[str]) -> frozenset:
    perms = frozenset(permissions)
    if not perms:
        raise ValidationError("At least one permission is required", field="permissions")
    unknown = perms - GRANTABLE_PERMISSIONS
    if unknown:
        raise ValidationError(
            f"Unknown permissions: {sorted(unknown)}",
            field="permissions",
            allowed=sorted(GRANTABLE_PERMISSIONS),
        )
    return perms


def _validate_events(events: Iterable[str]) -> frozenset:
    tags = frozenset(events)
    if not tags:
        raise ValidationError("At least one event is required", field="events")
    unknown = tags - SUBSCRIBABLE_EVENTS
    if unknown:
        raise ValidationError(
            f"Unknown events: {sorted(unknown)}",
            field="events",
            allowed=sorted(SUBSCRIBABLE_EVENTS),
        )
    return tags


def _validate_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Webhook URL must be an absolute http(s) URL", field="url")
    return url


def _validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name must not be empty", field="name")
    return name


class IntegrationService:
    """Create, list, revoke and delete API keys; manage webhooks."""

    def __init__(
        self,
        store: CredentialStore,
        dispatcher: WebhookDispatcher,
        *,
        api_key_bytes: int = API_KEY_BYTES,
        webhook_secret_bytes: int = WEBHOOK_SECRET_BYTES,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._api_key_bytes = api_key_bytes
        self._webhook_secret_bytes = webhook_secret_bytes

    # ═══════════════════════════════════════════════════════════════════
    # API keys
    # ═══════════════════════════════════════════════════════════════════

    async def create_api_key(
        self,
        owner_id: str,
        *,
        name: str,
        permissions: Iterable[str],
        expires_at: Optional[datetime] = None,
    ) -> ApiKey:
        """Issue a new key. The returned record is the only time its value is exposed."""
        perms = _validate_permissions(permissions)
        expires_at = ensure_aware(expires_at)
        if expires_at is not None and expires_at <= utcnow():
            raise ValidationError("Expiry must be in the future", field="expires_at")

        api_key = await self._store.create_api_key(
            owner_id=owner_id,
            name=_validate_name(name),
            key=generate_secret(self._api_key_bytes),
            permissions=perms,
            expires_at=expires_at,
        )
        logger.info(
            "API key %s created for %s with %s",
            api_key.id, owner_id, sorted(perms),
            extra={"api_key_id": api_key.id, "owner_id": owner_id},
        )
        return api_key

    async def list_api_keys(self, owner_id: str) -> List[ApiKey]:
        return await self._store.list_api_keys(owner_id)

    async def _owned_api_key(self, owner_id: str, api_key_id: str) -> ApiKey:
        api_key = await self._store.get_api_key(api_key_id)
        if api_key is None or api_key.owner_id != owner_id:
            raise NotFoundError("API key", id=api_key_id)
        return api_key

    async def revoke_api_key(self, owner_id: str, api_key_id: str) -> ApiKey:
        await self._owned_api_key(owner_id, api_key_id)
        revoked = await self._store.revoke_api_key(api_key_id)
        if revoked is None:
            raise NotFoundError("API key", id=api_key_id)
        logger.info(
            "API key %s revoked", api_key_id,
            extra={"api_key_id": api_key_id, "owner_id": owner_id},
        )
        return revoked

    async def delete_api_key(self, owner_id: str, api_key_id: str) -> None:
        await self._owned_api_key(owner_id, api_key_id)
        if not await self._store.delete_api_key(api_key_id):
            raise NotFoundError("API key", id=api_key_id)
        logger.info(
            "API key %s deleted", api_key_id,
            extra={"api_key_id": api_key_id, "owner_id": owner_id},
        )

    # ═══════════════════════════════════════════════════════════════════
    # Webhooks
    # ═══════════════════════════════════════════════════════════════════

    async def create_webhook(
        self,
        owner_id: str,
        *,
        name: str,
        url: str,
        events: Iterable[str],
    ) -> Webhook:
        """Register a webhook with a freshly generated signing secret."""
        webhook = await self._store.create_webhook(
            owner_id=owner_id,
            name=_validate_name(name),
            url=_validate_url(url),
            secret=generate_secret(self._webhook_secret_bytes),
            events=_validate_events(events),
        )
        logger.info(
            "Webhook %s registered for %s → %s",
            webhook.id, sorted(webhook.events), webhook.url,
            extra={"webhook_id": webhook.id, "owner_id": owner_id},
        )
        return webhook

    async def list_webhooks(self, owner_id: str) -> List[Webhook]:
        return await self._store.list_webhooks(owner_id)

    async def get_webhook(self, owner_id: str, webhook_id: str) -> Webhook:
        webhook = await self._store.get_webhook(webhook_id)
        if webhook is None or webhook.owner_id != owner_id:
            raise NotFoundError("Webhook", id=webhook_id)
        return webhook

    async def update_webhook(self, owner_id: str, webhook_id: str, **changes: Any) -> Webhook:
        """Apply owner edits; ``None`` values are ignored."""
        await self.get_webhook(owner_id, webhook_id)

        values: Dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
        if "name" in values:
            values["name"] = _validate_name(values["name"])
        if "url" in values:
            values["url"] = _validate_url(values["url"])
        if "events" in values:
            values["events"] = _validate_events(values["events"])
        if "status" in values:
            try:
                values["status"] = WebhookStatus(values["status"])
            except ValueError:
                raise ValidationError(
                    f"Unknown webhook status: {values['status']}",
                    field="status",
                    allowed=[s.value for s in WebhookStatus],
                ) from None

        webhook = await self._store.update_webhook(webhook_id, **values)
        if webhook is None:
            raise NotFoundError("Webhook", id=webhook_id)
        logger.info(
            "Webhook %s updated: %s", webhook_id, sorted(values),
            extra={"webhook_id": webhook_id, "owner_id": owner_id},
        )
        return webhook

    async def delete_webhook(self, owner_id: str, webhook_id: str) -> None:
        await self.get_webhook(owner_id, webhook_id)
        if not await self._store.delete_webhook(webhook_id):
            raise NotFoundError("Webhook", id=webhook_id)
        logger.info(
            "Webhook %s deleted", webhook_id,
            extra={"webhook_id": webhook_id, "owner_id": owner_id},
        )

    async def test_webhook(self, owner_id: str, webhook_id: str) -> WebhookDelivery:
        """Send one signed ``webhook.test`` delivery and report the outcome."""
        webhook = await self.get_webhook(owner_id, webhook_id)
        return await self._dispatcher.send_test(webhook)
