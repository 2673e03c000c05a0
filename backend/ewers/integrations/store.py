"""
store.py — Credential store contract and in-memory implementation.

The API key gate, the webhook dispatcher and the management service only
talk to :class:`CredentialStore`. Every mutation is an atomic single-row
write; no operation spans more than one key or webhook.

Implementations:
    InMemoryCredentialStore  — development and tests
    SqlCredentialStore       — PostgreSQL (see ``sql_store``)
"""

from __future__ import annotations

import asyncio
import dataclasses
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from backend.ewers.integrations.models import (
    ApiKey,
    ApiKeyStatus,
    Webhook,
    WebhookStatus,
    new_api_key_id,
    new_webhook_id,
)

# Fields an owner may change on an existing webhook
WEBHOOK_MUTABLE_FIELDS = frozenset({"name", "url", "events", "status"})


class CredentialStore(ABC):
    """Persistence contract for API keys and webhook registrations."""

    # ── API keys ──

    @abstractmethod
    async def create_api_key(
        self,
        *,
        owner_id: str,
        name: str,
        key: str,
        permissions: Iterable[str],
        expires_at: Optional[datetime] = None,
    ) -> ApiKey:
        """Persist a new active key."""

    @abstractmethod
    async def find_api_key_by_value(self, key: str) -> Optional[ApiKey]:
        """Look up a key by the secret value a client presented."""

    @abstractmethod
    async def get_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        pass

    @abstractmethod
    async def list_api_keys(self, owner_id: Optional[str] = None) -> List[ApiKey]:
        """Newest first; all owners when ``owner_id`` is None."""

    @abstractmethod
    async def mark_api_key_used(self, api_key_id: str, at: datetime) -> None:
        pass

    @abstractmethod
    async def mark_api_key_expired(self, api_key_id: str) -> None:
        pass

    @abstractmethod
    async def revoke_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        """Transition an active key to revoked. Returns None if unknown."""

    @abstractmethod
    async def delete_api_key(self, api_key_id: str) -> bool:
        pass

    # ── Webhooks ──

    @abstractmethod
    async def create_webhook(
        self,
        *,
        owner_id: str,
        name: str,
        url: str,
        secret: str,
        events: Iterable[str],
    ) -> Webhook:
        """Persist a new active webhook."""

    @abstractmethod
    async def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        pass

    @abstractmethod
    async def list_webhooks(self, owner_id: Optional[str] = None) -> List[Webhook]:
        pass

    @abstractmethod
    async def find_active_webhooks_for_event(self, event: str) -> List[Webhook]:
        """Active webhooks whose subscribed events contain ``event``."""

    @abstractmethod
    async def update_webhook(self, webhook_id: str, **changes) -> Optional[Webhook]:
        """Apply owner edits (name, url, events, status)."""

    @abstractmethod
    async def mark_webhook_triggered(self, webhook_id: str, at: datetime) -> None:
        pass

    @abstractmethod
    async def delete_webhook(self, webhook_id: str) -> bool:
        pass

    async def ping(self) -> None:
        """Raise if the backing storage is unreachable."""


def check_webhook_changes(changes: Dict[str, object]) -> None:
    unknown = set(changes) - WEBHOOK_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update webhook fields: {sorted(unknown)}")


class InMemoryCredentialStore(CredentialStore):
    """
    Dict-backed store for development and tests.

    Records are copied on the way in and out so callers never hold a
    reference to stored state; a single lock serialises writes.
    """

    def __init__(self) -> None:
        self._api_keys: Dict[str, ApiKey] = {}
        self._webhooks: Dict[str, Webhook] = {}
        self._lock = asyncio.Lock()

    # ── API keys ──

    async def create_api_key(self, *, owner_id, name, key, permissions, expires_at=None) -> ApiKey:
        api_key = ApiKey(
            id=new_api_key_id(),
            owner_id=owner_id,
            name=name,
            key=key,
            permissions=frozenset(permissions),
            expires_at=expires_at,
        )
        async with self._lock:
            self._api_keys[api_key.id] = api_key
        return dataclasses.replace(api_key)

    async def find_api_key_by_value(self, key: str) -> Optional[ApiKey]:
        for api_key in self._api_keys.values():
            if api_key.key == key:
                return dataclasses.replace(api_key)
        return None

    async def get_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        api_key = self._api_keys.get(api_key_id)
        return dataclasses.replace(api_key) if api_key else None

    async def list_api_keys(self, owner_id: Optional[str] = None) -> List[ApiKey]:
        keys = [
            dataclasses.replace(k) for k in self._api_keys.values()
            if owner_id is None or k.owner_id == owner_id
        ]
        return sorted(keys, key=lambda k: k.created_at, reverse=True)

    async def mark_api_key_used(self, api_key_id: str, at: datetime) -> None:
        async with self._lock:
            api_key = self._api_keys.get(api_key_id)
            if api_key:
                api_key.last_used_at = at

    async def mark_api_key_expired(self, api_key_id: str) -> None:
        async with self._lock:
            api_key = self._api_keys.get(api_key_id)
            if api_key and api_key.status == ApiKeyStatus.ACTIVE:
                api_key.status = ApiKeyStatus.EXPIRED

    async def revoke_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        async with self._lock:
            api_key = self._api_keys.get(api_key_id)
            if api_key is None:
                return None
            if api_key.status == ApiKeyStatus.ACTIVE:
                api_key.status = ApiKeyStatus.REVOKED
            return dataclasses.replace(api_key)

    async def delete_api_key(self, api_key_id: str) -> bool:
        async with self._lock:
            return self._api_keys.pop(api_key_id, None) is not None

    # ── Webhooks ──

    async def create_webhook(self, *, owner_id, name, url, secret, events) -> Webhook:
        webhook = Webhook(
            id=new_webhook_id(),
            owner_id=owner_id,
            name=name,
            url=url,
            secret=secret,
            events=frozenset(events),
        )
        async with self._lock:
            self._webhooks[webhook.id] = webhook
        return dataclasses.replace(webhook)

    async def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        webhook = self._webhooks.get(webhook_id)
        return dataclasses.replace(webhook) if webhook else None

    async def list_webhooks(self, owner_id: Optional[str] = None) -> List[Webhook]:
        hooks = [
            dataclasses.replace(w) for w in self._webhooks.values()
            if owner_id is None or w.owner_id == owner_id
        ]
        return sorted(hooks, key=lambda w: w.created_at, reverse=True)

    async def find_active_webhooks_for_event(self, event: str) -> List[Webhook]:
        return [
            dataclasses.replace(w) for w in self._webhooks.values()
            if w.subscribes_to(event)
        ]

    async def update_webhook(self, webhook_id: str, **changes) -> Optional[Webhook]:
        check_webhook_changes(changes)
        if "events" in changes:
            changes["events"] = frozenset(changes["events"])
        if "status" in changes:
            changes["status"] = WebhookStatus(changes["status"])
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook is None:
                return None
            updated = dataclasses.replace(webhook, **changes)
            self._webhooks[webhook_id] = updated
            return dataclasses.replace(updated)

    async def mark_webhook_triggered(self, webhook_id: str, at: datetime) -> None:
        async with self._lock:
            webhook = self._webhooks.get(webhook_id)
            if webhook and (webhook.last_triggered_at is None or at > webhook.last_triggered_at):
                webhook.last_triggered_at = at

    async def delete_webhook(self, webhook_id: str) -> bool:
        async with self._lock:
            return self._webhooks.pop(webhook_id, None) is not None
