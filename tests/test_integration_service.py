"""
test_integration_service.py — Owner-facing API key and webhook management.

Covers:
    • Key issuance (generated value, permission validation, expiry)
    • Ownership enforcement (other owners see NOT_FOUND)
    • Revoke vs hard delete
    • Webhook registration, validation, updates and test deliveries

Run with:
    pytest tests/test_integration_service.py -v
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from backend.ewers.core.errors import NotFoundError, ValidationError
from backend.ewers.integrations.integration_service import (
    SUBSCRIBABLE_EVENTS,
    IntegrationService,
)
from backend.ewers.integrations.models import (
    SIGNATURE_HEADER,
    ApiKeyStatus,
    WebhookStatus,
)
from backend.ewers.integrations.signing import verify
from backend.ewers.integrations.webhook_dispatcher import WebhookDispatcher


def _make_service(store, handler=None):
    handler = handler or (lambda request: httpx.Response(200))
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IntegrationService(store, WebhookDispatcher(store, client))


# ═══════════════════════════════════════════════════════════════════════════
# API keys
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateApiKey:

    @pytest.mark.asyncio
    async def test_generates_48_hex_value(self, store):
        key = await _make_service(store).create_api_key(
            "u1", name="Partner feed", permissions=["read"],
        )
        assert len(key.key) == 48
        assert key.status == ApiKeyStatus.ACTIVE
        assert (await store.find_api_key_by_value(key.key)).id == key.id

    @pytest.mark.asyncio
    async def test_values_differ(self, store):
        service = _make_service(store)
        a = await service.create_api_key("u1", name="a", permissions=["read"])
        b = await service.create_api_key("u1", name="b", permissions=["read"])
        assert a.key != b.key

    @pytest.mark.asyncio
    @pytest.mark.parametrize("permissions", [[], ["admin"], ["read", "delete"]])
    async def test_rejects_bad_permissions(self, store, permissions):
        with pytest.raises(ValidationError) as exc:
            await _make_service(store).create_api_key("u1", name="k", permissions=permissions)
        assert exc.value.details["field"] == "permissions"

    @pytest.mark.asyncio
    async def test_rejects_past_expiry(self, store):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        with pytest.raises(ValidationError):
            await _make_service(store).create_api_key(
                "u1", name="k", permissions=["read"], expires_at=past,
            )

    @pytest.mark.asyncio
    async def test_naive_expiry_treated_as_utc(self, store):
        future = datetime.utcnow() + timedelta(days=30)
        key = await _make_service(store).create_api_key(
            "u1", name="k", permissions=["read"], expires_at=future,
        )
        assert key.expires_at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_rejects_blank_name(self, store):
        with pytest.raises(ValidationError):
            await _make_service(store).create_api_key("u1", name="  ", permissions=["read"])


class TestApiKeyOwnership:

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_owner(self, store):
        service = _make_service(store)
        await service.create_api_key("u1", name="mine", permissions=["read"])
        await service.create_api_key("u2", name="theirs", permissions=["read"])
        assert [k.name for k in await service.list_api_keys("u1")] == ["mine"]

    @pytest.mark.asyncio
    async def test_revoke_keeps_record(self, store):
        service = _make_service(store)
        key = await service.create_api_key("u1", name="k", permissions=["read"])
        revoked = await service.revoke_api_key("u1", key.id)
        assert revoked.status == ApiKeyStatus.REVOKED
        assert await store.get_api_key(key.id) is not None

    @pytest.mark.asyncio
    async def test_delete_removes_record(self, store):
        service = _make_service(store)
        key = await service.create_api_key("u1", name="k", permissions=["read"])
        await service.delete_api_key("u1", key.id)
        assert await store.get_api_key(key.id) is None
        with pytest.raises(NotFoundError):
            await service.delete_api_key("u1", key.id)

    @pytest.mark.asyncio
    async def test_other_owner_cannot_touch_key(self, store):
        service = _make_service(store)
        key = await service.create_api_key("u1", name="k", permissions=["read"])
        with pytest.raises(NotFoundError):
            await service.revoke_api_key("u2", key.id)
        with pytest.raises(NotFoundError):
            await service.delete_api_key("u2", key.id)
        assert (await store.get_api_key(key.id)).status == ApiKeyStatus.ACTIVE


# ═══════════════════════════════════════════════════════════════════════════
# Webhooks
# ═══════════════════════════════════════════════════════════════════════════

class TestWebhookManagement:

    @pytest.mark.asyncio
    async def test_create_generates_secret(self, store):
        hook = await _make_service(store).create_webhook(
            "u1", name="Ops", url="https://ops.example/hook", events=["alert.created"],
        )
        assert len(hook.secret) == 32
        assert hook.status == WebhookStatus.ACTIVE
        assert hook.to_dict().get("secret") is None
        assert hook.to_dict(include_secret=True)["secret"] == hook.secret

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["ftp://x.example/hook", "not a url", "/relative"])
    async def test_rejects_bad_url(self, store, url):
        with pytest.raises(ValidationError):
            await _make_service(store).create_webhook(
                "u1", name="x", url=url, events=["alert.created"],
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("events", [[], ["alert.exploded"], ["webhook.test"]])
    async def test_rejects_bad_events(self, store, events):
        with pytest.raises(ValidationError):
            await _make_service(store).create_webhook(
                "u1", name="x", url="https://x.example", events=events,
            )

    def test_subscribable_events(self):
        assert "api.accessed" in SUBSCRIBABLE_EVENTS
        assert "webhook.test" not in SUBSCRIBABLE_EVENTS

    @pytest.mark.asyncio
    async def test_update(self, store):
        service = _make_service(store)
        hook = await service.create_webhook(
            "u1", name="x", url="https://x.example", events=["alert.created"],
        )
        updated = await service.update_webhook(
            "u1", hook.id, name=None, events=["alert.updated"], status="disabled",
        )
        assert updated.name == "x"
        assert updated.events == frozenset({"alert.updated"})
        assert updated.status == WebhookStatus.DISABLED
        assert updated.secret == hook.secret

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_status(self, store):
        service = _make_service(store)
        hook = await service.create_webhook(
            "u1", name="x", url="https://x.example", events=["alert.created"],
        )
        with pytest.raises(ValidationError) as exc:
            await service.update_webhook("u1", hook.id, status="paused")
        assert exc.value.details["field"] == "status"

    @pytest.mark.asyncio
    async def test_other_owner_sees_not_found(self, store):
        service = _make_service(store)
        hook = await service.create_webhook(
            "u1", name="x", url="https://x.example", events=["alert.created"],
        )
        for call in (
            service.get_webhook("u2", hook.id),
            service.update_webhook("u2", hook.id, name="stolen"),
            service.delete_webhook("u2", hook.id),
            service.test_webhook("u2", hook.id),
        ):
            with pytest.raises(NotFoundError):
                await call

    @pytest.mark.asyncio
    async def test_delete(self, store):
        service = _make_service(store)
        hook = await service.create_webhook(
            "u1", name="x", url="https://x.example", events=["alert.created"],
        )
        await service.delete_webhook("u1", hook.id)
        assert await service.list_webhooks("u1") == []

    @pytest.mark.asyncio
    async def test_test_delivery_is_signed(self, store):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        service = _make_service(store, handler)
        hook = await service.create_webhook(
            "u1", name="x", url="https://x.example/hook", events=["alert.created"],
        )
        delivery = await service.test_webhook("u1", hook.id)

        assert delivery.delivered
        request = seen[0]
        assert verify(request.content, request.headers[SIGNATURE_HEADER], hook.secret)
        assert json.loads(request.content)["event"] == "webhook.test"
