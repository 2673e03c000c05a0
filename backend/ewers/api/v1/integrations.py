"""
FastAPI route: API key and webhook management for logged-in owners.

Provides endpoints to:
    POST   /api/v1/integrations/api-keys               — issue a key
    GET    /api/v1/integrations/api-keys               — list own keys
    POST   /api/v1/integrations/api-keys/{id}/revoke   — revoke a key
    DELETE /api/v1/integrations/api-keys/{id}          — revoke (or ?hard=true delete)
    POST   /api/v1/integrations/webhooks               — register a webhook
    GET    /api/v1/integrations/webhooks               — list own webhooks
    GET    /api/v1/integrations/webhooks/{id}          — one webhook
    PATCH  /api/v1/integrations/webhooks/{id}          — edit name/url/events/status
    DELETE /api/v1/integrations/webhooks/{id}          — remove a webhook
    POST   /api/v1/integrations/webhooks/{id}/test     — send a signed test delivery
    GET    /api/v1/integrations/events                 — subscribable event tags

Key values and webhook secrets are only returned by the create endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from backend.ewers.api.deps import SessionUser, get_container, require_session_user
from backend.ewers.api.schemas import (
    ApiKeyCreateRequest,
    WebhookCreateRequest,
    WebhookUpdateRequest,
)
from backend.ewers.container import ServiceContainer
from backend.ewers.integrations.integration_service import SUBSCRIBABLE_EVENTS
from backend.ewers.integrations.models import SIGNATURE_HEADER

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------

@router.post(
    "/api-keys",
    status_code=status.HTTP_201_CREATED,
    summary="Issue an API key",
    description="The key value is shown once, in this response only.",
)
async def create_api_key(
    request: ApiKeyCreateRequest,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    api_key = await container.integrations.create_api_key(
        user.id,
        name=request.name,
        permissions=request.permissions,
        expires_at=request.expires_at,
    )
    return api_key.to_dict(include_secret=True)


@router.get("/api-keys", summary="List your API keys")
async def list_api_keys(
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    keys = await container.integrations.list_api_keys(user.id)
    return {"api_keys": [k.to_dict() for k in keys], "count": len(keys)}


@router.post("/api-keys/{api_key_id}/revoke", summary="Revoke an API key")
async def revoke_api_key(
    api_key_id: str,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    api_key = await container.integrations.revoke_api_key(user.id, api_key_id)
    return api_key.to_dict()


@router.delete(
    "/api-keys/{api_key_id}",
    summary="Revoke or delete an API key",
    description="Revokes by default so the key stays visible in history; "
                "pass hard=true to remove it entirely.",
)
async def delete_api_key(
    api_key_id: str,
    hard: bool = Query(False, description="Delete instead of revoke"),
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    if hard:
        await container.integrations.delete_api_key(user.id, api_key_id)
        return {"id": api_key_id, "deleted": True}
    api_key = await container.integrations.revoke_api_key(user.id, api_key_id)
    return {"id": api_key_id, "deleted": False, "status": api_key.status.value}


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

@router.post(
    "/webhooks",
    status_code=status.HTTP_201_CREATED,
    summary="Register a webhook",
    description=f"The signing secret is shown once; deliveries carry "
                f"{SIGNATURE_HEADER} = hex HMAC-SHA256(secret, body).",
)
async def create_webhook(
    request: WebhookCreateRequest,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    webhook = await container.integrations.create_webhook(
        user.id, name=request.name, url=request.url, events=request.events,
    )
    return webhook.to_dict(include_secret=True)


@router.get("/webhooks", summary="List your webhooks")
async def list_webhooks(
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    hooks = await container.integrations.list_webhooks(user.id)
    return {"webhooks": [w.to_dict() for w in hooks], "count": len(hooks)}


@router.get("/webhooks/{webhook_id}", summary="Get one webhook")
async def get_webhook(
    webhook_id: str,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    webhook = await container.integrations.get_webhook(user.id, webhook_id)
    return webhook.to_dict()


@router.patch("/webhooks/{webhook_id}", summary="Update a webhook")
async def update_webhook(
    webhook_id: str,
    request: WebhookUpdateRequest,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    webhook = await container.integrations.update_webhook(
        user.id, webhook_id, **request.model_dump(exclude_none=True),
    )
    return webhook.to_dict()


@router.delete("/webhooks/{webhook_id}", summary="Delete a webhook")
async def delete_webhook(
    webhook_id: str,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    await container.integrations.delete_webhook(user.id, webhook_id)
    return {"id": webhook_id, "deleted": True}


@router.post("/webhooks/{webhook_id}/test", summary="Send a test delivery")
async def test_webhook(
    webhook_id: str,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    delivery = await container.integrations.test_webhook(user.id, webhook_id)
    return delivery.to_dict()


@router.get("/events", summary="List subscribable events")
async def list_events():
    return {"events": sorted(SUBSCRIBABLE_EVENTS)}
