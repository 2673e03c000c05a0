"""
FastAPI route: API for third-party consumers, gated by X-API-Key.

Every route declares the permission it needs:

    Method   Path                                   Requires
    ──────   ────────────────────────────────────   ────────
    GET      /api/v1/external/alerts                read
    GET      /api/v1/external/alerts/{id}           read
    POST     /api/v1/external/alerts                write
    DELETE   /api/v1/external/alerts/{id}           write
    GET      /api/v1/external/admin/summary         *

401 when no key is sent; 403 for unknown, revoked, expired or
under-privileged keys. A logged-in session bypasses the key check.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from backend.ewers.alerts.models import AlertSeverity, AlertStatus
from backend.ewers.api.deps import get_container, require_api_key
from backend.ewers.api.schemas import AlertCreateRequest
from backend.ewers.container import ServiceContainer
from backend.ewers.core.errors import NotFoundError
from backend.ewers.integrations.models import (
    ApiKeyStatus,
    AuthDecision,
    Permission,
    WebhookEvent,
    WebhookStatus,
)

router = APIRouter(prefix="/api/v1/external", tags=["external"])


@router.get("/alerts", summary="List alerts")
async def list_alerts(
    status_filter: Optional[AlertStatus] = Query(None, alias="status"),
    severity: Optional[AlertSeverity] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    auth: AuthDecision = Depends(require_api_key(Permission.READ)),
    container: ServiceContainer = Depends(get_container),
):
    alerts = await container.alerts.list(status=status_filter, severity=severity, limit=limit)
    return {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}


@router.get("/alerts/{alert_id}", summary="Get one alert")
async def get_alert(
    alert_id: str,
    auth: AuthDecision = Depends(require_api_key(Permission.READ)),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.alerts.get(alert_id)
    if alert is None:
        raise NotFoundError("Alert", id=alert_id)
    return alert.to_dict()


@router.post("/alerts", status_code=status.HTTP_201_CREATED, summary="Raise an alert")
async def create_alert(
    request: AlertCreateRequest,
    auth: AuthDecision = Depends(require_api_key(Permission.WRITE)),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.alerts.create(
        title=request.title,
        description=request.description,
        severity=request.severity,
        incident_id=request.incident_id,
        region=request.region,
    )
    container.dispatcher.dispatch_in_background(
        WebhookEvent.ALERT_CREATED.value, alert.to_dict(),
    )
    return alert.to_dict()


@router.delete("/alerts/{alert_id}", summary="Delete an alert")
async def delete_alert(
    alert_id: str,
    auth: AuthDecision = Depends(require_api_key(Permission.WRITE)),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.alerts.get(alert_id)
    if alert is None or not await container.alerts.delete(alert_id):
        raise NotFoundError("Alert", id=alert_id)
    container.dispatcher.dispatch_in_background(
        WebhookEvent.ALERT_DELETED.value, alert.to_dict(),
    )
    return {"id": alert_id, "deleted": True}


@router.get("/admin/summary", summary="Gateway summary (wildcard keys only)")
async def admin_summary(
    auth: AuthDecision = Depends(require_api_key(Permission.ADMIN)),
    container: ServiceContainer = Depends(get_container),
):
    keys = await container.store.list_api_keys()
    hooks = await container.store.list_webhooks()
    alerts = await container.alerts.list(limit=10_000)
    return {
        "api_keys": {
            s.value: sum(1 for k in keys if k.status == s) for s in ApiKeyStatus
        },
        "webhooks": {
            s.value: sum(1 for w in hooks if w.status == s) for s in WebhookStatus
        },
        "alerts": len(alerts),
        "pending_dispatches": container.dispatcher.pending_tasks,
    }
