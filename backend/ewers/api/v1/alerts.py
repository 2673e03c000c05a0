"""
FastAPI route: Alerts and multi-channel broadcasting (logged-in users).

Provides endpoints to:
    POST  /api/v1/alerts                    — raise an alert (fires alert.created)
    GET   /api/v1/alerts                    — list alerts
    GET   /api/v1/alerts/channels           — list broadcast channels
    GET   /api/v1/alerts/notifications      — dashboard feed for the current user
    GET   /api/v1/alerts/{id}               — one alert
    PATCH /api/v1/alerts/{id}/status        — change status (fires alert.updated)
    POST  /api/v1/alerts/{id}/broadcast     — send over channels (fires alert.broadcast)

Webhook fan-out is scheduled in the background; responses never wait on
subscriber endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from backend.ewers.alerts.broadcast_service import supported_channels
from backend.ewers.alerts.models import (
    PHONE_CHANNELS,
    SOCIAL_CHANNELS,
    AlertSeverity,
    AlertStatus,
    BroadcastChannel,
)
from backend.ewers.api.deps import SessionUser, get_container, require_session_user
from backend.ewers.api.schemas import (
    AlertCreateRequest,
    AlertStatusUpdateRequest,
    BroadcastRequest,
)
from backend.ewers.container import ServiceContainer
from backend.ewers.core.errors import NotFoundError
from backend.ewers.integrations.models import WebhookEvent

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


def _recipient_kind(channel: BroadcastChannel) -> str:
    if channel in PHONE_CHANNELS:
        return "phone_numbers"
    if channel in SOCIAL_CHANNELS:
        return "public_post"
    if channel == BroadcastChannel.EMAIL:
        return "emails"
    return "user_ids/roles"


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Raise an alert",
    description="Stores the alert and notifies alert.created webhook subscribers.",
)
async def create_alert(
    request: AlertCreateRequest,
    user: SessionUser = Depends(require_session_user),
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


@router.get("", summary="List alerts")
async def list_alerts(
    status_filter: Optional[AlertStatus] = Query(None, alias="status"),
    severity: Optional[AlertSeverity] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    alerts = await container.alerts.list(status=status_filter, severity=severity, limit=limit)
    return {"alerts": [a.to_dict() for a in alerts], "count": len(alerts)}


@router.get("/channels", summary="List available channels")
async def list_channels():
    return {
        "channels": [
            {"name": c.value, "recipients": _recipient_kind(c)}
            for c in BroadcastChannel
        ],
        "count": len(supported_channels()),
    }


@router.get("/notifications", summary="Dashboard notifications for the current user")
async def list_notifications(
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    entries = container.feed.for_target(user.id) + container.feed.for_target(f"role:{user.role}")
    entries.sort(key=lambda e: e["created_at"], reverse=True)
    return {"notifications": entries, "count": len(entries)}


@router.get("/{alert_id}", summary="Get one alert")
async def get_alert(
    alert_id: str,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.alerts.get(alert_id)
    if alert is None:
        raise NotFoundError("Alert", id=alert_id)
    return alert.to_dict()


@router.patch("/{alert_id}/status", summary="Update alert status")
async def update_alert_status(
    alert_id: str,
    request: AlertStatusUpdateRequest,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.alerts.update_status(alert_id, request.status)
    if alert is None:
        raise NotFoundError("Alert", id=alert_id)
    container.dispatcher.dispatch_in_background(
        WebhookEvent.ALERT_UPDATED.value, alert.to_dict(),
    )
    return alert.to_dict()


@router.post(
    "/{alert_id}/broadcast",
    summary="Broadcast an alert",
    description="Sends the alert on each requested channel and reports the "
                "outcome per channel; success is false if any attempted channel failed.",
)
async def broadcast_alert(
    alert_id: str,
    request: BroadcastRequest,
    user: SessionUser = Depends(require_session_user),
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.alerts.get(alert_id)
    if alert is None:
        raise NotFoundError("Alert", id=alert_id)

    report = await container.coordinator.broadcast(
        alert, request.channels, request.recipients.to_recipients(),
    )
    container.dispatcher.dispatch_in_background(
        WebhookEvent.ALERT_BROADCAST.value,
        {
            "alert": alert.to_dict(),
            "success": report.success,
            "per_channel_result": report.per_channel_result,
        },
    )
    return report.to_dict()
