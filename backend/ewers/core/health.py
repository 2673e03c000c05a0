"""
Health report for the gateway's moving parts.

    Component            Unhealthy when                 Degraded when
    ──────────────────   ────────────────────────────   ───────────────────────────
    credential_store     ping raises
    postgresql           ping raises (postgres only)
    channel_providers                                   live mode, creds missing
    webhook_dispatcher                                  backlog over threshold

The overall status is the worst component status. ``/health/ready`` turns
an unhealthy report into a 503.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from backend.ewers.core.config import Settings
from backend.ewers.core.database import ping_db
from backend.ewers.integrations.store import CredentialStore
from backend.ewers.integrations.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

# Background dispatches above this count mark the dispatcher degraded
BACKLOG_WARNING_THRESHOLD = 100

_PROCESS_STARTED = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    latency_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        out.update({k: v for k, v in (("message", self.message), ("details", self.details)) if v})
        return out


@dataclass
class HealthReport:
    version: str
    environment: str
    components: List[ComponentHealth]
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        worst = max((c.status for c in self.components), key=lambda s: s.severity, default=None)
        return worst or HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _PROCESS_STARTED, 1),
            "components": [c.to_dict() for c in self.components],
        }


async def _probe(name: str, check: Callable[[ComponentHealth], Awaitable[None]]) -> ComponentHealth:
    """Run one check, timing it; an exception marks the component unhealthy."""
    comp = ComponentHealth(name=name)
    started = time.monotonic()
    try:
        await check(comp)
    except Exception as exc:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(exc) or type(exc).__name__
    comp.latency_ms = (time.monotonic() - started) * 1000
    return comp


def configured_providers(settings: Settings) -> Dict[str, bool]:
    """Which live providers have the credentials they need."""
    s = settings
    twilio = bool(s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN)
    return {
        "twilio_sms": twilio and bool(s.TWILIO_PHONE_NUMBER),
        "twilio_whatsapp": twilio and bool(s.TWILIO_WHATSAPP_NUMBER),
        "clickatell": bool(s.CLICKATELL_API_KEY),
        "asterisk": bool(s.ASTERISK_ARI_USER and s.ASTERISK_ARI_PASSWORD),
        "twitter": bool(s.TWITTER_BEARER_TOKEN),
        "facebook": bool(s.FACEBOOK_PAGE_ID and s.FACEBOOK_PAGE_TOKEN),
        "instagram": bool(s.INSTAGRAM_ACCOUNT_ID and s.INSTAGRAM_ACCESS_TOKEN),
        "tiktok": bool(s.TIKTOK_ACCESS_TOKEN and s.TIKTOK_DEFAULT_VIDEO_URL),
        "smtp": bool(s.SMTP_HOST),
    }


async def run_health_check(
    *,
    settings: Settings,
    store: CredentialStore,
    dispatcher: WebhookDispatcher,
    engine: Optional[AsyncEngine] = None,
) -> HealthReport:
    async def credential_store(comp: ComponentHealth) -> None:
        await store.ping()
        comp.message = f"{type(store).__name__} reachable"

    async def postgresql(comp: ComponentHealth) -> None:
        await ping_db(engine)
        # host/db only, never the credentials
        comp.details = {"url": settings.DATABASE_URL.rsplit("@", 1)[-1]}

    async def channel_providers(comp: ComponentHealth) -> None:
        providers = configured_providers(settings)
        comp.details = {"mode": settings.CHANNEL_PROVIDER_MODE, "configured": providers}
        missing = sorted(name for name, ok in providers.items() if not ok)
        if not settings.channels_live:
            comp.message = "Simulation mode"
        elif missing:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Unconfigured providers: " + ", ".join(missing)

    async def webhook_dispatcher(comp: ComponentHealth) -> None:
        pending = dispatcher.pending_tasks
        comp.details = {"pending_dispatches": pending}
        if pending > BACKLOG_WARNING_THRESHOLD:
            comp.status = HealthStatus.DEGRADED
            comp.message = f"{pending} background dispatches outstanding"

    checks = [("credential_store", credential_store)]
    if engine is not None:
        checks.append(("postgresql", postgresql))
    checks += [("channel_providers", channel_providers), ("webhook_dispatcher", webhook_dispatcher)]

    components = await asyncio.gather(*(_probe(name, check) for name, check in checks))
    report = HealthReport(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        components=list(components),
    )
    if report.status is not HealthStatus.HEALTHY:
        logger.warning(
            "Health check %s: %s",
            report.status.value,
            ", ".join(c.name for c in report.components if c.status is not HealthStatus.HEALTHY),
        )
    return report
