"""
test_health.py — Health report aggregation.

Run with:
    pytest tests/test_health.py -v
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

from backend.ewers.core.health import (
    BACKLOG_WARNING_THRESHOLD,
    HealthStatus,
    configured_providers,
    run_health_check,
)


def _dispatcher(pending=0):
    return SimpleNamespace(pending_tasks=pending)


class TestRunHealthCheck:

    async def test_healthy_in_simulation(self, settings, store):
        report = await run_health_check(settings=settings, store=store, dispatcher=_dispatcher())
        assert report.status is HealthStatus.HEALTHY
        body = report.to_dict()
        assert body["status"] == "healthy"
        assert body["components"][1]["message"] == "Simulation mode"

    async def test_store_failure_is_unhealthy(self, settings, store):
        store.ping = AsyncMock(side_effect=ConnectionError("store down"))
        report = await run_health_check(settings=settings, store=store, dispatcher=_dispatcher())
        assert report.status is HealthStatus.UNHEALTHY
        assert report.components[0].message == "store down"

    async def test_backlog_degrades(self, settings, store):
        report = await run_health_check(
            settings=settings, store=store,
            dispatcher=_dispatcher(BACKLOG_WARNING_THRESHOLD + 1),
        )
        assert report.status is HealthStatus.DEGRADED

    async def test_worst_status_wins(self, settings_factory, store):
        store.ping = AsyncMock(side_effect=ConnectionError("x"))
        report = await run_health_check(
            settings=settings_factory(CHANNEL_PROVIDER_MODE="live"),
            store=store, dispatcher=_dispatcher(),
        )
        assert report.status is HealthStatus.UNHEALTHY


class TestConfiguredProviders:

    def test_whatsapp_needs_its_own_number(self, settings_factory):
        providers = configured_providers(settings_factory(
            TWILIO_ACCOUNT_SID="AC1", TWILIO_AUTH_TOKEN="t", TWILIO_PHONE_NUMBER="+1555",
        ))
        assert providers["twilio_sms"] is True
        assert providers["twilio_whatsapp"] is False
