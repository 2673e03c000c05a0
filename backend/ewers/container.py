"""
Service container — builds and owns every long-lived component.

Nothing in the gateway is a module-level singleton: the app lifespan
builds one :class:`ServiceContainer` from settings (or receives one from a
test) and routes reach it through ``request.app.state.container``.

    settings ─┬─► credential store (memory | postgres)
              ├─► httpx.AsyncClient (shared by webhooks and channels)
              ├─► WebhookDispatcher(store, client)
              ├─► ApiKeyGate(store)
              ├─► IntegrationService(store, dispatcher)
              ├─► AlertBroadcastCoordinator(ChannelContext)
              └─► AlertRepository
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.ewers.alerts.broadcast_service import AlertBroadcastCoordinator
from backend.ewers.alerts.channels.common import ChannelContext
from backend.ewers.alerts.channels.dashboard import DashboardFeed
from backend.ewers.alerts.repository import AlertRepository
from backend.ewers.core.config import Settings
from backend.ewers.core.database import (
    close_db,
    create_engine_from_settings,
    create_session_factory,
    init_db,
)
from backend.ewers.integrations.api_key_gate import ApiKeyGate
from backend.ewers.integrations.integration_service import IntegrationService
from backend.ewers.integrations.sql_store import SqlCredentialStore
from backend.ewers.integrations.store import CredentialStore, InMemoryCredentialStore
from backend.ewers.integrations.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    store: CredentialStore
    http_client: httpx.AsyncClient
    dispatcher: WebhookDispatcher
    gate: ApiKeyGate
    integrations: IntegrationService
    coordinator: AlertBroadcastCoordinator
    alerts: AlertRepository
    feed: DashboardFeed
    engine: Optional[AsyncEngine] = None

    async def aclose(self) -> None:
        """Finish background deliveries, then release connections."""
        await self.dispatcher.drain()
        await self.http_client.aclose()
        if self.engine is not None:
            await close_db(self.engine)


def build_services(
    settings: Settings,
    store: CredentialStore,
    http_client: httpx.AsyncClient,
    *,
    engine: Optional[AsyncEngine] = None,
) -> ServiceContainer:
    """Wire components around an existing store and client."""
    dispatcher = WebhookDispatcher(
        store,
        http_client,
        timeout_seconds=settings.WEBHOOK_TIMEOUT_SECONDS,
        max_concurrency=settings.WEBHOOK_MAX_CONCURRENCY,
        user_agent=settings.WEBHOOK_USER_AGENT,
    )
    feed = DashboardFeed()
    return ServiceContainer(
        settings=settings,
        store=store,
        http_client=http_client,
        dispatcher=dispatcher,
        gate=ApiKeyGate(store, admin_path_segment=settings.ADMIN_PATH_SEGMENT),
        integrations=IntegrationService(
            store,
            dispatcher,
            api_key_bytes=settings.API_KEY_BYTES,
            webhook_secret_bytes=settings.WEBHOOK_SECRET_BYTES,
        ),
        coordinator=AlertBroadcastCoordinator(
            ChannelContext(settings=settings, client=http_client, feed=feed),
            max_concurrency=settings.CHANNEL_MAX_CONCURRENCY,
        ),
        alerts=AlertRepository(),
        feed=feed,
        engine=engine,
    )


async def build_container(settings: Settings) -> ServiceContainer:
    """Build the production container from settings."""
    engine: Optional[AsyncEngine] = None
    if settings.CREDENTIAL_STORE == "postgres":
        engine = create_engine_from_settings(settings)
        await init_db(engine)
        store: CredentialStore = SqlCredentialStore(create_session_factory(engine))
    elif settings.CREDENTIAL_STORE == "memory":
        store = InMemoryCredentialStore()
    else:
        raise ValueError(f"Unknown CREDENTIAL_STORE: {settings.CREDENTIAL_STORE}")

    logger.info("Credential store: %s", type(store).__name__)
    return build_services(settings, store, httpx.AsyncClient(), engine=engine)
