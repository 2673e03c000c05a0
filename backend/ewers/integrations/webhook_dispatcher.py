"""
webhook_dispatcher.py — Signed fan-out of system events to webhook subscribers.

═══════════════════════════════════════════════════════════════════════════
DELIVERY FLOW
═══════════════════════════════════════════════════════════════════════════

    trigger_webhooks("alert.created", {...})
          │
          ▼
    store.find_active_webhooks_for_event()   ── none → (0, 0), no HTTP
          │
          ▼
    body = {"event", "timestamp", "data"}    serialized ONCE
          │
          ├──► sign(secret₁, body) ──► POST url₁ ──► mark_webhook_triggered
          ├──► sign(secret₂, body) ──► POST url₂ ──► mark_webhook_triggered
          └──► ...                    (at most N in flight, semaphore-bounded)
          │
          ▼
    DispatchSummary(success_count, failure_count, deliveries)

═══════════════════════════════════════════════════════════════════════════
REQUEST FORMAT
═══════════════════════════════════════════════════════════════════════════

    POST {webhook.url}
    Content-Type:               application/json
    X-EWERS-Webhook-Event:      alert.created
    X-EWERS-Webhook-Signature:  hex(HMAC-SHA256(secret, body))
    X-EWERS-Webhook-Timestamp:  1718000000000

    {"data":{...},"event":"alert.created","timestamp":1718000000000}

A delivery succeeds only on a 2xx response. Timeouts, connection errors and
non-2xx responses are counted as failures and logged; there are no retries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, List, Optional, Set

import httpx

from backend.ewers.integrations.models import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    DispatchSummary,
    Webhook,
    WebhookDelivery,
    WebhookEvent,
    utcnow,
)
from backend.ewers.integrations.signing import serialize_payload, sign
from backend.ewers.integrations.store import CredentialStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_CONCURRENCY = 10


def build_envelope(event: str, payload: Any, at: datetime) -> dict:
    return {
        "event": event,
        "timestamp": int(at.timestamp() * 1000),
        "data": payload,
    }


class WebhookDispatcher:
    """
    Delivers events to every active webhook subscribed to them.

    Parameters
    ----------
    store : CredentialStore
    client : httpx.AsyncClient
        Shared client; its lifetime is owned by the caller.
    timeout_seconds : float
        Per-delivery timeout.
    max_concurrency : int
        Upper bound on deliveries in flight for one event.
    user_agent : str | None
    clock : callable
        Returns the current aware datetime.
    """

    def __init__(
        self,
        store: CredentialStore,
        client: httpx.AsyncClient,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        user_agent: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._client = client
        self._timeout = timeout_seconds
        self._max_concurrency = max_concurrency
        self._user_agent = user_agent
        self._clock = clock
        self._background: Set[asyncio.Task] = set()

    @property
    def pending_tasks(self) -> int:
        return len(self._background)

    # ── Fan-out ──

    async def trigger_webhooks(self, event: str, payload: Any) -> DispatchSummary:
        """
        Deliver ``payload`` under ``event`` to all matching subscribers.

        Errors while loading subscribers propagate; per-subscriber errors
        never do.
        """
        webhooks = await self._store.find_active_webhooks_for_event(event)
        summary = DispatchSummary(event=event)
        if not webhooks:
            logger.debug("No webhooks subscribed to %s", event, extra={"event": event})
            return summary

        sent_at = self._clock()
        body = serialize_payload(build_envelope(event, payload, sent_at))
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(webhook: Webhook) -> WebhookDelivery:
            async with semaphore:
                return await self._deliver(webhook, event, body, sent_at)

        deliveries = await asyncio.gather(*(_bounded(w) for w in webhooks))
        for delivery in deliveries:
            summary.deliveries.append(delivery)
            if delivery.delivered:
                summary.success_count += 1
            else:
                summary.failure_count += 1

        logger.info(
            "Dispatched %s: %d delivered, %d failed",
            event, summary.success_count, summary.failure_count,
            extra={
                "event": event,
                "success_count": summary.success_count,
                "failure_count": summary.failure_count,
            },
        )
        return summary

    async def send_test(self, webhook: Webhook, payload: Optional[Any] = None) -> WebhookDelivery:
        """Send a ``webhook.test`` delivery to one webhook regardless of its subscriptions."""
        event = WebhookEvent.WEBHOOK_TEST.value
        sent_at = self._clock()
        data = payload if payload is not None else {
            "webhook_id": webhook.id,
            "message": "This is a test delivery",
        }
        body = serialize_payload(build_envelope(event, data, sent_at))
        return await self._deliver(webhook, event, body, sent_at)

    # ── Single delivery ──

    async def _deliver(
        self,
        webhook: Webhook,
        event: str,
        body: bytes,
        sent_at: datetime,
    ) -> WebhookDelivery:
        delivery = WebhookDelivery(
            webhook_id=webhook.id,
            url=webhook.url,
            event=event,
            attempted_at=sent_at,
        )
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event,
            SIGNATURE_HEADER: sign(webhook.secret, body),
            TIMESTAMP_HEADER: str(int(sent_at.timestamp() * 1000)),
        }
        if self._user_agent:
            headers["User-Agent"] = self._user_agent

        start = time.perf_counter()
        try:
            response = await self._client.post(
                webhook.url, content=body, headers=headers, timeout=self._timeout,
            )
            delivery.status_code = response.status_code
            delivery.delivered = response.is_success
            if not delivery.delivered:
                delivery.error_message = f"HTTP {response.status_code}"
        except httpx.TimeoutException as exc:
            delivery.error_message = f"Timeout: {exc}"
        except httpx.RequestError as exc:
            delivery.error_message = f"Request error: {exc}"
        except Exception as exc:
            logger.exception("Unexpected error delivering to webhook %s", webhook.id)
            delivery.error_message = f"Unexpected error: {exc}"
        delivery.duration_ms = (time.perf_counter() - start) * 1000

        log_extra = {
            "event": event,
            "webhook_id": webhook.id,
            "status_code": delivery.status_code,
            "duration_ms": round(delivery.duration_ms, 1),
        }
        if delivery.delivered:
            logger.info("Webhook %s delivered %s", webhook.id, event, extra=log_extra)
        else:
            logger.warning(
                "Webhook %s failed for %s: %s",
                webhook.id, event, delivery.error_message, extra=log_extra,
            )

        try:
            await self._store.mark_webhook_triggered(webhook.id, self._clock())
        except Exception as exc:
            logger.error(
                "Could not record last_triggered_at for webhook %s: %s",
                webhook.id, exc, extra={"webhook_id": webhook.id},
            )

        return delivery

    # ── Background scheduling ──

    def dispatch_in_background(self, event: str, payload: Any) -> asyncio.Task:
        """Schedule a fan-out without waiting for it; the task is tracked until done."""
        task = asyncio.create_task(self.trigger_webhooks(event, payload))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background webhook dispatch failed: %s", exc, exc_info=exc)

    async def drain(self) -> List[DispatchSummary]:
        """Wait for every outstanding background fan-out (used at shutdown)."""
        if not self._background:
            return []
        pending = list(self._background)
        logger.info("Draining %d background webhook dispatches", len(pending))
        results = await asyncio.gather(*pending, return_exceptions=True)
        return [r for r in results if isinstance(r, DispatchSummary)]
