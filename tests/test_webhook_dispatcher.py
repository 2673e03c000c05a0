"""
test_webhook_dispatcher.py — Signed webhook fan-out.

Covers:
    • No subscribers → no HTTP calls
    • Headers, envelope and verifiable signatures
    • Per-target failure isolation (non-2xx, timeout, network error)
    • last_triggered_at for every attempt; store errors isolated
    • Bounded concurrency
    • Background scheduling and drain

Outbound HTTP is served by ``httpx.MockTransport``.

Run with:
    pytest tests/test_webhook_dispatcher.py -v
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from backend.ewers.integrations.models import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
)
from backend.ewers.integrations.signing import verify
from backend.ewers.integrations.webhook_dispatcher import WebhookDispatcher

SENT_AT = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
SENT_AT_MS = int(SENT_AT.timestamp() * 1000)


def _make_dispatcher(store, handler, **kw):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kw.setdefault("clock", lambda: SENT_AT)
    return WebhookDispatcher(store, client, **kw)


async def _subscribe(store, url, events=("alert.created",), secret="a" * 32):
    return await store.create_webhook(
        owner_id="owner", name=url, url=url, secret=secret, events=events,
    )


class TestNoSubscribers:

    @pytest.mark.asyncio
    async def test_returns_zero_counts_without_http(self, store):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        summary = await _make_dispatcher(store, handler).trigger_webhooks("alert.created", {})
        assert (summary.success_count, summary.failure_count) == (0, 0)
        assert calls == []

    @pytest.mark.asyncio
    async def test_other_events_do_not_match(self, store):
        await _subscribe(store, "https://a.example/hook", events=("alert.updated",))
        summary = await _make_dispatcher(store, lambda r: httpx.Response(200)).trigger_webhooks(
            "alert.created", {},
        )
        assert summary.attempted == 0


class TestDeliveryFormat:

    @pytest.mark.asyncio
    async def test_headers_body_and_signature(self, store):
        hook = await _subscribe(store, "https://a.example/hook", secret="shared-secret")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        payload = {"id": "ALR-1", "title": "Flood"}
        summary = await _make_dispatcher(store, handler).trigger_webhooks("alert.created", payload)

        assert summary.success_count == 1
        request = seen[0]
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers[EVENT_HEADER] == "alert.created"
        assert request.headers[TIMESTAMP_HEADER] == str(SENT_AT_MS)

        body = request.content
        assert verify(body, request.headers[SIGNATURE_HEADER], hook.secret)
        assert json.loads(body) == {
            "event": "alert.created",
            "timestamp": SENT_AT_MS,
            "data": payload,
        }

    @pytest.mark.asyncio
    async def test_each_webhook_signed_with_own_secret(self, store):
        a = await _subscribe(store, "https://a.example/hook", secret="secret-a")
        b = await _subscribe(store, "https://b.example/hook", secret="secret-b")
        seen = {}

        def handler(request):
            seen[str(request.url)] = request
            return httpx.Response(200)

        await _make_dispatcher(store, handler).trigger_webhooks("alert.created", {"x": 1})
        req_a, req_b = seen[a.url], seen[b.url]
        assert req_a.content == req_b.content
        assert verify(req_a.content, req_a.headers[SIGNATURE_HEADER], "secret-a")
        assert not verify(req_b.content, req_b.headers[SIGNATURE_HEADER], "secret-a")
        assert verify(req_b.content, req_b.headers[SIGNATURE_HEADER], "secret-b")

    @pytest.mark.asyncio
    async def test_user_agent(self, store):
        await _subscribe(store, "https://a.example/hook")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        await _make_dispatcher(store, handler, user_agent="EWERS-Test/1").trigger_webhooks(
            "alert.created", {},
        )
        assert seen[0].headers["User-Agent"] == "EWERS-Test/1"


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, store):
        ok = await _subscribe(store, "https://ok.example/hook")
        await _subscribe(store, "https://down.example/hook")
        await _subscribe(store, "https://slow.example/hook")
        await _subscribe(store, "https://refused.example/hook")

        def handler(request):
            host = request.url.host
            if host == "ok.example":
                return httpx.Response(200)
            if host == "down.example":
                return httpx.Response(503)
            if host == "slow.example":
                raise httpx.ReadTimeout("timed out", request=request)
            raise httpx.ConnectError("refused", request=request)

        summary = await _make_dispatcher(store, handler).trigger_webhooks("alert.created", {})
        assert summary.success_count == 1
        assert summary.failure_count == 3

        by_host = {httpx.URL(d.url).host: d for d in summary.deliveries}
        assert by_host["ok.example"].delivered
        assert by_host["down.example"].status_code == 503
        assert by_host["slow.example"].error_message.startswith("Timeout")
        assert by_host["refused.example"].error_message.startswith("Request error")
        assert summary.deliveries and ok.id in {d.webhook_id for d in summary.deliveries}

    @pytest.mark.asyncio
    async def test_redirect_is_not_success(self, store):
        await _subscribe(store, "https://a.example/hook")
        summary = await _make_dispatcher(
            store, lambda r: httpx.Response(302, headers={"Location": "https://b.example"}),
        ).trigger_webhooks("alert.created", {})
        assert summary.failure_count == 1

    @pytest.mark.asyncio
    async def test_last_triggered_recorded_for_success_and_failure(self, store):
        good = await _subscribe(store, "https://ok.example/hook")
        bad = await _subscribe(store, "https://down.example/hook")

        def handler(request):
            return httpx.Response(200 if request.url.host == "ok.example" else 500)

        await _make_dispatcher(store, handler).trigger_webhooks("alert.created", {})
        assert (await store.get_webhook(good.id)).last_triggered_at == SENT_AT
        assert (await store.get_webhook(bad.id)).last_triggered_at == SENT_AT

    @pytest.mark.asyncio
    async def test_store_error_on_bookkeeping_is_isolated(self, store):
        await _subscribe(store, "https://a.example/hook")
        await _subscribe(store, "https://b.example/hook")
        store.mark_webhook_triggered = AsyncMock(side_effect=RuntimeError("db down"))

        summary = await _make_dispatcher(store, lambda r: httpx.Response(200)).trigger_webhooks(
            "alert.created", {},
        )
        assert summary.success_count == 2
        assert store.mark_webhook_triggered.await_count == 2

    @pytest.mark.asyncio
    async def test_candidate_lookup_failure_propagates(self, store):
        store.find_active_webhooks_for_event = AsyncMock(side_effect=RuntimeError("db down"))
        dispatcher = _make_dispatcher(store, lambda r: httpx.Response(200))
        with pytest.raises(RuntimeError):
            await dispatcher.trigger_webhooks("alert.created", {})


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_in_flight_deliveries_bounded(self, store):
        for i in range(8):
            await _subscribe(store, f"https://h{i}.example/hook")

        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200)

        summary = await _make_dispatcher(store, handler, max_concurrency=3).trigger_webhooks(
            "alert.created", {},
        )
        assert summary.success_count == 8
        assert peak <= 3

    def test_rejects_zero_concurrency(self, store):
        with pytest.raises(ValueError):
            _make_dispatcher(store, lambda r: httpx.Response(200), max_concurrency=0)


class TestBackground:

    @pytest.mark.asyncio
    async def test_dispatch_in_background_and_drain(self, store):
        hook = await _subscribe(store, "https://a.example/hook")
        dispatcher = _make_dispatcher(store, lambda r: httpx.Response(200))

        dispatcher.dispatch_in_background("alert.created", {"id": 1})
        assert dispatcher.pending_tasks == 1

        summaries = await dispatcher.drain()
        assert [s.success_count for s in summaries] == [1]
        assert dispatcher.pending_tasks == 0
        assert (await store.get_webhook(hook.id)).last_triggered_at == SENT_AT

    @pytest.mark.asyncio
    async def test_background_failure_is_logged_not_raised(self, store):
        store.find_active_webhooks_for_event = AsyncMock(side_effect=RuntimeError("db down"))
        dispatcher = _make_dispatcher(store, lambda r: httpx.Response(200))
        dispatcher.dispatch_in_background("alert.created", {})
        assert await dispatcher.drain() == []
        assert dispatcher.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_drain_with_nothing_pending(self, store):
        assert await _make_dispatcher(store, lambda r: httpx.Response(200)).drain() == []


class TestSendTest:

    @pytest.mark.asyncio
    async def test_ignores_subscriptions(self, store):
        hook = await _subscribe(store, "https://a.example/hook", events=("alert.updated",))
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        delivery = await _make_dispatcher(store, handler).send_test(hook)
        assert delivery.delivered
        assert seen[0].headers[EVENT_HEADER] == "webhook.test"
        assert json.loads(seen[0].content)["data"]["webhook_id"] == hook.id
