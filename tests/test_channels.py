"""
test_channels.py — Channel senders against mocked providers.

Covers:
    • Simulation mode (no HTTP traffic)
    • Live mode request shape for Twilio, Clickatell, WhatsApp, Asterisk,
      X (Twitter), Facebook, Instagram and TikTok
    • Missing credentials, non-2xx responses and timeouts
    • Email rendering and SMTP hand-off

Provider HTTP is served by ``httpx.MockTransport``.

Run with:
    pytest tests/test_channels.py -v
"""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from backend.ewers.alerts.channels import (
    call_center,
    email_alert,
    sms,
    social,
    whatsapp,
)
from backend.ewers.alerts.channels.common import ChannelContext
from backend.ewers.alerts.models import (
    AlertSeverity,
    BroadcastChannel,
    ChannelMessage,
    DeliveryStatus,
)

LIVE_CREDENTIALS = {
    "CHANNEL_PROVIDER_MODE": "live",
    "TWILIO_ACCOUNT_SID": "AC123",
    "TWILIO_AUTH_TOKEN": "tok",
    "TWILIO_PHONE_NUMBER": "+15550001111",
    "TWILIO_WHATSAPP_NUMBER": "+15550002222",
    "CLICKATELL_API_KEY": "ck",
    "ASTERISK_ARI_USER": "ari",
    "ASTERISK_ARI_PASSWORD": "pw",
    "TWITTER_BEARER_TOKEN": "bearer",
    "FACEBOOK_PAGE_ID": "page1",
    "FACEBOOK_PAGE_TOKEN": "fbtok",
    "INSTAGRAM_ACCOUNT_ID": "ig1",
    "INSTAGRAM_ACCESS_TOKEN": "igtok",
    "INSTAGRAM_DEFAULT_IMAGE_URL": "https://cdn.example/alert.png",
    "TIKTOK_ACCESS_TOKEN": "ttok",
    "TIKTOK_DEFAULT_VIDEO_URL": "https://cdn.example/alert.mp4",
}


def _message(body="Flood warning: Move to high ground", **kw) -> ChannelMessage:
    defaults = {"alert_id": "ALR-1", "title": "Flood warning", "body": body,
                "severity": AlertSeverity.HIGH}
    defaults.update(kw)
    return ChannelMessage(**defaults)


class _Recorder:
    """Records requests and answers each with the next queued response."""

    def __init__(self, *responses):
        self.requests = []
        self._responses = list(responses) or [httpx.Response(201, json={"sid": "SM1"})]

    def __call__(self, request):
        self.requests.append(request)
        reply = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def _context(settings_factory, recorder, **overrides):
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return ChannelContext(settings=settings_factory(**overrides), client=client)


def _form(request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


# ═══════════════════════════════════════════════════════════════════════════
# Simulation mode
# ═══════════════════════════════════════════════════════════════════════════

class TestSimulation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sender", [
        sms.send_twilio, sms.send_clickatell, whatsapp.send, call_center.send,
        social.post_twitter, social.post_facebook, social.post_instagram, social.post_tiktok,
        email_alert.send,
    ])
    async def test_no_http_and_delivered(self, settings_factory, sender):
        recorder = _Recorder()
        ctx = _context(settings_factory, recorder)
        attempt = await sender(_message(), "+2348000000001", ctx)
        assert attempt.status == DeliveryStatus.DELIVERED
        assert attempt.provider_response["mode"] == "simulated"
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_sms_segments_reported(self, settings_factory):
        ctx = _context(settings_factory, _Recorder())
        attempt = await sms.send_twilio(_message(body="x" * 161), "+1", ctx)
        assert attempt.provider_response["segments"] == 2


class TestSegmentCount:

    @pytest.mark.parametrize("length,expected", [(0, 1), (1, 1), (160, 1), (161, 2), (480, 3)])
    def test_segments(self, length, expected):
        assert sms.segment_count("a" * length) == expected


# ═══════════════════════════════════════════════════════════════════════════
# Live mode: SMS / WhatsApp / voice
# ═══════════════════════════════════════════════════════════════════════════

class TestTwilio:

    @pytest.mark.asyncio
    async def test_request_shape(self, settings_factory):
        recorder = _Recorder()
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await sms.send_twilio(_message(), "+2348000000001", ctx)

        assert attempt.succeeded
        request = recorder.requests[0]
        assert str(request.url) == "https://api.twilio.com/2010-04-01/Accounts/AC123/Messages.json"
        assert request.headers["Authorization"].startswith("Basic ")
        assert _form(request) == {
            "To": "+2348000000001",
            "From": "+15550001111",
            "Body": "Flood warning: Move to high ground",
        }
        assert attempt.provider_response["body"] == {"sid": "SM1"}

    @pytest.mark.asyncio
    async def test_missing_credentials(self, settings_factory):
        recorder = _Recorder()
        ctx = _context(settings_factory, recorder, CHANNEL_PROVIDER_MODE="live")
        attempt = await sms.send_twilio(_message(), "+1", ctx)
        assert attempt.status == DeliveryStatus.FAILED
        assert attempt.error_message.startswith("Provider not configured")
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_provider_error_status(self, settings_factory):
        ctx = _context(
            settings_factory, _Recorder(httpx.Response(400, json={"code": 21211})),
            **LIVE_CREDENTIALS,
        )
        attempt = await sms.send_twilio(_message(), "+1", ctx)
        assert attempt.error_message == "Provider returned HTTP 400"

    @pytest.mark.asyncio
    async def test_timeout(self, settings_factory):
        ctx = _context(
            settings_factory, _Recorder(httpx.ConnectTimeout("slow")), **LIVE_CREDENTIALS,
        )
        attempt = await sms.send_twilio(_message(), "+1", ctx)
        assert attempt.status == DeliveryStatus.FAILED
        assert attempt.error_message.startswith("Timeout")


class TestClickatell:

    @pytest.mark.asyncio
    async def test_request_shape(self, settings_factory):
        recorder = _Recorder(httpx.Response(202, json={"messages": []}))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await sms.send_clickatell(_message(), "+2348000000001", ctx)

        assert attempt.succeeded
        request = recorder.requests[0]
        assert request.method == "GET"
        assert request.url.params["apiKey"] == "ck"
        assert request.url.params["to"] == "2348000000001"
        assert request.url.params["content"] == "Flood warning: Move to high ground"


class TestWhatsApp:

    @pytest.mark.asyncio
    async def test_addresses_prefixed(self, settings_factory):
        recorder = _Recorder()
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        await whatsapp.send(_message(), "+2348000000001", ctx)
        form = _form(recorder.requests[0])
        assert form["To"] == "whatsapp:+2348000000001"
        assert form["From"] == "whatsapp:+15550002222"


class TestCallCenter:

    def test_originate_request(self):
        body = call_center.build_originate_request(_message(), "+2348000000001", "ewers-alerts")
        assert body["endpoint"] == "PJSIP/+2348000000001"
        assert body["context"] == "ewers-alerts"
        assert body["variables"] == {"ALERT_ID": "ALR-1", "ALERT_SEVERITY": "high"}

    @pytest.mark.asyncio
    async def test_posts_to_ari(self, settings_factory):
        recorder = _Recorder(httpx.Response(200, json={"id": "chan-1"}))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await call_center.send(_message(), "+2348000000001", ctx)

        assert attempt.channel == BroadcastChannel.CALL_CENTER
        assert attempt.succeeded
        request = recorder.requests[0]
        assert str(request.url) == "http://localhost:8088/ari/channels"
        assert json.loads(request.content)["endpoint"] == "PJSIP/+2348000000001"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, settings_factory):
        ctx = _context(settings_factory, _Recorder(), CHANNEL_PROVIDER_MODE="live")
        attempt = await call_center.send(_message(), "+1", ctx)
        assert "ASTERISK_ARI_USER" in attempt.error_message


# ═══════════════════════════════════════════════════════════════════════════
# Live mode: social
# ═══════════════════════════════════════════════════════════════════════════

class TestSocial:

    @pytest.mark.asyncio
    async def test_twitter(self, settings_factory):
        recorder = _Recorder(httpx.Response(201, json={"data": {"id": "t1"}}))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await social.post_twitter(_message(body="y" * 300), "public", ctx)

        assert attempt.succeeded
        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer bearer"
        text = json.loads(request.content)["text"]
        assert len(text) == 280 and text.endswith("...")

    @pytest.mark.asyncio
    async def test_facebook(self, settings_factory):
        recorder = _Recorder(httpx.Response(200, json={"id": "p1"}))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await social.post_facebook(_message(), "public", ctx)

        assert attempt.succeeded
        request = recorder.requests[0]
        assert request.url.path.endswith("/page1/feed")
        assert _form(request)["access_token"] == "fbtok"

    @pytest.mark.asyncio
    async def test_instagram_two_steps(self, settings_factory):
        recorder = _Recorder(
            httpx.Response(200, json={"id": "container-9"}),
            httpx.Response(200, json={"id": "media-9"}),
        )
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await social.post_instagram(_message(), "public", ctx)

        assert attempt.succeeded
        create, publish = recorder.requests
        assert create.url.path.endswith("/ig1/media")
        assert _form(create)["image_url"] == "https://cdn.example/alert.png"
        assert publish.url.path.endswith("/ig1/media_publish")
        assert _form(publish)["creation_id"] == "container-9"

    @pytest.mark.asyncio
    async def test_instagram_container_failure_stops(self, settings_factory):
        recorder = _Recorder(httpx.Response(400, json={"error": "bad image"}))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await social.post_instagram(_message(), "public", ctx)
        assert attempt.error_message == "Provider returned HTTP 400"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_instagram_needs_image(self, settings_factory):
        creds = {**LIVE_CREDENTIALS, "INSTAGRAM_DEFAULT_IMAGE_URL": None}
        ctx = _context(settings_factory, _Recorder(), **creds)
        attempt = await social.post_instagram(_message(), "public", ctx)
        assert "INSTAGRAM_DEFAULT_IMAGE_URL" in attempt.error_message

    @pytest.mark.asyncio
    async def test_tiktok_pulls_configured_video(self, settings_factory):
        recorder = _Recorder(httpx.Response(200, json={
            "data": {"publish_id": "v_pub_1"}, "error": {"code": "ok"},
        }))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await social.post_tiktok(_message(), "public", ctx)

        assert attempt.succeeded
        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer ttok"
        body = json.loads(request.content)
        assert body["source_info"] == {
            "source": "PULL_FROM_URL", "video_url": "https://cdn.example/alert.mp4",
        }
        assert body["post_info"]["title"] == "Flood warning: Move to high ground"

    @pytest.mark.asyncio
    async def test_tiktok_error_in_ok_response(self, settings_factory):
        recorder = _Recorder(httpx.Response(200, json={
            "data": {}, "error": {"code": "spam_risk_too_many_posts"},
        }))
        ctx = _context(settings_factory, recorder, **LIVE_CREDENTIALS)
        attempt = await social.post_tiktok(_message(), "public", ctx)
        assert not attempt.succeeded
        assert attempt.error_message == "TikTok rejected the post: spam_risk_too_many_posts"

    @pytest.mark.asyncio
    async def test_tiktok_needs_video(self, settings_factory):
        creds = {**LIVE_CREDENTIALS, "TIKTOK_DEFAULT_VIDEO_URL": None}
        recorder = _Recorder()
        ctx = _context(settings_factory, recorder, **creds)
        attempt = await social.post_tiktok(_message(), "public", ctx)
        assert "TIKTOK_DEFAULT_VIDEO_URL" in attempt.error_message
        assert recorder.requests == []


# ═══════════════════════════════════════════════════════════════════════════
# Email
# ═══════════════════════════════════════════════════════════════════════════

class TestEmail:

    def test_subject(self):
        subject = email_alert.build_subject(_message(severity=AlertSeverity.CRITICAL))
        assert subject.endswith("[CRITICAL] EWERS Alert: Flood warning")

    def test_html_is_escaped(self):
        email = email_alert.build_email(
            _message(title="<b>x</b>"), "to@x.org", "from@x.org",
        )
        html_part = email.get_body(preferencelist=("html",)).get_content()
        assert "&lt;b&gt;x&lt;/b&gt;" in html_part
        assert email["To"] == "to@x.org"

    @pytest.mark.asyncio
    async def test_live_hands_off_to_smtp(self, settings_factory, monkeypatch):
        sent = []
        monkeypatch.setattr(email_alert, "_smtp_send", lambda ctx, email: sent.append(email))
        ctx = _context(settings_factory, _Recorder(), CHANNEL_PROVIDER_MODE="live",
                       SMTP_HOST="smtp.example")
        attempt = await email_alert.send(_message(), "ops@x.org", ctx)
        assert attempt.succeeded
        assert sent[0]["To"] == "ops@x.org"

    @pytest.mark.asyncio
    async def test_live_smtp_error(self, settings_factory, monkeypatch):
        def boom(ctx, email):
            raise OSError("connection refused")

        monkeypatch.setattr(email_alert, "_smtp_send", boom)
        ctx = _context(settings_factory, _Recorder(), CHANNEL_PROVIDER_MODE="live",
                       SMTP_HOST="smtp.example")
        attempt = await email_alert.send(_message(), "ops@x.org", ctx)
        assert attempt.status == DeliveryStatus.FAILED
        assert "connection refused" in attempt.error_message

    @pytest.mark.asyncio
    async def test_live_without_host(self, settings_factory):
        ctx = _context(settings_factory, _Recorder(), CHANNEL_PROVIDER_MODE="live")
        attempt = await email_alert.send(_message(), "ops@x.org", ctx)
        assert attempt.error_message == "Provider not configured: SMTP_HOST"
