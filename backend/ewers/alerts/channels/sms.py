"""
sms.py — SMS delivery via Twilio or Clickatell.

═══════════════════════════════════════════════════════════════════════════
PROVIDERS
═══════════════════════════════════════════════════════════════════════════

    Twilio:
        POST {TWILIO_API_URL}/Accounts/{SID}/Messages.json
        Basic auth (SID, auth token), form body: To, From, Body

    Clickatell (HTTP integration):
        GET {CLICKATELL_API_URL}?apiKey=…&to=…&content=…

Long messages are sent as concatenated SMS; the provider splits them into
160-character GSM segments.
"""

from __future__ import annotations

import logging

from backend.ewers.alerts.channels.common import (
    ChannelContext,
    missing_credentials,
    record_exception,
    record_response,
    simulate,
    start_attempt,
)
from backend.ewers.alerts.models import BroadcastChannel, ChannelMessage, DeliveryAttempt

logger = logging.getLogger(__name__)

SMS_MAX_GSM7 = 160


def segment_count(text: str) -> int:
    return max(1, 1 + (len(text) - 1) // SMS_MAX_GSM7)


def _twilio_messages_url(ctx: ChannelContext) -> str:
    s = ctx.settings
    return f"{s.TWILIO_API_URL.rstrip('/')}/Accounts/{s.TWILIO_ACCOUNT_SID}/Messages.json"


async def send_twilio(message: ChannelMessage, phone: str, ctx: ChannelContext) -> DeliveryAttempt:
    """Send ``message`` to ``phone`` (E.164) through Twilio."""
    attempt = start_attempt(BroadcastChannel.SMS_TWILIO, phone)
    try:
        if not ctx.live:
            return simulate(
                attempt, message.body,
                provider="twilio", segments=segment_count(message.body),
            )

        s = ctx.settings
        if not (s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_PHONE_NUMBER):
            return missing_credentials(
                attempt, "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER",
            )

        response = await ctx.client.post(
            _twilio_messages_url(ctx),
            data={"To": phone, "From": s.TWILIO_PHONE_NUMBER, "Body": message.body},
            auth=(s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN),
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)


async def send_clickatell(message: ChannelMessage, phone: str, ctx: ChannelContext) -> DeliveryAttempt:
    """Send ``message`` to ``phone`` through the Clickatell HTTP API."""
    attempt = start_attempt(BroadcastChannel.SMS_CLICKATELL, phone)
    try:
        if not ctx.live:
            return simulate(
                attempt, message.body,
                provider="clickatell", segments=segment_count(message.body),
            )

        s = ctx.settings
        if not s.CLICKATELL_API_KEY:
            return missing_credentials(attempt, "CLICKATELL_API_KEY")

        response = await ctx.client.get(
            s.CLICKATELL_API_URL,
            params={
                "apiKey": s.CLICKATELL_API_KEY,
                "to": phone.lstrip("+"),
                "content": message.body,
            },
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)
