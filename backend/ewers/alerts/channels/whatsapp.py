"""
whatsapp.py — WhatsApp delivery through the Twilio WhatsApp Business API.

Same endpoint as Twilio SMS; both ``From`` and ``To`` carry the
``whatsapp:`` address prefix.
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

WHATSAPP_PREFIX = "whatsapp:"


def _address(number: str) -> str:
    return number if number.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{number}"


async def send(message: ChannelMessage, phone: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.WHATSAPP, phone)
    try:
        if not ctx.live:
            return simulate(attempt, message.body, provider="twilio_whatsapp")

        s = ctx.settings
        if not (s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_WHATSAPP_NUMBER):
            return missing_credentials(
                attempt, "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_WHATSAPP_NUMBER",
            )

        url = f"{s.TWILIO_API_URL.rstrip('/')}/Accounts/{s.TWILIO_ACCOUNT_SID}/Messages.json"
        response = await ctx.client.post(
            url,
            data={
                "To": _address(phone),
                "From": _address(s.TWILIO_WHATSAPP_NUMBER),
                "Body": message.body,
            },
            auth=(s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN),
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)
