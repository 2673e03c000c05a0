"""
call_center.py — Outbound voice alerts through Asterisk (ARI).

═══════════════════════════════════════════════════════════════════════════
CALL FLOW
═══════════════════════════════════════════════════════════════════════════

    App ── POST {ASTERISK_ARI_URL}/channels ──► Asterisk ──► PSTN ──► Handset
              endpoint=PJSIP/{phone}
              context={ASTERISK_CONTEXT}, extension=s, priority=1
              variables: ALERT_ID, ALERT_SEVERITY

The dial plan in ``ASTERISK_CONTEXT`` looks the alert up by ALERT_ID and
plays the recorded or synthesised message. A 2xx means the call was
originated, not that it was answered.
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


def build_originate_request(message: ChannelMessage, phone: str, context: str) -> dict:
    return {
        "endpoint": f"PJSIP/{phone}",
        "extension": "s",
        "context": context,
        "priority": 1,
        "callerId": "EWERS Alerts",
        "variables": {
            "ALERT_ID": message.alert_id,
            "ALERT_SEVERITY": message.severity.value,
        },
    }


async def send(message: ChannelMessage, phone: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.CALL_CENTER, phone)
    try:
        s = ctx.settings
        if not ctx.live:
            return simulate(
                attempt, f"call for alert {message.alert_id}",
                provider="asterisk", context=s.ASTERISK_CONTEXT,
            )

        if not (s.ASTERISK_ARI_USER and s.ASTERISK_ARI_PASSWORD):
            return missing_credentials(attempt, "ASTERISK_ARI_USER", "ASTERISK_ARI_PASSWORD")

        response = await ctx.client.post(
            f"{s.ASTERISK_ARI_URL.rstrip('/')}/channels",
            json=build_originate_request(message, phone, s.ASTERISK_CONTEXT),
            auth=(s.ASTERISK_ARI_USER, s.ASTERISK_ARI_PASSWORD),
            timeout=ctx.timeout,
        )
        return record_response(attempt, response)

    except Exception as exc:
        return record_exception(attempt, exc)
