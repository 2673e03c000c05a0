"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • SMTP with STARTTLS (multipart: plain text + HTML)
    • One message per recipient address

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 [HIGH] EWERS Alert: {title}
    Body:
        ┌─────────────────────────────────────────┐
        │  EWERS ALERT — {severity}                 │
        ├─────────────────────────────────────────┤
        │  {title}                                  │
        │  {description}                            │
        │                                          │
        │  Reference: {alert_id}                    │
        └─────────────────────────────────────────┘

smtplib is blocking, so the SMTP session runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage

from backend.ewers.alerts.channels.common import (
    ChannelContext,
    mark_delivered,
    missing_credentials,
    record_exception,
    simulate,
    start_attempt,
)
from backend.ewers.alerts.models import (
    AlertSeverity,
    BroadcastChannel,
    ChannelMessage,
    DeliveryAttempt,
)

logger = logging.getLogger(__name__)

_SEVERITY_ICONS = {
    AlertSeverity.LOW: "ℹ️",
    AlertSeverity.MEDIUM: "⚠️",
    AlertSeverity.HIGH: "🚨",
    AlertSeverity.CRITICAL: "🆘",
}

_SEVERITY_COLOURS = {
    AlertSeverity.LOW: "#4CAF50",       # green
    AlertSeverity.MEDIUM: "#FF9800",    # orange
    AlertSeverity.HIGH: "#F44336",      # red
    AlertSeverity.CRITICAL: "#B71C1C",  # dark red
}


def build_subject(message: ChannelMessage) -> str:
    icon = _SEVERITY_ICONS.get(message.severity, "⚠️")
    return f"{icon} [{message.severity.value.upper()}] EWERS Alert: {message.title}"


def _build_html_body(message: ChannelMessage) -> str:
    colour = _SEVERITY_COLOURS.get(message.severity, "#FF9800")
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <div style="background:{colour};color:white;padding:16px;border-radius:8px 8px 0 0;">
        <h2 style="margin:0;">EWERS ALERT — {message.severity.value.upper()}</h2>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:16px;border-radius:0 0 8px 8px;">
        <h3>{html.escape(message.title)}</h3>
        <p>{html.escape(message.body)}</p>
        <hr>
        <p><strong>Reference:</strong> {message.alert_id}</p>
      </div>
    </div>
    """


def _build_plain_body(message: ChannelMessage) -> str:
    return (
        f"EWERS ALERT — {message.severity.value.upper()}\n\n"
        f"{message.body}\n\n"
        f"Reference: {message.alert_id}\n"
    )


def build_email(message: ChannelMessage, to_address: str, from_address: str) -> EmailMessage:
    email = EmailMessage()
    email["Subject"] = build_subject(message)
    email["From"] = from_address
    email["To"] = to_address
    email.set_content(_build_plain_body(message))
    email.add_alternative(_build_html_body(message), subtype="html")
    return email


def _smtp_send(ctx: ChannelContext, email: EmailMessage) -> None:
    s = ctx.settings
    with smtplib.SMTP(s.SMTP_HOST, s.SMTP_PORT, timeout=ctx.timeout) as server:
        server.starttls()
        if s.SMTP_USER and s.SMTP_PASSWORD:
            server.login(s.SMTP_USER, s.SMTP_PASSWORD)
        server.send_message(email)


async def send(message: ChannelMessage, address: str, ctx: ChannelContext) -> DeliveryAttempt:
    """Email ``message`` to ``address``."""
    attempt = start_attempt(BroadcastChannel.EMAIL, address)
    try:
        s = ctx.settings
        email = build_email(message, address, s.EMAIL_FROM_ADDRESS)

        if not ctx.live:
            return simulate(attempt, email["Subject"], provider="smtp", to=address)

        if not s.SMTP_HOST:
            return missing_credentials(attempt, "SMTP_HOST")

        await asyncio.to_thread(_smtp_send, ctx, email)
        return mark_delivered(attempt, {"provider": "smtp", "to": address})

    except Exception as exc:
        return record_exception(attempt, exc)
