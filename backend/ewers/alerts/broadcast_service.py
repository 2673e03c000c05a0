"""
broadcast_service.py — Multi-channel alert broadcasting.

The coordinator takes one alert, a list of channel tags and explicit
recipients, and invokes the right sender for every (channel, target) pair.

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  1. Normalise       │  Dedupe channel tags (request order kept)
    │     channels        │  Unknown tag → channel report with an error
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Resolve         │  recipients.targets_for(channel)
    │     targets         │  No targets → channel SKIPPED
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Send            │  One task per (channel, target), at most N in
    │                     │  flight; an exception becomes a FAILED attempt
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Report          │  channel result = AND of its attempts
    │                     │  success = no attempted channel failed
    └─────────────────────┘

Webhook subscribers are not a channel here: the route layer fires
``alert.created`` / ``alert.broadcast`` through the webhook dispatcher.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from backend.ewers.alerts.channels import (
    call_center,
    dashboard,
    email_alert,
    sms,
    social,
    whatsapp,
)
from backend.ewers.alerts.channels.common import ChannelContext
from backend.ewers.alerts.models import (
    Alert,
    BroadcastChannel,
    BroadcastRecipients,
    BroadcastReport,
    ChannelMessage,
    ChannelReport,
    DeliveryAttempt,
    DeliveryStatus,
)

logger = logging.getLogger(__name__)

Sender = Callable[[ChannelMessage, str, ChannelContext], Awaitable[DeliveryAttempt]]

DEFAULT_MAX_CONCURRENCY = 10


# ═══════════════════════════════════════════════════════════════════════════
# Channel Dispatcher Registry
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_SENDERS: Dict[BroadcastChannel, Sender] = {
    BroadcastChannel.EMAIL:          email_alert.send,
    BroadcastChannel.DASHBOARD:      dashboard.send,
    BroadcastChannel.SMS_TWILIO:     sms.send_twilio,
    BroadcastChannel.SMS_CLICKATELL: sms.send_clickatell,
    BroadcastChannel.WHATSAPP:       whatsapp.send,
    BroadcastChannel.CALL_CENTER:    call_center.send,
    BroadcastChannel.TWITTER:        social.post_twitter,
    BroadcastChannel.FACEBOOK:       social.post_facebook,
    BroadcastChannel.INSTAGRAM:      social.post_instagram,
    BroadcastChannel.TIKTOK:         social.post_tiktok,
}


def supported_channels() -> List[str]:
    return [c.value for c in BroadcastChannel]


def _normalise_channels(channels: Iterable[str]) -> List[Tuple[str, Optional[BroadcastChannel]]]:
    seen = set()
    resolved = []
    for tag in channels:
        tag = str(getattr(tag, "value", tag)).strip().lower()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        try:
            resolved.append((tag, BroadcastChannel(tag)))
        except ValueError:
            resolved.append((tag, None))
    return resolved


class AlertBroadcastCoordinator:
    """
    Fans an alert out over the requested channels.

    Parameters
    ----------
    context : ChannelContext
        Settings, HTTP client and dashboard feed handed to every sender.
    senders : dict, optional
        Channel → sender overrides (tests replace providers here).
    max_concurrency : int
        Upper bound on sends in flight for one broadcast.
    """

    def __init__(
        self,
        context: ChannelContext,
        *,
        senders: Optional[Dict[BroadcastChannel, Sender]] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._context = context
        self._senders: Dict[BroadcastChannel, Sender] = {**DEFAULT_SENDERS, **(senders or {})}
        self._max_concurrency = max_concurrency

    async def _send_one(
        self,
        semaphore: asyncio.Semaphore,
        sender: Sender,
        channel: BroadcastChannel,
        message: ChannelMessage,
        target: str,
    ) -> DeliveryAttempt:
        async with semaphore:
            try:
                return await sender(message, target, self._context)
            except Exception as exc:
                logger.error(
                    "Sender for %s raised for %s: %s", channel.value, target, exc,
                    extra={"channel": channel.value, "alert_id": message.alert_id},
                )
                return DeliveryAttempt(
                    channel=channel,
                    target=target,
                    status=DeliveryStatus.FAILED,
                    completed_at=datetime.now(timezone.utc),
                    error_message=str(exc),
                )

    async def broadcast(
        self,
        alert: Alert,
        channels: Iterable[str],
        recipients: Optional[BroadcastRecipients] = None,
    ) -> BroadcastReport:
        """
        Broadcast ``alert`` on every requested channel.

        Returns
        -------
        BroadcastReport
            ``per_channel_result`` holds one boolean per attempted channel;
            ``success`` is True only if none of them failed.
            ``attempted_channels`` is 0 when every channel was skipped or the
            request named none.
        """
        recipients = recipients or BroadcastRecipients()
        message = ChannelMessage.from_alert(alert)
        report = BroadcastReport(alert_id=alert.id)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        logger.info(
            "Broadcasting alert %s [%s] — %s",
            alert.id, alert.severity.value, alert.title,
            extra={"alert_id": alert.id},
        )

        jobs: List[Tuple[ChannelReport, Awaitable[DeliveryAttempt]]] = []
        resolved = _normalise_channels(channels)
        for tag, channel in resolved:
            channel_report = ChannelReport(channel=tag)
            report.channel_reports.append(channel_report)

            sender = self._senders.get(channel) if channel else None
            if sender is None:
                channel_report.error_message = f"Unsupported channel: {tag}"
                logger.warning(
                    "Unsupported broadcast channel %s", tag,
                    extra={"channel": tag, "alert_id": alert.id},
                )
                continue

            targets = recipients.targets_for(channel)
            if not targets:
                logger.debug("Skipping %s for alert %s (no recipients)", tag, alert.id)
                continue

            for target in targets:
                jobs.append((
                    channel_report,
                    self._send_one(semaphore, sender, channel, message, target),
                ))

        attempts = await asyncio.gather(*(job for _, job in jobs))
        for (channel_report, _), attempt in zip(jobs, attempts):
            channel_report.attempts.append(attempt)

        report.completed_at = datetime.now(timezone.utc)
        if report.attempted_channels == 0:
            logger.warning(
                "Alert %s broadcast reached no channel (requested: %s)",
                alert.id, [tag for tag, _ in resolved],
                extra={"alert_id": alert.id},
            )

        for channel_report in report.channel_reports:
            if channel_report.skipped:
                continue
            logger.info(
                "Alert %s on %s: %d/%d delivered",
                alert.id, channel_report.channel,
                sum(1 for a in channel_report.attempts if a.succeeded),
                len(channel_report.attempts),
                extra={
                    "alert_id": alert.id,
                    "channel": channel_report.channel,
                    "recipient_count": len(channel_report.attempts),
                },
            )

        logger.info(
            "Alert %s broadcast complete: success=%s, %d channel(s), %.2fs",
            alert.id, report.success, len(report.per_channel_result),
            (report.completed_at - report.started_at).total_seconds(),
            extra={"alert_id": alert.id},
        )
        return report
