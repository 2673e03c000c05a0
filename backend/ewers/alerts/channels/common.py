"""
common.py — Shared plumbing for channel senders.

Every sender receives a :class:`ChannelContext` carrying the settings,
the shared HTTP client and the in-app notification feed. In simulation
mode no provider is contacted: the send is logged and reported delivered.
In live mode a provider without credentials fails immediately.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from backend.ewers.alerts.models import (
    BroadcastChannel,
    DeliveryAttempt,
    DeliveryStatus,
)
from backend.ewers.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class ChannelContext:
    settings: Settings
    client: httpx.AsyncClient
    feed: Optional[Any] = None  # DashboardFeed

    @property
    def live(self) -> bool:
        return self.settings.channels_live

    @property
    def timeout(self) -> float:
        return self.settings.CHANNEL_TIMEOUT_SECONDS


def start_attempt(channel: BroadcastChannel, target: str) -> DeliveryAttempt:
    return DeliveryAttempt(channel=channel, target=target)


def mark_delivered(attempt: DeliveryAttempt, response: Optional[Dict[str, Any]] = None) -> DeliveryAttempt:
    attempt.status = DeliveryStatus.DELIVERED
    attempt.provider_response = response
    attempt.completed_at = datetime.now(timezone.utc)
    return attempt


def mark_failed(attempt: DeliveryAttempt, error: str) -> DeliveryAttempt:
    attempt.status = DeliveryStatus.FAILED
    attempt.error_message = error
    attempt.completed_at = datetime.now(timezone.utc)
    return attempt


def simulate(attempt: DeliveryAttempt, message_preview: str, **details: Any) -> DeliveryAttempt:
    logger.info(
        "[%s] (simulated) → %s: '%s'",
        attempt.channel.value.upper(),
        attempt.target,
        message_preview[:80] + ("..." if len(message_preview) > 80 else ""),
        extra={"channel": attempt.channel.value},
    )
    return mark_delivered(attempt, {"mode": "simulated", **details})


def missing_credentials(attempt: DeliveryAttempt, *names: str) -> DeliveryAttempt:
    return mark_failed(attempt, f"Provider not configured: {', '.join(names)}")


def record_response(attempt: DeliveryAttempt, response: httpx.Response) -> DeliveryAttempt:
    """Map a provider HTTP response onto the attempt."""
    if response.is_success:
        try:
            body = response.json()
        except ValueError:
            body = {"text": response.text[:200]}
        return mark_delivered(attempt, {"status_code": response.status_code, "body": body})
    return mark_failed(attempt, f"Provider returned HTTP {response.status_code}")


def record_exception(attempt: DeliveryAttempt, exc: Exception) -> DeliveryAttempt:
    logger.error(
        "[%s] Failed for %s: %s",
        attempt.channel.value.upper(), attempt.target, exc,
        extra={"channel": attempt.channel.value},
    )
    if isinstance(exc, httpx.TimeoutException):
        return mark_failed(attempt, f"Timeout: {exc}")
    return mark_failed(attempt, str(exc))
