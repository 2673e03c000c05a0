"""
dashboard.py — In-app notifications shown on the operator dashboard.

Notifications are appended to a per-target feed. Targets are user IDs or
``role:<name>`` entries; the dashboard polls ``DashboardFeed.for_target``.
Only the most recent ``max_per_target`` entries are kept per target.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List

from backend.ewers.alerts.channels.common import (
    ChannelContext,
    mark_delivered,
    mark_failed,
    record_exception,
    start_attempt,
)
from backend.ewers.alerts.models import BroadcastChannel, ChannelMessage, DeliveryAttempt

logger = logging.getLogger(__name__)


class DashboardFeed:
    def __init__(self, max_per_target: int = 100):
        self._feeds: Dict[str, Deque[Dict[str, Any]]] = defaultdict(
            lambda: deque(maxlen=max_per_target)
        )

    def push(self, target: str, message: ChannelMessage) -> Dict[str, Any]:
        entry = {
            "alert_id": message.alert_id,
            "title": message.title,
            "message": message.body,
            "severity": message.severity.value,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "read": False,
        }
        self._feeds[target].append(entry)
        return entry

    def for_target(self, target: str) -> List[Dict[str, Any]]:
        """Newest first."""
        return list(reversed(self._feeds.get(target, ())))


async def send(message: ChannelMessage, target: str, ctx: ChannelContext) -> DeliveryAttempt:
    attempt = start_attempt(BroadcastChannel.DASHBOARD, target)
    try:
        if ctx.feed is None:
            return mark_failed(attempt, "Dashboard feed not available")
        ctx.feed.push(target, message)
        logger.debug("[DASHBOARD] Alert %s → %s", message.alert_id, target)
        return mark_delivered(attempt, {"mode": "in_app"})
    except Exception as exc:
        return record_exception(attempt, exc)
