"""
models.py — Shared data structures for alerts and channel broadcasting.

Defines:
    • AlertSeverity / AlertStatus  — alert classification
    • BroadcastChannel            — channel tags accepted by the coordinator
    • Alert                       — an alert raised by the system
    • BroadcastRecipients         — explicit recipient lists for one broadcast
    • ChannelMessage              — the rendered text handed to senders
    • DeliveryAttempt             — one send to one target on one channel
    • ChannelReport               — all attempts for one channel
    • BroadcastReport             — final summary of a broadcast

═══════════════════════════════════════════════════════════════════════════
CHANNEL TARGETING
═══════════════════════════════════════════════════════════════════════════

    Channel          Targets                        Sends
    ──────────────   ────────────────────────────   ──────────────────────
    email            recipients.emails              one per address
    dashboard        recipients.user_ids + roles    one per user / role
    sms_twilio       recipients.phone_numbers       one per phone
    sms_clickatell   recipients.phone_numbers       one per phone
    whatsapp         recipients.phone_numbers       one per phone
    call_center      recipients.phone_numbers       one per phone
    twitter          —                              one public post
    facebook         —                              one public post
    instagram        —                              one public post

A channel's result is the AND of all its attempts. A channel with no
targets is SKIPPED and left out of the per-channel result map.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertSeverity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    ACTIVE       = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED     = "resolved"


class BroadcastChannel(str, Enum):
    """Channel tags accepted by the broadcast coordinator."""
    EMAIL          = "email"
    DASHBOARD      = "dashboard"
    SMS_TWILIO     = "sms_twilio"
    SMS_CLICKATELL = "sms_clickatell"
    WHATSAPP       = "whatsapp"
    CALL_CENTER    = "call_center"
    TWITTER        = "twitter"
    FACEBOOK       = "facebook"
    INSTAGRAM      = "instagram"
    TIKTOK         = "tiktok"


PHONE_CHANNELS: FrozenSet[BroadcastChannel] = frozenset({
    BroadcastChannel.SMS_TWILIO,
    BroadcastChannel.SMS_CLICKATELL,
    BroadcastChannel.WHATSAPP,
    BroadcastChannel.CALL_CENTER,
})

SOCIAL_CHANNELS: FrozenSet[BroadcastChannel] = frozenset({
    BroadcastChannel.TWITTER,
    BroadcastChannel.FACEBOOK,
    BroadcastChannel.INSTAGRAM,
    BroadcastChannel.TIKTOK,
})

# Target recorded for single-post social channels
PUBLIC_TARGET = "public"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED    = "failed"
    SKIPPED   = "skipped"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Alert
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Alert:
    """
    An alert raised for an incident or region.

    Attributes
    ----------
    id : str
    title : str
    description : str
    severity : AlertSeverity
    status : AlertStatus
        New alerts are ACTIVE.
    incident_id : str | None
        The incident this alert was raised for, if any.
    region : str | None
    generated_at : datetime
    updated_at : datetime | None
    """
    title: str
    description: str
    severity: AlertSeverity = AlertSeverity.MEDIUM
    status: AlertStatus = AlertStatus.ACTIVE
    incident_id: Optional[str] = None
    region: Optional[str] = None
    id: str = field(default_factory=_generate_id)
    generated_at: datetime = field(default_factory=_now)
    updated_at: Optional[datetime] = None

    @property
    def message(self) -> str:
        """Text sent on every channel."""
        return f"{self.title}: {self.description}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "status": self.status.value,
            "incident_id": self.incident_id,
            "region": self.region,
            "generated_at": self.generated_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class BroadcastRecipients:
    """Explicit recipients for one broadcast; any list may be empty."""
    emails: List[str] = field(default_factory=list)
    phone_numbers: List[str] = field(default_factory=list)
    user_ids: List[str] = field(default_factory=list)
    roles: List[str] = field(default_factory=list)

    def targets_for(self, channel: BroadcastChannel) -> List[str]:
        if channel == BroadcastChannel.EMAIL:
            return list(self.emails)
        if channel == BroadcastChannel.DASHBOARD:
            return list(self.user_ids) + [f"role:{r}" for r in self.roles]
        if channel in PHONE_CHANNELS:
            return list(self.phone_numbers)
        if channel in SOCIAL_CHANNELS:
            return [PUBLIC_TARGET]
        return []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emails": self.emails,
            "phone_numbers": self.phone_numbers,
            "user_ids": self.user_ids,
            "roles": self.roles,
        }


@dataclass(frozen=True)
class ChannelMessage:
    """What a channel sender delivers."""
    alert_id: str
    title: str
    body: str
    severity: AlertSeverity = AlertSeverity.MEDIUM

    @classmethod
    def from_alert(cls, alert: Alert) -> "ChannelMessage":
        return cls(
            alert_id=alert.id,
            title=alert.title,
            body=alert.message,
            severity=alert.severity,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Delivery Results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DeliveryAttempt:
    """Record of a single send to one target via one channel."""
    channel: BroadcastChannel
    target: str
    status: DeliveryStatus = DeliveryStatus.FAILED
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "target": self.target,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "error_message": self.error_message,
        }


@dataclass
class ChannelReport:
    """All attempts made on one channel during a broadcast."""
    channel: str
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return not self.attempts and self.error_message is None

    @property
    def succeeded(self) -> bool:
        """AND over attempts; a channel that could not run at all failed."""
        if self.error_message is not None:
            return False
        return all(a.succeeded for a in self.attempts)

    @property
    def status(self) -> DeliveryStatus:
        if self.skipped:
            return DeliveryStatus.SKIPPED
        return DeliveryStatus.DELIVERED if self.succeeded else DeliveryStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "status": self.status.value,
            "attempt_count": len(self.attempts),
            "delivered_count": sum(1 for a in self.attempts if a.succeeded),
            "error_message": self.error_message,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class BroadcastReport:
    """Final outcome of broadcasting one alert."""
    alert_id: str
    channel_reports: List[ChannelReport] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def per_channel_result(self) -> Dict[str, bool]:
        """Attempted channels only; skipped channels are omitted."""
        return {
            r.channel: r.succeeded
            for r in self.channel_reports
            if not r.skipped
        }

    @property
    def success(self) -> bool:
        """True when no attempted channel failed."""
        return all(self.per_channel_result.values())

    @property
    def attempted_channels(self) -> int:
        """Zero means nothing was sent, whatever ``success`` says."""
        return len(self.per_channel_result)

    @property
    def attempt_count(self) -> int:
        return sum(len(r.attempts) for r in self.channel_reports)

    @property
    def skipped_channels(self) -> List[str]:
        return [r.channel for r in self.channel_reports if r.skipped]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "success": self.success,
            "attempted_channels": self.attempted_channels,
            "attempt_count": self.attempt_count,
            "per_channel_result": self.per_channel_result,
            "skipped_channels": self.skipped_channels,
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "channels": [r.to_dict() for r in self.channel_reports],
        }
