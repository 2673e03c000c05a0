"""
Pydantic request schemas for the gateway API.

Separated from the route handlers so they are reusable across the
management, alert and external routers (and tests).
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from backend.ewers.alerts.models import AlertSeverity, AlertStatus, BroadcastRecipients


# ---------------------------------------------------------------------------
# API keys & webhooks
# ---------------------------------------------------------------------------

class ApiKeyCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, examples=["Partner dashboard"])
    permissions: List[str] = Field(
        ..., min_length=1, examples=[["read"]],
        description='Any of "read", "write", "*"',
    )
    expires_at: Optional[datetime] = Field(None, description="Omit for a non-expiring key")


class WebhookCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, examples=["Relief partner"])
    url: str = Field(..., examples=["https://partner.example.org/ewers/webhook"])
    events: List[str] = Field(..., min_length=1, examples=[["alert.created"]])


class WebhookUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    url: Optional[str] = None
    events: Optional[List[str]] = None
    status: Optional[str] = Field(None, examples=["disabled"])


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class AlertCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300, examples=["Flash flood warning"])
    description: str = Field(..., min_length=1, examples=["River levels rising near Makurdi."])
    severity: AlertSeverity = Field(AlertSeverity.MEDIUM)
    incident_id: Optional[str] = None
    region: Optional[str] = Field(None, examples=["North Central"])


class AlertStatusUpdateRequest(BaseModel):
    status: AlertStatus


class RecipientsInput(BaseModel):
    emails: List[str] = Field(default_factory=list)
    phone_numbers: List[str] = Field(default_factory=list, examples=[["+2348012345678"]])
    user_ids: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)

    @field_validator("emails", "phone_numbers", "user_ids", "roles")
    @classmethod
    def _strip_blank(cls, values: List[str]) -> List[str]:
        return [v.strip() for v in values if v and v.strip()]

    def to_recipients(self) -> BroadcastRecipients:
        return BroadcastRecipients(
            emails=self.emails,
            phone_numbers=self.phone_numbers,
            user_ids=self.user_ids,
            roles=self.roles,
        )


class BroadcastRequest(BaseModel):
    channels: List[str] = Field(..., min_length=1, examples=[["sms_twilio", "twitter"]])
    recipients: RecipientsInput = Field(default_factory=RecipientsInput)
