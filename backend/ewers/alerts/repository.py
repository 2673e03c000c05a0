"""
repository.py — In-memory alert storage used by the alert and external routes.

Records are copied on the way out so callers cannot mutate stored alerts.
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timezone
from typing import Dict, List, Optional

from backend.ewers.alerts.models import Alert, AlertSeverity, AlertStatus


class AlertRepository:
    def __init__(self) -> None:
        self._alerts: Dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        *,
        title: str,
        description: str,
        severity: AlertSeverity = AlertSeverity.MEDIUM,
        incident_id: Optional[str] = None,
        region: Optional[str] = None,
    ) -> Alert:
        alert = Alert(
            title=title,
            description=description,
            severity=AlertSeverity(severity),
            incident_id=incident_id,
            region=region,
        )
        async with self._lock:
            self._alerts[alert.id] = alert
        return dataclasses.replace(alert)

    async def get(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return dataclasses.replace(alert) if alert else None

    async def list(
        self,
        *,
        status: Optional[AlertStatus] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 100,
    ) -> List[Alert]:
        """Newest first."""
        alerts = [
            dataclasses.replace(a) for a in self._alerts.values()
            if (status is None or a.status == status)
            and (severity is None or a.severity == severity)
        ]
        alerts.sort(key=lambda a: a.generated_at, reverse=True)
        return alerts[:limit]

    async def update_status(self, alert_id: str, status: AlertStatus) -> Optional[Alert]:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            alert.status = AlertStatus(status)
            alert.updated_at = datetime.now(timezone.utc)
            return dataclasses.replace(alert)

    async def delete(self, alert_id: str) -> bool:
        async with self._lock:
            return self._alerts.pop(alert_id, None) is not None
