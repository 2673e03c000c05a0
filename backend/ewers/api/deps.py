"""
Shared FastAPI dependencies: the service container, the session user and
the API key gate.

Session authentication itself is handled upstream; whatever middleware
logs a user in stores them on ``request.state.user``.

Usage:
    @router.get("/alerts")
    async def list_alerts(auth: AuthDecision = Depends(require_api_key(Permission.READ))):
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from backend.ewers.container import ServiceContainer
from backend.ewers.core.errors import AuthenticationError
from backend.ewers.integrations.api_key_gate import error_for_decision
from backend.ewers.integrations.models import AuthDecision, WebhookEvent, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionUser:
    id: str
    role: str = "user"


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_session_user(request: Request) -> Optional[SessionUser]:
    return getattr(request.state, "user", None)


def require_session_user(
    user: Optional[SessionUser] = Depends(get_session_user),
) -> SessionUser:
    if user is None:
        raise AuthenticationError("Login required")
    return user


def require_api_key(permission: Optional[str] = None):
    """
    Build a dependency that runs the API key gate for one route.

    ``permission`` is the route's declared requirement; when omitted the
    gate derives it from the HTTP method and path.
    """
    declared = getattr(permission, "value", permission)

    async def _dependency(
        request: Request,
        session_user: Optional[SessionUser] = Depends(get_session_user),
        container: ServiceContainer = Depends(get_container),
    ) -> AuthDecision:
        decision = await container.gate.authorize(
            session_user=session_user,
            presented_key=request.headers.get(container.settings.API_KEY_HEADER),
            method=request.method,
            path=request.url.path,
            declared=declared,
        )
        if not decision.allowed:
            raise error_for_decision(decision)

        if decision.api_key is not None and container.settings.REPORT_API_ACCESS_EVENTS:
            container.dispatcher.dispatch_in_background(
                WebhookEvent.API_ACCESSED.value,
                {
                    "api_key_id": decision.api_key.id,
                    "owner_id": decision.api_key.owner_id,
                    "method": request.method,
                    "path": request.url.path,
                    "permission": decision.required_permission,
                    "accessed_at": utcnow().isoformat(),
                },
            )
        return decision

    return _dependency
