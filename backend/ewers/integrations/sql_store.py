"""
sql_store.py — PostgreSQL credential store (SQLAlchemy 2.0 async).

Tables mirror the ``api_keys`` / ``webhooks`` schema:

    api_keys                          webhooks
    ───────────────────────────       ───────────────────────────
    id            VARCHAR PK          id                 VARCHAR PK
    owner_id      VARCHAR             owner_id           VARCHAR
    name          TEXT                name               TEXT
    key           VARCHAR UNIQUE      url                TEXT
    permissions   JSON                secret             VARCHAR
    status        VARCHAR             events             JSON
    expires_at    TIMESTAMPTZ         status             VARCHAR
    last_used_at  TIMESTAMPTZ         last_triggered_at  TIMESTAMPTZ
    created_at    TIMESTAMPTZ         created_at         TIMESTAMPTZ

Each mutation is a single ``UPDATE … WHERE id = :id`` (or INSERT/DELETE)
committed in its own transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import JSON, DateTime, String, Text, delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from backend.ewers.core.database import Base
from backend.ewers.core.errors import CredentialStoreError
from backend.ewers.integrations.models import (
    ApiKey,
    ApiKeyStatus,
    Webhook,
    WebhookStatus,
    ensure_aware,
    new_api_key_id,
    new_webhook_id,
    utcnow,
)
from backend.ewers.integrations.store import CredentialStore, check_webhook_changes

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# ORM Tables
# ═══════════════════════════════════════════════════════════════════════════

class ApiKeyRecord(Base):
    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(Text)
    key: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    permissions: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default=ApiKeyStatus.ACTIVE.value)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class WebhookRecord(Base):
    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(Text)
    url: Mapped[str] = mapped_column(Text)
    secret: Mapped[str] = mapped_column(String(128))
    events: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(16), default=WebhookStatus.ACTIVE.value, index=True)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ Domain Conversion
# ═══════════════════════════════════════════════════════════════════════════

def api_key_from_record(row: ApiKeyRecord) -> ApiKey:
    return ApiKey(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        key=row.key,
        permissions=frozenset(row.permissions or []),
        status=ApiKeyStatus(row.status),
        expires_at=ensure_aware(row.expires_at),
        last_used_at=ensure_aware(row.last_used_at),
        created_at=ensure_aware(row.created_at),
    )


def webhook_from_record(row: WebhookRecord) -> Webhook:
    return Webhook(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        url=row.url,
        secret=row.secret,
        events=frozenset(row.events or []),
        status=WebhookStatus(row.status),
        last_triggered_at=ensure_aware(row.last_triggered_at),
        created_at=ensure_aware(row.created_at),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlCredentialStore(CredentialStore):
    """Credential store backed by an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _run(self, operation: str, fn):
        """Run ``fn(session)`` in one transaction, wrapping driver errors."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await fn(session)
        except SQLAlchemyError as exc:
            logger.error("Credential store %s failed: %s", operation, exc)
            raise CredentialStoreError(operation) from exc

    async def ping(self) -> None:
        await self._run("ping", lambda s: s.execute(select(1)))

    # ── API keys ──

    async def create_api_key(
        self,
        *,
        owner_id: str,
        name: str,
        key: str,
        permissions: Iterable[str],
        expires_at: Optional[datetime] = None,
    ) -> ApiKey:
        row = ApiKeyRecord(
            id=new_api_key_id(),
            owner_id=owner_id,
            name=name,
            key=key,
            permissions=sorted(permissions),
            status=ApiKeyStatus.ACTIVE.value,
            expires_at=expires_at,
            created_at=utcnow(),
        )

        async def _insert(session: AsyncSession):
            session.add(row)
            await session.flush()
            return api_key_from_record(row)

        return await self._run("create_api_key", _insert)

    async def find_api_key_by_value(self, key: str) -> Optional[ApiKey]:
        async def _find(session: AsyncSession):
            row = (await session.execute(
                select(ApiKeyRecord).where(ApiKeyRecord.key == key)
            )).scalar_one_or_none()
            return api_key_from_record(row) if row else None

        return await self._run("find_api_key_by_value", _find)

    async def get_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        async def _get(session: AsyncSession):
            row = await session.get(ApiKeyRecord, api_key_id)
            return api_key_from_record(row) if row else None

        return await self._run("get_api_key", _get)

    async def list_api_keys(self, owner_id: Optional[str] = None) -> List[ApiKey]:
        stmt = select(ApiKeyRecord).order_by(ApiKeyRecord.created_at.desc())
        if owner_id is not None:
            stmt = stmt.where(ApiKeyRecord.owner_id == owner_id)

        async def _list(session: AsyncSession):
            rows = (await session.execute(stmt)).scalars().all()
            return [api_key_from_record(r) for r in rows]

        return await self._run("list_api_keys", _list)

    async def mark_api_key_used(self, api_key_id: str, at: datetime) -> None:
        stmt = (
            update(ApiKeyRecord)
            .where(ApiKeyRecord.id == api_key_id)
            .values(last_used_at=at)
        )
        await self._run("mark_api_key_used", lambda s: s.execute(stmt))

    async def mark_api_key_expired(self, api_key_id: str) -> None:
        stmt = (
            update(ApiKeyRecord)
            .where(
                ApiKeyRecord.id == api_key_id,
                ApiKeyRecord.status == ApiKeyStatus.ACTIVE.value,
            )
            .values(status=ApiKeyStatus.EXPIRED.value)
        )
        await self._run("mark_api_key_expired", lambda s: s.execute(stmt))

    async def revoke_api_key(self, api_key_id: str) -> Optional[ApiKey]:
        async def _revoke(session: AsyncSession):
            await session.execute(
                update(ApiKeyRecord)
                .where(
                    ApiKeyRecord.id == api_key_id,
                    ApiKeyRecord.status == ApiKeyStatus.ACTIVE.value,
                )
                .values(status=ApiKeyStatus.REVOKED.value)
            )
            row = await session.get(ApiKeyRecord, api_key_id, populate_existing=True)
            return api_key_from_record(row) if row else None

        return await self._run("revoke_api_key", _revoke)

    async def delete_api_key(self, api_key_id: str) -> bool:
        async def _delete(session: AsyncSession):
            result = await session.execute(
                delete(ApiKeyRecord).where(ApiKeyRecord.id == api_key_id)
            )
            return result.rowcount > 0

        return await self._run("delete_api_key", _delete)

    # ── Webhooks ──

    async def create_webhook(
        self,
        *,
        owner_id: str,
        name: str,
        url: str,
        secret: str,
        events: Iterable[str],
    ) -> Webhook:
        row = WebhookRecord(
            id=new_webhook_id(),
            owner_id=owner_id,
            name=name,
            url=url,
            secret=secret,
            events=sorted(events),
            status=WebhookStatus.ACTIVE.value,
            created_at=utcnow(),
        )

        async def _insert(session: AsyncSession):
            session.add(row)
            await session.flush()
            return webhook_from_record(row)

        return await self._run("create_webhook", _insert)

    async def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        async def _get(session: AsyncSession):
            row = await session.get(WebhookRecord, webhook_id)
            return webhook_from_record(row) if row else None

        return await self._run("get_webhook", _get)

    async def list_webhooks(self, owner_id: Optional[str] = None) -> List[Webhook]:
        stmt = select(WebhookRecord).order_by(WebhookRecord.created_at.desc())
        if owner_id is not None:
            stmt = stmt.where(WebhookRecord.owner_id == owner_id)

        async def _list(session: AsyncSession):
            rows = (await session.execute(stmt)).scalars().all()
            return [webhook_from_record(r) for r in rows]

        return await self._run("list_webhooks", _list)

    async def find_active_webhooks_for_event(self, event: str) -> List[Webhook]:
        # Event membership is checked on the decoded JSON list so the query
        # stays portable across JSON column implementations.
        stmt = select(WebhookRecord).where(
            WebhookRecord.status == WebhookStatus.ACTIVE.value
        )

        async def _find(session: AsyncSession):
            rows = (await session.execute(stmt)).scalars().all()
            hooks = [webhook_from_record(r) for r in rows]
            return [w for w in hooks if w.subscribes_to(event)]

        return await self._run("find_active_webhooks_for_event", _find)

    async def update_webhook(self, webhook_id: str, **changes) -> Optional[Webhook]:
        check_webhook_changes(changes)
        values = dict(changes)
        if "events" in values:
            values["events"] = sorted(values["events"])
        if "status" in values:
            values["status"] = WebhookStatus(values["status"]).value

        async def _update(session: AsyncSession):
            if values:
                await session.execute(
                    update(WebhookRecord)
                    .where(WebhookRecord.id == webhook_id)
                    .values(**values)
                )
            row = await session.get(WebhookRecord, webhook_id, populate_existing=True)
            return webhook_from_record(row) if row else None

        return await self._run("update_webhook", _update)

    async def mark_webhook_triggered(self, webhook_id: str, at: datetime) -> None:
        stmt = (
            update(WebhookRecord)
            .where(
                WebhookRecord.id == webhook_id,
                or_(
                    WebhookRecord.last_triggered_at.is_(None),
                    WebhookRecord.last_triggered_at < at,
                ),
            )
            .values(last_triggered_at=at)
        )
        await self._run("mark_webhook_triggered", lambda s: s.execute(stmt))

    async def delete_webhook(self, webhook_id: str) -> bool:
        async def _delete(session: AsyncSession):
            result = await session.execute(
                delete(WebhookRecord).where(WebhookRecord.id == webhook_id)
            )
            return result.rowcount > 0

        return await self._run("delete_webhook", _delete)
