"""Per-school exclusive lock for academic year lifecycle writes.

Non-blocking: a second caller gets ConflictError("operation already in progress") and is
expected to retry with backoff. Acquire and release each commit immediately, so the
session must have no pending work when they are called.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ConflictError
from app.core.models import LifecycleLock

logger = logging.getLogger(__name__)


class TenantLock:
    def __init__(self, db: AsyncSession, tenant_id: UUID, operation: str) -> None:
        self.db = db
        self.tenant_id = tenant_id
        self.operation = operation
        self.token: Optional[str] = None

    @property
    def held(self) -> bool:
        return self.token is not None

    async def _ensure_row(self) -> None:
        if await self.db.get(LifecycleLock, self.tenant_id) is not None:
            return
        self.db.add(LifecycleLock(tenant_id=self.tenant_id))
        try:
            await self.db.commit()
        except IntegrityError:
            # Another worker created it first.
            await self.db.rollback()

    async def acquire(self) -> None:
        if self.held:
            return
        await self._ensure_row()
        token = secrets.token_hex(16)
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(LifecycleLock)
            .where(
                LifecycleLock.tenant_id == self.tenant_id,
                or_(LifecycleLock.holder_token.is_(None), LifecycleLock.expires_at < now),
            )
            .values(
                holder_token=token,
                operation=self.operation,
                acquired_at=now,
                expires_at=now + timedelta(seconds=settings.lifecycle_lock_lease_seconds),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount != 1:
            logger.info("Lifecycle lock busy: tenant=%s operation=%s", self.tenant_id, self.operation)
            raise ConflictError("operation already in progress", entity_ids=[self.tenant_id])
        self.token = token
        logger.debug("Lifecycle lock acquired: tenant=%s operation=%s", self.tenant_id, self.operation)

    async def renew(self) -> None:
        """Extend the lease inside the caller's transaction (no commit).

        The row update also holds the lock row until the caller commits, so a takeover
        cannot slip in between. ConflictError if the lease was already taken over.
        """
        if not self.held:
            raise ConflictError("Lifecycle lock is not held", entity_ids=[self.tenant_id])
        now = datetime.now(timezone.utc)
        result = await self.db.execute(
            update(LifecycleLock)
            .where(LifecycleLock.tenant_id == self.tenant_id, LifecycleLock.holder_token == self.token)
            .values(expires_at=now + timedelta(seconds=settings.lifecycle_lock_lease_seconds))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("Lifecycle lock lost: tenant=%s operation=%s", self.tenant_id, self.operation)
            self.token = None
            raise ConflictError("Lifecycle lock was taken over by another worker", entity_ids=[self.tenant_id])

    async def release(self) -> None:
        if not self.held:
            return
        await self.db.execute(
            update(LifecycleLock)
            .where(LifecycleLock.tenant_id == self.tenant_id, LifecycleLock.holder_token == self.token)
            .values(holder_token=None, operation=None, acquired_at=None, expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        self.token = None
        logger.debug("Lifecycle lock released: tenant=%s operation=%s", self.tenant_id, self.operation)

    async def __aenter__(self) -> "TenantLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.db.rollback()
        await self.release()
