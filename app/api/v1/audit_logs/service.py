"""
Audit ledger for academic year lifecycle changes. Every state change appends one entry in the
same transaction as the change itself, so a lost audit write means a lost operation.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.enums import AuditAction, AuditEntityType
from app.core.exceptions import ValidationError
from app.core.models import AuditLogEntry, Tenant

from .schemas import AuditLogEntryResponse, AuditLogFilters

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _to_response(entry: AuditLogEntry) -> AuditLogEntryResponse:
    return AuditLogEntryResponse(
        id=entry.id,
        tenant_id=entry.tenant_id,
        school_code=entry.school_code,
        actor_id=entry.actor_id,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        before=entry.before_state,
        after=entry.after_state,
        created_at=entry.created_at,
    )


async def append_audit(
    db: AsyncSession,
    tenant: Tenant,
    action: AuditAction,
    entity_type: AuditEntityType,
    entity_id: Any,
    *,
    after: Dict[str, Any],
    before: Optional[Dict[str, Any]] = None,
    actor_id: Optional[UUID] = None,
    flush: bool = True,
) -> AuditLogEntry:
    """Append one audit log entry and flush it. Caller must commit.
    A failure propagates so the triggering operation fails with it.
    Bulk writers pass flush=False and flush once at the end of the batch."""
    entry = AuditLogEntry(
        tenant_id=tenant.id,
        school_code=tenant.organization_code,
        actor_id=actor_id,
        action=action.value,
        entity_type=entity_type.value,
        entity_id=str(entity_id),
        before_state=_json_safe(before) if before is not None else None,
        after_state=_json_safe(after),
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    if not flush:
        return entry
    try:
        await db.flush()
    except SQLAlchemyError:
        logger.error("Audit append failed: tenant=%s action=%s entity=%s", tenant.id, action.value, entity_id)
        raise
    return entry


async def query_audit(
    db: AsyncSession,
    tenant_id: UUID,
    filters: Optional[AuditLogFilters] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[AuditLogEntryResponse]:
    """Read-only, paginated. Newest first by default (created_at, then id)."""
    if limit < 1 or limit > settings.audit_page_max:
        raise ValidationError(f"limit must be between 1 and {settings.audit_page_max}")
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    filters = filters or AuditLogFilters()

    stmt = select(AuditLogEntry).where(AuditLogEntry.tenant_id == tenant_id)
    if filters.action:
        stmt = stmt.where(AuditLogEntry.action == filters.action)
    if filters.entity_type:
        stmt = stmt.where(AuditLogEntry.entity_type == filters.entity_type)
    if filters.entity_id:
        stmt = stmt.where(AuditLogEntry.entity_id == filters.entity_id)
    if filters.actor_id:
        stmt = stmt.where(AuditLogEntry.actor_id == filters.actor_id)
    if filters.created_from:
        stmt = stmt.where(AuditLogEntry.created_at >= filters.created_from)
    if filters.created_to:
        stmt = stmt.where(AuditLogEntry.created_at <= filters.created_to)
    if filters.before_id is not None:
        stmt = stmt.where(AuditLogEntry.id < filters.before_id)

    if filters.order == "asc":
        stmt = stmt.order_by(AuditLogEntry.created_at.asc(), AuditLogEntry.id.asc())
    else:
        stmt = stmt.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
    stmt = stmt.limit(limit).offset(offset)

    result = await db.execute(stmt)
    return [_to_response(e) for e in result.scalars().all()]
