"""
Academic year store: owns AcademicYear rows and their state machine.

    draft -> active -> promoting -> closing -> closed
                 ^--------'

Every status change is a compare-and-swap UPDATE on the year row plus one audit entry.
Writers hold the per-school lifecycle lock; reads never lock.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.audit_logs.service import append_audit
from app.core.enums import AuditAction, AuditEntityType, YearStatus
from app.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    LockedError,
    NotFoundError,
    StateError,
    ValidationError,
)
from app.core.models import AcademicYear, Tenant

from .schemas import AcademicYearCreate, AcademicYearResponse

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[YearStatus, FrozenSet[YearStatus]] = {
    YearStatus.DRAFT: frozenset({YearStatus.ACTIVE}),
    YearStatus.ACTIVE: frozenset({YearStatus.PROMOTING}),
    YearStatus.PROMOTING: frozenset({YearStatus.ACTIVE, YearStatus.CLOSING}),
    YearStatus.CLOSING: frozenset({YearStatus.CLOSED}),
    YearStatus.CLOSED: frozenset(),
}

READ_ONLY_STATUSES = frozenset({YearStatus.CLOSING, YearStatus.CLOSED})
IN_FLIGHT_STATUSES = (YearStatus.ACTIVE, YearStatus.PROMOTING, YearStatus.CLOSING)


def to_response(ay: AcademicYear) -> AcademicYearResponse:
    return AcademicYearResponse.model_validate(ay)


def snapshot_year(ay: AcademicYear) -> Dict[str, Any]:
    return {
        "id": ay.id,
        "name": ay.name,
        "status": ay.status,
        "start_date": ay.start_date,
        "end_date": ay.end_date,
        "previous_year_id": ay.previous_year_id,
    }


def _validate_dates(start_date: date, end_date: date) -> None:
    if end_date <= start_date:
        raise ValidationError("end_date must be after start_date")


async def get_tenant(db: AsyncSession, tenant_id: UUID) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if not tenant:
        raise NotFoundError("School not found", entity_ids=[tenant_id])
    return tenant


async def get_year_or_404(db: AsyncSession, tenant_id: UUID, academic_year_id: UUID) -> AcademicYear:
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.id == academic_year_id,
            AcademicYear.tenant_id == tenant_id,
        )
    )
    ay = result.scalar_one_or_none()
    if not ay:
        raise NotFoundError("Academic year not found", entity_ids=[academic_year_id])
    return ay


async def create_draft(
    db: AsyncSession,
    tenant: Tenant,
    payload: AcademicYearCreate,
    actor_id: Optional[UUID] = None,
) -> AcademicYear:
    """Create the school's next academic year in draft. Only one draft may be pending at a time."""
    _validate_dates(payload.start_date, payload.end_date)
    name = payload.name.strip()

    pending = await db.execute(
        select(AcademicYear.id).where(
            AcademicYear.tenant_id == tenant.id,
            AcademicYear.status == YearStatus.DRAFT.value,
        )
    )
    pending_id = pending.scalar_one_or_none()
    if pending_id:
        raise ConflictError("A draft academic year already exists for this school", entity_ids=[pending_id])

    existing = await db.execute(
        select(AcademicYear.id).where(AcademicYear.tenant_id == tenant.id, AcademicYear.name == name)
    )
    existing_id = existing.scalar_one_or_none()
    if existing_id:
        raise ValidationError(
            f"Academic year with name '{name}' already exists for this school",
            entity_ids=[existing_id],
        )

    overlap = await db.execute(
        select(AcademicYear.id).where(
            AcademicYear.tenant_id == tenant.id,
            AcademicYear.status != YearStatus.CLOSED.value,
            AcademicYear.start_date <= payload.end_date,
            AcademicYear.end_date >= payload.start_date,
        )
    )
    overlapping = list(overlap.scalars().all())
    if overlapping:
        raise ValidationError("Date range overlaps an existing academic year", entity_ids=overlapping)

    # Linear history: the new year follows the newest existing one.
    latest = (
        await db.execute(
            select(AcademicYear)
            .where(AcademicYear.tenant_id == tenant.id)
            .order_by(AcademicYear.start_date.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if latest and payload.start_date <= latest.start_date:
        raise ValidationError(
            "A new academic year must start after the latest existing year",
            entity_ids=[latest.id],
        )

    ay = AcademicYear(
        tenant_id=tenant.id,
        name=name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=YearStatus.DRAFT.value,
        previous_year_id=latest.id if latest else None,
    )
    db.add(ay)
    try:
        await db.flush()
    except IntegrityError:
        raise ConflictError("Another draft or an academic year with this name was created concurrently")
    await append_audit(
        db,
        tenant,
        AuditAction.YEAR_CREATED,
        AuditEntityType.ACADEMIC_YEAR,
        ay.id,
        after=snapshot_year(ay),
        actor_id=actor_id,
    )
    logger.info("Draft academic year created: tenant=%s year=%s name=%s", tenant.id, ay.id, name)
    return ay


async def transition(
    db: AsyncSession,
    tenant: Tenant,
    ay: AcademicYear,
    to_status: YearStatus,
    actor_id: Optional[UUID] = None,
) -> AcademicYear:
    """Guarded state-machine edge. Caller holds the lifecycle lock and commits."""
    from_status = YearStatus(ay.status)
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        raise InvalidTransitionError(from_status.value, to_status.value, entity_id=ay.id)

    before = snapshot_year(ay)
    now = datetime.now(timezone.utc)
    values: Dict[str, Any] = {"status": to_status.value, "updated_at": now}
    if to_status == YearStatus.ACTIVE and from_status == YearStatus.DRAFT:
        values["activated_at"] = now
    elif to_status == YearStatus.CLOSED:
        values["closed_at"] = now
        values["closed_by"] = actor_id

    try:
        result = await db.execute(
            update(AcademicYear)
            .where(AcademicYear.id == ay.id, AcademicYear.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    except IntegrityError:
        raise ConflictError("Another academic year is already active for this school", entity_ids=[ay.id])
    if result.rowcount != 1:
        raise ConflictError("Academic year status changed concurrently", entity_ids=[ay.id])
    await db.refresh(ay)

    await append_audit(
        db,
        tenant,
        AuditAction.YEAR_TRANSITIONED,
        AuditEntityType.ACADEMIC_YEAR,
        ay.id,
        before=before,
        after=snapshot_year(ay),
        actor_id=actor_id,
    )
    logger.info(
        "Academic year transition: tenant=%s year=%s %s -> %s",
        tenant.id,
        ay.id,
        from_status.value,
        to_status.value,
    )
    return ay


async def activate(
    db: AsyncSession,
    tenant: Tenant,
    academic_year_id: UUID,
    actor_id: Optional[UUID] = None,
) -> AcademicYear:
    """draft -> active. Never closes the current active year implicitly."""
    ay = await get_year_or_404(db, tenant.id, academic_year_id)
    if ay.status != YearStatus.DRAFT.value:
        raise StateError(f"Only a draft academic year can be activated (status is {ay.status})", entity_ids=[ay.id])
    # A promoting or closing year still has to reach closed (or fall back to active) on its own.
    in_flight = (
        await db.execute(
            select(AcademicYear)
            .where(
                AcademicYear.tenant_id == tenant.id,
                AcademicYear.status.in_([s.value for s in IN_FLIGHT_STATUSES]),
            )
            .order_by(AcademicYear.start_date)
        )
    ).scalars().first()
    if in_flight:
        raise StateError(
            f"Academic year {in_flight.name} is {in_flight.status}; close it before activating a new one",
            entity_ids=[in_flight.id],
        )
    return await transition(db, tenant, ay, YearStatus.ACTIVE, actor_id)


async def list_years(
    db: AsyncSession,
    tenant_id: UUID,
    status_filter: Optional[YearStatus] = None,
) -> List[AcademicYear]:
    """List academic years for tenant, newest first, optionally filtered by status."""
    stmt = select(AcademicYear).where(AcademicYear.tenant_id == tenant_id)
    if status_filter:
        stmt = stmt.where(AcademicYear.status == status_filter.value)
    stmt = stmt.order_by(AcademicYear.start_date.desc())
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_active_year(db: AsyncSession, tenant_id: UUID) -> Optional[AcademicYear]:
    result = await db.execute(
        select(AcademicYear).where(
            AcademicYear.tenant_id == tenant_id,
            AcademicYear.status == YearStatus.ACTIVE.value,
        )
    )
    return result.scalar_one_or_none()


async def ensure_year_writable(db: AsyncSession, tenant_id: UUID, academic_year_id: UUID) -> AcademicYear:
    """Write guard for records scoped to an academic year. Raises LockedError once closure has begun."""
    ay = await get_year_or_404(db, tenant_id, academic_year_id)
    if YearStatus(ay.status) in READ_ONLY_STATUSES:
        raise LockedError("This academic year is closed and cannot be modified.", entity_ids=[ay.id])
    return ay
