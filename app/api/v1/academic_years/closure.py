"""
Year closure: finalize the source year, activate the target year and carry enrollments forward.

Closure is irreversible. It is refused (nothing applied) unless the latest committed run for the
pair covers every student still active in the source year and none of those
decisions is still excluded (awaiting review).
"""

import logging
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.audit_logs.service import append_audit
from app.api.v1.promotions.service import effective_decisions, in_progress_run, latest_completed_commit_run
from app.core.collaborators import StudentDirectory
from app.core.enums import AuditAction, AuditEntityType, DecisionType, EnrollmentStatus, YearStatus
from app.core.exceptions import ExecutionError, StateError, ValidationError
from app.core.models import SchoolClass, Section, StudentAcademicRecord, StudentPromotionDecision, Tenant

from .schemas import YearClosureRequest, YearClosureResponse
from .service import get_year_or_404, to_response, transition

logger = logging.getLogger(__name__)

# Decision -> status of the student's record in the closed year, and whether a record is created in the new year.
# Excluded students are still awaiting review and block closure, so they never get here.
ROLL_FORWARD: Dict[DecisionType, Tuple[EnrollmentStatus, bool]] = {
    DecisionType.PROMOTED: (EnrollmentStatus.PROMOTED, True),
    DecisionType.RETAINED: (EnrollmentStatus.RETAINED, True),
    DecisionType.GRADUATED: (EnrollmentStatus.GRADUATED, False),
    DecisionType.TRANSFERRED: (EnrollmentStatus.LEFT, False),
}


def _roll_forward_for(decision: str) -> Tuple[EnrollmentStatus, bool]:
    try:
        return ROLL_FORWARD[DecisionType(decision)]
    except (KeyError, ValueError):
        raise ValueError(f"Unhandled decision type: {decision!r}")


async def _target_class_ids(
    db: AsyncSession, tenant_id: UUID, decisions: List[StudentPromotionDecision]
) -> Dict[str, UUID]:
    """Resolve every carried-forward to_class by name; unknown names block closure."""
    result = await db.execute(select(SchoolClass.name, SchoolClass.id).where(SchoolClass.tenant_id == tenant_id))
    by_name = {name: cid for name, cid in result.all()}
    unresolved = [
        d.student_id
        for d in decisions
        if _roll_forward_for(d.decision)[1] and (not d.to_class or d.to_class not in by_name)
    ]
    if unresolved:
        raise ValidationError("Target class does not exist for students", entity_ids=unresolved)
    return by_name


async def _section_in_year(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    year_id: UUID,
    name: str,
    template: Optional[Section],
    cache: Dict[Tuple[UUID, str], Section],
) -> Section:
    key = (class_id, name)
    if key in cache:
        return cache[key]
    section = (
        await db.execute(
            select(Section).where(
                Section.class_id == class_id,
                Section.academic_year_id == year_id,
                Section.name == name,
            )
        )
    ).scalar_one_or_none()
    if section is None:
        section = Section(
            tenant_id=tenant_id,
            class_id=class_id,
            academic_year_id=year_id,
            name=name,
            display_order=template.display_order if template else None,
            capacity=template.capacity if template else 50,
            is_active=True,
        )
        db.add(section)
        await db.flush()
    cache[key] = section
    return section


async def _roll_forward(
    db: AsyncSession,
    tenant_id: UUID,
    source_year_id: UUID,
    target_year_id: UUID,
    decisions: List[StudentPromotionDecision],
    class_ids: Dict[str, UUID],
) -> Tuple[int, int]:
    """Mark source-year records with their outcome and enroll continuing students in the target year.
    Returns (records_archived, enrollments_created)."""
    by_student = {d.student_id: d for d in decisions}
    records = (
        await db.execute(
            select(StudentAcademicRecord).where(
                StudentAcademicRecord.tenant_id == tenant_id,
                StudentAcademicRecord.academic_year_id == source_year_id,
                StudentAcademicRecord.status == EnrollmentStatus.ACTIVE.value,
            )
        )
    ).scalars().all()
    already_enrolled = set(
        (
            await db.execute(
                select(StudentAcademicRecord.student_id).where(
                    StudentAcademicRecord.tenant_id == tenant_id,
                    StudentAcademicRecord.academic_year_id == target_year_id,
                )
            )
        ).scalars().all()
    )

    sections: Dict[Tuple[UUID, str], Section] = {}
    archived = 0
    created = 0
    for record in records:
        decision = by_student.get(record.student_id)
        if decision is None:
            continue
        new_status, continues = _roll_forward_for(decision.decision)
        record.status = new_status.value
        archived += 1
        if not continues or record.student_id in already_enrolled:
            continue
        class_id = class_ids[decision.to_class]
        section_name = decision.to_section or (record.section.name if record.section else None)
        if not section_name:
            raise ValidationError("No section to enroll student into", entity_ids=[record.student_id])
        section = await _section_in_year(
            db, tenant_id, class_id, target_year_id, section_name, record.section, sections
        )
        db.add(
            StudentAcademicRecord(
                tenant_id=tenant_id,
                student_id=record.student_id,
                academic_year_id=target_year_id,
                class_id=class_id,
                section_id=section.id,
                roll_number=record.roll_number if decision.decision == DecisionType.RETAINED.value else None,
                status=EnrollmentStatus.ACTIVE.value,
            )
        )
        created += 1
    await db.flush()
    return archived, created


async def close_year(
    db: AsyncSession,
    tenant: Tenant,
    directory: StudentDirectory,
    payload: YearClosureRequest,
    actor_id: Optional[UUID] = None,
) -> YearClosureResponse:
    """Close source year and activate target year as one unit. Caller holds the lock and commits."""
    source = await get_year_or_404(db, tenant.id, payload.source_year_id)
    target = await get_year_or_404(db, tenant.id, payload.target_year_id)

    if payload.confirm_label is not None and payload.confirm_label.strip() != source.name:
        raise ValidationError("Confirmation does not match the academic year name", entity_ids=[source.id])
    if source.status in (YearStatus.CLOSING.value, YearStatus.CLOSED.value):
        raise StateError(f"Academic year is already {source.status}", entity_ids=[source.id])
    if target.status != YearStatus.DRAFT.value:
        raise StateError(
            f"Target academic year must be a draft (status is {target.status})",
            entity_ids=[target.id],
        )

    running = await in_progress_run(db, tenant.id, source.id)
    if running:
        raise ValidationError("A promotion run is still in progress for this academic year", entity_ids=[running.id])
    run = await latest_completed_commit_run(db, tenant.id, source.id, target.id)
    if run is None or source.status != YearStatus.PROMOTING.value:
        raise ValidationError(
            "Commit a promotion run into the target year before closing this academic year",
            entity_ids=[source.id],
        )

    decisions = await effective_decisions(db, run.id)
    decided = {d.student_id for d in decisions}
    try:
        roster = await directory.list_active_students(tenant.id, source.id)
    except Exception as e:
        raise ExecutionError("Student directory unavailable; academic year was not closed") from e
    missing = [s.student_id for s in roster if s.student_id not in decided]
    if missing:
        raise ValidationError("Students without a promotion decision", entity_ids=missing)
    excluded = [d.student_id for d in decisions if d.decision == DecisionType.EXCLUDED.value]
    if excluded:
        raise ValidationError(
            "Students are still awaiting manual review; correct their decisions before closing",
            entity_ids=excluded,
        )
    class_ids = await _target_class_ids(db, tenant.id, decisions)

    await transition(db, tenant, source, YearStatus.CLOSING, actor_id)
    archived, created = await _roll_forward(db, tenant.id, source.id, target.id, decisions, class_ids)
    await transition(db, tenant, source, YearStatus.CLOSED, actor_id)
    await transition(db, tenant, target, YearStatus.ACTIVE, actor_id)

    await append_audit(
        db,
        tenant,
        AuditAction.YEAR_CLOSED,
        AuditEntityType.ACADEMIC_YEAR,
        source.id,
        before={"status": YearStatus.PROMOTING.value},
        after={
            "status": source.status,
            "run_id": run.id,
            "next_year_id": target.id,
            "records_archived": archived,
            "enrollments_created": created,
        },
        actor_id=actor_id,
    )
    logger.info(
        "Academic year closed: tenant=%s year=%s next=%s archived=%s enrolled=%s",
        tenant.id,
        source.id,
        target.id,
        archived,
        created,
    )
    return YearClosureResponse(
        closed_year=to_response(source),
        active_year=to_response(target),
        enrollments_created=created,
        records_archived=archived,
    )
