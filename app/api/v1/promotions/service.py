"""
Promotion engine: decides the fate of every active student of a source year and commits
the decisions as one all-or-nothing unit.

A run is persisted as soon as it starts (status in_progress) for both modes; that row is
what stops a second concurrent run for the same year. Dry runs compute without holding
the school lock and persist no decisions. Commit runs compute and persist under the lock;
any failure rolls everything back, marks the run failed and returns the source year to
active.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.academic_years.service import ensure_year_writable, get_tenant, get_year_or_404, transition
from app.api.v1.audit_logs.service import append_audit
from app.core.collaborators import ExamOutcome, ExamSummaryProvider, RosterEntry, StudentDirectory
from app.core.config import settings
from app.core.enums import AuditAction, AuditEntityType, DecisionType, RunMode, RunStatus, YearStatus
from app.core.exceptions import ConflictError, ExecutionError, NotFoundError, ServiceError, StateError, ValidationError
from app.core.models import PromotionRun, StudentPromotionDecision, Tenant
from app.core.tenant_lock import TenantLock

from .rules import PromotionRuleSet
from .schemas import (
    DecisionCorrection,
    DecisionOverride,
    DecisionResponse,
    PromotionRunCreate,
    PromotionRunResponse,
)

logger = logging.getLogger(__name__)

LOCK_REACQUIRE_ATTEMPTS = 5


@dataclass
class PendingDecision:
    """A computed decision held in memory until the run commits."""

    student_id: UUID
    from_class: str
    from_section: Optional[str]
    to_class: Optional[str]
    to_section: Optional[str]
    decision: DecisionType
    override_reason: Optional[str] = None
    decided_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _empty_counts() -> Dict[str, int]:
    return {d.value: 0 for d in DecisionType}


def _count(decisions: Sequence[Any]) -> Dict[str, int]:
    counts = _empty_counts()
    for d in decisions:
        key = d.decision.value if isinstance(d.decision, DecisionType) else d.decision
        counts[key] += 1
    return counts


def _decision_to_response(d: StudentPromotionDecision) -> DecisionResponse:
    return DecisionResponse.model_validate(d)


def _pending_to_response(
    p: PendingDecision, run: PromotionRun, decided_by: Optional[UUID]
) -> DecisionResponse:
    return DecisionResponse(
        id=None,
        run_id=run.id,
        student_id=p.student_id,
        from_year_id=run.source_year_id,
        to_year_id=run.target_year_id,
        from_class=p.from_class,
        from_section=p.from_section,
        to_class=p.to_class,
        to_section=p.to_section,
        decision=p.decision,
        decided_by=decided_by,
        decided_at=p.decided_at,
        override_reason=p.override_reason,
    )


def _run_to_response(run: PromotionRun, decisions: Sequence[DecisionResponse] = ()) -> PromotionRunResponse:
    return PromotionRunResponse(
        id=run.id,
        tenant_id=run.tenant_id,
        source_year_id=run.source_year_id,
        target_year_id=run.target_year_id,
        mode=run.mode,
        status=run.status,
        started_by=run.started_by,
        started_at=run.started_at,
        completed_at=run.completed_at,
        total_students=run.total_students or 0,
        counts_by_decision=run.counts_by_decision or {},
        error_detail=run.error_detail,
        decisions=list(decisions),
        review_required=[d.student_id for d in decisions if d.decision == DecisionType.EXCLUDED],
    )


def snapshot_decision(d: StudentPromotionDecision) -> Dict[str, Any]:
    return {
        "id": d.id,
        "run_id": d.run_id,
        "student_id": d.student_id,
        "from_class": d.from_class,
        "from_section": d.from_section,
        "to_class": d.to_class,
        "to_section": d.to_section,
        "decision": d.decision,
        "override_reason": d.override_reason,
        "revision": d.revision,
        "supersedes_id": d.supersedes_id,
    }


# ----- Queries -----


async def _get_run_or_404(db: AsyncSession, tenant_id: UUID, run_id: UUID) -> PromotionRun:
    run = (
        await db.execute(select(PromotionRun).where(PromotionRun.id == run_id, PromotionRun.tenant_id == tenant_id))
    ).scalar_one_or_none()
    if not run:
        raise NotFoundError("Promotion run not found", entity_ids=[run_id])
    return run


async def effective_decisions(db: AsyncSession, run_id: UUID) -> List[StudentPromotionDecision]:
    """Latest revision per student for a run."""
    result = await db.execute(
        select(StudentPromotionDecision)
        .where(StudentPromotionDecision.run_id == run_id)
        .order_by(StudentPromotionDecision.student_id, StudentPromotionDecision.revision)
    )
    latest: Dict[UUID, StudentPromotionDecision] = {}
    for d in result.scalars().all():
        latest[d.student_id] = d
    return sorted(latest.values(), key=lambda d: (d.from_class, d.from_section or "", str(d.student_id)))


async def latest_completed_commit_run(
    db: AsyncSession,
    tenant_id: UUID,
    source_year_id: UUID,
    target_year_id: Optional[UUID] = None,
) -> Optional[PromotionRun]:
    stmt = select(PromotionRun).where(
        PromotionRun.tenant_id == tenant_id,
        PromotionRun.source_year_id == source_year_id,
        PromotionRun.mode == RunMode.COMMIT.value,
        PromotionRun.status == RunStatus.COMPLETED.value,
    )
    if target_year_id is not None:
        stmt = stmt.where(PromotionRun.target_year_id == target_year_id)
    stmt = stmt.order_by(PromotionRun.completed_at.desc()).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none()


async def in_progress_run(db: AsyncSession, tenant_id: UUID, source_year_id: UUID) -> Optional[PromotionRun]:
    return (
        await db.execute(
            select(PromotionRun)
            .where(
                PromotionRun.tenant_id == tenant_id,
                PromotionRun.source_year_id == source_year_id,
                PromotionRun.status == RunStatus.IN_PROGRESS.value,
            )
            .order_by(PromotionRun.started_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()


async def get_run(db: AsyncSession, tenant_id: UUID, run_id: UUID) -> PromotionRunResponse:
    """Run with its effective decisions (corrections applied). Dry runs have none persisted."""
    run = await _get_run_or_404(db, tenant_id, run_id)
    decisions = await effective_decisions(db, run.id)
    return _run_to_response(run, [_decision_to_response(d) for d in decisions])


# ----- Decision computation -----


def _override_targets(
    override: DecisionOverride,
    entry: RosterEntry,
    rules: PromotionRuleSet,
) -> Tuple[Optional[str], Optional[str]]:
    decision = override.decision
    if decision == DecisionType.PROMOTED:
        to_class = override.to_class
        if not to_class:
            resolved = rules.resolve(entry.class_name, entry.section, ExamOutcome(passed=True))
            if resolved.decision_hint != DecisionType.PROMOTED:
                raise ValidationError(
                    "Promoted override needs to_class: no next class for the student's class",
                    entity_ids=[override.student_id],
                )
            to_class = resolved.to_class
        return to_class, override.to_section or entry.section
    elif decision == DecisionType.RETAINED:
        return entry.class_name, override.to_section or entry.section
    elif decision in (DecisionType.TRANSFERRED, DecisionType.GRADUATED, DecisionType.EXCLUDED):
        return None, None
    raise ValueError(f"Unhandled decision type: {decision!r}")


async def compute_decisions(
    tenant_id: UUID,
    source_year_id: UUID,
    rules: PromotionRuleSet,
    directory: StudentDirectory,
    exam_summary: ExamSummaryProvider,
    overrides: Sequence[DecisionOverride] = (),
) -> List[PendingDecision]:
    """Resolve one decision per active student. Pure computation plus collaborator reads."""
    by_student: Dict[UUID, DecisionOverride] = {}
    duplicated = []
    for ov in overrides:
        if ov.student_id in by_student:
            duplicated.append(ov.student_id)
        by_student[ov.student_id] = ov
    if duplicated:
        raise ValidationError("More than one override given for a student", entity_ids=duplicated)

    try:
        roster = await directory.list_active_students(tenant_id, source_year_id)
    except ServiceError:
        raise
    except Exception as e:
        raise ExecutionError("Student directory unavailable; no decisions were made") from e

    seen = set()
    duplicate_roster = []
    for entry in roster:
        if entry.student_id in seen:
            duplicate_roster.append(entry.student_id)
        seen.add(entry.student_id)
    if duplicate_roster:
        raise ExecutionError("Student appears more than once on the roster", entity_ids=duplicate_roster)

    unknown = [sid for sid in by_student if sid not in seen]
    if unknown:
        raise ValidationError("Overrides reference students not on the active roster", entity_ids=unknown)

    pending: List[PendingDecision] = []
    failing: List[UUID] = []
    for entry in roster:
        override = by_student.get(entry.student_id)
        if override is not None:
            to_class, to_section = _override_targets(override, entry, rules)
            pending.append(
                PendingDecision(
                    student_id=entry.student_id,
                    from_class=entry.class_name,
                    from_section=entry.section,
                    to_class=to_class,
                    to_section=to_section,
                    decision=override.decision,
                    override_reason=override.reason,
                )
            )
            continue

        outcome: Optional[ExamOutcome] = None
        if rules.requires_exam_outcome(entry.class_name, entry.section):
            try:
                outcome = await exam_summary.get_outcome(tenant_id, source_year_id, entry.student_id)
            except Exception:
                logger.exception("Exam summary lookup failed: tenant=%s student=%s", tenant_id, entry.student_id)
                failing.append(entry.student_id)
                continue
        resolution = rules.resolve(entry.class_name, entry.section, outcome)
        pending.append(
            PendingDecision(
                student_id=entry.student_id,
                from_class=entry.class_name,
                from_section=entry.section,
                to_class=resolution.to_class,
                to_section=resolution.to_section,
                decision=resolution.decision_hint,
            )
        )

    if failing:
        raise ExecutionError("Exam summary unavailable for students; no decisions were made", entity_ids=failing)
    return pending


# ----- Run lifecycle -----


async def _reacquire(lock: TenantLock) -> None:
    """Take the lock back to finish our own run; waits briefly instead of failing on a short-lived holder."""
    for attempt in range(LOCK_REACQUIRE_ATTEMPTS):
        try:
            await lock.acquire()
            return
        except ConflictError:
            if attempt == LOCK_REACQUIRE_ATTEMPTS - 1:
                raise
            await asyncio.sleep(0.1 * (2 ** attempt))


async def _fail_abandoned_runs(db: AsyncSession, tenant_id: UUID, source_year_id: UUID) -> None:
    """In-progress runs older than the lock lease belong to a worker that died."""
    cutoff = _utcnow() - timedelta(seconds=settings.lifecycle_lock_lease_seconds)
    result = await db.execute(
        update(PromotionRun)
        .where(
            PromotionRun.tenant_id == tenant_id,
            PromotionRun.source_year_id == source_year_id,
            PromotionRun.status == RunStatus.IN_PROGRESS.value,
            PromotionRun.started_at < cutoff,
        )
        .values(status=RunStatus.FAILED.value, completed_at=_utcnow(), error_detail="Abandoned: worker did not finish the run")
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.warning("Marked %s abandoned promotion run(s) failed: year=%s", result.rowcount, source_year_id)


async def _revert_source_year(
    db: AsyncSession,
    tenant_id: UUID,
    source_year_id: UUID,
    actor_id: Optional[UUID],
) -> bool:
    """promoting -> active in its own transaction. Returns False if the year could not be moved back."""
    tenant = await get_tenant(db, tenant_id)
    source = await get_year_or_404(db, tenant_id, source_year_id)
    await db.refresh(source)
    if source.status != YearStatus.PROMOTING.value:
        return True
    try:
        await transition(db, tenant, source, YearStatus.ACTIVE, actor_id)
        await db.commit()
    except ServiceError:
        await db.rollback()
        logger.exception(
            "Could not return academic year to active after a failed run: tenant=%s year=%s",
            tenant_id,
            source_year_id,
        )
        return False
    return True


async def _fail_run(
    db: AsyncSession,
    tenant_id: UUID,
    run_id: UUID,
    source_year_id: UUID,
    error: ServiceError,
    actor_id: Optional[UUID],
) -> None:
    """Record the failure in fresh transactions. Caller has rolled back the failed one.
    The run ends failed and audited even when the source year cannot be moved back."""
    reverted = await _revert_source_year(db, tenant_id, source_year_id, actor_id)

    tenant = await get_tenant(db, tenant_id)
    run = await _get_run_or_404(db, tenant_id, run_id)
    await db.refresh(run)
    run.status = RunStatus.FAILED.value
    run.completed_at = _utcnow()
    run.error_detail = f"{error.message} {error.entity_ids}" if error.entity_ids else error.message
    if not reverted:
        run.error_detail += " (source academic year left promoting)"
    await append_audit(
        db,
        tenant,
        AuditAction.RUN_FAILED,
        AuditEntityType.PROMOTION_RUN,
        run.id,
        after={"status": run.status, "error": run.error_detail, "student_ids": error.entity_ids},
        actor_id=actor_id,
    )
    await db.commit()
    logger.warning("Promotion run failed: tenant=%s run=%s error=%s", tenant_id, run_id, run.error_detail)


async def _begin_run(
    db: AsyncSession,
    tenant: Tenant,
    payload: PromotionRunCreate,
    actor_id: Optional[UUID],
) -> Tuple[PromotionRun, bool, Optional[PromotionRuleSet]]:
    """Validate preconditions, move the source year to promoting and persist the run row.
    Returns (run, attached, rules); attached=True means an existing run was returned."""
    source = await get_year_or_404(db, tenant.id, payload.source_year_id)
    target = await get_year_or_404(db, tenant.id, payload.target_year_id)
    if source.status not in (YearStatus.ACTIVE.value, YearStatus.PROMOTING.value):
        raise StateError(
            f"Source academic year must be active or promoting (status is {source.status})",
            entity_ids=[source.id],
        )
    if target.status != YearStatus.DRAFT.value:
        raise StateError(
            f"Target academic year must be a draft (status is {target.status})",
            entity_ids=[target.id],
        )

    await _fail_abandoned_runs(db, tenant.id, source.id)
    running = await in_progress_run(db, tenant.id, source.id)
    if running:
        same_owner = (
            running.target_year_id == target.id
            and running.started_by == actor_id
            and running.mode == payload.mode.value
        )
        if same_owner:
            logger.info("Attaching to in-progress promotion run: tenant=%s run=%s", tenant.id, running.id)
            return running, True, None
        raise ConflictError("operation already in progress", entity_ids=[running.id])

    committed = await latest_completed_commit_run(db, tenant.id, source.id)
    if committed:
        raise ConflictError(
            "A committed promotion run already exists for this academic year; roll it back to run again",
            entity_ids=[committed.id],
        )

    rules = await PromotionRuleSet.snapshot(db, tenant.id)
    if source.status == YearStatus.ACTIVE.value:
        await transition(db, tenant, source, YearStatus.PROMOTING, actor_id)

    run = PromotionRun(
        tenant_id=tenant.id,
        source_year_id=source.id,
        target_year_id=target.id,
        mode=payload.mode.value,
        status=RunStatus.IN_PROGRESS.value,
        started_by=actor_id,
        started_at=_utcnow(),
        total_students=0,
        counts_by_decision=_empty_counts(),
        rules_snapshot=rules.to_json(),
    )
    db.add(run)
    await db.flush()
    await db.commit()
    logger.info(
        "Promotion run started: tenant=%s run=%s mode=%s source=%s target=%s",
        tenant.id,
        run.id,
        payload.mode.value,
        source.id,
        target.id,
    )
    return run, False, rules


async def _finish_dry_run(
    db: AsyncSession,
    tenant_id: UUID,
    run_id: UUID,
    pending: List[PendingDecision],
    actor_id: Optional[UUID],
) -> PromotionRunResponse:
    # The lock was released while computing; reload anything another writer may have changed.
    tenant = await get_tenant(db, tenant_id)
    run = await _get_run_or_404(db, tenant_id, run_id)
    await db.refresh(run)
    source = await get_year_or_404(db, tenant_id, run.source_year_id)
    await db.refresh(source)
    run.status = RunStatus.COMPLETED.value
    run.completed_at = _utcnow()
    run.total_students = len(pending)
    run.counts_by_decision = _count(pending)
    if source.status == YearStatus.PROMOTING.value:
        await transition(db, tenant, source, YearStatus.ACTIVE, actor_id)
    await db.commit()
    logger.info("Dry run completed: tenant=%s run=%s counts=%s", tenant_id, run_id, run.counts_by_decision)
    return _run_to_response(run, [_pending_to_response(p, run, actor_id) for p in pending])


async def _commit_decisions(
    db: AsyncSession,
    tenant: Tenant,
    run: PromotionRun,
    lock: TenantLock,
    pending: List[PendingDecision],
    actor_id: Optional[UUID],
) -> PromotionRunResponse:
    """Persist every decision, the run status and the audit trail in one transaction.
    The lock lease is extended after every flushed chunk."""
    batch_size = max(1, settings.promotion_flush_batch_size)
    rows: List[StudentPromotionDecision] = []
    chunk: List[UUID] = []
    try:
        for p in pending:
            chunk.append(p.student_id)
            row = StudentPromotionDecision(
                tenant_id=tenant.id,
                run_id=run.id,
                student_id=p.student_id,
                from_year_id=run.source_year_id,
                to_year_id=run.target_year_id,
                from_class=p.from_class,
                from_section=p.from_section,
                to_class=p.to_class,
                to_section=p.to_section,
                decision=p.decision.value,
                decided_by=actor_id,
                decided_at=p.decided_at,
                override_reason=p.override_reason,
                revision=1,
            )
            db.add(row)
            rows.append(row)
            if len(chunk) >= batch_size:
                await db.flush()
                chunk = []
                await lock.renew()
        await db.flush()
        chunk = []

        run.status = RunStatus.COMPLETED.value
        run.completed_at = _utcnow()
        run.total_students = len(rows)
        run.counts_by_decision = _count(pending)
        await append_audit(
            db,
            tenant,
            AuditAction.RUN_COMMITTED,
            AuditEntityType.PROMOTION_RUN,
            run.id,
            after={
                "source_year_id": run.source_year_id,
                "target_year_id": run.target_year_id,
                "total_students": run.total_students,
                "counts_by_decision": run.counts_by_decision,
            },
            actor_id=actor_id,
            flush=False,
        )
        for row in rows:
            await append_audit(
                db,
                tenant,
                AuditAction.DECISION_RECORDED,
                AuditEntityType.STUDENT_PROMOTION,
                row.id,
                after=snapshot_decision(row),
                actor_id=actor_id,
                flush=False,
            )
        await db.flush()
        await lock.renew()
        await db.commit()
    except ServiceError:
        raise
    except Exception as e:
        failing = list(chunk)
        message = "Promotion commit failed; no decisions were saved"
        raise ExecutionError(message, entity_ids=failing) from e

    logger.info("Promotion run committed: tenant=%s run=%s counts=%s", tenant.id, run.id, run.counts_by_decision)
    return _run_to_response(run, [_decision_to_response(r) for r in rows])


async def start_run(
    db: AsyncSession,
    tenant: Tenant,
    lock: TenantLock,
    directory: StudentDirectory,
    exam_summary: ExamSummaryProvider,
    payload: PromotionRunCreate,
    actor_id: Optional[UUID] = None,
) -> PromotionRunResponse:
    """Start (or attach to) a promotion run. Caller has acquired `lock` and releases it afterwards."""
    tenant_id = tenant.id
    source_year_id = payload.source_year_id

    run, attached, rules = await _begin_run(db, tenant, payload, actor_id)
    if attached:
        return await get_run(db, tenant_id, run.id)
    run_id = run.id

    dry_run = payload.mode == RunMode.DRY_RUN
    if dry_run:
        # Computation may call external services; don't starve other writers of this school.
        await lock.release()

    try:
        pending = await compute_decisions(tenant_id, source_year_id, rules, directory, exam_summary, payload.overrides)
        if dry_run:
            await _reacquire(lock)
            return await _finish_dry_run(db, tenant_id, run_id, pending, actor_id)
        return await _commit_decisions(db, tenant, run, lock, pending, actor_id)
    except Exception as e:
        error = e if isinstance(e, ServiceError) else ExecutionError("Promotion run failed unexpectedly")
        await db.rollback()
        try:
            if not lock.held:
                await _reacquire(lock)
            await _fail_run(db, tenant_id, run_id, source_year_id, error, actor_id)
        except Exception:
            # The run is left in_progress and is failed as abandoned once the lease runs out.
            await db.rollback()
            logger.exception("Could not record promotion run failure: tenant=%s run=%s", tenant_id, run_id)
        if error is e:
            raise
        raise error from e


async def rollback_run(
    db: AsyncSession,
    tenant: Tenant,
    run_id: UUID,
    actor_id: Optional[UUID] = None,
) -> PromotionRunResponse:
    """Undo a committed run before closure: run -> rolled_back, source year -> active.
    Decision rows stay as history."""
    run = await _get_run_or_404(db, tenant.id, run_id)
    if run.mode != RunMode.COMMIT.value or run.status != RunStatus.COMPLETED.value:
        raise StateError("Only a completed commit run can be rolled back", entity_ids=[run.id])
    source = await get_year_or_404(db, tenant.id, run.source_year_id)
    if source.status != YearStatus.PROMOTING.value:
        raise StateError(
            f"Source academic year is {source.status}; a run can only be rolled back before closure",
            entity_ids=[source.id],
        )
    before = {"status": run.status}
    run.status = RunStatus.ROLLED_BACK.value
    await transition(db, tenant, source, YearStatus.ACTIVE, actor_id)
    await append_audit(
        db,
        tenant,
        AuditAction.RUN_ROLLED_BACK,
        AuditEntityType.PROMOTION_RUN,
        run.id,
        before=before,
        after={"status": run.status},
        actor_id=actor_id,
    )
    logger.info("Promotion run rolled back: tenant=%s run=%s", tenant.id, run.id)
    return await get_run(db, tenant.id, run.id)


async def correct_decision(
    db: AsyncSession,
    tenant: Tenant,
    run_id: UUID,
    student_id: UUID,
    payload: DecisionCorrection,
    actor_id: Optional[UUID] = None,
) -> DecisionResponse:
    """Append a corrected decision that supersedes the student's current one."""
    run = await _get_run_or_404(db, tenant.id, run_id)
    if run.mode != RunMode.COMMIT.value or run.status != RunStatus.COMPLETED.value:
        raise StateError("Decisions can only be corrected on a completed commit run", entity_ids=[run.id])
    source = await ensure_year_writable(db, tenant.id, run.source_year_id)

    current = (
        await db.execute(
            select(StudentPromotionDecision)
            .where(StudentPromotionDecision.run_id == run.id, StudentPromotionDecision.student_id == student_id)
            .order_by(StudentPromotionDecision.revision.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if not current:
        raise NotFoundError("No decision for this student in the run", entity_ids=[student_id])

    decision = payload.decision
    if decision == DecisionType.PROMOTED:
        to_class = payload.to_class or (current.to_class if current.decision == DecisionType.PROMOTED.value else None)
        if not to_class:
            rules = await PromotionRuleSet.snapshot(db, tenant.id)
            to_class = rules.next_class(current.from_class)
        if not to_class:
            raise ValidationError("to_class is required to promote this student", entity_ids=[student_id])
        to_section = payload.to_section or current.from_section
    elif decision == DecisionType.RETAINED:
        to_class, to_section = current.from_class, payload.to_section or current.from_section
    elif decision in (DecisionType.TRANSFERRED, DecisionType.GRADUATED, DecisionType.EXCLUDED):
        to_class, to_section = None, None
    else:
        raise ValueError(f"Unhandled decision type: {decision!r}")

    corrected = StudentPromotionDecision(
        tenant_id=tenant.id,
        run_id=run.id,
        student_id=student_id,
        from_year_id=source.id,
        to_year_id=run.target_year_id,
        from_class=current.from_class,
        from_section=current.from_section,
        to_class=to_class,
        to_section=to_section,
        decision=decision.value,
        decided_by=actor_id,
        decided_at=_utcnow(),
        override_reason=payload.reason,
        revision=current.revision + 1,
        supersedes_id=current.id,
    )
    db.add(corrected)
    await db.flush()
    await append_audit(
        db,
        tenant,
        AuditAction.DECISION_CORRECTED,
        AuditEntityType.STUDENT_PROMOTION,
        corrected.id,
        before=snapshot_decision(current),
        after=snapshot_decision(corrected),
        actor_id=actor_id,
    )
    logger.info("Promotion decision corrected: tenant=%s run=%s student=%s", tenant.id, run.id, student_id)
    return _decision_to_response(corrected)

