import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.academic_years import service as year_service
from app.api.v1.academic_years.schemas import YearClosureRequest
from app.api.v1.promotions.schemas import DecisionCorrection, PromotionRuleUpsert, PromotionRunCreate
from app.core.collaborators import SqlStudentDirectory
from app.core.enums import AuditAction, DecisionType, EnrollmentStatus, PromotionCriteria, RunMode, YearStatus
from app.core.exceptions import LockedError, StateError, ValidationError
from app.core.models import AuditLogEntry, Section, StudentAcademicRecord

from conftest import enroll_record


def _closure(years, confirm_label=None) -> YearClosureRequest:
    return YearClosureRequest(
        source_year_id=years["current"],
        target_year_id=years["next"],
        confirm_label=confirm_label,
    )


def _commit(years) -> PromotionRunCreate:
    return PromotionRunCreate(source_year_id=years["current"], target_year_id=years["next"], mode=RunMode.COMMIT)


@pytest.fixture()
async def students(coordinator, school, years, db_session: AsyncSession):
    await coordinator.upsert_rule(
        PromotionRuleUpsert(from_class="5", criteria=PromotionCriteria.REQUIRE_PASS),
        school.admin_id,
    )
    enrolled = {
        "promoted": await enroll_record(db_session, school, years["current"], "1", "A"),
        "graduated": await enroll_record(db_session, school, years["current"], "10", "A"),
        "retained": await enroll_record(db_session, school, years["current"], "5", "A"),
    }
    school.exam_summary.outcomes[enrolled["retained"]] = False
    return enrolled


async def _status(db: AsyncSession, school, year_id) -> str:
    ay = await year_service.get_year_or_404(db, school.tenant_id, year_id)
    await db.refresh(ay)
    return ay.status


@pytest.mark.asyncio
async def test_sql_directory_lists_active_enrollments(school, years, students, db_session: AsyncSession) -> None:
    roster = await SqlStudentDirectory(db_session).list_active_students(school.tenant_id, years["current"])
    assert {r.student_id for r in roster} == set(students.values())
    assert {r.class_name for r in roster} == {"1", "5", "10"}

    only_five = await SqlStudentDirectory(db_session).list_active_students(
        school.tenant_id, years["current"], class_name="5"
    )
    assert [r.student_id for r in only_five] == [students["retained"]]


@pytest.mark.asyncio
async def test_closure_requires_a_committed_run(coordinator, school, years, students, db_session) -> None:
    with pytest.raises(ValidationError):
        await coordinator.close_year(_closure(years), school.admin_id)

    await coordinator.start_promotion_run(
        PromotionRunCreate(source_year_id=years["current"], target_year_id=years["next"], mode=RunMode.DRY_RUN),
        school.admin_id,
    )
    with pytest.raises(ValidationError):
        await coordinator.close_year(_closure(years), school.admin_id)
    assert await _status(db_session, school, years["current"]) == YearStatus.ACTIVE.value


@pytest.mark.asyncio
async def test_closure_blocked_by_student_without_decision(coordinator, school, years, students, db_session) -> None:
    await coordinator.start_promotion_run(_commit(years), school.admin_id)
    late = await enroll_record(db_session, school, years["current"], "3", "B")

    with pytest.raises(ValidationError) as exc:
        await coordinator.close_year(_closure(years), school.admin_id)
    assert exc.value.entity_ids == [str(late)]
    assert await _status(db_session, school, years["current"]) == YearStatus.PROMOTING.value
    assert await _status(db_session, school, years["next"]) == YearStatus.DRAFT.value


@pytest.mark.asyncio
async def test_confirmation_must_match_year_name(coordinator, school, years, students) -> None:
    await coordinator.start_promotion_run(_commit(years), school.admin_id)
    with pytest.raises(ValidationError):
        await coordinator.close_year(_closure(years, confirm_label="CLOSE"), school.admin_id)


@pytest.mark.asyncio
async def test_close_year_rolls_enrollment_forward(coordinator, school, years, students, db_session) -> None:
    await coordinator.start_promotion_run(_commit(years), school.admin_id)

    result = await coordinator.close_year(_closure(years, confirm_label="2025-26"), school.admin_id)

    assert result.closed_year.status == YearStatus.CLOSED
    assert result.closed_year.closed_by == school.admin_id
    assert result.active_year.status == YearStatus.ACTIVE
    assert result.records_archived == 3
    assert result.enrollments_created == 2

    old = (
        await db_session.execute(
            select(StudentAcademicRecord).where(StudentAcademicRecord.academic_year_id == years["current"])
        )
    ).scalars().all()
    assert {r.student_id: r.status for r in old} == {
        students["promoted"]: EnrollmentStatus.PROMOTED.value,
        students["graduated"]: EnrollmentStatus.GRADUATED.value,
        students["retained"]: EnrollmentStatus.RETAINED.value,
    }

    new = (
        await db_session.execute(
            select(StudentAcademicRecord).where(StudentAcademicRecord.academic_year_id == years["next"])
        )
    ).scalars().all()
    section_names = dict(
        (await db_session.execute(select(Section.id, Section.name).where(Section.academic_year_id == years["next"]))).all()
    )
    placed = {r.student_id: (r.class_id, section_names[r.section_id], r.status) for r in new}
    assert placed == {
        students["promoted"]: (school.classes["2"], "A", EnrollmentStatus.ACTIVE.value),
        students["retained"]: (school.classes["5"], "A", EnrollmentStatus.ACTIVE.value),
    }
    sections_in_next = await db_session.scalar(
        select(func.count()).select_from(Section).where(Section.academic_year_id == years["next"])
    )
    assert sections_in_next == 2

    closed = await db_session.scalar(
        select(func.count()).select_from(AuditLogEntry).where(AuditLogEntry.action == AuditAction.YEAR_CLOSED.value)
    )
    assert closed == 1


@pytest.mark.asyncio
async def test_closed_year_is_read_only(coordinator, school, years, students, db_session) -> None:
    run = await coordinator.start_promotion_run(_commit(years), school.admin_id)
    run_id = run.id
    await coordinator.close_year(_closure(years), school.admin_id)

    with pytest.raises(LockedError):
        await year_service.ensure_year_writable(db_session, school.tenant_id, years["current"])
    with pytest.raises(LockedError):
        await coordinator.correct_decision(
            run_id,
            students["promoted"],
            DecisionCorrection(decision=DecisionType.TRANSFERRED, reason="Too late"),
            school.admin_id,
        )
    with pytest.raises(StateError):
        await coordinator.close_year(_closure(years), school.admin_id)
    with pytest.raises(StateError):
        await coordinator.rollback_run(run_id, school.admin_id)


@pytest.mark.asyncio
async def test_excluded_students_block_closure_until_reviewed(
    coordinator, school, years, students, db_session
) -> None:
    # Class 5 requires a pass; no exam summary means the student waits for review.
    pending_review = await enroll_record(db_session, school, years["current"], "5", "B")
    run = await coordinator.start_promotion_run(_commit(years), school.admin_id)
    run_id = run.id
    assert run.review_required == [pending_review]

    with pytest.raises(ValidationError) as exc:
        await coordinator.close_year(_closure(years), school.admin_id)
    assert exc.value.entity_ids == [str(pending_review)]
    assert await _status(db_session, school, years["current"]) == YearStatus.PROMOTING.value
    record = (
        await db_session.execute(
            select(StudentAcademicRecord).where(
                StudentAcademicRecord.student_id == pending_review,
                StudentAcademicRecord.academic_year_id == years["current"],
            )
        )
    ).scalar_one()
    await db_session.refresh(record)
    assert record.status == EnrollmentStatus.ACTIVE.value

    await coordinator.correct_decision(
        run_id,
        pending_review,
        DecisionCorrection(decision=DecisionType.RETAINED, reason="Repeats class 5 after review"),
        school.admin_id,
    )
    result = await coordinator.close_year(_closure(years), school.admin_id)
    assert result.enrollments_created == 3

    await db_session.refresh(record)
    assert record.status == EnrollmentStatus.RETAINED.value
