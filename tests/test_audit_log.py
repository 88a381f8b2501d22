from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.academic_years import service as year_service
from app.api.v1.academic_years.schemas import AcademicYearCreate
from app.api.v1.audit_logs.schemas import AuditLogFilters
from app.api.v1.audit_logs.service import append_audit, query_audit
from app.core.enums import AuditAction, AuditEntityType
from app.core.exceptions import ValidationError
from app.core.models import AcademicYear, AuditLogEntry, Tenant


@pytest.mark.asyncio
async def test_newest_first_with_stable_tie_break(db_session: AsyncSession, school, years) -> None:
    # years fixture: created, transitioned (activate), created
    entries = await query_audit(db_session, school.tenant_id)
    assert [e.action for e in entries] == [
        AuditAction.YEAR_CREATED.value,
        AuditAction.YEAR_TRANSITIONED.value,
        AuditAction.YEAR_CREATED.value,
    ]
    assert [e.id for e in entries] == sorted((e.id for e in entries), reverse=True)

    oldest_first = await query_audit(db_session, school.tenant_id, AuditLogFilters(order="asc"))
    assert [e.id for e in oldest_first] == [e.id for e in reversed(entries)]

    transition = entries[1]
    assert transition.before["status"] == "draft"
    assert transition.after["status"] == "active"


@pytest.mark.asyncio
async def test_pagination_and_cursor(db_session: AsyncSession, school, years) -> None:
    everything = await query_audit(db_session, school.tenant_id)
    page = await query_audit(db_session, school.tenant_id, limit=2, offset=1)
    assert [e.id for e in page] == [e.id for e in everything[1:3]]

    after_first = await query_audit(db_session, school.tenant_id, AuditLogFilters(before_id=everything[0].id))
    assert [e.id for e in after_first] == [e.id for e in everything[1:]]


@pytest.mark.asyncio
async def test_filters(db_session: AsyncSession, school, years) -> None:
    created = await query_audit(db_session, school.tenant_id, AuditLogFilters(action=AuditAction.YEAR_CREATED.value))
    assert len(created) == 2

    one_year = await query_audit(db_session, school.tenant_id, AuditLogFilters(entity_id=str(years["current"])))
    assert {e.entity_id for e in one_year} == {str(years["current"])}
    assert len(one_year) == 2

    by_actor = await query_audit(db_session, school.tenant_id, AuditLogFilters(actor_id=school.teacher_id))
    assert by_actor == []


@pytest.mark.asyncio
async def test_limit_is_capped(db_session: AsyncSession, school) -> None:
    with pytest.raises(ValidationError):
        await query_audit(db_session, school.tenant_id, limit=101)
    with pytest.raises(ValidationError):
        await query_audit(db_session, school.tenant_id, offset=-1)


@pytest.mark.asyncio
async def test_other_schools_entries_are_invisible(db_session: AsyncSession, school, years) -> None:
    other = Tenant(organization_code="SCH-OTHER", organization_name="Other School")
    db_session.add(other)
    await db_session.flush()
    await append_audit(
        db_session,
        other,
        AuditAction.RULE_UPSERTED,
        AuditEntityType.PROMOTION_RULE,
        "r-1",
        after={"from_class": "1"},
    )
    await db_session.commit()

    mine = await query_audit(db_session, school.tenant_id)
    assert all(e.school_code == "SCH-TEST" for e in mine)
    theirs = await query_audit(db_session, other.id)
    assert [e.school_code for e in theirs] == ["SCH-OTHER"]


@pytest.mark.asyncio
async def test_entries_cannot_be_updated_or_deleted(db_session: AsyncSession, school, years) -> None:
    entry = (await db_session.execute(select(AuditLogEntry).limit(1))).scalar_one()
    entry.action = "tampered"
    with pytest.raises(RuntimeError):
        await db_session.flush()
    await db_session.rollback()

    entry = (await db_session.execute(select(AuditLogEntry).limit(1))).scalar_one()
    await db_session.delete(entry)
    with pytest.raises(RuntimeError):
        await db_session.flush()
    await db_session.rollback()


@pytest.mark.asyncio
async def test_audit_failure_fails_the_operation(
    coordinator, school, db_session: AsyncSession, monkeypatch
) -> None:
    async def unreachable(*args, **kwargs):
        raise OperationalError("INSERT INTO audit_log", {}, Exception("connection refused"))

    monkeypatch.setattr(year_service, "append_audit", unreachable)

    with pytest.raises(OperationalError):
        await coordinator.create_year(
            AcademicYearCreate(name="2025-26", start_date=date(2025, 4, 1), end_date=date(2026, 3, 31)),
            school.admin_id,
        )
    assert (await db_session.execute(select(AcademicYear))).scalars().all() == []
