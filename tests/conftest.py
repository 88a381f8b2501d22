import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("LIFECYCLE_LOCK_LEASE_SECONDS", "600")

from dataclasses import dataclass, field
from datetime import date
from typing import AsyncGenerator, Dict, Iterable, List, Optional, Set
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.v1.academic_years.lifecycle import LifecycleCoordinator
from app.api.v1.academic_years.schemas import AcademicYearCreate
from app.auth.security import create_access_token
from app.core.collaborators import ExamOutcome, RosterEntry
from app.core.models import Role, SchoolClass, Section, StudentAcademicRecord, Tenant, User
from app.db.schema_check import ensure_tables
from app.db.session import engine_options, get_db
from app.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_PERMISSIONS = {
    "academic_years": {"create": True, "read": True, "update": True, "close": True},
    "promotions": {"read": True, "run": True, "commit": True, "update": True, "manage_rules": True},
    "audit_logs": {"read": True},
}
TEACHER_PERMISSIONS = {
    "academic_years": {"read": True},
    "promotions": {"read": True, "run": True},
}


# ----- Collaborator fakes -----


class FakeDirectory:
    def __init__(self, roster: Iterable[RosterEntry] = ()) -> None:
        self.roster: List[RosterEntry] = list(roster)
        self.fail = False

    async def list_active_students(self, tenant_id, year_id, class_name=None, section=None) -> List[RosterEntry]:
        if self.fail:
            raise RuntimeError("student directory unreachable")
        return [
            r
            for r in self.roster
            if (class_name is None or r.class_name == class_name) and (section is None or r.section == section)
        ]


class FakeExamSummary:
    def __init__(self, outcomes: Optional[Dict[UUID, bool]] = None) -> None:
        self.outcomes: Dict[UUID, bool] = dict(outcomes or {})
        self.failing: Set[UUID] = set()

    async def get_outcome(self, tenant_id, year_id, student_id) -> Optional[ExamOutcome]:
        if student_id in self.failing:
            raise RuntimeError("exam service timeout")
        if student_id not in self.outcomes:
            return None
        return ExamOutcome(passed=self.outcomes[student_id])


class FakeAuthorizer:
    def __init__(self, denied: Iterable[str] = ()) -> None:
        self.denied = set(denied)

    async def authorize(self, actor_id, action) -> bool:
        return action not in self.denied


# ----- Seed data -----


@dataclass
class School:
    """Plain ids stay usable after a failed operation rolls the session back (which expires ORM objects)."""

    tenant: Tenant
    tenant_id: UUID
    admin_id: UUID
    teacher_id: UUID
    classes: Dict[str, UUID]
    directory: FakeDirectory = field(default_factory=FakeDirectory)
    exam_summary: FakeExamSummary = field(default_factory=FakeExamSummary)
    authorizer: FakeAuthorizer = field(default_factory=FakeAuthorizer)


@pytest.fixture()
async def db_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        **engine_options(TEST_DATABASE_URL),
    )
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
async def school(db_session: AsyncSession) -> School:
    """A school with classes 1..10 (10 is terminal), an admin and a teacher."""
    tenant = Tenant(organization_code="SCH-TEST", organization_name="Test School")
    db_session.add(tenant)
    await db_session.flush()

    db_session.add_all(
        [
            Role(tenant_id=tenant.id, name="ADMIN", permissions=ADMIN_PERMISSIONS),
            Role(tenant_id=tenant.id, name="TEACHER", permissions=TEACHER_PERMISSIONS),
        ]
    )
    admin = User(tenant_id=tenant.id, full_name="Asha Admin", email="admin@test.school", role="ADMIN")
    teacher = User(tenant_id=tenant.id, full_name="Tomas Teacher", email="teacher@test.school", role="TEACHER")
    db_session.add_all([admin, teacher])

    classes = {}
    for n in range(1, 11):
        c = SchoolClass(tenant_id=tenant.id, name=str(n), display_order=n)
        db_session.add(c)
        classes[str(n)] = c
    await db_session.commit()
    return School(
        tenant=tenant,
        tenant_id=tenant.id,
        admin_id=admin.id,
        teacher_id=teacher.id,
        classes={name: c.id for name, c in classes.items()},
    )


def coordinator_for(db: AsyncSession, school: School) -> LifecycleCoordinator:
    return LifecycleCoordinator(
        db,
        school.tenant_id,
        directory=school.directory,
        exam_summary=school.exam_summary,
        authorizer=school.authorizer,
    )


@pytest.fixture()
def coordinator(db_session: AsyncSession, school: School) -> LifecycleCoordinator:
    return coordinator_for(db_session, school)


@pytest.fixture()
async def years(coordinator: LifecycleCoordinator, school: School) -> Dict[str, UUID]:
    """Ids of 2025-26 (active) and 2026-27 (draft)."""
    current = await coordinator.create_year(
        AcademicYearCreate(name="2025-26", start_date=date(2025, 4, 1), end_date=date(2026, 3, 31)),
        school.admin_id,
    )
    await coordinator.activate_year(current.id, school.admin_id)
    nxt = await coordinator.create_year(
        AcademicYearCreate(name="2026-27", start_date=date(2026, 4, 1), end_date=date(2027, 3, 31)),
        school.admin_id,
    )
    return {"current": current.id, "next": nxt.id}


def enroll(school: School, class_name: str, section: Optional[str] = "A", student_id: Optional[UUID] = None) -> UUID:
    """Put a student on the fake roster of the source year."""
    sid = student_id or uuid4()
    school.directory.roster.append(RosterEntry(student_id=sid, class_name=class_name, section=section))
    return sid


async def enroll_record(
    db: AsyncSession,
    school: School,
    year_id: UUID,
    class_name: str,
    section_name: str = "A",
) -> UUID:
    """Persist a real enrollment (user + section + academic record) and mirror it on the fake roster."""
    student = User(
        tenant_id=school.tenant_id,
        full_name="Student",
        email=f"{uuid4().hex[:12]}@students.test.school",
        role="STUDENT",
        user_type="student",
    )
    db.add(student)
    class_id = school.classes[class_name]
    section = (
        await db.execute(
            select(Section).where(
                Section.class_id == class_id,
                Section.academic_year_id == year_id,
                Section.name == section_name,
            )
        )
    ).scalar_one_or_none()
    if section is None:
        section = Section(
            tenant_id=school.tenant_id,
            class_id=class_id,
            academic_year_id=year_id,
            name=section_name,
        )
        db.add(section)
    await db.flush()
    db.add(
        StudentAcademicRecord(
            tenant_id=school.tenant_id,
            student_id=student.id,
            academic_year_id=year_id,
            class_id=class_id,
            section_id=section.id,
            roll_number="1",
        )
    )
    await db.commit()
    return enroll(school, class_name, section_name, student.id)


def auth_headers(school: School, user_id: UUID) -> Dict[str, str]:
    token = create_access_token(
        subject={"sub": str(user_id), "user_id": str(user_id), "tenant_id": str(school.tenant_id)}
    )
    return {"Authorization": f"Bearer {token}"}
