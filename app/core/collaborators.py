"""
Contracts the academic year lifecycle consumes from modules it does not own, plus the
SQL-backed implementations wired in production:

- Student directory: active roster of a year (student_academic_records).
- Exam summary: aggregate pass/fail per student per year (exam_summaries).
- Permission layer: role permissions of the acting user (auth.roles).
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.rbac import has_permission
from app.core.enums import EnrollmentStatus
from app.core.models import ExamSummary, Role, SchoolClass, Section, StudentAcademicRecord, User


@dataclass(frozen=True)
class RosterEntry:
    student_id: UUID
    class_name: str
    section: Optional[str]


@dataclass(frozen=True)
class ExamOutcome:
    passed: bool


class StudentDirectory(Protocol):
    async def list_active_students(
        self,
        tenant_id: UUID,
        year_id: UUID,
        class_name: Optional[str] = None,
        section: Optional[str] = None,
    ) -> List[RosterEntry]:
        ...


class ExamSummaryProvider(Protocol):
    async def get_outcome(self, tenant_id: UUID, year_id: UUID, student_id: UUID) -> Optional[ExamOutcome]:
        """None when the student has no exam summary for the year."""
        ...


class Authorizer(Protocol):
    async def authorize(self, actor_id: UUID, action: str) -> bool:
        ...


class SqlStudentDirectory:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def list_active_students(
        self,
        tenant_id: UUID,
        year_id: UUID,
        class_name: Optional[str] = None,
        section: Optional[str] = None,
    ) -> List[RosterEntry]:
        stmt = (
            select(StudentAcademicRecord.student_id, SchoolClass.name, Section.name)
            .join(SchoolClass, SchoolClass.id == StudentAcademicRecord.class_id)
            .join(Section, Section.id == StudentAcademicRecord.section_id)
            .where(
                StudentAcademicRecord.tenant_id == tenant_id,
                StudentAcademicRecord.academic_year_id == year_id,
                StudentAcademicRecord.status == EnrollmentStatus.ACTIVE.value,
            )
        )
        if class_name is not None:
            stmt = stmt.where(SchoolClass.name == class_name)
        if section is not None:
            stmt = stmt.where(Section.name == section)
        stmt = stmt.order_by(SchoolClass.name, Section.name, StudentAcademicRecord.student_id)
        result = await self.db.execute(stmt)
        return [RosterEntry(student_id=r[0], class_name=r[1], section=r[2]) for r in result.all()]


class SqlExamSummaryProvider:
    """Loads every summary of a year on first use; a run asks once per student."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._cache: Dict[tuple, Dict[UUID, bool]] = {}

    async def get_outcome(self, tenant_id: UUID, year_id: UUID, student_id: UUID) -> Optional[ExamOutcome]:
        key = (tenant_id, year_id)
        if key not in self._cache:
            result = await self.db.execute(
                select(ExamSummary.student_id, ExamSummary.passed).where(
                    ExamSummary.tenant_id == tenant_id,
                    ExamSummary.academic_year_id == year_id,
                )
            )
            self._cache[key] = {r[0]: r[1] for r in result.all()}
        passed = self._cache[key].get(student_id)
        if passed is None:
            return None
        return ExamOutcome(passed=passed)


class RolePermissionAuthorizer:
    """Actions are "<module>.<action>", e.g. "promotions.commit", matched against the role's permission JSON."""

    def __init__(self, db: AsyncSession, tenant_id: UUID) -> None:
        self.db = db
        self.tenant_id = tenant_id

    async def authorize(self, actor_id: UUID, action: str) -> bool:
        module, _, verb = action.partition(".")
        user = (
            await self.db.execute(select(User).where(User.id == actor_id, User.tenant_id == self.tenant_id))
        ).scalar_one_or_none()
        if not user or user.status != "ACTIVE":
            return False
        role = (
            await self.db.execute(select(Role).where(Role.tenant_id == self.tenant_id, Role.name == user.role))
        ).scalar_one_or_none()
        permissions = role.permissions if role and role.permissions else {}
        return has_permission(user.role, permissions, module, verb)
