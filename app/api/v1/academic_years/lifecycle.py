"""
Entry point for every state-changing academic year lifecycle operation.

Each write is authorized, serialized per school by the lifecycle lock, delegated to the owning
service and committed as one transaction. Reads go straight to the services.
"""

import logging
from typing import Awaitable, Callable, List, TypeVar
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.promotions import rules as rule_service
from app.api.v1.promotions import service as promotion_service
from app.api.v1.promotions.schemas import (
    DecisionCorrection,
    DecisionResponse,
    PromotionRuleUpsert,
    PromotionRunCreate,
    PromotionRunResponse,
)
from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser
from app.core.collaborators import (
    Authorizer,
    ExamSummaryProvider,
    RolePermissionAuthorizer,
    SqlExamSummaryProvider,
    SqlStudentDirectory,
    StudentDirectory,
)
from app.core.enums import RunMode
from app.core.exceptions import AuthorizationError
from app.core.models import AcademicYear, PromotionRule, Tenant
from app.core.tenant_lock import TenantLock
from app.db.session import get_db

from . import closure
from . import service as year_service
from .schemas import AcademicYearCreate, YearClosureRequest, YearClosureResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LifecycleCoordinator:
    def __init__(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        directory: StudentDirectory,
        exam_summary: ExamSummaryProvider,
        authorizer: Authorizer,
    ) -> None:
        self.db = db
        self.tenant_id = tenant_id
        self.directory = directory
        self.exam_summary = exam_summary
        self.authorizer = authorizer

    async def _authorize(self, actor_id: UUID, action: str) -> None:
        if not await self.authorizer.authorize(actor_id, action):
            logger.info("Lifecycle action denied: tenant=%s actor=%s action=%s", self.tenant_id, actor_id, action)
            raise AuthorizationError(f"Not permitted: {action}", entity_ids=[actor_id])

    async def _locked(
        self,
        actor_id: UUID,
        action: str,
        work: Callable[[Tenant, TenantLock], Awaitable[T]],
    ) -> T:
        await self._authorize(actor_id, action)
        # Authorization reads leave a transaction open; the lock needs a clean session.
        await self.db.commit()
        lock = TenantLock(self.db, self.tenant_id, action)
        await lock.acquire()
        try:
            tenant = await year_service.get_tenant(self.db, self.tenant_id)
            result = await work(tenant, lock)
            await self.db.commit()
            return result
        except Exception:
            await self.db.rollback()
            raise
        finally:
            await lock.release()

    # ----- Academic years -----

    async def create_year(self, payload: AcademicYearCreate, actor_id: UUID) -> AcademicYear:
        return await self._locked(
            actor_id,
            "academic_years.create",
            lambda tenant, _lock: year_service.create_draft(self.db, tenant, payload, actor_id),
        )

    async def activate_year(self, academic_year_id: UUID, actor_id: UUID) -> AcademicYear:
        return await self._locked(
            actor_id,
            "academic_years.update",
            lambda tenant, _lock: year_service.activate(self.db, tenant, academic_year_id, actor_id),
        )

    async def close_year(self, payload: YearClosureRequest, actor_id: UUID) -> YearClosureResponse:
        return await self._locked(
            actor_id,
            "academic_years.close",
            lambda tenant, _lock: closure.close_year(self.db, tenant, self.directory, payload, actor_id),
        )

    # ----- Promotion runs -----

    async def start_promotion_run(self, payload: PromotionRunCreate, actor_id: UUID) -> PromotionRunResponse:
        action = "promotions.commit" if payload.mode == RunMode.COMMIT else "promotions.run"
        return await self._locked(
            actor_id,
            action,
            lambda tenant, lock: promotion_service.start_run(
                self.db, tenant, lock, self.directory, self.exam_summary, payload, actor_id
            ),
        )

    async def rollback_run(self, run_id: UUID, actor_id: UUID) -> PromotionRunResponse:
        return await self._locked(
            actor_id,
            "promotions.update",
            lambda tenant, _lock: promotion_service.rollback_run(self.db, tenant, run_id, actor_id),
        )

    async def correct_decision(
        self,
        run_id: UUID,
        student_id: UUID,
        payload: DecisionCorrection,
        actor_id: UUID,
    ) -> DecisionResponse:
        return await self._locked(
            actor_id,
            "promotions.update",
            lambda tenant, _lock: promotion_service.correct_decision(
                self.db, tenant, run_id, student_id, payload, actor_id
            ),
        )

    # ----- Rules -----

    async def upsert_rule(self, payload: PromotionRuleUpsert, actor_id: UUID) -> PromotionRule:
        return await self._locked(
            actor_id,
            "promotions.manage_rules",
            lambda tenant, _lock: rule_service.upsert_rule(self.db, tenant, payload, actor_id),
        )

    async def deactivate_rule(self, rule_id: UUID, actor_id: UUID) -> PromotionRule:
        return await self._locked(
            actor_id,
            "promotions.manage_rules",
            lambda tenant, _lock: rule_service.deactivate_rule(self.db, tenant, rule_id, actor_id),
        )

    # ----- Reads (no lock) -----

    async def list_years(self, status_filter=None) -> List[AcademicYear]:
        return await year_service.list_years(self.db, self.tenant_id, status_filter=status_filter)

    async def get_run(self, run_id: UUID) -> PromotionRunResponse:
        return await promotion_service.get_run(self.db, self.tenant_id, run_id)


async def get_lifecycle_coordinator(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LifecycleCoordinator:
    return LifecycleCoordinator(
        db,
        current_user.tenant_id,
        directory=SqlStudentDirectory(db),
        exam_summary=SqlExamSummaryProvider(db),
        authorizer=RolePermissionAuthorizer(db, current_user.tenant_id),
    )
