from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.academic_years.lifecycle import LifecycleCoordinator, get_lifecycle_coordinator
from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import (
    DecisionCorrection,
    DecisionResponse,
    PromotionRuleResponse,
    PromotionRuleUpsert,
    PromotionRunCreate,
    PromotionRunResponse,
)
from . import rules, service

router = APIRouter(prefix="/api/v1/promotions", tags=["promotions"])


@router.post(
    "/runs",
    response_model=PromotionRunResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_promotion_run(
    payload: PromotionRunCreate,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionRunResponse:
    """Start a dry run (preview, nothing persisted but the run header) or a commit run.
    409 while another lifecycle operation holds the school; retry with backoff."""
    try:
        return await coordinator.start_promotion_run(payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/runs/{run_id}",
    response_model=PromotionRunResponse,
    dependencies=[Depends(check_permission("promotions", "read"))],
)
async def get_promotion_run(
    run_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionRunResponse:
    try:
        return await service.get_run(db, current_user.tenant_id, run_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/runs/{run_id}/rollback",
    response_model=PromotionRunResponse,
)
async def rollback_promotion_run(
    run_id: UUID,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionRunResponse:
    """Undo a committed run before the year is closed. The source year returns to active."""
    try:
        return await coordinator.rollback_run(run_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post(
    "/runs/{run_id}/decisions/{student_id}/correct",
    response_model=DecisionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def correct_promotion_decision(
    run_id: UUID,
    student_id: UUID,
    payload: DecisionCorrection,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> DecisionResponse:
    """Record a corrected decision. The original row is kept; the new one supersedes it."""
    try:
        return await coordinator.correct_decision(run_id, student_id, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/rules",
    response_model=List[PromotionRuleResponse],
    dependencies=[Depends(check_permission("promotions", "read"))],
)
async def list_promotion_rules(
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PromotionRuleResponse]:
    items = await rules.list_rules(db, current_user.tenant_id, include_inactive=include_inactive)
    return [PromotionRuleResponse.model_validate(r) for r in items]


@router.put(
    "/rules",
    response_model=PromotionRuleResponse,
)
async def upsert_promotion_rule(
    payload: PromotionRuleUpsert,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionRuleResponse:
    """Create or replace the rule for a class (or class + section). Runs already started keep their snapshot."""
    try:
        rule = await coordinator.upsert_rule(payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return PromotionRuleResponse.model_validate(rule)


@router.delete(
    "/rules/{rule_id}",
    response_model=PromotionRuleResponse,
)
async def deactivate_promotion_rule(
    rule_id: UUID,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> PromotionRuleResponse:
    try:
        rule = await coordinator.deactivate_rule(rule_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return PromotionRuleResponse.model_validate(rule)
