from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.enums import YearStatus
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .lifecycle import LifecycleCoordinator, get_lifecycle_coordinator
from .schemas import AcademicYearCreate, AcademicYearResponse, YearClosureRequest, YearClosureResponse
from . import service

router = APIRouter(prefix="/api/v1/academic-years", tags=["academic-years"])


@router.post(
    "",
    response_model=AcademicYearResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_academic_year(
    payload: AcademicYearCreate,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    """Create the next academic year as a draft. Only one draft may exist per school."""
    try:
        created = await coordinator.create_year(payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return service.to_response(created)


@router.get(
    "",
    response_model=List[AcademicYearResponse],
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def list_academic_years(
    status_filter: Optional[YearStatus] = Query(None, description="Filter by status: draft, active, promoting, closing, closed"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[AcademicYearResponse]:
    """List academic years for the current tenant, newest first."""
    years = await service.list_years(db, current_user.tenant_id, status_filter=status_filter)
    return [service.to_response(ay) for ay in years]


@router.get(
    "/current",
    response_model=Optional[AcademicYearResponse],
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def get_current_academic_year(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> Optional[AcademicYearResponse]:
    """The school's active academic year, or null between closure and activation."""
    ay = await service.get_active_year(db, current_user.tenant_id)
    return service.to_response(ay) if ay else None


@router.post(
    "/close",
    response_model=YearClosureResponse,
)
async def close_academic_year(
    payload: YearClosureRequest,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> YearClosureResponse:
    """Close source year and activate target year. Irreversible; requires a committed promotion run."""
    try:
        return await coordinator.close_year(payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get(
    "/{academic_year_id}",
    response_model=AcademicYearResponse,
    dependencies=[Depends(check_permission("academic_years", "read"))],
)
async def get_academic_year(
    academic_year_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    try:
        ay = await service.get_year_or_404(db, current_user.tenant_id, academic_year_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return service.to_response(ay)


@router.post(
    "/{academic_year_id}/activate",
    response_model=AcademicYearResponse,
)
async def activate_academic_year(
    academic_year_id: UUID,
    coordinator: LifecycleCoordinator = Depends(get_lifecycle_coordinator),
    current_user: CurrentUser = Depends(get_current_user),
) -> AcademicYearResponse:
    """draft -> active. Fails while another year is active; closure activates the next year itself."""
    try:
        ay = await coordinator.activate_year(academic_year_id, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return service.to_response(ay)
