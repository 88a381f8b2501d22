from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user
from app.auth.rbac import check_permission
from app.auth.schemas import CurrentUser
from app.core.exceptions import ServiceError
from app.db.session import get_db

from .schemas import AuditLogEntryResponse, AuditLogFilters
from . import service

router = APIRouter(prefix="/api/v1/audit-logs", tags=["audit-logs"])


@router.get(
    "",
    response_model=List[AuditLogEntryResponse],
    dependencies=[Depends(check_permission("audit_logs", "read"))],
)
async def list_audit_logs(
    filters: AuditLogFilters = Depends(),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[AuditLogEntryResponse]:
    """Academic year lifecycle audit trail for the current school, newest first."""
    try:
        return await service.query_audit(db, current_user.tenant_id, filters, limit=limit, offset=offset)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
