from datetime import datetime
from typing import Any, Dict, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AuditLogFilters(BaseModel):
    """Optional filters for the audit log query. All are ANDed."""

    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    actor_id: Optional[UUID] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    before_id: Optional[int] = Field(
        None,
        description="Only entries with id < before_id. Use the last id of a page for paging stable under new writes.",
    )
    order: Literal["desc", "asc"] = "desc"


class AuditLogEntryResponse(BaseModel):
    id: int
    tenant_id: UUID
    school_code: str
    actor_id: Optional[UUID] = None
    action: str
    entity_type: str
    entity_id: str
    before: Optional[Dict[str, Any]] = None
    after: Dict[str, Any]
    created_at: datetime
