from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.enums import YearStatus


class AcademicYearCreate(BaseModel):
    """Set up a new academic year as a draft. name must be unique per tenant."""

    name: str = Field(..., min_length=1, max_length=50, description="e.g. 2025-2026")
    start_date: date = Field(..., description="Academic year start date")
    end_date: date = Field(..., description="Academic year end date (must be after start_date)")


class AcademicYearResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    start_date: date
    end_date: date
    status: YearStatus
    previous_year_id: Optional[UUID] = None
    admissions_allowed: bool
    created_at: datetime
    updated_at: datetime
    activated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[UUID] = None

    class Config:
        from_attributes = True


class YearClosureRequest(BaseModel):
    """Close source_year_id and activate target_year_id as one unit."""

    source_year_id: UUID
    target_year_id: UUID
    confirm_label: Optional[str] = Field(
        None,
        description="When given, must equal the source year's name (typed confirmation).",
    )


class YearClosureResponse(BaseModel):
    closed_year: AcademicYearResponse
    active_year: AcademicYearResponse
    enrollments_created: int
    records_archived: int
