from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.core.enums import DecisionType, PromotionCriteria, RunMode, RunStatus


# ----- Rules -----
class PromotionRuleUpsert(BaseModel):
    """Create or replace the rule for (from_class, from_section). Omit from_section for a class-wide rule."""

    from_class: str = Field(..., min_length=1, max_length=50)
    from_section: Optional[str] = Field(None, max_length=50)
    to_class: Optional[str] = Field(None, max_length=50, description="Omit to promote into the next class of the ladder")
    criteria: PromotionCriteria = PromotionCriteria.PROMOTE_ALL


class PromotionRuleResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    from_class: str
    from_section: Optional[str] = None
    to_class: Optional[str] = None
    criteria: PromotionCriteria
    version: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# ----- Runs -----
class DecisionOverride(BaseModel):
    """Manual decision for one student. Always wins over the rules and is recorded with its reason."""

    student_id: UUID
    decision: DecisionType
    to_class: Optional[str] = Field(None, max_length=50)
    to_section: Optional[str] = Field(None, max_length=50)
    reason: str = Field(..., min_length=1, max_length=2000)


class PromotionRunCreate(BaseModel):
    source_year_id: UUID
    target_year_id: UUID
    mode: RunMode = RunMode.DRY_RUN
    overrides: List[DecisionOverride] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_years(self) -> "PromotionRunCreate":
        if self.source_year_id == self.target_year_id:
            raise ValueError("source_year_id and target_year_id must differ")
        return self


class DecisionResponse(BaseModel):
    id: Optional[UUID] = None  # None for dry-run decisions (never persisted)
    run_id: UUID
    student_id: UUID
    from_year_id: UUID
    to_year_id: UUID
    from_class: str
    from_section: Optional[str] = None
    to_class: Optional[str] = None
    to_section: Optional[str] = None
    decision: DecisionType
    decided_by: Optional[UUID] = None
    decided_at: datetime
    override_reason: Optional[str] = None
    revision: int = 1
    supersedes_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class PromotionRunResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    source_year_id: UUID
    target_year_id: UUID
    mode: RunMode
    status: RunStatus
    started_by: Optional[UUID] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_students: int
    counts_by_decision: Dict[str, int]
    error_detail: Optional[str] = None
    decisions: List[DecisionResponse] = Field(default_factory=list)
    review_required: List[UUID] = Field(
        default_factory=list,
        description="Students decided as excluded; they need a manual override or correction.",
    )


class DecisionCorrection(BaseModel):
    decision: DecisionType
    to_class: Optional[str] = Field(None, max_length=50)
    to_section: Optional[str] = Field(None, max_length=50)
    reason: str = Field(..., min_length=1, max_length=2000)
