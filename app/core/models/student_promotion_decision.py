"""
Per-student outcome of a promotion run. Immutable: corrections insert a new row with
revision + 1 and supersedes_id pointing at the row it replaces. The effective decision
for a student is the highest revision.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class StudentPromotionDecision(Base):
    __tablename__ = "student_promotion_decisions"
    __table_args__ = (
        UniqueConstraint("run_id", "student_id", "revision", name="uq_promotion_decision_run_student_rev"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False)
    run_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.promotion_runs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    student_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    from_year_id = Column(UUID(as_uuid=True), ForeignKey("core.academic_years.id"), nullable=False)
    to_year_id = Column(UUID(as_uuid=True), ForeignKey("core.academic_years.id"), nullable=False)
    from_class = Column(String(50), nullable=False)
    from_section = Column(String(50), nullable=True)
    to_class = Column(String(50), nullable=True)
    to_section = Column(String(50), nullable=True)
    decision = Column(String(20), nullable=False)  # DecisionType
    decided_by = Column(UUID(as_uuid=True), nullable=True)
    decided_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    override_reason = Column(Text, nullable=True)
    revision = Column(Integer, nullable=False, default=1)
    supersedes_id = Column(
        UUID(as_uuid=True),
        ForeignKey("school.student_promotion_decisions.id", ondelete="RESTRICT"),
        nullable=True,
    )

    run = relationship("PromotionRun", back_populates="decisions")


@event.listens_for(StudentPromotionDecision, "before_update")
def _reject_decision_update(mapper, connection, target) -> None:
    raise RuntimeError("promotion decisions are immutable; record a correction instead")


@event.listens_for(StudentPromotionDecision, "before_delete")
def _reject_decision_delete(mapper, connection, target) -> None:
    raise RuntimeError("promotion decisions are immutable; record a correction instead")
