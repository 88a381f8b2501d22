"""One atomic attempt to decide every student's fate from a source year into a target year."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.session import Base


class PromotionRun(Base):
    __tablename__ = "promotion_runs"
    __table_args__ = {"schema": "school"}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    source_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.academic_years.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    target_year_id = Column(
        UUID(as_uuid=True),
        ForeignKey("core.academic_years.id", ondelete="RESTRICT"),
        nullable=False,
    )
    mode = Column(String(20), nullable=False)  # RunMode
    status = Column(String(20), nullable=False, default="in_progress")  # RunStatus
    started_by = Column(UUID(as_uuid=True), ForeignKey("auth.users.id", ondelete="SET NULL"), nullable=True)
    started_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    total_students = Column(Integer, nullable=False, default=0)
    counts_by_decision = Column(JSON, nullable=False, default=dict)
    # Rules and class ladder as they were when the run started.
    rules_snapshot = Column(JSON, nullable=True)
    error_detail = Column(Text, nullable=True)

    decisions = relationship("StudentPromotionDecision", back_populates="run")
