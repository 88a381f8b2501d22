import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PromotionRule(Base):
    """
    Per-school promotion rule for a class (optionally a single section).
    from_section NULL matches every section of from_class; to_class NULL means the next class in the ladder.
    version is bumped on every edit. Runs snapshot the active rules at start.
    """

    __tablename__ = "promotion_rules"
    __table_args__ = (
        UniqueConstraint("tenant_id", "from_class", "from_section", name="uq_promotion_rule_class_section"),
        {"schema": "school"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    from_class = Column(String(50), nullable=False)
    from_section = Column(String(50), nullable=True)
    to_class = Column(String(50), nullable=True)
    criteria = Column(String(20), nullable=False, default="promote_all")  # PromotionCriteria
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
