"""
Per-school exclusive lock for academic year lifecycle writes. One row per tenant.
Acquired by a conditional UPDATE (holder empty or lease expired), so it holds across workers and instances.
"""

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class LifecycleLock(Base):
    __tablename__ = "lifecycle_locks"
    __table_args__ = {"schema": "core"}

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), primary_key=True)
    holder_token = Column(String(64), nullable=True)
    operation = Column(String(50), nullable=True)
    acquired_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
