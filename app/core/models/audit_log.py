"""
Append-only audit log for academic year lifecycle and promotion decisions.
Rows are inserted only; the mapper rejects UPDATE and DELETE.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String, event
from sqlalchemy.dialects.postgresql import UUID

from app.db.session import Base


class AuditLogEntry(Base):
    __tablename__ = "audit_log"
    __table_args__ = {"schema": "school"}

    # Monotonic id breaks created_at ties in insertion order.
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("core.tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    school_code = Column(String(20), nullable=False, index=True)
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False, index=True)
    before_state = Column(JSON, nullable=True)
    after_state = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)


@event.listens_for(AuditLogEntry, "before_update")
def _reject_audit_update(mapper, connection, target) -> None:
    raise RuntimeError("audit_log is append-only; updates are not allowed")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target) -> None:
    raise RuntimeError("audit_log is append-only; deletes are not allowed")
