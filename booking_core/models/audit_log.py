"""Audit trail model definitions."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String

from booking_core.core.clock import utcnow
from booking_core.database import Base


class AuditLog(Base):
    """Append-only record of a change to an appointment."""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    actor_id = Column(String, nullable=True)
    action = Column(String, nullable=False)
    old_state = Column(JSON, nullable=True)
    new_state = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
