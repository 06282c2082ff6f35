"""Outbox rows for the notification sender."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String

from booking_core.core.clock import utcnow
from booking_core.database import Base

EVENT_APPOINTMENT_CREATED = "appointment.created"
EVENT_APPOINTMENT_UPDATED = "appointment.updated"
EVENT_APPOINTMENT_CANCELLED = "appointment.cancelled"


class NotificationEvent(Base):
    """A notification that should be sent; delivery happens elsewhere."""
    __tablename__ = "notification_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=utcnow)
