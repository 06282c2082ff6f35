"""Appointment model definitions."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from booking_core.core.clock import utcnow
from booking_core.database import Base

STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no_show"

APPOINTMENT_STATUSES = (STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)

# Statuses that hold capacity in the ledger.
ACTIVE_APPOINTMENT_STATUSES = (STATUS_CONFIRMED,)


class Appointment(Base):
    """Represents a confirmed booking.

    Rows are never deleted; cancellation is a status change. Every mutation
    bumps ``version`` so stale writers can be detected.
    """
    __tablename__ = "appointments"
    __table_args__ = (CheckConstraint("end_time > start_time", name="ck_appointments_time_order"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_id = Column(String, nullable=False, unique=True)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    customer_id = Column(String, nullable=True)
    guest_email = Column(String, nullable=True)
    guest_phone = Column(String, nullable=True)
    guest_name = Column(String, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=STATUS_CONFIRMED)
    notes = Column(String, nullable=True)
    idempotency_key = Column(String, nullable=False, unique=True)
    cancellation_token = Column(String, nullable=True, unique=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    cancelled_at = Column(DateTime, nullable=True)

    def to_snapshot(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "business_id": self.business_id,
            "service_id": self.service_id,
            "customer_id": self.customer_id,
            "guest_email": self.guest_email,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "notes": self.notes,
            "version": self.version,
        }
