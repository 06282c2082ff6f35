"""Reservation model definitions."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, String

from booking_core.core.clock import utcnow
from booking_core.database import Base


class Reservation(Base):
    """A time-boxed hold on one unit of a service's capacity.

    A reservation stops counting against capacity once ``expires_at`` has
    passed, whether or not the reaper has deleted it yet.
    """
    __tablename__ = "reservations"
    __table_args__ = (CheckConstraint("slot_end > slot_start", name="ck_reservations_time_order"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False)
    service_id = Column(String(36), ForeignKey("services.id"), nullable=False)
    slot_start = Column(DateTime, nullable=False)
    slot_end = Column(DateTime, nullable=False)
    idempotency_key = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)

    def is_expired(self, now) -> bool:
        return self.expires_at <= now
