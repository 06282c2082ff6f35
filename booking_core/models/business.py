"""Business and service model definitions."""

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from booking_core.core import config
from booking_core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Business(Base):
    """A business that takes bookings, with its booking window rules."""
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    advance_booking_days = Column(Integer, nullable=False, default=config.DEFAULT_ADVANCE_BOOKING_DAYS)
    min_advance_booking_minutes = Column(Integer, nullable=False, default=0)
    time_slot_minutes = Column(Integer, nullable=False, default=config.SLOT_GRAIN_MINUTES)


class Service(Base):
    """A bookable service. Capacity applies to any overlapping time window.

    Buffers are setup and turnaround minutes that a booking blocks on either
    side of the service itself.
    """
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=_new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    buffer_before_minutes = Column(Integer, nullable=False, default=0)
    buffer_after_minutes = Column(Integer, nullable=False, default=0)
    max_simultaneous_bookings = Column(Integer, nullable=False, default=1)
    enabled = Column(Boolean, nullable=False, default=True)
