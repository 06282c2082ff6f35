"""Business hours model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, String, Time, UniqueConstraint

from booking_core.database import Base


class BusinessAvailability(Base):
    """Opening hours for one weekday (0 = Monday)."""
    __tablename__ = "business_availability"
    __table_args__ = (UniqueConstraint("business_id", "weekday", name="uq_business_availability_weekday"),)

    id = Column(Integer, primary_key=True)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)


class AvailabilityException(Base):
    """A calendar date that is closed or has special hours."""
    __tablename__ = "availability_exceptions"
    __table_args__ = (UniqueConstraint("business_id", "date", name="uq_availability_exception_date"),)

    id = Column(Integer, primary_key=True)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    closed = Column(Boolean, nullable=False, default=True)
    open_time = Column(Time, nullable=True)
    close_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)
