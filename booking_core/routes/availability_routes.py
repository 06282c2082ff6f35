from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.clock import Clock, as_utc_aware, to_utc_naive
from booking_core.core.exceptions import BookingError
from booking_core.routes.dependencies import (
    booking_http_error,
    database_unavailable,
    ensure_database_ready,
    get_clock,
    get_db,
)
from booking_core.services import availability, capacity

router = APIRouter(tags=['availability'])

DEFAULT_RANGE_DAYS = 7


class SlotResponse(BaseModel):
    start: datetime
    end: datetime
    available: bool
    capacity_remaining: int
    capacity_total: int
    capacity_percentage: int
    reason: str | None = None

    @classmethod
    def from_slot(cls, slot: availability.Slot) -> 'SlotResponse':
        return cls(
            start=as_utc_aware(slot.start),
            end=as_utc_aware(slot.end),
            available=slot.available,
            capacity_remaining=slot.capacity_remaining,
            capacity_total=slot.capacity_total,
            capacity_percentage=slot.capacity_percentage,
            reason=slot.reason,
        )


class CapacityResponse(BaseModel):
    business_id: str
    service_id: str
    slot_start: datetime
    slot_end: datetime
    capacity_remaining: int
    capacity_total: int


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    business_id: str = Query(..., min_length=1),
    service_id: str = Query(..., min_length=1),
    start_date: date = Query(...),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    range_end = end_date or start_date + timedelta(days=DEFAULT_RANGE_DAYS)
    if range_end <= start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='end_date must be after start_date.',
        )
    if range_end - start_date > timedelta(days=config.MAX_ADVANCE_BOOKING_DAYS + 1):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Date range cannot exceed {config.MAX_ADVANCE_BOOKING_DAYS} days.',
        )

    ensure_database_ready()

    try:
        slots = availability.get_available_slots(db, business_id, service_id, start_date, range_end, clock())
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [SlotResponse.from_slot(slot) for slot in slots]


@router.get('/capacity', response_model=CapacityResponse)
def get_capacity(
    business_id: str = Query(..., min_length=1),
    service_id: str = Query(..., min_length=1),
    slot_start: datetime = Query(...),
    slot_end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        service = capacity.get_service(db, business_id, service_id)
        window_start = to_utc_naive(slot_start)
        window_end = to_utc_naive(slot_end) if slot_end else window_start + timedelta(minutes=service.duration_minutes)
        if window_end <= window_start:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='slot_end must be after slot_start.',
            )

        remaining = capacity.remaining_capacity(
            db,
            business_id,
            service_id,
            window_start,
            window_end,
            clock(),
            service=service,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return CapacityResponse(
        business_id=business_id,
        service_id=service_id,
        slot_start=as_utc_aware(window_start),
        slot_end=as_utc_aware(window_end),
        capacity_remaining=remaining,
        capacity_total=service.max_simultaneous_bookings,
    )
