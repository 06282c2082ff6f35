"""Slot generation on a 5-minute grain.

``generate_slots`` is pure: it takes the business rules and the current
occupancy and returns the same sequence for the same inputs. Capacity figures
can differ between calls because holds come and go; the sequence of start
times cannot.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.clock import as_utc_aware, to_utc_naive
from booking_core.core.exceptions import BusinessNotFound, InvalidBookingTime
from booking_core.models.appointment import ACTIVE_APPOINTMENT_STATUSES
from booking_core.models.availability import AvailabilityException, BusinessAvailability
from booking_core.models.business import Business
from booking_core.services import capacity

REASON_PAST = 'past'
REASON_TOO_SOON = 'too_soon'
REASON_FULLY_BOOKED = 'fully_booked'


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime
    available: bool
    capacity_remaining: int
    capacity_total: int
    capacity_percentage: int
    reason: str | None = None


def business_zone(business) -> ZoneInfo:
    return ZoneInfo(business.timezone or 'UTC')


def booking_horizon_days(business) -> int:
    configured = business.advance_booking_days
    if configured is None:
        configured = config.DEFAULT_ADVANCE_BOOKING_DAYS
    return max(0, min(configured, config.MAX_ADVANCE_BOOKING_DAYS))


def slot_step_minutes(business) -> int:
    step = business.time_slot_minutes or config.SLOT_GRAIN_MINUTES
    remainder = step % config.SLOT_GRAIN_MINUTES
    if remainder:
        step += config.SLOT_GRAIN_MINUTES - remainder
    return max(step, config.SLOT_GRAIN_MINUTES)


def is_grain_aligned(value: datetime) -> bool:
    return value.second == 0 and value.microsecond == 0 and value.minute % config.SLOT_GRAIN_MINUTES == 0


def align_to_grain(value: datetime) -> datetime:
    if is_grain_aligned(value):
        return value
    floored = value.replace(second=0, microsecond=0) - timedelta(minutes=value.minute % config.SLOT_GRAIN_MINUTES)
    return floored + timedelta(minutes=config.SLOT_GRAIN_MINUTES)


def resolve_day_hours(
    day: date,
    weekly_hours: dict[int, BusinessAvailability],
    exceptions: dict[date, AvailabilityException],
) -> tuple[time, time] | None:
    """Open and close time for ``day``, or None when the business is closed."""
    exception = exceptions.get(day)
    if exception is not None and exception.closed:
        return None

    if exception is not None and exception.open_time and exception.close_time:
        return exception.open_time, exception.close_time

    rule = weekly_hours.get(day.weekday())
    if rule is None or not rule.enabled:
        return None

    return rule.open_time, rule.close_time


def _local_to_utc(day: date, wall_time: time, zone: ZoneInfo) -> datetime:
    return to_utc_naive(datetime.combine(day, wall_time, tzinfo=zone))


def _overlap_count(intervals: Iterable[tuple[datetime, datetime]], start: datetime, end: datetime) -> int:
    return sum(1 for other_start, other_end in intervals if other_start < end and other_end > start)


def generate_slots(
    business,
    service,
    weekly_hours: dict[int, BusinessAvailability],
    exceptions: dict[date, AvailabilityException],
    start_date: date,
    end_date: date,
    reservations: Iterable,
    appointments: Iterable,
    now: datetime,
) -> list[Slot]:
    """Candidate slots for ``[start_date, end_date)`` in the business's calendar."""
    zone = business_zone(business)
    now = to_utc_naive(now)
    today = as_utc_aware(now).astimezone(zone).date()
    last_bookable_day = today + timedelta(days=booking_horizon_days(business))
    earliest_start = now + timedelta(minutes=business.min_advance_booking_minutes or 0)
    duration = timedelta(minutes=service.duration_minutes)
    buffer_before, buffer_after = capacity.service_buffers(service)
    step = timedelta(minutes=slot_step_minutes(business))
    capacity_total = service.max_simultaneous_bookings

    held = [
        (reservation.slot_start, reservation.slot_end)
        for reservation in reservations
        if reservation.expires_at > now
    ]
    booked = [
        (appointment.start_time, appointment.end_time)
        for appointment in appointments
        if appointment.status in ACTIVE_APPOINTMENT_STATUSES
    ]

    slots: list[Slot] = []
    current_day = start_date

    while current_day < end_date and current_day <= last_bookable_day:
        hours = resolve_day_hours(current_day, weekly_hours, exceptions)
        if hours is None:
            current_day += timedelta(days=1)
            continue

        open_time, close_time = hours
        day_open = align_to_grain(_local_to_utc(current_day, open_time, zone) + buffer_before)
        day_close = _local_to_utc(current_day, close_time, zone)
        slot_start = day_open

        while slot_start + duration + buffer_after <= day_close:
            slot_end = slot_start + duration
            occupied_start, occupied_end = capacity.occupancy_window(service, slot_start, slot_end)
            used = _overlap_count(held, occupied_start, occupied_end) + _overlap_count(booked, occupied_start, occupied_end)
            remaining = max(capacity_total - used, 0)
            percentage = round((capacity_total - remaining) / capacity_total * 100) if capacity_total > 0 else 0

            if slot_start <= now:
                reason = REASON_PAST
            elif slot_start <= earliest_start:
                reason = REASON_TOO_SOON
            elif remaining == 0:
                reason = REASON_FULLY_BOOKED
            else:
                reason = None

            slots.append(
                Slot(
                    start=slot_start,
                    end=slot_end,
                    available=reason is None,
                    capacity_remaining=remaining,
                    capacity_total=capacity_total,
                    capacity_percentage=percentage,
                    reason=reason,
                )
            )
            slot_start += step

        current_day += timedelta(days=1)

    return slots


def validate_booking_time(
    business,
    weekly_hours: dict[int, BusinessAvailability],
    exceptions: dict[date, AvailabilityException],
    slot_start: datetime,
    slot_end: datetime,
    now: datetime,
    skip_advance_limit: bool = False,
    service=None,
) -> None:
    """Reject a window that the slot generator would never have offered.

    With a ``service`` the check covers its buffers too: setup and cleanup
    time must fall inside open hours along with the appointment itself.
    """
    slot_start = to_utc_naive(slot_start)
    slot_end = to_utc_naive(slot_end)
    now = to_utc_naive(now)

    if slot_end <= slot_start:
        raise InvalidBookingTime('Slot end must be after slot start.')

    if not is_grain_aligned(slot_start) or not is_grain_aligned(slot_end):
        raise InvalidBookingTime(f'Times must be on {config.SLOT_GRAIN_MINUTES}-minute boundaries.')

    if slot_start <= now:
        raise InvalidBookingTime('Cannot book a time in the past.')

    zone = business_zone(business)
    local_start = as_utc_aware(slot_start).astimezone(zone)
    local_end = as_utc_aware(slot_end).astimezone(zone)
    slot_day = local_start.date()

    if not skip_advance_limit:
        today = as_utc_aware(now).astimezone(zone).date()
        if slot_day > today + timedelta(days=booking_horizon_days(business)):
            raise InvalidBookingTime('Requested time is beyond the advance booking window.')

    hours = resolve_day_hours(slot_day, weekly_hours, exceptions)
    if hours is None:
        raise InvalidBookingTime('The business is closed on the requested date.')

    open_time, close_time = hours
    day_open = datetime.combine(slot_day, open_time, tzinfo=zone)
    day_close = datetime.combine(slot_day, close_time, tzinfo=zone)
    if service is not None:
        local_start, local_end = capacity.buffered_window(service, local_start, local_end)
    if local_start < day_open or local_end > day_close:
        raise InvalidBookingTime('Requested time is outside business hours.')


def load_schedule(
    db: Session,
    business_id: str,
) -> tuple[dict[int, BusinessAvailability], dict[date, AvailabilityException]]:
    weekly_rows = db.query(BusinessAvailability).filter(
        BusinessAvailability.business_id == business_id,
    ).all()
    exception_rows = db.query(AvailabilityException).filter(
        AvailabilityException.business_id == business_id,
    ).all()

    return (
        {row.weekday: row for row in weekly_rows},
        {row.date: row for row in exception_rows},
    )


def get_business(db: Session, business_id: str) -> Business:
    business = db.query(Business).filter(Business.id == business_id).first()
    if business is None:
        raise BusinessNotFound()
    return business


def validate_window_for_service(
    db: Session,
    business_id: str,
    slot_start: datetime,
    slot_end: datetime,
    now: datetime,
    skip_advance_limit: bool = False,
    service=None,
) -> None:
    business = get_business(db, business_id)
    weekly_hours, exceptions = load_schedule(db, business_id)
    validate_booking_time(
        business,
        weekly_hours,
        exceptions,
        slot_start,
        slot_end,
        now,
        skip_advance_limit=skip_advance_limit,
        service=service,
    )


def get_available_slots(
    db: Session,
    business_id: str,
    service_id: str,
    start_date: date,
    end_date: date,
    now: datetime,
) -> list[Slot]:
    service = capacity.get_service(db, business_id, service_id)
    business = get_business(db, business_id)
    weekly_hours, exceptions = load_schedule(db, business_id)

    zone = business_zone(business)
    padding = sum(capacity.service_buffers(service), timedelta())
    range_start = _local_to_utc(start_date, time.min, zone) - padding
    range_end = _local_to_utc(end_date, time.min, zone) + padding
    reservations, appointments = capacity.list_occupancy(
        db, business_id, service_id, range_start, range_end, to_utc_naive(now)
    )

    return generate_slots(
        business,
        service,
        weekly_hours,
        exceptions,
        start_date,
        end_date,
        reservations,
        appointments,
        now,
    )
