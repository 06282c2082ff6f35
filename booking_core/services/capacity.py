"""Capacity ledger.

Capacity is never stored. It is derived from row counts inside the same
transaction that writes, so it stays correct across any number of server
processes. Writers call ``lock_service`` first; that row lock is what
serializes two callers racing for the last unit of a service.
"""

from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.exceptions import ServiceNotFound
from booking_core.models.appointment import ACTIVE_APPOINTMENT_STATUSES, Appointment
from booking_core.models.business import Service
from booking_core.models.reservation import Reservation


def _round_up_to_grain(minutes: int | None) -> int:
    minutes = max(minutes or 0, 0)
    remainder = minutes % config.SLOT_GRAIN_MINUTES
    if remainder:
        minutes += config.SLOT_GRAIN_MINUTES - remainder
    return minutes


def service_buffers(service) -> tuple[timedelta, timedelta]:
    """Setup and turnaround time around each booking, snapped up to the slot grain."""
    return (
        timedelta(minutes=_round_up_to_grain(service.buffer_before_minutes)),
        timedelta(minutes=_round_up_to_grain(service.buffer_after_minutes)),
    )


def buffered_window(service, window_start: datetime, window_end: datetime) -> tuple[datetime, datetime]:
    """The span a booking blocks: the service window widened by its buffers."""
    before, after = service_buffers(service)
    return window_start - before, window_end + after


def occupancy_window(service, window_start: datetime, window_end: datetime) -> tuple[datetime, datetime]:
    """Window to count stored bookings against.

    Rows store the bare service window. Two bookings of the same service clash
    when their buffered spans overlap, which is the same as the bare row
    overlapping the candidate widened by both buffers on each side.
    """
    before, after = service_buffers(service)
    padding = before + after
    return window_start - padding, window_end + padding


def get_service(db: Session, business_id: str, service_id: str) -> Service:
    service = db.query(Service).filter(
        Service.id == service_id,
        Service.business_id == business_id,
    ).first()

    if service is None or not service.enabled:
        raise ServiceNotFound()

    return service


def lock_service(db: Session, business_id: str, service_id: str) -> Service:
    service = db.query(Service).filter(
        Service.id == service_id,
        Service.business_id == business_id,
    ).with_for_update().first()

    if service is None or not service.enabled:
        raise ServiceNotFound()

    return service


def active_reservations_query(
    db: Session,
    business_id: str,
    service_id: str,
    window_start: datetime,
    window_end: datetime,
    now: datetime,
):
    return db.query(Reservation).filter(
        Reservation.business_id == business_id,
        Reservation.service_id == service_id,
        Reservation.expires_at > now,
        Reservation.slot_start < window_end,
        Reservation.slot_end > window_start,
    )


def active_appointments_query(
    db: Session,
    business_id: str,
    service_id: str,
    window_start: datetime,
    window_end: datetime,
    exclude_appointment_id: str | None = None,
):
    query = db.query(Appointment).filter(
        Appointment.business_id == business_id,
        Appointment.service_id == service_id,
        Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES),
        Appointment.start_time < window_end,
        Appointment.end_time > window_start,
    )

    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return query


def occupied_capacity(
    db: Session,
    business_id: str,
    service_id: str,
    window_start: datetime,
    window_end: datetime,
    now: datetime,
    exclude_appointment_id: str | None = None,
) -> int:
    reservation_count = active_reservations_query(
        db, business_id, service_id, window_start, window_end, now
    ).count()
    appointment_count = active_appointments_query(
        db, business_id, service_id, window_start, window_end, exclude_appointment_id
    ).count()

    return reservation_count + appointment_count


def remaining_capacity(
    db: Session,
    business_id: str,
    service_id: str,
    window_start: datetime,
    window_end: datetime,
    now: datetime,
    exclude_appointment_id: str | None = None,
    service: Service | None = None,
) -> int:
    """Units of the service still free for a booking of ``[window_start, window_end)``.

    Reservations count only while ``expires_at > now``. Pass the same ``now``
    used by the rest of the calling operation so a hold expiring mid-request
    is treated consistently as inactive. The service's buffers are applied,
    so pass the bare service window.
    """
    if service is None:
        service = get_service(db, business_id, service_id)

    occupied_start, occupied_end = occupancy_window(service, window_start, window_end)
    used = occupied_capacity(
        db,
        business_id,
        service_id,
        occupied_start,
        occupied_end,
        now,
        exclude_appointment_id=exclude_appointment_id,
    )

    return max(service.max_simultaneous_bookings - used, 0)


def list_occupancy(
    db: Session,
    business_id: str,
    service_id: str,
    range_start: datetime,
    range_end: datetime,
    now: datetime,
) -> tuple[list[Reservation], list[Appointment]]:
    reservations = active_reservations_query(
        db, business_id, service_id, range_start, range_end, now
    ).order_by(Reservation.slot_start.asc()).all()
    appointments = active_appointments_query(
        db, business_id, service_id, range_start, range_end
    ).order_by(Appointment.start_time.asc()).all()

    return reservations, appointments
