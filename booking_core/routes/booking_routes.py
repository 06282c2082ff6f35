import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.clock import Clock, as_utc_aware
from booking_core.core.exceptions import AppointmentNotFound, BookingError
from booking_core.models.appointment import Appointment
from booking_core.models.reservation import Reservation
from booking_core.routes.dependencies import (
    booking_http_error,
    database_unavailable,
    ensure_database_ready,
    get_clock,
    get_db,
)
from booking_core.services import capacity
from booking_core.services.appointments import AppointmentManager
from booking_core.services.reservations import ReservationManager

router = APIRouter(tags=['booking'])

logger = logging.getLogger(__name__)


def _normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if not normalized:
        return None
    if '@' not in normalized:
        raise ValueError('A valid email address is required.')
    return normalized


def _normalize_optional_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CreateReservationRequest(BaseModel):
    business_id: str
    service_id: str
    slot_start: datetime
    slot_end: datetime | None = None
    idempotency_key: str
    ttl_minutes: int = config.RESERVATION_TTL_MINUTES

    @field_validator('idempotency_key')
    @classmethod
    def validate_idempotency_key(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Idempotency key is required.')
        return normalized

    @field_validator('ttl_minutes')
    @classmethod
    def validate_ttl_minutes(cls, value: int) -> int:
        if not config.RESERVATION_TTL_MIN_MINUTES <= value <= config.RESERVATION_TTL_MAX_MINUTES:
            raise ValueError(
                f'ttl_minutes must be between {config.RESERVATION_TTL_MIN_MINUTES} '
                f'and {config.RESERVATION_TTL_MAX_MINUTES}.'
            )
        return value


class ReservationResponse(BaseModel):
    id: str
    business_id: str
    service_id: str
    slot_start: datetime
    slot_end: datetime
    expires_at: datetime

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> 'ReservationResponse':
        return cls(
            id=reservation.id,
            business_id=reservation.business_id,
            service_id=reservation.service_id,
            slot_start=as_utc_aware(reservation.slot_start),
            slot_end=as_utc_aware(reservation.slot_end),
            expires_at=as_utc_aware(reservation.expires_at),
        )


class ExtendReservationRequest(BaseModel):
    additional_minutes: int

    @field_validator('additional_minutes')
    @classmethod
    def validate_additional_minutes(cls, value: int) -> int:
        if not 1 <= value <= config.RESERVATION_TTL_MAX_MINUTES:
            raise ValueError(f'additional_minutes must be between 1 and {config.RESERVATION_TTL_MAX_MINUTES}.')
        return value


class CommitReservationRequest(BaseModel):
    reservation_id: str
    customer_id: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    guest_name: str | None = None

    @field_validator('guest_email')
    @classmethod
    def validate_guest_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)

    @field_validator('guest_phone', 'guest_name', 'customer_id')
    @classmethod
    def strip_optional_text(cls, value: str | None) -> str | None:
        return _normalize_optional_text(value)

    @model_validator(mode='after')
    def require_contact(self) -> 'CommitReservationRequest':
        if not self.customer_id and not self.guest_email:
            raise ValueError('Either customer_id or guest_email must be provided.')
        return self


class BookedAppointmentResponse(BaseModel):
    id: str
    booking_id: str
    business_id: str
    service_id: str
    start_time: datetime
    end_time: datetime
    status: str
    version: int
    cancellation_token: str | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> 'BookedAppointmentResponse':
        return cls(
            id=appointment.id,
            booking_id=appointment.booking_id,
            business_id=appointment.business_id,
            service_id=appointment.service_id,
            start_time=as_utc_aware(appointment.start_time),
            end_time=as_utc_aware(appointment.end_time),
            status=appointment.status,
            version=appointment.version,
            cancellation_token=appointment.cancellation_token,
        )


class GuestAppointmentResponse(BaseModel):
    booking_id: str
    service_id: str
    start_time: datetime
    end_time: datetime
    status: str
    version: int
    guest_name: str | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> 'GuestAppointmentResponse':
        return cls(
            booking_id=appointment.booking_id,
            service_id=appointment.service_id,
            start_time=as_utc_aware(appointment.start_time),
            end_time=as_utc_aware(appointment.end_time),
            status=appointment.status,
            version=appointment.version,
            guest_name=appointment.guest_name,
        )


class GuestRescheduleRequest(BaseModel):
    new_start_time: datetime
    expected_version: int

    @field_validator('expected_version')
    @classmethod
    def validate_expected_version(cls, value: int) -> int:
        if value < 1:
            raise ValueError('expected_version must be a positive integer.')
        return value


@router.post('/reserve', response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: CreateReservationRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        slot_end = data.slot_end
        if slot_end is None:
            service = capacity.get_service(db, data.business_id, data.service_id)
            slot_end = data.slot_start + timedelta(minutes=service.duration_minutes)

        reservation = ReservationManager(db, clock=clock).create_reservation(
            business_id=data.business_id,
            service_id=data.service_id,
            slot_start=data.slot_start,
            slot_end=slot_end,
            idempotency_key=data.idempotency_key,
            ttl_minutes=data.ttl_minutes,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Reservation failed for service %s', data.service_id)
        raise database_unavailable() from exc

    return ReservationResponse.from_reservation(reservation)


@router.get('/reservations/{reservation_id}', response_model=ReservationResponse)
def get_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        reservation = ReservationManager(db, clock=clock).validate_reservation(reservation_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return ReservationResponse.from_reservation(reservation)


@router.post('/reservations/{reservation_id}/extend', response_model=ReservationResponse)
def extend_reservation(
    reservation_id: str,
    data: ExtendReservationRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        reservation = ReservationManager(db, clock=clock).extend_reservation(
            reservation_id,
            data.additional_minutes,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return ReservationResponse.from_reservation(reservation)


@router.delete('/reservations/{reservation_id}', status_code=status.HTTP_204_NO_CONTENT)
def release_reservation(
    reservation_id: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        ReservationManager(db, clock=clock).release_reservation(reservation_id)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/commit', response_model=BookedAppointmentResponse, status_code=status.HTTP_201_CREATED)
def commit_reservation(
    data: CommitReservationRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        appointment = AppointmentManager(db, clock=clock).commit_reservation(
            reservation_id=data.reservation_id,
            guest_email=data.guest_email,
            guest_phone=data.guest_phone,
            guest_name=data.guest_name,
            customer_id=data.customer_id,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Commit failed for reservation %s', data.reservation_id)
        raise database_unavailable() from exc

    return BookedAppointmentResponse.from_appointment(appointment)


@router.get('/guest-appointment/{cancellation_token}', response_model=GuestAppointmentResponse)
def get_guest_appointment(
    cancellation_token: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        appointment = AppointmentManager(db, clock=clock).get_by_cancellation_token(cancellation_token)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if appointment is None:
        raise booking_http_error(AppointmentNotFound())

    return GuestAppointmentResponse.from_appointment(appointment)


@router.post('/guest-appointment/{cancellation_token}/cancel', response_model=GuestAppointmentResponse)
def cancel_guest_appointment(
    cancellation_token: str,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        appointment = AppointmentManager(db, clock=clock).cancel_by_token(cancellation_token)
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return GuestAppointmentResponse.from_appointment(appointment)


@router.post('/guest-appointment/{cancellation_token}/reschedule', response_model=GuestAppointmentResponse)
def reschedule_guest_appointment(
    cancellation_token: str,
    data: GuestRescheduleRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    ensure_database_ready()

    try:
        appointment = AppointmentManager(db, clock=clock).reschedule_by_token(
            cancellation_token,
            new_start_time=data.new_start_time,
            expected_version=data.expected_version,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Guest reschedule failed for booking token')
        raise database_unavailable() from exc

    return GuestAppointmentResponse.from_appointment(appointment)
