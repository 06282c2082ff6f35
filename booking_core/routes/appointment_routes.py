import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_core.auth.dependencies import get_current_actor
from booking_core.core import config
from booking_core.core.clock import Clock, as_utc_aware
from booking_core.core.exceptions import AppointmentNotFound, BookingError
from booking_core.models.appointment import APPOINTMENT_STATUSES, Appointment
from booking_core.models.audit_log import AuditLog
from booking_core.routes.dependencies import (
    booking_http_error,
    database_unavailable,
    ensure_database_ready,
    get_clock,
    get_db,
)
from booking_core.services.appointments import AppointmentManager

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)


def _validate_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


class AppointmentResponse(BaseModel):
    id: str
    booking_id: str
    business_id: str
    service_id: str
    customer_id: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    guest_name: str | None = None
    start_time: datetime
    end_time: datetime
    status: str
    notes: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    cancelled_at: datetime | None = None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> 'AppointmentResponse':
        return cls(
            id=appointment.id,
            booking_id=appointment.booking_id,
            business_id=appointment.business_id,
            service_id=appointment.service_id,
            customer_id=appointment.customer_id,
            guest_email=appointment.guest_email,
            guest_phone=appointment.guest_phone,
            guest_name=appointment.guest_name,
            start_time=as_utc_aware(appointment.start_time),
            end_time=as_utc_aware(appointment.end_time),
            status=appointment.status,
            notes=appointment.notes,
            version=appointment.version,
            created_at=as_utc_aware(appointment.created_at),
            updated_at=as_utc_aware(appointment.updated_at),
            cancelled_at=as_utc_aware(appointment.cancelled_at) if appointment.cancelled_at else None,
        )


class AuditLogResponse(BaseModel):
    id: str
    appointment_id: str
    actor_id: str | None = None
    action: str
    old_state: dict | None = None
    new_state: dict | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class UpdateAppointmentRequest(BaseModel):
    expected_version: int
    status: str | None = None
    start_time: datetime | None = None
    service_id: str | None = None
    notes: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid appointment status.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_notes(value)

    @model_validator(mode='after')
    def require_change(self) -> 'UpdateAppointmentRequest':
        if self.status is None and self.start_time is None and self.service_id is None and self.notes is None:
            raise ValueError('At least one field must be changed.')
        return self


class CreateManualAppointmentRequest(BaseModel):
    business_id: str
    service_id: str
    start_time: datetime
    end_time: datetime | None = None
    idempotency_key: str
    customer_id: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    guest_name: str | None = None
    notes: str | None = None

    @field_validator('guest_email')
    @classmethod
    def validate_guest_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized and '@' not in normalized:
            raise ValueError('A valid email address is required.')
        return normalized or None

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _validate_notes(value)


@router.get('', response_model=list[AppointmentResponse])
def list_appointments(
    business_id: str = Query(..., min_length=1),
    service_id: str | None = Query(default=None),
    appointment_status: str | None = Query(default=None, alias='status'),
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    del actor_id
    ensure_database_ready()

    try:
        appointments = AppointmentManager(db).list_appointments(
            business_id,
            service_id=service_id,
            status=appointment_status,
            start=start,
            end=end,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return [AppointmentResponse.from_appointment(appointment) for appointment in appointments]


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    del actor_id
    ensure_database_ready()

    try:
        appointment = AppointmentManager(db).get_appointment(appointment_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if appointment is None:
        raise booking_http_error(AppointmentNotFound())

    return AppointmentResponse.from_appointment(appointment)


@router.get('/{appointment_id}/audit-logs', response_model=list[AuditLogResponse])
def list_audit_logs(
    appointment_id: str,
    db: Session = Depends(get_db),
    actor_id: str = Depends(get_current_actor),
):
    del actor_id
    ensure_database_ready()

    try:
        entries: list[AuditLog] = AppointmentManager(db).list_audit_entries(appointment_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    return entries


@router.post('/manual', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_manual_appointment(
    data: CreateManualAppointmentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_current_actor),
):
    ensure_database_ready()

    try:
        appointment = AppointmentManager(db, clock=clock).create_manual_appointment(
            business_id=data.business_id,
            service_id=data.service_id,
            start_time=data.start_time,
            end_time=data.end_time,
            idempotency_key=data.idempotency_key,
            actor_id=actor_id,
            customer_id=data.customer_id,
            guest_email=data.guest_email,
            guest_phone=data.guest_phone,
            guest_name=data.guest_name,
            notes=data.notes,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Manual appointment failed for service %s', data.service_id)
        raise database_unavailable() from exc

    return AppointmentResponse.from_appointment(appointment)


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: str,
    data: UpdateAppointmentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_current_actor),
):
    if data.expected_version < 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='expected_version must be a positive integer.',
        )

    ensure_database_ready()

    try:
        appointment = AppointmentManager(db, clock=clock).update_appointment(
            appointment_id,
            expected_version=data.expected_version,
            actor_id=actor_id,
            status=data.status,
            new_start_time=data.start_time,
            service_id=data.service_id,
            notes=data.notes,
        )
    except BookingError as exc:
        raise booking_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Update failed for appointment %s', appointment_id)
        raise database_unavailable() from exc

    return AppointmentResponse.from_appointment(appointment)
