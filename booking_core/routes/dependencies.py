from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking_core.core.clock import Clock, utcnow
from booking_core.core.exceptions import (
    AlreadyBooked,
    AppointmentConflict,
    AppointmentNotEditable,
    AppointmentNotFound,
    BookingError,
    BusinessNotFound,
    CapacityExceeded,
    InvalidBookingTime,
    ReservationExpired,
    ReservationNotFound,
    ServiceNotFound,
)
from booking_core.database import (
    SessionLocal,
    ensure_appointment_schema,
    ensure_reservation_schema,
    ensure_service_schema,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

BOOKING_ERROR_STATUS = {
    CapacityExceeded: status.HTTP_409_CONFLICT,
    AppointmentConflict: status.HTTP_409_CONFLICT,
    AlreadyBooked: status.HTTP_409_CONFLICT,
    ReservationExpired: status.HTTP_410_GONE,
    ReservationNotFound: status.HTTP_404_NOT_FOUND,
    AppointmentNotFound: status.HTTP_404_NOT_FOUND,
    ServiceNotFound: status.HTTP_404_NOT_FOUND,
    BusinessNotFound: status.HTTP_404_NOT_FOUND,
    AppointmentNotEditable: 422,
    InvalidBookingTime: status.HTTP_400_BAD_REQUEST,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Clock:
    return utcnow


def ensure_database_ready() -> None:
    try:
        ensure_reservation_schema()
        ensure_appointment_schema()
        ensure_service_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def booking_http_error(exc: BookingError) -> HTTPException:
    status_code = BOOKING_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)

    if isinstance(exc, AppointmentConflict):
        return HTTPException(
            status_code=status_code,
            detail={'message': exc.message, 'current_version': exc.current_version},
        )

    return HTTPException(status_code=status_code, detail=exc.message)
