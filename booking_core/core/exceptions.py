"""
Booking outcomes that callers are expected to handle.

None of these are internal faults: each one tells the caller what to do next
(pick another slot, reserve again, re-read and retry). They propagate out of
the managers untouched and the routes map them to HTTP status codes.
"""


class BookingError(Exception):
    """Base class for expected booking failures."""

    default_message = "Booking request failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class CapacityExceeded(BookingError):
    default_message = "The selected time slot is no longer available."


class ReservationNotFound(BookingError):
    default_message = "Reservation not found."


class ReservationExpired(BookingError):
    default_message = "Reservation has expired. Please choose a time slot again."


class AppointmentNotFound(BookingError):
    default_message = "Appointment not found."


class AppointmentConflict(BookingError):
    """
    Raised when the caller's expected version no longer matches the stored
    row. The caller must re-read the appointment and retry.
    """

    default_message = "Appointment has been modified by someone else."

    def __init__(self, message: str | None = None, current_version: int | None = None):
        super().__init__(message)
        self.current_version = current_version


class AppointmentNotEditable(BookingError):
    default_message = "Appointment can no longer be changed."


class ServiceNotFound(BookingError):
    default_message = "Service not found."


class InvalidBookingTime(BookingError):
    default_message = "Requested time is not bookable."


class BusinessNotFound(BookingError):
    default_message = "Business not found."


class AlreadyBooked(BookingError):
    """The idempotency key already belongs to a confirmed appointment."""

    default_message = "This booking has already been confirmed."
