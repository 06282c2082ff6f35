import logging
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_core.core.clock import Clock, to_utc_naive, utcnow
from booking_core.core.exceptions import (
    AlreadyBooked,
    AppointmentConflict,
    AppointmentNotEditable,
    AppointmentNotFound,
    CapacityExceeded,
    ReservationExpired,
    ReservationNotFound,
)
from booking_core.database import transaction
from booking_core.models.appointment import (
    APPOINTMENT_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    Appointment,
)
from booking_core.models.audit_log import AuditLog
from booking_core.models.notification import (
    EVENT_APPOINTMENT_CANCELLED,
    EVENT_APPOINTMENT_CREATED,
    EVENT_APPOINTMENT_UPDATED,
    NotificationEvent,
)
from booking_core.models.reservation import Reservation
from booking_core.services import availability, capacity
from booking_core.services.ids import generate_booking_id, generate_cancellation_token

logger = logging.getLogger(__name__)

ACTION_CREATED = 'created'
ACTION_MODIFIED = 'modified'
ACTION_CANCELLED = 'cancelled'


class AppointmentManager:
    """Turns holds into appointments and applies versioned updates to them."""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _record_change(
        self,
        appointment: Appointment,
        actor_id: str | None,
        action: str,
        old_state: dict | None,
        event_type: str,
        now: datetime,
    ) -> None:
        new_state = appointment.to_snapshot()
        self.db.add(
            AuditLog(
                appointment_id=appointment.id,
                actor_id=actor_id,
                action=action,
                old_state=old_state,
                new_state=new_state,
                created_at=now,
            )
        )
        self.db.add(
            NotificationEvent(
                appointment_id=appointment.id,
                event_type=event_type,
                payload=new_state,
                created_at=now,
            )
        )

    def _find_by_idempotency_key(self, idempotency_key: str) -> Appointment | None:
        return self.db.query(Appointment).filter(
            Appointment.idempotency_key == idempotency_key,
        ).first()

    def commit_reservation(
        self,
        reservation_id: str,
        guest_email: str | None = None,
        guest_phone: str | None = None,
        guest_name: str | None = None,
        customer_id: str | None = None,
        cancellation_token: str | None = None,
    ) -> Appointment:
        """Convert a live reservation into a confirmed appointment.

        The insert and the reservation delete share one transaction: the hold
        never coexists with its appointment and never disappears without one.
        Capacity is not rechecked because the hold already occupies it.
        """
        if not customer_id and not guest_email:
            raise ValueError('Either customer_id or guest_email is required.')

        now = self.clock()
        try:
            with transaction(self.db):
                reservation = self.db.query(Reservation).filter(
                    Reservation.id == reservation_id,
                ).with_for_update().first()

                if reservation is None:
                    raise ReservationNotFound()
                # The ledger already ignores this hold; the user must reserve again.
                if reservation.is_expired(now):
                    raise ReservationExpired()

                if self._find_by_idempotency_key(reservation.idempotency_key) is not None:
                    raise AlreadyBooked()

                appointment = Appointment(
                    booking_id=generate_booking_id(),
                    business_id=reservation.business_id,
                    service_id=reservation.service_id,
                    customer_id=customer_id,
                    guest_email=guest_email,
                    guest_phone=guest_phone,
                    guest_name=guest_name,
                    start_time=reservation.slot_start,
                    end_time=reservation.slot_end,
                    status=STATUS_CONFIRMED,
                    idempotency_key=reservation.idempotency_key,
                    cancellation_token=cancellation_token or generate_cancellation_token(),
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(appointment)
                self.db.flush()

                self._record_change(appointment, customer_id, ACTION_CREATED, None, EVENT_APPOINTMENT_CREATED, now)
                self.db.delete(reservation)
        except IntegrityError as exc:
            raise AlreadyBooked() from exc

        logger.info('Committed reservation %s as appointment %s', reservation_id, appointment.id)
        return appointment

    def create_manual_appointment(
        self,
        business_id: str,
        service_id: str,
        start_time: datetime,
        idempotency_key: str,
        actor_id: str,
        end_time: datetime | None = None,
        customer_id: str | None = None,
        guest_email: str | None = None,
        guest_phone: str | None = None,
        guest_name: str | None = None,
        notes: str | None = None,
    ) -> Appointment:
        """Book directly for the owner, skipping the hold step but not the capacity check."""
        start_time = to_utc_naive(start_time)
        now = self.clock()

        try:
            with transaction(self.db):
                existing = self._find_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return existing

                held = self.db.query(Reservation.id).filter(
                    Reservation.idempotency_key == idempotency_key,
                    Reservation.expires_at > now,
                ).first()
                if held is not None:
                    raise AlreadyBooked('Idempotency key is already in use by a reservation.')

                service = capacity.lock_service(self.db, business_id, service_id)
                end_time = to_utc_naive(end_time) if end_time else start_time + timedelta(minutes=service.duration_minutes)

                availability.validate_window_for_service(
                    self.db, business_id, start_time, end_time, now, skip_advance_limit=True, service=service
                )

                remaining = capacity.remaining_capacity(
                    self.db,
                    business_id,
                    service_id,
                    start_time,
                    end_time,
                    now,
                    service=service,
                )
                if remaining <= 0:
                    raise CapacityExceeded('No available capacity for this time slot.')

                appointment = Appointment(
                    booking_id=generate_booking_id(),
                    business_id=business_id,
                    service_id=service_id,
                    customer_id=customer_id,
                    guest_email=guest_email,
                    guest_phone=guest_phone,
                    guest_name=guest_name,
                    start_time=start_time,
                    end_time=end_time,
                    status=STATUS_CONFIRMED,
                    notes=notes,
                    idempotency_key=idempotency_key,
                    cancellation_token=generate_cancellation_token(),
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
                self.db.add(appointment)
                self.db.flush()

                self._record_change(appointment, actor_id, ACTION_CREATED, None, EVENT_APPOINTMENT_CREATED, now)
        except IntegrityError:
            with transaction(self.db):
                replay = self._find_by_idempotency_key(idempotency_key)
            if replay is None:
                raise
            return replay

        logger.info('Created manual appointment %s for service %s', appointment.id, service_id)
        return appointment

    def update_appointment(
        self,
        appointment_id: str,
        expected_version: int,
        actor_id: str | None,
        status: str | None = None,
        new_start_time: datetime | None = None,
        service_id: str | None = None,
        notes: str | None = None,
        skip_advance_limit: bool = True,
    ) -> Appointment:
        """Apply a change only if nobody else has changed the row since ``expected_version``.

        Reschedules and service changes are capacity-checked on the new
        window, not counting the appointment's own current occupancy. Owner
        edits may move past the advance booking window; guest reschedules
        pass ``skip_advance_limit=False``.
        """
        if status is not None and status not in APPOINTMENT_STATUSES:
            raise ValueError(f'Unknown appointment status: {status}')

        now = self.clock()
        with transaction(self.db):
            current = self.db.query(Appointment).filter(Appointment.id == appointment_id).first()
            if current is None:
                raise AppointmentNotFound()

            if current.version != expected_version:
                raise AppointmentConflict(current_version=current.version)

            if current.status != STATUS_CONFIRMED:
                raise AppointmentNotEditable(f'Appointment is {current.status} and can no longer be changed.')

            old_state = current.to_snapshot()
            values: dict = {}

            target_service_id = service_id or current.service_id
            target_start = to_utc_naive(new_start_time) if new_start_time else current.start_time

            if target_start != current.start_time or target_service_id != current.service_id:
                service = capacity.lock_service(self.db, current.business_id, target_service_id)
                target_end = target_start + timedelta(minutes=service.duration_minutes)

                availability.validate_window_for_service(
                    self.db,
                    current.business_id,
                    target_start,
                    target_end,
                    now,
                    skip_advance_limit=skip_advance_limit,
                    service=service,
                )

                remaining = capacity.remaining_capacity(
                    self.db,
                    current.business_id,
                    target_service_id,
                    target_start,
                    target_end,
                    now,
                    exclude_appointment_id=current.id,
                    service=service,
                )
                if remaining <= 0:
                    raise CapacityExceeded('No available capacity for the new time slot.')

                values.update(start_time=target_start, end_time=target_end, service_id=target_service_id)

            if status is not None:
                values['status'] = status
                if status == STATUS_CANCELLED:
                    values['cancelled_at'] = now

            if notes is not None:
                values['notes'] = notes

            result = self.db.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id, Appointment.version == expected_version)
                .values(version=Appointment.version + 1, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AppointmentConflict('Failed to update appointment due to concurrent modification.')

            self.db.refresh(current)

            if current.status == STATUS_CANCELLED:
                action, event_type = ACTION_CANCELLED, EVENT_APPOINTMENT_CANCELLED
            else:
                action, event_type = ACTION_MODIFIED, EVENT_APPOINTMENT_UPDATED
            self._record_change(current, actor_id, action, old_state, event_type, now)

        logger.info('Updated appointment %s to version %d', appointment_id, current.version)
        return current

    def cancel_by_token(self, cancellation_token: str, actor_id: str | None = None) -> Appointment:
        appointment = self.get_by_cancellation_token(cancellation_token)
        if appointment is None:
            raise AppointmentNotFound()

        return self.update_appointment(
            appointment.id,
            expected_version=appointment.version,
            actor_id=actor_id or appointment.guest_email or appointment.customer_id,
            status=STATUS_CANCELLED,
        )

    def reschedule_by_token(
        self,
        cancellation_token: str,
        new_start_time: datetime,
        expected_version: int,
        actor_id: str | None = None,
    ) -> Appointment:
        """Move a guest's appointment using the token from their confirmation."""
        appointment = self.get_by_cancellation_token(cancellation_token)
        if appointment is None:
            raise AppointmentNotFound()

        return self.update_appointment(
            appointment.id,
            expected_version=expected_version,
            actor_id=actor_id or appointment.guest_email or appointment.customer_id,
            new_start_time=new_start_time,
            skip_advance_limit=False,
        )

    def get_appointment(self, appointment_id: str) -> Appointment | None:
        with transaction(self.db):
            return self.db.query(Appointment).filter(Appointment.id == appointment_id).first()

    def get_by_cancellation_token(self, cancellation_token: str) -> Appointment | None:
        with transaction(self.db):
            return self.db.query(Appointment).filter(
                Appointment.cancellation_token == cancellation_token,
            ).first()

    def list_appointments(
        self,
        business_id: str,
        service_id: str | None = None,
        status: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.business_id == business_id)

        if service_id:
            query = query.filter(Appointment.service_id == service_id)
        if status:
            query = query.filter(Appointment.status == status)
        if start:
            query = query.filter(Appointment.start_time >= to_utc_naive(start))
        if end:
            query = query.filter(Appointment.end_time <= to_utc_naive(end))

        with transaction(self.db):
            return query.order_by(Appointment.start_time.asc()).all()

    def list_audit_entries(self, appointment_id: str) -> list[AuditLog]:
        with transaction(self.db):
            return self.db.query(AuditLog).filter(
                AuditLog.appointment_id == appointment_id,
            ).order_by(AuditLog.created_at.asc()).all()
