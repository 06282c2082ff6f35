import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.clock import Clock, to_utc_naive, utcnow
from booking_core.core.exceptions import AlreadyBooked, CapacityExceeded, ReservationExpired, ReservationNotFound
from booking_core.database import transaction
from booking_core.models.appointment import Appointment
from booking_core.models.reservation import Reservation
from booking_core.services import availability, capacity

logger = logging.getLogger(__name__)


class ReservationManager:
    """Creates, validates and reaps short-lived holds on service capacity.

    Every public method is one transaction against the store. Nothing here
    keeps in-process state between calls, so any number of processes can run
    it side by side.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _find_active_by_key(self, idempotency_key: str, now: datetime) -> Reservation | None:
        return self.db.query(Reservation).filter(
            Reservation.idempotency_key == idempotency_key,
            Reservation.expires_at > now,
        ).first()

    def _is_booked(self, idempotency_key: str) -> bool:
        return self.db.query(Appointment.id).filter(
            Appointment.idempotency_key == idempotency_key,
        ).first() is not None

    def create_reservation(
        self,
        business_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
        idempotency_key: str,
        ttl_minutes: float = config.RESERVATION_TTL_MINUTES,
    ) -> Reservation:
        """Hold one unit of capacity for ``[slot_start, slot_end)``.

        A retried call with the same idempotency key gets the original hold
        back without a second capacity check. Once that hold has been
        committed the key is spent and the retry raises ``AlreadyBooked``.
        Otherwise the service row is locked, capacity is recounted and the
        hold is inserted in the same transaction, so two callers racing for
        the last unit cannot both win.
        """
        if ttl_minutes <= 0:
            raise ValueError('ttl_minutes must be positive.')

        slot_start = to_utc_naive(slot_start)
        slot_end = to_utc_naive(slot_end)
        now = self.clock()

        try:
            with transaction(self.db):
                existing = self._find_active_by_key(idempotency_key, now)
                if existing is not None:
                    logger.info('Replaying reservation %s for idempotency key', existing.id)
                    return existing

                # A committed hold hands its key to the appointment.
                if self._is_booked(idempotency_key):
                    raise AlreadyBooked()

                service = capacity.lock_service(self.db, business_id, service_id)

                # An expired hold still owns the unique key until the reaper runs.
                self.db.query(Reservation).filter(
                    Reservation.idempotency_key == idempotency_key,
                    Reservation.expires_at <= now,
                ).delete(synchronize_session=False)

                availability.validate_window_for_service(
                    self.db, business_id, slot_start, slot_end, now, service=service
                )

                remaining = capacity.remaining_capacity(
                    self.db,
                    business_id,
                    service_id,
                    slot_start,
                    slot_end,
                    now,
                    service=service,
                )
                if remaining <= 0:
                    logger.info(
                        'Slot %s - %s for service %s is at capacity',
                        slot_start.isoformat(),
                        slot_end.isoformat(),
                        service_id,
                    )
                    raise CapacityExceeded()

                reservation = Reservation(
                    business_id=business_id,
                    service_id=service_id,
                    slot_start=slot_start,
                    slot_end=slot_end,
                    idempotency_key=idempotency_key,
                    created_at=now,
                    expires_at=now + timedelta(minutes=ttl_minutes),
                )
                self.db.add(reservation)
                self.db.flush()
        except IntegrityError:
            # A concurrent call with the same key committed first.
            with transaction(self.db):
                replay = self._find_active_by_key(idempotency_key, self.clock())
                booked = replay is None and self._is_booked(idempotency_key)
            if booked:
                raise AlreadyBooked()
            if replay is None:
                raise
            logger.info('Reservation %s won the idempotency key race', replay.id)
            return replay

        logger.info(
            'Created reservation %s for service %s at %s (expires %s)',
            reservation.id,
            service_id,
            slot_start.isoformat(),
            reservation.expires_at.isoformat(),
        )
        return reservation

    def validate_reservation(self, reservation_id: str) -> Reservation:
        now = self.clock()
        with transaction(self.db):
            reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()

        if reservation is None:
            raise ReservationNotFound()
        if reservation.is_expired(now):
            raise ReservationExpired()

        return reservation

    def extend_reservation(self, reservation_id: str, additional_minutes: float) -> Reservation:
        if additional_minutes <= 0:
            raise ValueError('additional_minutes must be positive.')

        now = self.clock()
        with transaction(self.db):
            reservation = self.db.query(Reservation).filter(
                Reservation.id == reservation_id,
            ).with_for_update().first()

            if reservation is None:
                raise ReservationNotFound()
            if reservation.is_expired(now):
                raise ReservationExpired()

            reservation.expires_at = reservation.expires_at + timedelta(minutes=additional_minutes)

        return reservation

    def release_reservation(self, reservation_id: str) -> None:
        with transaction(self.db):
            deleted = self.db.query(Reservation).filter(
                Reservation.id == reservation_id,
            ).delete(synchronize_session=False)

            if not deleted:
                raise ReservationNotFound()

        logger.info('Released reservation %s', reservation_id)

    def get_available_capacity(
        self,
        business_id: str,
        service_id: str,
        slot_start: datetime,
        slot_end: datetime,
    ) -> int:
        with transaction(self.db):
            return capacity.remaining_capacity(
                self.db,
                business_id,
                service_id,
                to_utc_naive(slot_start),
                to_utc_naive(slot_end),
                self.clock(),
            )

    def cleanup_expired_reservations(self) -> int:
        now = self.clock()
        with transaction(self.db):
            removed = self.db.query(Reservation).filter(
                Reservation.expires_at <= now,
            ).delete(synchronize_session=False)

        return removed
