"""Expiry reaper for reservations.

Reaping only reclaims rows. Capacity checks already ignore expired holds, so
correctness does not depend on how often this runs; it is invoked on demand
(HTTP maintenance route or ``python -m booking_core.reap_reservations`` from
an external cron).
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from booking_core.core import config
from booking_core.core.clock import Clock, utcnow
from booking_core.database import transaction
from booking_core.models.reservation import Reservation
from booking_core.services.reservations import ReservationManager

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    cleaned: int
    timestamp: datetime
    duration_ms: int


@dataclass
class ReservationMetrics:
    active_reservations: int
    expired_reservations: int
    businesses_with_reservations: int
    oldest_active_created_at: datetime | None
    last_reservation_at: datetime | None


@dataclass
class ReservationHealth:
    healthy: bool
    metrics: ReservationMetrics
    issues: list[str] = field(default_factory=list)


def cleanup_expired_reservations(db: Session, clock: Clock = utcnow) -> CleanupResult:
    started = time.monotonic()
    cleaned = ReservationManager(db, clock=clock).cleanup_expired_reservations()
    duration_ms = int((time.monotonic() - started) * 1000)

    logger.info('Cleaned up %d expired reservations in %dms', cleaned, duration_ms)
    if cleaned > config.EXPIRED_RESERVATION_ALERT_THRESHOLD:
        logger.warning(
            'High expired reservation count: %d. Check that cleanup runs often enough.',
            cleaned,
        )

    return CleanupResult(cleaned=cleaned, timestamp=clock(), duration_ms=duration_ms)


def get_reservation_metrics(db: Session, now: datetime) -> ReservationMetrics:
    with transaction(db):
        active_count = db.query(func.count(Reservation.id)).filter(Reservation.expires_at > now).scalar()
        expired_count = db.query(func.count(Reservation.id)).filter(Reservation.expires_at <= now).scalar()
        business_count = db.query(func.count(func.distinct(Reservation.business_id))).scalar()
        oldest_active = db.query(func.min(Reservation.created_at)).filter(Reservation.expires_at > now).scalar()
        last_created = db.query(func.max(Reservation.created_at)).scalar()

    return ReservationMetrics(
        active_reservations=active_count or 0,
        expired_reservations=expired_count or 0,
        businesses_with_reservations=business_count or 0,
        oldest_active_created_at=oldest_active,
        last_reservation_at=last_created,
    )


def check_reservation_health(db: Session, now: datetime) -> ReservationHealth:
    metrics = get_reservation_metrics(db, now)
    issues: list[str] = []

    if metrics.expired_reservations > config.EXPIRED_RESERVATION_ALERT_THRESHOLD:
        issues.append(
            f'High number of expired reservations: {metrics.expired_reservations}. '
            'Cleanup job may not be running.'
        )

    if metrics.oldest_active_created_at is not None:
        age = now - metrics.oldest_active_created_at
        max_age = timedelta(minutes=config.MAX_ACTIVE_RESERVATION_AGE_MINUTES)
        if age > max_age:
            issues.append(
                f'Oldest active reservation is {int(age.total_seconds() // 60)} minutes old '
                f'(max expected: {config.MAX_ACTIVE_RESERVATION_AGE_MINUTES} minutes).'
            )

    return ReservationHealth(healthy=not issues, metrics=metrics, issues=issues)
