"""Delete expired reservations once and report the result.

Usage:
    python -m booking_core.reap_reservations [--check-health]

Meant to be run by an external scheduler (cron, a platform job runner).
"""
import argparse
import logging
import sys

from booking_core.core.clock import utcnow
from booking_core.database import SessionLocal
from booking_core.services import cleanup


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description='Delete expired booking reservations.')
    parser.add_argument(
        '--check-health',
        action='store_true',
        help='Exit non-zero when the reservation table looks unhealthy after cleanup.',
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    db = SessionLocal()
    try:
        result = cleanup.cleanup_expired_reservations(db)
        print(f'Deleted {result.cleaned} expired reservations in {result.duration_ms}ms')

        if args.check_health:
            health = cleanup.check_reservation_health(db, utcnow())
            if not health.healthy:
                for issue in health.issues:
                    print(issue, file=sys.stderr)
                return 1
    finally:
        db.close()

    return 0


if __name__ == '__main__':
    sys.exit(main())
