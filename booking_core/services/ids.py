import secrets

from booking_core.core import config

BOOKING_ID_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'


def generate_booking_id(prefix: str | None = None) -> str:
    """Human-readable booking reference such as ``BK-7QX-2MD-91A``."""
    prefix = prefix or config.BOOKING_ID_PREFIX
    code = ''.join(secrets.choice(BOOKING_ID_ALPHABET) for _ in range(9))
    return f'{prefix}-{code[:3]}-{code[3:6]}-{code[6:]}'


def generate_cancellation_token() -> str:
    return secrets.token_urlsafe(24)
