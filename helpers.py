"""
Helper utilities
"""
import time
import uuid
from datetime import datetime, timezone

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def isoformat(value):
    return as_utc(value).isoformat() if value else None


def to_base36(number):
    """
    Encode a non-negative integer in lowercase base36

    Args:
        number (int): value to encode

    Returns:
        str: base36 digits
    """
    if number < 0:
        raise ValueError('number must be non-negative')
    if number == 0:
        return '0'
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def millis_now():
    return int(time.time() * 1000)


def generate_payment_reference(prefix='MF'):
    """
    Build a gateway reference like ``MF_LX2K9Q1A_5F0C...``.

    The timestamp part keeps references roughly sortable, the uuid part
    makes collisions practically impossible.
    """
    return f'{prefix}_{to_base36(millis_now()).upper()}_{uuid.uuid4().hex.upper()}'


def format_amount(amount):
    """Two decimal places, used in every user-facing amount message."""
    return f'{float(amount):.2f}'


def to_minor_units(amount):
    """Convert major currency units to the integer minor units Paystack expects."""
    return int(round(float(amount) * 100))


def from_minor_units(amount):
    if amount is None:
        return None
    return round(float(amount) / 100, 2)


def mask_value(value, visible=4):
    """Mask all but the last ``visible`` characters, for logs."""
    if not value:
        return value
    value = str(value)
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * (len(value) - visible) + value[-visible:]
