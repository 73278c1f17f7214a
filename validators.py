"""
Validation utilities
"""
import math
import re
import uuid

from errors import ValidationError

_PHONE_SEPARATORS = re.compile(r'[\s\-\(\)\.]')


def validate_uuid(uuid_string):
    """
    Validate UUID format

    Args:
        uuid_string (str): UUID string to validate

    Returns:
        bool: True if valid UUID, False otherwise
    """
    if not isinstance(uuid_string, str) or not uuid_string:
        return False
    try:
        uuid.UUID(uuid_string)
    except ValueError:
        return False
    return True


def require_uuid(value, field='id', label=None):
    """Return ``value`` unchanged or raise ValidationError naming the field."""
    if not validate_uuid(value):
        raise ValidationError(f'{label or field} must be a valid UUID', field=field)
    return value


def coerce_number(value, field):
    """
    Coerce a JSON number into a finite float.

    Booleans are rejected even though ``bool`` subclasses ``int``; numeric
    strings are accepted because some mobile clients send them.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field} must be a number', field=field)
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ValidationError(f'{field} must be a number', field=field) from None
    if not isinstance(value, (int, float)):
        raise ValidationError(f'{field} must be a number', field=field)
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        raise ValidationError(f'{field} must be a finite number', field=field)
    return value


def normalize_phone(phone):
    """
    Normalise a phone number to international digits without a leading '+'.

    Kenyan numbers are accepted in any of the common shapes:
    ``254712345678``, ``+254712345678``, ``0712345678`` and ``712345678``.
    Other countries must be written with an explicit ``+`` and 10-15 digits.

    Returns:
        str or None: canonical digits, or None if the number is malformed
    """
    if not isinstance(phone, str) or not phone.strip():
        return None

    raw = _PHONE_SEPARATORS.sub('', phone.strip())
    explicit_international = raw.startswith('+')
    digits = raw.lstrip('+')
    if not digits.isdigit():
        return None

    if digits.startswith('254') and len(digits) == 12:
        return digits
    if digits.startswith('0') and len(digits) == 10 and digits[1] in '71':
        return '254' + digits[1:]
    if len(digits) == 9 and digits[0] in '71':
        return '254' + digits
    if explicit_international and 10 <= len(digits) <= 15:
        return digits
    return None


def is_kenyan_mobile(msisdn):
    return bool(msisdn) and msisdn.startswith('254') and len(msisdn) == 12


def local_kenyan_number(msisdn):
    """254712345678 -> 0712345678, the form Paystack expects for M-PESA accounts."""
    return '0' + msisdn[3:]
