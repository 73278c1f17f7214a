"""Input sanitization for JSON request bodies."""

import re

# C0 controls except tab/newline/carriage return, plus DEL
_CONTROL_CHARS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')

MAX_STRING_LENGTH = 2000
MAX_IDENTIFIER_LENGTH = 500
IDENTIFIER_FIELDS = frozenset({
    'job_id', 'reference', 'role', 'kind', 'code', 'method', 'channel', 'currency',
    'phone', 'subaccount', 'bearer_subaccount', 'bank_code', 'account_number',
    'idempotency_key',
})


def sanitize_string(value, max_length=MAX_STRING_LENGTH):
    """Strip control characters and bound the length."""
    if not isinstance(value, str):
        return value
    return _CONTROL_CHARS.sub('', value)[:max_length]


def sanitize_dict(data, key=None):
    """Recursively walk a dict/list structure and sanitize all string values.

    Non-string leaves (int, float, bool, None) are returned unchanged.
    """
    if isinstance(data, dict):
        return {k: sanitize_dict(v, key=k) for k, v in data.items()}
    if isinstance(data, list):
        return [sanitize_dict(item, key=key) for item in data]
    if isinstance(data, str):
        if key in IDENTIFIER_FIELDS:
            return sanitize_string(data, MAX_IDENTIFIER_LENGTH).strip()
        return sanitize_string(data)
    return data
