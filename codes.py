"""
Handshake code generation and hashing.

Codes are drawn from an alphabet without the look-alike characters
0/O and 1/I so they can be read aloud or typed from a screen. Only the
SHA-256 hash is authoritative; comparison is constant time.
"""
import hashlib
import hmac
import secrets

CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
DEFAULT_CODE_LENGTH = 8


def generate_code(length=DEFAULT_CODE_LENGTH):
    if length < 4:
        raise ValueError('code length must be at least 4')
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code):
    return (code or '').strip().upper()


def hash_code(code):
    """Lowercase hex SHA-256 of the normalised code."""
    return hashlib.sha256(normalize_code(code).encode('utf-8')).hexdigest()


def verify_code(stored_hash, candidate):
    if not stored_hash or not candidate:
        return False
    return hmac.compare_digest(stored_hash, hash_code(candidate))
