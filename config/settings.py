"""
Configuration settings for different environments
"""
import logging
import os
import secrets

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    'http://localhost:5173',
    'http://localhost:3000',
    'http://localhost:8080',
]


def _require_in_production(var_names, default):
    """Return the first set env var. Outside development, warn loudly if still using default."""
    for var_name in var_names:
        value = os.environ.get(var_name, '')
        if value:
            return value
    if os.environ.get('FLASK_ENV', 'development') != 'development':
        logger.warning(
            "%s is using an insecure default. Set it via environment variable!", var_names[0]
        )
    return default


def _database_url():
    url = os.environ.get('DATABASE_URL', '')
    if not url:
        return 'sqlite:///fundi.db'
    # SQLAlchemy 2.x only understands the postgresql:// scheme
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


def _origins():
    configured = [o.strip() for o in os.environ.get('ALLOWED_ORIGINS', '').split(',') if o.strip()]
    return configured or list(DEFAULT_ORIGINS)


class Config:
    """Base configuration"""
    SECRET_KEY = _require_in_production(['SECRET_KEY'], 'dev-only-' + secrets.token_hex(16))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # Database
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1MB, all bodies are small JSON documents

    # Identity provider: bearer tokens are HS256 JWTs signed with this secret
    JWT_SECRET = _require_in_production(
        ['JWT_SECRET', 'SUPABASE_JWT_SECRET'], 'dev-only-' + secrets.token_hex(32)
    )
    JWT_AUDIENCE = os.environ.get('JWT_AUDIENCE') or None

    # CORS
    CORS_ORIGINS = _origins()

    # Paystack
    PAYSTACK_SECRET_KEY = os.environ.get('PAYSTACK_SECRET_KEY') or os.environ.get('PAYSTACK_SECRET', '')
    PAYSTACK_BASE_URL = os.environ.get('PAYSTACK_BASE_URL', 'https://api.paystack.co')
    PAYSTACK_TIMEOUT = float(os.environ.get('PAYSTACK_TIMEOUT', '30'))
    DEFAULT_CURRENCY = os.environ.get('PAYSTACK_CURRENCY', 'KES').upper()
    SPLIT_CURRENCY = os.environ.get('SPLIT_CURRENCY', 'KES').upper()

    # Rate limiting (fixed window). memory:// is per-process; point REDIS_URL
    # at a shared Redis when running more than one instance.
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'
    RATELIMIT_DEFAULT = os.environ.get('RATELIMIT_DEFAULT', '100 per minute')
    PAYMENT_RATE_LIMIT = os.environ.get('PAYMENT_RATE_LIMIT', '10 per minute')

    # Handshake codes
    HANDSHAKE_CODE_TTL_MINUTES = int(os.environ.get('HANDSHAKE_CODE_TTL_MINUTES', '10'))
    HANDSHAKE_CODE_LENGTH = int(os.environ.get('HANDSHAKE_CODE_LENGTH', '8'))
    # None means "detect from the jobs table at startup"
    HANDSHAKE_STORE_PLAINTEXT = None

    # Money
    MIN_PAYMENT_AMOUNT = float(os.environ.get('MIN_PAYMENT_AMOUNT', '0.01'))
    MAX_PAYMENT_AMOUNT = float(os.environ.get('MAX_PAYMENT_AMOUNT', '10000000'))
    AMOUNT_LOWER_TOLERANCE = float(os.environ.get('AMOUNT_LOWER_TOLERANCE', '0.5'))
    AMOUNT_UPPER_TOLERANCE = float(os.environ.get('AMOUNT_UPPER_TOLERANCE', '1.5'))
    QUOTE_CEILING = float(os.environ.get('QUOTE_CEILING', '1000000'))
    PLATFORM_COMMISSION_PERCENT = float(os.environ.get('PLATFORM_COMMISSION_PERCENT', '15'))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'max_overflow': 40,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    }


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
