"""
Testing configuration for the Fundi backend
"""
from config.settings import Config


class TestingConfig(Config):
    """Testing configuration with isolated database and safe defaults"""

    TESTING = True
    DEBUG = False

    # Use in-memory SQLite for fast tests
    SQLALCHEMY_DATABASE_URI = 'sqlite://'

    JWT_SECRET = 'test-jwt-secret'
    JWT_AUDIENCE = None

    # Never reaches the network; tests swap in a fake client
    PAYSTACK_SECRET_KEY = 'sk_test_mock'
    PAYSTACK_BASE_URL = 'https://paystack.test'
    DEFAULT_CURRENCY = 'KES'

    # Disable the per-IP limiter; the per-actor payment limiter stays on
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'
    PAYMENT_RATE_LIMIT = '10 per minute'

    HANDSHAKE_STORE_PLAINTEXT = True

    # Logging
    LOG_LEVEL = 'WARNING'

    CORS_ORIGINS = ['http://localhost:5173', 'http://localhost:3000']
