"""
Testing configuration for the LawnMates backend
"""
import os

from lawnmates.config.settings import Config


class TestingConfig(Config):
    """Testing configuration with isolated database and safe defaults"""

    TESTING = True
    DEBUG = False
    SECRET_KEY = 'lawnmates-test-secret'

    # Use in-memory SQLite for fast tests
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///:memory:')
    AUTO_CREATE_TABLES = False

    # No Stripe key: the gateway runs in development mode
    STRIPE_SECRET_KEY = ''
    STRIPE_WEBHOOK_SECRET = ''

    # Documented defaults, pinned so the suite does not follow the environment
    ALLOW_CANCEL_AFTER_ACCEPTANCE = False
    VERIFICATION_MAX_REJECTIONS = 2

    # No background sweep thread during tests
    HEARTBEAT_ENABLED = False

    # Disable rate limiting in tests
    RATELIMIT_ENABLED = False
    RATELIMIT_STORAGE_URI = 'memory://'

    LOG_LEVEL = 'WARNING'
    SENTRY_DSN = ''

    CORS_ORIGINS = ['http://localhost:5173', 'http://localhost:3000']
