"""
Configuration settings for different environments
"""
import logging
import os
import secrets
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default=False):
    """Read a boolean flag from the environment"""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('true', 'on', '1', 'yes')


def _database_url(default):
    url = os.environ.get('DATABASE_URL', '')
    if not url:
        return default
    # Fix postgres:// to postgresql:// for SQLAlchemy 2.x
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql://', 1)
    return url


def _require_in_production(var_name, default):
    """Return env var value. Outside development, warn loudly if still using default."""
    value = os.environ.get(var_name, '')
    if value:
        return value
    if os.environ.get('FLASK_ENV', 'development') != 'development':
        logging.getLogger(__name__).warning(
            '%s is using an insecure default. Set it via environment variable!', var_name
        )
    return default


class Config:
    """Base configuration"""
    SECRET_KEY = _require_in_production('SECRET_KEY', 'dev-only-' + secrets.token_hex(16))

    # Database
    SQLALCHEMY_DATABASE_URI = _database_url('sqlite:///lawnmates.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = True

    # Sessions
    SESSION_COOKIE_SECURE = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    PERMANENT_SESSION_LIFETIME = timedelta(hours=24)

    # CORS
    CORS_ORIGINS = [o.strip() for o in os.environ.get('CORS_ORIGINS', '*').split(',') if o.strip()]

    API_PREFIX = '/api'
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1MB, photos are references

    # Pagination
    ITEMS_PER_PAGE = 20
    MAX_ITEMS_PER_PAGE = 100

    # Stripe
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET', '')
    STRIPE_CURRENCY = os.environ.get('STRIPE_CURRENCY', 'cad')
    STRIPE_TIMEOUT_SECONDS = int(os.environ.get('STRIPE_TIMEOUT_SECONDS', 10))

    # Job lifecycle policy
    ALLOW_CANCEL_AFTER_ACCEPTANCE = _env_flag('ALLOW_CANCEL_AFTER_ACCEPTANCE', False)
    VERIFICATION_MAX_REJECTIONS = int(os.environ.get('VERIFICATION_MAX_REJECTIONS', 2))

    # Real-time channel
    HEARTBEAT_INTERVAL_SECONDS = int(os.environ.get('HEARTBEAT_INTERVAL_SECONDS', 30))
    HEARTBEAT_ENABLED = _env_flag('HEARTBEAT_ENABLED', True)
    WS_MAX_MESSAGE_SIZE = 64 * 1024

    # Messaging
    MESSAGE_MAX_LENGTH = 2000

    # Rate limiting
    RATELIMIT_ENABLED = _env_flag('RATELIMIT_ENABLED', True)
    RATELIMIT_STORAGE_URI = os.environ.get('REDIS_URL') or 'memory://'

    # Monitoring
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    SENTRY_DSN = os.environ.get('SENTRY_DSN', '')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enforce HTTPS
    SESSION_COOKIE_SECURE = True

    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_size': 20,
        'max_overflow': 40,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
    }

