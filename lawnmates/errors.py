"""
Application exceptions and their JSON error responses
"""
import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class LawnMatesError(Exception):
    """Base exception for LawnMates domain errors"""
    code = 'INTERNAL_ERROR'
    status_code = 500
    category = 'request'

    def __init__(self, message, category=None, **details):
        self.message = message
        if category is not None:
            self.category = category
        self.details = details
        super().__init__(message)

    def to_dict(self):
        data = {
            'error': self.code,
            'message': self.message,
            'category': self.category,
        }
        data.update(self.details)
        return data


class NotFoundError(LawnMatesError):
    """Referenced entity does not exist"""
    code = 'NOT_FOUND'
    status_code = 404


class ForbiddenError(LawnMatesError):
    """Actor is authenticated but lacks the role or ownership"""
    code = 'FORBIDDEN'
    status_code = 403


class InvalidStateTransition(LawnMatesError):
    """Entity is not in a status that permits the requested operation"""
    code = 'INVALID_STATE_TRANSITION'
    status_code = 400
    category = 'job'

    def __init__(self, current_status, attempted, message=None, category=None):
        current = getattr(current_status, 'value', current_status)
        attempted = getattr(attempted, 'value', attempted)
        if message is None:
            message = f"Cannot {attempted} while status is '{current}'"
        super().__init__(message, category=category, current_status=current, attempted=attempted)
        self.current_status = current
        self.attempted = attempted


class ValidationError(LawnMatesError):
    """Malformed input"""
    code = 'VALIDATION_ERROR'
    status_code = 400


class ConflictError(LawnMatesError):
    """A concurrent mutation won the race"""
    code = 'CONFLICT'
    status_code = 409


class AlreadyReviewed(LawnMatesError):
    """Verification has already been adjudicated"""
    code = 'ALREADY_REVIEWED'
    status_code = 409
    category = 'verification'


class ExternalServiceError(LawnMatesError):
    """Payment provider failure or timeout; safe to retry with backoff"""
    code = 'EXTERNAL_SERVICE_ERROR'
    status_code = 502
    category = 'payment'

    def __init__(self, message, status_code=None, retryable=True, **details):
        super().__init__(message, retryable=retryable, **details)
        if status_code is not None:
            self.status_code = status_code


class PayoutFailed(ExternalServiceError):
    """Transfer to the landscaper failed; the payment stays in escrow"""
    code = 'PAYOUT_FAILED'


def _rollback():
    from lawnmates import db
    db.session.rollback()


def register_error_handlers(app):
    """Attach JSON error handlers to the Flask app"""

    @app.errorhandler(LawnMatesError)
    def handle_domain_error(error):
        # drop half-applied edits from a handler that failed validation midway
        _rollback()
        log = logger.warning if error.status_code >= 500 else logger.info
        log('%s %s -> %s: %s', request.method, request.path, error.code, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(429)
    def ratelimit_handler(e):
        # Retry-After header is set by Flask-Limiter; read it back.
        retry_after = e.get_headers().get('Retry-After') if hasattr(e, 'get_headers') else None
        retry_after_seconds = int(retry_after) if retry_after else 60
        return jsonify({
            'error': 'RATE_LIMITED',
            'message': 'Too many requests. Please try again later.',
            'category': 'request',
            'retry_after': retry_after_seconds,
        }), 429

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'error': error.name.upper().replace(' ', '_'),
            'message': error.description,
            'category': 'request',
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        _rollback()
        return jsonify({
            'error': 'INTERNAL_ERROR',
            'message': 'An unexpected error occurred',
            'category': 'request',
        }), 500
