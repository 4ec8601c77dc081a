"""
LawnMates backend: landscaping marketplace API
"""
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
login_manager = LoginManager()

logger = logging.getLogger(__name__)


@login_manager.user_loader
def load_user(user_id):
    from lawnmates.models import User
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({
        'error': 'UNAUTHORIZED',
        'message': 'Authentication required',
        'category': 'request',
    }), 401


def create_app(config_name=None, **service_overrides):
    """Flask application factory

    ``service_overrides`` (registry=, gateway=) replace the default service
    collaborators; tests use them to inject a failing payment gateway.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    from lawnmates.config import config
    app.config.from_object(config[config_name])

    from lawnmates.monitoring import configure_logging, init_sentry
    configure_logging(app)
    init_sentry(app)

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    from lawnmates.extensions import limiter
    limiter.init_app(app)

    from lawnmates.middleware import RequestIdMiddleware
    app.wsgi_app = RequestIdMiddleware(app.wsgi_app)

    from lawnmates.errors import register_error_handlers
    register_error_handlers(app)

    from lawnmates.sanitize import sanitize_json_input, set_security_headers
    app.before_request(sanitize_json_input)
    app.after_request(set_security_headers)

    from lawnmates.services import init_services
    init_services(app, **service_overrides)

    # Register blueprints
    from lawnmates.blueprints import register_blueprints
    register_blueprints(app)

    from lawnmates.commands import register_commands
    register_commands(app)

    # Import models so create_all sees every table
    from lawnmates import models  # noqa: F401

    if app.config.get('AUTO_CREATE_TABLES'):
        with app.app_context():
            db.create_all()

    if app.config.get('HEARTBEAT_ENABLED'):
        from lawnmates.scheduler import init_scheduler
        init_scheduler(app)

    logger.info('LawnMates app created (%s)', config_name)
    return app
