"""
Logging and error monitoring setup
"""
import logging

from lawnmates.middleware.request_id import RequestIdFilter

LOG_FORMAT = '%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s'


def configure_logging(app):
    """Install a single stream handler on the root logger, tagged with request IDs."""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    root = logging.getLogger()

    if not any(getattr(h, '_lawnmates', False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RequestIdFilter())
        handler._lawnmates = True
        root.addHandler(handler)

    root.setLevel(level)
    app.logger.setLevel(level)


def init_sentry(app):
    """Sentry error monitoring (optional -- only active when SENTRY_DSN is set)"""
    dsn = app.config.get('SENTRY_DSN')
    if not dsn:
        if not app.config.get('DEBUG') and not app.config.get('TESTING'):
            logging.getLogger(__name__).warning(
                'SENTRY_DSN is not set -- error monitoring is disabled.'
            )
        return False

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration

    sentry_sdk.init(
        dsn=dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
    )
    return True
