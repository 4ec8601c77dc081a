"""
Route blueprints
"""
from flask import jsonify

from lawnmates.extensions import limiter


def register_blueprints(app):
    from lawnmates.blueprints.admin import admin_bp
    from lawnmates.blueprints.auth import auth_bp
    from lawnmates.blueprints.favorites import favorites_bp
    from lawnmates.blueprints.jobs import jobs_bp
    from lawnmates.blueprints.messages import messages_bp
    from lawnmates.blueprints.payments import payments_bp, webhook_bp
    from lawnmates.blueprints.properties import properties_bp
    from lawnmates.blueprints.reviews import reviews_bp
    from lawnmates.blueprints.users import users_bp
    from lawnmates.blueprints.verifications import verifications_bp
    from lawnmates.blueprints.websocket import websocket_bp

    api_prefix = app.config['API_PREFIX']
    app.register_blueprint(auth_bp, url_prefix=f'{api_prefix}/auth')
    app.register_blueprint(users_bp, url_prefix=f'{api_prefix}/users')
    app.register_blueprint(jobs_bp, url_prefix=f'{api_prefix}/jobs')
    app.register_blueprint(verifications_bp, url_prefix=f'{api_prefix}/verifications')
    app.register_blueprint(payments_bp, url_prefix=api_prefix)
    app.register_blueprint(webhook_bp, url_prefix=f'{api_prefix}/webhooks')
    app.register_blueprint(messages_bp, url_prefix=f'{api_prefix}/messages')
    app.register_blueprint(properties_bp, url_prefix=f'{api_prefix}/properties')
    app.register_blueprint(favorites_bp, url_prefix=f'{api_prefix}/favorites')
    app.register_blueprint(reviews_bp, url_prefix=f'{api_prefix}/reviews')
    app.register_blueprint(admin_bp, url_prefix=f'{api_prefix}/admin')
    app.register_blueprint(websocket_bp)

    # Health check endpoint
    @app.route(f'{api_prefix}/health')
    @limiter.exempt
    def health():
        registry = app.extensions['lawnmates'].registry
        return jsonify({
            'status': 'healthy',
            'service': 'lawnmates-backend',
            'connections': registry.connected_count(),
        }), 200
