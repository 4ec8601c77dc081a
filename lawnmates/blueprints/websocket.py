"""
WebSocket endpoint for real-time notifications

GET /ws upgrades to a raw WebSocket speaking the JSON frame protocol in
lawnmates.realtime.protocol. The view blocks its worker thread for the
lifetime of the socket, so the server must be threaded.
"""
import logging

from flask import Blueprint, Response, current_app, jsonify, request
from flask_login import current_user
from simple_websocket import ConnectionClosed, Server

from lawnmates import db
from lawnmates.extensions import limiter
from lawnmates.models import User
from lawnmates.realtime import Channel
from lawnmates.realtime.protocol import UNSUPPORTED_DATA, FrameHandler, error_frame, welcome_frame
from lawnmates.services import get_services

logger = logging.getLogger(__name__)

websocket_bp = Blueprint('websocket', __name__)


def _user_exists(user_id):
    try:
        return db.session.get(User, user_id) is not None
    finally:
        # release the connection; the socket may stay open for hours
        db.session.close()


class WebSocketResponse(Response):
    """Tells the WSGI server the socket was taken over and is now closed."""

    def __init__(self, ws):
        super().__init__()
        self.ws = ws

    def __call__(self, *args, **kwargs):
        if self.ws.mode == 'gunicorn':
            raise StopIteration()
        if self.ws.mode == 'werkzeug':
            raise ConnectionError()
        return []


def _is_upgrade_request():
    return (
        request.headers.get('Upgrade', '').lower() == 'websocket'
        and 'upgrade' in request.headers.get('Connection', '').lower()
    )


@websocket_bp.route('/ws')
@limiter.exempt
def notifications_socket():
    if not _is_upgrade_request():
        return jsonify({
            'error': 'UPGRADE_REQUIRED',
            'message': 'This endpoint only accepts WebSocket connections',
            'category': 'request',
        }), 400

    services = get_services()
    registry = services.registry
    session_user_id = current_user.id if current_user.is_authenticated else None
    handler = FrameHandler(registry, session_user_id=session_user_id, user_exists=_user_exists)

    ws = Server.accept(
        request.environ,
        ping_interval=current_app.config['HEARTBEAT_INTERVAL_SECONDS'],
        max_message_size=current_app.config['WS_MAX_MESSAGE_SIZE'],
    )
    channel = Channel(ws, remote_addr=request.remote_addr)
    registry.register(channel)
    logger.info('Channel %s opened from %s', channel.id, channel.remote_addr)

    try:
        channel.send_json(welcome_frame())
        while True:
            data = ws.receive()
            if data is None:
                continue
            if isinstance(data, bytes):
                channel.close(reason=UNSUPPORTED_DATA, message='Binary frames are not supported')
                break
            try:
                reply = handler.handle(channel, data)
            except Exception:
                logger.exception('Frame handling failed on channel %s', channel.id)
                reply = error_frame('Internal error while handling message')
            if reply is not None:
                channel.send_json(reply)
    except ConnectionClosed as e:
        logger.info('Channel %s closed (%s)', channel.id, e.reason)
    finally:
        registry.unregister(channel)

    return WebSocketResponse(ws)
