"""
JSON frame protocol spoken on the /ws channel.

Client -> server: identify, ping.
Server -> client: welcome, confirmation, pong, notification, error.
"""
import json
import logging

from lawnmates.models.base import utcnow

logger = logging.getLogger(__name__)

WELCOME_MESSAGE = 'Connected to LawnMates notification server'

# Close code for frames the server does not accept (binary data)
UNSUPPORTED_DATA = 1003


def welcome_frame():
    return {'type': 'welcome', 'message': WELCOME_MESSAGE, 'timestamp': utcnow().isoformat()}


def error_frame(message):
    return {'type': 'error', 'message': message, 'timestamp': utcnow().isoformat()}


def parse_user_id(value):
    """Accept a positive int or a numeric string; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


class FrameHandler:
    """Turns one inbound text frame into at most one reply frame.

    Args:
        registry: ChannelRegistry the identify frame binds into
        session_user_id: user of the authenticated session behind the
            upgrade request, if any; identify may not claim anyone else
        user_exists: optional callable(user_id) -> bool
    """

    def __init__(self, registry, session_user_id=None, user_exists=None):
        self.registry = registry
        self.session_user_id = session_user_id
        self.user_exists = user_exists

    def handle(self, channel, raw):
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            return error_frame('Invalid JSON message')

        if not isinstance(frame, dict):
            return error_frame('Message must be a JSON object')

        frame_type = frame.get('type')
        if frame_type == 'identify':
            return self._identify(channel, frame)
        if frame_type == 'ping':
            return {
                'type': 'pong',
                'timestamp': utcnow().isoformat(),
                'received': frame.get('timestamp'),
            }
        return error_frame(f'Unsupported message type: {frame_type}')

    def _identify(self, channel, frame):
        user_id = parse_user_id(frame.get('userId'))
        if user_id is None:
            return error_frame('identify requires a numeric userId')

        if self.session_user_id is not None and user_id != self.session_user_id:
            logger.warning(
                'Channel %s tried to identify as %s from session of user %s',
                channel.id, user_id, self.session_user_id,
            )
            return error_frame('userId does not match the signed-in user')

        if self.user_exists is not None and not self.user_exists(user_id):
            return error_frame('Unknown user')

        self.registry.identify(channel, user_id)
        return {
            'type': 'confirmation',
            'message': 'Connection identified',
            'userId': user_id,
            'timestamp': utcnow().isoformat(),
        }
