"""
Channel registry for real-time notifications.

Keeps every open channel of this process and routes user-targeted
frames to the channels identified as that user. The table is
process-local: a deployment with several workers has one registry per
worker, and a user is only reachable from the worker holding their socket.
"""
import json
import logging
import threading
import uuid

from simple_websocket import ConnectionClosed

from lawnmates.models.base import utcnow

logger = logging.getLogger(__name__)


class Channel:
    """One persistent client connection (a simple-websocket connection)."""

    def __init__(self, ws, remote_addr=None):
        self.ws = ws
        self.id = uuid.uuid4().hex[:12]
        self.user_id = None
        self.remote_addr = remote_addr
        self.connected_at = utcnow()
        self._send_lock = threading.Lock()

    def __repr__(self):
        return f'<Channel {self.id} user={self.user_id}>'

    @property
    def is_open(self):
        return bool(getattr(self.ws, 'connected', False))

    def send_json(self, payload):
        """Serialize and push one frame; raises ConnectionClosed when the socket is gone."""
        data = json.dumps(payload, default=str)
        with self._send_lock:
            self.ws.send(data)

    def close(self, reason=None, message=None):
        try:
            self.ws.close(reason=reason, message=message)
        except ConnectionClosed:
            pass


class ChannelRegistry:
    """Thread-safe routing table of open channels, keyed by identified user."""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels = set()
        self._by_user = {}

    def register(self, channel):
        """Track a freshly accepted, not yet identified channel."""
        with self._lock:
            self._channels.add(channel)
        logger.debug('Channel %s registered', channel.id)

    def identify(self, channel, user_id):
        """Bind a channel to a user; a rebind moves it off the previous user."""
        with self._lock:
            self._channels.add(channel)
            if channel.user_id is not None and channel.user_id != user_id:
                self._discard_binding(channel)
            channel.user_id = user_id
            self._by_user.setdefault(user_id, set()).add(channel)
            count = len(self._by_user[user_id])
        logger.info('Channel %s identified as user %s (%d open)', channel.id, user_id, count)

    def unregister(self, channel):
        with self._lock:
            self._channels.discard(channel)
            self._discard_binding(channel)
        logger.debug('Channel %s unregistered', channel.id)

    def _discard_binding(self, channel):
        # caller holds the lock
        bound = self._by_user.get(channel.user_id)
        if bound is not None:
            bound.discard(channel)
            if not bound:
                del self._by_user[channel.user_id]

    def channels_for(self, user_id):
        with self._lock:
            return list(self._by_user.get(user_id, ()))

    def is_connected(self, user_id):
        return bool(self.channels_for(user_id))

    def connected_count(self, user_id=None):
        """Open channels for one user, or across the whole process."""
        with self._lock:
            if user_id is None:
                return len(self._channels)
            return len(self._by_user.get(user_id, ()))

    def connected_user_ids(self):
        with self._lock:
            return sorted(self._by_user)

    def send_to_user(self, user_id, payload):
        """Push a frame to every open channel of the user.

        Returns the number of channels that accepted the frame. Channels
        that are closed or fail on send are dropped from the table.
        """
        return self._fan_out(self.channels_for(user_id), payload)

    def broadcast(self, payload):
        """Push a frame to every channel, identified or not."""
        with self._lock:
            channels = list(self._channels)
        return self._fan_out(channels, payload)

    def _fan_out(self, channels, payload):
        delivered = 0
        dead = []
        for channel in channels:
            if not channel.is_open:
                dead.append(channel)
                continue
            try:
                channel.send_json(payload)
                delivered += 1
            except Exception:
                logger.warning('Dropping channel %s after failed send', channel.id, exc_info=True)
                dead.append(channel)

        for channel in dead:
            self.unregister(channel)
        return delivered

    def sweep(self):
        """Remove channels whose connection is no longer open.

        The websocket layer closes a channel that misses its ping window;
        this pass unbinds whatever such closes left behind.
        """
        with self._lock:
            dead = [c for c in self._channels if not c.is_open]
            for channel in dead:
                self._channels.discard(channel)
                self._discard_binding(channel)

        for channel in dead:
            channel.close()
        if dead:
            logger.info('Heartbeat sweep removed %d dead channel(s)', len(dead))
        return len(dead)
