"""
Reconnecting notification client tests
"""
import json

import pytest
from simple_websocket import ConnectionClosed

from lawnmates.realtime.client import NotificationClient, backoff_delay


class ScriptedSocket:
    """Client-side socket that replays frames, then closes with ``close_code``"""

    def __init__(self, frames=(), close_code=1006):
        self.frames = list(frames)
        self.close_code = close_code
        self.sent = []
        self.closed_with = None

    def send(self, data):
        self.sent.append(json.loads(data))

    def receive(self):
        if self.closed_with is not None:
            raise ConnectionClosed(self.closed_with)
        if self.frames:
            return json.dumps(self.frames.pop(0))
        raise ConnectionClosed(self.close_code)

    def close(self, reason=None, message=None):
        self.closed_with = reason


def _connector(*outcomes):
    """connect() stand-in returning sockets, or raising exceptions, in order"""
    calls = []
    queue = list(outcomes)

    def connect(url):
        calls.append(url)
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    connect.calls = calls
    return connect


NOTIFICATION = {'type': 'notification', 'id': 'notification-1', 'notificationType': 'job', 'data': {}}


class TestBackoff:

    @pytest.mark.parametrize('attempt, expected', [(1, 1), (2, 2), (3, 4), (5, 16), (7, 30), (20, 30)])
    def test_doubles_up_to_cap(self, attempt, expected):
        assert backoff_delay(attempt) == expected


class TestNotificationClient:

    def test_identifies_and_dispatches(self):
        socket = ScriptedSocket(frames=[{'type': 'welcome'}, NOTIFICATION], close_code=1000)
        received = []
        client = NotificationClient('ws://test/ws', 9, received.append, connect=_connector(socket))

        assert client.run() is True
        assert socket.sent[0] == {'type': 'identify', 'userId': 9}
        assert received == [NOTIFICATION]

    def test_reconnects_after_abnormal_close(self):
        dropped = ScriptedSocket(close_code=1006)
        normal = ScriptedSocket(close_code=1000)
        connect = _connector(dropped, normal)
        sleeps = []

        client = NotificationClient('ws://test/ws', 9, lambda f: None, connect=connect, sleep=sleeps.append)

        assert client.run() is True
        assert len(connect.calls) == 2
        assert sleeps == [1.0]
        assert normal.sent == [{'type': 'identify', 'userId': 9}]

    def test_gives_up_after_max_attempts(self):
        connect = _connector(*[OSError('refused')] * 6)
        sleeps = []

        client = NotificationClient('ws://test/ws', 9, lambda f: None, connect=connect, sleep=sleeps.append)

        assert client.run() is False
        assert sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert len(connect.calls) == 6

    def test_successful_connect_resets_budget(self):
        connect = _connector(
            OSError('refused'), ScriptedSocket(close_code=1006),
            OSError('refused'), ScriptedSocket(close_code=1000),
        )
        sleeps = []

        client = NotificationClient('ws://test/ws', 9, lambda f: None, connect=connect, sleep=sleeps.append)

        assert client.run() is True
        assert sleeps == [1.0, 1.0, 2.0]

    def test_intentional_close_does_not_reconnect(self):
        socket = ScriptedSocket(frames=[NOTIFICATION, NOTIFICATION], close_code=1006)
        connect = _connector(socket)
        received = []

        def on_notification(frame):
            received.append(frame)
            client.close()

        client = NotificationClient('ws://test/ws', 9, on_notification, connect=connect)

        assert client.run() is True
        assert socket.closed_with == 1000
        assert len(received) == 1
        assert len(connect.calls) == 1

    def test_non_json_frames_ignored(self):
        socket = ScriptedSocket(close_code=1000)
        socket.frames = ['garbage']
        socket.receive = lambda: socket.frames.pop(0) if socket.frames else ScriptedSocket.receive(socket)
        frames = []
        client = NotificationClient('ws://test/ws', 9, lambda f: None, on_frame=frames.append,
                                    connect=_connector(socket))

        assert client.run() is True
        assert frames == []
