"""
Reconnecting notification client for the /ws channel.

Used by Python consumers (workers, integration scripts) that want job,
payment and message events pushed to them.
"""
import json
import logging
import time

import simple_websocket
from simple_websocket import ConnectionClosed

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000


def backoff_delay(attempt, base_delay=1.0, max_delay=30.0):
    """Exponential backoff: base, 2*base, 4*base ... capped at max_delay"""
    return min(max_delay, base_delay * (2 ** max(0, attempt - 1)))


class NotificationClient:
    """Connects, identifies and dispatches notification frames.

    Reconnects after an unexpected close, up to ``max_attempts`` times in a
    row. A normal close from the server or a call to ``close()`` ends the
    run loop without reconnecting.
    """

    def __init__(self, url, user_id, on_notification, on_frame=None,
                 max_attempts=5, base_delay=1.0, max_delay=30.0,
                 connect=None, sleep=time.sleep):
        self.url = url
        self.user_id = user_id
        self.on_notification = on_notification
        self.on_frame = on_frame
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._connect = connect or simple_websocket.Client.connect
        self._sleep = sleep
        self._ws = None
        self._stopped = False
        self.attempts = 0

    def close(self):
        """Intentional close: stop the loop and do not reconnect."""
        self._stopped = True
        if self._ws is not None:
            try:
                self._ws.close(reason=NORMAL_CLOSURE)
            except ConnectionClosed:
                pass

    def run(self):
        """Block until closed normally or the reconnect budget is spent.

        Returns True on a normal stop and False when giving up.
        """
        while not self._stopped:
            try:
                self._ws = self._connect(self.url)
            except (simple_websocket.ConnectionError, OSError) as exc:
                logger.warning('Connect to %s failed: %s', self.url, exc)
                if not self._schedule_retry():
                    return False
                continue

            self.attempts = 0
            close_code = self._session()
            if self._stopped or close_code == NORMAL_CLOSURE:
                logger.info('Notification channel closed normally')
                return True

            logger.warning('Notification channel dropped (code %s)', close_code)
            if not self._schedule_retry():
                return False
        return True

    def _schedule_retry(self):
        self.attempts += 1
        if self.attempts > self.max_attempts:
            logger.error('Giving up on %s after %d attempts', self.url, self.max_attempts)
            return False
        delay = backoff_delay(self.attempts, self.base_delay, self.max_delay)
        logger.info('Reconnecting in %.1fs (attempt %d/%d)', delay, self.attempts, self.max_attempts)
        self._sleep(delay)
        return True

    def _session(self):
        """Identify and pump frames until the connection ends; returns the close code."""
        ws = self._ws
        try:
            ws.send(json.dumps({'type': 'identify', 'userId': self.user_id}))
            while True:
                raw = ws.receive()
                if raw is None:
                    continue
                self._dispatch(raw)
        except ConnectionClosed as exc:
            reason = exc.reason if exc.reason is not None else getattr(ws, 'close_reason', None)
            return int(reason) if reason is not None else None

    def _dispatch(self, raw):
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning('Ignoring non-JSON frame')
            return
        if self.on_frame is not None:
            self.on_frame(frame)
        if frame.get('type') == 'notification':
            self.on_notification(frame)
        elif frame.get('type') == 'error':
            logger.warning('Server error frame: %s', frame.get('message'))
