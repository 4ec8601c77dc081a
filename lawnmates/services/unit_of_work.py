"""
Transactional boundary for one state change.

Everything written inside the block commits together or not at all;
notifications queued on the unit of work go out only after the commit
succeeded, so pushed events never describe state that was rolled back.
"""
import logging

from lawnmates import db
from lawnmates.realtime.notifier import Notification, NotificationType

logger = logging.getLogger(__name__)


class UnitOfWork:

    def __init__(self, notifier):
        self.notifier = notifier
        self.outbox = []

    def notify(self, user_id, notification_type, message, data=None):
        if user_id is None:
            return
        self.outbox.append(Notification(
            user_id=user_id,
            notification_type=NotificationType(notification_type),
            message=message,
            data=data or {},
        ))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            db.session.rollback()
            self.outbox.clear()
            return False

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            self.outbox.clear()
            raise

        for notification in self.outbox:
            self.notifier.send(notification)
        self.outbox.clear()
        return False
