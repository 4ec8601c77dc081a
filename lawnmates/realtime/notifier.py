"""
Notification frames and their delivery over the channel registry
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from lawnmates.models.base import utcnow

logger = logging.getLogger(__name__)


class NotificationType(str, enum.Enum):
    MESSAGE = 'message'
    JOB = 'job'
    PAYMENT = 'payment'
    SYSTEM = 'system'


@dataclass
class Notification:
    user_id: Optional[int]
    notification_type: NotificationType
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f'notification-{uuid.uuid4().hex}')
    timestamp: datetime = field(default_factory=utcnow)

    def to_frame(self):
        return {
            'type': 'notification',
            'id': self.id,
            'message': self.message,
            'notificationType': NotificationType(self.notification_type).value,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
        }


class Notifier:
    """
    Best-effort, at-most-once delivery of notifications to open channels.

    Nothing is queued for offline users; clients re-fetch state over HTTP.
    """

    def __init__(self, registry):
        self.registry = registry

    def send(self, notification: Notification) -> int:
        """Deliver one notification; returns the number of channels reached."""
        try:
            delivered = self.registry.send_to_user(notification.user_id, notification.to_frame())
        except Exception:
            logger.exception('Notification %s for user %s failed', notification.id, notification.user_id)
            return 0

        logger.info(
            'Notification %s (%s) for user %s delivered to %d channel(s)',
            notification.id, NotificationType(notification.notification_type).value,
            notification.user_id, delivered,
        )
        return delivered

    def notify(self, user_id, notification_type, message, data=None) -> int:
        if user_id is None:
            return 0
        return self.send(Notification(
            user_id=user_id,
            notification_type=NotificationType(notification_type),
            message=message,
            data=data or {},
        ))

    def broadcast(self, message, data: Optional[dict] = None) -> int:
        """System announcement to every open channel, identified or not."""
        frame = Notification(
            user_id=None,
            notification_type=NotificationType.SYSTEM,
            message=message,
            data=data or {},
        ).to_frame()
        return self.registry.broadcast(frame)
