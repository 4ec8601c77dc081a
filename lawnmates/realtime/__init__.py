"""Real-time notification channel"""
from lawnmates.realtime.notifier import Notification, NotificationType, Notifier
from lawnmates.realtime.registry import Channel, ChannelRegistry

__all__ = ['Channel', 'ChannelRegistry', 'Notification', 'NotificationType', 'Notifier']
