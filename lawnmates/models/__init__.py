"""SQLAlchemy models package"""
from .enums import (
    ACTIVE_JOB_STATUSES,
    JobStatus,
    MessageStatus,
    PaymentStatus,
    RecurrenceInterval,
    UserRole,
    VerificationStatus,
)
from .base import utcnow
from .user import User
from .property import Property
from .job import Job
from .payment import Payment
from .verification import Verification
from .message import Message
from .review import Review
from .favorite import Favorite
from .activity_log import ActivityLog

__all__ = [
    'ACTIVE_JOB_STATUSES',
    'JobStatus',
    'MessageStatus',
    'PaymentStatus',
    'RecurrenceInterval',
    'UserRole',
    'VerificationStatus',
    'utcnow',
    'User',
    'Property',
    'Job',
    'Payment',
    'Verification',
    'Message',
    'Review',
    'Favorite',
    'ActivityLog',
]
