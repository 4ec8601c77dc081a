"""Closed status and role types shared by models and services"""
import enum


class UserRole(str, enum.Enum):
    PROPERTY_OWNER = 'property_owner'
    LANDSCAPER = 'landscaper'
    ADMIN = 'admin'


class JobStatus(str, enum.Enum):
    POSTED = 'posted'
    ACCEPTED = 'accepted'
    IN_PROGRESS = 'in_progress'
    VERIFICATION_PENDING = 'verification_pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    DISPUTED = 'disputed'


# Work has been claimed and the job is not yet settled
ACTIVE_JOB_STATUSES = frozenset({
    JobStatus.ACCEPTED,
    JobStatus.IN_PROGRESS,
    JobStatus.VERIFICATION_PENDING,
})

TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.CANCELLED,
    JobStatus.DISPUTED,
})


class PaymentStatus(str, enum.Enum):
    PENDING = 'pending'
    ESCROW = 'escrow'
    RELEASED = 'released'
    REFUNDED = 'refunded'


class VerificationStatus(str, enum.Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class MessageStatus(str, enum.Enum):
    SENT = 'sent'
    DELIVERED = 'delivered'
    READ = 'read'


class RecurrenceInterval(str, enum.Enum):
    WEEKLY = 'weekly'
    BIWEEKLY = 'biweekly'
    MONTHLY = 'monthly'
