"""
Job lifecycle state machine.

posted -> accepted -> in_progress -> verification_pending -> completed
posted | accepted -> cancelled
verification_pending -> in_progress (rejected, retry) | disputed
accepted | in_progress | verification_pending -> disputed (admin)

Who may fire each transition lives in AUTHORIZATION_POLICY and is checked
here once, not in the route handlers. Status is written with a conditional
UPDATE on the status that was read, so of two concurrent requests on the
same job only one can win.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update

from lawnmates import db
from lawnmates.errors import ConflictError, ForbiddenError, InvalidStateTransition
from lawnmates.models import (
    ACTIVE_JOB_STATUSES,
    ActivityLog,
    Job,
    JobStatus,
    UserRole,
    Verification,
    VerificationStatus,
    utcnow,
)
from lawnmates.realtime.notifier import NotificationType
from lawnmates.services.lookups import get_or_404
from lawnmates.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


class Transition(str, enum.Enum):
    ACCEPT = 'accept'
    START = 'start'
    COMPLETE = 'complete'
    APPROVE = 'approve'
    REJECT = 'reject'
    DISPUTE = 'dispute'
    CANCEL = 'cancel'
    ESCALATE = 'escalate'


# transition -> (statuses it may start from, status it leads to)
TRANSITIONS = {
    Transition.ACCEPT: (frozenset({JobStatus.POSTED}), JobStatus.ACCEPTED),
    Transition.START: (frozenset({JobStatus.ACCEPTED}), JobStatus.IN_PROGRESS),
    Transition.COMPLETE: (frozenset({JobStatus.IN_PROGRESS}), JobStatus.VERIFICATION_PENDING),
    Transition.APPROVE: (frozenset({JobStatus.VERIFICATION_PENDING}), JobStatus.COMPLETED),
    Transition.REJECT: (frozenset({JobStatus.VERIFICATION_PENDING}), JobStatus.IN_PROGRESS),
    Transition.DISPUTE: (frozenset({JobStatus.VERIFICATION_PENDING}), JobStatus.DISPUTED),
    Transition.CANCEL: (frozenset({JobStatus.POSTED, JobStatus.ACCEPTED}), JobStatus.CANCELLED),
    Transition.ESCALATE: (
        frozenset({JobStatus.ACCEPTED, JobStatus.IN_PROGRESS, JobStatus.VERIFICATION_PENDING}),
        JobStatus.DISPUTED,
    ),
}

# Every (from, to) edge of the lifecycle graph
VALID_EDGES = frozenset(
    (source, target)
    for sources, target in TRANSITIONS.values()
    for source in sources
)


def next_status(current, transition):
    """Target status of a transition from ``current``, or InvalidStateTransition."""
    sources, target = TRANSITIONS[transition]
    if current not in sources:
        raise InvalidStateTransition(current, transition)
    return target


@dataclass(frozen=True)
class Actor:
    """Who is asking for a transition. ``role=None`` is the system itself."""
    user_id: Optional[int]
    role: Optional[UserRole]

    @classmethod
    def from_user(cls, user):
        return cls(user_id=user.id, role=user.role)

    @property
    def is_system(self):
        return self.role is None


SYSTEM = Actor(user_id=None, role=None)


def _any_landscaper(actor, job):
    return actor.role == UserRole.LANDSCAPER


def _assigned_landscaper(actor, job):
    return actor.role == UserRole.LANDSCAPER and job.landscaper_id == actor.user_id


def _job_owner(actor, job):
    return actor.role == UserRole.PROPERTY_OWNER and job.owner_id == actor.user_id


def _admin(actor, job):
    return actor.role == UserRole.ADMIN


def _system(actor, job):
    return actor.is_system


AUTHORIZATION_POLICY = {
    Transition.ACCEPT: ((_any_landscaper,), 'Only landscapers can accept jobs'),
    Transition.START: ((_assigned_landscaper,), 'Only the assigned landscaper can start this job'),
    Transition.COMPLETE: ((_assigned_landscaper,), 'Only the assigned landscaper can complete this job'),
    Transition.APPROVE: ((_system,), 'Jobs are completed through verification review'),
    Transition.REJECT: ((_system,), 'Jobs are reopened through verification review'),
    Transition.DISPUTE: ((_system,), 'Jobs are disputed through verification review'),
    Transition.CANCEL: ((_job_owner, _admin), 'Only the job owner or an admin can cancel this job'),
    Transition.ESCALATE: ((_admin,), 'Only admins can escalate jobs to dispute'),
}


def is_authorized(actor, job, transition):
    predicates, _ = AUTHORIZATION_POLICY[transition]
    return any(predicate(actor, job) for predicate in predicates)


# Messages pushed to the job parties after each transition
_TRANSITION_MESSAGES = {
    Transition.ACCEPT: 'Job "{title}" was accepted',
    Transition.START: 'Work has started on "{title}"',
    Transition.COMPLETE: 'Work on "{title}" is done and awaiting verification',
    Transition.APPROVE: 'Verification approved: "{title}" is completed',
    Transition.REJECT: 'Verification rejected for "{title}"; the job is back in progress',
    Transition.DISPUTE: '"{title}" has been moved to dispute after repeated rejection',
    Transition.CANCEL: 'Job "{title}" was cancelled',
    Transition.ESCALATE: '"{title}" has been escalated to dispute by an admin',
}


class JobStateMachine:

    def __init__(self, payments, notifier, allow_cancel_after_acceptance=False):
        self.payments = payments
        self.notifier = notifier
        self.allow_cancel_after_acceptance = allow_cancel_after_acceptance

    def apply(self, job_id, actor, transition):
        """Run one transition in its own transaction and notify after commit."""
        with UnitOfWork(self.notifier) as uow:
            job = self.transition(uow, job_id, actor, transition)
        return job

    def transition(self, uow, job_or_id, actor, transition):
        """Apply a transition inside an open unit of work (no commit)."""
        transition = Transition(transition)
        job = job_or_id if isinstance(job_or_id, Job) else get_or_404(Job, job_or_id, 'Job', category='job')

        if not is_authorized(actor, job, transition):
            _, message = AUTHORIZATION_POLICY[transition]
            raise ForbiddenError(message, category='job')

        if (transition == Transition.ACCEPT and job.landscaper_id is not None
                and job.status in ACTIVE_JOB_STATUSES):
            raise ConflictError('Job has already been accepted by another landscaper', category='job')

        current = job.status
        target = next_status(current, transition)

        if (transition == Transition.CANCEL and current == JobStatus.ACCEPTED
                and not self.allow_cancel_after_acceptance):
            raise InvalidStateTransition(
                current, transition,
                message='Jobs cannot be cancelled once a landscaper has accepted them',
            )

        values = {'status': target}
        if transition == Transition.ACCEPT:
            values['landscaper_id'] = actor.user_id
        self._guarded_update(job, current, values, require_unclaimed=transition == Transition.ACCEPT)

        ActivityLog.log_action(
            entity_type='job',
            entity_id=job.id,
            action=transition.value,
            user_id=actor.user_id,
            old_values={'status': current.value},
            new_values={'status': target.value, 'landscaper_id': job.landscaper_id},
        )

        if current == JobStatus.VERIFICATION_PENDING:
            self._close_pending_verifications(job, actor)

        if transition == Transition.ACCEPT:
            self.payments.ensure_intent(uow, job)
        elif transition == Transition.CANCEL:
            self.payments.settle_cancellation(uow, job, actor.user_id)

        self._queue_notifications(uow, job, actor, transition, current)
        logger.info(
            'Job %s %s: %s -> %s by %s',
            job.id, transition.value, current.value, target.value,
            'system' if actor.is_system else 'user {}'.format(actor.user_id),
        )
        return job

    def _guarded_update(self, job, expected, values, require_unclaimed=False):
        criteria = [Job.id == job.id, Job.status == expected]
        if require_unclaimed:
            criteria.append(Job.landscaper_id.is_(None))

        result = db.session.execute(
            update(Job)
            .where(*criteria)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info('Job %s changed concurrently (expected %s)', job.id, expected.value)
            raise ConflictError('Job was changed by another request; refresh and retry', category='job')
        db.session.refresh(job)

    def _close_pending_verifications(self, job, actor):
        """A job leaving verification_pending takes its unreviewed evidence with it.

        Review moves its own verification before the job, so this only
        catches evidence stranded by other exits such as an admin escalation.
        """
        pending = Verification.query.filter_by(job_id=job.id, status=VerificationStatus.PENDING).all()
        for verification in pending:
            result = db.session.execute(
                update(Verification)
                .where(Verification.id == verification.id, Verification.status == VerificationStatus.PENDING)
                .values(status=VerificationStatus.REJECTED, admin_id=actor.user_id, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                continue
            db.session.refresh(verification)
            ActivityLog.log_action(
                entity_type='verification', entity_id=verification.id, action='closed',
                user_id=actor.user_id,
                old_values={'status': VerificationStatus.PENDING.value},
                new_values={'status': VerificationStatus.REJECTED.value, 'job_status': job.status.value},
            )
            logger.info('Verification %s closed as job %s moved to %s', verification.id, job.id, job.status.value)

    def _queue_notifications(self, uow, job, actor, transition, previous):
        message = _TRANSITION_MESSAGES[transition].format(title=job.title)
        data = {
            'jobId': job.id,
            'status': job.status.value,
            'previousStatus': previous.value,
            'transition': transition.value,
        }
        # both parties, the actor included so their other devices stay in sync
        recipients = []
        for user_id in (job.owner_id, job.landscaper_id):
            if user_id is not None and user_id not in recipients:
                recipients.append(user_id)
        for user_id in recipients:
            uow.notify(user_id, NotificationType.JOB, message, data)
