"""
Verification workflow: completion evidence and its adjudication.

Rejection policy: a rejected verification sends the job back to
in_progress so the landscaper can redo the work and resubmit. Once a job
collects ``max_rejections`` rejections the latest one escalates it to
disputed instead (max_rejections=1 disputes on the first rejection).
"""
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from lawnmates import db
from lawnmates.errors import (
    AlreadyReviewed,
    ConflictError,
    ForbiddenError,
    InvalidStateTransition,
    ValidationError,
)
from lawnmates.models import (
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
from lawnmates.services.state_machine import SYSTEM, Transition
from lawnmates.services.unit_of_work import UnitOfWork
from lawnmates.utils.validators import validate_reference

logger = logging.getLogger(__name__)

MAX_PHOTO_REFERENCE_LENGTH = 1000


def _photo_reference(value, field):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} is required', category='verification', field=field)
    value = value.strip()
    if not validate_reference(value):
        raise ValidationError(f'{field} must be a URL or storage reference', category='verification', field=field)
    if len(value) > MAX_PHOTO_REFERENCE_LENGTH:
        raise ValidationError(f'{field} is too long', category='verification', field=field)
    return value


class VerificationWorkflow:

    def __init__(self, state_machine, payments, notifier, max_rejections=2):
        self.state_machine = state_machine
        self.payments = payments
        self.notifier = notifier
        self.max_rejections = max(1, int(max_rejections))

    def submit(self, job_id, actor, before_photo, after_photo):
        """Assigned landscaper files evidence for a job awaiting verification."""
        with UnitOfWork(self.notifier) as uow:
            job = get_or_404(Job, job_id, 'Job', category='verification')
            if actor.role != UserRole.LANDSCAPER or job.landscaper_id != actor.user_id:
                raise ForbiddenError(
                    'Only the assigned landscaper can submit verification', category='verification'
                )
            if job.status != JobStatus.VERIFICATION_PENDING:
                raise InvalidStateTransition(job.status, 'submit verification', category='verification')

            before_photo = _photo_reference(before_photo, 'before_photo')
            after_photo = _photo_reference(after_photo, 'after_photo')

            pending = Verification.query.filter_by(
                job_id=job.id, status=VerificationStatus.PENDING
            ).first()
            if pending is not None:
                raise ConflictError(
                    'A verification is already awaiting review for this job',
                    category='verification', verification_id=pending.id,
                )

            verification = Verification(
                job_id=job.id,
                before_photo=before_photo,
                after_photo=after_photo,
                status=VerificationStatus.PENDING,
            )
            db.session.add(verification)
            try:
                db.session.flush()
            except IntegrityError as e:
                raise ConflictError(
                    'A verification is already awaiting review for this job', category='verification'
                ) from e

            ActivityLog.log_action(
                entity_type='verification', entity_id=verification.id, action='submitted',
                user_id=actor.user_id, new_values={'status': verification.status.value, 'job_id': job.id},
            )
            uow.notify(
                job.owner_id, NotificationType.JOB,
                'Completion photos were submitted for "{}"'.format(job.title),
                {'jobId': job.id, 'verificationId': verification.id},
            )
        logger.info('Verification %s submitted for job %s', verification.id, job.id)
        return verification

    def review(self, verification_id, actor, approved, trust_score=None):
        """Admin approves or rejects a pending verification."""
        if not isinstance(approved, bool):
            raise ValidationError('approved must be true or false', category='verification')
        if trust_score is not None:
            if isinstance(trust_score, bool) or not isinstance(trust_score, (int, float)) \
                    or not 0 <= trust_score <= 100:
                raise ValidationError('trust_score must be a number between 0 and 100', category='verification')

        with UnitOfWork(self.notifier) as uow:
            verification = get_or_404(Verification, verification_id, 'Verification', category='verification')
            if actor.role != UserRole.ADMIN:
                raise ForbiddenError('Only admins can review verifications', category='verification')
            if verification.status != VerificationStatus.PENDING:
                raise AlreadyReviewed(
                    'Verification has already been reviewed',
                    verification_id=verification.id, status=verification.status.value,
                )

            outcome = VerificationStatus.APPROVED if approved else VerificationStatus.REJECTED
            values = {'status': outcome, 'admin_id': actor.user_id, 'updated_at': utcnow()}
            if approved:
                values['approved_at'] = utcnow()
            if trust_score is not None:
                values['trust_score'] = float(trust_score)

            result = db.session.execute(
                update(Verification)
                .where(Verification.id == verification.id, Verification.status == VerificationStatus.PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise AlreadyReviewed('Verification has already been reviewed', verification_id=verification.id)
            db.session.refresh(verification)

            job = get_or_404(Job, verification.job_id, 'Job', category='verification')
            if approved:
                self.state_machine.transition(uow, job, SYSTEM, Transition.APPROVE)
                self.payments.mark_release_eligible(uow, job)
            else:
                self.state_machine.transition(uow, job, SYSTEM, self._rejection_transition(job))

            ActivityLog.log_action(
                entity_type='verification', entity_id=verification.id, action=outcome.value,
                user_id=actor.user_id,
                old_values={'status': VerificationStatus.PENDING.value},
                new_values={'status': outcome.value, 'job_status': job.status.value},
            )
        logger.info('Verification %s %s by admin %s', verification.id, outcome.value, actor.user_id)
        return verification

    def _rejection_transition(self, job):
        # includes the rejection just written in this transaction
        rejections = Verification.query.filter_by(
            job_id=job.id, status=VerificationStatus.REJECTED
        ).count()
        if rejections >= self.max_rejections:
            return Transition.DISPUTE
        return Transition.REJECT

    @staticmethod
    def pending_queue():
        return Verification.query.filter_by(status=VerificationStatus.PENDING).order_by(Verification.id).all()
