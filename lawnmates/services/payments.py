"""
Payment coordinator: escrow holds, payouts and refunds.

Payments follow job state. A payment only moves to released once its job
is completed and only to refunded once its job is cancelled or disputed.
Every payment status change is a conditional UPDATE on the expected
status, so a duplicate webhook or a concurrent release cannot apply twice.
"""
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from lawnmates import db
from lawnmates.errors import (
    ConflictError,
    ExternalServiceError,
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    PayoutFailed,
    ValidationError,
)
from lawnmates.models import (
    ActivityLog,
    Job,
    JobStatus,
    Payment,
    PaymentStatus,
    User,
    UserRole,
    utcnow,
)
from lawnmates.realtime.notifier import NotificationType
from lawnmates.services.lookups import get_or_404
from lawnmates.services.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

REFUNDABLE_JOB_STATUSES = frozenset({JobStatus.CANCELLED, JobStatus.DISPUTED})
CLOSED_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.DISPUTED})


def format_amount(amount, currency):
    return '${:.2f} {}'.format(amount / 100.0, currency.upper())


class PaymentCoordinator:

    def __init__(self, gateway, notifier):
        self.gateway = gateway
        self.notifier = notifier

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    @staticmethod
    def payment_in(job_id, *statuses):
        return Payment.query.filter(
            Payment.job_id == job_id, Payment.status.in_(statuses)
        ).order_by(Payment.id.desc()).first()

    # ------------------------------------------------------------------
    # Guarded status change
    # ------------------------------------------------------------------
    def _move(self, payment, expected, target, user_id=None, **values):
        """Compare-and-set the payment status; False if someone else moved it first."""
        result = db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == expected)
            .values(status=target, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        db.session.refresh(payment)
        ActivityLog.log_action(
            entity_type='payment',
            entity_id=payment.id,
            action=target.value,
            user_id=user_id,
            old_values={'status': expected.value},
            new_values={'status': target.value, 'job_id': payment.job_id},
        )
        logger.info('Payment %s for job %s: %s -> %s', payment.id, payment.job_id, expected.value, target.value)
        return True

    # ------------------------------------------------------------------
    # Escrow creation
    # ------------------------------------------------------------------
    def _claim_payment(self, job):
        """Insert the job's open payment row; the partial unique index lets only one exist."""
        payment = Payment(
            job_id=job.id, amount=job.price, currency=self.gateway.currency, status=PaymentStatus.PENDING,
        )
        db.session.add(payment)
        try:
            db.session.flush()
        except IntegrityError as e:
            logger.info('Job %s already has an open payment', job.id)
            raise ConflictError(
                'A payment for this job is already in progress; refresh and retry', category='payment',
            ) from e
        return payment

    def _open_intent(self, job, owner, payment=None):
        """Create a provider intent for the job price and attach it to a pending payment."""
        if payment is None:
            # claim the row before talking to the provider so a losing racer creates no intent
            payment = self._claim_payment(job)

        owner.stripe_customer_id = self.gateway.ensure_customer(
            owner.email, owner.full_name, owner.stripe_customer_id
        )
        if payment.stripe_payment_intent_id:
            self.gateway.cancel_intent(payment.stripe_payment_intent_id)

        intent_id, client_secret = self.gateway.create_intent(
            amount=job.price,
            metadata={'job_id': str(job.id), 'owner_id': str(owner.id)},
            customer_id=owner.stripe_customer_id,
        )

        payment.amount = job.price
        payment.status = PaymentStatus.PENDING
        payment.stripe_payment_intent_id = intent_id
        db.session.flush()
        return payment, client_secret

    def ensure_intent(self, uow, job):
        """Make sure an accepted job has a payment to hold its funds.

        Runs inside the accept transition: if the provider call fails the
        accept is rolled back with it.
        """
        existing = self.payment_in(job.id, PaymentStatus.PENDING, PaymentStatus.ESCROW)
        if existing is not None:
            return existing

        owner = get_or_404(User, job.owner_id, 'Owner')
        payment, _ = self._open_intent(job, owner)
        ActivityLog.log_action(
            entity_type='payment', entity_id=payment.id, action='created',
            new_values={'status': payment.status.value, 'amount': payment.amount, 'job_id': job.id},
        )
        uow.notify(
            job.owner_id, NotificationType.PAYMENT,
            'Authorize {} to hold in escrow for "{}"'.format(
                format_amount(payment.amount, payment.currency), job.title
            ),
            {'jobId': job.id, 'paymentId': payment.id, 'amount': payment.amount},
        )
        return payment

    def discard_pending(self, job, user_id=None):
        """Drop an unpaid intent before the job price changes (caller commits)."""
        pending = self.payment_in(job.id, PaymentStatus.PENDING)
        if pending is None:
            return False
        self.gateway.cancel_intent(pending.stripe_payment_intent_id)
        ActivityLog.log_action(
            entity_type='payment', entity_id=pending.id, action='discarded', user_id=user_id,
            old_values={'status': pending.status.value, 'amount': pending.amount},
        )
        db.session.delete(pending)
        logger.info('Discarded pending payment %s of job %s', pending.id, job.id)
        return True

    def create_escrow(self, job_id, actor, amount=None):
        """Owner checkout: create or refresh the pending payment and its intent.

        Returns (payment, client_secret).
        """
        with UnitOfWork(self.notifier):
            job = get_or_404(Job, job_id, 'Job', category='payment')
            if not (actor.role == UserRole.PROPERTY_OWNER and actor.user_id == job.owner_id):
                raise ForbiddenError('Only the job owner can pay for this job', category='payment')

            if amount is not None:
                if isinstance(amount, bool) or not isinstance(amount, int):
                    raise ValidationError('amount must be an integer in minor units', category='payment')
                if amount != job.price:
                    raise ValidationError(
                        'amount must equal the job price', category='payment',
                        expected=job.price, received=amount,
                    )

            if job.status in CLOSED_JOB_STATUSES:
                raise InvalidStateTransition(job.status, 'create payment', category='payment')

            if self.payment_in(job.id, PaymentStatus.ESCROW, PaymentStatus.RELEASED) is not None:
                raise ConflictError('Funds for this job are already held', category='payment')

            owner = get_or_404(User, job.owner_id, 'Owner')
            pending = self.payment_in(job.id, PaymentStatus.PENDING)
            payment, client_secret = self._open_intent(job, owner, pending)
            ActivityLog.log_action(
                entity_type='payment', entity_id=payment.id, action='intent_created',
                user_id=actor.user_id,
                new_values={'status': payment.status.value, 'amount': payment.amount, 'job_id': job.id},
            )
        return payment, client_secret

    # ------------------------------------------------------------------
    # Confirmation (webhook / client confirm)
    # ------------------------------------------------------------------
    def confirm_escrow(self, intent_id):
        """Move the intent's payment from pending to escrow. Safe to call repeatedly."""
        with UnitOfWork(self.notifier) as uow:
            payment = Payment.query.filter_by(stripe_payment_intent_id=intent_id).first()
            if payment is None:
                logger.info('Confirmation for unknown intent %s ignored', intent_id)
                return None
            if payment.status != PaymentStatus.PENDING:
                logger.info('Duplicate confirmation for payment %s (%s)', payment.id, payment.status.value)
                return payment

            other = self.payment_in(payment.job_id, PaymentStatus.ESCROW)
            if other is not None and other.id != payment.id:
                logger.error(
                    'Job %s already has payment %s in escrow; leaving payment %s pending',
                    payment.job_id, other.id, payment.id,
                )
                return payment

            if not self._move(payment, PaymentStatus.PENDING, PaymentStatus.ESCROW):
                db.session.refresh(payment)
                return payment

            job = db.session.get(Job, payment.job_id)
            uow.notify(
                job.owner_id, NotificationType.PAYMENT,
                '{} is now held in escrow for "{}"'.format(
                    format_amount(payment.amount, payment.currency), job.title
                ),
                {'jobId': job.id, 'paymentId': payment.id, 'status': payment.status.value},
            )
            if job.landscaper_id:
                uow.notify(
                    job.landscaper_id, NotificationType.PAYMENT,
                    'Funds for "{}" are secured in escrow'.format(job.title),
                    {'jobId': job.id, 'paymentId': payment.id, 'status': payment.status.value},
                )

            if job.status == JobStatus.CANCELLED:
                # Funds arrived after the job was cancelled: hand them straight back
                self._refund(uow, job, payment, user_id=None)
        return payment

    def confirm_from_client(self, intent_id, actor):
        """Client-side confirmation, verified against the provider before trusting it."""
        payment = Payment.query.filter_by(stripe_payment_intent_id=intent_id).first()
        if payment is None:
            raise NotFoundError('Payment not found', category='payment')
        job = db.session.get(Job, payment.job_id)
        if actor.user_id != job.owner_id and actor.role != UserRole.ADMIN:
            raise ForbiddenError('Not authorised for this payment', category='payment')

        status = self.gateway.intent_status(intent_id)
        if status not in ('succeeded', 'requires_capture'):
            raise ValidationError(
                'Payment has not been authorized yet', category='payment', provider_status=status,
            )
        return self.confirm_escrow(intent_id)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------
    def mark_release_eligible(self, uow, job):
        payment = self.payment_in(job.id, PaymentStatus.ESCROW)
        if payment is None:
            logger.warning('Job %s completed without a payment in escrow', job.id)
            return None
        payment.release_eligible_at = utcnow()
        uow.notify(
            job.owner_id, NotificationType.PAYMENT,
            'Payment for "{}" is ready to be released'.format(job.title),
            {'jobId': job.id, 'paymentId': payment.id},
        )
        return payment

    def release_payment(self, job_id, actor):
        """Transfer escrowed funds to the landscaper of a completed job."""
        with UnitOfWork(self.notifier) as uow:
            job = get_or_404(Job, job_id, 'Job', category='payment')
            if actor.role != UserRole.ADMIN and actor.user_id != job.owner_id:
                raise ForbiddenError('Only the job owner can release payment', category='payment')
            if job.status != JobStatus.COMPLETED:
                raise InvalidStateTransition(job.status, 'release payment', category='payment')

            payment = self.payment_in(job.id, PaymentStatus.ESCROW)
            if payment is None:
                if self.payment_in(job.id, PaymentStatus.RELEASED) is not None:
                    raise ConflictError('Payment has already been released', category='payment')
                raise NotFoundError('No payment in escrow for this job', category='payment')

            landscaper = get_or_404(User, job.landscaper_id, 'Landscaper', category='payment')
            if not landscaper.stripe_connect_id:
                raise ValidationError('Landscaper has no payout account connected', category='payment')

            try:
                transfer_id = self.gateway.create_transfer(
                    amount=payment.amount,
                    destination=landscaper.stripe_connect_id,
                    transfer_group='job-{}'.format(job.id),
                    idempotency_key='release-payment-{}'.format(payment.id),
                )
            except ExternalServiceError as e:
                logger.error('Payout for payment %s failed; funds stay in escrow', payment.id)
                raise PayoutFailed(
                    'Payout to the landscaper failed; funds remain in escrow, please retry',
                    status_code=e.status_code,
                ) from e

            if not self._move(payment, PaymentStatus.ESCROW, PaymentStatus.RELEASED,
                              user_id=actor.user_id,
                              stripe_transfer_id=transfer_id, released_at=utcnow()):
                raise ConflictError('Payment was released concurrently', category='payment')

            amount_text = format_amount(payment.amount, payment.currency)
            uow.notify(
                job.landscaper_id, NotificationType.PAYMENT,
                'You have been paid {} for "{}"'.format(amount_text, job.title),
                {'jobId': job.id, 'paymentId': payment.id, 'status': payment.status.value},
            )
            uow.notify(
                job.owner_id, NotificationType.PAYMENT,
                'Payment of {} released for "{}"'.format(amount_text, job.title),
                {'jobId': job.id, 'paymentId': payment.id, 'status': payment.status.value},
            )
        return payment

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------
    def _refund(self, uow, job, payment, user_id):
        if job.status not in REFUNDABLE_JOB_STATUSES:
            raise InvalidStateTransition(job.status, 'refund payment', category='payment')

        refund_id = self.gateway.refund(
            payment.stripe_payment_intent_id,
            idempotency_key='refund-payment-{}'.format(payment.id),
        )
        if not self._move(payment, PaymentStatus.ESCROW, PaymentStatus.REFUNDED, user_id=user_id,
                          refund_reference=refund_id, refunded_at=utcnow()):
            raise ConflictError('Payment was changed concurrently', category='payment')

        uow.notify(
            job.owner_id, NotificationType.PAYMENT,
            'Refund of {} issued for "{}"'.format(format_amount(payment.amount, payment.currency), job.title),
            {'jobId': job.id, 'paymentId': payment.id, 'status': payment.status.value},
        )
        return payment

    def settle_cancellation(self, uow, job, user_id):
        """Runs inside the cancel transition: refund escrow, drop open intents."""
        escrow = self.payment_in(job.id, PaymentStatus.ESCROW)
        if escrow is not None:
            return self._refund(uow, job, escrow, user_id)

        pending = self.payment_in(job.id, PaymentStatus.PENDING)
        if pending is not None:
            self.gateway.cancel_intent(pending.stripe_payment_intent_id)
            logger.info('Cancelled open intent for payment %s of job %s', pending.id, job.id)
        return None

    def refund_payment(self, job_id, actor):
        """Admin refund of a cancelled or disputed job's escrow."""
        with UnitOfWork(self.notifier) as uow:
            job = get_or_404(Job, job_id, 'Job', category='payment')
            if actor.role != UserRole.ADMIN:
                raise ForbiddenError('Only admins can issue refunds', category='payment')
            if job.status not in REFUNDABLE_JOB_STATUSES:
                raise InvalidStateTransition(job.status, 'refund payment', category='payment')
            payment = self.payment_in(job.id, PaymentStatus.ESCROW)
            if payment is None:
                raise NotFoundError('No payment in escrow for this job', category='payment')
            self._refund(uow, job, payment, actor.user_id)
            if job.landscaper_id:
                uow.notify(
                    job.landscaper_id, NotificationType.PAYMENT,
                    'Escrow for "{}" was refunded to the owner'.format(job.title),
                    {'jobId': job.id, 'paymentId': payment.id},
                )
        return payment

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    def handle_webhook_event(self, event):
        event_type = event.get('type')
        data_object = (event.get('data') or {}).get('object') or {}

        if event_type in ('payment_intent.succeeded', 'payment_intent.amount_capturable_updated'):
            self.confirm_escrow(data_object.get('id', ''))
        elif event_type == 'payment_intent.payment_failed':
            self._handle_payment_failed(data_object)
        elif event_type == 'charge.refunded':
            self._handle_charge_refunded(data_object)
        else:
            logger.debug('Ignoring webhook event %s', event_type)
        return event_type

    def _handle_payment_failed(self, intent):
        payment = Payment.query.filter_by(stripe_payment_intent_id=intent.get('id', '')).first()
        if payment is None:
            return
        job = db.session.get(Job, payment.job_id)
        error = (intent.get('last_payment_error') or {}).get('message')
        logger.warning('Payment intent for payment %s failed: %s', payment.id, error)
        self.notifier.notify(
            job.owner_id, NotificationType.PAYMENT,
            'Your payment for "{}" could not be processed'.format(job.title),
            {'jobId': job.id, 'paymentId': payment.id, 'reason': error},
        )

    def _handle_charge_refunded(self, charge):
        """Refund issued from the provider dashboard: mirror it when the job allows."""
        intent_id = charge.get('payment_intent', '')
        payment = Payment.query.filter_by(stripe_payment_intent_id=intent_id).first() if intent_id else None
        if payment is None or payment.status != PaymentStatus.ESCROW:
            return

        with UnitOfWork(self.notifier) as uow:
            job = db.session.get(Job, payment.job_id)
            if job.status not in REFUNDABLE_JOB_STATUSES:
                logger.error(
                    'Charge for payment %s refunded externally while job %s is %s',
                    payment.id, job.id, job.status.value,
                )
                return
            if self._move(payment, PaymentStatus.ESCROW, PaymentStatus.REFUNDED,
                          refund_reference=charge.get('id'), refunded_at=utcnow()):
                uow.notify(
                    job.owner_id, NotificationType.PAYMENT,
                    'Refund processed for "{}"'.format(job.title),
                    {'jobId': job.id, 'paymentId': payment.id},
                )
