"""
Per-job message threads between the owner and the assigned landscaper
"""
import logging

from sqlalchemy import func, or_, update

from lawnmates import db
from lawnmates.errors import ForbiddenError, ValidationError
from lawnmates.models import Job, Message, MessageStatus, UserRole, utcnow
from lawnmates.realtime.notifier import NotificationType
from lawnmates.services.lookups import get_or_404

logger = logging.getLogger(__name__)


class MessagingService:

    def __init__(self, notifier, max_length=2000):
        self.notifier = notifier
        self.max_length = max_length

    @staticmethod
    def _check_participant(job, actor):
        if actor.role != UserRole.ADMIN and not job.is_party(actor.user_id):
            raise ForbiddenError('You are not part of this job')

    def send(self, job_id, actor, receiver_id, content):
        """Store a message and push it to the receiver's open channels."""
        job = get_or_404(Job, job_id, 'Job')
        self._check_participant(job, actor)

        if isinstance(receiver_id, bool) or not isinstance(receiver_id, int):
            raise ValidationError('receiver_id must be a user id', field='receiver_id')
        if not job.is_party(receiver_id):
            raise ValidationError('Receiver is not part of this job', field='receiver_id')
        if receiver_id == actor.user_id:
            raise ValidationError('You cannot message yourself', field='receiver_id')

        if not isinstance(content, str) or not content.strip():
            raise ValidationError('Message content is required', field='content')
        content = content.strip()
        if len(content) > self.max_length:
            raise ValidationError(
                f'Message exceeds {self.max_length} characters', field='content',
            )

        message = Message(
            job_id=job.id,
            sender_id=actor.user_id,
            receiver_id=receiver_id,
            content=content,
            status=MessageStatus.SENT,
        )
        db.session.add(message)
        db.session.commit()

        delivered = self.notifier.notify(
            receiver_id, NotificationType.MESSAGE,
            'New message about "{}"'.format(job.title),
            {
                'jobId': job.id,
                'messageId': message.id,
                'senderId': actor.user_id,
                'content': message.content,
            },
        )
        if delivered:
            message.status = MessageStatus.DELIVERED
            db.session.commit()

        logger.info('Message %s on job %s sent to user %s', message.id, job.id, receiver_id)
        return message

    def thread(self, job_id, actor):
        job = get_or_404(Job, job_id, 'Job')
        self._check_participant(job, actor)
        return Message.query.filter_by(job_id=job.id).order_by(Message.created_at, Message.id).all()

    def mark_read(self, job_id, actor):
        """Mark every message to the caller in this thread as read; returns the count."""
        job = get_or_404(Job, job_id, 'Job')
        self._check_participant(job, actor)
        result = db.session.execute(
            update(Message)
            .where(
                Message.job_id == job.id,
                Message.receiver_id == actor.user_id,
                Message.status != MessageStatus.READ,
            )
            .values(status=MessageStatus.READ, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount

    @staticmethod
    def conversations(actor):
        """Latest message and unread count for every job thread the caller is in."""
        jobs = Job.query.filter(
            or_(Job.owner_id == actor.user_id, Job.landscaper_id == actor.user_id)
        ).all()

        unread = dict(
            db.session.query(Message.job_id, func.count(Message.id))
            .filter(Message.receiver_id == actor.user_id, Message.status != MessageStatus.READ)
            .group_by(Message.job_id)
            .all()
        )

        conversations = []
        for job in jobs:
            latest = job.messages.order_by(None).order_by(Message.id.desc()).first()
            if latest is None:
                continue
            other_id = job.counterparty_of(actor.user_id)
            conversations.append({
                'job_id': job.id,
                'job_title': job.title,
                'job_status': job.status.value,
                'other_user_id': other_id,
                'last_message': latest.to_dict(),
                'unread_count': unread.get(job.id, 0),
            })

        conversations.sort(key=lambda c: c['last_message']['id'], reverse=True)
        return conversations
