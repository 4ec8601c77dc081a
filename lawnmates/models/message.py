"""Message model"""
from lawnmates import db
from .base import BaseModel, enum_type
from .enums import MessageStatus


class Message(BaseModel):
    """
    Message model - job thread between the owner and the landscaper
    """
    __tablename__ = 'messages'

    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    content = db.Column(db.Text, nullable=False)
    status = db.Column(enum_type(MessageStatus), nullable=False, default=MessageStatus.SENT)

    __table_args__ = (
        db.Index('idx_messages_job_id', 'job_id', 'created_at'),
        db.Index('idx_messages_receiver_status', 'receiver_id', 'status'),
    )

    sender = db.relationship('User', foreign_keys=[sender_id])

    def __repr__(self):
        return f'<Message {self.id} job={self.job_id}>'

    def to_dict(self):
        data = super().to_dict()
        data['sender_name'] = self.sender.full_name or self.sender.username if self.sender else None
        return data
