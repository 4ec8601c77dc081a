"""Job model"""
from lawnmates import db
from .base import BaseModel, enum_type
from .enums import JobStatus, PaymentStatus


class Job(BaseModel):
    """
    Job model - a unit of landscaping work posted by a property owner

    ``status`` is only ever written through the job state machine's
    guarded update, never assigned directly by route handlers.
    """
    __tablename__ = 'jobs'

    owner_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    landscaper_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'), nullable=False)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Integer, nullable=False)  # minor currency units
    status = db.Column(enum_type(JobStatus), nullable=False, default=JobStatus.POSTED)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True))
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurrence_interval = db.Column(db.String(20))
    requires_equipment = db.Column(db.Boolean, nullable=False, default=False)

    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)

    __table_args__ = (
        db.Index('idx_jobs_status', 'status'),
        db.Index('idx_jobs_owner_id', 'owner_id'),
        db.Index('idx_jobs_landscaper_id', 'landscaper_id'),
        db.CheckConstraint('price > 0', name='ck_jobs_price_positive'),
    )

    owner = db.relationship('User', foreign_keys=[owner_id])
    landscaper = db.relationship('User', foreign_keys=[landscaper_id])
    property_record = db.relationship('Property', backref=db.backref('jobs', lazy='dynamic'))

    payments = db.relationship(
        'Payment', backref='job', lazy='dynamic', cascade='all, delete-orphan',
        order_by='Payment.id',
    )
    verifications = db.relationship(
        'Verification', backref='job', lazy='dynamic', cascade='all, delete-orphan',
        order_by='Verification.id',
    )
    messages = db.relationship(
        'Message', backref='job', lazy='dynamic', cascade='all, delete-orphan',
        order_by='Message.id',
    )

    def __repr__(self):
        return f'<Job {self.id} {self.status.value}>'

    def is_party(self, user_id):
        """True if the user is the owner or the assigned landscaper"""
        return user_id is not None and user_id in (self.owner_id, self.landscaper_id)

    def counterparty_of(self, user_id):
        if user_id == self.owner_id:
            return self.landscaper_id
        if user_id == self.landscaper_id:
            return self.owner_id
        return None

    def has_locked_price(self):
        """Price is frozen once funds are held or paid out against it"""
        from .payment import Payment
        return Payment.query.filter(
            Payment.job_id == self.id,
            Payment.status.in_([PaymentStatus.ESCROW, PaymentStatus.RELEASED]),
        ).first() is not None

    def to_dict(self, include_relationships=False):
        data = super().to_dict()
        if include_relationships:
            data['property'] = self.property_record.to_dict() if self.property_record else None
            data['payments'] = [p.to_dict() for p in self.payments]
            data['verifications'] = [v.to_dict() for v in self.verifications]
        return data
