"""Payment model"""
from lawnmates import db
from .base import BaseModel, enum_type
from .enums import PaymentStatus


class Payment(BaseModel):
    """
    Payment model - custody of the funds for one job

    pending -> escrow -> released | refunded
    """
    __tablename__ = 'payments'

    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)

    amount = db.Column(db.Integer, nullable=False)  # minor currency units, equals job.price
    currency = db.Column(db.String(3), nullable=False, default='cad')
    status = db.Column(enum_type(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    # Payment processor references
    stripe_payment_intent_id = db.Column(db.String(255), unique=True)
    stripe_transfer_id = db.Column(db.String(255))
    refund_reference = db.Column(db.String(255))

    release_eligible_at = db.Column(db.DateTime(timezone=True))
    released_at = db.Column(db.DateTime(timezone=True))
    refunded_at = db.Column(db.DateTime(timezone=True))

    # At most one open (pending or escrow) payment per job, enforced by the database
    __table_args__ = (
        db.Index('idx_payments_job_id', 'job_id'),
        db.Index('idx_payments_status', 'status'),
        db.Index(
            'uq_payments_open_job', 'job_id',
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'escrow')"),
            postgresql_where=db.text("status IN ('pending', 'escrow')"),
        ),
    )

    def __repr__(self):
        return f'<Payment {self.id} job={self.job_id} {self.status.value}>'

    @property
    def is_release_eligible(self):
        return self.status == PaymentStatus.ESCROW and self.release_eligible_at is not None

    def to_dict(self):
        data = super().to_dict()
        data['is_release_eligible'] = self.is_release_eligible
        return data
