"""Verification model"""
from lawnmates import db
from .base import BaseModel, enum_type
from .enums import VerificationStatus


class Verification(BaseModel):
    """
    Verification model - before/after evidence for a completed job
    """
    __tablename__ = 'verifications'

    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    before_photo = db.Column(db.String(1000), nullable=False)
    after_photo = db.Column(db.String(1000), nullable=False)
    status = db.Column(enum_type(VerificationStatus), nullable=False, default=VerificationStatus.PENDING)
    trust_score = db.Column(db.Float)
    admin_id = db.Column(db.Integer, db.ForeignKey('users.id'))
    approved_at = db.Column(db.DateTime(timezone=True))

    # At most one pending verification per job, enforced by the database
    __table_args__ = (
        db.Index('idx_verifications_job_id', 'job_id'),
        db.Index(
            'uq_verifications_pending_job', 'job_id',
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
    )

    def __repr__(self):
        return f'<Verification {self.id} job={self.job_id} {self.status.value}>'
