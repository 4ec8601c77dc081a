"""Review model"""
from lawnmates import db
from .base import BaseModel


class Review(BaseModel):
    """
    Review model - one party's rating of the other after a completed job
    """
    __tablename__ = 'reviews'

    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id', ondelete='CASCADE'), nullable=False)
    reviewer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    reviewee_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint('job_id', 'reviewer_id', name='uq_reviews_job_reviewer'),
        db.CheckConstraint('rating >= 1 AND rating <= 5', name='ck_reviews_rating_range'),
        db.Index('idx_reviews_reviewee_id', 'reviewee_id'),
    )

    def __repr__(self):
        return f'<Review job={self.job_id} {self.rating}/5>'
