"""
Reviews API routes for LawnMates.
Lets either party of a completed job rate the other.
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from lawnmates import db
from lawnmates.errors import ConflictError, ForbiddenError, InvalidStateTransition, ValidationError
from lawnmates.models import Job, JobStatus, Review, User
from lawnmates.services.lookups import get_or_404
from lawnmates.utils import get_json_body, require_int

reviews_bp = Blueprint("reviews", __name__)


def _refresh_rating(user_id):
    """Recompute a user's average rating and review count."""
    avg, count = db.session.query(func.avg(Review.rating), func.count(Review.id)).filter(
        Review.reviewee_id == user_id
    ).one()
    user = db.session.get(User, user_id)
    user.rating = round(float(avg), 2) if avg is not None else 0.0
    user.review_count = count


# ---------------------------------------------------------------------------
# POST /api/reviews -- Create a review
# ---------------------------------------------------------------------------
@reviews_bp.route("", methods=["POST"])
@login_required
def create_review():
    """Review the other party of a completed job.

    Body JSON:
        job_id: int (required)
        reviewee_id: int (required)
        rating: int 1-5 (required)
        comment: str (optional)
    """
    data = get_json_body()
    job_id = require_int(data, "job_id", minimum=1)
    reviewee_id = require_int(data, "reviewee_id", minimum=1)
    rating = require_int(data, "rating")
    if not 1 <= rating <= 5:
        raise ValidationError("rating must be between 1 and 5", field="rating")
    comment = data.get("comment")
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string", field="comment")
    comment = (comment or "").strip() or None

    job = get_or_404(Job, job_id, "Job")
    if not job.is_party(current_user.id):
        raise ForbiddenError("Only the parties of a job can review it")
    if job.status != JobStatus.COMPLETED:
        raise InvalidStateTransition(job.status, "review job", message="Can only review completed jobs")
    if reviewee_id == current_user.id or not job.is_party(reviewee_id):
        raise ValidationError("reviewee_id must be the other party of the job", field="reviewee_id")

    if Review.query.filter_by(job_id=job.id, reviewer_id=current_user.id).first():
        raise ConflictError("You have already reviewed this job")

    review = Review(
        job_id=job.id,
        reviewer_id=current_user.id,
        reviewee_id=reviewee_id,
        rating=rating,
        comment=comment,
    )
    db.session.add(review)
    try:
        db.session.flush()
    except IntegrityError as e:
        db.session.rollback()
        raise ConflictError("You have already reviewed this job") from e

    _refresh_rating(reviewee_id)
    db.session.commit()

    return jsonify({"review": review.to_dict()}), 201


@reviews_bp.route("/job/<int:job_id>", methods=["GET"])
def reviews_for_job(job_id):
    """GET /api/reviews/job/<job_id>"""
    get_or_404(Job, job_id, "Job")
    reviews = Review.query.filter_by(job_id=job_id).order_by(Review.id).all()
    return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200


@reviews_bp.route("/reviewee/<int:user_id>", methods=["GET"])
def reviews_about(user_id):
    """GET /api/reviews/reviewee/<user_id>"""
    user = get_or_404(User, user_id, "User")
    reviews = Review.query.filter_by(reviewee_id=user.id).order_by(Review.created_at.desc()).all()
    return jsonify({
        "reviews": [r.to_dict() for r in reviews],
        "rating": user.rating,
        "review_count": user.review_count,
    }), 200


@reviews_bp.route("/reviewer/<int:user_id>", methods=["GET"])
def reviews_by(user_id):
    """GET /api/reviews/reviewer/<user_id>"""
    get_or_404(User, user_id, "User")
    reviews = Review.query.filter_by(reviewer_id=user_id).order_by(Review.created_at.desc()).all()
    return jsonify({"reviews": [r.to_dict() for r in reviews]}), 200
