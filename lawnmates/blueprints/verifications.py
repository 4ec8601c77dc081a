"""
Verifications blueprint
Completion evidence from landscapers and its review by admins
"""
from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from lawnmates.errors import ForbiddenError
from lawnmates.services import get_services
from lawnmates.utils import current_actor, get_json_body, require_int

verifications_bp = Blueprint('verifications', __name__)


@verifications_bp.route('', methods=['POST'])
@login_required
def submit_verification():
    """
    Submit before/after photos for a job awaiting verification

    POST /api/verifications
    Body: {"job_id": 1, "before_photo": "https://...", "after_photo": "https://..."}
    """
    data = get_json_body()
    job_id = require_int(data, 'job_id', minimum=1, category='verification')
    verification = get_services().verifications.submit(
        job_id, current_actor(), data.get('before_photo'), data.get('after_photo'),
    )
    return jsonify({
        'message': 'Verification submitted for review',
        'verification': verification.to_dict(),
    }), 201


@verifications_bp.route('', methods=['GET'])
@login_required
def pending_verifications():
    """GET /api/verifications (admin review queue)"""
    if not current_user.is_admin():
        raise ForbiddenError('Only admins can view the review queue', category='verification')
    queue = get_services().verifications.pending_queue()
    return jsonify({'verifications': [v.to_dict() for v in queue], 'total': len(queue)}), 200


@verifications_bp.route('/<int:verification_id>/review', methods=['POST'])
@login_required
def review_verification(verification_id):
    """
    Approve or reject a pending verification

    POST /api/verifications/<id>/review
    Body: {"approved": true, "trust_score": 92}
    """
    data = get_json_body()
    verification = get_services().verifications.review(
        verification_id, current_actor(), data.get('approved'), data.get('trust_score'),
    )
    job = verification.job
    return jsonify({
        'message': 'Verification {}'.format(verification.status.value),
        'verification': verification.to_dict(),
        'job': job.to_dict(include_relationships=True),
    }), 200
