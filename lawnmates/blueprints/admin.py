"""
Admin blueprint
Administrative views over users and jobs, dispute escalation and announcements
"""
from functools import wraps

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from lawnmates.errors import ForbiddenError, ValidationError
from lawnmates.models import Job, JobStatus, User, UserRole
from lawnmates.services import Transition, get_services
from lawnmates.utils import current_actor, get_json_body, paginated, require_choice

admin_bp = Blueprint('admin', __name__)


def require_admin(f):
    """Decorator to require admin role"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_admin():
            raise ForbiddenError('Access denied. Admin role required')
        return f(*args, **kwargs)

    return decorated_function


@admin_bp.route('/users', methods=['GET'])
@login_required
@require_admin
def list_users():
    """
    List users

    GET /api/admin/users?role=landscaper
    """
    query = User.query
    role = request.args.get('role')
    if role:
        query = query.filter(User.role == require_choice(role, UserRole, 'role'))

    return jsonify(paginated(
        query.order_by(User.id), 'users', lambda u: u.to_dict(include_private=True)
    )), 200


@admin_bp.route('/jobs', methods=['GET'])
@login_required
@require_admin
def list_jobs():
    """
    List every job

    GET /api/admin/jobs?status=disputed
    """
    query = Job.query
    status = request.args.get('status')
    if status:
        query = query.filter(Job.status == require_choice(status, JobStatus, 'status'))

    return jsonify(paginated(query.order_by(Job.created_at.desc()), 'jobs', lambda j: j.to_dict())), 200


@admin_bp.route('/jobs/<int:job_id>/escalate', methods=['POST'])
@login_required
@require_admin
def escalate_job(job_id):
    """
    Move an active job to dispute

    POST /api/admin/jobs/<job_id>/escalate
    """
    job = get_services().jobs.apply(job_id, current_actor(), Transition.ESCALATE)
    return jsonify({'message': 'Job escalated to dispute', 'job': job.to_dict(include_relationships=True)}), 200


@admin_bp.route('/realtime', methods=['GET'])
@login_required
@require_admin
def realtime_status():
    """GET /api/admin/realtime (open channels in this process)"""
    registry = get_services().registry
    return jsonify({
        'connections': registry.connected_count(),
        'users': registry.connected_user_ids(),
    }), 200


@admin_bp.route('/broadcast', methods=['POST'])
@login_required
@require_admin
def broadcast():
    """
    Push a system announcement to every open channel

    POST /api/admin/broadcast
    Body: {"message": "Maintenance at 22:00 UTC"}
    """
    data = get_json_body()
    message = data.get('message')
    if not isinstance(message, str) or not message.strip():
        raise ValidationError('message is required', field='message')
    extra = data.get('data')
    if extra is not None and not isinstance(extra, dict):
        raise ValidationError('data must be an object', field='data')
    delivered = get_services().notifier.broadcast(message.strip(), extra)
    return jsonify({'delivered': delivered}), 200
