"""
Jobs blueprint
Handles job posting, listing and the lifecycle transitions
"""
import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import or_, update

from lawnmates import db
from lawnmates.errors import ConflictError, ForbiddenError, InvalidStateTransition, ValidationError
from lawnmates.models import (
    ACTIVE_JOB_STATUSES,
    ActivityLog,
    Job,
    JobStatus,
    Payment,
    Property,
    RecurrenceInterval,
    UserRole,
    Verification,
    utcnow,
)
from lawnmates.services import Transition, get_services
from lawnmates.services.lookups import get_or_404
from lawnmates.utils import (
    as_utc,
    current_actor,
    get_json_body,
    paginated,
    parse_datetime,
    require_choice,
    require_fields,
    require_int,
)

logger = logging.getLogger(__name__)

jobs_bp = Blueprint('jobs', __name__)

EDITABLE_FIELDS = (
    'title', 'description', 'price', 'start_date', 'end_date',
    'is_recurring', 'recurrence_interval', 'requires_equipment',
)


def _can_view(job):
    return current_user.is_admin() or job.is_party(current_user.id)


def _viewable_job(job_id):
    job = get_or_404(Job, job_id, 'Job', category='job')
    if not _can_view(job):
        raise ForbiddenError('Access denied', category='job')
    return job


def _optional_float(data, field):
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'{field} must be a number', field=field)
    return float(value)


def _recurrence(data):
    is_recurring = bool(data.get('is_recurring', False))
    interval = data.get('recurrence_interval')
    if not is_recurring:
        return False, None
    if not interval:
        raise ValidationError('recurrence_interval is required for recurring jobs', field='recurrence_interval')
    return True, require_choice(interval, RecurrenceInterval, 'recurrence_interval').value


def _property_for(data):
    """Existing property of the caller, or a new one from the request fields"""
    property_id = data.get('property_id')
    if property_id is not None:
        prop = get_or_404(Property, require_int(data, 'property_id', minimum=1), 'Property')
        if prop.owner_id != current_user.id:
            raise ForbiddenError('Property belongs to another owner')
        return prop

    require_fields(data, ['address', 'city', 'state', 'zip_code'])
    prop = Property(
        owner_id=current_user.id,
        address=data['address'],
        city=data['city'],
        state=data['state'],
        zip_code=data['zip_code'],
        property_type=data.get('property_type') or 'residential',
        size=require_int(data, 'size', minimum=1, required=False),
        latitude=_optional_float(data, 'latitude'),
        longitude=_optional_float(data, 'longitude'),
    )
    db.session.add(prop)
    db.session.flush()
    return prop


@jobs_bp.route('', methods=['POST'])
@login_required
def create_job():
    """
    Post a new job

    POST /api/jobs
    Body: {
        "title": "Weekly mow",
        "description": "Front and back lawn",
        "price": 4500,
        "start_date": "2024-06-01T09:00:00Z",
        "property_id": 1            (or address, city, state, zip_code)
    }
    """
    if current_user.role != UserRole.PROPERTY_OWNER:
        raise ForbiddenError('Only property owners can post jobs', category='job')

    data = get_json_body()
    require_fields(data, ['title', 'description', 'price', 'start_date'])
    price = require_int(data, 'price', minimum=1)
    start_date = parse_datetime(data['start_date'], 'start_date')
    end_date = parse_datetime(data['end_date'], 'end_date') if data.get('end_date') else None
    if end_date is not None and end_date < start_date:
        raise ValidationError('end_date must not be before start_date', field='end_date')
    is_recurring, interval = _recurrence(data)

    prop = _property_for(data)
    job = Job(
        owner_id=current_user.id,
        property_id=prop.id,
        title=data['title'],
        description=data['description'],
        price=price,
        status=JobStatus.POSTED,
        start_date=start_date,
        end_date=end_date,
        is_recurring=is_recurring,
        recurrence_interval=interval,
        requires_equipment=bool(data.get('requires_equipment', False)),
        latitude=_optional_float(data, 'latitude') if 'latitude' in data else prop.latitude,
        longitude=_optional_float(data, 'longitude') if 'longitude' in data else prop.longitude,
    )
    db.session.add(job)
    db.session.flush()
    ActivityLog.log_action(
        entity_type='job', entity_id=job.id, action='created', user_id=current_user.id,
        new_values={'status': job.status.value, 'price': job.price},
        ip_address=request.remote_addr,
    )
    db.session.commit()
    logger.info('Job %s posted by owner %s', job.id, current_user.id)

    return jsonify({
        'message': 'Job posted successfully',
        'job': job.to_dict(include_relationships=True),
    }), 201


@jobs_bp.route('', methods=['GET'])
@login_required
def list_jobs():
    """
    List jobs visible to the caller

    GET /api/jobs?status=posted&page=1&per_page=20
    Landscapers see open jobs, owners their own, admins everything.
    """
    query = Job.query
    if current_user.is_landscaper():
        query = query.filter(Job.status == JobStatus.POSTED, Job.landscaper_id.is_(None))
    elif not current_user.is_admin():
        query = query.filter(Job.owner_id == current_user.id)

    status = request.args.get('status')
    if status:
        query = query.filter(Job.status == require_choice(status, JobStatus, 'status'))

    return jsonify(paginated(query.order_by(Job.created_at.desc()), 'jobs', lambda j: j.to_dict())), 200


def _my_jobs_query():
    return Job.query.filter(or_(Job.owner_id == current_user.id, Job.landscaper_id == current_user.id))


@jobs_bp.route('/active', methods=['GET'])
@login_required
def active_jobs():
    """GET /api/jobs/active"""
    jobs = _my_jobs_query().filter(Job.status.in_(ACTIVE_JOB_STATUSES)).order_by(Job.start_date).all()
    return jsonify({'jobs': [job.to_dict() for job in jobs]}), 200


@jobs_bp.route('/mine', methods=['GET'])
@login_required
def my_jobs():
    """GET /api/jobs/mine"""
    jobs = _my_jobs_query().order_by(Job.created_at.desc()).all()
    return jsonify({'jobs': [job.to_dict() for job in jobs]}), 200


@jobs_bp.route('/<int:job_id>', methods=['GET'])
@login_required
def get_job(job_id):
    """GET /api/jobs/<job_id>"""
    job = _viewable_job(job_id)
    return jsonify({'job': job.to_dict(include_relationships=True)}), 200


@jobs_bp.route('/<int:job_id>', methods=['PATCH'])
@login_required
def update_job(job_id):
    """
    Edit a job that has not been accepted yet

    PATCH /api/jobs/<job_id>
    Body: any of title, description, price, start_date, end_date,
          is_recurring, recurrence_interval, requires_equipment

    Every field is validated before anything is written. The edit is a
    conditional UPDATE on status 'posted', so an accept that commits first
    wins and the edit is refused instead of changing the price under it.
    """
    job = get_or_404(Job, job_id, 'Job', category='job')
    if job.owner_id != current_user.id:
        raise ForbiddenError('Only the job owner can edit this job', category='job')
    if job.status != JobStatus.POSTED:
        raise InvalidStateTransition(job.status, 'edit job')

    data = get_json_body()
    unknown = sorted(set(data) - set(EDITABLE_FIELDS))
    if unknown:
        raise ValidationError(f'Fields cannot be edited: {", ".join(unknown)}', fields=unknown)

    values = {}

    if 'price' in data:
        price = require_int(data, 'price', minimum=1)
        if price != job.price:
            if job.has_locked_price():
                raise InvalidStateTransition(
                    job.status, 'change price',
                    message='Price cannot change once funds are held for this job',
                )
            values['price'] = price

    for field in ('title', 'description'):
        if field in data:
            if not isinstance(data[field], str) or not data[field].strip():
                raise ValidationError(f'{field} cannot be empty', field=field)
            values[field] = data[field].strip()

    if 'start_date' in data:
        values['start_date'] = parse_datetime(data['start_date'], 'start_date')
    if 'end_date' in data:
        values['end_date'] = parse_datetime(data['end_date'], 'end_date') if data['end_date'] else None
    start_date = values.get('start_date', job.start_date)
    end_date = values.get('end_date', job.end_date)
    if end_date is not None and as_utc(end_date) < as_utc(start_date):
        raise ValidationError('end_date must not be before start_date', field='end_date')

    if 'is_recurring' in data or 'recurrence_interval' in data:
        merged = {
            'is_recurring': data.get('is_recurring', job.is_recurring),
            'recurrence_interval': data.get('recurrence_interval', job.recurrence_interval),
        }
        values['is_recurring'], values['recurrence_interval'] = _recurrence(merged)
    if 'requires_equipment' in data:
        values['requires_equipment'] = bool(data['requires_equipment'])

    audited = [field for field in ('price', 'title', 'description') if field in values]
    old_values = {field: getattr(job, field) for field in audited}

    if values:
        result = db.session.execute(
            update(Job)
            .where(Job.id == job.id, Job.status == JobStatus.POSTED)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError('Job was accepted while it was being edited; refresh and retry', category='job')
        db.session.refresh(job)

        if 'price' in values:
            # the unpaid intent was opened for the old price
            get_services().payments.discard_pending(job, current_user.id)

    ActivityLog.log_action(
        entity_type='job', entity_id=job.id, action='updated', user_id=current_user.id,
        old_values=old_values or None,
        new_values={field: values[field] for field in audited} or None,
        ip_address=request.remote_addr,
    )
    db.session.commit()
    return jsonify({'message': 'Job updated', 'job': job.to_dict()}), 200


@jobs_bp.route('/<int:job_id>/history', methods=['GET'])
@login_required
def job_history(job_id):
    """
    Audit trail of the job, its payments and verifications

    GET /api/jobs/<job_id>/history
    """
    job = _viewable_job(job_id)
    payment_ids = [p.id for p in Payment.query.filter_by(job_id=job.id)]
    verification_ids = [v.id for v in Verification.query.filter_by(job_id=job.id)]

    entries = ActivityLog.query.filter(or_(
        (ActivityLog.entity_type == 'job') & (ActivityLog.entity_id == job.id),
        (ActivityLog.entity_type == 'payment') & ActivityLog.entity_id.in_(payment_ids),
        (ActivityLog.entity_type == 'verification') & ActivityLog.entity_id.in_(verification_ids),
    )).order_by(ActivityLog.id).all()

    return jsonify({'history': [entry.to_dict(exclude=['ip_address']) for entry in entries]}), 200


@jobs_bp.route('/<int:job_id>/verifications', methods=['GET'])
@login_required
def job_verifications(job_id):
    """GET /api/jobs/<job_id>/verifications"""
    job = _viewable_job(job_id)
    return jsonify({'verifications': [v.to_dict() for v in job.verifications]}), 200


# ----------------------------------------------------------------------
# Lifecycle transitions
# ----------------------------------------------------------------------

def _run_transition(job_id, transition, message):
    job = get_services().jobs.apply(job_id, current_actor(), transition)
    return jsonify({'message': message, 'job': job.to_dict(include_relationships=True)}), 200


@jobs_bp.route('/<int:job_id>/accept', methods=['POST'])
@login_required
def accept_job(job_id):
    """POST /api/jobs/<job_id>/accept (any landscaper, first one wins)"""
    return _run_transition(job_id, Transition.ACCEPT, 'Job accepted')


@jobs_bp.route('/<int:job_id>/start', methods=['POST'])
@login_required
def start_job(job_id):
    """POST /api/jobs/<job_id>/start (assigned landscaper)"""
    return _run_transition(job_id, Transition.START, 'Job started')


@jobs_bp.route('/<int:job_id>/complete', methods=['POST'])
@login_required
def complete_job(job_id):
    """POST /api/jobs/<job_id>/complete (assigned landscaper)"""
    return _run_transition(job_id, Transition.COMPLETE, 'Job submitted for verification')


@jobs_bp.route('/<int:job_id>/cancel', methods=['POST'])
@login_required
def cancel_job(job_id):
    """POST /api/jobs/<job_id>/cancel (owner or admin)"""
    return _run_transition(job_id, Transition.CANCEL, 'Job cancelled')
