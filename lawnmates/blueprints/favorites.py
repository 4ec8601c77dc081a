"""
Favorites blueprint
Saved landscapers and properties, and reposting a job from a favorite
"""
import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from lawnmates import db
from lawnmates.errors import ForbiddenError, ValidationError
from lawnmates.models import ActivityLog, Favorite, Job, JobStatus, Property, RecurrenceInterval, User, UserRole, utcnow
from lawnmates.services.lookups import get_or_404
from lawnmates.utils import get_json_body, require_choice, require_int

logger = logging.getLogger(__name__)

favorites_bp = Blueprint('favorites', __name__)

DEFAULT_JOB_PRICE = 5000


def _owned_favorite(favorite_id):
    favorite = get_or_404(Favorite, favorite_id, 'Favorite')
    if favorite.user_id != current_user.id:
        raise ForbiddenError('Access denied')
    return favorite


def _apply_fields(favorite, data):
    if 'favorite_id' in data:
        landscaper_id = require_int(data, 'favorite_id', minimum=1, required=False)
        if landscaper_id is not None:
            landscaper = get_or_404(User, landscaper_id, 'Landscaper')
            if landscaper.role != UserRole.LANDSCAPER:
                raise ValidationError('favorite_id must be a landscaper', field='favorite_id')
        favorite.favorite_id = landscaper_id

    if 'property_id' in data:
        property_id = require_int(data, 'property_id', minimum=1, required=False)
        if property_id is not None:
            prop = get_or_404(Property, property_id, 'Property')
            if prop.owner_id != current_user.id:
                raise ForbiddenError('Property belongs to another owner')
        favorite.property_id = property_id

    if 'is_recurring' in data:
        favorite.is_recurring = bool(data['is_recurring'])
    if 'recurrence_interval' in data:
        interval = data['recurrence_interval']
        favorite.recurrence_interval = (
            require_choice(interval, RecurrenceInterval, 'recurrence_interval').value if interval else None
        )
    if 'notes' in data:
        favorite.notes = data['notes']

    if favorite.favorite_id is None and favorite.property_id is None:
        raise ValidationError('A favorite needs a landscaper or a property')


@favorites_bp.route('', methods=['GET'])
@login_required
def list_favorites():
    """GET /api/favorites"""
    favorites = Favorite.query.filter_by(user_id=current_user.id).order_by(Favorite.id).all()
    return jsonify({'favorites': [f.to_dict() for f in favorites]}), 200


@favorites_bp.route('', methods=['POST'])
@login_required
def create_favorite():
    """
    POST /api/favorites
    Body: {"favorite_id": 3, "property_id": 1, "is_recurring": true,
           "recurrence_interval": "weekly", "notes": "..."}
    """
    favorite = Favorite(user_id=current_user.id)
    _apply_fields(favorite, get_json_body())
    db.session.add(favorite)
    db.session.commit()
    return jsonify({'favorite': favorite.to_dict()}), 201


@favorites_bp.route('/<int:favorite_id>', methods=['PATCH'])
@login_required
def update_favorite(favorite_id):
    """PATCH /api/favorites/<id>"""
    favorite = _owned_favorite(favorite_id)
    _apply_fields(favorite, get_json_body())
    db.session.commit()
    return jsonify({'favorite': favorite.to_dict()}), 200


@favorites_bp.route('/<int:favorite_id>', methods=['DELETE'])
@login_required
def delete_favorite(favorite_id):
    """DELETE /api/favorites/<id>"""
    favorite = _owned_favorite(favorite_id)
    db.session.delete(favorite)
    db.session.commit()
    return jsonify({'message': 'Favorite removed'}), 200


@favorites_bp.route('/<int:favorite_id>/create-job', methods=['POST'])
@login_required
def create_job_from_favorite(favorite_id):
    """
    Repost a job for a saved property

    POST /api/favorites/<id>/create-job
    Body (optional): {"price": 6000, "description": "..."}
    """
    if current_user.role != UserRole.PROPERTY_OWNER:
        raise ForbiddenError('Only property owners can post jobs', category='job')
    favorite = _owned_favorite(favorite_id)
    if favorite.property_record is None:
        raise ValidationError('Favorite has no property to create a job for')

    data = get_json_body()
    price = require_int(data, 'price', minimum=1, required=False) or DEFAULT_JOB_PRICE
    prop = favorite.property_record

    job = Job(
        owner_id=current_user.id,
        property_id=prop.id,
        title='Service for {}'.format(prop.address),
        description=data.get('description') or favorite.notes or 'Repeat service',
        price=price,
        status=JobStatus.POSTED,
        start_date=utcnow(),
        is_recurring=favorite.is_recurring,
        recurrence_interval=favorite.recurrence_interval if favorite.is_recurring else None,
        latitude=prop.latitude,
        longitude=prop.longitude,
    )
    db.session.add(job)
    db.session.flush()
    ActivityLog.log_action(
        entity_type='job', entity_id=job.id, action='created', user_id=current_user.id,
        new_values={'status': job.status.value, 'price': job.price, 'favorite_id': favorite.id},
        ip_address=request.remote_addr,
    )
    db.session.commit()
    logger.info('Job %s created from favorite %s', job.id, favorite.id)
    return jsonify({'message': 'Job posted successfully', 'job': job.to_dict()}), 201
