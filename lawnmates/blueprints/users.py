"""
Users blueprint
Public profiles and self-service profile edits
"""
from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from lawnmates import db
from lawnmates.errors import ValidationError
from lawnmates.models import User
from lawnmates.services.lookups import get_or_404
from lawnmates.utils import get_json_body, validate_reference

users_bp = Blueprint('users', __name__)

PROFILE_FIELDS = ('full_name', 'avatar', 'bio', 'stripe_connect_id')


@users_bp.route('/<int:user_id>', methods=['GET'])
@login_required
def get_user(user_id):
    """GET /api/users/<id>"""
    user = get_or_404(User, user_id, 'User')
    return jsonify({'user': user.to_dict(include_private=user.id == current_user.id)}), 200


@users_bp.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    """
    Update the caller's profile

    PUT /api/users/profile
    Body: any of full_name, avatar, bio, stripe_connect_id
    """
    data = get_json_body()
    for field in PROFILE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if value is not None and not isinstance(value, str):
            raise ValidationError(f'{field} must be a string', field=field)
        if field == 'avatar' and value and not validate_reference(value.strip()):
            raise ValidationError('avatar must be a URL', field=field)
        setattr(current_user, field, value.strip() if value else None)

    db.session.commit()
    return jsonify({'user': current_user.to_dict(include_private=True)}), 200
