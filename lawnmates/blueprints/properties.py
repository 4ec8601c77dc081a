"""
Properties blueprint
"""
from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from lawnmates import db
from lawnmates.errors import ForbiddenError, ValidationError
from lawnmates.models import Property, UserRole
from lawnmates.services.lookups import get_or_404
from lawnmates.utils import get_json_body, require_fields, require_int

properties_bp = Blueprint('properties', __name__)


def _coordinate(data, field):
    value = data.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'{field} must be a number', field=field)
    return float(value)


@properties_bp.route('', methods=['GET'])
@login_required
def list_properties():
    """GET /api/properties (the caller's properties)"""
    properties = Property.query.filter_by(owner_id=current_user.id).order_by(Property.id).all()
    return jsonify({'properties': [p.to_dict() for p in properties]}), 200


@properties_bp.route('', methods=['POST'])
@login_required
def create_property():
    """
    POST /api/properties
    Body: {"address": "...", "city": "...", "state": "...", "zip_code": "...",
           "property_type": "residential", "size": 5000}
    """
    if current_user.role != UserRole.PROPERTY_OWNER:
        raise ForbiddenError('Only property owners can add properties')

    data = get_json_body()
    require_fields(data, ['address', 'city', 'state', 'zip_code'])
    prop = Property(
        owner_id=current_user.id,
        address=data['address'],
        city=data['city'],
        state=data['state'],
        zip_code=data['zip_code'],
        property_type=data.get('property_type') or 'residential',
        size=require_int(data, 'size', minimum=1, required=False),
        notes=data.get('notes'),
        latitude=_coordinate(data, 'latitude'),
        longitude=_coordinate(data, 'longitude'),
    )
    db.session.add(prop)
    db.session.commit()
    return jsonify({'property': prop.to_dict()}), 201


@properties_bp.route('/<int:property_id>', methods=['GET'])
@login_required
def get_property(property_id):
    """GET /api/properties/<id>"""
    prop = get_or_404(Property, property_id, 'Property')
    if prop.owner_id != current_user.id and not current_user.is_admin():
        raise ForbiddenError('Access denied')
    return jsonify({'property': prop.to_dict()}), 200
