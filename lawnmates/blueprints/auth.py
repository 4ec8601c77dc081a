"""
Authentication blueprint
Handles user login, registration, logout, and session management
"""
import logging

from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user

from lawnmates import db
from lawnmates.errors import ConflictError, LawnMatesError, ValidationError
from lawnmates.extensions import limiter
from lawnmates.models import User, UserRole
from lawnmates.utils import get_json_body, require_choice, require_fields, validate_email, validate_password

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)

SELF_SERVICE_ROLES = (UserRole.PROPERTY_OWNER, UserRole.LANDSCAPER)


class InvalidCredentials(LawnMatesError):
    code = 'INVALID_CREDENTIALS'
    status_code = 401


@auth_bp.route('/register', methods=['POST'])
@limiter.limit('10 per hour')
def register():
    """
    Register a new user and start a session

    POST /api/auth/register
    Body: {
        "username": "greenthumb",
        "email": "user@example.com",
        "password": "Secure123",
        "role": "property_owner" | "landscaper",
        "full_name": "Jane Doe"
    }
    """
    data = get_json_body()
    require_fields(data, ['username', 'email', 'password', 'role'])

    email = str(data['email']).strip().lower()
    if not validate_email(email):
        raise ValidationError('Invalid email format', field='email')

    is_valid, error_msg = validate_password(data['password'])
    if not is_valid:
        raise ValidationError(error_msg, field='password')

    role = require_choice(data['role'], UserRole, 'role')
    if role not in SELF_SERVICE_ROLES:
        raise ValidationError('Invalid role. Must be one of: property_owner, landscaper', field='role')

    username = str(data['username']).strip()
    if User.query.filter((User.email == email) | (User.username == username)).first():
        raise ConflictError('User with this username or email already exists')

    user = User(
        username=username,
        email=email,
        role=role,
        full_name=data.get('full_name'),
    )
    user.set_password(data['password'])

    db.session.add(user)
    db.session.commit()

    login_user(user)
    logger.info('Registered user %s (%s)', user.id, role.value)

    return jsonify({
        'message': 'User registered successfully',
        'user': user.to_dict(include_private=True),
    }), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit('20 per minute')
def login():
    """
    Login user

    POST /api/auth/login
    Body: {"email": "user@example.com", "password": "Secure123"}
    """
    data = get_json_body()
    require_fields(data, ['email', 'password'])

    user = User.query.filter_by(email=str(data['email']).strip().lower()).first()
    if not user or not user.check_password(data['password']):
        raise InvalidCredentials('Invalid email or password')

    login_user(user, remember=bool(data.get('remember')))

    return jsonify({
        'message': 'Login successful',
        'user': user.to_dict(include_private=True),
    }), 200


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """
    Logout user

    POST /api/auth/logout
    """
    logout_user()
    return jsonify({'message': 'Logout successful'}), 200


@auth_bp.route('/me', methods=['GET'])
@login_required
def get_current_user():
    """
    Get current authenticated user

    GET /api/auth/me
    """
    return jsonify({
        'user': current_user.to_dict(include_private=True)
    }), 200
