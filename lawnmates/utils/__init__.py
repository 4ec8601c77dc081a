"""Utilities package"""
from .validators import (
    require_choice,
    require_fields,
    require_int,
    validate_email,
    validate_password,
    validate_reference,
)
from .helpers import as_utc, current_actor, get_json_body, paginated, parse_datetime

__all__ = [
    'require_choice',
    'require_fields',
    'require_int',
    'validate_email',
    'validate_password',
    'validate_reference',
    'as_utc',
    'current_actor',
    'get_json_body',
    'paginated',
    'parse_datetime',
]
