"""
Validation utilities
"""
import re

from lawnmates.errors import ValidationError


def validate_email(email):
    """
    Validate email format

    Args:
        email (str): Email address to validate

    Returns:
        bool: True if valid, False otherwise
    """
    if not email or not isinstance(email, str):
        return False

    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def validate_password(password):
    """
    Validate password strength
    Requirements: min 8 chars, at least one letter and one number

    Returns:
        tuple: (is_valid, error message or None)
    """
    if not isinstance(password, str) or len(password) < 8:
        return False, 'Password must be at least 8 characters'
    if not re.search(r'[A-Za-z]', password):
        return False, 'Password must contain at least one letter'
    if not re.search(r'\d', password):
        return False, 'Password must contain at least one number'
    return True, None


def require_fields(data, fields):
    """Raise ValidationError naming every missing or blank field"""
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationError(f'Missing required fields: {", ".join(missing)}', fields=missing)


def require_int(data, field, minimum=None, required=True, category='request'):
    """Strict integer field (bools are rejected)"""
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f'{field} is required', category=category, field=field)
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field} must be an integer', category=category, field=field)
    if minimum is not None and value < minimum:
        raise ValidationError(f'{field} must be at least {minimum}', category=category, field=field)
    return value


def require_choice(value, enum_cls, field):
    """Coerce a string into a member of a str Enum"""
    try:
        return enum_cls(value)
    except ValueError as e:
        choices = ', '.join(m.value for m in enum_cls)
        raise ValidationError(
            f'Invalid {field}. Must be one of: {choices}', field=field,
        ) from e


UNSAFE_REFERENCE_CHARS = re.compile(r'[\s<>"\'`]')


def validate_reference(value):
    """URL or storage key: kept unescaped, so it may not carry markup or whitespace"""
    return isinstance(value, str) and not UNSAFE_REFERENCE_CHARS.search(value)
