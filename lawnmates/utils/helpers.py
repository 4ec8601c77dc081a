"""
Helper utilities
"""
from datetime import datetime, timezone

from flask import current_app, request
from flask_login import current_user

from lawnmates.errors import ValidationError


def get_json_body():
    """
    Parsed JSON object of the current request

    Returns:
        dict: Request body, {} when the body is empty

    Raises:
        ValidationError: body is not a JSON object
    """
    data = request.get_json(silent=True)
    if data is None:
        if request.content_length:
            raise ValidationError('Request body must be valid JSON')
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def current_actor():
    """Actor for the logged-in user"""
    from lawnmates.services import Actor
    return Actor.from_user(current_user)


def parse_datetime(value, field):
    """
    Parse an ISO 8601 string into an aware UTC datetime

    Naive values are taken to be UTC. A trailing 'Z' is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f'{field} must be an ISO 8601 date', field=field) from e
    else:
        raise ValidationError(f'{field} must be an ISO 8601 date', field=field)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def as_utc(value):
    """Treat naive datetimes (SQLite drops the offset) as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def pagination_args():
    """(page, per_page) from the query string, capped by MAX_ITEMS_PER_PAGE"""
    page = max(request.args.get('page', 1, type=int), 1)
    per_page = request.args.get('per_page', current_app.config['ITEMS_PER_PAGE'], type=int)
    per_page = min(max(per_page, 1), current_app.config['MAX_ITEMS_PER_PAGE'])
    return page, per_page


def paginated(query, key, serialize):
    """Paginate a query into the standard list envelope"""
    page, per_page = pagination_args()
    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        key: [serialize(item) for item in pagination.items],
        'total': pagination.total,
        'page': page,
        'per_page': per_page,
        'pages': pagination.pages,
    }
