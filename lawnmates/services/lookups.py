"""Entity lookups raising NotFoundError"""
from lawnmates import db
from lawnmates.errors import NotFoundError


def get_or_404(model, entity_id, label=None, category='request'):
    label = label or model.__name__
    entity = db.session.get(model, entity_id) if entity_id is not None else None
    if entity is None:
        raise NotFoundError(f'{label} not found', category=category)
    return entity
