"""
Base model with common fields and methods
"""
import enum
from datetime import datetime, timezone

from lawnmates import db


def utcnow():
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def enum_type(enum_cls):
    """String-backed column type for a str Enum, stored by value"""
    return db.Enum(
        enum_cls,
        native_enum=False,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class BaseModel(db.Model):
    """Abstract base model with common fields"""
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self, exclude=None):
        """
        Convert model to dictionary

        Args:
            exclude (list): List of fields to exclude

        Returns:
            dict: Model as dictionary
        """
        exclude = exclude or []
        data = {}

        for column in self.__table__.columns:
            if column.name not in exclude:
                value = getattr(self, column.name)

                if isinstance(value, enum.Enum):
                    value = value.value
                elif isinstance(value, datetime):
                    value = value.isoformat()

                data[column.name] = value

        return data
