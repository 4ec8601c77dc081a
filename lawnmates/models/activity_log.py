"""Activity Log model"""
from lawnmates import db
from .base import BaseModel


class ActivityLog(BaseModel):
    """
    Activity Log model - audit trail of job transitions, payment moves and reviews
    """
    __tablename__ = 'activity_log'

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'))  # NULL for system actions

    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)

    action = db.Column(db.String(50), nullable=False)

    # Change tracking
    old_values = db.Column(db.JSON)
    new_values = db.Column(db.JSON)

    ip_address = db.Column(db.String(45))

    __table_args__ = (
        db.Index('idx_activity_log_entity', 'entity_type', 'entity_id'),
        db.Index('idx_activity_log_user_id', 'user_id'),
    )

    def __repr__(self):
        return f'<ActivityLog {self.entity_type}.{self.action}>'

    @classmethod
    def log_action(cls, entity_type, entity_id, action, user_id=None,
                   old_values=None, new_values=None, ip_address=None):
        """
        Log an action to the activity log

        Args:
            entity_type: Type of entity (e.g., 'job', 'payment')
            entity_id: ID of entity
            action: Action performed (e.g., 'accept', 'released')
            user_id: ID of user who performed action, None for the system
            old_values: Previous state (dict)
            new_values: New state (dict)
            ip_address: IP address of request

        Returns:
            ActivityLog: Created log entry (added to the session, not committed)
        """
        log_entry = cls(
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
        )
        db.session.add(log_entry)
        return log_entry
