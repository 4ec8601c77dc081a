"""User model"""
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from lawnmates import db
from .base import BaseModel, enum_type
from .enums import UserRole


class User(BaseModel, UserMixin):
    """
    User model - property owners, landscapers and admins
    Includes Flask-Login integration
    """
    __tablename__ = 'users'

    username = db.Column(db.String(80), nullable=False, unique=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(enum_type(UserRole), nullable=False, default=UserRole.PROPERTY_OWNER)
    full_name = db.Column(db.String(200))
    avatar = db.Column(db.String(500))
    bio = db.Column(db.Text)

    # Aggregated from reviews
    rating = db.Column(db.Float, nullable=False, default=0.0)
    review_count = db.Column(db.Integer, nullable=False, default=0)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    # Stripe
    stripe_customer_id = db.Column(db.String(255))
    stripe_connect_id = db.Column(db.String(255))

    def __repr__(self):
        return f'<User {self.username} ({self.role.value})>'

    def set_password(self, password):
        """Hash and set password"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against hash"""
        return check_password_hash(self.password_hash, password)

    def is_admin(self):
        return self.role == UserRole.ADMIN

    def is_landscaper(self):
        return self.role == UserRole.LANDSCAPER

    def to_dict(self, include_private=False):
        """Convert to dictionary; the password hash is never included"""
        exclude = ['password_hash']
        if not include_private:
            exclude.extend(['email', 'stripe_customer_id', 'stripe_connect_id'])
        return super().to_dict(exclude=exclude)
