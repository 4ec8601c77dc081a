"""Property model"""
from lawnmates import db
from .base import BaseModel


class Property(BaseModel):
    """
    Property model - a lot owned by a property owner where work is done
    """
    __tablename__ = 'properties'

    owner_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)

    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(100), nullable=False)
    zip_code = db.Column(db.String(20), nullable=False)
    property_type = db.Column(db.String(50), nullable=False, default='residential')
    size = db.Column(db.Integer)  # square feet
    notes = db.Column(db.Text)
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)

    owner = db.relationship('User', backref=db.backref('properties', lazy='dynamic'))

    def __repr__(self):
        return f'<Property {self.address}>'
