"""Favorite model"""
from lawnmates import db
from .base import BaseModel


class Favorite(BaseModel):
    """
    Favorite model - a saved landscaper and/or property, used to repost jobs
    """
    __tablename__ = 'favorites'

    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    favorite_id = db.Column(db.Integer, db.ForeignKey('users.id'))  # favorite landscaper
    property_id = db.Column(db.Integer, db.ForeignKey('properties.id'))
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    recurrence_interval = db.Column(db.String(20))
    notes = db.Column(db.Text)

    property_record = db.relationship('Property')

    def __repr__(self):
        return f'<Favorite {self.id} user={self.user_id}>'

    def to_dict(self):
        data = super().to_dict()
        data['property'] = self.property_record.to_dict() if self.property_record else None
        return data
