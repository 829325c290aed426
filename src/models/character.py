# src/models/character.py
import uuid

from src.database import db
from src.models.types import JSONList, iso, utcnow

CHARACTER_STYLES = ('retro', 'gothic', 'neocyber', 'anime', 'realistic', 'fantasy', 'sci-fi', 'chibi')


class Character(db.Model):
    __tablename__ = 'characters'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    creator_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    image_url = db.Column(db.String(1000), nullable=False)
    image_id = db.Column(db.String(128), nullable=True)  # hosted image id, when uploaded
    style = db.Column(db.String(20), default='anime', nullable=False)

    description = db.Column(db.Text, nullable=False)
    personality = db.Column(db.Text, nullable=False)
    background = db.Column(db.Text, default='')
    interests = db.Column(JSONList)  # list[str]
    occupation = db.Column(db.String(200), default='')
    age = db.Column(db.Integer, nullable=True)
    greed_factor = db.Column(db.Integer, default=0, nullable=False)

    is_public = db.Column(db.Boolean, default=True, nullable=False)
    likes = db.Column(db.Integer, default=0, nullable=False)
    liked_by = db.Column(JSONList)  # list[user id]

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    creator = db.relationship('User', back_populates='characters')

    def visible_to(self, user_id) -> bool:
        return self.is_public or self.creator_id == user_id

    def to_dict(self, include_creator: bool = True):
        data = {
            "id": self.id,
            "creator_id": self.creator_id,
            "name": self.name,
            "image_url": self.image_url,
            "image_id": self.image_id,
            "style": self.style,
            "description": self.description,
            "personality": self.personality,
            "background": self.background or "",
            "interests": self.interests or [],
            "occupation": self.occupation or "",
            "age": self.age,
            "greed_factor": self.greed_factor,
            "public": self.is_public,
            "likes": self.likes,
            "liked_by": self.liked_by or [],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_creator and self.creator is not None:
            data["creator"] = {
                "id": self.creator.id,
                "username": self.creator.username,
                "profile_picture": self.creator.profile_picture,
            }
        return data
