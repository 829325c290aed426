# src/models/chat.py
import uuid

from src.database import db
from src.models.types import iso, utcnow

MESSAGE_SENDERS = ('user', 'character')


class Chat(db.Model):
    """A conversation between one user and one character."""
    __tablename__ = 'chats'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'character_id', name='uq_chat_user_character'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    character_id = db.Column(
        db.String(36), db.ForeignKey('characters.id', ondelete='CASCADE'), nullable=False, index=True)
    last_message_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    character = db.relationship('Character')
    # Append-only transcript, ordered by insertion
    messages = db.relationship(
        'ChatMessage',
        back_populates='chat',
        order_by='ChatMessage.id',
        cascade='all, delete-orphan',
    )

    def append(self, sender: str, content: str) -> 'ChatMessage':
        message = ChatMessage(sender=sender, content=content, created_at=utcnow())
        self.messages.append(message)
        self.last_message_at = message.created_at
        return message

    def to_dict(self, include_messages: bool = True):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "character_id": self.character_id,
            "last_message_at": iso(self.last_message_at),
            "created_at": iso(self.created_at),
        }
        if self.character is not None:
            data["character"] = {
                "id": self.character.id,
                "name": self.character.name,
                "image_url": self.character.image_url,
            }
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data


class ChatMessage(db.Model):
    __tablename__ = 'chat_messages'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    chat_id = db.Column(db.String(36), db.ForeignKey('chats.id', ondelete='CASCADE'), nullable=False, index=True)
    sender = db.Column(db.String(16), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    chat = db.relationship('Chat', back_populates='messages')

    def to_dict(self):
        return {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": iso(self.created_at),
        }
