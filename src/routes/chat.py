# -*- coding: utf-8 -*-
"""
Chats between a user and a character. Replies come from the AI service.
"""
from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import IntegrityError

from src.database import db
from src.infra.auth import require_auth
from src.infra.log import get_logger
from src.models.character import Character
from src.models.chat import Chat
from src.schemas.chat import SendMessageSchema
from src.services.ai_client import AIServiceClient
from src.services.errors import Forbidden, NotFound

logger = get_logger('waifu.chat')

chat_bp = Blueprint('chat', __name__, url_prefix='/api/chat')


def get_ai_client() -> AIServiceClient:
    client = current_app.extensions.get('ai_client')
    if client is None:
        client = AIServiceClient(current_app.config['AI_SERVICE_URL'],
                                 timeout=float(current_app.config.get('HTTP_TIMEOUT_SECONDS', 30)))
        current_app.extensions['ai_client'] = client
    return client


def _visible_character(character_id: str) -> Character:
    character = db.session.get(Character, character_id)
    if character is None:
        raise NotFound("Character not found")
    if not character.visible_to(g.current_user.id):
        raise Forbidden("This character is private")
    return character


def _get_or_create_chat(character: Character) -> Chat:
    chat = Chat.query.filter_by(user_id=g.current_user.id, character_id=character.id).first()
    if chat is not None:
        return chat
    chat = Chat(user_id=g.current_user.id, character_id=character.id)
    db.session.add(chat)
    try:
        db.session.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.session.rollback()
        chat = Chat.query.filter_by(user_id=g.current_user.id, character_id=character.id).one()
    return chat


@chat_bp.route('', methods=['GET'])
@require_auth
def list_chats():
    chats = (Chat.query
             .filter_by(user_id=g.current_user.id)
             .order_by(Chat.last_message_at.desc())
             .all())
    return jsonify([c.to_dict(include_messages=False) for c in chats])


@chat_bp.route('/<character_id>', methods=['GET'])
@require_auth
def get_chat(character_id):
    chat = _get_or_create_chat(_visible_character(character_id))
    return jsonify(chat.to_dict())


@chat_bp.route('/<character_id>', methods=['POST'])
@require_auth
def send_message(character_id):
    data = SendMessageSchema().load(request.get_json(silent=True) or {})
    character = _visible_character(character_id)
    chat = _get_or_create_chat(character)

    chat.append('user', data['message'])
    db.session.commit()

    reply = get_ai_client().reply(character.id, data['message'])
    chat.append('character', reply)
    db.session.commit()

    logger.info("Chat message exchanged", chat_id=chat.id, character_id=character.id)
    return jsonify(chat.to_dict())


@chat_bp.route('/<chat_id>', methods=['DELETE'])
@require_auth
def delete_chat(chat_id):
    chat = db.session.get(Chat, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    if chat.user_id != g.current_user.id:
        raise Forbidden("Not authorized to delete this chat")
    db.session.delete(chat)
    db.session.commit()
    return jsonify({'msg': 'Chat deleted'})
