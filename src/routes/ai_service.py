# -*- coding: utf-8 -*-
"""
AI service endpoints: character chat, artwork generation and a proxy for
the backend's character detail.
"""
from flask import Blueprint, current_app, jsonify, request

from src.infra.log import get_logger
from src.schemas.characters import ImageRequestSchema
from src.schemas.chat import AIChatRequestSchema
from src.services.errors import ExternalServiceError, NotFound

logger = get_logger('waifu.ai')

ai_bp = Blueprint('ai', __name__, url_prefix='/api')


def _ext(name: str):
    return current_app.extensions[name]


@ai_bp.route('/chat', methods=['POST'])
def chat():
    data = AIChatRequestSchema().load(request.get_json(silent=True) or {})
    logger.debug("Received chat request", character_id=data['character_id'],
                 message_length=len(data['message']))
    response = _ext('chat_service').reply(data['character_id'], data['message'])
    return jsonify({'response': response})


@ai_bp.route('/generate-image', methods=['POST'])
def generate_image():
    data = ImageRequestSchema().load(request.get_json(silent=True) or {})
    image_url = _ext('image_service').generate(
        data['description'], personality=data['personality'], style=data['style'])
    return jsonify({'imageUrl': image_url})


@ai_bp.route('/characters/<character_id>', methods=['GET'])
def get_character(character_id):
    try:
        character = _ext('backend_client').fetch_one(character_id)
    except ExternalServiceError as e:
        logger.error("Failed to fetch character from backend", character_id=character_id, error=e.message)
        raise
    if character is None:
        raise NotFound("Character not found")
    return jsonify(character)
