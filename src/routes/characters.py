# -*- coding: utf-8 -*-
"""
Character CRUD, likes and artwork hosting.
"""
from typing import Optional

from flask import Blueprint, g, jsonify, request

from src.database import db
from src.infra.auth import current_user_id, optional_auth, require_auth
from src.infra.log import get_logger
from src.models.character import Character
from src.schemas.characters import CharacterCreateSchema, CharacterUpdateSchema
from src.services.errors import ExternalServiceError, Forbidden, NotFound, ValidationError
from src.services.gateways import get_gateways

logger = get_logger('waifu.characters')

characters_bp = Blueprint('characters', __name__, url_prefix='/api/characters')

POPULAR_LIMIT = 10


def _get_character(character_id: str) -> Character:
    character = db.session.get(Character, character_id)
    if character is None:
        raise NotFound("Character not found")
    return character


def _get_owned(character_id: str) -> Character:
    character = _get_character(character_id)
    if character.creator_id != g.current_user.id:
        raise Forbidden("Not authorized to modify this character")
    return character


def _host_image(character: Character, source_url: str) -> None:
    """Copy the artwork to the image host; on failure keep the source URL."""
    images = get_gateways().images
    try:
        hosted = images.upload_from_url(source_url, metadata={
            "character_id": character.id,
            "creator_id": character.creator_id,
        })
    except ExternalServiceError as e:
        logger.log_fallback("image_upload", e.message, character_id=character.id)
        character.image_url = source_url
        return
    previous = character.image_id
    character.image_id = hosted["id"]
    character.image_url = images.get_delivery_url(hosted["id"])
    if previous:
        _drop_hosted_image(previous)


def _drop_hosted_image(image_id: Optional[str]) -> None:
    if not image_id:
        return
    try:
        get_gateways().images.delete_image(image_id)
    except ExternalServiceError as e:
        logger.warning("Hosted image delete failed", image_id=image_id, error=e.message)


@characters_bp.route('', methods=['GET'])
def list_public():
    characters = (Character.query
                  .filter_by(is_public=True)
                  .order_by(Character.created_at.desc())
                  .all())
    return jsonify([c.to_dict() for c in characters])


@characters_bp.route('/user', methods=['GET'])
@require_auth
def list_mine():
    characters = (Character.query
                  .filter_by(creator_id=g.current_user.id)
                  .order_by(Character.created_at.desc())
                  .all())
    return jsonify([c.to_dict() for c in characters])


@characters_bp.route('/popular', methods=['GET'])
def list_popular():
    characters = (Character.query
                  .filter_by(is_public=True)
                  .order_by(Character.likes.desc(), Character.created_at.desc())
                  .limit(POPULAR_LIMIT)
                  .all())
    return jsonify([c.to_dict() for c in characters])


@characters_bp.route('/<character_id>', methods=['GET'])
@optional_auth
def get_character(character_id):
    character = _get_character(character_id)
    if not character.visible_to(current_user_id()):
        raise Forbidden("This character is private")
    return jsonify(character.to_dict())


@characters_bp.route('', methods=['POST'])
@require_auth
def create_character():
    data = CharacterCreateSchema().load(request.get_json(silent=True) or {})
    source_url = data.pop('image_url')
    character = Character(creator_id=g.current_user.id, image_url=source_url, liked_by=[], **data)
    db.session.add(character)
    db.session.flush()
    _host_image(character, source_url)
    db.session.commit()

    logger.info("Character created", character_id=character.id, creator_id=character.creator_id)
    return jsonify(character.to_dict()), 201


@characters_bp.route('/<character_id>', methods=['PUT'])
@require_auth
def update_character(character_id):
    character = _get_owned(character_id)
    data = CharacterUpdateSchema().load(request.get_json(silent=True) or {})

    source_url = data.pop('image_url', None)
    for field, value in data.items():
        setattr(character, field, value)
    if source_url and source_url != character.image_url:
        _host_image(character, source_url)
    db.session.commit()
    return jsonify(character.to_dict())


@characters_bp.route('/<character_id>', methods=['DELETE'])
@require_auth
def delete_character(character_id):
    character = _get_owned(character_id)
    image_id = character.image_id
    db.session.delete(character)
    db.session.commit()
    _drop_hosted_image(image_id)

    logger.info("Character deleted", character_id=character_id)
    return jsonify({'msg': 'Character removed'})


@characters_bp.route('/<character_id>/like', methods=['POST'])
@require_auth
def like_character(character_id):
    character = _get_character(character_id)
    if not character.visible_to(g.current_user.id):
        raise Forbidden("This character is private")
    liked_by = list(character.liked_by or [])
    if g.current_user.id in liked_by:
        raise ValidationError("Character already liked")
    liked_by.append(g.current_user.id)
    character.liked_by = liked_by
    character.likes = len(liked_by)
    db.session.commit()
    return jsonify({'likes': character.likes, 'liked_by': character.liked_by})


@characters_bp.route('/<character_id>/unlike', methods=['POST'])
@require_auth
def unlike_character(character_id):
    character = _get_character(character_id)
    liked_by = list(character.liked_by or [])
    if g.current_user.id not in liked_by:
        raise ValidationError("Character has not yet been liked")
    liked_by.remove(g.current_user.id)
    character.liked_by = liked_by
    character.likes = len(liked_by)
    db.session.commit()
    return jsonify({'likes': character.likes, 'liked_by': character.liked_by})
