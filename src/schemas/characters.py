# -*- coding: utf-8 -*-
"""
Character request schemas.
"""
from marshmallow import Schema, fields, validate, EXCLUDE

from src.models.character import CHARACTER_STYLES


class CharacterCreateSchema(Schema):
    """Schema for creating a character."""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=validate.Length(min=1, max=120))
    image_url = fields.Str(required=True, validate=validate.Length(min=1, max=1000))
    style = fields.Str(load_default='anime', validate=validate.OneOf(CHARACTER_STYLES))
    description = fields.Str(required=True, validate=validate.Length(min=1))
    personality = fields.Str(required=True, validate=validate.Length(min=1))
    background = fields.Str(load_default='')
    interests = fields.List(fields.Str(), load_default=list)
    occupation = fields.Str(load_default='')
    age = fields.Int(allow_none=True, load_default=None, validate=validate.Range(min=0, max=10000))
    greed_factor = fields.Int(load_default=0, validate=validate.Range(min=0, max=5))
    public = fields.Bool(load_default=True, data_key='public', attribute='is_public')


class CharacterUpdateSchema(Schema):
    """Schema for updating a character; every field optional."""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(validate=validate.Length(min=1, max=120))
    image_url = fields.Str(validate=validate.Length(min=1, max=1000))
    style = fields.Str(validate=validate.OneOf(CHARACTER_STYLES))
    description = fields.Str(validate=validate.Length(min=1))
    personality = fields.Str(validate=validate.Length(min=1))
    background = fields.Str()
    interests = fields.List(fields.Str())
    occupation = fields.Str()
    age = fields.Int(allow_none=True, validate=validate.Range(min=0, max=10000))
    greed_factor = fields.Int(validate=validate.Range(min=0, max=5))
    public = fields.Bool(data_key='public', attribute='is_public')


class ImageRequestSchema(Schema):
    """Body of the AI service's image generation endpoint."""
    class Meta:
        unknown = EXCLUDE

    description = fields.Str(required=True, validate=validate.Length(min=1))
    personality = fields.Str(load_default='')
    style = fields.Str(required=True, validate=validate.Length(min=1))
