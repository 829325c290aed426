# -*- coding: utf-8 -*-
"""
Chat request schemas.
"""
from marshmallow import Schema, fields, validate, EXCLUDE


class SendMessageSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    message = fields.Str(required=True, validate=validate.Length(min=1, max=4000))


class AIChatRequestSchema(Schema):
    """Body of the AI service's chat endpoint."""
    class Meta:
        unknown = EXCLUDE

    message = fields.Str(required=True, validate=validate.Length(min=1))
    character_id = fields.Str(data_key='characterId', allow_none=True, load_default=None)
