# -*- coding: utf-8 -*-
"""
User request schemas.
"""
from marshmallow import Schema, fields, validate, EXCLUDE


class RegisterSchema(Schema):
    """Schema for registering a new user."""
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(required=True, validate=validate.Length(min=1, max=80))
    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=6))


class LoginSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(required=True)
    password = fields.Str(required=True, load_only=True, validate=validate.Length(min=1))


class ProfileUpdateSchema(Schema):
    """Schema for updating the logged in user's profile."""
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(validate=validate.Length(min=1, max=80))
    email = fields.Email()
    bio = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    profile_picture = fields.Str(allow_none=True, validate=validate.Length(max=500))
    password = fields.Str(load_only=True, validate=validate.Length(min=6))
