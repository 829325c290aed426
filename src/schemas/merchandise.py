# -*- coding: utf-8 -*-
"""
Merchandise and checkout request schemas.
"""
from typing import Optional, Tuple

from marshmallow import Schema, fields, validate, validates_schema, ValidationError, EXCLUDE

from src.models.merchandise import MERCHANDISE_CATEGORIES, MERCHANDISE_SIZES
from src.models.purchase import PAYMENT_METHODS

_percent = validate.Range(min=0, max=100)


def resolve_revenue_split(
    creator_percent: Optional[int],
    platform_percent: Optional[int],
    current: Tuple[int, int] = (80, 20),
) -> Tuple[int, int]:
    """
    Creator/platform percentages, deriving whichever one is missing.

    Raises ValidationError when both are given and do not add up to 100.
    """
    if creator_percent is None and platform_percent is None:
        return current
    if platform_percent is None:
        return creator_percent, 100 - creator_percent
    if creator_percent is None:
        return 100 - platform_percent, platform_percent
    if creator_percent + platform_percent != 100:
        raise ValidationError(
            "creator_revenue_percent and platform_fee_percent must add up to 100",
            field_name="platform_fee_percent")
    return creator_percent, platform_percent


class VariantSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    variant_id = fields.Raw(required=True)
    external_id = fields.Str(allow_none=True, load_default=None)
    retail_price = fields.Str(allow_none=True, load_default=None)
    size = fields.Str(allow_none=True, load_default=None)
    color = fields.Str(allow_none=True, load_default=None)


class MerchandiseCreateSchema(Schema):
    """Schema for listing a new product."""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(required=True, validate=validate.Length(min=1, max=200))
    description = fields.Str(required=True, validate=validate.Length(min=1))
    price = fields.Decimal(required=True, places=2, validate=validate.Range(min=0))
    image_url = fields.Str(required=True, validate=validate.Length(min=1, max=1000))
    category = fields.Str(required=True, validate=validate.OneOf(MERCHANDISE_CATEGORIES))
    character_id = fields.Str(required=True)
    available_sizes = fields.List(fields.Str(validate=validate.OneOf(MERCHANDISE_SIZES)), load_default=list)
    available_colors = fields.List(fields.Str(), load_default=list)
    stock = fields.Int(load_default=100, validate=validate.Range(min=0))
    production_cost = fields.Decimal(places=2, allow_none=True, load_default=None,
                                     validate=validate.Range(min=0))
    creator_revenue_percent = fields.Int(allow_none=True, load_default=None, validate=_percent)
    platform_fee_percent = fields.Int(allow_none=True, load_default=None, validate=_percent)
    printful_product_id = fields.Str(allow_none=True, load_default=None)
    printful_variants = fields.List(fields.Nested(VariantSchema), allow_none=True, load_default=None)

    @validates_schema
    def validate_split(self, data, **kwargs):
        resolve_revenue_split(data.get('creator_revenue_percent'), data.get('platform_fee_percent'))


class MerchandiseUpdateSchema(Schema):
    """Schema for updating a product; character and creator cannot change."""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(validate=validate.Length(min=1, max=200))
    description = fields.Str(validate=validate.Length(min=1))
    price = fields.Decimal(places=2, validate=validate.Range(min=0))
    image_url = fields.Str(validate=validate.Length(min=1, max=1000))
    category = fields.Str(validate=validate.OneOf(MERCHANDISE_CATEGORIES))
    available_sizes = fields.List(fields.Str(validate=validate.OneOf(MERCHANDISE_SIZES)))
    available_colors = fields.List(fields.Str())
    stock = fields.Int(validate=validate.Range(min=0))
    production_cost = fields.Decimal(places=2, validate=validate.Range(min=0))
    creator_revenue_percent = fields.Int(validate=_percent)
    platform_fee_percent = fields.Int(validate=_percent)
    printful_product_id = fields.Str(allow_none=True)
    printful_variants = fields.List(fields.Nested(VariantSchema))


class ShippingAddressSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    first_name = fields.Str(required=True, validate=validate.Length(min=1))
    last_name = fields.Str(required=True, validate=validate.Length(min=1))
    street = fields.Str(required=True, validate=validate.Length(min=1))
    city = fields.Str(required=True, validate=validate.Length(min=1))
    state = fields.Str(load_default='')
    postal_code = fields.Str(required=True, validate=validate.Length(min=1))
    country = fields.Str(required=True, validate=validate.Length(min=2, max=2))
    email = fields.Email(allow_none=True, load_default=None)
    phone = fields.Str(allow_none=True, load_default=None)


class CartLineSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    merchandise_id = fields.Str(required=True)
    quantity = fields.Int(required=True, validate=validate.Range(min=1))
    size = fields.Str(allow_none=True, load_default=None)
    color = fields.Str(allow_none=True, load_default=None)


class CheckoutSchema(Schema):
    """Cart submitted for a quote."""
    class Meta:
        unknown = EXCLUDE

    items = fields.List(fields.Nested(CartLineSchema), required=True, validate=validate.Length(min=1))
    shipping_address = fields.Nested(ShippingAddressSchema, required=True)
    shipping_method = fields.Str(allow_none=True, load_default=None)
    payment_method = fields.Str(load_default='credit_card', validate=validate.OneOf(PAYMENT_METHODS))


class ShippingEstimateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    items = fields.List(fields.Nested(CartLineSchema), required=True, validate=validate.Length(min=1))
    shipping_address = fields.Nested(ShippingAddressSchema, required=True)


class CompletePurchaseSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    purchase_id = fields.Str(allow_none=True, load_default=None)
    payment_intent_id = fields.Str(allow_none=True, load_default=None)

    @validates_schema
    def validate_reference(self, data, **kwargs):
        if not data.get('purchase_id') and not data.get('payment_intent_id'):
            raise ValidationError("purchase_id or payment_intent_id is required")


class CryptoPaymentSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    purchase_id = fields.Str(required=True)
    currency = fields.Str(load_default='BTC', validate=validate.OneOf(['BTC', 'ETH', 'USDC']))
