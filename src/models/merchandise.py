# src/models/merchandise.py
import uuid
from decimal import Decimal

from src.database import db
from src.models.types import JSONList, iso, money, utcnow

MERCHANDISE_CATEGORIES = ('t-shirt', 'mug', 'poster', 'sticker', 'hoodie', 'hat', 'phonecase', 'other')
MERCHANDISE_SIZES = ('XS', 'S', 'M', 'L', 'XL', 'XXL', 'N/A')


class Merchandise(db.Model):
    """A sellable print-on-demand product featuring one character."""
    __tablename__ = 'merchandise'
    __table_args__ = (
        db.CheckConstraint('stock >= 0', name='ck_merchandise_stock_non_negative'),
        db.CheckConstraint(
            'creator_revenue_percent + platform_fee_percent = 100',
            name='ck_merchandise_revenue_split'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    image_url = db.Column(db.String(1000), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    available_sizes = db.Column(JSONList)   # list[str]
    available_colors = db.Column(JSONList)  # list[str]

    character_id = db.Column(
        db.String(36), db.ForeignKey('characters.id', ondelete='CASCADE'), nullable=False, index=True)
    creator_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)

    stock = db.Column(db.Integer, default=100, nullable=False)
    sold = db.Column(db.Integer, default=0, nullable=False)

    production_cost = db.Column(db.Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    creator_revenue_percent = db.Column(db.Integer, default=80, nullable=False)
    platform_fee_percent = db.Column(db.Integer, default=20, nullable=False)

    # Fulfillment provider identifiers
    printful_product_id = db.Column(db.String(64), nullable=True)
    printful_external_id = db.Column(db.String(128), nullable=True)
    # [{"variant_id", "external_id", "retail_price", "size", "color"}]
    printful_variants = db.Column(JSONList)

    stripe_connect_account_id = db.Column(db.String(64), nullable=True)
    is_approved = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    character = db.relationship('Character')
    creator = db.relationship('User')

    def to_dict(self):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": money(self.price),
            "image_url": self.image_url,
            "category": self.category,
            "available_sizes": self.available_sizes or [],
            "available_colors": self.available_colors or [],
            "character_id": self.character_id,
            "creator_id": self.creator_id,
            "stock": self.stock,
            "sold": self.sold,
            "production_cost": money(self.production_cost),
            "creator_revenue_percent": self.creator_revenue_percent,
            "platform_fee_percent": self.platform_fee_percent,
            "printful_product_id": self.printful_product_id,
            "printful_variants": self.printful_variants or [],
            "stripe_connect_account_id": self.stripe_connect_account_id,
            "is_approved": self.is_approved,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if self.character is not None:
            data["character"] = {"id": self.character.id, "name": self.character.name,
                                 "image_url": self.character.image_url}
        if self.creator is not None:
            data["creator"] = {"id": self.creator.id, "username": self.creator.username,
                               "profile_picture": self.creator.profile_picture}
        return data
