# src/models/purchase.py
import secrets
import uuid
from decimal import Decimal

from src.database import db
from src.models.types import JSONDict, iso, money, utcnow

# Purchase.status
STATUS_PENDING = "pending"        # quoted, awaiting completion
STATUS_PROCESSING = "processing"  # stock taken; fulfilled once paid
STATUS_SHIPPED = "shipped"
STATUS_DELIVERED = "delivered"
STATUS_CANCELLED = "cancelled"
PURCHASE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED, STATUS_CANCELLED)

PAYMENT_METHODS = ("credit_card", "crypto", "paypal")

# CreatorPayout.status
PAYOUT_PENDING = "pending"
PAYOUT_PAID = "paid"
PAYOUT_FAILED = "failed"


def new_order_ref() -> str:
    return f"WH-{secrets.token_hex(5).upper()}"


class Purchase(db.Model):
    """One checkout transaction by one buyer."""
    __tablename__ = "purchases"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_ref = db.Column(db.String(32), unique=True, nullable=False, index=True, default=new_order_ref)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)

    status = db.Column(db.String(20), default=STATUS_PENDING, nullable=False, index=True)

    subtotal = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_method = db.Column(db.String(64), nullable=True)
    # {first_name, last_name, street, city, state, postal_code, country, phone, email}
    shipping_address = db.Column(JSONDict, nullable=False)

    payment_method = db.Column(db.String(20), default="credit_card", nullable=False)
    payment_reference = db.Column(db.String(64), nullable=True)
    stripe_payment_intent_id = db.Column(db.String(64), unique=True, nullable=True, index=True)

    printful_order_id = db.Column(db.String(64), unique=True, nullable=True, index=True)
    printful_order_status = db.Column(db.String(32), nullable=True)
    # Set while one worker is creating the fulfillment order
    fulfillment_claimed_at = db.Column(db.DateTime, nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    tracking_url = db.Column(db.String(500), nullable=True)

    is_paid = db.Column(db.Boolean, default=False, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    is_shipped = db.Column(db.Boolean, default=False, nullable=False)
    shipped_at = db.Column(db.DateTime, nullable=True)
    is_delivered = db.Column(db.Boolean, default=False, nullable=False)
    delivered_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    items = db.relationship(
        'PurchaseItem', back_populates='purchase', order_by='PurchaseItem.id',
        cascade='all, delete-orphan')
    payouts = db.relationship(
        'CreatorPayout', back_populates='purchase', order_by='CreatorPayout.created_at',
        cascade='all, delete-orphan')
    buyer = db.relationship('User')

    @property
    def is_terminal(self) -> bool:
        return self.status in (STATUS_DELIVERED, STATUS_CANCELLED)

    def to_dict(self):
        return {
            "id": self.id,
            "order_ref": self.order_ref,
            "user_id": self.user_id,
            "status": self.status,
            "items": [i.to_dict() for i in self.items],
            "subtotal": money(self.subtotal),
            "shipping_cost": money(self.shipping_cost),
            "tax_amount": money(self.tax_amount),
            "total_amount": money(self.total_amount),
            "shipping_method": self.shipping_method,
            "shipping_address": self.shipping_address or {},
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "printful_order_id": self.printful_order_id,
            "printful_order_status": self.printful_order_status,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "is_paid": self.is_paid,
            "paid_at": iso(self.paid_at),
            "completed_at": iso(self.completed_at),
            "is_shipped": self.is_shipped,
            "shipped_at": iso(self.shipped_at),
            "is_delivered": self.is_delivered,
            "delivered_at": iso(self.delivered_at),
            "creator_payouts": [p.to_dict() for p in self.payouts],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class PurchaseItem(db.Model):
    """A line item with its point-in-time price snapshot and revenue split."""
    __tablename__ = "purchase_items"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    purchase_id = db.Column(
        db.String(36), db.ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False, index=True)
    # Deleting merchandise leaves the historical line intact
    merchandise_id = db.Column(
        db.String(36), db.ForeignKey('merchandise.id', ondelete='SET NULL'), nullable=True, index=True)
    merchandise_name = db.Column(db.String(200), nullable=False)
    creator_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    size = db.Column(db.String(16), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    printful_variant_id = db.Column(db.String(64), nullable=True)

    item_price = db.Column(db.Numeric(10, 2), nullable=False)
    production_cost = db.Column(db.Numeric(10, 2), nullable=False)
    platform_fee = db.Column(db.Numeric(10, 2), nullable=False)
    creator_revenue = db.Column(db.Numeric(10, 2), nullable=False)

    purchase = db.relationship('Purchase', back_populates='items')

    def to_dict(self):
        return {
            "merchandise_id": self.merchandise_id,
            "name": self.merchandise_name,
            "creator_id": self.creator_id,
            "quantity": self.quantity,
            "size": self.size,
            "color": self.color,
            "unit_price": money(self.unit_price),
            "printful_variant_id": self.printful_variant_id,
            "item_price": money(self.item_price),
            "production_cost": money(self.production_cost),
            "platform_fee": money(self.platform_fee),
            "creator_revenue": money(self.creator_revenue),
        }


class CreatorPayout(db.Model):
    """One creator's aggregated revenue for one purchase."""
    __tablename__ = "creator_payouts"
    __table_args__ = (
        db.UniqueConstraint('purchase_id', 'creator_id', name='uq_payout_purchase_creator'),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    purchase_id = db.Column(
        db.String(36), db.ForeignKey('purchases.id', ondelete='CASCADE'), nullable=False, index=True)
    creator_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(16), default=PAYOUT_PENDING, nullable=False, index=True)

    destination_account_id = db.Column(db.String(64), nullable=True)
    stripe_transfer_id = db.Column(db.String(64), unique=True, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    paid_at = db.Column(db.DateTime, nullable=True)
    failed_at = db.Column(db.DateTime, nullable=True)

    purchase = db.relationship('Purchase', back_populates='payouts')

    def to_dict(self):
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "creator_id": self.creator_id,
            "amount": money(self.amount),
            "status": self.status,
            "stripe_transfer_id": self.stripe_transfer_id,
            "destination_account_id": self.destination_account_id,
            "paid_at": iso(self.paid_at),
        }
