# src/models/user.py
import uuid
from decimal import Decimal

from werkzeug.security import generate_password_hash, check_password_hash

from src.database import db
from src.models.types import iso, money, utcnow


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    bio = db.Column(db.Text, nullable=True)
    profile_picture = db.Column(db.String(500), nullable=True)

    # Payment-gateway connected account (creator payouts)
    stripe_account_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    stripe_onboarded = db.Column(db.Boolean, default=False, nullable=False)
    payouts_enabled = db.Column(db.Boolean, default=False, nullable=False)
    charges_enabled = db.Column(db.Boolean, default=False, nullable=False)
    onboarding_completed_at = db.Column(db.DateTime, nullable=True)

    # Cached projection of this creator's payout rows; only mutated through
    # src.services.balances.
    balance_available = db.Column(db.Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    balance_pending = db.Column(db.Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    balance_total_earned = db.Column(db.Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    balance_updated_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    characters = db.relationship('Character', back_populates='creator', lazy='dynamic')

    # --- password helpers ---
    def set_password(self, raw_password: str):
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        return check_password_hash(self.password_hash, raw_password)

    def balance_dict(self):
        return {
            "available": money(self.balance_available),
            "pending": money(self.balance_pending),
            "total_earned": money(self.balance_total_earned),
            "last_updated": iso(self.balance_updated_at),
        }

    def public_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "bio": self.bio,
            "profile_picture": self.profile_picture,
            "created_at": iso(self.created_at),
        }

    # --- safe serializer ---
    def to_dict(self):
        data = self.public_dict()
        data.update({
            "email": self.email,
            "stripe_connect": {
                "account_id": self.stripe_account_id,
                "is_onboarded": self.stripe_onboarded,
                "payouts_enabled": self.payouts_enabled,
                "charges_enabled": self.charges_enabled,
                "onboarding_completed_at": iso(self.onboarding_completed_at),
            },
            "balance": self.balance_dict(),
            "updated_at": iso(self.updated_at),
        })
        return data
