# -*- coding: utf-8 -*-
"""
Creator payment accounts (payment gateway connected accounts).
"""
from typing import Any, Dict

from src.database import db
from src.models.user import User
from src.services.gateways import get_gateways
from src.services.reconciliation import apply_account_details
from src.services.structured_logging import get_logger

logger = get_logger('waifu.connect')

DEFAULT_COUNTRY = "US"


def ensure_connected_account(user: User) -> str:
    """Return the creator's connected account id, creating the account if needed."""
    if user.stripe_account_id:
        return user.stripe_account_id
    account = get_gateways().payment.create_connected_account({
        "user_id": user.id,
        "email": user.email,
        "username": user.username,
        "country": DEFAULT_COUNTRY,
    })
    user.stripe_account_id = account["id"]
    user.stripe_onboarded = False
    user.payouts_enabled = False
    user.charges_enabled = False
    db.session.commit()
    logger.info("Connected account created", user_id=user.id, account_id=account["id"])
    return account["id"]


def onboarding_link(user: User, refresh_url: str, return_url: str) -> str:
    account_id = ensure_connected_account(user)
    link = get_gateways().payment.create_account_link(account_id, refresh_url, return_url)
    return link["url"]


def refresh_account_status(user: User) -> Dict[str, Any]:
    """Pull the onboarding and payout flags from the gateway into the user row."""
    if not user.stripe_account_id:
        return {"is_connected": False, "is_onboarded": False, "payouts_enabled": False,
                "charges_enabled": False}
    details = get_gateways().payment.get_account_details(user.stripe_account_id)
    apply_account_details(user, details)
    db.session.commit()
    return {
        "is_connected": True,
        "is_onboarded": user.stripe_onboarded,
        "payouts_enabled": user.payouts_enabled,
        "charges_enabled": user.charges_enabled,
        "onboarding_completed_at": user.onboarding_completed_at.isoformat()
        if user.onboarding_completed_at else None,
    }
