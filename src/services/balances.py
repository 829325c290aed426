# -*- coding: utf-8 -*-
"""
Creator balance projection.

User.balance_* is a cache over CreatorPayout rows. It is only ever moved by
the amount of a specific payout row, and only alongside that row's status
transition:

    payout created (pending)   pending += amount, total_earned += amount
    payout pending -> paid     pending -= amount, available += amount
    payout pending -> failed   pending -= amount, total_earned -= amount
    payout paid -> failed      available -= amount, total_earned -= amount

Updates are single SQL expressions so concurrent writers never lose an
increment. Callers own the transaction.
"""
from decimal import Decimal
from typing import Dict

import sqlalchemy as sa

from src.database import db
from src.models.purchase import CreatorPayout, PAYOUT_PAID, PAYOUT_PENDING
from src.models.types import utcnow
from src.models.user import User


def _apply(creator_id: str, **deltas: Decimal) -> None:
    values = {
        f"balance_{field}": getattr(User, f"balance_{field}") + delta
        for field, delta in deltas.items()
    }
    values["balance_updated_at"] = utcnow()
    db.session.execute(
        sa.update(User)
        .where(User.id == creator_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )


def credit_pending(creator_id: str, amount: Decimal) -> None:
    _apply(creator_id, pending=amount, total_earned=amount)


def settle_payout(creator_id: str, amount: Decimal) -> None:
    _apply(creator_id, pending=-amount, available=amount)


def reverse_payout(creator_id: str, amount: Decimal) -> None:
    _apply(creator_id, pending=-amount, total_earned=-amount)


def reverse_settled_payout(creator_id: str, amount: Decimal) -> None:
    _apply(creator_id, available=-amount, total_earned=-amount)


def derived_balance(creator_id: str) -> Dict[str, Decimal]:
    """Recompute a creator's balance from their payout rows."""
    rows = db.session.execute(
        sa.select(CreatorPayout.status, sa.func.coalesce(sa.func.sum(CreatorPayout.amount), 0))
        .where(CreatorPayout.creator_id == creator_id)
        .group_by(CreatorPayout.status)
    ).all()
    sums = {status: Decimal(str(total)).quantize(Decimal("0.01")) for status, total in rows}
    pending = sums.get(PAYOUT_PENDING, Decimal("0.00"))
    paid = sums.get(PAYOUT_PAID, Decimal("0.00"))
    return {"available": paid, "pending": pending, "total_earned": paid + pending}
