# -*- coding: utf-8 -*-
"""
Webhook reconciliation state machine.

Purchase lifecycle:

    unpaid -> paid (no fulfillment order) -> paid (fulfillment order) -> shipped -> delivered
    any non-delivered state -> cancelled

Payout lifecycle: pending -> paid | failed, paid -> failed (reversal).

Handlers are keyed by stable external ids (payment intent id, fulfillment
order id / order_ref, transfer id, connected account id) and every state
change is a guarded UPDATE, so duplicated or reordered deliveries converge
on the same state. Delivered purchases only accept payout updates; cancelled
purchases accept nothing further.
"""
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

import sqlalchemy as sa
from flask import current_app

from src.database import db
from src.models.purchase import (
    CreatorPayout, Purchase, PAYOUT_FAILED, PAYOUT_PAID, PAYOUT_PENDING, STATUS_CANCELLED,
    STATUS_DELIVERED, STATUS_PENDING, STATUS_PROCESSING, STATUS_SHIPPED)
from src.models.types import utcnow
from src.models.user import User
from src.services import balances
from src.services.errors import ExternalServiceError, OutOfStock
from src.services.gateways import get_gateways
from src.services.pricing import to_minor_units
from src.services.structured_logging import get_logger

logger = get_logger('waifu.webhooks')

TRANSFER_CLAIM_PREFIX = "claim:"

# Handler return values, recorded on the webhook event row
PROCESSED = "processed"
IGNORED = "ignored"


# ---------------------------------------------------------------------------
# Fulfillment order creation
# ---------------------------------------------------------------------------

def _claim_fulfillment(purchase_id: str) -> bool:
    now = utcnow()
    stale_before = now - timedelta(seconds=int(current_app.config.get("FULFILLMENT_CLAIM_TTL_SECONDS", 300)))
    result = db.session.execute(
        sa.update(Purchase)
        .where(
            Purchase.id == purchase_id,
            Purchase.is_paid.is_(True),
            Purchase.printful_order_id.is_(None),
            Purchase.status.in_((STATUS_PROCESSING,)),
            sa.or_(Purchase.fulfillment_claimed_at.is_(None),
                   Purchase.fulfillment_claimed_at < stale_before),
        )
        .values(fulfillment_claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return result.rowcount == 1


def _release_fulfillment_claim(purchase_id: str) -> None:
    db.session.execute(
        sa.update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.printful_order_id.is_(None))
        .values(fulfillment_claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def ensure_fulfillment_order(purchase_id: str) -> Optional[str]:
    """
    Create the fulfillment order for a paid purchase unless one exists or
    another worker holds the claim. Returns the fulfillment order id, if any.

    The purchase's order_ref is sent as the order's external id. Failures
    are logged and leave the purchase unlinked for a later webhook or sweep.
    """
    if not _claim_fulfillment(purchase_id):
        purchase = db.session.get(Purchase, purchase_id)
        return purchase.printful_order_id if purchase else None

    purchase = db.session.get(Purchase, purchase_id)
    db.session.refresh(purchase)
    items = [
        {
            "variant_id": item.printful_variant_id,
            "quantity": item.quantity,
            "price": item.unit_price,
            "image_url": _item_image(item),
        }
        for item in purchase.items
        if item.printful_variant_id
    ]
    if not items:
        logger.warning("Purchase has no fulfillable items", purchase_id=purchase.id)
        purchase.printful_order_status = "not_fulfillable"
        purchase.fulfillment_claimed_at = None
        db.session.commit()
        return None

    address = purchase.shipping_address or {}
    try:
        order = get_gateways().fulfillment.create_order(
            address,
            address.get("email"),
            address.get("phone"),
            items,
            external_id=purchase.order_ref,
            shipping_method=purchase.shipping_method,
        )
    except ExternalServiceError as e:
        logger.error("Fulfillment order creation failed", purchase_id=purchase.id, error=e.message)
        _release_fulfillment_claim(purchase.id)
        return None

    purchase.printful_order_id = order["id"]
    purchase.printful_order_status = order.get("status")
    purchase.fulfillment_claimed_at = None
    db.session.commit()
    logger.info("Fulfillment order created", purchase_id=purchase.id, printful_order_id=order["id"])
    return order["id"]


def _item_image(item) -> Optional[str]:
    from src.models.merchandise import Merchandise

    if not item.merchandise_id:
        return None
    merchandise = db.session.get(Merchandise, item.merchandise_id)
    return merchandise.image_url if merchandise else None


# ---------------------------------------------------------------------------
# Creator payouts
# ---------------------------------------------------------------------------

def dispatch_payouts(purchase_id: str) -> int:
    """
    Transfer each pending, untransferred payout of a paid purchase to its
    creator's connected account. Returns the number of transfers created.

    Payouts of creators without a connected account stay pending.
    """
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None or not purchase.is_paid or purchase.status == STATUS_CANCELLED:
        return 0

    created = 0
    for payout in list(purchase.payouts):
        if payout.status != PAYOUT_PENDING or payout.stripe_transfer_id:
            continue
        creator = db.session.get(User, payout.creator_id)
        destination = payout.destination_account_id or (creator.stripe_account_id if creator else None)
        if not destination:
            logger.info("Payout waiting for connected account",
                        payout_id=payout.id, creator_id=payout.creator_id)
            continue

        claim = f"{TRANSFER_CLAIM_PREFIX}{payout.id}"
        claimed = db.session.execute(
            sa.update(CreatorPayout)
            .where(CreatorPayout.id == payout.id, CreatorPayout.stripe_transfer_id.is_(None))
            .values(stripe_transfer_id=claim, destination_account_id=destination)
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        db.session.commit()
        if not claimed:
            continue

        try:
            transfer = get_gateways().payment.create_transfer_with_fee(
                to_minor_units(payout.amount),
                destination,
                0,
                metadata={
                    "purchase_id": purchase.id,
                    "creator_id": payout.creator_id,
                    "payout_id": payout.id,
                    "order_ref": purchase.order_ref,
                },
                transfer_group=purchase.order_ref,
                idempotency_key=f"payout-{payout.id}",
            )
        except ExternalServiceError as e:
            logger.error("Creator transfer failed", payout_id=payout.id, error=e.message)
            db.session.execute(
                sa.update(CreatorPayout)
                .where(CreatorPayout.id == payout.id, CreatorPayout.stripe_transfer_id == claim)
                .values(stripe_transfer_id=None)
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            continue

        db.session.execute(
            sa.update(CreatorPayout)
            .where(CreatorPayout.id == payout.id, CreatorPayout.stripe_transfer_id == claim)
            .values(stripe_transfer_id=transfer["id"])
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        created += 1
        logger.info("Creator transfer created", payout_id=payout.id, transfer_id=transfer["id"])
    db.session.expire_all()
    return created


# ---------------------------------------------------------------------------
# Payment gateway events
# ---------------------------------------------------------------------------

def mark_paid(purchase_id: str) -> None:
    """Flag a purchase paid once the payment gateway has confirmed it."""
    now = utcnow()
    db.session.execute(
        sa.update(Purchase)
        .where(Purchase.id == purchase_id, Purchase.is_paid.is_(False))
        .values(is_paid=True, paid_at=now)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def settle_paid_purchase(purchase_id: str) -> int:
    """Create the fulfillment order and creator transfers of a paid purchase."""
    ensure_fulfillment_order(purchase_id)
    return dispatch_payouts(purchase_id)


def handle_payment_intent_succeeded(intent: Mapping[str, Any]) -> str:
    from src.services.checkout import complete_purchase

    purchase = Purchase.query.filter_by(stripe_payment_intent_id=intent.get("id")).first()
    if purchase is None:
        logger.warning("No purchase for payment intent", payment_intent_id=intent.get("id"))
        return IGNORED
    if purchase.status == STATUS_CANCELLED:
        return IGNORED

    mark_paid(purchase.id)
    db.session.refresh(purchase)

    if purchase.status == STATUS_PENDING:
        try:
            complete_purchase(purchase, attempt_fulfillment=False)
        except OutOfStock as e:
            # Paid but unfillable; left pending for a refund decision
            logger.error("Paid purchase could not be completed", purchase_id=purchase.id, error=e.message)
            raise

    settle_paid_purchase(purchase.id)
    return PROCESSED


def handle_charge_succeeded(charge: Mapping[str, Any]) -> str:
    logger.info("Charge succeeded", charge_id=charge.get("id"),
                payment_intent_id=charge.get("payment_intent"))
    return IGNORED


def _payout_for_transfer(transfer: Mapping[str, Any]) -> Optional[CreatorPayout]:
    payout = CreatorPayout.query.filter_by(stripe_transfer_id=transfer.get("id")).first()
    if payout is not None:
        return payout

    metadata = transfer.get("metadata") or {}
    if metadata.get("payout_id"):
        payout = db.session.get(CreatorPayout, metadata["payout_id"])
        if payout is not None:
            return payout

    purchase_id = metadata.get("purchase_id")
    if not purchase_id:
        return None
    creator_id = metadata.get("creator_id")
    if not creator_id and transfer.get("destination"):
        creator = User.query.filter_by(stripe_account_id=transfer["destination"]).first()
        creator_id = creator.id if creator else None
    if not creator_id:
        return None
    return CreatorPayout.query.filter_by(purchase_id=purchase_id, creator_id=creator_id).first()


def handle_transfer_created(transfer: Mapping[str, Any]) -> str:
    payout = _payout_for_transfer(transfer)
    if payout is None:
        logger.warning("No payout for transfer", transfer_id=transfer.get("id"))
        return IGNORED
    # Attach the transfer id; the payout stays pending until paid
    db.session.execute(
        sa.update(CreatorPayout)
        .where(
            CreatorPayout.id == payout.id,
            sa.or_(CreatorPayout.stripe_transfer_id.is_(None),
                   CreatorPayout.stripe_transfer_id.like(f"{TRANSFER_CLAIM_PREFIX}%")),
        )
        .values(stripe_transfer_id=transfer["id"])
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return PROCESSED


def _transition_payout(payout: CreatorPayout, to_status: str, from_status: str = PAYOUT_PENDING) -> bool:
    now = utcnow()
    values: Dict[str, Any] = {"status": to_status}
    if to_status == PAYOUT_PAID:
        values["paid_at"] = now
    else:
        values["failed_at"] = now
    result = db.session.execute(
        sa.update(CreatorPayout)
        .where(CreatorPayout.id == payout.id, CreatorPayout.status == from_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def handle_transfer_paid(transfer: Mapping[str, Any]) -> str:
    payout = _payout_for_transfer(transfer)
    if payout is None:
        logger.warning("No payout for paid transfer", transfer_id=transfer.get("id"))
        return IGNORED
    if not _transition_payout(payout, PAYOUT_PAID):
        db.session.rollback()
        logger.info("Payout already settled", payout_id=payout.id, status=payout.status)
        return IGNORED
    balances.settle_payout(payout.creator_id, payout.amount)
    db.session.commit()
    logger.info("Payout paid", payout_id=payout.id, amount=str(payout.amount))
    return PROCESSED


def handle_transfer_failed(transfer: Mapping[str, Any]) -> str:
    """Fail a payout on transfer.failed or transfer.reversed.

    A pending payout loses its pending credit. A payout that was already paid
    out is clawed back from the creator's available balance and total earned.
    """
    payout = _payout_for_transfer(transfer)
    if payout is None:
        return IGNORED
    if _transition_payout(payout, PAYOUT_FAILED):
        balances.reverse_payout(payout.creator_id, payout.amount)
    elif _transition_payout(payout, PAYOUT_FAILED, from_status=PAYOUT_PAID):
        balances.reverse_settled_payout(payout.creator_id, payout.amount)
        logger.warning("Paid payout reversed", payout_id=payout.id, amount=str(payout.amount))
    else:
        db.session.rollback()
        return IGNORED
    db.session.commit()
    logger.warning("Payout failed", payout_id=payout.id, amount=str(payout.amount))
    return PROCESSED


def handle_account_updated(account: Mapping[str, Any]) -> str:
    user = User.query.filter_by(stripe_account_id=account.get("id")).first()
    if user is None:
        return IGNORED
    apply_account_details(user, {
        "details_submitted": account.get("details_submitted"),
        "payouts_enabled": account.get("payouts_enabled"),
        "charges_enabled": account.get("charges_enabled"),
    })
    db.session.commit()
    return PROCESSED


def apply_account_details(user: User, details: Mapping[str, Any]) -> None:
    user.stripe_onboarded = bool(details.get("details_submitted"))
    user.payouts_enabled = bool(details.get("payouts_enabled"))
    user.charges_enabled = bool(details.get("charges_enabled"))
    if user.stripe_onboarded and user.onboarding_completed_at is None:
        user.onboarding_completed_at = utcnow()


STRIPE_HANDLERS = {
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "charge.succeeded": handle_charge_succeeded,
    "transfer.created": handle_transfer_created,
    "transfer.paid": handle_transfer_paid,
    "transfer.reversed": handle_transfer_failed,
    "transfer.failed": handle_transfer_failed,
    "account.updated": handle_account_updated,
}


# ---------------------------------------------------------------------------
# Fulfillment gateway events
# ---------------------------------------------------------------------------

def _order_of(data: Mapping[str, Any]) -> Dict[str, Any]:
    return dict(data.get("order") or {})


def _purchase_for_order(order: Mapping[str, Any]) -> Optional[Purchase]:
    """Find by fulfillment order id, then by order_ref sent as external id; links on the way."""
    purchase = None
    if order.get("id") is not None:
        purchase = Purchase.query.filter_by(printful_order_id=str(order["id"])).first()
    if purchase is None and order.get("external_id"):
        purchase = Purchase.query.filter_by(order_ref=order["external_id"]).first()
        if purchase is not None and order.get("id") is not None:
            _link(purchase, str(order["id"]))
    return purchase


def _link(purchase: Purchase, order_id: str) -> bool:
    result = db.session.execute(
        sa.update(Purchase)
        .where(Purchase.id == purchase.id, Purchase.printful_order_id.is_(None))
        .values(printful_order_id=order_id, fulfillment_claimed_at=None)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(purchase)
    return result.rowcount == 1


def _heuristic_match(order: Mapping[str, Any]) -> Optional[Purchase]:
    """Oldest paid, unlinked purchase with the same number of line items."""
    item_count = len(order.get("items") or [])
    candidates = (
        Purchase.query
        .filter(Purchase.is_paid.is_(True),
                Purchase.printful_order_id.is_(None),
                Purchase.status == STATUS_PROCESSING)
        .order_by(Purchase.created_at.asc())
        .all()
    )
    for candidate in candidates:
        if len(candidate.items) == item_count:
            return candidate
    return None


def handle_order_created(data: Mapping[str, Any]) -> str:
    order = _order_of(data)
    purchase = _purchase_for_order(order)
    if purchase is None:
        purchase = _heuristic_match(order)
        if purchase is None:
            logger.warning("No purchase for fulfillment order", printful_order_id=order.get("id"))
            return IGNORED
        if not _link(purchase, str(order["id"])):
            return IGNORED
        logger.warning("Fulfillment order linked by item count",
                       purchase_id=purchase.id, printful_order_id=order.get("id"))
    if order.get("status") and not purchase.is_terminal:
        purchase.printful_order_status = order["status"]
        db.session.commit()
    return PROCESSED


def _mark_shipped(purchase: Purchase, shipment: Optional[Mapping[str, Any]] = None) -> None:
    if shipment:
        purchase.tracking_number = shipment.get("tracking_number") or purchase.tracking_number
        purchase.tracking_url = shipment.get("tracking_url") or purchase.tracking_url
    if not purchase.is_shipped:
        purchase.is_shipped = True
        purchase.shipped_at = utcnow()
    purchase.status = STATUS_SHIPPED


def _mark_cancelled(purchase: Purchase) -> None:
    purchase.status = STATUS_CANCELLED
    purchase.cancelled_at = purchase.cancelled_at or utcnow()


def handle_order_updated(data: Mapping[str, Any]) -> str:
    order = _order_of(data)
    purchase = _purchase_for_order(order)
    if purchase is None or purchase.is_terminal:
        return IGNORED
    status = order.get("status")
    if status:
        purchase.printful_order_status = status
    if status == "fulfilled":
        _mark_shipped(purchase)
    elif status == "canceled":
        _mark_cancelled(purchase)
    db.session.commit()
    return PROCESSED


def handle_package_shipped(data: Mapping[str, Any]) -> str:
    order = _order_of(data)
    purchase = _purchase_for_order(order)
    if purchase is None or purchase.is_terminal:
        return IGNORED
    _mark_shipped(purchase, data.get("shipment") or {})
    if order.get("status"):
        purchase.printful_order_status = order["status"]
    db.session.commit()
    return PROCESSED


def handle_shipment_delivered(data: Mapping[str, Any]) -> str:
    order = _order_of(data)
    purchase = _purchase_for_order(order)
    if purchase is None or purchase.is_terminal:
        return IGNORED
    if not purchase.is_shipped:
        _mark_shipped(purchase, data.get("shipment") or {})
    purchase.is_delivered = True
    purchase.delivered_at = utcnow()
    purchase.status = STATUS_DELIVERED
    db.session.commit()
    return PROCESSED


def handle_order_failed(data: Mapping[str, Any]) -> str:
    order = _order_of(data)
    purchase = _purchase_for_order(order)
    if purchase is None or purchase.is_terminal:
        return IGNORED
    # Stays processing for manual intervention
    purchase.printful_order_status = "failed"
    db.session.commit()
    logger.error("Fulfillment order failed", purchase_id=purchase.id,
                 printful_order_id=order.get("id"), reason=data.get("reason"))
    return PROCESSED


def handle_order_canceled(data: Mapping[str, Any]) -> str:
    order = _order_of(data)
    purchase = _purchase_for_order(order)
    if purchase is None or purchase.is_terminal:
        return IGNORED
    purchase.printful_order_status = "canceled"
    _mark_cancelled(purchase)
    db.session.commit()
    return PROCESSED


PRINTFUL_HANDLERS = {
    "order_created": handle_order_created,
    "order_updated": handle_order_updated,
    "package_shipped": handle_package_shipped,
    "order_shipped": handle_package_shipped,
    "shipment_delivered": handle_shipment_delivered,
    "order_failed": handle_order_failed,
    "order_canceled": handle_order_canceled,
}


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

def _confirm_unpaid_payments(limit: int) -> int:
    from src.services.checkout import confirm_payment

    unpaid = (
        Purchase.query
        .filter(Purchase.is_paid.is_(False),
                Purchase.status == STATUS_PROCESSING,
                Purchase.payment_method == "credit_card",
                Purchase.stripe_payment_intent_id.isnot(None))
        .order_by(Purchase.created_at.asc())
        .limit(limit)
        .all()
    )
    confirmed = 0
    for purchase in unpaid:
        try:
            if confirm_payment(purchase):
                confirmed += 1
        except ExternalServiceError as e:
            logger.error("Payment confirmation failed", purchase_id=purchase.id, error=e.message)
    return confirmed


def run_reconciliation(limit: int = 200) -> Dict[str, int]:
    """
    Retry whatever webhooks and synchronous calls left undone: confirm card
    payments the gateway reports as succeeded, create missing fulfillment
    orders (including ones whose claim went stale) and dispatch untransferred
    creator payouts.
    """
    summary = {"examined": 0, "payments_confirmed": _confirm_unpaid_payments(limit),
               "orders_created": 0, "transfers_created": 0}
    purchases = (
        Purchase.query
        .filter(Purchase.is_paid.is_(True),
                Purchase.status.in_((STATUS_PROCESSING, STATUS_SHIPPED, STATUS_DELIVERED)))
        .order_by(Purchase.created_at.asc())
        .limit(limit)
        .all()
    )
    for purchase in purchases:
        summary["examined"] += 1
        if purchase.status == STATUS_PROCESSING and purchase.printful_order_id is None \
                and purchase.printful_order_status != "not_fulfillable":
            if ensure_fulfillment_order(purchase.id):
                summary["orders_created"] += 1
        summary["transfers_created"] += dispatch_payouts(purchase.id)
    logger.info("Reconciliation sweep finished", **summary)
    return summary
