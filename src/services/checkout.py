# -*- coding: utf-8 -*-
"""
Checkout engine: quoting a cart, completing a purchase and confirming payment.

Quote (build_quote)
    Prices every line, resolves fulfillment variants, asks the fulfillment
    gateway for shipping rates, creates the payment intent and persists a
    `pending` Purchase holding the unit-price snapshot. Stock is not reserved.

Completion (complete_purchase)
    Re-checks stock, recomputes the split from the snapshot, claims the
    purchase (pending -> processing) and takes stock with compare-and-decrement
    updates in one transaction, creates one pending payout per creator,
    credits the creators' pending balances and commits. Completion never marks
    the purchase paid; the fulfillment order is attempted only when payment was
    already confirmed. Completing a purchase that is no longer pending returns
    it unchanged.

Confirmation (confirm_payment)
    Asks the payment gateway whether the card intent succeeded and, if so,
    marks the purchase paid. The payment_intent.succeeded webhook does the same
    thing without being asked. Crypto and PayPal purchases stay unpaid.

Multi-creator carts are charged with a single payment intent; each creator
is paid afterwards by a separate transfer of their aggregated revenue (see
src.services.reconciliation.dispatch_payouts).
"""
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

import sqlalchemy as sa
from flask import current_app

from src.database import db
from src.models.merchandise import Merchandise
from src.models.purchase import (
    CreatorPayout, Purchase, PurchaseItem, STATUS_PENDING, STATUS_PROCESSING, new_order_ref)
from src.models.types import utcnow
from src.models.user import User
from src.services import balances
from src.services.errors import ExternalServiceError, NotFound, OutOfStock, ValidationError
from src.services.gateways import get_gateways
from src.services.gateways.fulfillment import DEFAULT_SHIPPING_RATES
from src.services.metrics import get_metrics_service
from src.services.pricing import (
    aggregate_by_creator, line_breakdown, rates_to_list, resolve_variant, select_shipping_rate,
    to_minor_units, to_money)
from src.services.structured_logging import get_logger

logger = get_logger('waifu.checkout')

TAX_AMOUNT = Decimal("0.00")


def _record(stage: str, outcome: str) -> None:
    metrics = get_metrics_service()
    if metrics:
        metrics.record_checkout(stage, outcome)


def _price_lines(lines: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    priced = []
    for index, line in enumerate(lines):
        merchandise = db.session.get(Merchandise, line["merchandise_id"])
        if merchandise is None:
            raise NotFound(
                f"Merchandise {line['merchandise_id']} not found",
                details={"line": index, "merchandise_id": line["merchandise_id"]},
            )
        quantity = int(line["quantity"])
        variant = resolve_variant(merchandise.printful_variants or [], line.get("size"), line.get("color"))
        breakdown = line_breakdown(
            merchandise.price, merchandise.production_cost, quantity, merchandise.platform_fee_percent)
        priced.append({
            "merchandise": merchandise,
            "merchandise_id": merchandise.id,
            "name": merchandise.name,
            "creator_id": merchandise.creator_id,
            "quantity": quantity,
            "size": line.get("size"),
            "color": line.get("color"),
            "unit_price": to_money(merchandise.price),
            "variant_id": str(variant["variant_id"]) if variant and variant.get("variant_id") else None,
            "item_price": breakdown.item_price,
            "production_cost": breakdown.production_cost,
            "platform_fee": breakdown.platform_fee,
            "creator_revenue": breakdown.creator_revenue,
        })
    return priced


def shipping_rates_for(address: Mapping[str, Any], priced: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Ask the fulfillment gateway for rates; lines without a variant are not shippable by it."""
    items = [{"variant_id": p["variant_id"], "quantity": p["quantity"]} for p in priced if p["variant_id"]]
    if not items:
        return []
    return get_gateways().fulfillment.calculate_shipping_rates(address, items)


def estimate_shipping(lines: Sequence[Mapping[str, Any]], address: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Cosmetic shipping estimate for a cart. Unlike the quote, an unreachable
    fulfillment gateway yields the fixed default rates.
    """
    priced = _price_lines(lines)
    fallback = False
    try:
        rates = shipping_rates_for(address, priced)
    except ExternalServiceError as e:
        logger.log_fallback("shipping_rates", e.message)
        metrics = get_metrics_service()
        if metrics:
            metrics.record_fallback("shipping_rates")
        rates = []
        fallback = True
    if not rates:
        rates = [dict(r) for r in DEFAULT_SHIPPING_RATES]
    return {"rates": rates_to_list(rates), "fallback": fallback}


def _line_view(p: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "merchandise_id": p["merchandise_id"],
        "name": p["name"],
        "creator_id": p["creator_id"],
        "quantity": p["quantity"],
        "size": p["size"],
        "color": p["color"],
        "unit_price": float(p["unit_price"]),
        "printful_variant_id": p["variant_id"],
        "item_price": float(p["item_price"]),
        "production_cost": float(p["production_cost"]),
        "platform_fee": float(p["platform_fee"]),
        "creator_revenue": float(p["creator_revenue"]),
    }


def build_quote(
    buyer: User,
    lines: Sequence[Mapping[str, Any]],
    shipping_address: Mapping[str, Any],
    shipping_method: Optional[str] = None,
    payment_method: str = "credit_card",
) -> Dict[str, Any]:
    """Price a cart, start payment and persist the pending purchase."""
    if not lines:
        raise ValidationError("Cart is empty")

    priced = _price_lines(lines)
    subtotal = sum((p["item_price"] for p in priced), Decimal("0.00"))
    creator_totals = aggregate_by_creator(priced)

    # Money-moving: gateway failures propagate
    rates = shipping_rates_for(shipping_address, priced)
    selected = select_shipping_rate(rates, shipping_method, current_app.config["DEFAULT_SHIPPING_RATE"])
    shipping_cost = selected["rate"]
    total = subtotal + shipping_cost + TAX_AMOUNT

    purchase = Purchase(
        order_ref=new_order_ref(),
        user_id=buyer.id,
        status=STATUS_PENDING,
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax_amount=TAX_AMOUNT,
        total_amount=total,
        shipping_method=selected.get("id"),
        shipping_address=dict(shipping_address),
        payment_method=payment_method,
    )
    for p in priced:
        purchase.items.append(PurchaseItem(
            merchandise_id=p["merchandise_id"],
            merchandise_name=p["name"],
            creator_id=p["creator_id"],
            quantity=p["quantity"],
            size=p["size"],
            color=p["color"],
            unit_price=p["unit_price"],
            printful_variant_id=p["variant_id"],
            item_price=p["item_price"],
            production_cost=p["production_cost"],
            platform_fee=p["platform_fee"],
            creator_revenue=p["creator_revenue"],
        ))
    db.session.add(purchase)
    db.session.flush()

    client_secret = None
    try:
        if payment_method == "credit_card":
            intent = get_gateways().payment.create_payment_intent(
                to_minor_units(total),
                current_app.config.get("STRIPE_CURRENCY", "usd"),
                metadata={
                    "purchase_id": purchase.id,
                    "order_ref": purchase.order_ref,
                    "user_id": buyer.id,
                    "item_count": str(len(priced)),
                    "creator_ids": ",".join(creator_totals.keys()),
                },
                transfer_group=purchase.order_ref,
                idempotency_key=purchase.order_ref,
            )
            purchase.stripe_payment_intent_id = intent["id"]
            client_secret = intent["client_secret"]
        else:
            purchase.payment_reference = f"{payment_method}_{purchase.order_ref}"
    except ExternalServiceError:
        db.session.rollback()
        _record("quote", "gateway_error")
        raise

    db.session.commit()
    _record("quote", "ok")
    logger.info(
        "Checkout quoted",
        purchase_id=purchase.id,
        order_ref=purchase.order_ref,
        total=str(total),
        line_count=len(priced),
        creator_count=len(creator_totals),
    )

    return {
        "purchase_id": purchase.id,
        "order_ref": purchase.order_ref,
        "payment_method": payment_method,
        "client_secret": client_secret,
        "payment_intent_id": purchase.stripe_payment_intent_id,
        "payment_reference": purchase.payment_reference,
        "items": [_line_view(p) for p in priced],
        "subtotal": float(subtotal),
        "shipping_cost": float(shipping_cost),
        "tax_amount": float(TAX_AMOUNT),
        "total": float(total),
        "shipping_method": selected.get("id"),
        "shipping_rates": rates_to_list(rates),
    }


def _quantities_by_merchandise(purchase: Purchase) -> "OrderedDict[str, int]":
    wanted: "OrderedDict[str, int]" = OrderedDict()
    for item in purchase.items:
        if item.merchandise_id is None:
            raise NotFound(f"Merchandise '{item.merchandise_name}' is no longer available",
                           details={"merchandise_name": item.merchandise_name})
        wanted[item.merchandise_id] = wanted.get(item.merchandise_id, 0) + item.quantity
    return wanted


def check_stock(wanted: Mapping[str, int]) -> Dict[str, Merchandise]:
    """Fail with OutOfStock naming the first line that cannot be filled."""
    found = {}
    for merchandise_id, quantity in wanted.items():
        merchandise = db.session.get(Merchandise, merchandise_id)
        if merchandise is None:
            raise NotFound(f"Merchandise {merchandise_id} not found",
                           details={"merchandise_id": merchandise_id})
        if merchandise.stock < quantity:
            raise OutOfStock(merchandise.id, merchandise.name, quantity, merchandise.stock)
        found[merchandise_id] = merchandise
    return found


def _take_stock(merchandise: Merchandise, quantity: int) -> None:
    """Compare-and-decrement; raises OutOfStock when the row no longer has enough."""
    result = db.session.execute(
        sa.update(Merchandise)
        .where(Merchandise.id == merchandise.id, Merchandise.stock >= quantity)
        .values(stock=Merchandise.stock - quantity, sold=Merchandise.sold + quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        available = db.session.execute(
            sa.select(Merchandise.stock).where(Merchandise.id == merchandise.id)
        ).scalar_one()
        raise OutOfStock(merchandise.id, merchandise.name, quantity, available)


def _claim_for_completion(purchase: Purchase) -> bool:
    result = db.session.execute(
        sa.update(Purchase)
        .where(Purchase.id == purchase.id, Purchase.status == STATUS_PENDING)
        .values(status=STATUS_PROCESSING)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def complete_purchase(purchase: Purchase, attempt_fulfillment: bool = True) -> Purchase:
    """Take stock and book payouts for a pending purchase. Idempotent.

    Fulfillment is attempted only for purchases whose payment has already been
    confirmed; unpaid ones are picked up once confirmation arrives.
    """
    from src.services.reconciliation import ensure_fulfillment_order

    if purchase.status != STATUS_PENDING:
        logger.info("Completion skipped; purchase already completed",
                    purchase_id=purchase.id, status=purchase.status)
        return purchase

    wanted = _quantities_by_merchandise(purchase)
    try:
        merchandise = check_stock(wanted)

        # Current cost and fee, snapshotted unit price
        totals_by_creator: Dict[str, Decimal] = OrderedDict()
        subtotal = Decimal("0.00")
        for item in purchase.items:
            current = merchandise[item.merchandise_id]
            breakdown = line_breakdown(
                item.unit_price, current.production_cost, item.quantity, current.platform_fee_percent)
            item.creator_id = current.creator_id
            item.item_price = breakdown.item_price
            item.production_cost = breakdown.production_cost
            item.platform_fee = breakdown.platform_fee
            item.creator_revenue = breakdown.creator_revenue
            subtotal += breakdown.item_price
            totals_by_creator[current.creator_id] = (
                totals_by_creator.get(current.creator_id, Decimal("0.00")) + breakdown.creator_revenue)

        if not _claim_for_completion(purchase):
            db.session.rollback()
            db.session.refresh(purchase)
            logger.info("Completion lost race; purchase already claimed", purchase_id=purchase.id)
            return purchase

        for merchandise_id, quantity in wanted.items():
            _take_stock(merchandise[merchandise_id], quantity)
    except (OutOfStock, NotFound):
        db.session.rollback()
        _record("complete", "out_of_stock")
        raise

    now = utcnow()
    purchase.status = STATUS_PROCESSING
    purchase.subtotal = subtotal
    purchase.total_amount = subtotal + to_money(purchase.shipping_cost) + to_money(purchase.tax_amount)
    purchase.completed_at = now

    for creator_id, amount in totals_by_creator.items():
        if amount <= 0:
            continue
        creator = db.session.get(User, creator_id)
        purchase.payouts.append(CreatorPayout(
            creator_id=creator_id,
            amount=amount,
            destination_account_id=creator.stripe_account_id if creator else None,
        ))
        balances.credit_pending(creator_id, amount)

    db.session.commit()
    _record("complete", "ok")
    logger.info(
        "Purchase completed",
        purchase_id=purchase.id,
        order_ref=purchase.order_ref,
        total=str(purchase.total_amount),
        payouts=len(purchase.payouts),
    )

    if attempt_fulfillment and purchase.is_paid:
        ensure_fulfillment_order(purchase.id)
        db.session.refresh(purchase)
    return purchase


def confirm_payment(purchase: Purchase) -> bool:
    """Mark the purchase paid if the gateway reports its card intent succeeded."""
    from src.services.reconciliation import mark_paid

    if purchase.is_paid:
        return True
    if purchase.payment_method != "credit_card" or not purchase.stripe_payment_intent_id:
        return False

    status = get_gateways().payment.get_payment_intent_status(purchase.stripe_payment_intent_id)
    if status != "succeeded":
        logger.info("Payment not confirmed", purchase_id=purchase.id, intent_status=status)
        return False

    mark_paid(purchase.id)
    db.session.refresh(purchase)
    logger.info("Payment confirmed by gateway", purchase_id=purchase.id)
    return True


def find_purchase(purchase_id: Optional[str] = None, payment_intent_id: Optional[str] = None) -> Purchase:
    purchase = None
    if purchase_id:
        purchase = db.session.get(Purchase, purchase_id)
    elif payment_intent_id:
        purchase = Purchase.query.filter_by(stripe_payment_intent_id=payment_intent_id).first()
    if purchase is None:
        raise NotFound("Purchase not found")
    return purchase
