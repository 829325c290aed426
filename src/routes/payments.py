# -*- coding: utf-8 -*-
"""
Payment completion, orders and gateway webhooks.
"""
import hmac

from flask import Blueprint, current_app, g, jsonify, request

from src.database import db
from src.infra.auth import require_auth
from src.infra.log import get_logger
from src.models.purchase import Purchase, STATUS_PENDING
from src.schemas.merchandise import CompletePurchaseSchema, CryptoPaymentSchema
from src.services import checkout, reconciliation
from src.services.errors import (
    Conflict, ExternalServiceError, Forbidden, NotFound, Unauthorized, ValidationError)
from src.services.gateways import get_gateways
from src.services.webhook_service import WebhookService, printful_event_id

logger = get_logger('waifu.payments')

payments_bp = Blueprint('payments', __name__, url_prefix='/api/payments')


def _owned_purchase(purchase: Purchase) -> Purchase:
    if purchase.user_id != g.current_user.id:
        raise Forbidden("Not authorized to access this order")
    return purchase


@payments_bp.route('/complete', methods=['POST'])
@require_auth
def complete_payment():
    """Complete a quoted purchase.

    The purchase is marked paid only when the payment gateway confirms its
    intent succeeded; otherwise it waits for the payment webhook or the sweep.
    """
    data = CompletePurchaseSchema().load(request.get_json(silent=True) or {})
    purchase = _owned_purchase(checkout.find_purchase(
        purchase_id=data['purchase_id'], payment_intent_id=data['payment_intent_id']))
    try:
        paid = checkout.confirm_payment(purchase)
    except ExternalServiceError as e:
        logger.warning("Payment confirmation unavailable", purchase_id=purchase.id, error=e.message)
        paid = False
    purchase = checkout.complete_purchase(purchase, attempt_fulfillment=False)
    if paid:
        reconciliation.settle_paid_purchase(purchase.id)
        db.session.refresh(purchase)
    return jsonify(purchase.to_dict())


@payments_bp.route('/crypto', methods=['POST'])
@require_auth
def crypto_payment():
    """Payment instructions for a pending crypto purchase."""
    data = CryptoPaymentSchema().load(request.get_json(silent=True) or {})
    purchase = _owned_purchase(checkout.find_purchase(purchase_id=data['purchase_id']))
    if purchase.payment_method != 'crypto':
        raise ValidationError("Purchase was not quoted for crypto payment")
    if purchase.status != STATUS_PENDING:
        raise Conflict("Purchase is no longer awaiting payment")

    wallet = current_app.config.get('CRYPTO_WALLET_ADDRESS')
    total = float(purchase.total_amount)
    return jsonify({
        'purchase_id': purchase.id,
        'payment_reference': purchase.payment_reference,
        'status': 'pending',
        'currency': data['currency'],
        'amount_usd': total,
        'wallet_address': wallet,
        'message': f"Please send {total} USD worth of {data['currency']} to the wallet address: {wallet}",
    })


@payments_bp.route('/orders', methods=['GET'])
@require_auth
def list_orders():
    purchases = (Purchase.query
                 .filter_by(user_id=g.current_user.id)
                 .order_by(Purchase.created_at.desc())
                 .all())
    return jsonify([p.to_dict() for p in purchases])


@payments_bp.route('/orders/<purchase_id>', methods=['GET'])
@require_auth
def get_order(purchase_id):
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFound("Order not found")
    return jsonify(_owned_purchase(purchase).to_dict())


@payments_bp.route('/webhook', methods=['POST'])
@payments_bp.route('/webhook/stripe', methods=['POST'])
def stripe_webhook():
    """
    Payment gateway events. A bad signature is rejected; anything that gets
    past verification is acknowledged, including events whose processing
    failed (recorded for the reconciliation sweep).
    """
    payload = request.get_data()
    event = get_gateways().payment.verify_webhook_signature(
        payload, request.headers.get('Stripe-Signature'))

    event_type = event.get('type', '')
    obj = (event.get('data') or {}).get('object') or {}
    event_id = event.get('id') or f"{event_type}:{obj.get('id', '')}"

    outcome = WebhookService().process('stripe', event_id, event_type, obj)
    return jsonify({'received': True, 'outcome': outcome}), 200


@payments_bp.route('/webhook/printful', methods=['POST'])
def printful_webhook():
    expected = current_app.config.get('PRINTFUL_WEBHOOK_TOKEN')
    if expected and not hmac.compare_digest(request.args.get('token', ''), expected):
        raise Unauthorized("Invalid webhook token")

    event = request.get_json(silent=True)
    if not isinstance(event, dict) or not event.get('type'):
        raise ValidationError("Invalid payload")

    outcome = WebhookService().process(
        'printful', printful_event_id(event), event['type'], event.get('data') or {})
    return jsonify({'received': True, 'outcome': outcome}), 200
