# -*- coding: utf-8 -*-
"""
Merchandise catalog, checkout quotes and creator payment-account onboarding.
"""
from flask import Blueprint, current_app, g, jsonify, redirect, request, url_for

from src.database import db
from src.infra.auth import require_auth
from src.infra.log import get_logger
from src.models.character import Character
from src.models.merchandise import Merchandise
from src.schemas.merchandise import (
    CheckoutSchema, MerchandiseCreateSchema, MerchandiseUpdateSchema, ShippingEstimateSchema,
    resolve_revenue_split)
from src.services import catalog, checkout, connect
from src.services.errors import ExternalServiceError, Forbidden, NotFound

logger = get_logger('waifu.merchandise')

merchandise_bp = Blueprint('merchandise', __name__, url_prefix='/api/merchandise')

SETTINGS_PATH = '/dashboard/settings'


def _get_merchandise(merchandise_id: str) -> Merchandise:
    merchandise = db.session.get(Merchandise, merchandise_id)
    if merchandise is None:
        raise NotFound("Merchandise not found")
    return merchandise


@merchandise_bp.route('', methods=['GET'])
def list_merchandise():
    items = Merchandise.query.order_by(Merchandise.created_at.desc()).all()
    return jsonify([m.to_dict() for m in items])


@merchandise_bp.route('/creator', methods=['GET'])
@require_auth
def list_creator_merchandise():
    items = (Merchandise.query
             .filter_by(creator_id=g.current_user.id)
             .order_by(Merchandise.created_at.desc())
             .all())
    return jsonify([m.to_dict() for m in items])


@merchandise_bp.route('/character/<character_id>', methods=['GET'])
def list_character_merchandise(character_id):
    if db.session.get(Character, character_id) is None:
        raise NotFound("Character not found")
    items = (Merchandise.query
             .filter_by(character_id=character_id)
             .order_by(Merchandise.created_at.desc())
             .all())
    return jsonify([m.to_dict() for m in items])


@merchandise_bp.route('/<merchandise_id>', methods=['GET'])
def get_merchandise(merchandise_id):
    return jsonify(_get_merchandise(merchandise_id).to_dict())


@merchandise_bp.route('', methods=['POST'])
@require_auth
def create_merchandise():
    data = MerchandiseCreateSchema().load(request.get_json(silent=True) or {})
    character = db.session.get(Character, data['character_id'])
    if character is None:
        raise NotFound("Character not found")
    if character.creator_id != g.current_user.id:
        raise Forbidden("Not authorized to create merchandise for this character")

    # Payouts need a connected account; listing still works without one
    try:
        connect.ensure_connected_account(g.current_user)
    except ExternalServiceError as e:
        logger.warning("Connected account creation failed", user_id=g.current_user.id, error=e.message)

    creator_percent, platform_percent = resolve_revenue_split(
        data.pop('creator_revenue_percent'), data.pop('platform_fee_percent'))
    production_cost = data.pop('production_cost')
    if production_cost is None:
        production_cost = catalog.default_production_cost(data['category'])
    variants = data.pop('printful_variants')
    if not variants:
        variants = catalog.default_variants(data['category'])
    product_id = data.pop('printful_product_id') or catalog.CATEGORY_PRODUCT_IDS.get(data['category'])

    merchandise = Merchandise(
        creator_id=g.current_user.id,
        production_cost=production_cost,
        creator_revenue_percent=creator_percent,
        platform_fee_percent=platform_percent,
        printful_variants=variants,
        printful_product_id=str(product_id) if product_id else None,
        stripe_connect_account_id=g.current_user.stripe_account_id,
        sold=0,
        **data,
    )
    db.session.add(merchandise)
    db.session.commit()

    logger.info("Merchandise created", merchandise_id=merchandise.id, creator_id=merchandise.creator_id)
    return jsonify(merchandise.to_dict()), 201


@merchandise_bp.route('/<merchandise_id>', methods=['PUT'])
@require_auth
def update_merchandise(merchandise_id):
    merchandise = _get_merchandise(merchandise_id)
    if merchandise.creator_id != g.current_user.id:
        raise Forbidden("Not authorized to update this merchandise")
    data = MerchandiseUpdateSchema().load(request.get_json(silent=True) or {})

    if 'creator_revenue_percent' in data or 'platform_fee_percent' in data:
        merchandise.creator_revenue_percent, merchandise.platform_fee_percent = resolve_revenue_split(
            data.pop('creator_revenue_percent', None), data.pop('platform_fee_percent', None),
            current=(merchandise.creator_revenue_percent, merchandise.platform_fee_percent))
    for field, value in data.items():
        setattr(merchandise, field, value)
    db.session.commit()
    return jsonify(merchandise.to_dict())


@merchandise_bp.route('/<merchandise_id>', methods=['DELETE'])
@require_auth
def delete_merchandise(merchandise_id):
    merchandise = _get_merchandise(merchandise_id)
    if merchandise.creator_id != g.current_user.id:
        raise Forbidden("Not authorized to delete this merchandise")
    db.session.delete(merchandise)
    db.session.commit()
    return jsonify({'msg': 'Merchandise removed'})


@merchandise_bp.route('/shipping-rates', methods=['POST'])
def shipping_rates():
    data = ShippingEstimateSchema().load(request.get_json(silent=True) or {})
    return jsonify(checkout.estimate_shipping(data['items'], data['shipping_address']))


@merchandise_bp.route('/checkout', methods=['POST'])
@require_auth
def create_checkout():
    data = CheckoutSchema().load(request.get_json(silent=True) or {})
    quote = checkout.build_quote(
        g.current_user,
        data['items'],
        data['shipping_address'],
        shipping_method=data['shipping_method'],
        payment_method=data['payment_method'],
    )
    return jsonify(quote), 201


@merchandise_bp.route('/stripe-connect-onboarding', methods=['GET'])
@require_auth
def stripe_connect_onboarding():
    url = connect.onboarding_link(
        g.current_user,
        refresh_url=url_for('merchandise.stripe_connect_refresh', _external=True),
        return_url=url_for('merchandise.stripe_connect_return', _external=True),
    )
    return jsonify({'url': url})


@merchandise_bp.route('/stripe-connect-status', methods=['GET'])
@require_auth
def stripe_connect_status():
    return jsonify(connect.refresh_account_status(g.current_user))


def _settings_redirect():
    return redirect(current_app.config.get('FRONTEND_URL', '').rstrip('/') + SETTINGS_PATH)


@merchandise_bp.route('/stripe-connect-refresh', methods=['GET'])
def stripe_connect_refresh():
    return _settings_redirect()


@merchandise_bp.route('/stripe-connect-return', methods=['GET'])
def stripe_connect_return():
    return _settings_redirect()
