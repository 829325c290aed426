"""
Tests for the checkout engine: quotes, completion, stock and balances.
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from src.database import db
from src.models.merchandise import Merchandise
from src.models.purchase import CreatorPayout, Purchase
from src.models.user import User
from src.services import balances
from src.services.checkout import build_quote, complete_purchase, confirm_payment, estimate_shipping
from src.services.errors import ExternalServiceError, NotFound, OutOfStock, ValidationError


@pytest.fixture
def shop(make_user, make_character, make_merchandise):
    """A creator with one tee at 20.00 (5.00 to produce, 20% platform fee) and a buyer."""
    creator = make_user("creator")
    buyer = make_user("buyer")
    character = make_character(creator)
    tee = make_merchandise(character, price="20.00", production_cost="5.00", stock=10)
    return creator, buyer, tee


def _cart(tee, quantity=2):
    return [{"merchandise_id": tee.id, "quantity": quantity, "size": "M", "color": "Black"}]


class TestBuildQuote:
    """Quoting a cart."""

    def test_quote_prices_the_cart(self, shop, address, gateways):
        """The line is split 40 / 10 / 6 / 24 and shipping comes from the first offered rate."""
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address)

        line = quote["items"][0]
        assert line["item_price"] == 40.0
        assert line["production_cost"] == 10.0
        assert line["platform_fee"] == 6.0
        assert line["creator_revenue"] == 24.0
        assert line["printful_variant_id"] == "505"
        assert quote["subtotal"] == 40.0
        assert quote["shipping_cost"] == 7.95
        assert quote["total"] == 47.95
        assert quote["shipping_method"] == "STANDARD"

    def test_quote_persists_pending_purchase(self, shop, address):
        """The purchase is stored pending with the unit-price snapshot; stock is untouched."""
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address)

        purchase = db.session.get(Purchase, quote["purchase_id"])
        assert purchase.status == "pending"
        assert purchase.is_paid is False
        assert purchase.items[0].unit_price == Decimal("20.00")
        assert purchase.shipping_address["city"] == "London"
        assert db.session.get(Merchandise, tee.id).stock == 10

    def test_quote_creates_payment_intent(self, shop, address, gateways):
        """The intent is for the total in cents and carries the purchase as metadata."""
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address)

        call, = gateways.payment.calls_for("create_payment_intent")
        assert call["amount"] == 4795
        assert call["metadata"]["purchase_id"] == quote["purchase_id"]
        assert call["metadata"]["creator_ids"] == creator.id
        assert call["transfer_group"] == quote["order_ref"]
        assert call["idempotency_key"] == quote["order_ref"]
        assert quote["payment_intent_id"] == "pi_stub_000001"
        assert quote["client_secret"].startswith("pi_stub_000001")

    def test_requested_shipping_method(self, shop, address):
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address, shipping_method="EXPRESS")
        assert quote["shipping_cost"] == 14.95
        assert quote["total"] == 54.95

    def test_crypto_quote_has_reference_not_intent(self, shop, address, gateways):
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address, payment_method="crypto")
        assert quote["payment_intent_id"] is None
        assert quote["payment_reference"] == f"crypto_{quote['order_ref']}"
        assert gateways.payment.calls_for("create_payment_intent") == []

    def test_empty_cart(self, shop, address):
        creator, buyer, tee = shop
        with pytest.raises(ValidationError):
            build_quote(buyer, [], address)

    def test_unknown_merchandise(self, shop, address):
        creator, buyer, tee = shop
        with pytest.raises(NotFound):
            build_quote(buyer, [{"merchandise_id": "missing", "quantity": 1}], address)

    def test_shipping_failure_propagates(self, shop, address, gateways):
        """A quote never invents a shipping cost."""
        creator, buyer, tee = shop
        gateways.fulfillment.fail_next = "calculate_shipping_rates"
        with pytest.raises(ExternalServiceError):
            build_quote(buyer, _cart(tee), address)
        assert Purchase.query.count() == 0

    def test_payment_failure_leaves_nothing_behind(self, shop, address, gateways):
        creator, buyer, tee = shop
        gateways.payment.fail_next = "create_payment_intent"
        with pytest.raises(ExternalServiceError):
            build_quote(buyer, _cart(tee), address)
        assert Purchase.query.count() == 0


class TestEstimateShipping:

    def test_offered_rates(self, shop, address, gateways):
        creator, buyer, tee = shop
        estimate = estimate_shipping(_cart(tee), address)
        assert estimate["fallback"] is False
        assert [r["id"] for r in estimate["rates"]] == ["STANDARD", "EXPRESS"]
        assert gateways.fulfillment.rate_requests[0]["items"] == [{"variant_id": "505", "quantity": 2}]

    def test_gateway_failure_falls_back(self, shop, address, gateways):
        """Estimates are cosmetic, so an unreachable provider yields the default rates."""
        creator, buyer, tee = shop
        gateways.fulfillment.fail_next = "calculate_shipping_rates"
        estimate = estimate_shipping(_cart(tee), address)
        assert estimate["fallback"] is True
        assert estimate["rates"][0]["rate"] == 7.95


class TestCompletePurchase:
    """Completing a quoted purchase."""

    def _quote(self, buyer, tee, address, quantity=2):
        quote = build_quote(buyer, _cart(tee, quantity), address)
        return db.session.get(Purchase, quote["purchase_id"])

    def _paid_quote(self, buyer, tee, address, gateways):
        purchase = self._quote(buyer, tee, address)
        gateways.payment.succeed_payment_intent(purchase.stripe_payment_intent_id)
        assert confirm_payment(purchase) is True
        return purchase

    def test_completion_takes_stock_and_credits_creator(self, shop, address, gateways):
        """Stock drops, one pending payout is created and the creator's pending balance rises."""
        creator, buyer, tee = shop
        purchase = complete_purchase(self._quote(buyer, tee, address))

        assert purchase.status == "processing"
        assert purchase.is_paid is False
        assert purchase.paid_at is None
        assert purchase.completed_at is not None
        merchandise = db.session.get(Merchandise, tee.id)
        assert merchandise.stock == 8
        assert merchandise.sold == 2
        assert gateways.fulfillment.orders == []

        payout, = purchase.payouts
        assert payout.creator_id == creator.id
        assert payout.amount == Decimal("24.00")
        assert payout.status == "pending"

        creator = db.session.get(User, creator.id)
        assert creator.balance_pending == Decimal("24.00")
        assert creator.balance_total_earned == Decimal("24.00")
        assert creator.balance_available == Decimal("0.00")

    def test_completion_creates_fulfillment_order(self, shop, address, gateways):
        """The order carries the order ref as external id and the resolved variant."""
        creator, buyer, tee = shop
        purchase = complete_purchase(self._paid_quote(buyer, tee, address, gateways))

        order, = gateways.fulfillment.orders
        assert purchase.printful_order_id == order["id"] == "1001"
        assert order["external_id"] == purchase.order_ref
        assert order["items"][0]["variant_id"] == "505"
        assert order["recipient"]["email"] == "ada@example.com"

    def test_completion_is_idempotent(self, shop, address, gateways):
        """A second completion changes nothing."""
        creator, buyer, tee = shop
        purchase = complete_purchase(self._paid_quote(buyer, tee, address, gateways))
        complete_purchase(purchase)

        assert db.session.get(Merchandise, tee.id).stock == 8
        assert CreatorPayout.query.count() == 1
        assert len(gateways.fulfillment.orders) == 1
        assert db.session.get(User, creator.id).balance_pending == Decimal("24.00")

    def test_fulfillment_failure_does_not_undo_payment(self, shop, address, gateways):
        creator, buyer, tee = shop
        gateways.fulfillment.fail_next = "create_order"
        purchase = complete_purchase(self._paid_quote(buyer, tee, address, gateways))

        assert purchase.status == "processing"
        assert purchase.is_paid is True
        assert purchase.printful_order_id is None
        assert purchase.fulfillment_claimed_at is None

    def test_out_of_stock(self, shop, address):
        """Asking for more than is left fails and leaves the purchase pending."""
        creator, buyer, tee = shop
        purchase = self._quote(buyer, tee, address, quantity=11)

        with pytest.raises(OutOfStock) as exc:
            complete_purchase(purchase)
        assert exc.value.requested == 11
        assert exc.value.available == 10
        assert db.session.get(Purchase, purchase.id).status == "pending"
        assert db.session.get(Merchandise, tee.id).stock == 10

    def test_last_item_sold_once(self, shop, address, make_user):
        """With one left, the first of two completions wins and the second is out of stock."""
        creator, buyer, tee = shop
        tee.stock = 1
        db.session.commit()
        first = self._quote(buyer, tee, address, quantity=1)
        second = self._quote(make_user("other"), tee, address, quantity=1)

        complete_purchase(first)
        with pytest.raises(OutOfStock):
            complete_purchase(second)
        assert db.session.get(Merchandise, tee.id).stock == 0

    def test_stale_stock_read_loses_at_decrement(self, shop, address, make_user):
        """A completion that read stock before a concurrent sale still cannot oversell."""
        creator, buyer, tee = shop
        tee.stock = 1
        db.session.commit()
        first = self._quote(buyer, tee, address, quantity=1)
        second = self._quote(make_user("other"), tee, address, quantity=1)
        complete_purchase(first)

        stale = {tee.id: db.session.get(Merchandise, tee.id)}
        with patch("src.services.checkout.check_stock", return_value=stale):
            with pytest.raises(OutOfStock):
                complete_purchase(second)

        assert db.session.get(Merchandise, tee.id).stock == 0
        assert db.session.get(Purchase, second.id).status == "pending"
        assert CreatorPayout.query.filter_by(purchase_id=second.id).count() == 0

    def test_multi_creator_cart(self, shop, address, make_user, make_character, make_merchandise):
        """Each creator gets one payout of their aggregated revenue."""
        creator, buyer, tee = shop
        other = make_user("other_creator")
        mug = make_merchandise(make_character(other, name="Yuki"), name="Yuki Mug",
                               price="15.00", production_cost="5.00", category="mug")
        quote = build_quote(buyer, _cart(tee) + [{"merchandise_id": mug.id, "quantity": 1}], address)
        purchase = complete_purchase(db.session.get(Purchase, quote["purchase_id"]))

        amounts = {p.creator_id: p.amount for p in purchase.payouts}
        assert amounts == {creator.id: Decimal("24.00"), other.id: Decimal("8.00")}

    def test_cached_balance_matches_payout_rows(self, shop, address):
        creator, buyer, tee = shop
        complete_purchase(self._quote(buyer, tee, address))
        complete_purchase(self._quote(buyer, tee, address, quantity=1))

        cached = db.session.get(User, creator.id)
        derived = balances.derived_balance(creator.id)
        assert derived["pending"] == cached.balance_pending == Decimal("36.00")
        assert derived["total_earned"] == cached.balance_total_earned


class TestConfirmPayment:
    """Only the payment gateway can mark a purchase paid."""

    def test_unconfirmed_intent_stays_unpaid(self, shop, address, gateways):
        """Completing before the buyer has paid books stock and payouts but ships and pays out nothing."""
        creator, buyer, tee = shop
        purchase = db.session.get(Purchase, build_quote(buyer, _cart(tee), address)["purchase_id"])

        assert confirm_payment(purchase) is False
        purchase = complete_purchase(purchase)

        assert purchase.is_paid is False
        assert gateways.fulfillment.orders == []
        assert gateways.payment.calls_for("create_transfer") == []
        call, = gateways.payment.calls_for("get_payment_intent_status")
        assert call["intent_id"] == purchase.stripe_payment_intent_id

    def test_succeeded_intent_marks_paid(self, shop, address, gateways):
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address)
        gateways.payment.succeed_payment_intent(quote["payment_intent_id"])
        purchase = db.session.get(Purchase, quote["purchase_id"])

        assert confirm_payment(purchase) is True
        assert purchase.is_paid is True
        assert purchase.paid_at is not None
        assert confirm_payment(purchase) is True
        assert len(gateways.payment.calls_for("get_payment_intent_status")) == 1

    def test_crypto_is_never_confirmed_here(self, shop, address, gateways):
        creator, buyer, tee = shop
        quote = build_quote(buyer, _cart(tee), address, payment_method="crypto")
        purchase = complete_purchase(db.session.get(Purchase, quote["purchase_id"]))

        assert confirm_payment(purchase) is False
        assert purchase.is_paid is False
        assert gateways.payment.calls_for("get_payment_intent_status") == []
        assert gateways.fulfillment.orders == []

    def test_gateway_error_propagates(self, shop, address, gateways):
        creator, buyer, tee = shop
        purchase = db.session.get(Purchase, build_quote(buyer, _cart(tee), address)["purchase_id"])
        gateways.payment.fail_next = "get_payment_intent_status"

        with pytest.raises(ExternalServiceError):
            confirm_payment(purchase)
        assert db.session.get(Purchase, purchase.id).is_paid is False
