"""
Tests for gateway selection and the live gateway clients (network mocked).
"""
import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests
import stripe

from src.services.errors import ExternalServiceError, ValidationError
from src.services.gateways import build_gateways
from src.services.gateways.fulfillment import (
    PrintfulFulfillmentGateway, StubFulfillmentGateway, recipient_from_address)
from src.services.gateways.images import CloudflareImagesGateway, StubImageHostingGateway
from src.services.gateways.llm import OpenAIGateway, StubLLMGateway
from src.services.gateways.payment import (
    StripePaymentGateway, StubPaymentGateway, fee_minor_units)


def _response(status=200, payload=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.text = json.dumps(payload)
    response.content = response.text.encode()
    response.json.return_value = payload
    return response


class TestGatewaySelection:
    """GATEWAY_MODE decides live or stub per provider."""

    def test_auto_without_credentials_uses_stubs(self):
        gateways = build_gateways({"GATEWAY_MODE": "auto"})
        assert isinstance(gateways.payment, StubPaymentGateway)
        assert isinstance(gateways.fulfillment, StubFulfillmentGateway)
        assert isinstance(gateways.images, StubImageHostingGateway)
        assert isinstance(gateways.llm, StubLLMGateway)

    def test_auto_with_credentials_goes_live(self):
        gateways = build_gateways({
            "GATEWAY_MODE": "auto",
            "STRIPE_SECRET_KEY": "sk_test_x",
            "PRINTFUL_API_KEY": "pf_x",
            "OPENAI_CHAT_API_KEY": "sk-x",
        })
        assert isinstance(gateways.payment, StripePaymentGateway)
        assert isinstance(gateways.fulfillment, PrintfulFulfillmentGateway)
        assert isinstance(gateways.llm, OpenAIGateway)
        assert isinstance(gateways.images, StubImageHostingGateway)

    def test_stub_mode_ignores_credentials(self):
        gateways = build_gateways({"GATEWAY_MODE": "stub", "STRIPE_SECRET_KEY": "sk_test_x"})
        assert isinstance(gateways.payment, StubPaymentGateway)

    def test_live_mode_requires_credentials(self):
        with pytest.raises(RuntimeError):
            build_gateways({"GATEWAY_MODE": "live"})

    def test_unknown_mode(self):
        with pytest.raises(RuntimeError):
            build_gateways({"GATEWAY_MODE": "sometimes"})


class TestStripePaymentGateway:
    """Stripe SDK calls are patched."""

    @pytest.fixture
    def gateway(self):
        return StripePaymentGateway("sk_test_x", webhook_secret="whsec_x")

    @patch("stripe.PaymentIntent.create")
    def test_create_payment_intent(self, mock_create, gateway):
        mock_create.return_value = {"id": "pi_1", "client_secret": "pi_1_secret"}
        intent = gateway.create_payment_intent(4795, "usd", {"purchase_id": "p1"}, transfer_group="WH-1",
                                          idempotency_key="WH-1")

        assert intent == {"id": "pi_1", "client_secret": "pi_1_secret"}
        kwargs = mock_create.call_args.kwargs
        assert kwargs["amount"] == 4795
        assert kwargs["transfer_group"] == "WH-1"
        assert kwargs["automatic_payment_methods"] == {"enabled": True}
        assert kwargs["idempotency_key"] == "WH-1"

    @patch("stripe.PaymentIntent.create")
    def test_no_idempotency_key_by_default(self, mock_create, gateway):
        mock_create.return_value = {"id": "pi_2", "client_secret": "pi_2_secret"}
        gateway.create_payment_intent(100, "usd", {})
        assert "idempotency_key" not in mock_create.call_args.kwargs

    @patch("stripe.PaymentIntent.retrieve")
    def test_payment_intent_status(self, mock_retrieve, gateway):
        mock_retrieve.return_value = {"id": "pi_1", "status": "succeeded"}
        assert gateway.get_payment_intent_status("pi_1") == "succeeded"
        mock_retrieve.assert_called_once_with(id="pi_1")

    @patch("stripe.PaymentIntent.retrieve")
    def test_payment_intent_status_error(self, mock_retrieve, gateway):
        mock_retrieve.side_effect = stripe.StripeError("no such payment_intent")
        with pytest.raises(ExternalServiceError):
            gateway.get_payment_intent_status("pi_missing")

    @patch("stripe.PaymentIntent.create")
    def test_stripe_error_becomes_external_error(self, mock_create, gateway):
        mock_create.side_effect = stripe.StripeError("card network down")
        with pytest.raises(ExternalServiceError) as exc:
            gateway.create_payment_intent(100, "usd", {})
        assert exc.value.provider == "stripe"

    @patch("stripe.Account.create")
    def test_create_connected_account(self, mock_create, gateway):
        mock_create.return_value = {"id": "acct_1"}
        account = gateway.create_connected_account({"user_id": "u1", "email": "a@example.com"})

        assert account == {"id": "acct_1"}
        kwargs = mock_create.call_args.kwargs
        assert kwargs["type"] == "express"
        assert kwargs["country"] == "US"
        assert kwargs["business_profile"]["url"] == "https://waifuhospital.com/creators/u1"
        assert kwargs["capabilities"]["transfers"] == {"requested": True}

    @patch("stripe.Transfer.create")
    def test_transfer_with_fee(self, mock_create, gateway):
        mock_create.return_value = {"id": "tr_1", "amount": 2280}
        transfer = gateway.create_transfer_with_fee(2400, "acct_1", 5, {"payout_id": "x"},
                                                    transfer_group="WH-1", idempotency_key="payout-x")

        assert transfer == {"id": "tr_1", "amount": 2280, "fee": 120}
        kwargs = mock_create.call_args.kwargs
        assert kwargs["amount"] == 2280
        assert kwargs["destination"] == "acct_1"
        assert kwargs["idempotency_key"] == "payout-x"

    @patch("stripe.Webhook.construct_event")
    def test_bad_signature(self, mock_construct, gateway):
        mock_construct.side_effect = stripe.SignatureVerificationError("bad", "sig")
        with pytest.raises(ValidationError):
            gateway.verify_webhook_signature(b'{"type": "x"}', "sig")

    def test_missing_signing_secret(self):
        with pytest.raises(ValidationError):
            StripePaymentGateway("sk_test_x").verify_webhook_signature(b"{}", "sig")

    def test_fee_rounding(self):
        assert fee_minor_units(1000, 0) == 0
        assert fee_minor_units(999, 5) == 50


class TestStubPaymentGateway:
    """The offline gateway behaves like Stripe where the checkout relies on it."""

    def test_intent_unpaid_until_succeeded(self):
        gateway = StubPaymentGateway()
        intent = gateway.create_payment_intent(100, "usd", {})
        assert gateway.get_payment_intent_status(intent["id"]) == "requires_payment_method"

        gateway.succeed_payment_intent(intent["id"])
        assert gateway.get_payment_intent_status(intent["id"]) == "succeeded"

    def test_transfer_replayed_under_same_key(self):
        gateway = StubPaymentGateway()
        first = gateway.create_transfer_with_fee(2400, "acct_1", 0, {}, idempotency_key="payout-1")
        second = gateway.create_transfer_with_fee(2400, "acct_1", 0, {}, idempotency_key="payout-1")
        third = gateway.create_transfer_with_fee(2400, "acct_1", 0, {}, idempotency_key="payout-2")

        assert second == first
        assert third["id"] != first["id"]
        assert len(gateway.calls_for("create_transfer")) == 2

    def test_failure_is_not_remembered(self):
        gateway = StubPaymentGateway()
        gateway.fail_next = "create_transfer"
        with pytest.raises(ExternalServiceError):
            gateway.create_transfer_with_fee(2400, "acct_1", 0, {}, idempotency_key="payout-1")
        assert gateway.create_transfer_with_fee(2400, "acct_1", 0, {}, idempotency_key="payout-1")["amount"] == 2400
        assert len(gateway.calls_for("create_transfer")) == 1


class TestPrintfulFulfillmentGateway:

    @pytest.fixture
    def gateway(self):
        gateway = PrintfulFulfillmentGateway("pf_x", base_url="https://printful.test")
        gateway.session = MagicMock()
        return gateway

    def test_shipping_rates(self, gateway, address):
        gateway.session.request.return_value = _response(payload={"result": [
            {"id": "STANDARD", "name": "Flat Rate", "rate": "4.39", "minDeliveryDays": 4, "maxDeliveryDays": 7},
        ]})
        rates = gateway.calculate_shipping_rates(address, [{"variant_id": "505", "quantity": 2}])

        assert rates[0]["rate"] == Decimal("4.39")
        assert rates[0]["max_delivery_days"] == 7
        body = gateway.session.request.call_args.kwargs["json"]
        assert body["recipient"]["country_code"] == "GB"
        assert "name" not in body["recipient"]

    def test_create_order(self, gateway, address):
        gateway.session.request.return_value = _response(payload={"result": {"id": 77, "status": "draft"}})
        order = gateway.create_order(address, "ada@example.com", None,
                                     [{"variant_id": "505", "quantity": 1, "price": Decimal("20.00"),
                                       "image_url": "https://example.com/a.png"}],
                                     external_id="WH-1", shipping_method="STANDARD")

        assert order == {"id": "77", "status": "draft"}
        body = gateway.session.request.call_args.kwargs["json"]
        assert body["external_id"] == "WH-1"
        assert body["items"][0] == {"variant_id": 505, "quantity": 1, "retail_price": "20.00",
                                    "files": [{"url": "https://example.com/a.png"}]}
        assert body["shipping"] == "STANDARD"

    def test_error_status(self, gateway, address):
        gateway.session.request.return_value = _response(401, {"error": {"message": "Unauthorized"}})
        with pytest.raises(ExternalServiceError) as exc:
            gateway.get_order_status("77")
        assert exc.value.upstream_status == 401

    def test_timeout(self, gateway):
        gateway.session.request.side_effect = requests.exceptions.Timeout()
        with pytest.raises(ExternalServiceError):
            gateway.get_order_status("77")

    def test_recipient_name(self, address):
        assert recipient_from_address(address)["name"] == "Ada Lovelace"


class TestCloudflareImagesGateway:

    @pytest.fixture
    def gateway(self):
        gateway = CloudflareImagesGateway("acc", "key", "hash")
        gateway.session = MagicMock()
        return gateway

    def test_upload_and_delivery_url(self, gateway):
        gateway.session.request.return_value = _response(payload={"success": True, "result": {"id": "img1"}})
        assert gateway.upload_from_url("https://example.com/a.png", {"character_id": "c1"}) == {"id": "img1"}
        assert gateway.get_delivery_url("img1") == "https://imagedelivery.net/hash/img1/public"

    def test_unsuccessful_upload(self, gateway):
        gateway.session.request.return_value = _response(payload={
            "success": False, "errors": [{"message": "bad url"}]})
        with pytest.raises(ExternalServiceError):
            gateway.upload_from_url("nope")


class TestOpenAIGateway:

    @pytest.fixture
    def gateway(self):
        gateway = OpenAIGateway("sk-chat", image_api_key="sk-image")
        gateway.session = MagicMock()
        return gateway

    def test_chat_completion(self, gateway):
        gateway.session.request.return_value = _response(payload={
            "choices": [{"message": {"content": "  *giggles* Hi!  "}}], "usage": {"total_tokens": 12}})
        assert gateway.chat_completion("You are Sakura.", "Hi") == "*giggles* Hi!"

        kwargs = gateway.session.request.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer sk-chat"
        assert kwargs["json"]["messages"][0] == {"role": "system", "content": "You are Sakura."}
        assert kwargs["json"]["max_tokens"] == 300

    def test_image_uses_image_key(self, gateway):
        gateway.session.request.return_value = _response(payload={"data": [{"url": "https://img.test/1.png"}]})
        assert gateway.generate_image("portrait") == "https://img.test/1.png"
        assert gateway.session.request.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-image"

    def test_malformed_reply(self, gateway):
        gateway.session.request.return_value = _response(payload={"choices": []})
        with pytest.raises(ExternalServiceError):
            gateway.chat_completion("x", "y")
