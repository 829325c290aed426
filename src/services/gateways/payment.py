# -*- coding: utf-8 -*-
"""
Payment gateway: payment intents, creator connected accounts, transfers and
webhook signature verification.

StripePaymentGateway talks to Stripe through the official SDK.
StubPaymentGateway is deterministic and records every call; it is used when
no Stripe key is configured (local development, tests).
"""
from __future__ import annotations

import itertools
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import stripe

from src.services.errors import ExternalServiceError, ValidationError
from src.services.structured_logging import get_logger

logger = get_logger('waifu.gateways')

PROVIDER = "stripe"
CREATOR_PROFILE_URL = "https://waifuhospital.com/creators/{user_id}"


def fee_minor_units(amount_minor: int, fee_percent: float) -> int:
    """Platform fee on a minor-unit amount, rounded half up to a whole cent."""
    return int(amount_minor * fee_percent / 100 + 0.5)


class PaymentGateway(ABC):
    name = PROVIDER

    @abstractmethod
    def create_payment_intent(self, amount_minor: int, currency: str, metadata: Mapping[str, Any],
                              transfer_group: Optional[str] = None,
                              idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """Returns {"id", "client_secret"}."""

    @abstractmethod
    def get_payment_intent_status(self, intent_id: str) -> str:
        """Gateway status of an intent; "succeeded" means the money was captured."""

    @abstractmethod
    def create_connected_account(self, profile: Mapping[str, Any]) -> Dict[str, Any]:
        """Returns {"id"} for a new express account owned by profile["user_id"]."""

    @abstractmethod
    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        """Returns {"url"} for the hosted onboarding flow."""

    @abstractmethod
    def get_account_details(self, account_id: str) -> Dict[str, Any]:
        """Returns {"details_submitted", "payouts_enabled", "charges_enabled"}."""

    @abstractmethod
    def create_transfer_with_fee(self, amount_minor: int, destination_account_id: str, fee_percent: float,
                                 metadata: Mapping[str, Any], transfer_group: Optional[str] = None,
                                 idempotency_key: Optional[str] = None) -> Dict[str, Any]:
        """
        Transfer amount minus fee_percent to a connected account. Returns {"id", "amount", "fee"}.

        Repeating a call with the same idempotency_key returns the original
        transfer instead of creating another.
        """

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Return the decoded event, or raise ValidationError when the signature is bad."""


class StripePaymentGateway(PaymentGateway):

    def __init__(self, secret_key: str, webhook_secret: str = "", currency: str = "usd"):
        stripe.api_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def _call(self, operation: str, fn, **kwargs):
        try:
            return fn(**kwargs)
        except stripe.StripeError as e:
            msg = getattr(e, "user_message", None) or str(e)
            logger.error(f"Stripe {operation} failed: {msg}", operation=operation)
            raise ExternalServiceError(PROVIDER, msg) from e

    def create_payment_intent(self, amount_minor, currency, metadata, transfer_group=None, idempotency_key=None):
        params = {
            "amount": amount_minor,
            "currency": currency or self.currency,
            "metadata": dict(metadata),
            "automatic_payment_methods": {"enabled": True},
        }
        if transfer_group:
            params["transfer_group"] = transfer_group
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        intent = self._call("create_payment_intent", stripe.PaymentIntent.create, **params)
        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    def get_payment_intent_status(self, intent_id):
        intent = self._call("get_payment_intent_status", stripe.PaymentIntent.retrieve, id=intent_id)
        return intent["status"]

    def create_connected_account(self, profile):
        account = self._call(
            "create_connected_account",
            stripe.Account.create,
            type="express",
            country=profile.get("country", "US"),
            email=profile.get("email"),
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            business_type="individual",
            business_profile={
                "url": CREATOR_PROFILE_URL.format(user_id=profile["user_id"]),
            },
            metadata={"user_id": profile["user_id"], "username": profile.get("username", "")},
        )
        return {"id": account["id"]}

    def create_account_link(self, account_id, refresh_url, return_url):
        link = self._call(
            "create_account_link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return {"url": link["url"]}

    def get_account_details(self, account_id):
        account = self._call("get_account_details", stripe.Account.retrieve, id=account_id)
        return {
            "details_submitted": bool(account.get("details_submitted")),
            "payouts_enabled": bool(account.get("payouts_enabled")),
            "charges_enabled": bool(account.get("charges_enabled")),
        }

    def create_transfer_with_fee(self, amount_minor, destination_account_id, fee_percent, metadata,
                                 transfer_group=None, idempotency_key=None):
        fee = fee_minor_units(amount_minor, fee_percent)
        params = {
            "amount": amount_minor - fee,
            "currency": self.currency,
            "destination": destination_account_id,
            "metadata": dict(metadata),
        }
        if transfer_group:
            params["transfer_group"] = transfer_group
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        transfer = self._call("create_transfer", stripe.Transfer.create, **params)
        return {"id": transfer["id"], "amount": transfer["amount"], "fee": fee}

    def verify_webhook_signature(self, payload, signature):
        if not self.webhook_secret:
            raise ValidationError("Webhook signing secret is not configured")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise ValidationError("Invalid payload")
        except stripe.SignatureVerificationError:
            raise ValidationError("Invalid signature")
        return json.loads(payload)


class StubPaymentGateway(PaymentGateway):
    """Offline payment gateway with predictable ids.

    Intents start out unpaid; ``succeed_payment_intent`` plays the part of
    the buyer finishing payment. Calls carrying an idempotency key that was
    already used return the stored result, the way Stripe replays them.
    """

    def __init__(self, currency: str = "usd"):
        self.currency = currency
        self.calls: List[Dict[str, Any]] = []
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.intent_statuses: Dict[str, str] = {}
        self.fail_next: Optional[str] = None  # operation name to fail once
        self._replays: Dict[str, Dict[str, Any]] = {}
        self._seq = itertools.count(1)

    def _record(self, operation: str, **kwargs) -> int:
        if self.fail_next == operation:
            self.fail_next = None
            raise ExternalServiceError(PROVIDER, f"stub failure in {operation}")
        self.calls.append({"operation": operation, **kwargs})
        return next(self._seq)

    def calls_for(self, operation: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["operation"] == operation]

    def succeed_payment_intent(self, intent_id: str) -> None:
        self.intent_statuses[intent_id] = "succeeded"

    def create_payment_intent(self, amount_minor, currency, metadata, transfer_group=None, idempotency_key=None):
        replay_key = f"create_payment_intent:{idempotency_key}"
        if idempotency_key and replay_key in self._replays:
            return dict(self._replays[replay_key])
        n = self._record("create_payment_intent", amount=amount_minor, currency=currency,
                         metadata=dict(metadata), transfer_group=transfer_group,
                         idempotency_key=idempotency_key)
        intent_id = f"pi_stub_{n:06d}"
        self.intent_statuses[intent_id] = "requires_payment_method"
        intent = {"id": intent_id, "client_secret": f"{intent_id}_secret_stub"}
        if idempotency_key:
            self._replays[replay_key] = dict(intent)
        return intent

    def get_payment_intent_status(self, intent_id):
        self._record("get_payment_intent_status", intent_id=intent_id)
        return self.intent_statuses.get(intent_id, "requires_payment_method")

    def create_connected_account(self, profile):
        n = self._record("create_connected_account", user_id=profile["user_id"])
        account_id = f"acct_stub_{n:06d}"
        self.accounts[account_id] = {
            "details_submitted": False, "payouts_enabled": False, "charges_enabled": False}
        return {"id": account_id}

    def create_account_link(self, account_id, refresh_url, return_url):
        self._record("create_account_link", account_id=account_id)
        return {"url": f"https://connect.stripe.test/setup/{account_id}"}

    def get_account_details(self, account_id):
        self._record("get_account_details", account_id=account_id)
        return dict(self.accounts.get(account_id, {
            "details_submitted": False, "payouts_enabled": False, "charges_enabled": False}))

    def create_transfer_with_fee(self, amount_minor, destination_account_id, fee_percent, metadata,
                                 transfer_group=None, idempotency_key=None):
        replay_key = f"create_transfer:{idempotency_key}"
        if idempotency_key and replay_key in self._replays:
            return dict(self._replays[replay_key])
        fee = fee_minor_units(amount_minor, fee_percent)
        n = self._record("create_transfer", amount=amount_minor - fee, destination=destination_account_id,
                         metadata=dict(metadata), transfer_group=transfer_group,
                         idempotency_key=idempotency_key)
        transfer = {"id": f"tr_stub_{n:06d}", "amount": amount_minor - fee, "fee": fee}
        if idempotency_key:
            self._replays[replay_key] = dict(transfer)
        return transfer

    def verify_webhook_signature(self, payload, signature):
        try:
            event = json.loads(payload)
        except ValueError:
            raise ValidationError("Invalid payload")
        if not isinstance(event, dict) or "type" not in event:
            raise ValidationError("Invalid payload")
        return event
