# -*- coding: utf-8 -*-
"""
Fulfillment (print-on-demand) gateway: shipping rates, order creation and
order status.

Orders are created with the purchase's order_ref as Printful's external_id,
so webhooks for the order can be linked back without guessing.
"""
from __future__ import annotations

import itertools
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from src.services.errors import ExternalServiceError
from src.services.gateways.http import build_session, request_json

PROVIDER = "printful"

# Offered when the provider cannot be asked (stub mode, cosmetic estimates)
DEFAULT_SHIPPING_RATES = (
    {"id": "STANDARD", "name": "Standard shipping", "rate": Decimal("7.95"),
     "min_delivery_days": 4, "max_delivery_days": 6},
    {"id": "EXPRESS", "name": "Express shipping", "rate": Decimal("14.95"),
     "min_delivery_days": 2, "max_delivery_days": 3},
)


def recipient_from_address(address: Mapping[str, Any]) -> Dict[str, Any]:
    name = " ".join(p for p in (address.get("first_name"), address.get("last_name")) if p)
    recipient = {
        "name": name,
        "address1": address.get("street"),
        "city": address.get("city"),
        "state_code": address.get("state"),
        "country_code": address.get("country"),
        "zip": address.get("postal_code"),
    }
    if address.get("email"):
        recipient["email"] = address["email"]
    if address.get("phone"):
        recipient["phone"] = address["phone"]
    return recipient


class FulfillmentGateway(ABC):
    name = PROVIDER

    @abstractmethod
    def calculate_shipping_rates(self, address: Mapping[str, Any],
                                 items: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        """items: [{"variant_id", "quantity"}]. Returns [{"id", "name", "rate", ...}]."""

    @abstractmethod
    def create_order(self, address: Mapping[str, Any], email: Optional[str], phone: Optional[str],
                     items: Sequence[Mapping[str, Any]], external_id: str,
                     shipping_method: Optional[str] = None) -> Dict[str, Any]:
        """items: [{"variant_id", "quantity", "price", "image_url"}]. Returns {"id", "status"}."""

    @abstractmethod
    def get_order_status(self, order_id: str) -> str:
        """Current provider status for an order."""


class PrintfulFulfillmentGateway(FulfillmentGateway):

    def __init__(self, api_key: str, base_url: str = "https://api.printful.com", timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = build_session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        })

    def _request(self, method: str, path: str, operation: str, **kwargs) -> Any:
        data = request_json(self.session, PROVIDER, method, f"{self.base_url}{path}",
                            timeout=self.timeout, operation=operation, **kwargs)
        if "result" not in data:
            raise ExternalServiceError(PROVIDER, f"{operation}: response has no result")
        return data["result"]

    def calculate_shipping_rates(self, address, items):
        recipient = recipient_from_address(address)
        recipient.pop("name", None)
        result = self._request("POST", "/shipping/rates", "calculate_shipping_rates", json={
            "recipient": recipient,
            "items": [{"variant_id": i["variant_id"], "quantity": i["quantity"]} for i in items],
        })
        rates = []
        for r in result or []:
            rates.append({
                "id": r.get("id"),
                "name": r.get("name"),
                "rate": Decimal(str(r.get("rate", "0"))),
                "min_delivery_days": r.get("minDeliveryDays"),
                "max_delivery_days": r.get("maxDeliveryDays"),
            })
        return rates

    def create_order(self, address, email, phone, items, external_id, shipping_method=None):
        recipient = recipient_from_address(address)
        if email:
            recipient["email"] = email
        if phone:
            recipient["phone"] = phone
        order_items = []
        for i in items:
            line = {
                "variant_id": int(i["variant_id"]),
                "quantity": i["quantity"],
                "retail_price": str(i["price"]),
            }
            if i.get("image_url"):
                line["files"] = [{"url": i["image_url"]}]
            order_items.append(line)
        body = {"external_id": external_id, "recipient": recipient, "items": order_items}
        if shipping_method:
            body["shipping"] = shipping_method
        result = self._request("POST", "/orders", "create_order", json=body)
        return {"id": str(result["id"]), "status": result.get("status", "draft")}

    def get_order_status(self, order_id):
        result = self._request("GET", f"/orders/{order_id}", "get_order_status")
        return result.get("status", "unknown")


class StubFulfillmentGateway(FulfillmentGateway):
    """Offline fulfillment gateway; keeps created orders in memory."""

    def __init__(self):
        self.rates: List[Dict[str, Any]] = [dict(r) for r in DEFAULT_SHIPPING_RATES]
        self.orders: List[Dict[str, Any]] = []
        self.rate_requests: List[Dict[str, Any]] = []
        self.fail_next: Optional[str] = None
        self._seq = itertools.count(1001)

    def _maybe_fail(self, operation: str):
        if self.fail_next == operation:
            self.fail_next = None
            raise ExternalServiceError(PROVIDER, f"stub failure in {operation}")

    def calculate_shipping_rates(self, address, items):
        self._maybe_fail("calculate_shipping_rates")
        self.rate_requests.append({"address": dict(address), "items": [dict(i) for i in items]})
        return [dict(r) for r in self.rates]

    def create_order(self, address, email, phone, items, external_id, shipping_method=None):
        self._maybe_fail("create_order")
        order = {
            "id": str(next(self._seq)),
            "status": "draft",
            "external_id": external_id,
            "recipient": recipient_from_address(address),
            "items": [dict(i) for i in items],
            "shipping": shipping_method,
        }
        self.orders.append(order)
        return {"id": order["id"], "status": order["status"]}

    def get_order_status(self, order_id):
        self._maybe_fail("get_order_status")
        for order in self.orders:
            if order["id"] == str(order_id):
                return order["status"]
        raise ExternalServiceError(PROVIDER, f"order {order_id} not found")
