"""
External capability providers.

Each gateway is an interface with a live client and a deterministic stub.
The implementation is chosen once, at app startup, from GATEWAY_MODE:

- auto: live when the provider's credentials are configured, stub otherwise
- stub: stubs everywhere
- live: live everywhere; missing credentials abort startup
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from flask import Flask, current_app

from src.services.gateways.fulfillment import (
    FulfillmentGateway, PrintfulFulfillmentGateway, StubFulfillmentGateway)
from src.services.gateways.images import (
    CloudflareImagesGateway, ImageHostingGateway, StubImageHostingGateway)
from src.services.gateways.llm import LLMGateway, OpenAIGateway, StubLLMGateway
from src.services.gateways.payment import PaymentGateway, StripePaymentGateway, StubPaymentGateway
from src.services.structured_logging import get_logger

logger = get_logger('waifu.gateways')

GATEWAY_MODES = ("auto", "stub", "live")


@dataclass
class Gateways:
    payment: PaymentGateway
    fulfillment: FulfillmentGateway
    images: ImageHostingGateway
    llm: LLMGateway


def _use_live(mode: str, provider: str, configured: bool) -> bool:
    if mode == "stub":
        return False
    if mode == "live" and not configured:
        raise RuntimeError(f"GATEWAY_MODE=live but {provider} credentials are not configured")
    return configured


def build_gateways(config: Mapping[str, Any]) -> Gateways:
    mode = str(config.get("GATEWAY_MODE", "auto")).lower()
    if mode not in GATEWAY_MODES:
        raise RuntimeError(f"Unknown GATEWAY_MODE {mode!r}; expected one of {GATEWAY_MODES}")
    timeout = float(config.get("HTTP_TIMEOUT_SECONDS", 30))

    if _use_live(mode, "stripe", bool(config.get("STRIPE_SECRET_KEY"))):
        payment: PaymentGateway = StripePaymentGateway(
            config["STRIPE_SECRET_KEY"],
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET", ""),
            currency=config.get("STRIPE_CURRENCY", "usd"),
        )
    else:
        payment = StubPaymentGateway(currency=config.get("STRIPE_CURRENCY", "usd"))

    if _use_live(mode, "printful", bool(config.get("PRINTFUL_API_KEY"))):
        fulfillment: FulfillmentGateway = PrintfulFulfillmentGateway(
            config["PRINTFUL_API_KEY"], base_url=config.get("PRINTFUL_API_URL", "https://api.printful.com"),
            timeout=timeout)
    else:
        fulfillment = StubFulfillmentGateway()

    cloudflare_ready = all(config.get(k) for k in (
        "CLOUDFLARE_ACCOUNT_ID", "CLOUDFLARE_IMAGES_API_KEY", "CLOUDFLARE_ACCOUNT_HASH"))
    if _use_live(mode, "cloudflare images", cloudflare_ready):
        images: ImageHostingGateway = CloudflareImagesGateway(
            config["CLOUDFLARE_ACCOUNT_ID"], config["CLOUDFLARE_IMAGES_API_KEY"],
            config["CLOUDFLARE_ACCOUNT_HASH"], timeout=timeout)
    else:
        images = StubImageHostingGateway()

    if _use_live(mode, "openai", bool(config.get("OPENAI_CHAT_API_KEY"))):
        llm: LLMGateway = OpenAIGateway(
            config["OPENAI_CHAT_API_KEY"],
            image_api_key=config.get("OPENAI_IMAGE_API_KEY", ""),
            chat_model=config.get("OPENAI_CHAT_MODEL", "gpt-3.5-turbo"),
            image_model=config.get("OPENAI_IMAGE_MODEL", "dall-e-3"),
            api_base=config.get("OPENAI_API_BASE", "https://api.openai.com/v1"),
            timeout=timeout,
        )
    else:
        llm = StubLLMGateway()

    gateways = Gateways(payment=payment, fulfillment=fulfillment, images=images, llm=llm)
    logger.info(
        "Gateways selected",
        mode=mode,
        payment=type(payment).__name__,
        fulfillment=type(fulfillment).__name__,
        images=type(images).__name__,
        llm=type(llm).__name__,
    )
    return gateways


def init_gateways(app: Flask) -> Gateways:
    gateways = build_gateways(app.config)
    app.extensions['gateways'] = gateways
    return gateways


def get_gateways() -> Gateways:
    return current_app.extensions['gateways']
