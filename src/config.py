import os
from typing import Any, Dict, Mapping, Optional


class Config:
    """Default settings. Each attribute can be overridden by an env var of the same name."""

    SERVICE_NAME = "waifuhospital-backend"
    SECRET_KEY = "dev-secret-key"
    TESTING = False

    # Auth
    JWT_SECRET = ""
    JWT_EXPIRES_DAYS = 7

    # Persistence
    DATABASE_URL = ""
    WAIFU_DB_AUTOCREATE = True

    # HTTP surface
    CORS_ALLOWED_ORIGINS = "http://localhost:3000"
    FRONTEND_URL = "http://localhost:3000"

    # Observability
    LOG_LEVEL = "INFO"
    WAIFU_LOG_JSON = True
    WAIFU_METRICS_ENABLED = True

    # External gateways: auto | stub | live
    GATEWAY_MODE = "auto"
    HTTP_TIMEOUT_SECONDS = 30

    STRIPE_SECRET_KEY = ""
    STRIPE_WEBHOOK_SECRET = ""
    STRIPE_CURRENCY = "usd"

    PRINTFUL_API_KEY = ""
    PRINTFUL_API_URL = "https://api.printful.com"
    PRINTFUL_WEBHOOK_TOKEN = ""

    CLOUDFLARE_ACCOUNT_ID = ""
    CLOUDFLARE_IMAGES_API_KEY = ""
    CLOUDFLARE_ACCOUNT_HASH = ""

    OPENAI_API_BASE = "https://api.openai.com/v1"
    OPENAI_CHAT_API_KEY = ""
    OPENAI_IMAGE_API_KEY = ""
    OPENAI_CHAT_MODEL = "gpt-3.5-turbo"
    OPENAI_IMAGE_MODEL = "dall-e-3"

    # Service wiring
    AI_SERVICE_URL = "http://ai-service:5001"
    BACKEND_URL = "http://backend:5000"

    # Checkout / reconciliation
    DEFAULT_SHIPPING_RATE = "7.95"
    FULFILLMENT_CLAIM_TTL_SECONDS = 300
    CRYPTO_WALLET_ADDRESS = "DEMO_WALLET_ADDRESS"

    # AI service
    CHARACTER_CACHE_TTL_SECONDS = 300


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def load_config(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the settings mapping for an app.

    Precedence: explicit overrides, then environment, then Config defaults.
    """
    settings: Dict[str, Any] = {}
    for key in dir(Config):
        if not key.isupper():
            continue
        default = getattr(Config, key)
        raw = os.environ.get(key)
        settings[key] = _coerce(raw, default) if raw is not None else default

    if overrides:
        settings.update(overrides)

    settings["JWT_SECRET"] = settings["JWT_SECRET"] or settings["SECRET_KEY"]

    db_url = settings.get("SQLALCHEMY_DATABASE_URI") or settings["DATABASE_URL"]
    if not db_url:
        db_path = os.path.join(os.path.dirname(__file__), "..", "instance", "waifuhospital.db")
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
        db_url = f"sqlite:///{db_path}"
    settings["SQLALCHEMY_DATABASE_URI"] = _normalize_db_url(db_url)
    settings["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    return settings
