# -*- coding: utf-8 -*-
from typing import Any, Mapping, Optional

from flask import Flask
from flask_cors import CORS

from src.config import load_config
from src.middleware.errors import register_error_handlers
from src.services.ai_chat import ChatService, ImageService
from src.services.character_cache import BackendCharacterClient, CharacterCache
from src.services.gateways import init_gateways
from src.services.metrics import init_metrics
from src.services.request_context import init_request_context
from src.services.structured_logging import get_logger, init_logging

logger = get_logger('waifu.app')


def create_ai_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """
    Build the AI service: chat replies and artwork generation.

    It has no database of its own; characters come from the backend through
    a TTL cache.
    """
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    settings = {"SERVICE_NAME": "waifuhospital-ai"}
    settings.update(config_overrides or {})
    app.config.update(load_config(settings))

    CORS(app, resources={
        r"/api/*": {
            "origins": "*",
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "x-auth-token"],
        }}
    )

    init_logging(app)
    init_request_context(app)
    init_metrics(app)
    register_error_handlers(app)
    gateways = init_gateways(app)

    backend = BackendCharacterClient(
        app.config["BACKEND_URL"], timeout=float(app.config.get("HTTP_TIMEOUT_SECONDS", 30)))
    cache = CharacterCache.from_backend(
        backend, ttl_seconds=float(app.config.get("CHARACTER_CACHE_TTL_SECONDS", 300)))
    app.extensions['backend_client'] = backend
    app.extensions['character_cache'] = cache
    app.extensions['chat_service'] = ChatService(gateways.llm, cache)
    app.extensions['image_service'] = ImageService(gateways.llm)

    from src.routes.ai_service import ai_bp
    from src.routes.health import health_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(ai_bp)

    logger.info("AI service app created", backend_url=app.config["BACKEND_URL"])
    return app
