# -*- coding: utf-8 -*-
from typing import Any, Mapping, Optional

import click
from flask import Flask
from flask_cors import CORS

from src.config import load_config
from src.database import db

# Observability imports
from src.services.metrics import init_metrics
from src.services.request_context import init_request_context
from src.services.structured_logging import get_logger, init_logging

from src.middleware.errors import register_error_handlers
from src.services.gateways import init_gateways

logger = get_logger('waifu.app')


def _cors_origins(app: Flask):
    raw = app.config.get("CORS_ALLOWED_ORIGINS", "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _register_cli(app: Flask):

    @app.cli.command("reconcile")
    @click.option("--limit", default=200, show_default=True, help="Maximum purchases to examine.")
    def reconcile_command(limit):
        """Confirm card payments, create missing fulfillment orders and dispatch creator transfers."""
        from src.jobs.reconcile import run_reconciliation
        summary = run_reconciliation(limit=limit)
        click.echo(
            f"examined={summary['examined']} payments_confirmed={summary['payments_confirmed']} "
            f"orders_created={summary['orders_created']} "
            f"transfers_created={summary['transfers_created']}")


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    """Build the primary backend (users, characters, chats, merchandise, payments)."""
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Config ---
    app.config.update(load_config(config_overrides))

    # --- DB ---
    db.init_app(app)

    # --- CORS ---
    CORS(app, resources={
        r"/api/*": {
            "origins": _cors_origins(app),
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "x-auth-token"],
            "supports_credentials": False,
            "max_age": 600,
        }}
    )

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    init_metrics(app)

    # --- Errors and external gateways ---
    register_error_handlers(app)
    init_gateways(app)

    # --- Blueprints ---
    from src.routes.characters import characters_bp
    from src.routes.chat import chat_bp
    from src.routes.health import health_bp
    from src.routes.merchandise import merchandise_bp
    from src.routes.payments import payments_bp
    from src.routes.users import users_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(characters_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(merchandise_bp)
    app.register_blueprint(payments_bp)

    _register_cli(app)

    # --- DB init ---
    with app.app_context():
        import src.models  # noqa: F401  registers every table
        if app.config.get("TESTING") or app.config.get("WAIFU_DB_AUTOCREATE"):
            db.create_all()

    logger.info("Backend app created", gateway_mode=app.config.get("GATEWAY_MODE"))
    return app
