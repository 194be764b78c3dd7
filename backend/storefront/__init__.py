# backend/storefront/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .validation import StorageUnavailableError


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # One data layer per process
    from .services.kv_store import MemoryKeyValueStore, SqlKeyValueStore
    from .services.storefront import build_storefront

    if app.config["STOREFRONT_STORAGE"] == "memory":
        kv = MemoryKeyValueStore()
    else:
        kv = SqlKeyValueStore(attempts=app.config["STORAGE_RETRY_ATTEMPTS"])
    app.extensions["storefront"] = build_storefront(kv, app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.profile import profile_bp
    from .routes.cart import cart_bp
    from .routes.orders import orders_bp
    from .routes.wallet import wallet_bp
    from .routes.ratings import ratings_bp
    from .routes.favorites import favorites_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(ratings_bp)
    app.register_blueprint(favorites_bp)

    @app.errorhandler(StorageUnavailableError)
    def storage_unavailable(exc):
        app.logger.error("Storage unavailable: %s", exc)
        return {"error": "Storage unavailable, try again"}, 503

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
