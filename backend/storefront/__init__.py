# backend/storefront/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Payment gateway and order notifier (tests inject fakes through test_config)
    from .services.payment_gateway import init_gateway
    from .services.notification_service import log_order_notifier

    gateway = app.config.pop("PAYMENT_GATEWAY", None)
    if gateway is not None:
        app.extensions["payment_gateway"] = gateway
    init_gateway(app)

    notifier = app.config.pop("ORDER_NOTIFIER", None)
    app.extensions["order_notifier"] = notifier or log_order_notifier

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.cart import cart_bp
    from .routes.checkout import checkout_bp
    from .routes.payments import payments_bp
    from .routes.orders import orders_bp
    from .routes.wallet import wallet_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(admin_bp)

    # Service errors that escape a route still map to their HTTP status
    from .errors import StorefrontError
    from .decorators import error_response

    @app.errorhandler(StorefrontError)
    def handle_storefront_error(exc):
        db.session.rollback()
        return error_response(exc)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
