# backend/posledger/__init__.py
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .extensions import db, migrate
from .validation import ConflictError, ValidationError
from .services.balance_service import HolderNotFound, PreconditionFailed, TransactionAborted
from .services.catalog_service import CatalogError
from .services.sales_service import SaleError
from .services.return_service import ReturnError
from .services.stock_adjustment_service import AdjustmentError
from .services.transfer_service import TransferError
from .services.purchasing_service import PurchasingError


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    with app.app_context():
        if db.engine.dialect.name == "sqlite" and app.config.get("SQLITE_IMMEDIATE_TRANSACTIONS"):
            from .services.concurrency import install_sqlite_immediate_transactions
            install_sqlite_immediate_transactions(db.engine)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp
    from .routes.stores import stores_bp
    from .routes.customers import customers_bp
    from .routes.sales import sales_bp
    from .routes.returns import returns_bp
    from .routes.gift_cards import gift_cards_bp
    from .routes.registers import registers_bp
    from .routes.loyalty import loyalty_bp
    from .routes.stock_adjustments import stock_adjustments_bp
    from .routes.transfers import transfers_bp
    from .routes.credit_sales import credit_sales_bp
    from .routes.accounts import accounts_bp
    from .routes.ledger import ledger_bp
    from .routes.audit import audit_bp
    from .routes.suppliers import suppliers_bp
    from .routes.purchase_orders import purchase_orders_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(stores_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(gift_cards_bp)
    app.register_blueprint(registers_bp)
    app.register_blueprint(loyalty_bp)
    app.register_blueprint(stock_adjustments_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(credit_sales_bp)
    app.register_blueprint(accounts_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(audit_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(purchase_orders_bp)

    register_error_handlers(app)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config.get("CORS_ALLOWED_ORIGINS", []):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """
    Map domain errors to HTTP responses.

    Routes only catch what they want to reshape; anything that escapes lands here.
    """

    @app.errorhandler(ValidationError)
    @app.errorhandler(PreconditionFailed)
    def _bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(HolderNotFound)
    @app.errorhandler(CatalogError)
    @app.errorhandler(SaleError)
    @app.errorhandler(ReturnError)
    @app.errorhandler(AdjustmentError)
    @app.errorhandler(TransferError)
    @app.errorhandler(PurchasingError)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(ConflictError)
    def _conflict(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(TransactionAborted)
    def _aborted(e):
        app.logger.error("Transaction aborted: %s", e.cause)
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(Exception)
    def _unhandled(e):
        if isinstance(e, HTTPException):
            return e
        db.session.rollback()
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500
