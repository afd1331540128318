# backend/storeledger/__init__.py
from flask import Flask, jsonify

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides land before extensions read the config (tests use sqlite in memory)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.events import EventBus
    app.extensions["event_bus"] = EventBus()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.customers import customers_bp
    from .routes.invoices import invoices_bp
    from .routes.payments import payments_bp
    from .routes.returns import returns_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(audit_bp)

    from .services.concurrency import ResourceContention

    @app.errorhandler(ResourceContention)
    def handle_contention(exc):
        response = jsonify({"error": str(exc)})
        response.status_code = 503
        response.headers["Retry-After"] = "1"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
