# backend/freshledger/__init__.py
import logging

from flask import Flask

from .config import Config
from .errors import FreshLedgerError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.getLogger("freshledger").setLevel(level)
    app.logger.setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.ledger import ledger_bp, days_bp
    from .routes.orders import availability_bp, menu_bp, orders_bp
    from .routes.waste import waste_bp, expiry_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(days_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(menu_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(waste_bp)
    app.register_blueprint(expiry_bp)

    @app.errorhandler(FreshLedgerError)
    def handle_domain_error(exc: FreshLedgerError):
        if exc.status_code >= 500:
            app.logger.exception("Unhandled domain failure")
        return exc.to_dict(), exc.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("EXPIRY_SWEEP_ENABLED") and not app.config.get("TESTING"):
        from .scheduler import ExpirySweepScheduler

        expiry_scheduler = ExpirySweepScheduler(app)
        expiry_scheduler.start()
        app.extensions["expiry_scheduler"] = expiry_scheduler

    return app
