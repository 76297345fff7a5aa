# backend/stockledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    """
    Application factory.

    config_object may be a config class or a plain dict of overrides; either
    way it is applied before the extensions bind, so the database URI a test
    passes in is the one the engine is built with.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if isinstance(config_object, dict):
        app.config.update(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.stock_outs import stock_outs_bp
    from .routes.transfers import transfers_bp
    from .routes.ledger import ledger_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(stock_outs_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(ledger_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
