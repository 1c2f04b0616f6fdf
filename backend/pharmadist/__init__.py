# backend/pharmadist/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, enable_sqlite_savepoints, migrate
from .logging_config import setup_logging


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Must land before db.init_app, which binds the engine
        app.config.update(test_config)

    setup_logging(app.config["LOG_LEVEL"], app.config.get("LOG_DIR"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            enable_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services import realtime
    realtime.register_session_hooks()
    realtime.set_sink(realtime.sink_from_config(app.config["REALTIME_SINK"]))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.quotes import quotes_bp
    from .routes.orders import orders_bp
    from .routes.stock import stock_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(quotes_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(stock_bp)

    allowed_origins = set(app.config["CORS_ALLOWED_ORIGINS"])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
