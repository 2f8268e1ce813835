# backend/carsearch/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.listings import listings_bp
    from .routes.approvals import approvals_bp
    from .routes.negotiation import negotiation_bp
    from .routes.checkpoints import checkpoints_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(listings_bp)
    app.register_blueprint(approvals_bp)
    app.register_blueprint(negotiation_bp)
    app.register_blueprint(checkpoints_bp)

    @app.after_request
    def add_cors_headers(response):
        # Dashboard dev servers
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
