# backend/vms/__init__.py
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

    # Effect dispatcher used by the state machine and intake service
    from .services.dispatcher import NotificationDispatcher
    app.extensions.setdefault("vms.dispatcher", NotificationDispatcher())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.visits import visits_bp
    from .routes.visitors import visitors_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(visits_bp)
    app.register_blueprint(visitors_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin == app.config["FRONTEND_URL"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Actor-Id, X-Actor-Role"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
