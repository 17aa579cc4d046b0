# app.py
import logging
from pathlib import Path

from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager

from config import get_config
from utilities.database import db, User
from utilities.errors import KitroomError
from utilities.logger import setup_logger, LOGGER_NAMESPACE
from utilities.rate_limit import limiter
from auth import auth_bp
from inventory import inventory_bp
from checkout import checkout_bp
from main import main_bp

migrate = Migrate()

login_manager = LoginManager()


def create_app(test_config=None):
    app = Flask(__name__)

    # 1) Load config for the selected environment, then explicit overrides
    app.config.from_object(get_config())
    if test_config:
        app.config.update(test_config)

    # 2) Logging: rotating file under the app namespace
    logger = setup_logger(
        LOGGER_NAMESPACE,
        app.config["LOG_FILE"],
        level=getattr(logging, app.config.get("LOG_LEVEL", "INFO"), logging.INFO),
        console=bool(app.config.get("DEBUG")),
    )

    # 3) SQLite path hardening: relative files live under DATA_DIR, BEFORE init_app
    uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if uri.startswith("sqlite:///") and ":memory:" not in uri:
        raw_path = uri.replace("sqlite:///", "", 1).strip()
        db_path = Path(raw_path or "kitroom.db")
        if not db_path.is_absolute():
            base_dir = Path(app.config["DATA_DIR"]).expanduser()
            base_dir.mkdir(parents=True, exist_ok=True)
            db_path = base_dir / db_path.name
        db_path = db_path.resolve()
        app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{db_path.as_posix()}"
    logger.info("Using database at %s", app.config["SQLALCHEMY_DATABASE_URI"])

    # 4) Init DB & migrations NOW that URI is final
    db.init_app(app)
    migrate.init_app(app, db)

    # 5) Optional dev-only schema bootstrap
    if app.config.get("AUTO_CREATE_SCHEMA"):
        with app.app_context():
            db.create_all()

    # 6) Blueprints
    app.register_blueprint(main_bp)  # /health, /api/reports
    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(inventory_bp, url_prefix="/api")
    app.register_blueprint(checkout_bp, url_prefix="/api/transactions")

    # 7) Login manager
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        return user if user is not None and user.is_active else None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required", "code": "unauthorized"}), 401

    # 8) Rate limiting (RATELIMIT_ENABLED switches it on)
    limiter.init_app(app)

    # 9) Error handlers
    @app.errorhandler(KitroomError)
    def handle_domain_error(error: KitroomError):
        if error.status_code >= 500:
            logger.error("Request failed: %s", error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(404)
    def handle_404(error):
        return jsonify({"error": "Not found", "code": "not_found"}), 404

    @app.errorhandler(405)
    def handle_405(error):
        return jsonify({"error": "Method not allowed", "code": "method_not_allowed"}), 405

    @app.errorhandler(429)
    def handle_429(error):
        return jsonify({"error": "Too many requests, try again later", "code": "rate_limited"}), 429

    @app.errorhandler(500)
    def handle_500(error):
        db.session.rollback()
        logger.exception("Unhandled error")
        return jsonify({"error": "Internal server error", "code": "internal_error"}), 500

    return app


# For `flask --app app run`, having create_app is enough.
