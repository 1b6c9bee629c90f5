import logging
import os

from flask import Flask, jsonify, request
from flask_caching import Cache
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

from config import config

logger = logging.getLogger(__name__)

db = SQLAlchemy()
cache = Cache()
migrate = Migrate()


def create_app(config_name=None):
    app = Flask(__name__)

    # Determine configuration
    if config_name is None:
        config_name = os.environ.get("FLASK_CONFIG", "default")

    app.config.from_object(config[config_name]())

    # Initialize extensions
    db.init_app(app)
    cache.init_app(app)
    migrate.init_app(app, db)

    # Import and register blueprints
    from setlist_pickem.routes.api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    from setlist_pickem.routes.admin import bp as admin_bp

    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    # Register error handlers
    register_error_handlers(app)

    # Setup logging
    from setlist_pickem.utils.logging_config import setup_logging

    setup_logging(app)

    # Show configuration warnings
    show_config_warnings(app, config_name)

    # Create database tables
    with app.app_context():
        db.create_all()

    # Initialize and start background scheduler
    if not app.config.get("TESTING", False):
        from setlist_pickem.services.scheduler_service import scheduler_service

        scheduler_service.init_app(app)

    return app


def show_config_warnings(app, config_name):
    """Log configuration warnings and status"""
    logger.info(f"Setlist Pick'em starting with '{config_name}' configuration")

    if config_name == "production" and app.config.get("DEBUG"):
        logger.warning("DEBUG mode is enabled in production!")

    if not app.config.get("PHISHNET_API_KEY"):
        logger.warning("PHISHNET_API_KEY not set - setlist fetches will fail")

    if app.config.get("ADMIN_FEATURES_ENABLED") and config_name == "production":
        logger.warning("Admin features are enabled in production")

    db_url = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    # Never log credentials, only the dialect
    logger.info(
        f"Using database: {db_url.split('://')[0] if '://' in db_url else 'Unknown'}"
    )


def register_error_handlers(app):
    """Register global error handlers"""
    from setlist_pickem.utils.exceptions import (
        InvalidTransitionError,
        NotFoundError,
        PickemError,
        PickValidationError,
        SetlistFeedError,
        StoreUnavailableError,
        SubmissionClosedError,
    )

    def _public_message(error, fallback):
        # Production responses never carry internal details
        if app.config.get("DEBUG") or app.config.get("TESTING"):
            return str(error)
        return fallback

    @app.after_request
    def after_request(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        if request.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.errorhandler(NotFoundError)
    def handle_not_found(error):
        return jsonify({"error": str(error)}), 404

    @app.errorhandler(InvalidTransitionError)
    def handle_invalid_transition(error):
        return jsonify({"error": str(error)}), 409

    @app.errorhandler(PickValidationError)
    def handle_pick_validation(error):
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(SubmissionClosedError)
    def handle_submission_closed(error):
        return jsonify({"error": str(error), "show_id": error.show_id}), 409

    @app.errorhandler(SetlistFeedError)
    def handle_feed_error(error):
        app.logger.warning(f"Setlist feed error: {error}")
        return (
            jsonify({"error": _public_message(error, "Setlist feed unavailable")}),
            502,
        )

    @app.errorhandler(StoreUnavailableError)
    def handle_store_unavailable(error):
        db.session.rollback()
        app.logger.error(f"Store unavailable: {error}")
        return (
            jsonify({"error": _public_message(error, "Service unavailable")}),
            503,
        )

    @app.errorhandler(PickemError)
    def handle_pickem_error(error):
        db.session.rollback()
        app.logger.error(f"Unhandled pick'em error: {error}", exc_info=True)
        return (
            jsonify({"error": _public_message(error, "Internal server error")}),
            500,
        )

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"error": "Resource not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(401)
    def unauthorized_error(error):
        return jsonify({"error": "Unauthorized"}), 401

    @app.errorhandler(403)
    def forbidden_error(error):
        return jsonify({"error": "Access forbidden"}), 403

    @app.errorhandler(400)
    def bad_request_error(error):
        app.logger.warning(
            f"400 Bad Request: {str(error)} - Path: {request.path} - Method: {request.method}"
        )
        return jsonify({"error": "Bad request"}), 400


from setlist_pickem import models  # noqa: F401, E402 - imported for model registration
