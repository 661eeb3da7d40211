import os

from flask import Flask
from flask_cors import CORS

from okrhub.logging_config import configure_logging, get_logger
from okrhub.models import db

logger = get_logger(__name__)


def init_scheduler(app):
    """Start the drain scheduler and arm the first run from the stored config."""
    from okrhub.services.config_service import ConfigService
    from okrhub.sync.scheduler import DrainScheduler

    # --- Prevent scheduler duplication in multi-worker environments ---
    # Only run the scheduler on one instance
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        logger.info("Skipping scheduler startup on the reloader parent process")
        return None

    scheduler = DrainScheduler(app)
    scheduler.start()
    app.extensions["okrhub_scheduler"] = scheduler

    with app.app_context():
        settings = ConfigService.read_config()
    if settings is not None and settings.auto_sync_enabled:
        scheduler.schedule_next(settings.sync_interval_ms)
        logger.info("First drain armed", interval_ms=settings.sync_interval_ms)
    else:
        logger.info("Auto sync off or LinkHub not configured, drain not armed")

    return scheduler


def create_app(config_overrides=None):
    # Import config after dotenv is loaded
    from okrhub.config import get_config
    from okrhub.db_config import configure_database

    # Get the appropriate config class based on environment
    config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(log_level=app.config.get("LOG_LEVEL", "INFO"), log_file=app.config.get("LOG_FILE"))

    # Configure database separately; overrides must land before init_app
    configure_database(app, config_overrides)

    logger.info(f"Starting application in {config_class.ENV} environment")
    logger.info(f"Database URI: {app.config.get('SQLALCHEMY_DATABASE_URI', 'Not set')[:50]}...")

    # Get allowed origins from environment variable
    allowed_origins = app.config.get("CORS_ORIGINS", "*")
    if allowed_origins != "*":
        # Parse comma-separated list if provided
        allowed_origins = [origin.strip() for origin in allowed_origins.split(",")]

    CORS(app,
         resources={r"/okrhub/*": {"origins": allowed_origins}},
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"])

    db.init_app(app)

    with app.app_context():
        # Only create tables if they don't exist
        db.create_all()

        from okrhub.services.config_service import ConfigService
        ConfigService.bootstrap_from_app_config(app.config)

    from okrhub.api import okrhub_bp
    app.register_blueprint(okrhub_bp, url_prefix="/okrhub")

    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        init_scheduler(app)

    return app
