import logging

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from config import get_config

# Load environment variables from .env file
load_dotenv()

# Initialize logger
logger = logging.getLogger(__name__)

__all__ = ["create_app"]


def create_app(config_name: str | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_name: Optional configuration name ("development", "testing",
                     "production"). Defaults to the FLASK_ENV environment variable.
    Returns:
        Flask: The configured Flask application instance.
    """
    config = get_config(config_name)

    app = Flask(__name__)
    app.config.from_object(config)

    _configure_app_settings(app)
    _configure_logging(app)
    _initialize_components(app)
    _initialize_cli(app)

    return app


def _configure_app_settings(app: Flask) -> None:
    """Configure basic application settings and validation."""
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise ValueError("SQLALCHEMY_DATABASE_URI is not configured")

    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)


def _configure_logging(app: Flask) -> None:
    """Configure application logging."""
    log_level = logging.DEBUG if app.debug else logging.INFO
    logging.getLogger(__name__).setLevel(log_level)

    logger.debug("Application configuration:")
    logger.debug(f"- ENVIRONMENT: {app.config.get('ENVIRONMENT', 'Not set')}")
    logger.debug(f"- DEBUG: {app.debug}")
    logger.debug(f"- DATABASE_URI: {app.config.get('SQLALCHEMY_DATABASE_URI', 'Not set')}")


def _initialize_components(app: Flask) -> None:
    """Initialize core application components."""
    from .database import init_database
    from .extensions import init_app as init_extensions

    init_extensions(app)

    # Import models so their tables are known before create_all
    from .auth import models as _auth_models  # noqa: F401
    from .items import models as _item_models  # noqa: F401
    from .receipts import models as _receipt_models  # noqa: F401

    init_database(app)

    _register_blueprints(app)

    from .errors import init_app as init_errors

    init_errors(app)
    logger.debug("Registered error handlers")

    _configure_cors(app)
    _log_registered_routes(app)


def _initialize_cli(app: Flask) -> None:
    """Initialize CLI commands."""
    from .auth.cli import register_commands as register_auth_commands
    from .receipts.cli import register_commands as register_receipt_commands

    register_auth_commands(app)
    register_receipt_commands(app)
    logger.debug("Initialized CLI commands")


def _register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    logger.debug("Registering blueprints...")

    from .auth import bp as auth_bp

    app.register_blueprint(auth_bp)
    logger.debug("Registered auth blueprint at /auth")

    from .api import bp as api_bp

    app.register_blueprint(api_bp, url_prefix="/api/v1")
    logger.debug(f"Registered blueprint: {api_bp.name} at /api/v1")


def _configure_cors(app: Flask) -> None:
    """Configure CORS for the JSON API from the CORS_* settings."""
    CORS(
        app,
        resources={
            r"/api/*": {
                "origins": app.config["CORS_ORIGINS"],
                "methods": app.config["CORS_METHODS"],
                "allow_headers": app.config["CORS_ALLOW_HEADERS"],
                "expose_headers": ["Content-Length", "X-CSRFToken"],
                "supports_credentials": False,
            }
        },
    )


def _log_registered_routes(app: Flask) -> None:
    """Log all registered routes for debugging."""
    logger.debug("Registered routes:")
    for rule in app.url_map.iter_rules():
        methods = list(rule.methods - {"OPTIONS", "HEAD"})
        logger.debug(f"  {rule.endpoint}: {rule.rule} {methods}")
