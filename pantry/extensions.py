"""Application Flask extensions.

This module initializes and configures all Flask extensions used in the application.
"""

import logging
import os
from typing import Any, cast

from flask import Flask, jsonify
from flask.wrappers import Response
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFError, CSRFProtect

logger = logging.getLogger(__name__)

# Development fallback secret key (only used when SECRET_KEY env var is not set)
_DEV_FALLBACK_SECRET = "dev-key-change-in-production"  # nosec B105

# Initialize SQLAlchemy
db = SQLAlchemy()

# Session-based authentication; the logged-in user is the owner of every scan and item
login_manager = LoginManager()

# Initialize rate limiter to prevent abuse
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["400 per day", "100 per hour"],
    storage_uri="memory://",
)

# CSRF protection is validated per API route, see pantry.api.validate_api_csrf
csrf = CSRFProtect()


def _configure_csrf_handlers(app: Flask) -> None:
    """Configure CSRF error handler."""
    if not app.config.get("WTF_CSRF_ENABLED", True):
        return

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e: CSRFError) -> Response:
        app.logger.warning(f"CSRF error: {e}")
        response = jsonify(
            {
                "status": "error",
                "message": "The CSRF session token is missing or invalid.",
                "error_type": "csrf_validation_failed",
            }
        )
        response.status_code = 403
        return cast(Response, response)


def init_app(app: Flask) -> None:
    """Initialize all extensions with the Flask application."""
    login_manager.init_app(app)
    limiter.init_app(app)

    secret_key = app.config.get("SECRET_KEY")
    if not secret_key:
        app.logger.warning("Using fallback CSRF secret key - ensure SECRET_KEY is set in production")
        env_secret = os.getenv("SECRET_KEY")
        secret_key = env_secret if env_secret else _DEV_FALLBACK_SECRET

    # JSON clients send the token in a header; checked by the API decorator instead of globally
    app.config.update(
        WTF_CSRF_CHECK_DEFAULT=False,
        WTF_CSRF_SSL_STRICT=False,
        WTF_CSRF_TIME_LIMIT=3600,
    )
    app.config["WTF_CSRF_SECRET_KEY"] = secret_key  # nosec B105
    csrf.init_app(app)

    _configure_csrf_handlers(app)


@login_manager.unauthorized_handler
def unauthorized() -> Response:
    """Return a 401 JSON response for unauthenticated requests."""
    response = jsonify({"status": "error", "message": "Authentication required", "code": 401})
    response.status_code = 401
    return cast(Response, response)


@login_manager.user_loader
def load_user(user_id: str) -> Any | None:
    """Load a user from the database.

    Only returns active users. Inactive users are treated as non-existent
    to prevent access after account deactivation.
    """
    from pantry.auth.models import User

    try:
        if not user_id or not user_id.isdigit():
            return None

        user = db.session.get(User, int(user_id))

        if user and user.is_active:
            return user

        return None
    except (ValueError, TypeError):
        return None
