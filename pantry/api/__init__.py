"""JSON API for receipts and items, mounted at /api/v1."""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar, cast

from flask import Blueprint, current_app, jsonify, request
from flask_wtf.csrf import validate_csrf
from wtforms.validators import ValidationError as CSRFValidationError

bp = Blueprint("api", __name__)

F = TypeVar("F", bound=Callable[..., Any])

_SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def _csrf_failure(message: str, error_type: str) -> tuple[Any, int]:
    return jsonify({"status": "error", "message": message, "code": 403, "error_type": error_type}), 403


def validate_api_csrf(f: F) -> F:
    """Require a valid X-CSRFToken header on state-changing API calls.

    Global CSRF checking is off (WTF_CSRF_CHECK_DEFAULT) because JSON clients
    send the token as a header; this decorator does the check per route.
    """

    @wraps(f)
    def decorated_function(*args: Any, **kwargs: Any) -> Any:
        if not current_app.config.get("WTF_CSRF_ENABLED", True) or request.method in _SAFE_METHODS:
            return f(*args, **kwargs)

        csrf_token = request.headers.get("X-CSRFToken")
        if not csrf_token:
            return _csrf_failure("CSRF token is missing from request headers", "csrf_missing")

        try:
            validate_csrf(csrf_token)
        except CSRFValidationError as e:
            current_app.logger.warning(f"CSRF validation failed: {str(e)}")
            return _csrf_failure("CSRF token is invalid or expired", "csrf_invalid")

        return f(*args, **kwargs)

    return cast(F, decorated_function)


# Import routes to register them with the blueprint
from . import routes  # noqa: E402, F401
