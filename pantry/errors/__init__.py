"""Error handlers for the application.

All responses are JSON; the service has no HTML pages.
"""

from __future__ import annotations

from typing import cast

from flask import Blueprint, Flask, Response, current_app, jsonify
from werkzeug.exceptions import HTTPException

from .exceptions import (
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    ServiceError,
    ServiceValidationError,
    UpstreamServiceError,
)

__all__ = [
    "ConflictError",
    "NotFoundError",
    "QuotaExceededError",
    "ServiceError",
    "ServiceValidationError",
    "UpstreamServiceError",
    "init_app",
]

# Initialize Blueprint
bp = Blueprint("errors", __name__)


def init_app(app: Flask) -> None:
    """Initialize error handlers with the Flask application."""
    app.register_blueprint(bp)


def _create_error_response(message: str, status_code: int, **extra: object) -> Response:
    """Create the standard JSON error envelope."""
    payload = {"status": "error", "message": message, "code": status_code}
    payload.update(extra)
    response = jsonify(payload)
    response.status_code = status_code
    return cast(Response, response)


@bp.app_errorhandler(ServiceError)
def handle_service_error(error: ServiceError) -> Response:
    """Render domain errors raised outside a route's own handling."""
    current_app.logger.info(f"{type(error).__name__}: {error.message}")
    return _create_error_response(error.message, error.status_code, error=error.to_dict())


@bp.app_errorhandler(404)
def not_found_error(error: HTTPException) -> Response:
    """Handle 404 Not Found errors."""
    return _create_error_response("Resource not found", 404)


@bp.app_errorhandler(HTTPException)
def handle_http_exception(error: HTTPException) -> Response:
    """Handle HTTP exceptions."""
    status_code = error.code if error.code is not None else 500
    return _create_error_response(error.description or "HTTP error occurred", status_code)


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception) -> Response:
    """Handle all unhandled exceptions."""
    current_app.logger.error(f"Unhandled exception: {str(error)}", exc_info=True)
    return _create_error_response("An unexpected error occurred", 500)
