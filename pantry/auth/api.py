"""API Authentication Routes.

This module handles the session login and logout endpoints.
"""

from typing import Any, Dict, Optional, Tuple

from flask import current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user

from pantry.auth.models import User
from pantry.extensions import limiter

from . import bp


def _parse_login_data() -> Tuple[Optional[Dict[str, Any]], Optional[Tuple[Any, int]]]:
    data = request.get_json(silent=True)
    if not data or "username" not in data or "password" not in data:
        return None, (
            jsonify({"status": "error", "message": "Username and password are required."}),
            400,
        )
    return data, None


def _find_user_by_username(username: str) -> Optional[User]:
    return User.query.filter_by(username=username).first()


def _credentials_invalid(user: Optional[User], password: str) -> bool:
    if not user or not user.is_active:
        return True
    return not user.check_password(password)


@bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")  # Rate limiting to prevent brute force
@limiter.limit("100 per day")
def api_login() -> Tuple[Any, int]:
    """Handle user login via API.

    Request JSON:
        username (str): The user's username
        password (str): The user's password

    Status Codes:
        200: Login successful
        400: Invalid request data
        401: Invalid credentials
    """
    data, error = _parse_login_data()
    if error is not None or data is None:
        return error or (jsonify({"status": "error", "message": "Invalid request."}), 400)

    user = _find_user_by_username(str(data["username"]))
    if _credentials_invalid(user, str(data["password"])):
        current_app.logger.info(f"Failed login attempt for username: {data['username']}")
        return jsonify({"status": "error", "message": "Invalid username or password."}), 401

    login_user(user, remember=bool(data.get("remember", False)))
    current_app.logger.info(f"User {user.id} logged in")
    return (
        jsonify({"status": "success", "message": "Logged in successfully.", "user": user.to_dict()}),
        200,
    )


@bp.route("/logout", methods=["POST"])
@login_required
def api_logout() -> Tuple[Any, int]:
    """Log out the current user."""
    logout_user()
    return jsonify({"status": "success", "message": "Logged out successfully."}), 200


@bp.route("/me", methods=["GET"])
@login_required
def api_me() -> Tuple[Any, int]:
    """Return the logged-in user."""
    return jsonify({"status": "success", "user": current_user.to_dict()}), 200
