"""Pytest configuration and fixtures for the test suite."""

import os
import sys
from pathlib import Path
from typing import Generator

import pytest
from flask import Flask, g
from flask.testing import FlaskClient, FlaskCliRunner

# Add the project root to the Python path so config.py is importable
project_root = str(Path(__file__).parent.parent)
sys.path.insert(0, project_root)

# Set test environment variables before the application is imported
os.environ.update(
    {
        "FLASK_ENV": "testing",
        "ENVIRONMENT": "test",
        "SECRET_KEY": "test-secret-key",
        "WTF_CSRF_ENABLED": "False",
        "NOTIFICATIONS_ENABLED": "false",
    }
)
os.environ.pop("DATABASE_URL", None)

from pantry import create_app  # noqa: E402
from pantry.auth.models import User  # noqa: E402
from pantry.extensions import db  # noqa: E402
from pantry.items.models import Item  # noqa: E402
from pantry.receipts.services import ReceiptService, get_receipt_service  # noqa: E402


@pytest.fixture(scope="function")
def app() -> Generator[Flask, None, None]:
    """Create a new app with a fresh in-memory database for each test."""
    app = create_app("testing")

    ctx = app.app_context()
    ctx.push()

    # Requests share this pushed app context (and its ``g``); drop Flask-Login's
    # per-request user cache so each request resolves the session's user afresh.
    @app.teardown_request
    def _reset_login_cache(exc):
        g.pop("_login_user", None)

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create a test client for the application."""
    return app.test_client()


@pytest.fixture
def runner(app: Flask) -> FlaskCliRunner:
    """Create a CLI runner for testing Click commands."""
    return app.test_cli_runner()


def _create_user(username: str, password: str = "password123") -> User:
    user = User(username=username, email=f"{username}@example.com")
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def user(app: Flask) -> User:
    """The owner most tests act as."""
    return _create_user("testuser")


@pytest.fixture
def other_user(app: Flask) -> User:
    """A second owner, for isolation checks."""
    return _create_user("otheruser")


@pytest.fixture
def item(user: User) -> Item:
    """An item owned by ``user`` with some stock."""
    item = Item(title="Milk", quantity=4, warning_amount=2, owner_id=user.id)
    db.session.add(item)
    db.session.commit()
    return item


@pytest.fixture
def auth_client(client: FlaskClient, user: User) -> FlaskClient:
    """Test client with ``user`` logged in."""
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user.id)
        sess["_fresh"] = True
    return client


@pytest.fixture
def receipt_service(app: Flask) -> ReceiptService:
    """ReceiptService wired to the app's learned-line store."""
    return get_receipt_service()


@pytest.fixture
def make_document():
    """Build an OCR document with the given line items."""

    def _make(*line_items: dict) -> dict:
        return {"id": 1001, "vendor": {"name": "Corner Shop"}, "line_items": list(line_items)}

    return _make
