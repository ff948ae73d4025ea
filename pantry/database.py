"""Database configuration and utilities.

This module provides a centralized way to manage database connections,
initialization, and utilities for the application.
"""

from __future__ import annotations

import logging
import os
from typing import cast

from flask import Flask
from sqlalchemy import event
from sqlalchemy.engine import Engine

from .extensions import db

# Configure logger
logger = logging.getLogger(__name__)

__all__ = [
    "db",
    "init_database",
    "get_engine",
    "get_dialect_name",
]


def _get_database_uri_from_app_config(app: Flask) -> str | None:
    """Get database URI from app config."""
    uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    return str(uri) if uri else None


def _get_database_uri_fallback() -> str:
    """Get fallback SQLite database URI."""
    instance_path = os.path.join(os.path.dirname(__file__), "..", "instance")
    os.makedirs(instance_path, exist_ok=True)
    db_path = os.path.join(instance_path, f"pantry-{os.getenv('FLASK_ENV', 'development')}.db")
    return f"sqlite:///{db_path}"


def _get_database_uri(app: Flask) -> str:
    """Get the database URI with proper fallback logic.

    Priority order:
    1. SQLALCHEMY_DATABASE_URI from app config (resolved from DATABASE_URL by config.py)
    2. SQLite database file in instance directory
    """
    return _get_database_uri_from_app_config(app) or _get_database_uri_fallback()


def _engine_options_for(db_uri: str) -> dict:
    """Connection pooling only applies to server databases."""
    if db_uri.startswith("sqlite"):
        return {}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,  # Recycle connections after 5 minutes
        "pool_size": 5,
        "max_overflow": 10,
    }


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINT works on SQLite."""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_database(app: Flask) -> None:
    """Initialize the database with the Flask app.

    Configures SQLAlchemy with the resolved database URI, sets up connection
    pooling for server databases, and creates any missing tables.
    """
    if "sqlalchemy" in app.extensions:
        return

    try:
        db_uri = _get_database_uri(app)
        app.config["SQLALCHEMY_DATABASE_URI"] = db_uri
        app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options_for(db_uri)

        db.init_app(app)

        with app.app_context():
            if db.engine.dialect.name == "sqlite":
                _enable_sqlite_savepoints(db.engine)
            db.create_all()
        logger.info(f"Database initialized successfully with URI: {db_uri}")

    except Exception as e:
        logger.error("Failed to initialize database: %s", e)
        raise RuntimeError(f"Failed to initialize database: {e}") from e


def get_engine() -> Engine:
    """Get the SQLAlchemy engine."""
    if db.engine is None:
        raise RuntimeError("Database engine not initialized. Make sure to call init_database() first.")
    return cast(Engine, db.engine)


def get_dialect_name() -> str:
    """Name of the active SQL dialect ("sqlite", "postgresql", ...)."""
    return get_engine().dialect.name
