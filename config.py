"""Application configuration.

This module provides environment-specific configuration settings for the application.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional


class Config:
    """Base configuration with settings common to all environments."""

    # Security
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-key-change-in-production")

    # Flask settings
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    TESTING: bool = False

    # Database settings
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_ENGINE_OPTIONS: Dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_recycle": 300,  # 5 minutes
    }

    # Session settings
    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SAMESITE: str = "Lax"
    PERMANENT_SESSION_LIFETIME: int = 3600  # 1 hour in seconds

    # CSRF protection for the JSON API
    WTF_CSRF_ENABLED: bool = os.getenv("WTF_CSRF_ENABLED", "true").lower() == "true"

    # Application settings
    APP_NAME: str = os.getenv("APP_NAME", "pantry-receipts")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "dev")

    # Request size limit; receipts arrive as base64 images
    MAX_CONTENT_LENGTH: int = 16 * 1024 * 1024  # 16MB

    # External document-processing (OCR) API
    OCR_API_URL: str = os.getenv("OCR_API_URL", "https://api.veryfi.com/api/v8/partner")
    OCR_CLIENT_ID: str = os.getenv("OCR_CLIENT_ID", "")
    OCR_USERNAME: str = os.getenv("OCR_USERNAME", "")
    OCR_API_KEY: str = os.getenv("OCR_API_KEY", "")
    OCR_TIMEOUT: int = int(os.getenv("OCR_TIMEOUT", "60"))

    # Number of OCR scans an owner may request per calendar month
    MAX_MONTHLY_SCANS: int = int(os.getenv("MAX_MONTHLY_SCANS", "10"))

    # Notification configuration (AWS SNS)
    NOTIFICATIONS_ENABLED: bool = os.getenv("NOTIFICATIONS_ENABLED", "false").lower() == "true"
    SNS_TOPIC_ARN: str = os.getenv("SNS_TOPIC_ARN", "")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")

    # Cross-origin access to /api/*
    CORS_ORIGINS: List[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    CORS_METHODS: List[str] = os.getenv("CORS_METHODS", "GET,POST,PUT,PATCH,DELETE,OPTIONS").split(",")
    CORS_ALLOW_HEADERS: List[str] = os.getenv(
        "CORS_ALLOW_HEADERS", "Content-Type,X-CSRFToken,X-Requested-With"
    ).split(",")

    def __init__(self) -> None:
        """Initialize configuration."""
        os.environ.setdefault("FLASK_ENV", "development")

        self.SQLALCHEMY_DATABASE_URI = self._get_database_uri()
        self._configure_cookie_security()

    def _get_database_uri(self) -> str:
        """Get the appropriate database URI for the current environment."""
        # Handle Heroku-style database URLs
        if "DATABASE_URL" in os.environ:
            uri = os.environ["DATABASE_URL"]
            if uri.startswith("postgres://"):
                uri = uri.replace("postgres://", "postgresql+pg8000://", 1)
            elif uri.startswith("postgresql://") and "+" not in uri.split("://", 1)[0]:
                uri = uri.replace("postgresql://", "postgresql+pg8000://", 1)
            return uri

        instance_path = Path(__file__).parent / "instance"
        instance_path.mkdir(exist_ok=True)
        return f'sqlite:///{instance_path}/pantry-{os.getenv("FLASK_ENV")}.db'

    def _configure_cookie_security(self) -> None:
        """Only send the session cookie over HTTPS outside local development."""
        self.SESSION_COOKIE_SECURE = self.ENVIRONMENT not in ("dev", "test")


class DevelopmentConfig(Config):
    """Development configuration."""


class UnitTestConfig(Config):  # noqa: D101
    """Testing configuration."""

    TESTING: bool = True
    DEBUG: bool = True
    WTF_CSRF_ENABLED: bool = False
    NOTIFICATIONS_ENABLED: bool = False
    RATELIMIT_ENABLED: bool = False
    OCR_API_URL: str = "https://ocr.test/api"
    OCR_CLIENT_ID: str = "test-client"
    OCR_USERNAME: str = "tester"
    OCR_API_KEY: str = "test-key"
    MAX_MONTHLY_SCANS: int = 3
    CORS_ORIGINS: List[str] = ["https://pantry.test"]
    SESSION_COOKIE_HTTPONLY: bool = False

    def _get_database_uri(self) -> str:
        return "sqlite:///:memory:"


class ProductionConfig(Config):
    """Production configuration."""

    DEBUG: bool = False
    TESTING: bool = False


def get_config(config_name: Optional[str] = None) -> Config:
    """Get the appropriate configuration based on environment."""
    env = (config_name or os.getenv("FLASK_ENV", "development")).lower()

    configs = {
        "development": DevelopmentConfig,
        "testing": UnitTestConfig,
        "production": ProductionConfig,
    }

    config_class = configs.get(env, DevelopmentConfig)
    return config_class()
