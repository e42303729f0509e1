"""
Configuration for PrintLink.

Two layers:
    - Config classes: Flask settings read from the environment (.env).
    - MarketplaceSettings: immutable settings object built once at startup
      and passed to every service that needs it. Services never read
      Flask config or environment variables themselves.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from core.document_store import join_path

# Load .env file early so environment variables are available for Config class
# This must happen before the Config class is defined
load_dotenv(override=True)

# Base directory (where this file lives)
BASE_DIR = Path(__file__).resolve().parent


class Config:
    """Default configuration for the Flask application."""

    # Flask settings
    SECRET_KEY = os.environ.get("FLASK_SECRET_KEY", "dev-secret-key")
    SESSION_COOKIE_NAME = "printlink_session"
    ENVIRONMENT = os.environ.get("FLASK_ENV", "development")

    # Debug mode
    DEBUG = os.environ.get("FLASK_DEBUG", "1") == "1"

    # ==========================================================================
    # Marketplace
    # ==========================================================================
    # APP_ID namespaces every collection: artifacts/<APP_ID>/public/data/...
    # Two deployments sharing one database stay apart if their ids differ.
    # ==========================================================================
    APP_ID = os.environ.get("PRINTLINK_APP_ID", "default-printlink-app")

    # Optional signed token; when valid, every session acts as this user
    INITIAL_AUTH_TOKEN = os.environ.get("PRINTLINK_AUTH_TOKEN") or None

    FIELD_SCHEMA_PATH = os.environ.get(
        "PRINTLINK_FIELD_SCHEMA", str(BASE_DIR / "data" / "request_fields.json")
    )

    # ==========================================================================
    # Document store
    # ==========================================================================
    # memory: in-process store, data is lost on restart (development, tests)
    # mongo:  MongoDB; live views need a replica set for change streams
    # ==========================================================================
    STORE_BACKEND = os.environ.get("PRINTLINK_STORE_BACKEND", "memory")
    MONGO_URL = os.environ.get("PRINTLINK_MONGO_URL", "mongodb://localhost:27017/?replicaSet=rs0")
    MONGO_DB = os.environ.get("PRINTLINK_MONGO_DB", "printlink")

    # Input limits (characters, after sanitizing)
    MAX_TEXT_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000
    MAX_OFFER_MESSAGE_LENGTH = 1000

    # Seconds between keep-alive comments on live event streams
    STREAM_KEEPALIVE_SECONDS = 15.0


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    TESTING = False
    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    STORE_BACKEND = os.environ.get("PRINTLINK_STORE_BACKEND", "mongo")


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False


class TestingConfig(Config):
    """Testing configuration."""
    DEBUG = False
    TESTING = True
    SECRET_KEY = "test-secret-key"
    APP_ID = "test-app"
    STORE_BACKEND = "memory"
    INITIAL_AUTH_TOKEN = None
    STREAM_KEEPALIVE_SECONDS = 0.05


@dataclass(frozen=True)
class MarketplaceSettings:
    """
    Startup settings shared by the marketplace services.

    Built once by the app factory and handed to each component.
    """

    app_id: str = "default-printlink-app"
    max_text_length: int = 200
    max_description_length: int = 2000
    max_offer_message_length: int = 1000

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "MarketplaceSettings":
        """Create from a Flask config mapping."""
        return cls(
            app_id=config.get("APP_ID", cls.app_id),
            max_text_length=int(config.get("MAX_TEXT_LENGTH", cls.max_text_length)),
            max_description_length=int(
                config.get("MAX_DESCRIPTION_LENGTH", cls.max_description_length)
            ),
            max_offer_message_length=int(
                config.get("MAX_OFFER_MESSAGE_LENGTH", cls.max_offer_message_length)
            ),
        )

    @property
    def data_root(self) -> str:
        return join_path("artifacts", self.app_id, "public", "data")

    @property
    def requests_collection(self) -> str:
        """Top-level collection holding every PrintRequest."""
        return join_path(self.data_root, "printRequests")

    def request_document(self, request_id: str) -> str:
        return join_path(self.requests_collection, request_id)

    def offers_collection(self, request_id: str) -> str:
        """Sub-collection holding the offers of one request."""
        return join_path(self.request_document(request_id), "offers")


def get_config_class(environment: Optional[str]):
    """Map FLASK_ENV to a config class."""
    return {
        "production": ProductionConfig,
        "testing": TestingConfig,
        "development": DevelopmentConfig,
    }.get((environment or "").lower(), Config)
