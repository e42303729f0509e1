"""
PrintLink - Flask Application Entry Point.

This is a slim app factory that:
1. Connects the document store (fail-fast if the backend is unreachable)
2. Loads the request field schema
3. Creates the request, offer and view services
4. Registers route blueprints
5. Sets up identity resolution, error handlers and context processors

ARCHITECTURE:
    Main Thread
    ├── Store connection and schema loading
    ├── Flask request handling
    └── Store shutdown on exit

    Store delivery
    ├── memory: snapshots delivered on the thread that wrote
    └── mongo:  one change-stream watcher thread per live subscription

Every HTTP request resolves an identity first (g.identity). Mutating routes
refuse to run without one.
"""

from __future__ import annotations

import atexit
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from flask import Flask, flash, g, redirect, request, session, url_for

from config import MarketplaceSettings, get_config_class
from logging_config import setup_logging, get_logger
from core.document_store import DocumentStore
from core.exceptions import AuthError, StoreUnavailableError
from core.identity import IdentityProvider
from core.memory_store import InMemoryDocumentStore
from modules.field_schema import load_field_schema
from modules.formatting import register_filters
from services import OfferService, RequestService, ViewService
from routes import register_blueprints
from routes.main import VIEW_MODES, current_mode


# Module logger (configured after setup_logging)
logger = get_logger(__name__)


def _get_base_path() -> Path:
    """
    Get the base path for the application.

    In PyInstaller bundle: Returns the directory containing the executable
    In development: Returns the directory containing app.py
    """
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    else:
        return Path(__file__).parent


def create_store(config) -> DocumentStore:
    """
    Build the document store named by STORE_BACKEND.

    Raises:
        StoreUnavailableError: If the backend is unknown or unreachable
    """
    backend = (config.get("STORE_BACKEND") or "memory").lower()

    if backend == "memory":
        logger.warning("Using in-memory document store - data is lost on restart")
        return InMemoryDocumentStore()

    if backend == "mongo":
        # Imported here so the memory backend never needs a MongoDB driver loaded
        from core.mongo_store import MongoDocumentStore

        store = MongoDocumentStore(config["MONGO_URL"], config["MONGO_DB"])
        store.connect()
        return store

    raise StoreUnavailableError(backend, "unknown store backend")


def _bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def create_app(config_object=None, store: Optional[DocumentStore] = None) -> Flask:
    """
    Application factory - creates and configures Flask app.

    FAIL-FAST: If the document store cannot be reached, the app will not start.

    Args:
        config_object: Config class (defaults to the one named by FLASK_ENV)
        store: Pre-built document store (tests pass their own)

    Returns:
        Configured Flask application

    Raises:
        StoreUnavailableError: If the store backend is unknown or unreachable
    """
    # Load .env from base path (next to executable in production)
    # Use override=True so .env file always takes precedence over shell environment
    base_path = _get_base_path()
    env_file = base_path / '.env'
    if env_file.exists():
        load_dotenv(env_file, override=True)
    else:
        load_dotenv(override=True)

    # Create Flask app
    app = Flask(__name__)
    app.config.from_object(config_object or get_config_class(os.environ.get("FLASK_ENV")))

    # Configure logging
    log_level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO
    enable_file_logging = app.config.get("ENVIRONMENT") == "production" and not app.config.get("TESTING")

    root_logger = setup_logging(
        app_name="printlink",
        log_level=log_level,
        enable_file_logging=enable_file_logging
    )

    # Set Flask's logger to use our configured logger
    app.logger.handlers = root_logger.handlers
    app.logger.setLevel(log_level)

    logger.info(f"Starting PrintLink in {app.config.get('ENVIRONMENT')} mode")

    # =========================================================================
    # CORE INITIALIZATION (FAIL-FAST)
    # =========================================================================

    settings = MarketplaceSettings.from_config(app.config)

    if store is None:
        try:
            store = create_store(app.config)
        except StoreUnavailableError as e:
            logger.error(f"FATAL: Cannot start application - {e}")
            raise
    logger.info(f"Document store ready ({store.backend_name}), collections under {settings.data_root}")

    schema = load_field_schema(app.config.get("FIELD_SCHEMA_PATH"))

    identity_provider = IdentityProvider(
        app.config["SECRET_KEY"],
        initial_auth_token=app.config.get("INITIAL_AUTH_TOKEN")
    )

    # Store in app config for access by routes
    app.config["MARKETPLACE_SETTINGS"] = settings
    app.config["DOCUMENT_STORE"] = store
    app.config["FIELD_SCHEMA"] = schema
    app.config["IDENTITY_PROVIDER"] = identity_provider

    # =========================================================================
    # SERVICES INITIALIZATION
    # =========================================================================

    app.config["REQUEST_SERVICE"] = RequestService(store, settings, schema)
    app.config["OFFER_SERVICE"] = OfferService(store, settings)
    app.config["VIEW_SERVICE"] = ViewService(store, settings)
    logger.info("Marketplace services initialized")

    # =========================================================================
    # CLEANUP REGISTRATION
    # =========================================================================

    def cleanup():
        """Cleanup on application shutdown."""
        logger.info("Shutting down...")
        store.close()
        logger.info("Shutdown complete")

    atexit.register(cleanup)

    # =========================================================================
    # REGISTER BLUEPRINTS
    # =========================================================================

    register_blueprints(app)
    register_filters(app)

    # =========================================================================
    # IDENTITY
    # =========================================================================

    @app.before_request
    def resolve_identity():
        """Attach the caller's identity (or the reason there is none) to g."""
        g.identity = None
        g.auth_error = None
        try:
            g.identity = identity_provider.resolve(session, _bearer_token())
        except AuthError as e:
            g.auth_error = e.message
            logger.warning(f"Identity not resolved for {request.path}: {e.message}")

    # =========================================================================
    # CONTEXT PROCESSORS
    # =========================================================================

    @app.context_processor
    def inject_identity():
        """Inject identity banner data into all templates."""
        identity = g.get("identity")
        return {
            "identity": identity,
            "auth_error": g.get("auth_error"),
            "app_id": settings.app_id,
        }

    @app.context_processor
    def inject_view_modes():
        return {
            "view_modes": VIEW_MODES,
            "current_mode": current_mode(),
        }

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    def _wants_json() -> bool:
        return request.path.startswith("/api/")

    @app.errorhandler(404)
    def handle_not_found(e):
        if _wants_json():
            return {"error": "Not found"}, 404
        flash("Page not found.", "warning")
        return redirect(url_for("main.index"))

    @app.errorhandler(500)
    def handle_server_error(e):
        logger.error(f"500 error: {e}", exc_info=True)
        if _wants_json():
            return {"error": "An unexpected error occurred."}, 500
        flash("An unexpected error occurred. Please try again.", "error")
        return redirect(url_for("main.index"))

    # =========================================================================
    # CLI
    # =========================================================================

    @app.cli.command("issue-token")
    @click.argument("user_id")
    def issue_token(user_id: str):
        """Print a persistent identity token for USER_ID."""
        try:
            click.echo(identity_provider.issue_token(user_id))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="USER_ID") from e

    logger.info("Application initialized successfully")
    return app


if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(debug=debug_mode, threaded=True)
