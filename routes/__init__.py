"""
Flask route blueprints for PrintLink.

This module contains all route handlers organized by functionality:
- main: Home redirect and view mode switch
- requester: Request form and own requests
- maker: Open request queue and offers
- queue: Job queue and status advance
- api: JSON endpoints, live event streams, list partials, health

Each blueprint is registered with the Flask app in create_app().
"""

from .main import main_bp
from .requester import requester_bp
from .maker import maker_bp
from .queue import queue_bp
from .api import api_bp

__all__ = [
    "main_bp",
    "requester_bp",
    "maker_bp",
    "queue_bp",
    "api_bp",
]


def register_blueprints(app):
    """
    Register all blueprints with the Flask app.

    Args:
        app: Flask application instance
    """
    app.register_blueprint(main_bp)
    app.register_blueprint(requester_bp)
    app.register_blueprint(maker_bp)
    app.register_blueprint(queue_bp)
    app.register_blueprint(api_bp)
