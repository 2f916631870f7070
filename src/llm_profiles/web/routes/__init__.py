"""
Routes Package
==============
Flask blueprints for the LLM profile API.
"""

from flask import Flask

from .profiles import profiles_bp
from .status import status_bp


def register_blueprints(app: Flask) -> None:
    """
    Register all blueprints with the Flask application.

    Args:
        app: The Flask application instance
    """
    app.register_blueprint(status_bp, url_prefix='/api/llm')
    app.register_blueprint(profiles_bp, url_prefix='/api/llm/profiles')


__all__ = [
    'register_blueprints',
    'profiles_bp',
    'status_bp',
]
