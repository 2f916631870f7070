"""
Flask Application Factory
=========================
Creates and configures the Flask application serving the LLM profile API.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from flask import Flask

from ..vault.store import VaultStore
from .routes import register_blueprints
from .services.state import app_state

logger = logging.getLogger("llm-profiles")


def create_app(
    config: Optional[Dict[str, Any]] = None,
    store: Optional[VaultStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    discovery_client: Optional[httpx.AsyncClient] = None,
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Parsed configuration (loaded from YAML when omitted)
        store: Vault store override
        http_client: HTTP client override for provider calls
        discovery_client: HTTP client override for local health checks

    Returns:
        Configured Flask application instance
    """
    app_state.configure(config, store=store, http_client=http_client, discovery_client=discovery_client)

    app = Flask(__name__)
    register_blueprints(app)
    return app


def run_server(config: Optional[Dict[str, Any]] = None, debug: bool = False):
    """
    Run the Flask development server.

    Args:
        config: Parsed configuration (loaded from YAML when omitted)
        debug: Enable debug mode
    """
    app = create_app(config)
    web = app_state.config.get("web", {})
    host = web.get("host", "127.0.0.1")
    port = int(web.get("port", 5050))

    logger.info(f"Starting server on http://{host}:{port}")
    app.run(host=host, port=port, debug=debug, threaded=True)
