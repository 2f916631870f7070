"""
Profile Routes
==============
API endpoints for managing LLM provider profiles and running test prompts.

Every response uses the envelope
``{success, data | error, message, details?, timestamp}``.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from flask import Blueprint, jsonify, request

from ...errors import LLMProfilesError
from ...llm.discovery import STRATEGIES
from ...llm.engine import MAX_PROMPT_LENGTH
from ..services.state import app_state

logger = logging.getLogger("llm-profiles")
profiles_bp = Blueprint('profiles', __name__)

STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "PROFILE_NOT_FOUND": 404,
    "ALTERNATE_NOT_FOUND": 404,
    "NO_ACTIVE_PROFILE": 404,
    "TIMEOUT": 504,
    "VAULT_READ_ERROR": 500,
    "VAULT_WRITE_ERROR": 500,
}


def _timestamp() -> int:
    return int(time.time() * 1000)


def success_response(data: Any, message: str, status: int = 200):
    return jsonify({
        "success": True,
        "data": data,
        "message": message,
        "timestamp": _timestamp(),
    }), status


def error_response(code: str, message: str, details: Optional[dict] = None):
    body = {
        "success": False,
        "error": code,
        "message": message,
        "timestamp": _timestamp(),
    }
    if details:
        body["details"] = details
    return jsonify(body), STATUS_BY_CODE.get(code, 500)


@profiles_bp.errorhandler(LLMProfilesError)
def handle_profiles_error(error: LLMProfilesError):
    if error.code not in STATUS_BY_CODE:
        logger.error(f"[PROFILES] Unexpected error: {error}", exc_info=True)
        return error_response("INTERNAL_ERROR", "An unexpected error occurred")
    return error_response(error.code, error.message, getattr(error, "details", None))


@profiles_bp.errorhandler(Exception)
def handle_unexpected_error(error: Exception):
    logger.error(f"[PROFILES] Unexpected error: {error}", exc_info=True)
    return error_response("INTERNAL_ERROR", "An unexpected error occurred")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@profiles_bp.route('/', methods=['GET'], strict_slashes=False)
def list_profiles():
    """List all profiles (API keys redacted)."""
    result = app_state.profile_service.list_profiles()
    return success_response({
        "profiles": [p.to_dict() for p in result["profiles"]],
        "encryptionAvailable": result["encryption_available"],
        "activeProfileId": result["active_profile_id"],
    }, "Profiles retrieved")


@profiles_bp.route('/', methods=['POST'], strict_slashes=False)
def create_profile():
    """Create a profile from ``{"profile": {...}}``."""
    payload = _json_body().get("profile")
    result = app_state.profile_service.create_profile(payload)
    return success_response({
        "profile": result["profile"].to_dict(),
        "warning": result["warning"],
    }, "Profile created", status=201)


@profiles_bp.route('/<profile_id>', methods=['PATCH'])
def update_profile(profile_id: str):
    """Update a profile from ``{"changes": {...}}``."""
    changes = _json_body().get("changes") or {}
    if not isinstance(changes, dict):
        return error_response("VALIDATION_ERROR", "changes must be an object", {"changes": ["changes must be an object"]})

    result = app_state.profile_service.update_profile({**changes, "id": profile_id})
    return success_response({
        "profile": result["profile"].to_dict(),
        "warning": result["warning"],
    }, "Profile updated")


@profiles_bp.route('/<profile_id>', methods=['DELETE'])
def delete_profile(profile_id: str):
    """Delete a profile, optionally naming ``successorProfileId``."""
    payload = {"id": profile_id}
    successor = _json_body().get("successorProfileId")
    if successor:
        payload["activateAlternateId"] = successor

    result = app_state.profile_service.delete_profile(payload)
    return success_response({
        "deletedId": result["deleted_id"],
        "newActiveProfileId": result["new_active_profile_id"],
        "requiresUserSelection": result["requires_user_selection"],
    }, "Profile deleted")


@profiles_bp.route('/<profile_id>/activate', methods=['POST'])
def activate_profile(profile_id: str):
    """Make a profile the active profile."""
    result = app_state.profile_service.activate_profile({"id": profile_id})
    return success_response({
        "activeProfile": result["active_profile"].to_dict(),
        "deactivatedProfileId": result["deactivated_profile_id"],
    }, "Profile activated")


@profiles_bp.route('/<profile_id>/test', methods=['POST'])
def test_profile(profile_id: str):
    """Send a test prompt (``{"promptOverride"?, "timeoutMs"?}``)."""
    data = _json_body()
    prompt = data.get("promptOverride")
    timeout_ms = data.get("timeoutMs")

    errors = {}
    if prompt is not None and not isinstance(prompt, str):
        errors["promptOverride"] = ["promptOverride must be a string"]
    elif prompt is not None and len(prompt.strip()) > MAX_PROMPT_LENGTH:
        errors["promptOverride"] = [f"promptOverride must be at most {MAX_PROMPT_LENGTH} characters"]
    if timeout_ms is not None and (
        not isinstance(timeout_ms, int) or isinstance(timeout_ms, bool) or timeout_ms <= 0
    ):
        errors["timeoutMs"] = ["timeoutMs must be a positive integer"]
    if errors:
        return error_response("VALIDATION_ERROR", "Invalid test prompt payload", errors)

    with app_state.prompt_lock:
        result = _run(app_state.prompt_engine.test_prompt(
            profile_id=profile_id,
            prompt_text=prompt,
            timeout_ms=timeout_ms,
        ))

    message = "Test prompt succeeded" if result.success else "Test prompt failed"
    return success_response(result.to_dict(), message)


@profiles_bp.route('/discover', methods=['POST'])
def discover_profiles():
    """Look for a local server (``{"force"?, "scope"?: {"strategy", "timeoutMs"?}}``)."""
    data = _json_body()
    force = data.get("force", False)
    scope = data.get("scope") or {}

    errors = {}
    if not isinstance(force, bool):
        errors["force"] = ["force must be a boolean"]
    if not isinstance(scope, dict):
        errors["scope"] = ["scope must be an object"]
        scope = {}
    strategy = scope.get("strategy", "local")
    timeout_ms = scope.get("timeoutMs")
    if strategy not in STRATEGIES:
        errors["scope.strategy"] = [f"strategy must be one of: {', '.join(STRATEGIES)}"]
    if timeout_ms is not None and (
        not isinstance(timeout_ms, int) or isinstance(timeout_ms, bool) or timeout_ms <= 0
    ):
        errors["scope.timeoutMs"] = ["timeoutMs must be a positive integer"]
    if errors:
        return error_response("VALIDATION_ERROR", "Invalid discovery payload", errors)

    with app_state.discovery_lock:
        result = _run(app_state.discovery_service.discover(
            force=force,
            strategy=strategy,
            timeout_ms=timeout_ms,
        ))

    message = "Local LLM server discovered" if result.discovered else "No local LLM server found"
    return success_response(result.to_dict(), message)
