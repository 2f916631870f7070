"""
Status Routes
=============
API endpoints for credential encryption status and audit log integrity.
"""

import time
from typing import Any

from flask import Blueprint, jsonify

from ..services.state import app_state

status_bp = Blueprint('status', __name__)


def _envelope(data: Any, message: str):
    return jsonify({
        "success": True,
        "data": data,
        "message": message,
        "timestamp": int(time.time() * 1000),
    })


@status_bp.route('/status')
def get_status():
    """Encryption availability and the most recent fallback event."""
    status = app_state.credential_service.get_status()
    return _envelope({
        "encryptionAvailable": status["encryption_available"],
        "lastFallbackEvent": status["last_fallback_event"],
        "auditEnabled": app_state.audit_logger is not None,
    }, "Status retrieved")


@status_bp.route('/audit/verify')
def verify_audit_log():
    """Check the hash chain and signatures of the current audit file."""
    if app_state.audit_logger is None:
        return _envelope({"auditEnabled": False, "valid": None}, "Audit logging is disabled")

    report = app_state.audit_logger.verify_integrity()
    return _envelope({
        "auditEnabled": True,
        "valid": report["valid"],
        "eventsChecked": report.get("events_checked", 0),
        "signatureFailures": report.get("signature_failures", []),
        "chainFailures": report.get("chain_failures", []),
    }, "Audit log verified" if report["valid"] else "Audit log failed verification")
