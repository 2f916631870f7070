"""
Audit Logger

Diagnostics recorder for profile changes and test prompts, with
tamper-evident storage.

Features:
- Structured JSON lines, one event per line
- HMAC signatures and a hash chain for tamper detection
- Log rotation with configurable retention
- Never stores API keys: only ids, names, provider types and outcomes
"""

import hashlib
import hmac
import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("llm-profiles")

LOG_VERSION = "1.0"

# Fields covered by the HMAC of each entry
SIGNED_FIELDS = ("event_id", "event_type", "timestamp", "message", "previous_hash")


class AuditEventType(str, Enum):
    """Types of audit events."""
    # Profile events
    PROFILE_CREATED = "llm_profile_created"
    PROFILE_UPDATED = "llm_profile_updated"
    PROFILE_DELETED = "llm_profile_deleted"
    PROFILE_ACTIVATED = "llm_profile_activated"

    # Prompt events
    TEST_PROMPT = "llm_test_prompt"

    # Discovery events
    AUTODISCOVERY = "llm_autodiscovery"

    # Security events
    ENCRYPTION_UNAVAILABLE = "llm_encryption_unavailable"

    # Anything a caller sends that we do not know about
    OTHER = "other"


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass
class AuditEvent:
    """Individual audit event."""
    event_type: AuditEventType
    severity: AuditSeverity
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    profile_id: Optional[str] = None

    # Must never contain credentials
    details: dict = field(default_factory=dict)

    # For tamper detection
    previous_hash: Optional[str] = None
    signature: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "profile_id": self.profile_id,
            "details": self.details,
            "previous_hash": self.previous_hash,
            "signature": self.signature,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """
    Diagnostics recorder writing signed, hash-chained JSONL files.

    Each line carries the SHA256 of the line before it (the file header
    seeds the chain) and, when signing is on, an HMAC over the event's
    identifying fields. ``record(event)`` never raises.
    """

    def __init__(
        self,
        log_directory: str = "./logs/audit",
        signing_key: Optional[str] = None,
        max_file_size_mb: int = 10,
        max_files: int = 20,
        sign_entries: bool = True,
    ):
        """
        Initialize the audit logger.

        Args:
            log_directory: Directory for audit logs
            signing_key: Key for HMAC signatures (random per process if not provided)
            max_file_size_mb: Size at which a new file is started
            max_files: Number of files kept on disk
            sign_entries: Whether to sign each entry
        """
        self.log_directory = Path(log_directory)
        self.log_directory.mkdir(parents=True, exist_ok=True)

        self.signing_key = (signing_key or os.urandom(32).hex()).encode()
        self.max_file_size = max_file_size_mb * 1024 * 1024
        self.max_files = max_files
        self.sign_entries = sign_entries

        self._lock = threading.Lock()
        self._current_file: Optional[Path] = None
        self._chain_head: Optional[str] = None

        self._open_file()

    @property
    def current_file(self) -> Optional[Path]:
        return self._current_file

    def record(self, event: dict) -> Optional[AuditEvent]:
        """
        Diagnostics recorder entry point.

        Args:
            event: ``{"type": ..., ...}`` as emitted by the services

        Returns:
            The logged AuditEvent, or None if it could not be written
        """
        try:
            event_type, severity, message, profile_id, details = _describe(event)
            return self.log(event_type, message, severity=severity, profile_id=profile_id, details=details)
        except Exception as e:
            logger.warning(f"[AUDIT] Failed to record diagnostics event: {e}")
            return None

    def log(
        self,
        event_type: AuditEventType,
        message: str,
        severity: AuditSeverity = AuditSeverity.INFO,
        profile_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        """Append one event to the current file and advance the chain."""
        with self._lock:
            event = AuditEvent(
                event_type=event_type,
                severity=severity,
                message=message,
                profile_id=profile_id,
                details=details or {},
                previous_hash=self._chain_head,
            )
            if self.sign_entries:
                event.signature = self._signature_for(_signed_fields(event.to_dict()))

            self._append_line(event.to_json())
            if self._current_file.stat().st_size >= self.max_file_size:
                self._prune_files()
                self._open_file()
            return event

    def verify_integrity(self, log_file: Optional[Path] = None) -> dict:
        """
        Re-walk a log file's hash chain and signatures.

        Args:
            log_file: File to check (defaults to the file being written)

        Returns:
            ``{"file", "valid", "events_checked", "signature_failures",
            "chain_failures"}``; failures are zero-based line numbers
        """
        target = log_file or self._current_file
        if not target or not target.exists():
            return {"valid": False, "error": "Log file not found"}

        report = {
            "file": str(target),
            "valid": True,
            "events_checked": 0,
            "signature_failures": [],
            "chain_failures": [],
        }

        expected_previous = None
        with open(target, "r", encoding="utf-8") as f:
            for line_number, raw in enumerate(f):
                line = raw.strip()
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    report["valid"] = False
                    report["error"] = f"Invalid JSON at line {line_number}"
                    break

                if "log_version" not in entry:
                    report["events_checked"] += 1
                    if entry.get("previous_hash") != expected_previous:
                        report["chain_failures"].append(line_number)
                    signature = entry.get("signature")
                    if self.sign_entries and signature and not hmac.compare_digest(
                        signature, self._signature_for(_signed_fields(entry))
                    ):
                        report["signature_failures"].append(line_number)

                expected_previous = _sha256(line)

        if report["chain_failures"] or report["signature_failures"]:
            report["valid"] = False
        return report

    def _open_file(self) -> None:
        """Start a new file whose header seeds the chain."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        self._current_file = self.log_directory / f"audit_{stamp}.jsonl"
        header = json.dumps({
            "log_version": LOG_VERSION,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "signing_enabled": self.sign_entries,
        })
        self._current_file.write_text(header + "\n", encoding="utf-8")
        self._chain_head = _sha256(header)

    def _append_line(self, line: str) -> None:
        with open(self._current_file, "a", encoding="utf-8") as f:
            f.write(line + "\n")
        self._chain_head = _sha256(line)

    def _prune_files(self) -> None:
        """Keep the newest ``max_files - 1`` files so the next one fits."""
        # File names embed a sortable UTC timestamp
        existing = sorted(self.log_directory.glob("audit_*.jsonl"))
        for stale in existing[: max(0, len(existing) - self.max_files + 1)]:
            stale.unlink()

    def _signature_for(self, fields: dict) -> str:
        canonical = json.dumps(fields, sort_keys=True)
        return hmac.new(self.signing_key, canonical.encode(), hashlib.sha256).hexdigest()


def _signed_fields(entry: dict) -> dict:
    return {name: entry.get(name) for name in SIGNED_FIELDS}


def _sha256(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def _describe(event: dict) -> tuple[AuditEventType, AuditSeverity, str, Optional[str], dict]:
    """Map a service event to (type, severity, message, profile id, details)."""
    raw_type = event.get("type", "")
    try:
        event_type = AuditEventType(raw_type)
    except ValueError:
        event_type = AuditEventType.OTHER

    if event_type == AuditEventType.TEST_PROMPT:
        result: dict[str, Any] = event.get("result") or {}
        success = bool(result.get("success"))
        details = {
            "provider_type": result.get("providerType"),
            "success": success,
            "latency_ms": result.get("latencyMs"),
            "total_time_ms": result.get("totalTimeMs"),
            "error_code": result.get("errorCode"),
            "model_name": result.get("modelName"),
        }
        return (
            event_type,
            AuditSeverity.INFO if success else AuditSeverity.WARNING,
            "Test prompt succeeded" if success else "Test prompt failed",
            result.get("profileId"),
            details,
        )

    if event_type == AuditEventType.AUTODISCOVERY:
        details = {
            "discovered_url": event.get("discoveredUrl"),
            "profile_created": event.get("profileCreated"),
            "ports_checked": event.get("probedPorts"),
            "force": event.get("force"),
            "duration_ms": event.get("durationMs"),
            "error": event.get("error"),
        }
        if event.get("error"):
            return event_type, AuditSeverity.ERROR, "Auto-discovery failed", event.get("profileId"), details
        message = "Local LLM server discovered" if event.get("discovered") else "No local LLM server found"
        return event_type, AuditSeverity.INFO, message, event.get("profileId"), details

    if event_type == AuditEventType.ENCRYPTION_UNAVAILABLE:
        details = {k: event.get(k) for k in ("operation", "reason", "platform", "error")}
        return event_type, AuditSeverity.WARNING, event.get("message", "Encryption unavailable"), None, details

    details = {k: v for k, v in event.items() if k not in ("type", "profileId")}
    message = raw_type.replace("_", " ").strip() or "diagnostics event"
    return event_type, AuditSeverity.INFO, message, event.get("profileId"), details
