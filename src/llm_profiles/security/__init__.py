"""
Security Module

Components:
- CredentialService: API key encryption with observable plaintext fallback
- ProviderPolicy: Endpoint rules per provider type
- AuditLogger: Tamper-evident diagnostics recorder
"""

from .credentials import (
    CredentialService,
    DecryptionResult,
    EncryptionResult,
    FallbackEvent,
    FernetCredentialAdapter,
    SecureCredentialAdapter,
)
from .endpoint_policy import ProviderPolicy
from .audit_logger import AuditLogger, AuditEvent, AuditEventType

__all__ = [
    "CredentialService",
    "DecryptionResult",
    "EncryptionResult",
    "FallbackEvent",
    "FernetCredentialAdapter",
    "SecureCredentialAdapter",
    "ProviderPolicy",
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
]
