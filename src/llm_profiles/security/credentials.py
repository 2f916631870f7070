"""
Credential Service

Encrypts API keys before they reach the vault and decrypts them right
before a provider call.

When no secure-storage capability is available the service degrades to
plaintext storage. The degradation is never hidden:
- the result carries a human-readable ``warning``
- a fallback event is recorded (``get_status`` / ``get_fallback_history``)
- the event is logged and forwarded to an optional ``on_fallback`` callback
"""

import base64
import logging
import os
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("llm-profiles")

ENCRYPTION_KEY_ENV = "LLM_PROFILES_ENCRYPTION_KEY"

ENCRYPT_UNAVAILABLE_WARNING = (
    "System keychain is unavailable; sensitive credentials will be stored in plaintext."
)
ENCRYPT_ERROR_WARNING = (
    "System keychain failed to encrypt the credential; storing plaintext instead."
)
DECRYPT_ERROR_WARNING = (
    "System keychain failed to decrypt the credential; returning stored value as-is."
)
DECRYPT_UNAVAILABLE_WARNING = (
    "System keychain is unavailable; returning stored credential without decryption."
)

FALLBACK_HISTORY_SIZE = 50


class SecureCredentialAdapter(Protocol):
    """Platform capability for encrypting short secrets."""

    def is_available(self) -> bool:
        ...

    def encrypt(self, data: bytes) -> bytes:
        ...

    def decrypt(self, data: bytes) -> bytes:
        ...


class FernetCredentialAdapter:
    """
    Secure-credential adapter backed by a Fernet key.

    The adapter reports itself unavailable when no key is configured, which
    makes the credential service fall back to plaintext storage.
    """

    def __init__(self, key: Optional[str] = None):
        self._cipher: Optional[Fernet] = None
        if key:
            self._cipher = Fernet(key.encode() if isinstance(key, str) else key)

    @classmethod
    def from_env(cls, fallback_key: Optional[str] = None) -> "FernetCredentialAdapter":
        """Use ``LLM_PROFILES_ENCRYPTION_KEY`` when set, else ``fallback_key``."""
        return cls(os.getenv(ENCRYPTION_KEY_ENV) or fallback_key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def is_available(self) -> bool:
        return self._cipher is not None

    def encrypt(self, data: bytes) -> bytes:
        if self._cipher is None:
            raise RuntimeError("No encryption key configured")
        return self._cipher.encrypt(data)

    def decrypt(self, data: bytes) -> bytes:
        if self._cipher is None:
            raise RuntimeError("No encryption key configured")
        try:
            return self._cipher.decrypt(data)
        except InvalidToken as e:
            raise ValueError("Credential could not be decrypted with the configured key") from e


@dataclass
class FallbackEvent:
    """One occasion on which the service could not use secure storage."""
    operation: str  # "encrypt" | "decrypt" | "status"
    reason: str  # "unavailable" | "encrypt-error" | "decrypt-error"
    message: str
    platform: str = field(default_factory=lambda: sys.platform)
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
    error: Optional[dict] = None
    type: str = "llm_encryption_unavailable"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "timestamp": self.timestamp,
            "platform": self.platform,
            "operation": self.operation,
            "reason": self.reason,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class EncryptionResult:
    value: str
    was_encrypted: bool
    warning: Optional[str] = None
    fallback_event: Optional[FallbackEvent] = None


@dataclass
class DecryptionResult:
    value: str
    was_decrypted: bool
    warning: Optional[str] = None
    fallback_event: Optional[FallbackEvent] = None


class CredentialService:
    """Encrypt/decrypt API keys with graceful, observable fallback."""

    def __init__(
        self,
        adapter: Optional[SecureCredentialAdapter] = None,
        on_fallback: Optional[Callable[[FallbackEvent], None]] = None,
        now: Optional[Callable[[], int]] = None,
        platform: Optional[str] = None,
    ):
        """
        Initialize the credential service.

        Args:
            adapter: Secure-credential capability (None means unavailable)
            on_fallback: Called with every fallback event
            now: Clock returning epoch milliseconds
            platform: Platform name recorded on fallback events
        """
        self.adapter = adapter
        self.on_fallback = on_fallback
        self._now = now or (lambda: int(time.time() * 1000))
        self._platform = platform or sys.platform
        self._history: deque[FallbackEvent] = deque(maxlen=FALLBACK_HISTORY_SIZE)

    def is_encryption_available(self) -> bool:
        if self.adapter is None:
            return False
        try:
            return bool(self.adapter.is_available())
        except Exception as e:
            self._emit_fallback("status", "unavailable", e)
            return False

    def encrypt(self, plaintext: str) -> EncryptionResult:
        """
        Encrypt a credential for storage.

        Returns:
            Base64-wrapped ciphertext, or the plaintext plus a warning when
            secure storage is unavailable or fails
        """
        if not self._ready():
            event = self._emit_fallback("encrypt", "unavailable")
            return EncryptionResult(plaintext, False, event.message, event)

        try:
            encrypted = self.adapter.encrypt(plaintext.encode("utf-8"))
            return EncryptionResult(base64.b64encode(encrypted).decode("ascii"), True)
        except Exception as e:
            event = self._emit_fallback("encrypt", "encrypt-error", e)
            return EncryptionResult(plaintext, False, event.message, event)

    def decrypt(self, ciphertext: str) -> DecryptionResult:
        """
        Decrypt a stored credential.

        Any failure returns the stored value unchanged; the caller decides
        whether that value is usable.
        """
        if not self._ready():
            event = self._emit_fallback("decrypt", "unavailable")
            return DecryptionResult(ciphertext, False, event.message, event)

        try:
            raw = base64.b64decode(ciphertext.encode("ascii"), validate=True)
            plaintext = self.adapter.decrypt(raw).decode("utf-8")
            return DecryptionResult(plaintext, True)
        except Exception as e:
            event = self._emit_fallback("decrypt", "decrypt-error", e)
            return DecryptionResult(ciphertext, False, event.message, event)

    def get_status(self) -> dict:
        return {
            "encryption_available": self._ready(),
            "last_fallback_event": self._history[-1].to_dict() if self._history else None,
        }

    def get_fallback_history(self) -> list[dict]:
        """Recent fallback events, oldest first."""
        return [event.to_dict() for event in self._history]

    def _ready(self) -> bool:
        if self.adapter is None:
            return False
        try:
            return bool(self.adapter.is_available())
        except Exception:
            return False

    def _emit_fallback(self, operation: str, reason: str, error: Optional[BaseException] = None) -> FallbackEvent:
        event = FallbackEvent(
            operation=operation,
            reason=reason,
            message=_warning_for(operation, reason),
            platform=self._platform,
            timestamp=self._now(),
            error={"name": type(error).__name__, "message": str(error)} if error else None,
        )
        self._history.append(event)
        logger.warning(f"[CREDENTIALS] {operation} fallback ({reason}): {event.message}")

        if self.on_fallback:
            try:
                self.on_fallback(event)
            except Exception as e:
                logger.warning(f"[CREDENTIALS] Fallback callback failed: {e}")
        return event


def _warning_for(operation: str, reason: str) -> str:
    if reason == "encrypt-error":
        return ENCRYPT_ERROR_WARNING
    if reason == "decrypt-error":
        return DECRYPT_ERROR_WARNING
    return DECRYPT_UNAVAILABLE_WARNING if operation == "decrypt" else ENCRYPT_UNAVAILABLE_WARNING
