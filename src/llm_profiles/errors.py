"""
Error Taxonomy

Raised conditions shared by the vault, profile and prompt layers.
Every class carries a stable ``code`` that the HTTP layer forwards unchanged.

Provider failures (HTTP status, network errors) are NOT raised: they come back
as a ``TestPromptResult`` with ``success=False``.
"""

from typing import Optional


class LLMProfilesError(Exception):
    """Base class for all raised conditions."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class VaultReadError(LLMProfilesError):
    """The vault store could not be read or holds an invalid document."""

    code = "VAULT_READ_ERROR"


class VaultWriteError(LLMProfilesError):
    """The vault store rejected a write or the vault failed validation."""

    code = "VAULT_WRITE_ERROR"


class ProfileNotFoundError(LLMProfilesError):
    """Raised when a requested profile cannot be found."""

    code = "PROFILE_NOT_FOUND"

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(f"Profile with id {profile_id} not found")


class AlternateProfileNotFoundError(LLMProfilesError):
    """Raised when the successor named on delete does not exist."""

    code = "ALTERNATE_NOT_FOUND"

    def __init__(self, alternate_id: str):
        self.alternate_id = alternate_id
        super().__init__(f"Alternate profile with id {alternate_id} not found")


class ProfileValidationError(LLMProfilesError):
    """
    Payload or profile failed validation.

    ``details`` maps each offending field to one or more messages.
    """

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, list[str]]] = None):
        super().__init__(message)
        self.details: dict[str, list[str]] = details or {}


class NoActiveProfileError(LLMProfilesError):
    """No profile id was given and the vault has no active profile."""

    code = "NO_ACTIVE_PROFILE"

    def __init__(self):
        super().__init__("No active LLM profile is available")


class PromptTimeoutError(LLMProfilesError):
    """The test prompt did not complete before its deadline."""

    code = "TIMEOUT"

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Test prompt request timed out after {timeout_ms}ms")
