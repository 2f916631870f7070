"""
Vault Schema

Field-level validation of profiles and vault documents. These checks are the
last line of defense before anything reaches the vault store, so they are
applied on every read and every write.
"""

import re
import uuid
from typing import Any, Optional

from ..security.endpoint_policy import ProviderPolicy
from .models import ProviderProfile, ProviderType, ProviderVault

SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

NAME_MAX_LENGTH = 100
API_KEY_MAX_LENGTH = 500
MODEL_ID_MAX_LENGTH = 200

FieldErrors = dict[str, list[str]]


def is_uuid(value: Any) -> bool:
    """Check that ``value`` is a canonical UUID string."""
    if not isinstance(value, str):
        return False
    try:
        return str(uuid.UUID(value)) == value.lower()
    except ValueError:
        return False


def is_positive_int(value: Any) -> bool:
    # bool is an int subclass; reject it explicitly
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def add_error(errors: FieldErrors, field_name: str, message: str) -> None:
    errors.setdefault(field_name, []).append(message)


def validate_profile(profile: ProviderProfile, policy: Optional[ProviderPolicy] = None) -> FieldErrors:
    """
    Validate a complete profile.

    Args:
        profile: Profile to check
        policy: Provider rules (defaults apply when omitted)

    Returns:
        Mapping of camelCase field name to messages; empty when valid
    """
    policy = policy or ProviderPolicy()
    errors: FieldErrors = {}

    if not is_uuid(profile.id):
        add_error(errors, "id", "id must be a UUID v4 string")

    if not isinstance(profile.name, str) or not profile.name.strip():
        add_error(errors, "name", "name must be at least 1 characters")
    elif len(profile.name.strip()) > NAME_MAX_LENGTH:
        add_error(errors, "name", f"name must be at most {NAME_MAX_LENGTH} characters")

    if not isinstance(profile.provider_type, ProviderType):
        add_error(errors, "providerType", "providerType must be one of llama.cpp, azure, custom")
        return errors

    for message in policy.endpoint_errors(profile.provider_type, profile.endpoint_url):
        add_error(errors, "endpointUrl", message)

    if not isinstance(profile.api_key, str):
        add_error(errors, "apiKey", "apiKey is required")
    elif len(profile.api_key) > API_KEY_MAX_LENGTH:
        add_error(errors, "apiKey", f"apiKey must be at most {API_KEY_MAX_LENGTH} characters")
    elif policy.is_remote(profile.provider_type) and not profile.api_key.strip():
        add_error(errors, "apiKey", "Remote providers require an API key")

    if profile.model_id is not None:
        if not isinstance(profile.model_id, str) or not profile.model_id.strip():
            add_error(errors, "modelId", "modelId cannot be blank when provided")
        elif len(profile.model_id.strip()) > MODEL_ID_MAX_LENGTH:
            add_error(errors, "modelId", f"modelId must be at most {MODEL_ID_MAX_LENGTH} characters")
    elif profile.provider_type == ProviderType.AZURE:
        add_error(errors, "modelId", "Azure profiles require modelId")

    if not isinstance(profile.is_active, bool):
        add_error(errors, "isActive", "isActive must be a boolean")

    if profile.consent_timestamp is not None and not is_positive_int(profile.consent_timestamp):
        add_error(errors, "consentTimestamp", "consentTimestamp must be a positive integer")
    elif profile.consent_timestamp is None and policy.requires_consent(profile.provider_type):
        add_error(errors, "consentTimestamp", "Remote providers require consentTimestamp")

    if not is_positive_int(profile.created_at):
        add_error(errors, "createdAt", "createdAt must be a positive integer")
    if not is_positive_int(profile.modified_at):
        add_error(errors, "modifiedAt", "modifiedAt must be a positive integer")
    elif is_positive_int(profile.created_at) and profile.modified_at < profile.created_at:
        add_error(errors, "modifiedAt", "modifiedAt must be greater than or equal to createdAt")

    return errors


def validate_vault(vault: ProviderVault, policy: Optional[ProviderPolicy] = None) -> FieldErrors:
    """
    Validate a whole vault, profile constraints included.

    Profile problems are reported as ``profiles.<index>.<field>``.
    """
    errors: FieldErrors = {}

    if not isinstance(vault.encryption_available, bool):
        add_error(errors, "encryptionAvailable", "encryptionAvailable is required")

    if not isinstance(vault.version, str) or not SEMVER_PATTERN.match(vault.version):
        add_error(errors, "version", "version must be a semantic version string (e.g., 1.0.0)")

    active = sum(1 for profile in vault.profiles if profile.is_active is True)
    if active > 1:
        add_error(errors, "profiles", "At most one profile can be active")

    seen: set[str] = set()
    for index, profile in enumerate(vault.profiles):
        if profile.id in seen:
            add_error(errors, f"profiles.{index}.id", "Profile IDs must be unique")
        seen.add(profile.id)
        for field_name, messages in validate_profile(profile, policy).items():
            errors.setdefault(f"profiles.{index}.{field_name}", []).extend(messages)

    return errors


def format_errors(errors: FieldErrors) -> str:
    """Flatten field errors into one line for exception messages."""
    return "; ".join(
        f"{field_name}: {message}"
        for field_name, messages in errors.items()
        for message in messages
    )
