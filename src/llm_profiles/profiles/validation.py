"""
Payload Validation

Explicit validators for the inbound payloads of each profile operation.
Payloads use the camelCase keys of the persisted profile document; every
validator returns the parsed values keyed by profile attribute name, or
raises ProfileValidationError with a per-field message map.
"""

from typing import Any, Optional

from ..errors import ProfileValidationError
from ..security.endpoint_policy import ProviderPolicy
from ..vault.models import ProviderType, attr_key
from ..vault.schema import (
    API_KEY_MAX_LENGTH,
    MODEL_ID_MAX_LENGTH,
    NAME_MAX_LENGTH,
    FieldErrors,
    add_error,
    format_errors,
    is_uuid,
)

CREATE_FIELDS = ("name", "providerType", "endpointUrl", "apiKey", "modelId", "consentTimestamp")
UPDATE_FIELDS = ("id",) + CREATE_FIELDS
DELETE_FIELDS = ("id", "activateAlternateId")
ACTIVATE_FIELDS = ("id",)

_MISSING = object()


def validate_create_payload(payload: Any, policy: Optional[ProviderPolicy] = None) -> dict:
    """
    Validate a create-profile payload.

    Every field is required; ``modelId`` and ``consentTimestamp`` may be None.
    Consent-required provider types need a ``consentTimestamp`` and remote
    provider types need a non-blank ``apiKey``.
    """
    policy = policy or ProviderPolicy()
    errors: FieldErrors = {}
    payload = _check_object(payload, CREATE_FIELDS, errors)

    parsed = {}
    for name in CREATE_FIELDS:
        value = payload.get(name, _MISSING)
        if value is _MISSING:
            add_error(errors, name, f"{name} is required")
            continue
        _check_field(name, value, parsed, errors)

    provider_type = parsed.get("provider_type")
    if provider_type is not None:
        if policy.requires_consent(provider_type) and "consent_timestamp" in parsed \
                and parsed["consent_timestamp"] is None:
            add_error(errors, "consentTimestamp", "consentTimestamp is required for remote providers")
        if policy.is_remote(provider_type) and isinstance(parsed.get("api_key"), str) \
                and not parsed["api_key"].strip():
            add_error(errors, "apiKey", "apiKey is required for remote providers")

    _raise_if(errors, "Invalid create profile payload")
    return parsed


def validate_update_payload(payload: Any) -> dict:
    """
    Validate an update-profile payload.

    ``id`` is required; every other field is optional and only the supplied
    ones are returned.
    """
    errors: FieldErrors = {}
    payload = _check_object(payload, UPDATE_FIELDS, errors)

    parsed = {}
    if "id" not in payload:
        add_error(errors, "id", "id is required")
    for name in UPDATE_FIELDS:
        if name in payload:
            _check_field(name, payload[name], parsed, errors)

    _raise_if(errors, "Invalid update profile payload")
    return parsed


def validate_delete_payload(payload: Any) -> dict:
    errors: FieldErrors = {}
    payload = _check_object(payload, DELETE_FIELDS, errors)

    if not is_uuid(payload.get("id")):
        add_error(errors, "id", "id must be a valid UUID")
    alternate = payload.get("activateAlternateId")
    if alternate is not None and not is_uuid(alternate):
        add_error(errors, "activateAlternateId", "activateAlternateId must be a valid UUID")

    _raise_if(errors, "Invalid delete profile payload")
    return {"id": payload["id"], "activate_alternate_id": alternate}


def validate_activate_payload(payload: Any) -> dict:
    errors: FieldErrors = {}
    payload = _check_object(payload, ACTIVATE_FIELDS, errors)

    if not is_uuid(payload.get("id")):
        add_error(errors, "id", "id must be a valid UUID")

    _raise_if(errors, "Invalid activate profile payload")
    return {"id": payload["id"]}


def _check_object(payload: Any, allowed: tuple[str, ...], errors: FieldErrors) -> dict:
    """Payload must be a mapping without unknown keys."""
    if not isinstance(payload, dict):
        add_error(errors, "(root)", "Payload must be an object")
        return {}
    unknown = sorted(k for k in payload if k not in allowed)
    if unknown:
        add_error(errors, "(root)", f"Unrecognized key(s) in object: {', '.join(map(str, unknown))}")
    return payload


def _check_field(name: str, value: Any, parsed: dict, errors: FieldErrors) -> None:
    """Type and length checks shared by create and update."""
    if name == "id":
        if not is_uuid(value):
            add_error(errors, name, "id must be a valid UUID")
            return
    elif name == "name":
        if not isinstance(value, str) or not value.strip():
            add_error(errors, name, "name must be at least 1 characters")
            return
        if len(value.strip()) > NAME_MAX_LENGTH:
            add_error(errors, name, f"name must be at most {NAME_MAX_LENGTH} characters")
            return
    elif name == "providerType":
        try:
            value = ProviderType(value)
        except ValueError:
            add_error(errors, name, "providerType must be one of llama.cpp, azure, custom")
            return
    elif name == "endpointUrl":
        if not isinstance(value, str) or not value.strip():
            add_error(errors, name, "endpointUrl is required")
            return
    elif name == "apiKey":
        if not isinstance(value, str):
            add_error(errors, name, "apiKey must be a string")
            return
        if len(value) > API_KEY_MAX_LENGTH:
            add_error(errors, name, f"apiKey must be at most {API_KEY_MAX_LENGTH} characters")
            return
    elif name == "modelId":
        if value is not None:
            if not isinstance(value, str):
                add_error(errors, name, "modelId must be a string or null")
                return
            if len(value) > MODEL_ID_MAX_LENGTH:
                add_error(errors, name, f"modelId must be at most {MODEL_ID_MAX_LENGTH} characters")
                return
    elif name == "consentTimestamp":
        if value is not None and (
            not isinstance(value, int) or isinstance(value, bool) or value < 0
        ):
            add_error(errors, name, "consentTimestamp must be a non-negative integer or null")
            return

    parsed[attr_key(name)] = value


def _raise_if(errors: FieldErrors, prefix: str) -> None:
    if errors:
        raise ProfileValidationError(f"{prefix}: {format_errors(errors)}", details=errors)
