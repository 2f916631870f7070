"""
Profile Service

CRUD and activation of provider profiles on top of the vault and
credential services.

- Inbound payloads are validated per operation (see ``validation``)
- API keys are encrypted before they reach the vault and never leave
  this service in plaintext
- Every change is reported to an optional diagnostics recorder
"""

import logging
import time
import uuid
from typing import Any, Callable, Optional, Protocol

from ..errors import (
    AlternateProfileNotFoundError,
    ProfileNotFoundError,
    ProfileValidationError,
    VaultWriteError,
)
from ..security.credentials import CredentialService
from ..security.endpoint_policy import ProviderPolicy
from ..vault.models import ProviderProfile, ProviderVault
from ..vault.schema import format_errors, validate_profile
from ..vault.service import VaultService
from .validation import (
    validate_activate_payload,
    validate_create_payload,
    validate_delete_payload,
    validate_update_payload,
)

logger = logging.getLogger("llm-profiles")

# Fields reported in the ``changes`` list of llm_profile_updated
TRACKED_UPDATE_FIELDS = {
    "name": "name",
    "provider_type": "providerType",
    "endpoint_url": "endpointUrl",
    "api_key": "apiKey",
    "model_id": "modelId",
    "is_active": "isActive",
    "consent_timestamp": "consentTimestamp",
}


class DiagnosticsRecorder(Protocol):
    def record(self, event: dict) -> Any:
        ...


class ProfileService:
    """Validated profile operations with a stable error taxonomy."""

    def __init__(
        self,
        vault_service: VaultService,
        credential_service: CredentialService,
        diagnostics_recorder: Optional[DiagnosticsRecorder] = None,
        now: Optional[Callable[[], int]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.vault_service = vault_service
        self.credential_service = credential_service
        self.diagnostics_recorder = diagnostics_recorder
        self._now = now or (lambda: int(time.time() * 1000))
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    @property
    def policy(self) -> ProviderPolicy:
        return self.vault_service.policy

    def list_profiles(self) -> dict:
        """
        List all profiles with their API keys redacted.

        Returns:
            ``{"profiles", "encryption_available", "active_profile_id"}``,
            profiles ordered active first, then by name
        """
        with self.vault_service.lock:
            vault, encryption_available = self._sync_encryption(self.vault_service.load_vault())

        profiles = sort_profiles(vault.profiles)
        active = next((p for p in profiles if p.is_active), None)
        return {
            "profiles": [p.redacted() for p in profiles],
            "encryption_available": encryption_available,
            "active_profile_id": active.id if active else None,
        }

    def create_profile(self, payload: dict) -> dict:
        """
        Create a profile from a camelCase payload.

        The first profile created in a vault without an active profile
        becomes active.

        Returns:
            ``{"profile": <redacted>, "warning": str | None}``
        """
        parsed = validate_create_payload(payload, self.policy)

        with self.vault_service.lock:
            vault = self.vault_service.load_vault()
            now = self._now()
            encryption = self.credential_service.encrypt(parsed["api_key"].strip())

            candidate = ProviderProfile(
                id=self._new_id(),
                name=parsed["name"].strip(),
                provider_type=parsed["provider_type"],
                endpoint_url=parsed["endpoint_url"].strip(),
                api_key=encryption.value,
                model_id=normalize_model_id(parsed["model_id"]),
                is_active=vault.active_profile is None,
                consent_timestamp=parsed["consent_timestamp"],
                created_at=now,
                modified_at=now,
            )
            self._validate(candidate)

            persisted, _ = self._sync_encryption(self.vault_service.add_profile(candidate))
            saved = persisted.find(candidate.id)
            if saved is None:
                raise VaultWriteError(f"Failed to locate profile {candidate.id} after creation")

        logger.info(f"[PROFILES] Created profile {saved.id} ({saved.provider_type.value})")
        self._record("llm_profile_created", saved, now)

        warnings = [encryption.warning] + duplicate_name_warnings(vault, saved.name, saved.id)
        return {"profile": saved.redacted(), "warning": format_warning(warnings)}

    def update_profile(self, payload: dict) -> dict:
        """
        Merge the supplied fields into an existing profile.

        A supplied ``apiKey`` is re-encrypted; omitted fields keep their
        stored values.

        Raises:
            ProfileValidationError: If the payload or merged profile is invalid
            ProfileNotFoundError: If no profile has the given id
        """
        parsed = validate_update_payload(payload)
        profile_id = parsed.pop("id")
        warnings: list[Optional[str]] = []

        with self.vault_service.lock:
            vault = self.vault_service.load_vault()
            existing = vault.find(profile_id)
            if existing is None:
                raise ProfileNotFoundError(profile_id)

            now = max(self._now(), existing.modified_at)
            changes = dict(parsed)
            if "name" in changes:
                changes["name"] = changes["name"].strip()
            if "endpoint_url" in changes:
                changes["endpoint_url"] = changes["endpoint_url"].strip()
            if "model_id" in changes:
                changes["model_id"] = normalize_model_id(changes["model_id"])
            if "api_key" in changes:
                changes["api_key"] = changes["api_key"].strip()

            key_errors = self._remote_key_errors(existing, changes)

            if "api_key" in changes:
                encryption = self.credential_service.encrypt(changes["api_key"])
                changes["api_key"] = encryption.value
                warnings.append(encryption.warning)
            changes["modified_at"] = now

            self._validate(existing.copy(**changes), key_errors)
            updated = self.vault_service.update_profile(profile_id, changes)
            self._sync_encryption(self.vault_service.load_vault())

        changed = diff_profiles(existing, updated)
        if changed:
            logger.info(f"[PROFILES] Updated profile {updated.id}: {', '.join(changed)}")
            self._record("llm_profile_updated", updated, now, changes=changed)

        warnings.extend(duplicate_name_warnings(vault, updated.name, updated.id))
        return {"profile": updated.redacted(), "warning": format_warning(warnings)}

    def delete_profile(self, payload: dict) -> dict:
        """
        Delete a profile.

        Deleting the active profile activates ``activateAlternateId`` when
        given; otherwise the vault is left without an active profile and
        ``requires_user_selection`` tells the caller to pick one.

        Returns:
            ``{"deleted_id", "new_active_profile_id", "requires_user_selection"}``
        """
        parsed = validate_delete_payload(payload)
        alternate_id = parsed["activate_alternate_id"]

        with self.vault_service.lock:
            vault = self.vault_service.load_vault()
            target = vault.find(parsed["id"])
            if target is None:
                raise ProfileNotFoundError(parsed["id"])

            now = self._now()
            remaining = [p for p in vault.profiles if p.id != target.id]
            new_active_id = None
            requires_selection = False

            if target.is_active:
                if alternate_id:
                    if not any(p.id == alternate_id for p in remaining):
                        raise AlternateProfileNotFoundError(alternate_id)
                    remaining = [_set_active(p, p.id == alternate_id, now) for p in remaining]
                    new_active_id = alternate_id
                else:
                    requires_selection = len(remaining) > 0
                    remaining = [_set_active(p, False, now) for p in remaining]

            persisted = self.vault_service.save_vault(vault.copy(profiles=remaining))
            self._sync_encryption(persisted)

        logger.info(f"[PROFILES] Deleted profile {target.id}")
        self._record("llm_profile_deleted", target, now)
        if new_active_id:
            self._record("llm_profile_activated", persisted.find(new_active_id), now)

        return {
            "deleted_id": target.id,
            "new_active_profile_id": new_active_id,
            "requires_user_selection": requires_selection,
        }

    def activate_profile(self, payload: dict) -> dict:
        """
        Make one profile the active profile.

        Returns:
            ``{"active_profile": <redacted>, "deactivated_profile_id": str | None}``
        """
        parsed = validate_activate_payload(payload)

        with self.vault_service.lock:
            vault = self.vault_service.load_vault()
            target = vault.find(parsed["id"])
            if target is None:
                raise ProfileNotFoundError(parsed["id"])

            now = self._now()
            previous = vault.active_profile
            deactivated_id = previous.id if previous and previous.id != target.id else None

            profiles = [
                _set_active(p, p.id == target.id, now) if p.id == target.id or p.is_active else p
                for p in vault.profiles
            ]
            persisted, _ = self._sync_encryption(self.vault_service.save_vault(vault.copy(profiles=profiles)))
            saved = persisted.find(target.id)
            if saved is None:
                raise VaultWriteError(f"Profile {target.id} missing after activation")

        logger.info(f"[PROFILES] Activated profile {saved.id}")
        self._record("llm_profile_activated", saved, now)
        return {"active_profile": saved.redacted(), "deactivated_profile_id": deactivated_id}

    def _remote_key_errors(self, existing: ProviderProfile, changes: dict[str, Any]) -> dict[str, list[str]]:
        """
        Remote providers need a non-blank plaintext key after the merge.

        Stored keys are ciphertext when encryption is available, so the
        check runs before encryption and decrypts the stored key only when
        the update keeps it.
        """
        provider_type = changes.get("provider_type", existing.provider_type)
        if not self.policy.is_remote(provider_type):
            return {}

        if "api_key" in changes:
            plaintext = changes["api_key"]
        else:
            plaintext = self.credential_service.decrypt(existing.api_key).value
        if not plaintext.strip():
            return {"apiKey": ["apiKey is required for remote providers"]}
        return {}

    def _validate(self, candidate: ProviderProfile, extra: Optional[dict[str, list[str]]] = None) -> None:
        errors = validate_profile(candidate, self.policy)
        for field_name, messages in (extra or {}).items():
            errors.setdefault(field_name, messages)
        if errors:
            raise ProfileValidationError(f"Profile validation failed: {format_errors(errors)}", details=errors)

    def _sync_encryption(self, vault: ProviderVault) -> tuple[ProviderVault, bool]:
        """Keep the vault's encryption flag in line with the credential service."""
        available = bool(self.credential_service.get_status()["encryption_available"])
        if vault.encryption_available == available:
            return vault, available
        self.vault_service.set_encryption_available(available)
        return vault.copy(encryption_available=available), available

    def _record(self, event_type: str, profile: ProviderProfile, timestamp: int, **extra: Any) -> None:
        if not self.diagnostics_recorder:
            return
        event = {
            "type": event_type,
            "profileId": profile.id,
            "profileName": profile.name,
            "providerType": profile.provider_type.value,
            "timestamp": timestamp,
            **extra,
        }
        try:
            self.diagnostics_recorder.record(event)
        except Exception as e:
            logger.warning(f"[PROFILES] Failed to record diagnostics event {event_type}: {e}")


def _set_active(profile: ProviderProfile, active: bool, now: int) -> ProviderProfile:
    if profile.is_active == active:
        return profile
    return profile.copy(is_active=active, modified_at=max(now, profile.modified_at))


def normalize_model_id(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def sort_profiles(profiles: list[ProviderProfile]) -> list[ProviderProfile]:
    """Active profile first, then by name, case-insensitively."""
    return sorted(profiles, key=lambda p: (not p.is_active, p.name.casefold()))


def duplicate_name_warnings(vault: ProviderVault, name: str, exclude_id: str) -> list[str]:
    normalized = name.strip().lower()
    for profile in vault.profiles:
        if profile.id != exclude_id and profile.name.strip().lower() == normalized:
            return [f'Profile name "{name.strip()}" already exists.']
    return []


def format_warning(warnings: list[Optional[str]]) -> Optional[str]:
    present = [w for w in warnings if w and w.strip()]
    return " ".join(present) if present else None


def diff_profiles(before: ProviderProfile, after: ProviderProfile) -> list[str]:
    return [
        wire for attr, wire in TRACKED_UPDATE_FIELDS.items()
        if getattr(before, attr) != getattr(after, attr)
    ]


