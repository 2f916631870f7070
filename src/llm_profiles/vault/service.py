"""
Vault Service

Owns the vault invariants on top of an injected ``VaultStore``:
1. Profile ids are unique (last stored occurrence wins)
2. At most one profile is active (most recently modified wins)
3. Every persisted document passes schema validation

Every read-modify-write runs under ``self.lock`` so no reader ever observes
two active profiles, even transiently.
"""

import logging
import threading
from typing import Any, Optional

from ..errors import ProfileNotFoundError, VaultReadError, VaultWriteError
from ..security.endpoint_policy import ProviderPolicy
from .models import PROFILE_VAULT_VERSION, ProviderProfile, ProviderVault, default_vault
from .schema import format_errors, validate_vault
from .store import VaultStore

logger = logging.getLogger("llm-profiles")

IMMUTABLE_FIELDS = ("id", "created_at")


class VaultService:
    """Invariant-preserving access to the provider vault."""

    def __init__(self, store: VaultStore, policy: Optional[ProviderPolicy] = None):
        """
        Initialize the vault service.

        Args:
            store: Persistence primitive holding the serialized vault
            policy: Provider rules used when validating profiles
        """
        self.store = store
        self.policy = policy or ProviderPolicy()
        self.lock = threading.RLock()

    def load_vault(self) -> ProviderVault:
        """
        Load and normalize the stored vault.

        The normalized form is written back when it differs from what the
        store returned (including the very first load, which persists the
        default vault).

        Raises:
            VaultReadError: If the store fails or holds an invalid document
        """
        with self.lock:
            try:
                stored = self.store.get()
            except Exception as e:
                raise VaultReadError(f"Profile vault read failed: {e}") from e

            vault = self._parse_document(stored)
            errors = validate_vault(vault, self.policy)
            if errors:
                raise VaultReadError(f"Profile vault read validation failed: {format_errors(errors)}")

            document = vault.to_dict()
            if stored != document:
                self._write(document)
            return vault.copy()

    def save_vault(self, vault: ProviderVault) -> ProviderVault:
        """
        Normalize, validate and persist a full vault.

        Raises:
            VaultWriteError: On any schema violation or store failure
        """
        with self.lock:
            normalized = normalize_vault(vault)
            errors = validate_vault(normalized, self.policy)
            if errors:
                raise VaultWriteError(f"Profile vault write validation failed: {format_errors(errors)}")
            self._write(normalized.to_dict())
            return normalized.copy()

    def get_profile(self, profile_id: str) -> Optional[ProviderProfile]:
        profile = self.load_vault().find(profile_id)
        return profile.copy() if profile else None

    def add_profile(self, profile: ProviderProfile) -> ProviderVault:
        """Append a profile and return the normalized, persisted vault."""
        with self.lock:
            vault = self.load_vault()
            if vault.find(profile.id) is not None:
                raise VaultWriteError(f"Profile with id {profile.id} already exists")
            return self.save_vault(vault.copy(profiles=vault.profiles + [profile]))

    def update_profile(self, profile_id: str, patch: dict[str, Any]) -> ProviderProfile:
        """
        Merge ``patch`` (attribute name -> value) into a stored profile.

        Raises:
            ProfileNotFoundError: If ``profile_id`` is not in the vault
            VaultWriteError: If the patch changes ``id`` or ``created_at``,
                names an unknown field, or the result fails validation
        """
        with self.lock:
            vault = self.load_vault()
            current = vault.find(profile_id)
            if current is None:
                raise ProfileNotFoundError(profile_id)

            for name in IMMUTABLE_FIELDS:
                if name in patch and patch[name] != getattr(current, name):
                    raise VaultWriteError(f"Profile {name} cannot be changed")

            changes = {k: v for k, v in patch.items() if k not in IMMUTABLE_FIELDS}
            try:
                updated = current.copy(**changes)
            except TypeError as e:
                raise VaultWriteError(f"Invalid profile update: {e}") from e

            profiles = [updated if p.id == profile_id else p for p in vault.profiles]
            persisted = self.save_vault(vault.copy(profiles=profiles))
            return persisted.find(profile_id).copy()

    def delete_profile(self, profile_id: str) -> None:
        with self.lock:
            vault = self.load_vault()
            if vault.find(profile_id) is None:
                raise ProfileNotFoundError(profile_id)
            self.save_vault(vault.copy(profiles=[p for p in vault.profiles if p.id != profile_id]))

    def set_encryption_available(self, encryption_available: bool) -> None:
        """Record encryption availability; repeated calls with the same value do not write."""
        with self.lock:
            vault = self.load_vault()
            if vault.encryption_available == encryption_available:
                return
            self.save_vault(vault.copy(encryption_available=encryption_available))

    def _write(self, document: dict) -> None:
        try:
            self.store.set(document)
        except Exception as e:
            raise VaultWriteError(f"Profile vault write failed: {e}") from e

    def _parse_document(self, stored: Any) -> ProviderVault:
        """Turn whatever the store returned into a normalized vault."""
        if stored is None:
            return default_vault()
        if not isinstance(stored, dict):
            raise VaultReadError("Profile vault read validation failed: (root): expected an object")

        vault = default_vault()
        if isinstance(stored.get("encryptionAvailable"), bool):
            vault.encryption_available = stored["encryptionAvailable"]
        version = stored.get("version")
        if isinstance(version, str) and version.strip():
            vault.version = version

        entries = stored.get("profiles", [])
        if not isinstance(entries, list):
            raise VaultReadError("Profile vault read validation failed: profiles: expected an array")

        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise VaultReadError(f"Profile vault read validation failed: profiles.{index}: expected an object")
            if not isinstance(entry.get("id"), str):
                raise VaultReadError(f"Profile vault read validation failed: profiles.{index}.id: expected a string")

        for entry in dedupe_by_id(entries, key=lambda e: e["id"]):
            try:
                vault.profiles.append(ProviderProfile.from_dict(entry))
            except ValueError as e:
                raise VaultReadError(
                    f"Profile vault read validation failed: providerType: {e}"
                ) from e

        return enforce_single_active(vault)


def dedupe_by_id(items: list, key=lambda item: item.id) -> list:
    """
    Drop duplicate ids, keeping the LAST occurrence of each.

    Survivors keep the relative order of their last occurrences.
    """
    seen: set[str] = set()
    result = []
    for item in reversed(items):
        item_id = key(item)
        if item_id in seen:
            continue
        seen.add(item_id)
        result.append(item)
    result.reverse()
    return result


def enforce_single_active(vault: ProviderVault) -> ProviderVault:
    """Keep only the most recently modified active profile active."""
    active = [p for p in vault.profiles if p.is_active]
    if len(active) <= 1:
        return vault

    keep = max(active, key=lambda p: (_sort_key(p.modified_at), _sort_key(p.created_at)))
    logger.warning(
        f"[VAULT] {len(active)} active profiles found; keeping {keep.id} active"
    )
    vault.profiles = [p.copy(is_active=(p.id == keep.id)) for p in vault.profiles]
    return vault


def normalize_vault(vault: ProviderVault) -> ProviderVault:
    """Dedupe and single-active normalization of an in-memory vault."""
    normalized = vault.copy(profiles=dedupe_by_id(vault.profiles))
    if not normalized.version:
        normalized.version = PROFILE_VAULT_VERSION
    return enforce_single_active(normalized)


def _sort_key(value: Any) -> int:
    return value if isinstance(value, int) else 0
