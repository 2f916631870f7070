"""
Vault Models

Provider profiles and the vault document that holds them.
The persisted form uses camelCase keys so documents written by earlier
releases of the desktop app load unchanged.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..provider_types import ProviderType

PROFILE_VAULT_VERSION = "1.0.0"
API_KEY_PLACEHOLDER = "***REDACTED***"


# Field name mapping between attribute names and the persisted document
_WIRE_KEYS = {
    "id": "id",
    "name": "name",
    "provider_type": "providerType",
    "endpoint_url": "endpointUrl",
    "api_key": "apiKey",
    "model_id": "modelId",
    "is_active": "isActive",
    "consent_timestamp": "consentTimestamp",
    "created_at": "createdAt",
    "modified_at": "modifiedAt",
}
_ATTR_KEYS = {wire: attr for attr, wire in _WIRE_KEYS.items()}


def wire_key(attr: str) -> str:
    """Return the persisted (camelCase) key for a profile attribute."""
    return _WIRE_KEYS.get(attr, attr)


def attr_key(wire: str) -> str:
    """Return the profile attribute for a persisted (camelCase) key."""
    return _ATTR_KEYS.get(wire, wire)


@dataclass
class ProviderProfile:
    """One configured LLM endpoint plus its (encrypted) credential."""
    id: str
    name: str
    provider_type: ProviderType
    endpoint_url: str
    api_key: str
    model_id: Optional[str] = None
    is_active: bool = False
    consent_timestamp: Optional[int] = None
    created_at: int = 0
    modified_at: int = 0

    def copy(self, **changes: Any) -> "ProviderProfile":
        """Return a copy with the given attributes replaced."""
        return replace(self, **changes)

    def redacted(self) -> "ProviderProfile":
        """Copy safe to hand to callers: the API key is replaced."""
        return self.copy(api_key=API_KEY_PLACEHOLDER)

    def to_dict(self) -> dict:
        """Convert to the persisted camelCase representation."""
        return {
            "id": self.id,
            "name": self.name,
            "providerType": self.provider_type.value,
            "endpointUrl": self.endpoint_url,
            "apiKey": self.api_key,
            "modelId": self.model_id,
            "isActive": self.is_active,
            "consentTimestamp": self.consent_timestamp,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProviderProfile":
        """
        Build a profile from its persisted form.

        Values are taken as-is; ``validate_profile`` decides whether they
        are acceptable.

        Raises:
            ValueError: If ``providerType`` is not a known provider.
        """
        return cls(
            id=data.get("id"),
            name=data.get("name"),
            provider_type=ProviderType(data.get("providerType")),
            endpoint_url=data.get("endpointUrl"),
            api_key=data.get("apiKey"),
            model_id=data.get("modelId"),
            is_active=data.get("isActive", False),
            consent_timestamp=data.get("consentTimestamp"),
            created_at=data.get("createdAt"),
            modified_at=data.get("modifiedAt"),
        )


@dataclass
class ProviderVault:
    """The persisted aggregate of profiles."""
    profiles: list[ProviderProfile] = field(default_factory=list)
    encryption_available: bool = False
    version: str = PROFILE_VAULT_VERSION

    @property
    def active_profile(self) -> Optional[ProviderProfile]:
        for profile in self.profiles:
            if profile.is_active:
                return profile
        return None

    def find(self, profile_id: str) -> Optional[ProviderProfile]:
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        return None

    def copy(self, **changes: Any) -> "ProviderVault":
        """Deep-enough copy: profiles are copied, never shared."""
        profiles = changes.pop("profiles", self.profiles)
        return replace(self, profiles=[p.copy() for p in profiles], **changes)

    def to_dict(self) -> dict:
        return {
            "profiles": [p.to_dict() for p in self.profiles],
            "encryptionAvailable": self.encryption_available,
            "version": self.version,
        }


def default_vault() -> ProviderVault:
    """Return a fresh, empty vault."""
    return ProviderVault(profiles=[], encryption_available=False, version=PROFILE_VAULT_VERSION)
