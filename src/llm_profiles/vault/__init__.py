"""
Provider Vault

Persisted collection of LLM provider profiles plus encryption metadata.
"""

from .models import (
    API_KEY_PLACEHOLDER,
    PROFILE_VAULT_VERSION,
    ProviderProfile,
    ProviderType,
    ProviderVault,
    default_vault,
)
from .store import InMemoryVaultStore, JsonFileVaultStore, VaultStore
from .service import VaultService

__all__ = [
    "API_KEY_PLACEHOLDER",
    "PROFILE_VAULT_VERSION",
    "ProviderProfile",
    "ProviderType",
    "ProviderVault",
    "default_vault",
    "InMemoryVaultStore",
    "JsonFileVaultStore",
    "VaultStore",
    "VaultService",
]
