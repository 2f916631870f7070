"""
LLM Profiles

Encrypted provider profile vault and test prompt engine for local
(llama.cpp) and remote (Azure OpenAI, OpenAI-compatible) LLM providers.
"""

from .errors import (
    AlternateProfileNotFoundError,
    LLMProfilesError,
    NoActiveProfileError,
    ProfileNotFoundError,
    ProfileValidationError,
    PromptTimeoutError,
    VaultReadError,
    VaultWriteError,
)
from .llm import PromptExecutionEngine, TestPromptResult
from .profiles import ProfileService
from .security import CredentialService, FernetCredentialAdapter
from .vault import InMemoryVaultStore, JsonFileVaultStore, ProviderProfile, ProviderType, ProviderVault, VaultService

__version__ = "1.0.0"

__all__ = [
    "AlternateProfileNotFoundError",
    "LLMProfilesError",
    "NoActiveProfileError",
    "ProfileNotFoundError",
    "ProfileValidationError",
    "PromptTimeoutError",
    "VaultReadError",
    "VaultWriteError",
    "PromptExecutionEngine",
    "TestPromptResult",
    "ProfileService",
    "CredentialService",
    "FernetCredentialAdapter",
    "InMemoryVaultStore",
    "JsonFileVaultStore",
    "ProviderProfile",
    "ProviderType",
    "ProviderVault",
    "VaultService",
]
