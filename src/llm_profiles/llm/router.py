"""
LLM Router

Picks the provider implementation for a profile's provider type.
"""

from ..vault.models import ProviderProfile, ProviderType
from .azure_provider import AzureOpenAIProvider
from .base_provider import BaseLLMProvider
from .custom_provider import CustomProvider
from .llamacpp_provider import LlamaCppProvider

PROVIDERS: dict[ProviderType, type[BaseLLMProvider]] = {
    ProviderType.LLAMA_CPP: LlamaCppProvider,
    ProviderType.AZURE: AzureOpenAIProvider,
    ProviderType.CUSTOM: CustomProvider,
}


def create_provider(profile: ProviderProfile, api_key: str) -> BaseLLMProvider:
    """
    Instantiate the provider for ``profile``.

    Args:
        profile: Profile being tested
        api_key: Decrypted API key (may be empty)

    Raises:
        ValueError: If the provider type has no implementation
    """
    provider_cls = PROVIDERS.get(profile.provider_type)
    if provider_cls is None:
        raise ValueError(f"Unknown provider type: {profile.provider_type}")
    return provider_cls(profile, api_key)
