"""
Azure OpenAI LLM Provider

Chat completions against an Azure OpenAI deployment. The profile's
``model_id`` is the deployment name.
"""

from typing import Any
from urllib.parse import quote

from ..vault.models import ProviderType
from .base_provider import BaseLLMProvider, ProviderFailure, ProviderRequest, error_body_fields

AZURE_API_VERSION = "2024-02-15-preview"

# Upper-cased error code -> friendly message
AZURE_ERROR_MESSAGES = {
    "401": "Invalid API key. Check your credentials.",
    "DEPLOYMENTNOTFOUND": "Model deployment not found. Verify deployment name.",
    "429": "Rate limit exceeded. Try again in a few minutes.",
    "INTERNALSERVERERROR": "Azure service error. Check Azure status page.",
    "503": "Service temporarily unavailable. Retry later.",
}


class AzureOpenAIProvider(BaseLLMProvider):
    """
    Azure OpenAI provider.

    Authenticates with the ``api-key`` header and targets
    ``/openai/deployments/{deployment}/chat/completions``.
    """

    provider_type = ProviderType.AZURE

    def __init__(self, profile, api_key: str, api_version: str = AZURE_API_VERSION):
        super().__init__(profile, api_key)
        self.api_version = api_version

    @property
    def deployment_name(self) -> str:
        return (self.profile.model_id or "").strip()

    def build_request(self, prompt_text: str) -> ProviderRequest:
        url = (
            f"{self.endpoint}/openai/deployments/{quote(self.deployment_name, safe='')}"
            f"/chat/completions?api-version={self.api_version}"
        )
        return ProviderRequest(
            url=url,
            body=self.chat_body(prompt_text, include_model=False),
            headers={
                "api-key": self.api_key,
                "Content-Type": "application/json",
            },
        )

    def map_http_error(self, status_code: int, body: Any) -> ProviderFailure:
        code, body_message = error_body_fields(body)
        code = code or str(status_code)

        message = AZURE_ERROR_MESSAGES.get(code.upper())
        if message is None:
            message = body_message or f"Azure OpenAI request failed with status {status_code}"
        return ProviderFailure(code=code, message=message)
