"""
Custom LLM Provider

Any OpenAI-compatible endpoint. The profile's endpoint is the API base;
requests go to ``{endpoint}/chat/completions`` with bearer authentication.
"""

from typing import Any

from ..vault.models import ProviderType
from .base_provider import BaseLLMProvider, ProviderFailure, ProviderRequest, error_body_fields


class CustomProvider(BaseLLMProvider):
    """Generic OpenAI-compatible provider."""

    provider_type = ProviderType.CUSTOM

    def build_request(self, prompt_text: str) -> ProviderRequest:
        headers = {"Content-Type": "application/json"}
        key = (self.api_key or "").strip()
        if key:
            headers["Authorization"] = key if key.startswith("Bearer ") else f"Bearer {key}"

        return ProviderRequest(
            url=f"{self.endpoint}/chat/completions",
            body=self.chat_body(prompt_text),
            headers=headers,
        )

    def map_http_error(self, status_code: int, body: Any) -> ProviderFailure:
        code, body_message = error_body_fields(body)
        return ProviderFailure(
            code=code or str(status_code),
            message=body_message or f"Request failed with status {status_code}",
        )
