"""
llama.cpp LLM Provider

Local inference through the OpenAI-compatible server bundled with llama.cpp.
The server runs on this machine; endpoint rules keep it on localhost.
"""

from typing import Any

from ..vault.models import ProviderType
from .base_provider import BaseLLMProvider, ProviderFailure, ProviderRequest, error_body_fields


class LlamaCppProvider(BaseLLMProvider):
    """llama.cpp server (``/v1/chat/completions``, no authentication)."""

    provider_type = ProviderType.LLAMA_CPP

    @property
    def url(self) -> str:
        return f"{self.endpoint}/v1/chat/completions"

    def build_request(self, prompt_text: str) -> ProviderRequest:
        return ProviderRequest(
            url=self.url,
            body=self.chat_body(prompt_text),
            headers={"Content-Type": "application/json"},
        )

    def map_http_error(self, status_code: int, body: Any) -> ProviderFailure:
        code, _ = error_body_fields(body)
        code = code or str(status_code)

        if code == "invalid_request":
            message = "Invalid request format. Check prompt syntax."
        elif code == "server_error":
            message = "llama.cpp server error. Check server logs."
        else:
            message = f"Request to {self.url} failed with status {code}"
        return ProviderFailure(code=code, message=message)
