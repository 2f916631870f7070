"""
Base LLM Provider

Abstract interface for the providers a test prompt can target.
Each provider knows how to:
1. Build its wire request from a profile and a prompt
2. Extract assistant text from a successful response
3. Map HTTP and network failures to a friendly message and error code
"""

import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from ..vault.models import ProviderProfile, ProviderType


@dataclass
class ProviderRequest:
    """Provider-specific wire request."""
    url: str
    body: dict
    headers: dict[str, str] = field(default_factory=dict)
    method: str = "POST"


@dataclass
class ProviderFailure:
    """Classified provider failure (returned, never raised)."""
    code: str
    message: str


class InvalidProviderResponse(Exception):
    """A 2xx response from which no assistant text could be extracted."""


class BaseLLMProvider(ABC):
    """
    Abstract base class for providers.

    Providers are cheap, per-call objects: they hold the profile and the
    decrypted key for one request and never perform I/O themselves.
    """

    provider_type: ProviderType

    def __init__(self, profile: ProviderProfile, api_key: str):
        self.profile = profile
        self.api_key = api_key

    @property
    def endpoint(self) -> str:
        """Endpoint without trailing slashes."""
        return self.profile.endpoint_url.strip().rstrip("/")

    @abstractmethod
    def build_request(self, prompt_text: str) -> ProviderRequest:
        """
        Build the wire request for a single user prompt.

        Args:
            prompt_text: Normalized prompt

        Returns:
            Request ready to send
        """
        pass

    @abstractmethod
    def map_http_error(self, status_code: int, body: Any) -> ProviderFailure:
        """
        Classify an HTTP error response.

        Args:
            status_code: HTTP status (>= 400)
            body: Decoded JSON body, or None

        Returns:
            Failure with a friendly message
        """
        pass

    def chat_body(self, prompt_text: str, include_model: bool = True) -> dict:
        body: dict[str, Any] = {}
        if include_model and self.profile.model_id:
            body["model"] = self.profile.model_id
        body["messages"] = [{"role": "user", "content": prompt_text}]
        return body

    def parse_response(self, data: Any) -> tuple[str, Optional[str]]:
        """
        Extract ``(assistant_text, model_name)`` from a chat completion.

        ``choices[0].message.content`` may be a string or a list of typed
        parts; only output parts are kept. ``choices[0].text`` is accepted
        as the legacy completion shape.

        Raises:
            InvalidProviderResponse: If the body holds no assistant text
        """
        if not isinstance(data, dict):
            raise InvalidProviderResponse("Provider response is not a JSON object")

        model_name = data.get("model") if isinstance(data.get("model"), str) else None
        model_name = model_name or self.profile.model_id

        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else None
        if not isinstance(choice, dict):
            raise InvalidProviderResponse("Provider response contained no choices")

        message = choice.get("message")
        if isinstance(message, dict):
            text = extract_content_text(message.get("content"))
            if text is not None:
                return text, model_name

        legacy = choice.get("text")
        if isinstance(legacy, str) and legacy.strip():
            return legacy, model_name

        raise InvalidProviderResponse("Provider response contained no assistant text")

    def map_network_error(self, error: Exception) -> ProviderFailure:
        """Classify a transport-level failure."""
        code = network_error_code(error)
        parsed = urlparse(self.endpoint)
        host = parsed.hostname or self.endpoint
        origin = f"{parsed.scheme}://{parsed.netloc}" if parsed.netloc else self.endpoint

        if code == "ECONNREFUSED":
            message = f"Unable to connect to {origin}. Is the server running?"
        elif code == "ENOTFOUND":
            message = f"Could not resolve hostname {host}. Check the URL."
        elif code == "ECONNRESET":
            message = "Connection reset by server. Check server logs."
        elif code == "ETIMEDOUT":
            message = "Request timed out. Server may be slow."
        else:
            message = str(error) or "Network request failed"
        return ProviderFailure(code=code, message=message)


def extract_content_text(content: Any) -> Optional[str]:
    """
    Text of a chat message ``content``.

    Typed part lists keep ``output_text``/``text`` parts and drop echoed
    ``input_text`` and user-authored parts. Blank text counts as none.
    """
    if isinstance(content, str):
        return content if content.strip() else None
    if not isinstance(content, list):
        return None

    pieces = []
    for part in content:
        if isinstance(part, str):
            pieces.append(part)
            continue
        if not isinstance(part, dict):
            continue
        if part.get("role") == "user" or part.get("type") == "input_text":
            continue
        if part.get("type") in ("output_text", "text", None) and isinstance(part.get("text"), str):
            pieces.append(part["text"])
    text = "".join(pieces)
    return text if text.strip() else None


def network_error_code(error: BaseException) -> str:
    """Walk the exception chain for a platform-style error code."""
    if isinstance(error, httpx.TimeoutException):
        return "ETIMEDOUT"

    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return "ECONNREFUSED"
        if isinstance(current, socket.gaierror):
            return "ENOTFOUND"
        if isinstance(current, ConnectionResetError):
            return "ECONNRESET"
        if isinstance(current, (TimeoutError, socket.timeout)):
            return "ETIMEDOUT"
        current = current.__cause__ or current.__context__

    if isinstance(error, httpx.ConnectError):
        return "ECONNREFUSED"
    return "NETWORK_ERROR"


def error_body_fields(body: Any) -> tuple[Optional[str], Optional[str]]:
    """``(code, message)`` from an ``{"error": {...}}`` or flat error body."""
    if not isinstance(body, dict):
        return None, None
    details = body.get("error") if isinstance(body.get("error"), dict) else body
    code = details.get("code")
    message = details.get("message")
    return (
        code if isinstance(code, str) and code.strip() else None,
        message if isinstance(message, str) and message.strip() else None,
    )
