"""
LLM Provider Layer

Test prompts against the configured provider profiles:
- llama.cpp (local server)
- Azure OpenAI (deployments)
- Custom OpenAI-compatible endpoints
"""

from .base_provider import BaseLLMProvider, ProviderFailure, ProviderRequest
from .discovery import AutoDiscoveryService, DiscoveryResult
from .engine import DEFAULT_PROMPT, PromptExecutionEngine, TestPromptResult
from .router import create_provider
from .transcript import Transcript, TranscriptMessage, TranscriptStore

__all__ = [
    "AutoDiscoveryService",
    "BaseLLMProvider",
    "DiscoveryResult",
    "ProviderFailure",
    "ProviderRequest",
    "DEFAULT_PROMPT",
    "PromptExecutionEngine",
    "TestPromptResult",
    "create_provider",
    "Transcript",
    "TranscriptMessage",
    "TranscriptStore",
]
