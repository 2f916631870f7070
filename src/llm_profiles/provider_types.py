"""
Provider Types

Kept in its own module so every layer can import it without cycles.
"""

from enum import Enum


class ProviderType(str, Enum):
    """Supported LLM provider types."""
    LLAMA_CPP = "llama.cpp"
    AZURE = "azure"
    CUSTOM = "custom"
