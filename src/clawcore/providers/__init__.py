"""LLM client interface and implementations."""

from clawcore.providers.base import ChunkCallback, LLMProvider, ProviderError
from clawcore.providers.litellm_provider import LiteLLMProvider, parse_arguments

__all__ = [
    "ChunkCallback",
    "LLMProvider",
    "LiteLLMProvider",
    "ProviderError",
    "parse_arguments",
]
