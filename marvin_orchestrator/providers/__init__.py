"""LLM provider adapters."""

from marvin_orchestrator.providers.base import LLMProvider
from marvin_orchestrator.providers.cerebras import CerebrasProvider
from marvin_orchestrator.providers.gemini import GeminiProvider, GroundedChatResponse
from marvin_orchestrator.providers.groq import GroqProvider
from marvin_orchestrator.providers.registry import ProviderRegistry

__all__ = [
    "LLMProvider",
    "GroqProvider",
    "GeminiProvider",
    "GroundedChatResponse",
    "CerebrasProvider",
    "ProviderRegistry",
]
