"""Provider registry - builds and looks up the configured adapters."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from marvin_orchestrator.providers.base import LLMProvider
from marvin_orchestrator.providers.cerebras import CerebrasProvider
from marvin_orchestrator.providers.gemini import GeminiProvider
from marvin_orchestrator.providers.groq import GroqProvider
from marvin_orchestrator.settings import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Adapters keyed by name, in registration order."""

    def __init__(self) -> None:
        self._providers: Dict[str, LLMProvider] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "ProviderRegistry":
        """Construct an adapter for every provider whose API key is set.

        Registration order is groq, gemini, cerebras.
        """
        registry = cls()
        api = settings.api
        models = settings.models
        timeout = settings.orchestrator.request_timeout

        groq_key = api.get_key("groq")
        if groq_key:
            registry.register(GroqProvider(
                groq_key,
                models.groq_model,
                models.groq_vision_model,
                timeout=timeout,
                http_client=http_client,
            ))

        gemini_key = api.get_key("gemini")
        if gemini_key:
            registry.register(GeminiProvider(
                gemini_key,
                models.gemini_model,
                timeout=timeout,
                http_client=http_client,
            ))

        cerebras_key = api.get_key("cerebras")
        if cerebras_key:
            registry.register(CerebrasProvider(
                cerebras_key,
                models.cerebras_model,
                timeout=timeout,
                http_client=http_client,
            ))

        logger.info(f"Registered LLM providers: {', '.join(registry.names()) or 'none'}")
        return registry

    def register(self, provider: LLMProvider) -> None:
        """Add an adapter, replacing any existing one with the same name."""
        if provider.name in self._providers:
            logger.warning(f"Replacing registered provider: {provider.name}")
        self._providers[provider.name] = provider

    def get(self, name: str) -> Optional[LLMProvider]:
        return self._providers.get(name)

    def has(self, name: str) -> bool:
        return name in self._providers

    def names(self) -> List[str]:
        return list(self._providers)

    def available(self) -> List[str]:
        """Registered providers that report themselves usable."""
        return [name for name, p in self._providers.items() if p.is_available]

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
