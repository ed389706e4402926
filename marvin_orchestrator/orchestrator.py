"""Orchestrator - classify, route, execute with fallback.

The main entry point for processing messages:

1. Classify the request with zero-call heuristics
2. Resolve a routing chain from the category, quota state and registry
3. Try each provider in the chain, either as a plain JSON chat or, for
   tool-requiring categories, as a bounded agent loop
4. Recoverable provider errors feed the rate limiter and move on to the
   next candidate; exhaustion raises ``AllProvidersExhausted``

Usage:
    async with Orchestrator.from_settings(state_provider=my_state) as orch:
        result = await orch.process_message(OrchestratorInput(text="hi"))
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

import httpx

from marvin_orchestrator import observability
from marvin_orchestrator.agent_loop import AgentLoop
from marvin_orchestrator.classifier import MessageClassifier
from marvin_orchestrator.errors import (
    AllProvidersExhausted,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
)
from marvin_orchestrator.models import (
    ChatMessage,
    ChatRequest,
    ClassificationResult,
    MessageCategory,
    OrchestratorInput,
    OrchestratorResult,
    RateLimitState,
    RoutingDecision,
    ToolDefinition,
)
from marvin_orchestrator.parsing import parse_structured_response
from marvin_orchestrator.prompts import build_messages
from marvin_orchestrator.providers.base import LLMProvider
from marvin_orchestrator.providers.registry import ProviderRegistry
from marvin_orchestrator.rate_limiter import RateLimiter
from marvin_orchestrator.settings import Settings, get_settings, validate_settings
from marvin_orchestrator.state import StateContextProvider, StaticStateContext, load_state
from marvin_orchestrator.tools import ToolCatalog, ToolExecutor

logger = logging.getLogger(__name__)

# =============================================================================
# Routing table
# =============================================================================

# category -> (preferred provider, fallbacks in order)
ROUTING_TABLE: Dict[MessageCategory, Tuple[str, Tuple[str, ...]]] = {
    MessageCategory.SIMPLE_CHAT: ("groq", ("cerebras", "gemini")),
    MessageCategory.COMPLEX_REASONING: ("gemini", ("groq", "cerebras")),
    MessageCategory.WEB_SEARCH: ("gemini", ("groq",)),
    MessageCategory.VISION: ("gemini", ("groq",)),
    MessageCategory.CODE_TASK: ("groq", ("cerebras", "gemini")),
    MessageCategory.STATE_UPDATE: ("groq", ("cerebras", "gemini")),
}

# Simple tasks stay snappy, complex tasks get full response length
MAX_TOKENS_BY_CATEGORY: Dict[MessageCategory, int] = {
    MessageCategory.SIMPLE_CHAT: 1024,
    MessageCategory.COMPLEX_REASONING: 8192,
    MessageCategory.WEB_SEARCH: 4096,
    MessageCategory.VISION: 4096,
    MessageCategory.CODE_TASK: 4096,
    MessageCategory.STATE_UPDATE: 1024,
}


class Orchestrator:
    """Routes each request to one of the registered providers."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        state_provider: Optional[StateContextProvider] = None,
        *,
        registry: Optional[ProviderRegistry] = None,
        rate_limiter: Optional[RateLimiter] = None,
        classifier: Optional[MessageClassifier] = None,
    ):
        self.settings = settings or get_settings()
        self.state_provider = state_provider or StaticStateContext()
        self.registry = (
            registry if registry is not None else ProviderRegistry.from_settings(self.settings)
        )
        self.rate_limiter = rate_limiter or RateLimiter(self.settings.orchestrator.rate_limits)
        self.classifier = classifier or MessageClassifier()
        self.tools = ToolCatalog()

        config = self.settings.orchestrator
        self.agent_loop = AgentLoop(
            self.tools,
            self.rate_limiter,
            max_steps=config.max_agent_steps,
            tool_timeout=config.tool_timeout,
            temperature=config.temperature,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        state_provider: Optional[StateContextProvider] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "Orchestrator":
        """Validate settings, then build adapters for every configured provider.

        Raises ConfigurationError when no provider key is configured.
        """
        settings = validate_settings(settings or get_settings())
        registry = ProviderRegistry.from_settings(settings, http_client=http_client)
        return cls(settings, state_provider, registry=registry)

    # =========================================================================
    # Public API
    # =========================================================================

    def register_tool(self, definition: ToolDefinition, executor: ToolExecutor) -> None:
        """Register a tool that the agent loop can use."""
        self.tools.register(definition, executor)

    def get_available_providers(self) -> List[str]:
        return self.registry.available()

    def get_default_provider(self) -> str:
        return self.settings.default_provider

    def get_rate_limit_snapshot(self) -> Dict[str, RateLimitState]:
        return self.rate_limiter.get_all_states()

    async def process_message(self, request: OrchestratorInput) -> OrchestratorResult:
        """Classify, route and answer one request.

        Raises AllProvidersExhausted when no provider in the chain produced a
        result, and AgentLoopExceeded when a tool loop hit its step ceiling.
        """
        started = time.perf_counter()
        classification = self.classifier.classify(request)
        routing = self.resolve_routing(request, classification.category)
        observability.log_routing_decision(routing, classification)
        logger.info(f"Routing {classification.category.value} via {routing.reason}")

        with observability.request_span(
            classification.category.value, provider=routing.provider
        ):
            messages = await self._build_messages(request)
            result = await self._execute_chain(classification, routing, messages)

        observability.log_request_complete(result, time.perf_counter() - started)
        return result

    async def aclose(self) -> None:
        await self.registry.aclose()

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # =========================================================================
    # Routing
    # =========================================================================

    def resolve_routing(
        self, request: OrchestratorInput, category: MessageCategory
    ) -> RoutingDecision:
        """Pick the primary provider and fallback chain for a request."""
        if request.provider:
            if self.registry.has(request.provider):
                return RoutingDecision(
                    provider=request.provider,
                    category=category,
                    fallback_chain=(),
                    reason=f"requested provider: {request.provider}",
                )
            logger.warning(
                f"Requested provider {request.provider} is not registered, routing normally"
            )

        default = self._default_candidate()

        if not self.settings.smart_routing:
            return RoutingDecision(
                provider=default,
                category=category,
                fallback_chain=tuple(n for n in self.registry.names() if n != default),
                reason="smart routing disabled",
            )

        preferred, fallbacks = ROUTING_TABLE[category]
        if self._usable(preferred):
            primary = preferred
        else:
            primary = next((p for p in fallbacks if self._usable(p)), default)

        return RoutingDecision(
            provider=primary,
            category=category,
            fallback_chain=tuple(
                p for p in fallbacks if p != primary and self.registry.has(p)
            ),
            reason=f"{category.value} -> {primary}",
        )

    def _usable(self, name: str) -> bool:
        return self.registry.has(name) and self.rate_limiter.can_use(name)

    def _default_candidate(self) -> str:
        """The configured default, or the first registered provider if it is missing."""
        default = self.settings.default_provider
        if self.registry.has(default) or len(self.registry) == 0:
            return default
        return self.registry.names()[0]

    # =========================================================================
    # Execution
    # =========================================================================

    async def _build_messages(self, request: OrchestratorInput) -> List[ChatMessage]:
        state = await load_state(self.state_provider)
        assistant = self.settings.assistant
        return build_messages(
            request,
            state,
            assistant_name=assistant.assistant_name,
            owner_name=assistant.owner_name,
        )

    def _should_use_tools(
        self, classification: ClassificationResult, provider: LLMProvider
    ) -> bool:
        return (
            classification.requires_tools
            and provider.capabilities.tool_use
            and len(self.tools) > 0
        )

    async def _execute_chain(
        self,
        classification: ClassificationResult,
        routing: RoutingDecision,
        messages: List[ChatMessage],
    ) -> OrchestratorResult:
        last_error: Optional[ProviderError] = None
        attempts: List[str] = []

        for name in routing.chain:
            provider = self.registry.get(name)
            if provider is None or not provider.is_available:
                logger.debug(f"Skipping {name}: not registered or unavailable")
                continue
            if not self.rate_limiter.can_use(name):
                logger.debug(f"Skipping {name}: rate limited")
                continue

            if attempts:
                reason = type(last_error).__name__ if last_error else "skipped"
                observability.log_fallback(attempts[-1], name, reason)
            attempts.append(name)

            try:
                result = await self._attempt(provider, classification, messages)
            except RateLimitError as e:
                last_error = e
                self.rate_limiter.record_rate_limit(name, e.retry_after)
                logger.warning(f"{name} rate limited, trying next provider")
            except ProviderUnavailableError as e:
                last_error = e
                self.rate_limiter.record_error(name, str(e))
                logger.warning(f"{name} unavailable, trying next provider: {e.detail}")
            except ProviderError as e:
                last_error = e
                self.rate_limiter.record_error(name, str(e))
                logger.error(f"{name} error: {e}")
            else:
                result.routing = routing
                result.attempts = attempts
                return result

            observability.log_provider_failure(name, last_error, len(attempts))

        raise AllProvidersExhausted(last_error, attempts)

    async def _attempt(
        self,
        provider: LLMProvider,
        classification: ClassificationResult,
        messages: List[ChatMessage],
    ) -> OrchestratorResult:
        category = classification.category
        max_tokens = min(
            MAX_TOKENS_BY_CATEGORY.get(category, 1024),
            provider.capabilities.max_output_tokens,
        )

        if self._should_use_tools(classification, provider):
            loop_result = await self.agent_loop.run(provider, messages, max_tokens)
            answer = loop_result.answer
            return OrchestratorResult(
                response=answer.response,
                classification=answer.classification,
                state_changes=answer.state_changes,
                provider=provider.name,
                category=category,
                usage=loop_result.usage,
                tools_used=loop_result.tools_used,
                agent_steps=loop_result.steps,
            )

        response = await provider.chat(ChatRequest(
            messages=messages,
            temperature=self.settings.orchestrator.temperature,
            max_tokens=max_tokens,
            json_mode=True,
        ))
        self.rate_limiter.record_success(provider.name, response.usage, response.quota)

        answer = parse_structured_response(response.content)
        return OrchestratorResult(
            response=answer.response,
            classification=answer.classification,
            state_changes=answer.state_changes,
            provider=provider.name,
            category=category,
            usage=response.usage,
        )
