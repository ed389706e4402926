"""Typed errors raised by provider adapters and the orchestrator.

Provider-level errors (``RateLimitError``, ``ProviderUnavailableError``,
``ProviderError``) are recoverable: the orchestrator catches them, feeds
them into the rate limiter and moves on to the next provider in the
routing chain. ``AgentLoopExceeded`` and ``AllProvidersExhausted`` are
terminal for the request and are what callers of ``process_message`` see.
"""

from __future__ import annotations

from typing import Optional, Sequence


class OrchestratorError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(OrchestratorError):
    """Raised when settings cannot produce a usable orchestrator."""


class ProviderError(OrchestratorError):
    """Unexpected provider failure, including empty or invalid responses."""

    def __init__(self, provider: str, context: str, message: str):
        self.provider = provider
        self.context = context
        self.detail = message
        super().__init__(f"[{provider}] {context}: {message}")


class RateLimitError(ProviderError):
    """Provider quota exhausted (HTTP 429)."""

    def __init__(
        self,
        provider: str,
        message: str,
        retry_after: Optional[float] = None,
    ):
        super().__init__(provider, "rate_limited", message)
        self.retry_after = retry_after


class ProviderUnavailableError(ProviderError):
    """Transient backend outage (HTTP 502/503, timeouts, dropped connections)."""

    def __init__(self, provider: str, message: str):
        super().__init__(provider, "unavailable", message)


class UnsupportedOperationError(ProviderError):
    """The adapter's capability descriptor does not allow the requested call."""

    def __init__(self, provider: str, operation: str):
        super().__init__(provider, operation, f"{provider} does not support {operation}")
        self.operation = operation


class AgentLoopExceeded(OrchestratorError):
    """The tool loop hit its step ceiling without producing a final answer."""

    def __init__(self, max_steps: int, tools_used: Sequence[str] = ()):
        self.max_steps = max_steps
        self.tools_used = list(tools_used)
        super().__init__(f"Agent loop exceeded max steps ({max_steps})")


class AllProvidersExhausted(OrchestratorError):
    """Every candidate in the routing chain failed or was skipped."""

    def __init__(
        self,
        last_error: Optional[BaseException],
        attempts: Sequence[str] = (),
    ):
        self.last_error = last_error
        self.attempts = list(attempts)
        if last_error is None:
            message = "No available LLM providers"
        else:
            tried = ", ".join(self.attempts) or "none"
            message = f"All providers failed (tried: {tried}); last error: {last_error}"
        super().__init__(message)


class InvalidToolDefinition(OrchestratorError):
    """A tool's parameter schema is not a usable JSON object schema."""

    def __init__(self, tool_name: str, reason: str):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Invalid definition for tool {tool_name!r}: {reason}")
