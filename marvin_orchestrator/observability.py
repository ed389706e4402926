"""Observability utilities for consistent Logfire logging.

This module provides centralized logging utilities that ensure:
- Routing decisions record both the category and the chain that was built
- Provider failures, fallbacks and agent steps are tracked as structured events
- Consistent naming and formatting across the codebase

Every helper swallows its own telemetry failures; a broken exporter must
never fail a request.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Sequence

import logfire

if TYPE_CHECKING:
    from marvin_orchestrator.models import (
        ClassificationResult,
        OrchestratorResult,
        RoutingDecision,
    )
    from marvin_orchestrator.settings import Settings

logger = logging.getLogger(__name__)

_configured = False


def configure_observability(settings: Optional["Settings"] = None) -> None:
    """Configure stdlib logging and logfire once per process.

    Spans are only shipped when a Logfire token is present; otherwise
    logfire stays local.
    """
    global _configured
    if _configured:
        return

    if settings is None:
        from marvin_orchestrator.settings import get_settings

        settings = get_settings()

    obs = settings.observability
    logging.basicConfig(
        level=getattr(logging, obs.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    token = obs.logfire_token.get_secret_value() if obs.logfire_token else None
    try:
        logfire.configure(
            token=token,
            service_name=obs.service_name,
            send_to_logfire="if-token-present",
            console=False,
        )
    except Exception as e:
        logger.warning(f"Logfire configuration failed, continuing without it: {e}")

    _configured = True


def request_span(category: str, **attributes: Any):
    """Span wrapping one ``process_message`` call."""
    return logfire.span(
        "orchestrator.process_message {category}",
        category=category,
        **attributes,
    )


# =============================================================================
# ROUTING LOGGING
# =============================================================================

def log_routing_decision(
    decision: "RoutingDecision",
    classification: "ClassificationResult",
    **extra_fields: Any,
) -> None:
    """Log which provider chain was picked for a request."""
    try:
        logfire.info(
            "Routing: {category} → {provider} ({reason})",
            category=decision.category.value,
            provider=decision.provider,
            fallbacks=list(decision.fallback_chain),
            reason=decision.reason,
            confidence=classification.confidence,
            rule=classification.reasoning,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log routing decision: {e}")


# =============================================================================
# FAILOVER LOGGING
# =============================================================================

def log_provider_failure(
    provider: str,
    error: BaseException,
    attempt: int,
    **extra_fields: Any,
) -> None:
    """Log a recoverable provider failure inside the fallback loop."""
    try:
        logfire.warn(
            "Provider failure: {provider} ({error_type}) - attempt {attempt}",
            provider=provider,
            error_type=type(error).__name__,
            error=str(error),
            attempt=attempt,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log provider failure: {e}")


def log_fallback(
    from_provider: str,
    to_provider: str,
    reason: str,
    **extra_fields: Any,
) -> None:
    """Log when the fallback loop moves on to the next candidate."""
    try:
        logfire.warn(
            "Failover: {from_provider} → {to_provider} ({reason})",
            from_provider=from_provider,
            to_provider=to_provider,
            reason=reason,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log fallback: {e}")


# =============================================================================
# AGENT LOOP LOGGING
# =============================================================================

def log_agent_step(
    provider: str,
    step: int,
    tool_calls: Sequence[str],
    **extra_fields: Any,
) -> None:
    try:
        logfire.info(
            "Agent step {step}: {provider} requested {count} tool call(s)",
            provider=provider,
            step=step,
            count=len(tool_calls),
            tools=list(tool_calls),
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log agent step: {e}")


# =============================================================================
# REQUEST LOGGING
# =============================================================================

def log_request_complete(
    result: "OrchestratorResult",
    duration_seconds: Optional[float] = None,
    **extra_fields: Any,
) -> None:
    """Log when a request completes.

    Args:
        result: The result returned to the caller
        duration_seconds: Wall time of the whole request
        **extra_fields: Additional fields to log
    """
    input_tokens = result.usage.input_tokens if result.usage else 0
    output_tokens = result.usage.output_tokens if result.usage else 0
    try:
        logfire.info(
            "Request complete: {provider} ({input_tokens} in, {output_tokens} out)",
            provider=result.provider,
            category=result.category.value,
            classification=result.classification.value,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            agent_steps=result.agent_steps,
            attempts=list(result.attempts),
            duration_seconds=duration_seconds,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log request complete: {e}")
