"""Rate Limiter - per-provider quota tracking.

Tracks request and token usage per provider over a rolling 60-second window
so the router can skip providers that are out of quota before spending a
call on them.

Default limits (free tier, conservative):
- Groq: 30 requests/minute, 14,400 tokens/minute
- Gemini: 15 requests/minute, 1,000,000 tokens/minute
- Cerebras: 30 requests/minute, 60,000 tokens/minute

A 429 puts a provider into backoff for ``Retry-After`` (or the configured
backoff). Three consecutive non-429 errors put it into backoff for twice
the configured backoff.
"""

import dataclasses
import logging
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional

from marvin_orchestrator.models import (
    QuotaHint,
    RateLimitConfig,
    RateLimitState,
    RequestUsage,
)

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
ERROR_THRESHOLD = 3
# A server-sent retry-after never holds a provider longer than this many backoffs
MAX_BACKOFF_FACTOR = 10
# Charged when a response carries no usage report
USAGE_ESTIMATE_TOKENS = 500

DEFAULT_LIMITS: Dict[str, RateLimitConfig] = {
    "groq": RateLimitConfig(requests_per_minute=30, tokens_per_minute=14_400),
    "gemini": RateLimitConfig(requests_per_minute=15, tokens_per_minute=1_000_000),
    "cerebras": RateLimitConfig(requests_per_minute=30, tokens_per_minute=60_000),
}

# Limits applied to providers without an entry of their own
FALLBACK_LIMITS = DEFAULT_LIMITS["groq"]


def _override_fields(override: Any) -> Dict[str, Any]:
    """Non-empty fields of an override (dataclass, pydantic model or mapping)."""
    if override is None:
        return {}
    if isinstance(override, Mapping):
        raw = dict(override)
    elif dataclasses.is_dataclass(override):
        raw = dataclasses.asdict(override)
    else:
        raw = override.model_dump()
    return {k: v for k, v in raw.items() if v is not None}


class RateLimiter:
    """In-memory rate limit tracker.

    Not a singleton: each orchestrator owns its own instance. All state
    changes happen under a lock, so concurrent requests (tasks on one loop
    or threads) never interleave a read-modify-write.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, RateLimitState] = {}
        self._limits: Dict[str, RateLimitConfig] = dict(DEFAULT_LIMITS)

        for provider, override in (overrides or {}).items():
            base = self._limits.get(provider, FALLBACK_LIMITS)
            self._limits[provider] = dataclasses.replace(
                base, **_override_fields(override)
            )

    def limits_for(self, provider: str) -> RateLimitConfig:
        return self._limits.get(provider, FALLBACK_LIMITS)

    # =========================================================================
    # Queries
    # =========================================================================

    def can_use(self, provider: str) -> bool:
        """Check whether a provider can accept a new request right now."""
        with self._lock:
            state = self._get_state(provider)
            now = self._clock()

            if state.is_limited and now < state.resets_at:
                return False

            if now >= state.resets_at:
                state = self._reset_window(provider)

            return state.requests_remaining > 0 and state.tokens_remaining > 0

    def get_all_states(self) -> Dict[str, RateLimitState]:
        """Snapshot of every known provider's state (copies, safe to hand out)."""
        with self._lock:
            providers = list(self._limits)
            providers.extend(p for p in self._states if p not in self._limits)
            return {
                provider: dataclasses.replace(self._get_state(provider))
                for provider in providers
            }

    # =========================================================================
    # Recording
    # =========================================================================

    def record_usage(self, provider: str, tokens_used: int) -> None:
        """Record one successful request. Call only after the call succeeded."""
        with self._lock:
            state = self._get_state(provider)
            state.requests_remaining = max(0, state.requests_remaining - 1)
            state.tokens_remaining = max(0, state.tokens_remaining - max(0, tokens_used))
            state.consecutive_errors = 0
            state.last_error = None

    def record_success(
        self,
        provider: str,
        usage: Optional[RequestUsage],
        quota: Optional[QuotaHint] = None,
    ) -> None:
        """Charge a successful response, then fold in any header-reported quota."""
        tokens = usage.total_tokens if usage is not None else 0
        self.record_usage(provider, tokens or USAGE_ESTIMATE_TOKENS)
        self.apply_quota_hint(provider, quota)

    def record_rate_limit(
        self, provider: str, retry_after: Optional[float] = None
    ) -> None:
        """Put a provider into backoff after a 429."""
        with self._lock:
            state = self._get_state(provider)
            configured = self.limits_for(provider).backoff_seconds
            backoff = min(retry_after or configured, configured * MAX_BACKOFF_FACTOR)

            state.is_limited = True
            state.requests_remaining = 0
            state.consecutive_errors += 1
            state.resets_at = self._clock() + backoff
            state.last_error = "rate_limited"

        logger.warning(f"{provider} rate limited, backing off {backoff:.0f}s")

    def record_error(self, provider: str, error: str) -> None:
        """Record a non-429 failure; repeated failures disable the provider."""
        with self._lock:
            state = self._get_state(provider)
            state.consecutive_errors += 1
            state.last_error = error

            if state.consecutive_errors >= ERROR_THRESHOLD:
                backoff = self.limits_for(provider).backoff_seconds * 2
                state.is_limited = True
                state.resets_at = self._clock() + backoff
                logger.warning(
                    f"{provider} disabled for {backoff:.0f}s after "
                    f"{state.consecutive_errors} consecutive errors"
                )

    def apply_quota_hint(self, provider: str, hint: Optional[QuotaHint]) -> None:
        """Clamp remaining counters down to what the backend reported.

        Header values only ever lower the local estimate; they never raise it.
        """
        if hint is None:
            return
        with self._lock:
            state = self._get_state(provider)
            if hint.remaining_requests is not None:
                state.requests_remaining = max(
                    0, min(state.requests_remaining, hint.remaining_requests)
                )
            if hint.remaining_tokens is not None:
                state.tokens_remaining = max(
                    0, min(state.tokens_remaining, hint.remaining_tokens)
                )

    def reset(self, provider: Optional[str] = None) -> None:
        """Forget tracked state for one provider, or for all of them."""
        with self._lock:
            if provider is None:
                self._states.clear()
            else:
                self._states.pop(provider, None)

    # =========================================================================
    # Internal (call with the lock held)
    # =========================================================================

    def _get_state(self, provider: str) -> RateLimitState:
        state = self._states.get(provider)
        if state is None:
            state = self._reset_window(provider)
        return state

    def _reset_window(self, provider: str) -> RateLimitState:
        limit = self.limits_for(provider)
        state = RateLimitState(
            provider=provider,
            requests_remaining=limit.requests_per_minute,
            tokens_remaining=limit.tokens_per_minute,
            resets_at=self._clock() + WINDOW_SECONDS,
        )
        self._states[provider] = state
        return state
