"""Provider adapter contract and shared HTTP helpers.

Adapters are structural: anything with the attributes and coroutines of
``LLMProvider`` can be registered. The helpers here are plain functions
(plus one small HTTP wrapper) so each adapter stays a leaf with no shared
mutable state.
"""

from __future__ import annotations

import logging
import math
import time
from contextlib import asynccontextmanager
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Protocol, runtime_checkable

import httpx

from marvin_orchestrator.errors import (
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    UnsupportedOperationError,
)
from marvin_orchestrator.models import (
    ChatRequest,
    ChatResponse,
    ProviderCapabilities,
    QuotaHint,
    ToolChatRequest,
    ToolChatResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

UNAVAILABLE_STATUS_CODES = (502, 503)

# Retry-After values beyond this are clamped
MAX_RETRY_AFTER = 3600.0


@runtime_checkable
class LLMProvider(Protocol):
    """What the orchestrator needs from a backend adapter."""

    name: str
    display_name: str
    capabilities: ProviderCapabilities

    @property
    def is_available(self) -> bool: ...

    async def chat(self, request: ChatRequest) -> ChatResponse: ...

    async def chat_with_tools(self, request: ToolChatRequest) -> ToolChatResponse: ...

    async def aclose(self) -> None: ...


# =============================================================================
# Header parsing
# =============================================================================


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        if not math.isfinite(seconds):
            return None
        return min(max(0.0, seconds), MAX_RETRY_AFTER)
    try:
        date = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return min(max(0.0, date.timestamp() - time.time()), MAX_RETRY_AFTER)


def _first_int(headers: Mapping[str, str], *keys: str) -> Optional[int]:
    for key in keys:
        raw = headers.get(key)
        if raw is None:
            continue
        try:
            return int(float(raw))
        except (TypeError, ValueError):
            continue
    return None


def parse_quota_hint(headers: Mapping[str, str]) -> Optional[QuotaHint]:
    """Read remaining quota from x-ratelimit-* headers.

    Supports the OpenAI style (``x-ratelimit-remaining-requests``) and the
    Cerebras per-window style (``x-ratelimit-remaining-tokens-minute``).
    """
    h = {k.lower(): v for k, v in headers.items()}
    requests = _first_int(
        h,
        "x-ratelimit-remaining-requests-minute",
        "x-ratelimit-remaining-requests",
    )
    tokens = _first_int(
        h,
        "x-ratelimit-remaining-tokens-minute",
        "x-ratelimit-remaining-tokens",
    )
    if requests is None and tokens is None:
        return None
    return QuotaHint(remaining_requests=requests, remaining_tokens=tokens)


# =============================================================================
# Error mapping
# =============================================================================


def error_message(response: httpx.Response) -> str:
    """Best human-readable message from an error response body."""
    text = response.text
    try:
        payload = response.json()
    except ValueError:
        return text
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return text


def error_for_status(
    provider: str,
    status: int,
    message: str,
    context: str,
    retry_after: Optional[float] = None,
) -> ProviderError:
    """Map an HTTP-like status code to the matching typed error."""
    if status == 429:
        return RateLimitError(provider, message, retry_after=retry_after)
    if status in UNAVAILABLE_STATUS_CODES:
        return ProviderUnavailableError(provider, message)
    return ProviderError(provider, context, f"HTTP {status}: {message}")


def raise_for_status(provider: str, response: httpx.Response, context: str) -> None:
    """Raise the typed error for a non-2xx response; no-op on success."""
    if response.is_success:
        return
    raise error_for_status(
        provider,
        response.status_code,
        error_message(response),
        context,
        retry_after=parse_retry_after(response.headers.get("retry-after")),
    )


@asynccontextmanager
async def transport_errors(provider: str, context: str) -> AsyncIterator[None]:
    """Map httpx transport failures to typed provider errors.

    Timeouts and dropped connections are transient (unavailable); any other
    httpx error is a plain provider error.
    """
    try:
        yield
    except httpx.TimeoutException as e:
        raise ProviderUnavailableError(provider, f"request timed out ({e!r})") from e
    except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
        raise ProviderUnavailableError(provider, f"connection failed: {e}") from e
    except httpx.HTTPError as e:
        raise ProviderError(provider, context, str(e)) from e


def decode_json(provider: str, response: httpx.Response, context: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(provider, context, f"Invalid JSON in response: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError(provider, context, "Response body is not a JSON object")
    return data


def ensure_tool_support(provider: LLMProvider) -> None:
    if not provider.capabilities.tool_use:
        raise UnsupportedOperationError(provider.name, "chat_with_tools")


# =============================================================================
# HTTP client wrapper
# =============================================================================


class ProviderHTTP:
    """Lazily created ``httpx.AsyncClient`` with an explicit per-call deadline.

    An injected client is used as-is and never closed here.
    """

    def __init__(
        self,
        provider: str,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.timeout = httpx.Timeout(timeout)
        self._client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        context: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """POST a JSON body and raise typed errors for transport or HTTP failures."""
        client = self._get_client()
        request_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        request_headers.update(headers or {})

        async with transport_errors(self.provider, context):
            response = await client.post(
                url, json=body, headers=request_headers, timeout=self.timeout
            )

        raise_for_status(self.provider, response, context)
        return response

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
