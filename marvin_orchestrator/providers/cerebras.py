"""Cerebras provider - Qwen over the OpenAI-compatible API.

Text only: image parts are stripped before sending. Supports tool calling,
one call per turn (``parallel_tool_calls`` is always off).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from marvin_orchestrator.errors import ProviderError
from marvin_orchestrator.models import (
    ChatRequest,
    ChatResponse,
    ProviderCapabilities,
    ToolChatRequest,
    ToolChatResponse,
)
from marvin_orchestrator.providers import openai_compat
from marvin_orchestrator.providers.base import (
    DEFAULT_TIMEOUT,
    ProviderHTTP,
    decode_json,
    ensure_tool_support,
    parse_quota_hint,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "qwen-3-235b-a22b-instruct-2507"
API_URL = "https://api.cerebras.ai/v1/chat/completions"


class CerebrasProvider:
    name = "cerebras"
    display_name = "Cerebras (Qwen)"
    capabilities = ProviderCapabilities(
        chat=True,
        vision=False,
        tool_use=True,
        json_mode=True,
        web_search=False,
        max_context_tokens=131_072,
        max_output_tokens=4_096,
    )

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        api_url: str = API_URL,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.api_url = api_url
        self._http = ProviderHTTP(self.name, timeout, http_client)

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _call(
        self, body: Dict[str, Any], context: str
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        response = await self._http.post_json(
            self.api_url,
            body,
            context,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return response, decode_json(self.name, response, context)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        model = request.model or self.model
        if request.has_image:
            logger.debug("Cerebras has no vision support, sending text only")
        body = openai_compat.build_body(model, request, allow_images=False)

        response, data = await self._call(body, "chat")
        message, finish_reason = openai_compat.first_choice(self.name, data, "chat")
        content = message.get("content")
        if not content:
            raise ProviderError(self.name, "chat", "No content in response")

        return ChatResponse(
            content=content,
            model=data.get("model") or model,
            provider=self.name,
            usage=openai_compat.parse_usage(data),
            finish_reason=openai_compat.map_finish_reason(finish_reason),
            quota=parse_quota_hint(response.headers),
        )

    async def chat_with_tools(self, request: ToolChatRequest) -> ToolChatResponse:
        ensure_tool_support(self)
        model = request.model or self.model
        body = openai_compat.build_body(model, request, allow_images=False)
        if request.tools:
            body["tools"] = openai_compat.tool_specs(request.tools)
            body["tool_choice"] = openai_compat.tool_choice_payload(request.tool_choice)
            body["parallel_tool_calls"] = False

        response, data = await self._call(body, "chat_with_tools")
        message, finish_reason = openai_compat.first_choice(
            self.name, data, "chat_with_tools"
        )
        tool_calls = openai_compat.parse_tool_calls(self.name, message.get("tool_calls"))
        content = message.get("content") or ""
        if not content and not tool_calls:
            raise ProviderError(self.name, "chat_with_tools", "No content in response")

        return ToolChatResponse(
            content=content,
            model=data.get("model") or model,
            provider=self.name,
            usage=openai_compat.parse_usage(data),
            finish_reason=(
                "tool_calls"
                if tool_calls
                else openai_compat.map_finish_reason(finish_reason)
            ),
            quota=parse_quota_hint(response.headers),
            tool_calls=tool_calls,
        )

    async def aclose(self) -> None:
        await self._http.aclose()
