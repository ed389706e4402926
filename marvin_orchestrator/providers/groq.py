"""Groq provider - Llama models over the OpenAI-compatible API.

Fast and cheap, so it takes simple chat, code and state updates. Switches
to the Llama 4 Scout vision model automatically when a message carries an
image. No tool calling.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from marvin_orchestrator.errors import ProviderError, UnsupportedOperationError
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
    parse_quota_hint,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"
VISION_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"
API_URL = "https://api.groq.com/openai/v1/chat/completions"


class GroqProvider:
    name = "groq"
    display_name = "Groq (Llama)"
    capabilities = ProviderCapabilities(
        chat=True,
        vision=True,
        tool_use=False,
        json_mode=True,
        web_search=False,
        max_context_tokens=131_072,
        max_output_tokens=4_096,
    )

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        vision_model: Optional[str] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        api_url: str = API_URL,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.vision_model = vision_model or VISION_MODEL
        self.api_url = api_url
        self._http = ProviderHTTP(self.name, timeout, http_client)

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        model = request.model or (
            self.vision_model if request.has_image else self.model
        )
        if request.has_image:
            logger.debug(f"Image payload, using {model}")
        body = openai_compat.build_body(model, request, allow_images=True)

        response = await self._http.post_json(
            self.api_url,
            body,
            "chat",
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        data = decode_json(self.name, response, "chat")

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
        raise UnsupportedOperationError(self.name, "chat_with_tools")

    async def aclose(self) -> None:
        await self._http.aclose()
