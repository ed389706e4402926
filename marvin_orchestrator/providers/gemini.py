"""Gemini provider - Google's Generative Language API via httpx.

Talks to the ``generateContent`` REST endpoint directly, without the
google-genai SDK. Gemini has the largest context window and is the only
backend with every capability (vision, tool calling, web grounding), so it
takes complex reasoning, web search and vision.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx

from marvin_orchestrator.errors import ProviderError
from marvin_orchestrator.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    FinishReason,
    ImagePart,
    NamedToolChoice,
    ProviderCapabilities,
    RequestUsage,
    TextPart,
    ToolCall,
    ToolChatRequest,
    ToolChatResponse,
    ToolChoice,
    ToolDefinition,
)
from marvin_orchestrator.providers.base import (
    DEFAULT_TIMEOUT,
    ProviderHTTP,
    decode_json,
    ensure_tool_support,
    error_for_status,
    parse_quota_hint,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# Thinking models require a thoughtSignature on echoed function calls; this
# placeholder is accepted when the original signature is unknown
BYPASS_THOUGHT_SIGNATURE = "context_engineering_is_the_way_to_go"

_FINISH_REASONS: Dict[str, FinishReason] = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "error",
    "RECITATION": "error",
    "OTHER": "error",
}

# Keys Gemini rejects in function parameter schemas
_UNSUPPORTED_SCHEMA_KEYS = frozenset({
    "$defs",
    "definitions",
    "$schema",
    "$id",
    "additionalProperties",
    "default",
    "examples",
    "const",
    "anyOf",
    "oneOf",
    "allOf",
})


def generate_tool_call_id(name: str) -> str:
    return f"call_{name}_{uuid.uuid4().hex[:8]}"


# =========================================================================
# Schema sanitizing
# =========================================================================


def _lookup_ref(ref_path: str, defs: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    for prefix in ("#/$defs/", "#/definitions/"):
        if ref_path.startswith(prefix):
            return defs.get(ref_path[len(prefix):])
    return None


def _flatten_union_to_object(
    union_items: list, defs: Dict[str, Any], resolve: Callable[[Any], Any]
) -> Dict[str, Any]:
    """Merge a union of object schemas into one object with every property.

    Gemini has no anyOf/oneOf, so a discriminated union becomes a single
    object whose properties are the union of all branches.
    """
    merged_properties: Dict[str, Any] = {}
    has_string_type = False

    for item in union_items:
        if not isinstance(item, dict):
            continue
        if "$ref" in item:
            target = _lookup_ref(item["$ref"], defs)
            if target is None:
                continue
            item = copy.deepcopy(target)

        item_type = item.get("type")
        if item_type == "string":
            has_string_type = True
        elif item_type == "object" or "properties" in item:
            for prop_name, prop_schema in item.get("properties", {}).items():
                merged_properties.setdefault(
                    prop_name, resolve(copy.deepcopy(prop_schema))
                )

    if not merged_properties:
        return {"type": "string"} if has_string_type else {"type": "object"}
    return {"type": "object", "properties": merged_properties}


def sanitize_schema_for_gemini(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite a JSON schema into the subset Gemini accepts.

    - $defs/definitions are inlined wherever a $ref points at them
    - unions of objects are merged; simple unions (``str | None``) keep the
      first non-null branch
    - allOf branches are merged
    - unsupported keys ($schema, additionalProperties, defaults, ...) dropped
    """
    if not isinstance(schema, dict):
        return schema

    schema = copy.deepcopy(schema)
    defs = schema.pop("$defs", None) or schema.pop("definitions", None) or {}

    def resolve(obj: Any) -> Any:
        if isinstance(obj, list):
            return [resolve(item) for item in obj]
        if not isinstance(obj, dict):
            return obj

        for union_key in ("anyOf", "oneOf"):
            union = obj.get(union_key)
            if not isinstance(union, list):
                continue
            object_like = [
                item for item in union
                if isinstance(item, dict)
                and ("$ref" in item or item.get("type") == "object" or "properties" in item)
            ]
            has_refs = any("$ref" in item for item in object_like)
            if len(object_like) > 1 or has_refs:
                flattened = _flatten_union_to_object(union, defs, resolve)
                if "description" in obj:
                    flattened["description"] = obj["description"]
                return flattened
            for item in union:
                if isinstance(item, dict) and item.get("type") != "null":
                    branch = dict(item)
                    if "description" in obj:
                        branch["description"] = obj["description"]
                    return resolve(branch)

        all_of = obj.get("allOf")
        if isinstance(all_of, list):
            merged: Dict[str, Any] = {}
            merged_properties: Dict[str, Any] = {}
            for item in all_of:
                if isinstance(item, dict):
                    resolved_item = resolve(item)
                    merged_properties.update(resolved_item.pop("properties", {}))
                    merged.update(resolved_item)
            if merged_properties:
                merged["properties"] = merged_properties
            merged.update({k: v for k, v in obj.items() if k != "allOf"})
            return resolve(merged)

        if "$ref" in obj:
            target = _lookup_ref(obj["$ref"], defs)
            if target is None:
                return {"type": "object"}
            resolved = resolve(copy.deepcopy(target))
            siblings = {k: v for k, v in obj.items() if k != "$ref"}
            if siblings:
                resolved.update(resolve(siblings))
            return resolved

        return {
            key: resolve(value)
            for key, value in obj.items()
            if key not in _UNSUPPORTED_SCHEMA_KEYS
        }

    return resolve(schema)


# =========================================================================
# Grounded responses
# =========================================================================


@dataclass(frozen=True)
class GroundingSource:
    uri: str
    title: str = ""


@dataclass
class GroundedChatResponse(ChatResponse):
    """Chat response answered with Google Search grounding."""

    sources: Tuple[GroundingSource, ...] = ()
    search_queries: Tuple[str, ...] = ()


# =========================================================================
# Provider
# =========================================================================


class GeminiProvider:
    name = "gemini"
    display_name = "Google Gemini"
    capabilities = ProviderCapabilities(
        chat=True,
        vision=True,
        tool_use=True,
        json_mode=True,
        web_search=True,
        max_context_tokens=1_000_000,
        max_output_tokens=8_192,
    )

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = BASE_URL,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.base_url = base_url.rstrip("/")
        self._http = ProviderHTTP(self.name, timeout, http_client)

    @property
    def is_available(self) -> bool:
        return bool(self.api_key)

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------

    async def chat(self, request: ChatRequest) -> ChatResponse:
        model = request.model or self.model
        body = self._build_body(request)
        response, data = await self._call_api(model, body, "chat")

        candidate = self._first_candidate(data, "chat")
        content = "".join(self._text_parts(candidate))
        if not content:
            raise ProviderError(self.name, "chat", "No content in response")

        return ChatResponse(
            content=content,
            model=model,
            provider=self.name,
            usage=self._parse_usage(data),
            finish_reason=self._map_finish_reason(candidate.get("finishReason")),
            quota=parse_quota_hint(response.headers),
        )

    async def chat_with_tools(self, request: ToolChatRequest) -> ToolChatResponse:
        ensure_tool_support(self)
        model = request.model or self.model
        body = self._build_body(request, allow_json_mode=False)
        if request.tools:
            body["tools"] = self._build_tools(request.tools)
            body["toolConfig"] = self._build_tool_config(request.tool_choice)

        response, data = await self._call_api(model, body, "chat_with_tools")

        candidate = self._first_candidate(data, "chat_with_tools")
        content = "".join(self._text_parts(candidate))
        tool_calls = self._parse_tool_calls(candidate)
        if not content and not tool_calls:
            raise ProviderError(self.name, "chat_with_tools", "No content in response")

        return ToolChatResponse(
            content=content,
            model=model,
            provider=self.name,
            usage=self._parse_usage(data),
            finish_reason=(
                "tool_calls"
                if tool_calls
                else self._map_finish_reason(candidate.get("finishReason"))
            ),
            quota=parse_quota_hint(response.headers),
            tool_calls=tool_calls,
        )

    async def chat_with_grounding(self, request: ChatRequest) -> GroundedChatResponse:
        """Chat with Google Search grounding enabled.

        Gemini searches the web itself and grounds its answer; the sources
        and queries it used come back alongside the text. JSON mode is not
        compatible with grounding and is ignored.
        """
        model = request.model or self.model
        body = self._build_body(request, allow_json_mode=False)
        body["tools"] = [{"googleSearch": {}}]

        response, data = await self._call_api(model, body, "chat_with_grounding")

        candidate = self._first_candidate(data, "chat_with_grounding")
        content = "".join(self._text_parts(candidate))
        if not content:
            raise ProviderError(self.name, "chat_with_grounding", "No content in response")

        metadata = candidate.get("groundingMetadata") or {}
        sources = tuple(
            GroundingSource(uri=web.get("uri", ""), title=web.get("title", ""))
            for chunk in metadata.get("groundingChunks") or []
            for web in [chunk.get("web") or {}]
            if web.get("uri")
        )

        return GroundedChatResponse(
            content=content,
            model=model,
            provider=self.name,
            usage=self._parse_usage(data),
            finish_reason=self._map_finish_reason(candidate.get("finishReason")),
            quota=parse_quota_hint(response.headers),
            sources=sources,
            search_queries=tuple(metadata.get("webSearchQueries") or ()),
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ---------------------------------------------------------------------
    # Request building
    # ---------------------------------------------------------------------

    def _build_body(
        self, request: ChatRequest, allow_json_mode: bool = True
    ) -> Dict[str, Any]:
        system_instruction, contents = self._map_messages(request.messages)

        generation_config: Dict[str, Any] = {
            "temperature": request.temperature,
            "maxOutputTokens": request.max_tokens,
        }
        # Never use JSON mode with tool calling or grounding
        if request.json_mode and allow_json_mode:
            generation_config["responseMimeType"] = "application/json"

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_instruction:
            body["systemInstruction"] = system_instruction
        return body

    def _map_messages(
        self, messages: Sequence[ChatMessage]
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """Map canonical messages to Gemini ``contents``.

        System turns become the system instruction, assistant turns become
        ``model`` turns, tool results become ``functionResponse`` parts on a
        user turn. Consecutive turns with the same role are merged since
        Gemini requires alternating roles.
        """
        contents: List[Dict[str, Any]] = []
        system_parts: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append({"text": msg.text})
                continue

            if msg.role == "tool":
                role = "user"
                parts = [{
                    "functionResponse": {
                        "name": msg.name or "unknown",
                        "response": {"result": msg.text},
                    }
                }]
            elif msg.role == "assistant":
                role = "model"
                parts = self._content_parts(msg)
                parts.extend(
                    {
                        "functionCall": {"name": call.name, "args": call.arguments},
                        "thoughtSignature": call.signature or BYPASS_THOUGHT_SIGNATURE,
                    }
                    for call in msg.tool_calls
                )
            else:
                role = "user"
                parts = self._content_parts(msg)

            if not parts:
                continue
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].extend(parts)
            else:
                contents.append({"role": role, "parts": parts})

        if not contents:
            contents = [{"role": "user", "parts": [{"text": ""}]}]

        system_instruction = {"parts": system_parts} if system_parts else None
        return system_instruction, contents

    @staticmethod
    def _content_parts(msg: ChatMessage) -> List[Dict[str, Any]]:
        if isinstance(msg.content, str):
            return [{"text": msg.content}] if msg.content else []

        parts: List[Dict[str, Any]] = []
        for part in msg.content:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                parts.append({
                    "inlineData": {"mimeType": part.mime_type, "data": part.data}
                })
        return parts

    @staticmethod
    def _build_tools(tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
        declarations = []
        for tool in tools:
            declaration: Dict[str, Any] = {
                "name": tool.name,
                "description": tool.description or "",
            }
            if tool.parameters_json_schema:
                declaration["parameters"] = sanitize_schema_for_gemini(
                    tool.parameters_json_schema
                )
            declarations.append(declaration)
        return [{"functionDeclarations": declarations}]

    @staticmethod
    def _build_tool_config(choice: ToolChoice) -> Dict[str, Any]:
        if isinstance(choice, NamedToolChoice):
            return {
                "functionCallingConfig": {
                    "mode": "ANY",
                    "allowedFunctionNames": [choice.name],
                }
            }
        mode = "NONE" if choice == "none" else "AUTO"
        return {"functionCallingConfig": {"mode": mode}}

    # ---------------------------------------------------------------------
    # API call and response parsing
    # ---------------------------------------------------------------------

    async def _call_api(
        self, model: str, body: Dict[str, Any], context: str
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        url = f"{self.base_url}/models/{model}:generateContent"
        response = await self._http.post_json(
            url, body, context, headers={"x-goog-api-key": self.api_key}
        )
        data = decode_json(self.name, response, context)

        # API-level errors can arrive in a 200 body
        error = data.get("error")
        if isinstance(error, dict):
            raise error_for_status(
                self.name,
                int(error.get("code") or 500),
                str(error.get("message") or error.get("status") or "unknown error"),
                "api_response",
            )
        return response, data

    def _first_candidate(self, data: Dict[str, Any], context: str) -> Dict[str, Any]:
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            reason = feedback.get("blockReason")
            detail = "No candidates in response"
            if reason:
                detail += f" (blocked: {reason})"
            raise ProviderError(self.name, context, detail)
        return candidates[0]

    @staticmethod
    def _text_parts(candidate: Dict[str, Any]) -> List[str]:
        parts = (candidate.get("content") or {}).get("parts") or []
        return [
            part["text"]
            for part in parts
            if isinstance(part.get("text"), str) and not part.get("thought")
        ]

    @staticmethod
    def _parse_tool_calls(candidate: Dict[str, Any]) -> Tuple[ToolCall, ...]:
        parts = (candidate.get("content") or {}).get("parts") or []
        calls = []
        for part in parts:
            fc = part.get("functionCall")
            if not fc or not fc.get("name"):
                continue
            calls.append(ToolCall(
                id=fc.get("id") or generate_tool_call_id(fc["name"]),
                name=fc["name"],
                arguments=fc.get("args") or {},
                signature=part.get("thoughtSignature"),
            ))
        return tuple(calls)

    @staticmethod
    def _parse_usage(data: Dict[str, Any]) -> Optional[RequestUsage]:
        meta = data.get("usageMetadata")
        if not meta:
            return None
        return RequestUsage(
            input_tokens=meta.get("promptTokenCount", 0),
            output_tokens=meta.get("candidatesTokenCount", 0),
        )

    @staticmethod
    def _map_finish_reason(reason: Optional[str]) -> FinishReason:
        return _FINISH_REASONS.get(reason or "", "stop")
