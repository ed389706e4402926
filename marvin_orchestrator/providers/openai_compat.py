"""Wire helpers for OpenAI-compatible chat completion APIs (Groq, Cerebras)."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from marvin_orchestrator.errors import ProviderError
from marvin_orchestrator.models import (
    ChatMessage,
    ChatRequest,
    FinishReason,
    ImagePart,
    NamedToolChoice,
    RequestUsage,
    TextPart,
    ToolCall,
    ToolChoice,
    ToolDefinition,
)

_FINISH_REASONS: Dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "tool_calls": "tool_calls",
}


def _format_content(message: ChatMessage, allow_images: bool) -> Any:
    if isinstance(message.content, str):
        return message.content
    if not allow_images or not message.has_image:
        return message.text

    parts: List[Dict[str, Any]] = []
    for part in message.content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{part.mime_type};base64,{part.data}"},
            })
    return parts


def _as_parts(content: Any) -> List[Dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content)


def _merge_content(left: Any, right: Any) -> Any:
    if isinstance(left, str) and isinstance(right, str):
        return f"{left}\n\n{right}" if left else right
    return _as_parts(left) + _as_parts(right)


def format_messages(
    messages: Sequence[ChatMessage], *, allow_images: bool
) -> List[Dict[str, Any]]:
    """Convert canonical messages to the chat completions wire format.

    Image parts become ``image_url`` data URIs when the backend has vision,
    otherwise they are dropped and only the text survives. Consecutive user
    or assistant turns are merged into one.
    """
    formatted: List[Dict[str, Any]] = []

    for msg in messages:
        content = _format_content(msg, allow_images)

        if msg.role == "tool":
            entry: Dict[str, Any] = {"role": "tool", "content": content}
            if msg.tool_call_id:
                entry["tool_call_id"] = msg.tool_call_id
            formatted.append(entry)
            continue

        if msg.role == "assistant" and msg.tool_calls:
            formatted.append({
                "role": "assistant",
                "content": content or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.name,
                            "arguments": json.dumps(call.arguments),
                        },
                    }
                    for call in msg.tool_calls
                ],
            })
            continue

        last = formatted[-1] if formatted else None
        if (
            last is not None
            and msg.role in ("user", "assistant")
            and last["role"] == msg.role
            and "tool_calls" not in last
        ):
            last["content"] = _merge_content(last["content"], content)
            continue

        formatted.append({"role": msg.role, "content": content})

    return formatted


def build_body(
    model: str,
    request: ChatRequest,
    *,
    allow_images: bool,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model,
        "messages": format_messages(request.messages, allow_images=allow_images),
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
    }
    if request.json_mode:
        body["response_format"] = {"type": "json_object"}
    return body


def tool_specs(tools: Sequence[ToolDefinition]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description or "",
                "parameters": tool.parameters_json_schema,
            },
        }
        for tool in tools
    ]


def tool_choice_payload(choice: ToolChoice) -> Any:
    if isinstance(choice, NamedToolChoice):
        return {"type": "function", "function": {"name": choice.name}}
    return choice


def map_finish_reason(reason: Optional[str]) -> FinishReason:
    return _FINISH_REASONS.get(reason or "", "stop")


def parse_usage(data: Dict[str, Any]) -> Optional[RequestUsage]:
    usage = data.get("usage")
    if not isinstance(usage, dict):
        return None
    return RequestUsage(
        input_tokens=int(usage.get("prompt_tokens") or 0),
        output_tokens=int(usage.get("completion_tokens") or 0),
    )


def first_choice(
    provider: str, data: Dict[str, Any], context: str
) -> Tuple[Dict[str, Any], Optional[str]]:
    """Return the first choice's message and raw finish reason."""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise ProviderError(provider, context, "No choices in response")
    choice = choices[0]
    return choice.get("message") or {}, choice.get("finish_reason")


def parse_tool_calls(
    provider: str, raw_calls: Optional[Sequence[Dict[str, Any]]]
) -> Tuple[ToolCall, ...]:
    """Decode tool calls; argument strings are JSON and must decode to objects."""
    calls: List[ToolCall] = []
    for raw in raw_calls or ():
        function = raw.get("function") or {}
        name = function.get("name")
        if not name:
            raise ProviderError(provider, "chat_with_tools", "Tool call without a name")

        arguments = function.get("arguments")
        if isinstance(arguments, str):
            if not arguments.strip():
                arguments = {}
            else:
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError as e:
                    raise ProviderError(
                        provider,
                        "chat_with_tools",
                        f"Undecodable arguments for tool {name}: {e}",
                    ) from e
        elif arguments is None:
            arguments = {}

        if not isinstance(arguments, dict):
            raise ProviderError(
                provider,
                "chat_with_tools",
                f"Arguments for tool {name} are not a JSON object",
            )

        calls.append(ToolCall(id=raw.get("id") or f"call_{name}", name=name, arguments=arguments))
    return tuple(calls)
