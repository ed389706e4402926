"""Canonical data model shared by the classifier, adapters and orchestrator.

Every provider adapter translates into and out of these types; nothing in
here knows about a vendor wire format. Runtime values are plain (mostly
frozen) dataclasses; the model-produced structured answer is validated with
pydantic since it comes from untrusted text.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic_ai.tools import ToolDefinition
from pydantic_ai.usage import RequestUsage

__all__ = [
    "MessageCategory",
    "IntentClassification",
    "StateChangeType",
    "ContentContext",
    "OrchestratorInput",
    "ClassificationResult",
    "ProviderCapabilities",
    "RateLimitConfig",
    "RateLimitState",
    "QuotaHint",
    "RoutingDecision",
    "TextPart",
    "ImagePart",
    "ContentPart",
    "ChatMessage",
    "ToolCall",
    "ToolDefinition",
    "NamedToolChoice",
    "ToolChoice",
    "ChatRequest",
    "ToolChatRequest",
    "ChatResponse",
    "ToolChatResponse",
    "FinishReason",
    "RequestUsage",
    "StateChange",
    "StructuredResponse",
    "OrchestratorResult",
    "add_usage",
]


# =============================================================================
# Enums
# =============================================================================


class MessageCategory(str, Enum):
    """Routing category assigned by the classifier."""

    SIMPLE_CHAT = "simple_chat"
    COMPLEX_REASONING = "complex_reasoning"
    WEB_SEARCH = "web_search"
    VISION = "vision"
    CODE_TASK = "code_task"
    STATE_UPDATE = "state_update"


class IntentClassification(str, Enum):
    """Intent the model assigns to the user's message in its structured answer."""

    CAPTURE = "capture"
    TASK = "task"
    QUESTION = "question"
    CONTENT_CONNECT = "content_connect"
    UPDATE = "update"


class StateChangeType(str, Enum):
    """Kinds of state change the model may propose."""

    ADD_TODO = "add_todo"
    UPDATE_GOAL = "update_goal"
    ADD_CAPTURE = "add_capture"
    UPDATE_STATUS = "update_status"


# =============================================================================
# Request side
# =============================================================================


@dataclass(frozen=True)
class ContentContext:
    """Structured context shared alongside the message text."""

    url: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    image_base64: Optional[str] = None
    image_mime_type: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_image(self) -> bool:
        return bool(self.image_base64)


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """Inline image, base64 encoded."""

    data: str
    mime_type: str = "image/jpeg"


ContentPart = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    # Opaque Gemini thoughtSignature, echoed back on the next turn
    signature: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class ChatMessage:
    """One turn of a conversation in the canonical representation.

    ``tool_call_id`` and ``name`` are only meaningful for ``role="tool"``;
    ``tool_calls`` is only set on assistant turns that requested tools.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, Tuple[ContentPart, ...]]
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.content, list):
            object.__setattr__(self, "content", tuple(self.content))
        if isinstance(self.tool_calls, list):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def text(self) -> str:
        """Text content with image parts dropped."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def has_image(self) -> bool:
        if isinstance(self.content, str):
            return False
        return any(isinstance(p, ImagePart) for p in self.content)

    @classmethod
    def tool_result(cls, call: ToolCall, result: str) -> "ChatMessage":
        return cls(role="tool", content=result, tool_call_id=call.id, name=call.name)


@dataclass(frozen=True)
class OrchestratorInput:
    """A single incoming request. Immutable for the lifetime of the call."""

    text: str
    content_context: Optional[ContentContext] = None
    # Force a specific provider (bypasses heuristic routing)
    provider: Optional[str] = None
    # Force a specific category (bypasses classification)
    category: Optional[MessageCategory] = None
    conversation_history: Tuple[ChatMessage, ...] = ()

    def __post_init__(self) -> None:
        if isinstance(self.category, str) and not isinstance(self.category, MessageCategory):
            object.__setattr__(self, "category", MessageCategory(self.category))
        if not isinstance(self.conversation_history, tuple):
            object.__setattr__(
                self, "conversation_history", tuple(self.conversation_history)
            )

    @property
    def has_image(self) -> bool:
        return self.content_context is not None and self.content_context.has_image


# =============================================================================
# Classification / routing
# =============================================================================


@dataclass(frozen=True)
class ClassificationResult:
    category: MessageCategory
    confidence: float
    requires_tools: bool
    has_image: bool
    reasoning: Optional[str] = None


@dataclass(frozen=True)
class RoutingDecision:
    """Which provider handles a request, and what to try if it fails."""

    provider: str
    category: MessageCategory
    fallback_chain: Tuple[str, ...]
    reason: str

    @property
    def chain(self) -> Tuple[str, ...]:
        return (self.provider, *self.fallback_chain)


# =============================================================================
# Provider capability and quota state
# =============================================================================


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static per-provider flags and limits."""

    chat: bool = True
    vision: bool = False
    tool_use: bool = False
    json_mode: bool = False
    web_search: bool = False
    max_context_tokens: int = 8192
    max_output_tokens: int = 1024


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_minute: int
    tokens_per_minute: int
    backoff_seconds: float = 60.0


@dataclass
class RateLimitState:
    """Rolling-window quota state for one provider."""

    provider: str
    requests_remaining: int
    tokens_remaining: int
    resets_at: float
    is_limited: bool = False
    consecutive_errors: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class QuotaHint:
    """Remaining quota reported by the backend in response headers."""

    remaining_requests: Optional[int] = None
    remaining_tokens: Optional[int] = None


# =============================================================================
# Chat request / response
# =============================================================================


@dataclass(frozen=True)
class NamedToolChoice:
    """Force the model to call one specific tool."""

    name: str


ToolChoice = Union[Literal["auto", "none"], NamedToolChoice]
FinishReason = Literal["stop", "length", "tool_calls", "error"]


@dataclass
class ChatRequest:
    messages: Sequence[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 1024
    json_mode: bool = False
    model: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return any(m.has_image for m in self.messages)


@dataclass
class ToolChatRequest(ChatRequest):
    tools: Sequence[ToolDefinition] = ()
    tool_choice: ToolChoice = "auto"


@dataclass
class ChatResponse:
    content: str
    model: str
    provider: str
    usage: Optional[RequestUsage] = None
    finish_reason: FinishReason = "stop"
    quota: Optional[QuotaHint] = None


@dataclass
class ToolChatResponse(ChatResponse):
    tool_calls: Tuple[ToolCall, ...] = ()


def add_usage(
    left: Optional[RequestUsage], right: Optional[RequestUsage]
) -> Optional[RequestUsage]:
    """Sum two optional usage records."""
    if left is None:
        return right
    if right is None:
        return left
    return RequestUsage(
        input_tokens=left.input_tokens + right.input_tokens,
        output_tokens=left.output_tokens + right.output_tokens,
    )


# =============================================================================
# Structured answer
# =============================================================================


class StateChange(BaseModel):
    """A typed state mutation proposed by the model. ``data`` is opaque."""

    type: StateChangeType
    data: Any = None

    model_config = ConfigDict(extra="ignore", use_enum_values=False)


class StructuredResponse(BaseModel):
    """The JSON object the model is instructed to emit."""

    response: str = ""
    classification: IntentClassification = IntentClassification.QUESTION
    state_changes: List[StateChange] = Field(default_factory=list)


@dataclass
class OrchestratorResult:
    """Final result of ``Orchestrator.process_message``."""

    response: str
    classification: IntentClassification
    state_changes: List[StateChange]
    provider: str
    category: MessageCategory
    usage: Optional[RequestUsage] = None
    tools_used: Optional[List[str]] = None
    agent_steps: Optional[int] = None
    routing: Optional[RoutingDecision] = None
    attempts: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape (camelCase) for callers that forward the result as JSON."""
        result: Dict[str, Any] = {
            "response": self.response,
            "classification": self.classification.value,
            "stateChanges": [
                {"type": c.type.value, "data": c.data} for c in self.state_changes
            ],
            "provider": self.provider,
            "category": self.category.value,
        }
        if self.tools_used is not None:
            result["toolsUsed"] = list(self.tools_used)
        if self.agent_steps is not None:
            result["agentSteps"] = self.agent_steps
        if self.usage is not None:
            result["usage"] = {
                "promptTokens": self.usage.input_tokens,
                "completionTokens": self.usage.output_tokens,
                "totalTokens": self.usage.total_tokens,
            }
        return result
