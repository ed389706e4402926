"""System prompt and user-turn construction."""

from typing import List, Optional, Union

from marvin_orchestrator.models import (
    ChatMessage,
    ContentPart,
    ImagePart,
    OrchestratorInput,
    TextPart,
)
from marvin_orchestrator.state import StateSnapshot

DEFAULT_IMAGE_MIME_TYPE = "image/jpeg"

SYSTEM_PROMPT_TEMPLATE = """\
You are {assistant_name}, an AI Chief of Staff for {owner_name}. You are friendly, casual, and proactive. You keep things concise.

Your job is to process incoming messages (voice notes, texts, shared links) and:
1. Classify the intent
2. Respond helpfully
3. Suggest state changes (new todos, goal updates, captures, status updates)

## User Context

### Current Priorities
{current}

### Goals
{goals}

### Active Todos
{todos}

## Intent Classification

Classify every message into EXACTLY ONE of these categories:
- **capture**: User wants to save a thought, idea, note, or piece of information for later.
- **task**: User is describing something they need to do, an action item, or a reminder.
- **question**: User is asking a question and expects an answer or advice.
- **content_connect**: User shared a URL or content and wants it connected to their goals/projects.
- **update**: User is reporting progress or a status change on an existing goal or task.

## Response Guidelines

- For **capture**: Acknowledge briefly. Keep it to 1-2 sentences.
- For **task**: Confirm the task and suggest a clear, actionable todo item.
- For **question**: Answer helpfully. Be thorough but concise.
- For **content_connect**: Summarize the content and explain how it connects to existing goals/projects.
- For **update**: Acknowledge the progress and update the relevant status.

When content context is provided (URL, title, summary), use it to give better responses and connect it to the user's goals.

## Response Format

You MUST respond with valid JSON and nothing else. No markdown fences, no extra text.

{{
  "response": "Your natural language response to the user",
  "classification": "capture|task|question|content_connect|update",
  "stateChanges": [
    {{
      "type": "add_todo|update_goal|add_capture|update_status",
      "data": {{ ... }}
    }}
  ]
}}

### stateChanges data shapes

- add_todo: {{ "text": "the task description", "context": "optional context" }}
- update_goal: {{ "goal": "goal name", "status": "in_progress|done|blocked", "notes": "optional notes" }}
- add_capture: {{ "text": "the captured thought/note", "tags": ["optional", "tags"] }}
- update_status: {{ "item": "what is being updated", "status": "new status", "notes": "optional notes" }}

If no state changes are needed, return an empty array for stateChanges."""


def build_system_prompt(
    state: StateSnapshot,
    assistant_name: str = "MARVIN",
    owner_name: str = "the user",
) -> str:
    return SYSTEM_PROMPT_TEMPLATE.format(
        assistant_name=assistant_name,
        owner_name=owner_name,
        current=state.current,
        goals=state.goals,
        todos=state.todos,
    )


def build_text_content(request: OrchestratorInput) -> str:
    """Message text, prefixed with any shared URL, title and summary."""
    lines: List[str] = []
    ctx = request.content_context
    if ctx is not None:
        if ctx.url:
            lines.append(f"[Shared Content]\nURL: {ctx.url}")
        if ctx.title:
            lines.append(f"Title: {ctx.title}")
        if ctx.summary:
            lines.append(f"Summary: {ctx.summary}")
        if lines:
            lines.append("")
    lines.append(request.text)
    return "\n".join(lines)


def build_user_content(
    request: OrchestratorInput,
) -> Union[str, List[ContentPart]]:
    """User turn content: plain text, or image then text when an image is shared."""
    text = build_text_content(request)
    ctx = request.content_context
    if ctx is None or not ctx.has_image:
        return text
    return [
        ImagePart(
            data=ctx.image_base64,
            mime_type=ctx.image_mime_type or DEFAULT_IMAGE_MIME_TYPE,
        ),
        TextPart(text=text),
    ]


def build_messages(
    request: OrchestratorInput,
    state: StateSnapshot,
    assistant_name: str = "MARVIN",
    owner_name: Optional[str] = None,
) -> List[ChatMessage]:
    """System prompt, then any prior conversation, then the new user turn."""
    messages = [
        ChatMessage(
            role="system",
            content=build_system_prompt(
                state, assistant_name, owner_name or "the user"
            ),
        )
    ]
    messages.extend(request.conversation_history)
    messages.append(ChatMessage(role="user", content=build_user_content(request)))
    return messages
