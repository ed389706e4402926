"""Parse the model's structured JSON answer, tolerating anything it sends."""

import json
import logging
import re
from typing import Any, List

from pydantic import ValidationError

from marvin_orchestrator.models import (
    IntentClassification,
    StateChange,
    StructuredResponse,
)

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")


def strip_code_fence(raw: str) -> str:
    """Remove an optional leading ```json (or ```) fence and trailing fence."""
    text = raw.strip()
    text = _LEADING_FENCE.sub("", text)
    text = _TRAILING_FENCE.sub("", text)
    return text.strip()


def _response_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _classification(value: Any) -> IntentClassification:
    try:
        return IntentClassification(value)
    except (TypeError, ValueError):
        return IntentClassification.QUESTION


def _state_changes(value: Any) -> List[StateChange]:
    if not isinstance(value, list):
        return []
    changes = []
    for entry in value:
        try:
            changes.append(StateChange.model_validate(entry))
        except ValidationError:
            logger.debug(f"Dropping invalid state change: {entry!r}")
    return changes


def parse_structured_response(raw: str) -> StructuredResponse:
    """Decode the model's answer into a ``StructuredResponse``.

    Never raises for any string. Text that is not a JSON object becomes the
    response itself, classified as a question with no state changes.
    """
    raw = raw or ""
    cleaned = strip_code_fence(raw)

    try:
        decoded = json.loads(cleaned)
    except (RecursionError, ValueError):
        decoded = None

    if not isinstance(decoded, dict):
        logger.debug("Model answer is not a JSON object, using raw text")
        return StructuredResponse(
            response=raw.strip(),
            classification=IntentClassification.QUESTION,
            state_changes=[],
        )

    return StructuredResponse(
        response=_response_text(decoded.get("response")),
        classification=_classification(decoded.get("classification")),
        state_changes=_state_changes(decoded.get("stateChanges")),
    )
