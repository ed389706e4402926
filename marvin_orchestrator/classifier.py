"""Message Classifier - zero-call routing heuristics.

Assigns a routing category to a request from keyword patterns and input
properties alone, so that classification never spends a rate-limited API
call. Rules are evaluated in a fixed order and the first match wins:

1. Forced category (from the caller)
2. Image payload -> vision
3. Web intent or a URL -> web_search (requires tools)
4. State mutation intent -> state_update
5. Code patterns -> code_task
6. Long input or analysis wording -> complex_reasoning
7. Everything else -> simple_chat
"""

import logging
import re
from typing import List, Pattern

from marvin_orchestrator.models import (
    ClassificationResult,
    MessageCategory,
    OrchestratorInput,
)

logger = logging.getLogger(__name__)

# Messages longer than this are treated as complex reasoning
LONG_MESSAGE_THRESHOLD = 500


def _compile(patterns: List[str]) -> List[Pattern[str]]:
    return [re.compile(p) for p in patterns]


URL_PATTERN = re.compile(r"https?://")

WEB_SEARCH_PATTERNS = _compile([
    r"what('s| is) the (latest|current|recent)",
    r"search for",
    r"look up",
    r"find (me )?(info|information|details|articles)",
    r"(today'?s?|current|latest) (news|weather|price|stock|score)",
    r"what happened",
    r"who (won|is winning)",
    r"when (is|does|did)",
])

STATE_UPDATE_PATTERNS = _compile([
    r"add (a )?(todo|task|reminder)",
    r"remind me",
    r"(update|change|set) (my )?(goal|status|priority)",
    r"i (did|finished|completed|done with)",
    r"mark .* (as )?(done|complete)",
    r"capture (this|that)",
    r"save (this|that)",
    r"note (this|that) down",
])

CODE_TASK_PATTERNS = _compile([
    r"```",
    r"write (a )?(function|code|script|program|class)",
    r"fix (this |the |my )?(bug|error|issue|code)",
    r"how (do i|to) (implement|code|program|build)",
    r"(explain|debug|refactor) (this |the )?(code|function|class)",
    r"what does this code",
    r"\b(typescript|javascript|python|java|rust|go|sql)\b",
    r"api (endpoint|route|call)",
])

COMPLEX_REASONING_PATTERNS = _compile([
    r"analyze",
    r"compare",
    r"pros and cons",
    r"help me (think|plan|decide|figure out)",
    r"what (should|would) (i|you|we)",
    r"break (this |it )down",
    r"step by step",
    r"trade.?offs?",
])

# Categories whose handling needs the agent loop
TOOL_CATEGORIES = frozenset({MessageCategory.WEB_SEARCH})


def _first_match(patterns: List[Pattern[str]], text: str) -> str:
    """Return the first pattern that matches, or an empty string."""
    for pattern in patterns:
        if pattern.search(text):
            return pattern.pattern
    return ""


class MessageClassifier:
    """Lightweight, deterministic classifier. Pure and total: never raises."""

    def classify(self, request: OrchestratorInput) -> ClassificationResult:
        has_image = request.has_image

        if request.category is not None:
            return ClassificationResult(
                category=request.category,
                confidence=1.0,
                requires_tools=request.category in TOOL_CATEGORIES,
                has_image=has_image,
                reasoning="forced category",
            )

        text = (request.text or "").lower().strip()

        if has_image:
            return self._result(
                MessageCategory.VISION, 0.95, "image payload", has_image=True
            )

        context = request.content_context
        if context is not None and context.url:
            return self._result(MessageCategory.WEB_SEARCH, 0.8, "url in context")
        if URL_PATTERN.search(text):
            return self._result(MessageCategory.WEB_SEARCH, 0.8, "url in text")

        matched = _first_match(WEB_SEARCH_PATTERNS, text)
        if matched:
            return self._result(MessageCategory.WEB_SEARCH, 0.8, matched)

        matched = _first_match(STATE_UPDATE_PATTERNS, text)
        if matched:
            return self._result(MessageCategory.STATE_UPDATE, 0.85, matched)

        matched = _first_match(CODE_TASK_PATTERNS, text)
        if matched:
            return self._result(MessageCategory.CODE_TASK, 0.75, matched)

        if len(text) > LONG_MESSAGE_THRESHOLD:
            return self._result(
                MessageCategory.COMPLEX_REASONING, 0.7, "long message"
            )
        matched = _first_match(COMPLEX_REASONING_PATTERNS, text)
        if matched:
            return self._result(MessageCategory.COMPLEX_REASONING, 0.7, matched)

        return self._result(MessageCategory.SIMPLE_CHAT, 0.6, "default")

    @staticmethod
    def _result(
        category: MessageCategory,
        confidence: float,
        reasoning: str,
        has_image: bool = False,
    ) -> ClassificationResult:
        logger.debug(f"Classified as {category.value} ({reasoning})")
        return ClassificationResult(
            category=category,
            confidence=confidence,
            requires_tools=category in TOOL_CATEGORIES,
            has_image=has_image,
            reasoning=reasoning,
        )
