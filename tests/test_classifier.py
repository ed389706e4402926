"""Tests for the zero-call message classifier."""

import pytest

from marvin_orchestrator.classifier import LONG_MESSAGE_THRESHOLD, MessageClassifier
from marvin_orchestrator.models import ContentContext, MessageCategory, OrchestratorInput


@pytest.fixture
def classifier():
    return MessageClassifier()


def classify(classifier, text="", **kwargs):
    return classifier.classify(OrchestratorInput(text=text, **kwargs))


class TestForcedCategory:
    def test_forced_category_wins(self, classifier):
        """A forced category is returned verbatim with full confidence."""
        result = classify(
            classifier,
            "search for the latest news",
            category=MessageCategory.CODE_TASK,
        )
        assert result.category == MessageCategory.CODE_TASK
        assert result.confidence == 1.0
        assert result.requires_tools is False

    def test_forced_web_search_requires_tools(self, classifier):
        result = classify(classifier, "hi", category=MessageCategory.WEB_SEARCH)
        assert result.requires_tools is True

    def test_forced_category_accepts_string_value(self, classifier):
        result = classify(classifier, "hi", category="vision")
        assert result.category == MessageCategory.VISION

    def test_forced_category_reports_image(self, classifier):
        ctx = ContentContext(image_base64="aGVsbG8=")
        result = classify(
            classifier, "hi", content_context=ctx, category=MessageCategory.SIMPLE_CHAT
        )
        assert result.has_image is True


class TestRulePrecedence:
    def test_image_is_vision(self, classifier):
        """An image payload beats every text heuristic."""
        ctx = ContentContext(image_base64="aGVsbG8=", url="https://example.com")
        result = classify(classifier, "search for this and add a todo", content_context=ctx)
        assert result.category == MessageCategory.VISION
        assert result.confidence == 0.95
        assert result.has_image is True
        assert result.requires_tools is False

    def test_context_url_is_web_search(self, classifier):
        ctx = ContentContext(url="https://example.com/article")
        result = classify(classifier, "thoughts?", content_context=ctx)
        assert result.category == MessageCategory.WEB_SEARCH
        assert result.requires_tools is True
        assert result.reasoning == "url in context"

    def test_url_in_text_is_web_search(self, classifier):
        result = classify(classifier, "check http://example.com please")
        assert result.category == MessageCategory.WEB_SEARCH
        assert result.confidence == 0.8

    @pytest.mark.parametrize(
        "text",
        [
            "What's the latest on the election?",
            "search for python conferences",
            "Can you look up the opening hours",
            "find me articles about sleep",
            "today's weather in Paris",
            "who won the game last night",
            "when is the next eclipse",
        ],
    )
    def test_web_search_patterns(self, classifier, text):
        assert classify(classifier, text).category == MessageCategory.WEB_SEARCH

    def test_web_search_beats_state_update(self, classifier):
        result = classify(classifier, "search for a gym and remind me to sign up")
        assert result.category == MessageCategory.WEB_SEARCH

    @pytest.mark.parametrize(
        "text",
        [
            "add a todo to call mom",
            "remind me to water the plants",
            "update my goal for running",
            "I finished the report",
            "mark the invoice task as done",
            "capture this idea",
            "note this down",
        ],
    )
    def test_state_update_patterns(self, classifier, text):
        result = classify(classifier, text)
        assert result.category == MessageCategory.STATE_UPDATE
        assert result.confidence == 0.85

    def test_state_update_beats_code(self, classifier):
        result = classify(classifier, "add a task to refactor the python module")
        assert result.category == MessageCategory.STATE_UPDATE

    @pytest.mark.parametrize(
        "text",
        [
            "```\nprint('x')\n```",
            "write a function that sorts names",
            "fix this bug please",
            "how do i implement a trie",
            "explain this code",
            "is rust faster than go",
            "design an api endpoint for users",
        ],
    )
    def test_code_patterns(self, classifier, text):
        result = classify(classifier, text)
        assert result.category == MessageCategory.CODE_TASK
        assert result.confidence == 0.75

    def test_language_names_need_word_boundaries(self, classifier):
        """'ago' and 'cargo' are not the Go language."""
        result = classify(classifier, "a long time ago I bought cargo pants")
        assert result.category == MessageCategory.SIMPLE_CHAT

    def test_code_beats_complex_reasoning(self, classifier):
        result = classify(classifier, "compare python and java for scripting")
        assert result.category == MessageCategory.CODE_TASK

    @pytest.mark.parametrize(
        "text",
        [
            "analyze my spending habits",
            "pros and cons of moving",
            "help me decide between two offers",
            "what should I focus on this week",
            "walk me through it step by step",
            "what are the trade-offs here",
        ],
    )
    def test_complex_reasoning_patterns(self, classifier, text):
        result = classify(classifier, text)
        assert result.category == MessageCategory.COMPLEX_REASONING
        assert result.confidence == 0.7

    def test_long_plain_text_is_complex_reasoning(self, classifier):
        """600 characters with no other heuristic goes to complex reasoning."""
        text = "lorem ipsum dolor sit amet " * 23
        text = text[:600]
        assert len(text) == 600
        result = classify(classifier, text)
        assert result.category == MessageCategory.COMPLEX_REASONING
        assert result.reasoning == "long message"

    def test_threshold_is_exclusive(self, classifier):
        text = "a" * LONG_MESSAGE_THRESHOLD
        assert classify(classifier, text).category == MessageCategory.SIMPLE_CHAT

    def test_default_is_simple_chat(self, classifier):
        result = classify(classifier, "hey, how are you?")
        assert result.category == MessageCategory.SIMPLE_CHAT
        assert result.confidence == 0.6
        assert result.requires_tools is False
        assert result.has_image is False


class TestTotality:
    @pytest.mark.parametrize("text", ["", "   ", "\n", "🙂" * 10])
    def test_degenerate_text_never_raises(self, classifier, text):
        result = classify(classifier, text)
        assert result.category == MessageCategory.SIMPLE_CHAT

    def test_deterministic(self, classifier):
        """Identical input always gives an identical result."""
        request = OrchestratorInput(
            text="Compare these two approaches",
            content_context=ContentContext(title="Notes"),
        )
        assert classifier.classify(request) == classifier.classify(request)
        assert MessageClassifier().classify(request) == classifier.classify(request)

    def test_case_insensitive(self, classifier):
        assert (
            classify(classifier, "SEARCH FOR CHEAP FLIGHTS").category
            == MessageCategory.WEB_SEARCH
        )
