"""Tests for the bounded tool-using agent loop."""

import pytest

from marvin_orchestrator.agent_loop import AgentLoop
from marvin_orchestrator.errors import AgentLoopExceeded, ProviderError
from marvin_orchestrator.models import (
    ChatMessage,
    IntentClassification,
    ToolCall,
    ToolDefinition,
)
from marvin_orchestrator.rate_limiter import RateLimiter
from marvin_orchestrator.tools import ToolCatalog

SEARCH = ToolDefinition(
    name="web_search",
    description="Search the web",
    parameters_json_schema={
        "type": "object",
        "properties": {"query": {"type": "string"}},
        "required": ["query"],
    },
)

MESSAGES = [
    ChatMessage(role="system", content="sys"),
    ChatMessage(role="user", content="what's the latest on the launch?"),
]


@pytest.fixture
def catalog():
    async def search(args):
        return f"results for {args['query']}"

    catalog = ToolCatalog()
    catalog.register(SEARCH, search)
    return catalog


def search_call(query="launch", call_id="call_1"):
    return ToolCall(id=call_id, name="web_search", arguments={"query": query})


class TestAgentLoop:
    async def test_answer_without_tools(self, catalog, fake_provider):
        provider = fake_provider("gemini", tool_use=True)
        provider.queue(provider.reply('{"response": "done", "classification": "question"}'))
        loop = AgentLoop(catalog, RateLimiter())

        result = await loop.run(provider, MESSAGES, max_tokens=4096)

        assert result.steps == 1
        assert result.tools_used == []
        assert result.answer.response == "done"

        request = provider.requests[0]
        assert request.tools == [SEARCH]
        assert request.tool_choice == "auto"
        assert request.json_mode is False
        assert request.max_tokens == 4096

    async def test_two_step_search(self, catalog, fake_provider):
        """One tool call then a final answer: two steps, one tool used."""
        provider = fake_provider("gemini", tool_use=True)
        provider.queue(
            provider.calls(search_call(), input_tokens=100, output_tokens=10),
            provider.reply(
                '{"response": "It launched.", "classification": "question"}',
                input_tokens=150,
                output_tokens=20,
            ),
        )
        limiter = RateLimiter()
        loop = AgentLoop(catalog, limiter)

        result = await loop.run(provider, MESSAGES, max_tokens=4096)

        assert result.steps == 2
        assert result.tools_used == ["web_search"]
        assert result.answer.response == "It launched."
        assert result.usage.input_tokens == 250
        assert result.usage.output_tokens == 30

        second = provider.requests[1].messages
        assert second[-2].role == "assistant"
        assert second[-2].tool_calls == (search_call(),)
        assert second[-1] == ChatMessage(
            role="tool",
            content="results for launch",
            tool_call_id="call_1",
            name="web_search",
        )
        # Both calls were charged to the provider
        assert limiter.get_all_states()["gemini"].requests_remaining == 13

    async def test_input_messages_are_not_mutated(self, catalog, fake_provider):
        provider = fake_provider("gemini", tool_use=True)
        provider.queue(provider.calls(search_call()), provider.reply("final"))
        messages = list(MESSAGES)

        await AgentLoop(catalog, RateLimiter()).run(provider, messages, 1024)

        assert messages == MESSAGES

    async def test_tool_errors_are_fed_back(self, catalog, fake_provider):
        provider = fake_provider("cerebras", tool_use=True)
        provider.queue(
            provider.calls(ToolCall(id="c1", name="delete_files")),
            provider.reply("I can't do that."),
        )

        result = await AgentLoop(catalog, RateLimiter()).run(provider, MESSAGES, 1024)

        tool_turn = provider.requests[1].messages[-1]
        assert tool_turn.content == "Error: unknown tool delete_files"
        assert result.tools_used == ["delete_files"]
        assert result.answer.classification == IntentClassification.QUESTION

    async def test_multiple_calls_in_one_step(self, catalog, fake_provider):
        provider = fake_provider("gemini", tool_use=True)
        provider.queue(
            provider.calls(search_call("a", "c1"), search_call("b", "c2")),
            provider.reply("both"),
        )

        result = await AgentLoop(catalog, RateLimiter()).run(provider, MESSAGES, 1024)

        tool_turns = [m for m in provider.requests[1].messages if m.role == "tool"]
        assert [m.content for m in tool_turns] == ["results for a", "results for b"]
        assert result.tools_used == ["web_search", "web_search"]
        assert result.steps == 2

    async def test_step_ceiling_raises(self, catalog, fake_provider):
        """Never more than max_steps model calls; no truncated result."""
        provider = fake_provider("gemini", tool_use=True)
        provider.queue(*[provider.calls(search_call(call_id=f"c{i}")) for i in range(3)])

        with pytest.raises(AgentLoopExceeded) as exc:
            await AgentLoop(catalog, RateLimiter(), max_steps=3).run(provider, MESSAGES, 1024)

        assert exc.value.max_steps == 3
        assert exc.value.tools_used == ["web_search"] * 3
        assert len(provider.requests) == 3

    async def test_provider_errors_propagate(self, catalog, fake_provider):
        provider = fake_provider("gemini", tool_use=True)
        provider.queue(
            provider.calls(search_call()),
            ProviderError("gemini", "chat_with_tools", "boom"),
        )
        with pytest.raises(ProviderError, match="boom"):
            await AgentLoop(catalog, RateLimiter()).run(provider, MESSAGES, 1024)
