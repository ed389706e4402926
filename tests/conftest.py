"""Pytest configuration and fixtures for marvin-orchestrator tests.

To support `async def` tests without pytest-asyncio, we provide a minimal
hook that runs coroutine test functions using the stdlib's asyncio.
"""

import asyncio
import inspect
import json
from typing import Callable, Dict, List

import httpx
import logfire
import pytest

from marvin_orchestrator.models import (
    ChatRequest,
    ChatResponse,
    ProviderCapabilities,
    RequestUsage,
    ToolCall,
    ToolChatRequest,
    ToolChatResponse,
)
from marvin_orchestrator.settings import clear_settings_cache

PROVIDER_ENV_VARS = (
    "GROQ_API_KEY",
    "GEMINI_API_KEY",
    "CEREBRAS_API_KEY",
    "LLM_PROVIDER",
    "ORCHESTRATOR_MODE",
    "MARVIN_MODE",
    "MARVIN_DEFAULT_PROVIDER",
    "MARVIN_RATE_LIMITS",
    "MARVIN_MAX_AGENT_STEPS",
    "LOGFIRE_TOKEN",
)


def pytest_configure(config):
    # Keep telemetry local during tests
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path):
    """Isolate settings from the developer's environment and .env file."""
    for name in PROVIDER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # .env is resolved relative to the working directory
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


class FakeClock:
    """Manually advanced clock for rate limiter tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class RecordingTransport:
    """httpx.MockTransport that replays canned responses and records requests."""

    def __init__(self, responses: List[httpx.Response]):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"Unexpected request to {request.url}")
        return self.responses.pop(0)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def body(self, index: int = -1) -> Dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def mock_http() -> Callable[..., RecordingTransport]:
    """Build a RecordingTransport from canned responses."""

    def factory(*responses: httpx.Response) -> RecordingTransport:
        return RecordingTransport(list(responses))

    return factory


class FakeProvider:
    """Scripted LLMProvider: replays responses (or raises errors) in order."""

    def __init__(
        self,
        name: str,
        *,
        vision: bool = False,
        tool_use: bool = False,
        available: bool = True,
        max_output_tokens: int = 4096,
        responses=(),
    ):
        self.name = name
        self.display_name = name.title()
        self.capabilities = ProviderCapabilities(
            vision=vision,
            tool_use=tool_use,
            json_mode=True,
            max_output_tokens=max_output_tokens,
        )
        self.responses = list(responses)
        self.requests: List[ChatRequest] = []
        self.closed = False
        self._available = available

    @property
    def is_available(self) -> bool:
        return self._available

    def queue(self, *responses) -> "FakeProvider":
        self.responses.extend(responses)
        return self

    def _next(self, request: ChatRequest):
        self.requests.append(request)
        if not self.responses:
            raise AssertionError(f"{self.name} called more often than scripted")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return self._next(request)

    async def chat_with_tools(self, request: ToolChatRequest) -> ToolChatResponse:
        return self._next(request)

    async def aclose(self) -> None:
        self.closed = True

    # Canned responses

    def reply(self, content: str, input_tokens: int = 10, output_tokens: int = 5):
        return ToolChatResponse(
            content=content,
            model=f"{self.name}-model",
            provider=self.name,
            usage=RequestUsage(input_tokens=input_tokens, output_tokens=output_tokens),
        )

    def calls(self, *calls: ToolCall, input_tokens: int = 10, output_tokens: int = 5):
        return ToolChatResponse(
            content="",
            model=f"{self.name}-model",
            provider=self.name,
            usage=RequestUsage(input_tokens=input_tokens, output_tokens=output_tokens),
            finish_reason="tool_calls",
            tool_calls=tuple(calls),
        )


@pytest.fixture
def fake_provider():
    """The FakeProvider class, for building scripted providers."""
    return FakeProvider


def pytest_pyfunc_call(pyfuncitem: pytest.Item) -> bool | None:
    """Enable running `async def` tests without external plugins.

    If the test function is a coroutine function, execute it via asyncio.run.
    Return True to signal that the call was handled, allowing pytest to
    proceed without complaining about missing async plugins.
    """
    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        # Build the kwargs that pytest would normally inject (fixtures)
        kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        asyncio.run(test_func(**kwargs))
        return True
    return None
