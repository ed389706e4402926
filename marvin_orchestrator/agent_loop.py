"""Bounded tool-using agent loop.

Each step sends the accumulated conversation plus the full tool catalog to
the provider. When the model answers without tool calls the loop ends and
the answer is parsed; otherwise every requested tool runs, its result is
appended as a ``tool`` turn, and the next step begins. The loop never makes
more than ``max_steps`` model calls.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from marvin_orchestrator import observability
from marvin_orchestrator.errors import AgentLoopExceeded
from marvin_orchestrator.models import (
    ChatMessage,
    RequestUsage,
    StructuredResponse,
    ToolChatRequest,
    add_usage,
)
from marvin_orchestrator.parsing import parse_structured_response
from marvin_orchestrator.providers.base import LLMProvider
from marvin_orchestrator.rate_limiter import RateLimiter
from marvin_orchestrator.tools import ToolCatalog

logger = logging.getLogger(__name__)


@dataclass
class AgentLoopResult:
    answer: StructuredResponse
    steps: int
    tools_used: List[str] = field(default_factory=list)
    usage: Optional[RequestUsage] = None


class AgentLoop:
    def __init__(
        self,
        catalog: ToolCatalog,
        rate_limiter: RateLimiter,
        max_steps: int = 5,
        tool_timeout: Optional[float] = 15.0,
        temperature: float = 0.7,
    ):
        self.catalog = catalog
        self.rate_limiter = rate_limiter
        self.max_steps = max_steps
        self.tool_timeout = tool_timeout
        self.temperature = temperature

    async def run(
        self,
        provider: LLMProvider,
        messages: Sequence[ChatMessage],
        max_tokens: int,
    ) -> AgentLoopResult:
        """Run the loop against one provider.

        Provider errors propagate untouched so the caller's fallback logic
        can handle them. Raises AgentLoopExceeded when the step ceiling is
        hit without a final answer.
        """
        history = list(messages)
        tools = self.catalog.definitions()
        tools_used: List[str] = []
        usage: Optional[RequestUsage] = None

        for step in range(1, self.max_steps + 1):
            response = await provider.chat_with_tools(ToolChatRequest(
                messages=list(history),
                temperature=self.temperature,
                max_tokens=max_tokens,
                json_mode=False,
                tools=tools,
                tool_choice="auto",
            ))
            self.rate_limiter.record_success(provider.name, response.usage, response.quota)
            usage = add_usage(usage, response.usage)

            if not response.tool_calls:
                logger.debug(f"Agent loop finished on {provider.name} after {step} step(s)")
                return AgentLoopResult(
                    answer=parse_structured_response(response.content),
                    steps=step,
                    tools_used=tools_used,
                    usage=usage,
                )

            observability.log_agent_step(
                provider.name, step, [call.name for call in response.tool_calls]
            )
            history.append(ChatMessage(
                role="assistant",
                content=response.content or "",
                tool_calls=response.tool_calls,
            ))

            for call in response.tool_calls:
                tools_used.append(call.name)
                result = await self.catalog.execute(call, timeout=self.tool_timeout)
                history.append(ChatMessage.tool_result(call, result))

        logger.warning(f"Agent loop on {provider.name} hit max steps ({self.max_steps})")
        raise AgentLoopExceeded(self.max_steps, tools_used)
