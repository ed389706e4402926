"""State/context provider contract.

The orchestrator never reads or writes the user's state files itself. It
asks a ``StateContextProvider`` for the raw text of the goals, current
priorities and todo list, and folds that text into the system prompt.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StateContextProvider(Protocol):
    async def get_goals(self) -> str: ...

    async def get_current_state(self) -> str: ...

    async def get_todos(self) -> str: ...


@dataclass(frozen=True)
class StateSnapshot:
    goals: str = ""
    current: str = ""
    todos: str = ""


@dataclass
class StaticStateContext:
    """In-memory provider with fixed text; handy for the CLI and tests."""

    goals: str = ""
    current: str = ""
    todos: str = ""

    async def get_goals(self) -> str:
        return self.goals

    async def get_current_state(self) -> str:
        return self.current

    async def get_todos(self) -> str:
        return self.todos


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


async def load_state(provider: StateContextProvider) -> StateSnapshot:
    """Fetch all three state sections concurrently."""
    goals, current, todos = await asyncio.gather(
        provider.get_goals(),
        provider.get_current_state(),
        provider.get_todos(),
    )
    return StateSnapshot(
        goals=_as_text(goals),
        current=_as_text(current),
        todos=_as_text(todos),
    )
