"""Tool catalog - definitions plus the executors that back them.

The orchestrator only owns the contract: a ``ToolDefinition`` whose
``parameters_json_schema`` is a flat JSON object schema, and an async
executor taking the validated arguments and returning a string. Concrete
tools (web search, state reads and writes) are registered by the caller.

Failures never escape ``execute``: unknown tools, invalid arguments,
executor exceptions and timeouts all come back as an ``Error: ...`` string
that is fed to the model as the tool result.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Tuple,
    Type,
    Union,
)

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from marvin_orchestrator.errors import InvalidToolDefinition
from marvin_orchestrator.models import ToolCall, ToolDefinition

logger = logging.getLogger(__name__)

ToolExecutor = Callable[[Dict[str, Any]], Awaitable[str]]

JSON_TYPES: Dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "array": list,
    "object": dict,
}


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _property_type(tool_name: str, prop_name: str, prop: Any) -> Any:
    if not isinstance(prop, Mapping):
        raise InvalidToolDefinition(tool_name, f"property {prop_name!r} is not an object")

    enum = prop.get("enum")
    if isinstance(enum, list) and enum:
        if not all(v is None or isinstance(v, (str, int, float, bool)) for v in enum):
            raise InvalidToolDefinition(
                tool_name, f"property {prop_name!r} has non-scalar enum values"
            )
        return Literal[tuple(enum)]

    json_type = prop.get("type")
    if json_type is None:
        return Any

    # ["string", "null"] style unions
    if isinstance(json_type, list):
        names = [t for t in json_type if t != "null"]
        if not names:
            raise InvalidToolDefinition(
                tool_name, f"property {prop_name!r} has no usable type"
            )
        members = [_single_type(tool_name, prop_name, prop, t) for t in names]
        union = members[0] if len(members) == 1 else Union[tuple(members)]
        return Optional[union] if len(names) < len(json_type) else union

    return _single_type(tool_name, prop_name, prop, json_type)


def _single_type(tool_name: str, prop_name: str, prop: Mapping, json_type: Any) -> Any:
    if not isinstance(json_type, str) or json_type not in JSON_TYPES:
        raise InvalidToolDefinition(
            tool_name, f"property {prop_name!r} has unsupported type {json_type!r}"
        )
    if json_type == "array":
        items = prop.get("items")
        item_type = items.get("type") if isinstance(items, Mapping) else None
        if isinstance(item_type, str) and item_type in JSON_TYPES:
            return List[JSON_TYPES[item_type]]
    return JSON_TYPES[json_type]


def build_argument_model(definition: ToolDefinition) -> Type[BaseModel]:
    """Validate a tool's parameter schema and build a pydantic model for it."""
    name = definition.name
    schema = definition.parameters_json_schema or {"type": "object", "properties": {}}

    if schema.get("type") != "object":
        raise InvalidToolDefinition(name, "parameters must have type 'object'")

    properties = schema.get("properties", {})
    if not isinstance(properties, Mapping):
        raise InvalidToolDefinition(name, "'properties' must be a mapping")

    required = schema.get("required", [])
    if not isinstance(required, list):
        raise InvalidToolDefinition(name, "'required' must be a list")
    missing = [r for r in required if r not in properties]
    if missing:
        raise InvalidToolDefinition(
            name, f"required names not in properties: {', '.join(map(str, missing))}"
        )

    fields: Dict[str, Tuple[Any, Any]] = {}
    for prop_name, prop in properties.items():
        prop_type = _property_type(name, prop_name, prop)
        if prop_name in required:
            fields[prop_name] = (prop_type, ...)
        else:
            fields[prop_name] = (Optional[prop_type], None)

    return create_model(f"{name}_args", __base__=_ToolArgs, **fields)


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in error.errors()
    )


@dataclass
class RegisteredTool:
    definition: ToolDefinition
    executor: ToolExecutor
    arguments: Type[BaseModel]


class ToolCatalog:
    """Registered tools, in registration order."""

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(self, definition: ToolDefinition, executor: ToolExecutor) -> None:
        """Register a tool. Raises InvalidToolDefinition for unusable schemas."""
        arguments = build_argument_model(definition)
        if definition.name in self._tools:
            logger.warning(f"Tool {definition.name} already registered, replacing it")
        self._tools[definition.name] = RegisteredTool(definition, executor, arguments)
        logger.debug(f"Registered tool: {definition.name}")

    def definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    async def execute(self, call: ToolCall, timeout: Optional[float] = None) -> str:
        """Run one tool call and return its result text (or an ``Error: ...``)."""
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {call.name}")
            return f"Error: unknown tool {call.name}"

        try:
            validated = tool.arguments.model_validate(call.arguments)
        except ValidationError as e:
            return f"Error: invalid arguments for {call.name}: {_format_validation_error(e)}"

        args = validated.model_dump(exclude_unset=True)
        try:
            result = await asyncio.wait_for(tool.executor(args), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {call.name} timed out after {timeout}s")
            return f"Error: tool {call.name} timed out after {timeout}s"
        except Exception as e:
            logger.warning(f"Tool {call.name} failed: {e}")
            return f"Error: {e}"

        if isinstance(result, str):
            return result
        return json.dumps(result, default=str)
