"""Tests for the tool catalog: schema validation and safe execution."""

import asyncio

import pytest

from marvin_orchestrator.errors import InvalidToolDefinition
from marvin_orchestrator.models import ToolCall, ToolDefinition
from marvin_orchestrator.tools import ToolCatalog, build_argument_model


def definition(name="web_search", **schema):
    schema.setdefault("type", "object")
    return ToolDefinition(name=name, description=f"{name} tool", parameters_json_schema=schema)


SEARCH = definition(
    properties={
        "query": {"type": "string"},
        "limit": {"type": "integer"},
        "freshness": {"type": "string", "enum": ["day", "week"]},
        "sites": {"type": "array", "items": {"type": "string"}},
    },
    required=["query"],
)


class TestDefinitionValidation:
    def test_valid_schema_builds_model(self):
        model = build_argument_model(SEARCH)
        args = model.model_validate({"query": "x", "limit": 3, "sites": ["a.com"]})
        assert args.query == "x"
        assert args.limit == 3

    def test_empty_schema_is_accepted(self):
        model = build_argument_model(ToolDefinition(name="get_todos"))
        assert model.model_validate({}).model_dump() == {}

    def test_non_object_schema_rejected(self):
        with pytest.raises(InvalidToolDefinition, match="type 'object'"):
            build_argument_model(definition(type="array"))

    def test_required_must_be_declared(self):
        with pytest.raises(InvalidToolDefinition, match="required names"):
            build_argument_model(definition(properties={}, required=["query"]))

    def test_required_must_be_a_list(self):
        with pytest.raises(InvalidToolDefinition, match="'required' must be a list"):
            build_argument_model(definition(properties={"q": {"type": "string"}}, required="q"))

    def test_unknown_property_type_rejected(self):
        with pytest.raises(InvalidToolDefinition, match="unsupported type"):
            build_argument_model(definition(properties={"when": {"type": "date"}}))

    def test_nullable_type_list(self):
        model = build_argument_model(
            definition(properties={"q": {"type": ["string", "null"]}}, required=["q"])
        )
        assert model.model_validate({"q": None}).q is None
        assert model.model_validate({"q": "x"}).q == "x"

    def test_type_list_union(self):
        model = build_argument_model(
            definition(properties={"n": {"type": ["integer", "string"]}}, required=["n"])
        )
        assert model.model_validate({"n": 3}).n == 3
        assert model.model_validate({"n": "three"}).n == "three"

    @pytest.mark.parametrize(
        "prop",
        [
            {"type": ["null"]},
            {"type": ["string", "date"]},
            {"type": [["string"]]},
        ],
    )
    def test_bad_type_lists_rejected(self, prop):
        with pytest.raises(InvalidToolDefinition):
            ToolCatalog().register(definition(properties={"q": prop}), _echo)

    def test_non_scalar_enum_rejected(self):
        with pytest.raises(InvalidToolDefinition, match="non-scalar enum"):
            build_argument_model(definition(properties={"q": {"enum": [{"a": 1}, ["b"]]}}))

    def test_register_rejects_invalid_definition(self):
        catalog = ToolCatalog()
        with pytest.raises(InvalidToolDefinition):
            catalog.register(definition(type="string"), _echo)
        assert len(catalog) == 0


async def _echo(args):
    return f"echo {args}"


class TestCatalog:
    def test_registration_order_and_replacement(self):
        catalog = ToolCatalog()
        catalog.register(SEARCH, _echo)
        catalog.register(definition("get_todos"), _echo)
        catalog.register(definition("web_search", properties={}), _echo)

        assert catalog.names() == ["web_search", "get_todos"]
        assert len(catalog) == 2
        assert "get_todos" in catalog
        assert catalog.definitions()[0].parameters_json_schema == {
            "type": "object",
            "properties": {},
        }

    async def test_execute_passes_validated_arguments(self):
        seen = {}

        async def search(args):
            seen.update(args)
            return "3 results"

        catalog = ToolCatalog()
        catalog.register(SEARCH, search)

        result = await catalog.execute(
            ToolCall(id="c1", name="web_search", arguments={"query": "news", "extra": 1})
        )

        assert result == "3 results"
        assert seen == {"query": "news"}

    async def test_unknown_tool(self):
        result = await ToolCatalog().execute(ToolCall(id="c1", name="nope"))
        assert result == "Error: unknown tool nope"

    async def test_missing_required_argument(self):
        catalog = ToolCatalog()
        catalog.register(SEARCH, _echo)
        result = await catalog.execute(ToolCall(id="c1", name="web_search", arguments={}))
        assert result.startswith("Error: invalid arguments for web_search")
        assert "query" in result

    async def test_enum_violation(self):
        catalog = ToolCatalog()
        catalog.register(SEARCH, _echo)
        result = await catalog.execute(ToolCall(
            id="c1", name="web_search", arguments={"query": "x", "freshness": "year"}
        ))
        assert result.startswith("Error: invalid arguments")

    async def test_executor_exception_becomes_error_string(self):
        async def broken(args):
            raise RuntimeError("search backend down")

        catalog = ToolCatalog()
        catalog.register(SEARCH, broken)
        result = await catalog.execute(ToolCall(id="c1", name="web_search", arguments={"query": "x"}))
        assert result == "Error: search backend down"

    async def test_timeout_becomes_error_string(self):
        async def slow(args):
            await asyncio.sleep(5)
            return "late"

        catalog = ToolCatalog()
        catalog.register(SEARCH, slow)
        result = await catalog.execute(
            ToolCall(id="c1", name="web_search", arguments={"query": "x"}), timeout=0.01
        )
        assert result == "Error: tool web_search timed out after 0.01s"

    async def test_non_string_results_are_json(self):
        async def structured(args):
            return {"hits": 2}

        catalog = ToolCatalog()
        catalog.register(SEARCH, structured)
        result = await catalog.execute(ToolCall(id="c1", name="web_search", arguments={"query": "x"}))
        assert result == '{"hits": 2}'

    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        async def hang(args):
            started.set()
            await asyncio.sleep(10)
            return "never"

        catalog = ToolCatalog()
        catalog.register(SEARCH, hang)
        task = asyncio.create_task(
            catalog.execute(ToolCall(id="c1", name="web_search", arguments={"query": "x"}))
        )
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
