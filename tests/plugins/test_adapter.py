# tests/plugins/test_adapter.py
"""Tests for PluginAdapter capability filling."""

from collections.abc import Mapping
from typing import Any

import pytest

from nodeweave.contracts.errors import ValidationError
from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.plugins.adapter import PluginAdapter, validate_against_schema
from nodeweave.plugins.protocols import Initializable, Processable, Validatable


def _context() -> ProcessingContext:
    return ProcessingContext(node_id="n", node_data={}, connections={}, timestamp="2024-01-01T00:00:00+00:00")


class MinimalPlugin:
    name = "minimal"

    def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> Any:
        return {"echo": inputs}


class FullPlugin:
    name = "full"
    version = "2.1.0"

    def __init__(self) -> None:
        self.events: list[str] = []

    async def initialize(self, config: Mapping[str, Any]) -> None:
        self.events.append(f"init:{config.get('k')}")

    async def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> dict[str, Any]:
        return {"success": False, "errors": ["nope"], "metrics": {"processingTime": 0.5}}

    async def cleanup(self) -> None:
        self.events.append("cleanup")

    def get_capabilities(self) -> list[str]:
        return ["transform"]

    def get_config_schema(self) -> dict[str, Any]:
        return {"required": ["k"]}

    def validate_config(self, config: Mapping[str, Any]) -> list[str]:
        return [] if config.get("k") == "ok" else ["k must be ok"]


class TestProtocols:
    def test_capabilities_checked_by_presence(self) -> None:
        assert isinstance(MinimalPlugin(), Processable)
        assert not isinstance(MinimalPlugin(), Initializable)
        assert isinstance(FullPlugin(), Initializable)
        assert isinstance(FullPlugin(), Validatable)


class TestPluginAdapter:
    def test_rejects_non_plugins(self) -> None:
        with pytest.raises(ValidationError):
            PluginAdapter(object())

    def test_rejects_empty_name(self) -> None:
        plugin = MinimalPlugin()
        plugin.name = ""

        with pytest.raises(ValidationError, match="non-empty"):
            PluginAdapter(plugin)

    def test_wrap_is_idempotent(self) -> None:
        adapter = PluginAdapter(MinimalPlugin())

        assert PluginAdapter.wrap(adapter) is adapter

    @pytest.mark.asyncio
    async def test_minimal_plugin_gets_defaults(self) -> None:
        adapter = PluginAdapter(MinimalPlugin())

        await adapter.initialize({})
        output = await adapter.process({"x": 1}, {}, _context())
        await adapter.cleanup()

        assert adapter.version == "1.0.0"
        assert output == ProcessingOutput(success=True, data={"echo": {"x": 1}})
        assert adapter.get_capabilities() == []
        assert adapter.get_config_schema() == {}
        assert adapter.validate_config({"anything": 1}) == []
        assert adapter.initialized is False

    @pytest.mark.asyncio
    async def test_full_plugin_used_directly(self) -> None:
        plugin = FullPlugin()
        adapter = PluginAdapter(plugin)

        await adapter.initialize({"k": "ok"})
        output = await adapter.process({}, {}, _context())
        await adapter.cleanup()

        assert plugin.events == ["init:ok", "cleanup"]
        assert output.success is False
        assert output.errors == ["nope"]
        assert output.metrics == {"processingTime": 0.5}
        assert adapter.version == "2.1.0"
        assert adapter.validate_config({"k": "bad"}) == ["k must be ok"]


class TestValidateAgainstSchema:
    SCHEMA = {
        "required": ["mapping"],
        "properties": {
            "mapping": {"type": "object"},
            "limit": {"type": "number"},
            "name": {"type": "string"},
        },
    }

    def test_valid(self) -> None:
        assert validate_against_schema({"mapping": {}, "limit": 2.5, "name": "x"}, self.SCHEMA) == []

    def test_missing_required(self) -> None:
        assert validate_against_schema({}, self.SCHEMA) == ["config: 'mapping' is a required property"]

    @pytest.mark.parametrize(("key", "value"), [("limit", True), ("limit", "3"), ("name", 3), ("mapping", [])])
    def test_wrong_type(self, key: str, value: Any) -> None:
        config = {"mapping": {}, key: value}
        expected = self.SCHEMA["properties"][key]["type"]

        assert validate_against_schema(config, self.SCHEMA) == [f"{key}: {value!r} is not of type {expected!r}"]

    def test_enum_and_minimum(self) -> None:
        schema = {
            "properties": {
                "mode": {"type": "string", "enum": ["a", "b"]},
                "n": {"type": "integer", "minimum": 1},
            }
        }

        errors = validate_against_schema({"mode": "zzz", "n": -5}, schema)

        assert len(errors) == 2
        assert errors[0].startswith("mode: 'zzz' is not one of")
        assert errors[1].startswith("n: -5 is less than the minimum of 1")

    def test_nested_properties_and_items(self) -> None:
        schema = {
            "properties": {
                "display": {"type": "object", "properties": {"width": {"type": "integer"}}},
                "tags": {"type": "array", "items": {"type": "string"}},
            }
        }

        errors = validate_against_schema({"display": {"width": "wide"}, "tags": ["ok", 3]}, schema)

        assert errors == [
            "display.width: 'wide' is not of type 'integer'",
            "tags.1: 3 is not of type 'string'",
        ]

    def test_invalid_schema_reported(self) -> None:
        errors = validate_against_schema({}, {"type": "no-such-type"})

        assert len(errors) == 1
        assert errors[0].startswith("Invalid config schema:")
