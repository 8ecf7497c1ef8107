# src/nodeweave/plugins/builtin.py
"""Built-in plugins and aggregators, contributed through the pluggy hooks."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from nodeweave.contracts.nodes import ConnectionRecord
from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.plugins.hookspecs import hookimpl


class PassthroughPlugin:
    """Emits its aggregated inputs unchanged."""

    name = "passthrough"
    version = "1.0.0"

    def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> ProcessingOutput:
        return ProcessingOutput.ok(inputs, metrics={"connectionCount": len(context.connections)})

    def get_capabilities(self) -> list[str]:
        return ["transform"]


class FieldMapperPlugin:
    """Renames input keys.

    Config ``mapping`` maps output key to input key. Input keys that are
    missing produce None unless ``dropMissing`` is set.
    """

    name = "field-mapper"
    version = "1.0.0"

    def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> ProcessingOutput:
        if not isinstance(inputs, Mapping):
            return ProcessingOutput.failure(f"field-mapper needs object input, got {type(inputs).__name__}")
        drop_missing = bool(config.get("dropMissing", False))
        mapped: dict[str, Any] = {}
        for out_key, in_key in config["mapping"].items():
            if in_key not in inputs and drop_missing:
                continue
            mapped[out_key] = inputs.get(in_key)
        return ProcessingOutput.ok(mapped)

    def get_capabilities(self) -> list[str]:
        return ["transform", "mapping"]

    def get_config_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "required": ["mapping"],
            "properties": {
                "mapping": {"type": "object"},
                "dropMissing": {"type": "boolean"},
            },
        }


def collect_by_source(connections: Mapping[str, ConnectionRecord], node_data: Mapping[str, Any]) -> dict[str, Any]:
    """Key each connection's data by its source node id."""
    return {record.source_node_id: record.data for record in connections.values()}


class BuiltinPlugins:
    """Hook provider registered by PluginRegistry.register_builtin_plugins()."""

    def __init__(self) -> None:
        self._plugins = [PassthroughPlugin(), FieldMapperPlugin()]

    @hookimpl
    def nodeweave_get_plugins(self) -> list[Any]:
        return list(self._plugins)

    @hookimpl
    def nodeweave_get_aggregators(self) -> dict[str, Any]:
        return {"collect_by_source": collect_by_source}
