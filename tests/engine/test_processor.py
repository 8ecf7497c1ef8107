# tests/engine/test_processor.py
"""Tests for NodeProcessor: aggregation, plugin run, directive dispatch and propagation."""

from collections.abc import Mapping
from typing import Any

import pytest

from nodeweave.contracts.errors import RetryExhaustedError
from nodeweave.contracts.events import NodeProcessed, NodeProcessing
from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.engine.directives import DirectiveProcessor
from nodeweave.engine.processor import NodeProcessor
from nodeweave.engine.scheduler import VirtualScheduler
from nodeweave.engine.store import NodeStore
from nodeweave.plugins.registry import PluginRegistry


class DoublePlugin:
    name = "double"

    def __init__(self) -> None:
        self.contexts: list[ProcessingContext] = []

    def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> dict[str, Any]:
        self.contexts.append(context)
        return {key: value * 2 for key, value in inputs.items()}


class ExplodingPlugin:
    name = "exploding"

    async def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> Any:
        raise RuntimeError("plugin blew up")


class DirectingPlugin:
    """Sets the mode of ``config['target']`` through a directive."""

    name = "directing"

    def process(self, inputs: Any, config: Mapping[str, Any], context: ProcessingContext) -> ProcessingOutput:
        directive = {
            "type": "update-config",
            "target": {"section": "input", "path": config["path"], "operation": config.get("operation", "set")},
            "payload": config["payload"],
        }
        if "retryPolicy" in config:
            directive["processing"] = {"retryPolicy": config["retryPolicy"]}
        return ProcessingOutput.ok(inputs, directives={config["target"]: [directive]})


@pytest.fixture
def plugins(store: NodeStore) -> PluginRegistry:
    registry = PluginRegistry(store.aggregators)
    registry.register_builtin_plugins()
    return registry


@pytest.fixture
def processor(
    store: NodeStore, directives: DirectiveProcessor, plugins: PluginRegistry, scheduler: VirtualScheduler
) -> NodeProcessor:
    return NodeProcessor(store, directives, plugins, scheduler)


def _status(store: NodeStore, node_id: str) -> str:
    return store.get_node_data(node_id)["output"]["meta"]["status"]


class TestPipeline:
    @pytest.mark.asyncio
    async def test_propagates_through_chain(
        self, store: NodeStore, plugins: PluginRegistry, processor: NodeProcessor
    ) -> None:
        double = DoublePlugin()
        plugins.register(double)
        store.register_node("a", {"meta": {"category": "input"}, "output": {"data": {"x": 1}}})
        store.register_node("b", {"plugin": {"name": "double"}})
        store.register_node("c", {"plugin": {"name": "field-mapper", "config": {"mapping": {"y": "x"}}}})
        store.add_connection("a", "b")
        store.add_connection("b", "c")

        output = await processor.process_node("a")

        assert output.data == {"x": 1}
        assert store.get_node_data("b")["output"]["data"] == {"x": 2}
        assert store.get_node_data("c")["output"]["data"] == {"y": 2}
        assert [_status(store, n) for n in "abc"] == ["success", "success", "success"]
        assert double.contexts[0].node_id == "b"
        assert list(double.contexts[0].connections) == ["a-b-default-default"]

    @pytest.mark.asyncio
    async def test_no_plugin_passes_inputs_through(self, store: NodeStore, processor: NodeProcessor) -> None:
        store.register_node("a", {"output": {"data": {"x": 1}}})
        store.register_node("b")
        store.add_connection("a", "b")

        await processor.process_node("b")

        assert store.get_node_data("b")["output"]["data"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_records_metrics_and_events(
        self, store: NodeStore, processor: NodeProcessor, record_events: Any
    ) -> None:
        store.register_node("a", {"output": {"data": {"x": 1}}})
        store.register_node("b")
        store.add_connection("a", "b")
        events = record_events(NodeProcessing, NodeProcessed)

        await processor.process_node("b")

        assert events.events[0] == NodeProcessing(node_id="b")
        assert events.events[1].node_id == "b"
        assert events.events[1].output == {"x": 1}
        meta = store.get_node_data("b")["output"]["meta"]
        assert meta["processingTime"] == 0.0
        assert meta["dataSize"] == len('{"x":1}')

    @pytest.mark.asyncio
    async def test_plugin_sees_its_own_aggregation_strategy(
        self, store: NodeStore, plugins: PluginRegistry, processor: NodeProcessor
    ) -> None:
        double = DoublePlugin()
        plugins.register(double)
        store.register_node("b", {"plugin": {"name": "double", "config": {"aggregationStrategy": "array"}}})

        await processor.process_node("b")

        assert double.contexts[0].aggregation_strategy == "array"

    @pytest.mark.asyncio
    async def test_process_all_starts_from_roots(self, store: NodeStore, processor: NodeProcessor) -> None:
        store.register_node("a", {"meta": {"category": "input"}, "output": {"data": {"x": 1}}})
        store.register_node("b")
        store.register_node("lonely")
        store.add_connection("a", "b")

        results = await processor.process_all()

        assert set(results) == {"a", "lonely"}
        assert store.get_node_data("b")["output"]["data"] == {"x": 1}

    @pytest.mark.asyncio
    async def test_unknown_node(self, processor: NodeProcessor) -> None:
        assert await processor.process_node("ghost") is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_plugin_exception_recorded_and_stops_propagation(
        self, store: NodeStore, plugins: PluginRegistry, processor: NodeProcessor
    ) -> None:
        plugins.register(ExplodingPlugin())
        store.register_node("a", {"plugin": {"name": "exploding"}})
        store.register_node("b")
        store.add_connection("a", "b")

        output = await processor.process_node("a")

        assert output.success is False
        assert _status(store, "a") == "error"
        assert _status(store, "b") == "idle"
        errors = store.get_node_data("a")["error"]["errors"]
        assert errors[0]["code"] == "PROCESSING_ERROR"
        assert "plugin blew up" in errors[0]["message"]

    @pytest.mark.asyncio
    async def test_invalid_plugin_config(self, store: NodeStore, processor: NodeProcessor) -> None:
        store.register_node("a", {"plugin": {"name": "field-mapper", "config": {}}})

        output = await processor.process_node("a")

        assert output.errors == ["config: 'mapping' is a required property"]
        assert _status(store, "a") == "error"

    @pytest.mark.asyncio
    async def test_aggregation_error_marks_node(self, store: NodeStore, processor: NodeProcessor) -> None:
        store.register_node("a")
        store.register_node("b", {"input": {"processed": {"strategy": "custom"}}})
        store.add_connection("a", "b")

        output = await processor.process_node("b")

        assert output.success is False
        assert _status(store, "b") == "error"
        assert [e["code"] for e in store.get_node_data("b")["error"]["errors"]] == ["AGGREGATION_ERROR"]


class TestDirectiveDispatch:
    @pytest.mark.asyncio
    async def test_plugin_directives_applied_before_downstream(
        self, store: NodeStore, plugins: PluginRegistry, processor: NodeProcessor
    ) -> None:
        plugins.register(DirectingPlugin())
        store.register_node(
            "a",
            {"plugin": {"name": "directing", "config": {"target": "b", "path": "config.mode", "payload": "strict"}}},
        )
        store.register_node("b", {"input": {"config": {"mode": "lenient"}}})
        store.add_connection("a", "b")

        await processor.process_node("a")

        assert store.get_node_data("b")["input"]["config"]["mode"] == "strict"
        assert _status(store, "b") == "success"

    @pytest.mark.asyncio
    async def test_output_directives_dispatched(self, store: NodeStore, processor: NodeProcessor) -> None:
        store.register_node("b", {"input": {"config": {"mode": "lenient"}}})
        store.register_node(
            "a",
            {
                "output": {
                    "directives": {
                        "b": [
                            {
                                "type": "update-config",
                                "target": {"section": "input", "path": "config.mode", "operation": "set"},
                                "payload": "from-output",
                            }
                        ]
                    }
                }
            },
        )

        await processor.process_node("a")

        assert store.get_node_data("b")["input"]["config"]["mode"] == "from-output"

    @pytest.mark.asyncio
    async def test_retry_exhaustion_propagates(
        self, store: NodeStore, plugins: PluginRegistry, processor: NodeProcessor
    ) -> None:
        plugins.register(DirectingPlugin())
        store.register_node(
            "a",
            {
                "plugin": {
                    "name": "directing",
                    "config": {
                        "target": "b",
                        "path": "config.absent",
                        "operation": "merge",
                        "payload": {"x": 1},
                        "retryPolicy": {"maxRetries": 1},
                    },
                }
            },
        )
        store.register_node("b")

        with pytest.raises(RetryExhaustedError):
            await processor.process_node("a")

        assert processor.is_processing("a") is False
