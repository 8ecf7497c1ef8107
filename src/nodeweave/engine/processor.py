# src/nodeweave/engine/processor.py
"""NodeProcessor: runs one node through aggregation, its plugin and directive dispatch.

For each node:

1. Aggregate incoming connections into ``input.processed`` (node-layer strategy).
2. Run the node's plugin (``plugin.name``) with the aggregated inputs. Nodes
   without a plugin pass their inputs through.
3. Store the result in ``output.data`` and mark the node success.
4. Dispatch ``output.directives`` plus any directives the plugin returned.
5. Process downstream nodes concurrently.

Failures in steps 1-3 are recorded on the node as PROCESSING_ERROR and stop
propagation from that node. Retry exhaustion from step 4 propagates to the
caller.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog

from nodeweave.contracts.enums import ErrorCode, NodeCategory, NodeStatus
from nodeweave.contracts.errors import RetryExhaustedError
from nodeweave.contracts.events import NodeProcessed, NodeProcessing
from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.core.canonical import canonical_json
from nodeweave.engine.directives import DirectiveProcessor
from nodeweave.engine.scheduler import Scheduler
from nodeweave.engine.store import NodeStore
from nodeweave.plugins.registry import PluginRegistry

logger = structlog.get_logger(__name__)


def _data_size(value: Any) -> int | None:
    try:
        return len(canonical_json(value).encode("utf-8"))
    except (TypeError, ValueError):
        return None


def _combine_directives(*sources: Mapping[str, Any]) -> dict[str, list[Any]]:
    combined: dict[str, list[Any]] = {}
    for source in sources:
        for target, directives in source.items():
            if isinstance(directives, list | tuple):
                combined.setdefault(target, []).extend(directives)
            else:
                combined.setdefault(target, []).append(directives)
    return combined


class NodeProcessor:
    """Drives node processing and propagation through the graph.

    Example:
        processor = NodeProcessor(store, directives, plugins, scheduler)
        await processor.process_node("source")   # processes "source" and everything downstream
    """

    def __init__(
        self,
        store: NodeStore,
        directives: DirectiveProcessor,
        plugins: PluginRegistry,
        scheduler: Scheduler,
    ) -> None:
        self._store = store
        self._directives = directives
        self._plugins = plugins
        self._scheduler = scheduler
        self._processing: set[str] = set()

    def is_processing(self, node_id: str) -> bool:
        return node_id in self._processing

    async def process_node(self, node_id: str, *, propagate: bool = True) -> ProcessingOutput | None:
        """Process a node and, by default, everything downstream of it.

        Returns:
            The node's ProcessingOutput, or None if the node is unknown or
            already being processed

        Raises:
            RetryExhaustedError: If a dispatched directive ran out of retries
        """
        data = self._store.get_node_data(node_id)
        if data is None:
            logger.debug("process_unknown_node", node_id=node_id)
            return None
        if node_id in self._processing:
            logger.debug("node_already_processing", node_id=node_id)
            return None

        self._processing.add(node_id)
        try:
            if data["meta"]["category"] == NodeCategory.INPUT.value and data["output"]["data"]:
                # Input nodes hold user-entered data; only propagate it
                self._store.set_status(node_id, NodeStatus.SUCCESS)
                output = ProcessingOutput.ok(data["output"]["data"])
            else:
                output = await self._run(node_id, data)
                if not output.success:
                    return output
                directives = _combine_directives(data["output"]["directives"], output.directives)
                if directives:
                    await self._directives.process_directives(node_id, directives)
        finally:
            self._processing.discard(node_id)

        if propagate:
            downstream = self._store.downstream_of(node_id)
            if downstream:
                await asyncio.gather(*(self.process_node(target) for target in downstream))
        return output

    async def process_all(self) -> dict[str, ProcessingOutput | None]:
        """Process every root node (no incoming connections) and propagate."""
        roots = [node_id for node_id in self._store.node_ids() if not self._store.get_connections(node_id)["incoming"]]
        results = await asyncio.gather(*(self.process_node(root) for root in roots))
        return dict(zip(roots, results, strict=True))

    async def _run(self, node_id: str, data: dict[str, Any]) -> ProcessingOutput:
        bus = self._store.bus
        bus.emit(NodeProcessing(node_id=node_id))
        self._store.set_status(node_id, NodeStatus.PROCESSING)
        started = self._scheduler.now()

        try:
            inputs: Any = {}
            if data["input"]["connections"]:
                aggregated = self._store.aggregate_inputs(node_id)
                if aggregated is not None:
                    if aggregated.error is not None:
                        # Already recorded on the node as AGGREGATION_ERROR
                        self._store.set_status(node_id, NodeStatus.ERROR)
                        return ProcessingOutput.failure(str(aggregated.error))
                    inputs = aggregated.value

            output = await self._call_plugin(node_id, inputs)
        except RetryExhaustedError:
            raise
        except Exception as e:
            logger.exception("node_processing_failed", node_id=node_id)
            self._fail(node_id, str(e))
            return ProcessingOutput.failure(str(e))

        if not output.success:
            self._fail(node_id, "; ".join(output.errors) or "plugin reported failure")
            return output

        elapsed = self._scheduler.now() - started
        self._store.update_node_data(node_id, {"output": {"data": output.data}})
        self._store.set_status(
            node_id,
            NodeStatus.SUCCESS,
            processing_time=elapsed,
            data_size=_data_size(output.data),
        )
        self._store.bus.emit(NodeProcessed(node_id=node_id, output=output.data, processing_time=elapsed))
        logger.info("node_processed", node_id=node_id, processing_time=elapsed)
        return output

    async def _call_plugin(self, node_id: str, inputs: Any) -> ProcessingOutput:
        # Re-read: aggregation updated input.processed
        data = self._store.get_node_data(node_id)
        if data is None:
            return ProcessingOutput.failure(f"Node {node_id!r} was removed during processing")
        plugin = data["plugin"]
        if not plugin or not plugin.get("name"):
            return ProcessingOutput.ok(inputs)

        config = plugin.get("config") or {}
        connections = data["input"]["connections"]
        context = ProcessingContext(
            node_id=node_id,
            node_data=data,
            connections=connections,
            timestamp=self._scheduler.timestamp(),
            aggregation_strategy=config.get("aggregationStrategy"),
        )
        return await self._plugins.process_with_plugin(plugin["name"], inputs, config, context)

    def _fail(self, node_id: str, message: str) -> None:
        self._store.record_error(node_id, ErrorCode.PROCESSING_ERROR, message, source=node_id)
        self._store.set_status(node_id, NodeStatus.ERROR)
