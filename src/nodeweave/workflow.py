# src/nodeweave/workflow.py
"""WorkflowContext: the one place the runtime is wired together.

Construct once per editor session, call ``initialize()``, and
``cleanup()`` on shutdown. Nothing in nodeweave is a module-level
singleton; every collaborator hangs off the context.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from types import TracebackType
from typing import Any

import structlog

from nodeweave.contracts.errors import RetryExhaustedError
from nodeweave.contracts.events import ConnectionAdded
from nodeweave.contracts.results import ProcessingOutput
from nodeweave.core.config import NodeweaveSettings
from nodeweave.core.events import EventBus, EventBusProtocol
from nodeweave.core.logging import configure_from_settings
from nodeweave.engine.aggregation import AggregatorRegistry
from nodeweave.engine.directives import DirectiveProcessor
from nodeweave.engine.processor import NodeProcessor
from nodeweave.engine.scheduler import AsyncioScheduler, Scheduler
from nodeweave.engine.store import NodeStore
from nodeweave.plugins.registry import PluginRegistry
from nodeweave.sync.manager import SynchronizationManager
from nodeweave.sync.views import CanvasState, FlowProjection

logger = structlog.get_logger(__name__)


class WorkflowContext:
    """Owns the store, processors, plugin registry and sync manager.

    Example:
        async with WorkflowContext(load_settings("nodeweave.yaml")) as ctx:
            ctx.store.register_node("a", {"meta": {"category": "input"}, "output": {"data": {"x": 1}}})
            ctx.store.register_node("b")
            ctx.store.add_connection("a", "b")   # processes "b" in the background
            await ctx.update_node_data("a", {"output": {"data": {"x": 2}}}, trigger_processing=True)
    """

    def __init__(
        self,
        settings: NodeweaveSettings | None = None,
        *,
        scheduler: Scheduler | None = None,
        bus: EventBusProtocol | None = None,
        canvas: CanvasState | None = None,
        projection: FlowProjection | None = None,
        configure_logging: bool = False,
    ) -> None:
        self.settings = settings or NodeweaveSettings()
        if configure_logging:
            configure_from_settings(self.settings.logging)
        self.scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.bus: EventBusProtocol = bus if bus is not None else EventBus()
        self.aggregators = AggregatorRegistry()
        self.plugins = PluginRegistry(self.aggregators)
        self.store = NodeStore(
            bus=self.bus,
            scheduler=self.scheduler,
            settings=self.settings.store,
            aggregators=self.aggregators,
        )
        self.directives = DirectiveProcessor(
            self.store,
            self.scheduler,
            batch_settings=self.settings.batch,
            retry_settings=self.settings.retry,
            evaluator_settings=self.settings.evaluator,
        )
        self.processor = NodeProcessor(self.store, self.directives, self.plugins, self.scheduler)
        self.canvas = canvas if canvas is not None else CanvasState()
        self.projection = projection if projection is not None else FlowProjection()
        self.sync = SynchronizationManager(
            self.canvas,
            self.projection,
            self.scheduler,
            store=self.store,
            settings=self.settings.sync,
        )
        self.initialized = False

    async def initialize(self, *, builtin_plugins: bool = True) -> None:
        """Register plugins, initialize them, and bridge store events into sync."""
        if self.initialized:
            return
        if builtin_plugins:
            self.plugins.register_builtin_plugins()
        await self.plugins.initialize()
        self.sync.attach_store(self.store)
        if self.settings.processing.process_on_connect:
            self.bus.subscribe(ConnectionAdded, self._on_connection_added)
        self.initialized = True
        logger.info("workflow_initialized", plugins=self.plugins.list())

    async def cleanup(self, timeout: float | None = None) -> bool:
        """Drain in-flight work (bounded), then release everything.

        Returns:
            False if some in-flight work was still running at the timeout
        """
        if timeout is None:
            timeout = self.settings.cleanup.drain_timeout_seconds
        self.bus.unsubscribe(ConnectionAdded, self._on_connection_added)
        drained = await self.directives.cleanup(timeout)
        self.sync.cleanup()
        await self.plugins.cleanup()
        tasks_drained = await self.scheduler.drain(timeout)
        self.store.clear()
        self.initialized = False
        logger.info("workflow_cleaned_up", drained=drained and tasks_drained)
        return drained and tasks_drained

    async def update_node_data(
        self,
        node_id: str,
        partial: Mapping[str, Any],
        *,
        trigger_processing: bool = False,
    ) -> dict[str, Any] | None:
        """Update a node through the store, optionally re-processing it and its downstream.

        Raises:
            ValidationError: If the update is malformed
            RetryExhaustedError: If processing dispatched a directive that ran out of retries
        """
        updated = self.store.update_node_data(node_id, partial)
        if updated is not None and trigger_processing:
            await self.processor.process_node(node_id)
            return self.store.get_node_data(node_id)
        return updated

    def _on_connection_added(self, event: ConnectionAdded) -> None:
        target = event.connection.target_node_id
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("connect_processing_skipped", target=target, reason="no running event loop")
            return
        self.scheduler.spawn(self._process_connected(target))

    async def _process_connected(self, node_id: str) -> ProcessingOutput | None:
        try:
            return await self.processor.process_node(node_id)
        except RetryExhaustedError as e:
            # Recorded on the issuing node; this task has no awaiter
            logger.warning("connect_processing_retry_exhausted", node_id=node_id, attempts=e.attempts)
            return None

    def get_stats(self) -> dict[str, Any]:
        return {
            "store": self.store.get_stats(),
            "directives": self.directives.get_stats(),
            "plugins": self.plugins.get_stats(),
            "sync": self.sync.get_stats(),
        }

    async def __aenter__(self) -> WorkflowContext:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.cleanup()
