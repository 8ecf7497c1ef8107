# src/nodeweave/sync/manager.py
"""Synchronization Manager.

Keeps the store, the canvas and the flow projection consistent. Changes
from any of the three are queued as SyncItems and drained by a single
consumer loop, guarded by ``is_processing``. Each item is dispatched by its
source to a translator table that projects the change onto the other two
views.

A translator failure is resolved by the ConflictResolver. ``retry``
re-queues the item at the front of the queue after the resolution delay;
exhaustion and every other strategy record a conflict, forward it to the
projection and drop the item.

Store events caused by the manager's own translators are not re-queued.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog

from nodeweave.contracts.enums import ChangeOrigin, ConflictStrategy, SyncSource, SyncStatus
from nodeweave.contracts.errors import SyncConflictError
from nodeweave.contracts.events import ConnectionAdded, ConnectionRemoved, NodeDataUpdated, NodeRemoved
from nodeweave.contracts.nodes import DEFAULT_HANDLE, EDGE_ID_PREFIX, NODE_SECTIONS
from nodeweave.contracts.sync import ConflictRecord, SyncChange, SyncHistoryEntry, SyncItem
from nodeweave.core.config import SyncSettings
from nodeweave.engine.scheduler import Scheduler, TimerHandle
from nodeweave.engine.store import NodeStore
from nodeweave.sync.resolver import ConflictResolver, StrategyHandler
from nodeweave.sync.views import CanvasState, FlowProjection, GraphView

logger = structlog.get_logger(__name__)

Translator = Callable[[SyncChange], Any]


def _store_sections(data: Any) -> dict[str, Any]:
    """Node sections in ``data`` that the store accepts as an update."""
    if not isinstance(data, Mapping):
        return {}
    sections: dict[str, Any] = {}
    for key, value in data.items():
        if key not in NODE_SECTIONS or not isinstance(value, Mapping):
            continue
        if key == "input":
            value = {k: v for k, v in value.items() if k != "connections"}
        sections[key] = dict(value)
    return sections


def _edge_from_connection(connection: Mapping[str, Any], edge_id: str) -> dict[str, Any]:
    return {
        "id": edge_id,
        "source": connection["sourceNodeId"],
        "target": connection["targetNodeId"],
        "sourceHandle": connection.get("sourceHandle"),
        "targetHandle": connection.get("targetHandle"),
    }


def _view_edge_id(view: GraphView, connection: Mapping[str, Any]) -> str:
    """The id a view uses (or should use) for a store connection."""
    edge_id = connection.get("edgeId")
    candidates = [f"{EDGE_ID_PREFIX}{edge_id}", edge_id] if edge_id else []
    candidates.append(connection["id"])
    for candidate in candidates:
        if candidate in view.edges:
            return candidate
    return edge_id or connection["id"]


class SynchronizationManager:
    """Single-consumer reconciliation queue between store, canvas and projection.

    Example:
        manager = SynchronizationManager(canvas, projection, scheduler, store=store)
        manager.attach_store(store)
        manager.queue_sync(SyncSource.CANVAS, [SyncChange("position", "a", {"position": {"x": 10, "y": 5}})])
        await manager.process_queue()
    """

    def __init__(
        self,
        canvas: CanvasState,
        projection: FlowProjection,
        scheduler: Scheduler,
        *,
        store: NodeStore | None = None,
        settings: SyncSettings | None = None,
        auto_process: bool = True,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._canvas = canvas
        self._projection = projection
        self._scheduler = scheduler
        self._store = store
        self._auto_process = auto_process
        self._resolver = ConflictResolver(self._settings, now=scheduler.now)
        self._queue: deque[SyncItem] = deque()
        self._history: deque[SyncHistoryEntry] = deque(maxlen=self._settings.max_history)
        self._ids = itertools.count(1)
        self._processing = False
        self._paused = False
        self._applying = False
        self._attached: NodeStore | None = None
        self._retry_timers: dict[str, TimerHandle] = {}
        self._reset_stats()
        self._translators: dict[SyncSource, dict[str, Translator]] = {
            SyncSource.CANVAS: {
                "position": self._canvas_position,
                "remove": self._canvas_remove,
                "add": self._canvas_add,
                "select": self._canvas_select,
                "dimensions": self._canvas_dimensions,
                "update": self._canvas_update,
                "connect": self._canvas_connect,
                "disconnect": self._canvas_disconnect,
            },
            SyncSource.STORE: {
                "nodeDataUpdated": self._store_node_data_updated,
                "connectionAdded": self._store_connection_added,
                "connectionRemoved": self._store_connection_removed,
                "nodeRemoved": self._store_node_removed,
            },
            SyncSource.PROJECTION: {
                "nodeUpdated": self._projection_node_updated,
                "edgeUpdated": self._projection_edge_updated,
            },
        }

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def resolver(self) -> ConflictResolver:
        return self._resolver

    # === Queue ===

    def queue_sync(self, source: SyncSource | str, changes: Iterable[SyncChange]) -> SyncItem:
        """Append a sync item and start draining if idle."""
        item = SyncItem(
            id=f"sync-{next(self._ids)}",
            source=SyncSource(source),
            changes=list(changes),
            timestamp=self._scheduler.now(),
        )
        self._queue.append(item)
        logger.debug("sync_queued", item_id=item.id, source=item.source, changes=len(item.changes))
        self._kick()
        return item

    async def process_queue(self) -> None:
        """Drain the queue. Returns immediately if a drain is already running or paused."""
        if self._processing or self._paused:
            return
        self._processing = True
        try:
            while self._queue and not self._paused:
                await self._process_item(self._queue.popleft())
        finally:
            self._processing = False

    def _kick(self) -> None:
        if not self._auto_process or self._processing or self._paused or not self._queue:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller drains explicitly with process_queue()
            return
        self._scheduler.spawn(self.process_queue())

    async def _process_item(self, item: SyncItem) -> None:
        started = self._scheduler.now()
        self._stats["totalSyncs"] += 1
        try:
            await self._translate(item)
        except Exception as e:
            await self._handle_failure(item, e, started)
            return
        duration = self._scheduler.now() - started
        self._stats["successfulSyncs"] += 1
        self._stats["totalSyncTime"] += duration
        self._record_history(item, SyncStatus.SUCCESS, duration)

    async def _translate(self, item: SyncItem) -> None:
        table = self._translators.get(item.source)
        if table is None:
            logger.warning("sync_source_unknown", item_id=item.id, source=item.source)
            return
        for change in item.changes:
            translator = table.get(change.type)
            if translator is None:
                logger.warning("sync_change_type_unknown", item_id=item.id, source=item.source, type=change.type)
                continue
            self._applying = True
            try:
                result = translator(change)
                if inspect.isawaitable(result):
                    await result
            finally:
                self._applying = False

    async def _handle_failure(self, item: SyncItem, error: Exception, started: float) -> None:
        duration = self._scheduler.now() - started
        strategy = self._resolver.determine_strategy(error)
        resolution = self._resolver.resolve(strategy, item, error)

        if strategy == ConflictStrategy.RETRY and resolution.resolved:
            item.retry_count += 1
            self._stats["retries"] += 1
            delay = resolution.delay or 0.0
            logger.info("sync_retry_scheduled", item_id=item.id, attempt=item.retry_count, delay=delay, error=str(error))
            self._record_history(item, SyncStatus.RETRYING, duration, str(error))
            self._retry_timers[item.id] = self._scheduler.call_later(delay, lambda: self._requeue(item))
            return

        conflict = SyncConflictError(item.id, strategy.value, error)
        conflict.__cause__ = error
        record = ConflictRecord(item=item, error=conflict, resolution=resolution, timestamp=self._scheduler.now())
        self._stats["conflicts"] += 1
        self._stats["failedSyncs"] += 1
        logger.warning("sync_item_dropped", item_id=item.id, strategy=strategy, error=str(error))
        self._record_history(item, SyncStatus.CONFLICT, duration, str(error))
        self._projection.report_conflict(record)

    async def _requeue(self, item: SyncItem) -> None:
        self._retry_timers.pop(item.id, None)
        self._queue.appendleft(item)
        await self.process_queue()

    def _record_history(self, item: SyncItem, status: SyncStatus, duration: float, error: str | None = None) -> None:
        self._history.append(
            SyncHistoryEntry(
                id=item.id,
                source=item.source,
                status=status,
                duration=duration,
                timestamp=self._scheduler.now(),
                change_count=len(item.changes),
                error=error,
            )
        )

    # === Store bridge ===

    def attach_store(self, store: NodeStore) -> None:
        """Queue store events as store-sourced sync items."""
        if self._attached is not None:
            self.detach_store()
        self._store = store
        store.bus.subscribe(NodeDataUpdated, self._on_node_data_updated)
        store.bus.subscribe(ConnectionAdded, self._on_connection_added)
        store.bus.subscribe(ConnectionRemoved, self._on_connection_removed)
        store.bus.subscribe(NodeRemoved, self._on_node_removed)
        self._attached = store

    def detach_store(self) -> None:
        store = self._attached
        if store is None:
            return
        store.bus.unsubscribe(NodeDataUpdated, self._on_node_data_updated)
        store.bus.unsubscribe(ConnectionAdded, self._on_connection_added)
        store.bus.unsubscribe(ConnectionRemoved, self._on_connection_removed)
        store.bus.unsubscribe(NodeRemoved, self._on_node_removed)
        self._attached = None

    def _bridge(self, kind: str, target_id: str, data: Any) -> None:
        if self._applying:
            return
        change = SyncChange(
            type=kind,
            target_id=target_id,
            data=data,
            timestamp=self._scheduler.now(),
            source=ChangeOrigin.STORE.value,
        )
        self.queue_sync(SyncSource.STORE, [change])

    def _on_node_data_updated(self, event: NodeDataUpdated) -> None:
        self._bridge("nodeDataUpdated", event.node_id, event.data)

    def _on_connection_added(self, event: ConnectionAdded) -> None:
        self._bridge("connectionAdded", event.connection_id, event.connection.to_dict())

    def _on_connection_removed(self, event: ConnectionRemoved) -> None:
        self._bridge("connectionRemoved", event.connection_id, event.connection.to_dict())

    def _on_node_removed(self, event: NodeRemoved) -> None:
        self._bridge("nodeRemoved", event.node_id, None)

    # === Canvas translators ===

    def _require_store(self) -> NodeStore:
        if self._store is None:
            raise RuntimeError("No store attached to the synchronization manager")
        return self._store

    def _canvas_position(self, change: SyncChange) -> None:
        data = change.data or {}
        self._projection.update_position(change.target_id, data.get("position", data))
        store = self._require_store()
        if store.has_node(change.target_id):
            store.update_node_data(change.target_id, {"meta": {"lastModified": change.timestamp or self._scheduler.now()}})

    def _canvas_remove(self, change: SyncChange) -> None:
        self._projection.remove_node(change.target_id)
        self._require_store().unregister_node(change.target_id)

    def _canvas_add(self, change: SyncChange) -> None:
        node = dict(change.data or {})
        self._projection.upsert_node(
            change.target_id,
            {key: value for key, value in node.items() if key in ("position", "data", "dimensions", "selected")},
        )
        store = self._require_store()
        if not store.has_node(change.target_id):
            store.register_node(
                change.target_id,
                _store_sections(node.get("data")),
                update_callback=self._canvas.on_store_update,
            )

    def _canvas_select(self, change: SyncChange) -> None:
        data = change.data or {}
        self._projection.set_selected(change.target_id, bool(data.get("selected", True)))

    def _canvas_dimensions(self, change: SyncChange) -> None:
        data = change.data or {}
        self._projection.set_dimensions(change.target_id, data.get("dimensions", data))

    def _canvas_update(self, change: SyncChange) -> None:
        data = (change.data or {}).get("data", {})
        self._projection.upsert_node(change.target_id, {"data": data})
        sections = _store_sections(data)
        store = self._require_store()
        if sections and store.has_node(change.target_id):
            store.update_node_data(change.target_id, sections)

    def _canvas_connect(self, change: SyncChange) -> None:
        edge = dict(change.data or {})
        edge.setdefault("id", change.target_id)
        record = self._require_store().add_connection(
            edge["source"],
            edge["target"],
            edge.get("sourceHandle") or DEFAULT_HANDLE,
            edge.get("targetHandle") or DEFAULT_HANDLE,
            edge_id=edge["id"],
        )
        if record is None:
            raise ValueError(f"invalid edge {edge['id']!r}: unknown endpoint")
        self._projection.upsert_edge(edge)

    def _canvas_disconnect(self, change: SyncChange) -> None:
        self._projection.remove_edge(change.target_id)
        self._require_store().remove_connection_by_edge_id(change.target_id)

    # === Store translators ===

    def _store_node_data_updated(self, change: SyncChange) -> None:
        self._projection.upsert_node(change.target_id, {"data": change.data})
        if change.target_id in self._canvas.nodes:
            self._canvas.update_node_data(change.target_id, change.data or {})

    def _store_connection_added(self, change: SyncChange) -> None:
        connection = change.data
        self._projection.upsert_edge(_edge_from_connection(connection, _view_edge_id(self._projection, connection)))
        self._canvas.upsert_edge(_edge_from_connection(connection, _view_edge_id(self._canvas, connection)))

    def _store_connection_removed(self, change: SyncChange) -> None:
        connection = change.data
        self._projection.remove_edge(_view_edge_id(self._projection, connection))
        self._canvas.remove_edge(_view_edge_id(self._canvas, connection))

    def _store_node_removed(self, change: SyncChange) -> None:
        self._projection.remove_node(change.target_id)
        self._canvas.remove_node(change.target_id)

    # === Projection translators ===

    def _projection_node_updated(self, change: SyncChange) -> None:
        values = dict(change.data or {})
        self._canvas.upsert_node(change.target_id, values)
        sections = _store_sections(values.get("data"))
        store = self._require_store()
        if sections and store.has_node(change.target_id):
            store.update_node_data(change.target_id, sections)

    def _projection_edge_updated(self, change: SyncChange) -> None:
        edge = dict(change.data or {})
        edge.setdefault("id", change.target_id)
        self._canvas.upsert_edge(edge)

    # === Control / introspection ===

    def register_translator(self, source: SyncSource | str, change_type: str, translator: Translator) -> None:
        self._translators.setdefault(SyncSource(source), {})[change_type] = translator

    def register_strategy(self, strategy: ConflictStrategy | str, handler: StrategyHandler) -> None:
        self._resolver.register_strategy(strategy, handler)

    def set_default_conflict_strategy(self, strategy: ConflictStrategy | str) -> None:
        self._resolver.set_default(strategy)

    def pause(self) -> None:
        self._paused = True
        logger.info("sync_paused", queued=len(self._queue))

    def resume(self) -> None:
        self._paused = False
        logger.info("sync_resumed", queued=len(self._queue))
        self._kick()

    def get_history(self) -> list[SyncHistoryEntry]:
        return list(self._history)

    def get_queue_status(self) -> dict[str, Any]:
        return {
            "length": len(self._queue),
            "isProcessing": self._processing,
            "paused": self._paused,
            "items": [
                {
                    "id": item.id,
                    "source": item.source.value,
                    "changeCount": len(item.changes),
                    "retryCount": item.retry_count,
                }
                for item in self._queue
            ],
        }

    def get_stats(self) -> dict[str, Any]:
        successful = self._stats["successfulSyncs"]
        return {
            "totalSyncs": self._stats["totalSyncs"],
            "successfulSyncs": successful,
            "failedSyncs": self._stats["failedSyncs"],
            "conflicts": self._stats["conflicts"],
            "retries": self._stats["retries"],
            "averageSyncTime": self._stats["totalSyncTime"] / successful if successful else 0.0,
            "queueLength": len(self._queue),
            "historySize": len(self._history),
            "isProcessing": self._processing,
            "paused": self._paused,
        }

    def _reset_stats(self) -> None:
        self._stats: dict[str, Any] = {
            "totalSyncs": 0,
            "successfulSyncs": 0,
            "failedSyncs": 0,
            "conflicts": 0,
            "retries": 0,
            "totalSyncTime": 0.0,
        }

    def reset(self) -> None:
        """Drop queued items, history and counters, and unpause."""
        for timer in self._retry_timers.values():
            timer.cancel()
        self._retry_timers.clear()
        self._queue.clear()
        self._history.clear()
        self._reset_stats()
        self._paused = False

    def cleanup(self) -> None:
        self.detach_store()
        self.reset()
