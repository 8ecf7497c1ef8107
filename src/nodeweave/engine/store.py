# src/nodeweave/engine/store.py
"""Node & Connection Store.

Canonical per-node state plus the connection graph. Nodes live in an arena
keyed by id; connections reference node ids and are owned by the target
node's ``input.connections`` map, with a store-wide index for lookups by
connection id or canvas edge id.

Every mutation emits a contract event on the store's event bus. Update
callbacks registered per node are held weakly and only notify the
presentation layer; correctness never depends on them.

Unknown node ids return None / no-op so downstream consumers can poll
safely. Malformed calls (empty id, unknown section) raise ValidationError.
"""

from __future__ import annotations

import copy
import inspect
import weakref
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from nodeweave.contracts.enums import ErrorCode, NodeSection, NodeStatus
from nodeweave.contracts.errors import NodeErrorEntry, ValidationError
from nodeweave.contracts.events import (
    ConnectionAdded,
    ConnectionRemoved,
    NodeDataUpdated,
    NodeError,
    NodeRemoved,
)
from nodeweave.contracts.nodes import (
    DEFAULT_HANDLE,
    NODE_SECTIONS,
    ConnectionIndexEntry,
    ConnectionMeta,
    ConnectionRecord,
    connection_id,
    infer_data_type,
    new_node_data,
    strip_edge_prefix,
    validate_node_data,
)
from nodeweave.core.config import StoreSettings
from nodeweave.core.events import EventBus, EventBusProtocol
from nodeweave.engine.aggregation import AggregationResult, AggregatorRegistry, CustomAggregator, aggregate
from nodeweave.engine.scheduler import AsyncioScheduler, Scheduler

logger = structlog.get_logger(__name__)

UpdateCallback = Callable[[str, dict[str, Any]], None]


@dataclass
class _NodeEntry:
    data: dict[str, Any]
    callback_ref: Callable[[], UpdateCallback | None] | None = None


def _weak_callback(callback: UpdateCallback) -> Callable[[], UpdateCallback | None]:
    try:
        if inspect.ismethod(callback):
            return weakref.WeakMethod(callback)
        return weakref.ref(callback)
    except TypeError as e:
        raise ValidationError(f"update_callback must support weak references: {e}") from e


class NodeStore:
    """Arena of node records and their connections.

    Example:
        store = NodeStore()
        store.register_node("a", {"output": {"data": {"x": 1}}})
        store.register_node("b")
        store.add_connection("a", "b")
        store.aggregate_inputs("b").value  # {"x": 1}
    """

    def __init__(
        self,
        *,
        bus: EventBusProtocol | None = None,
        scheduler: Scheduler | None = None,
        settings: StoreSettings | None = None,
        aggregators: AggregatorRegistry | None = None,
    ) -> None:
        self._bus: EventBusProtocol = bus if bus is not None else EventBus()
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self._settings = settings or StoreSettings()
        self._aggregators = aggregators if aggregators is not None else AggregatorRegistry()
        self._nodes: dict[str, _NodeEntry] = {}
        self._connections: dict[str, ConnectionIndexEntry] = {}

    @property
    def bus(self) -> EventBusProtocol:
        return self._bus

    @property
    def aggregators(self) -> AggregatorRegistry:
        return self._aggregators

    # === Nodes ===

    def register_node(
        self,
        node_id: str,
        initial_data: Mapping[str, Any] | None = None,
        update_callback: UpdateCallback | None = None,
    ) -> dict[str, Any]:
        """Register a node, filling in section defaults.

        Re-registering an existing id replaces its sections but keeps its
        connections.

        Raises:
            ValidationError: If node_id is empty or the resulting record is malformed
        """
        if not isinstance(node_id, str) or not node_id:
            raise ValidationError("node_id must be a non-empty string")

        data = new_node_data(initial_data, self._scheduler.timestamp())
        existing = self._nodes.get(node_id)
        # Connections are only created through add_connection
        data["input"]["connections"] = existing.data["input"]["connections"] if existing else {}

        problems = validate_node_data(data)
        if problems:
            raise ValidationError(f"Invalid node data for {node_id!r}: {'; '.join(problems)}")

        callback_ref = _weak_callback(update_callback) if update_callback is not None else None
        if existing is not None and callback_ref is None:
            callback_ref = existing.callback_ref
        self._nodes[node_id] = _NodeEntry(data=data, callback_ref=callback_ref)
        logger.debug("node_registered", node_id=node_id, category=data["meta"]["category"])
        self._changed(node_id, copy.deepcopy(data))
        return copy.deepcopy(data)

    def unregister_node(self, node_id: str) -> bool:
        """Remove a node and every connection referencing it."""
        if node_id not in self._nodes:
            return False
        for entry in list(self._connections.values()):
            if node_id in (entry.source_node_id, entry.target_node_id):
                self.remove_connection_by_id(entry.connection_id)
        del self._nodes[node_id]
        logger.debug("node_unregistered", node_id=node_id)
        self._bus.emit(NodeRemoved(node_id=node_id))
        return True

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def node_ids(self) -> list[str]:
        return list(self._nodes)

    def get_node_data(self, node_id: str) -> dict[str, Any] | None:
        """Defensive deep copy of a node's record, or None if unknown."""
        entry = self._nodes.get(node_id)
        if entry is None:
            return None
        return copy.deepcopy(entry.data)

    def update_node_data(self, node_id: str, partial: Mapping[str, Any]) -> dict[str, Any] | None:
        """Apply a partial update; top-level keys within each section are replaced.

        Returns:
            Copy of the updated record, or None if the node is unknown

        Raises:
            ValidationError: If ``partial`` names an unknown section, a section
                value is not a mapping, it tries to replace input.connections,
                or the updated record would fail validate_node_data
        """
        if not isinstance(partial, Mapping):
            raise ValidationError(f"Update for {node_id!r} must be a mapping, got {type(partial).__name__}")
        unknown = set(partial) - NODE_SECTIONS
        if unknown:
            raise ValidationError(f"Unknown node section(s): {sorted(unknown)}")
        for section, value in partial.items():
            if section == NodeSection.PLUGIN and value is None:
                continue
            if not isinstance(value, Mapping):
                raise ValidationError(f"Section {section!r} update must be a mapping")
        input_update = partial.get(NodeSection.INPUT.value)
        if isinstance(input_update, Mapping) and "connections" in input_update:
            raise ValidationError("input.connections is managed by add_connection/remove_connection")

        entry = self._nodes.get(node_id)
        if entry is None:
            logger.debug("update_unknown_node", node_id=node_id)
            return None

        # Only touched sections are copied; input.connections keeps its identity
        candidate = dict(entry.data)
        for section, value in partial.items():
            if value is None:
                candidate[section] = None
            elif candidate.get(section) is None:
                candidate[section] = copy.deepcopy(dict(value))
            else:
                candidate[section] = {**candidate[section], **copy.deepcopy(dict(value))}

        problems = validate_node_data(candidate)
        if problems:
            raise ValidationError(f"Invalid update for {node_id!r}: {'; '.join(problems)}")
        entry.data = candidate

        snapshot = copy.deepcopy(entry.data)
        self._changed(node_id, snapshot, changes=copy.deepcopy(dict(partial)))
        return copy.deepcopy(snapshot)

    def set_status(
        self,
        node_id: str,
        status: NodeStatus,
        *,
        processing_time: float | None = None,
        data_size: int | None = None,
    ) -> None:
        """Update output.meta status fields in place."""
        entry = self._nodes.get(node_id)
        if entry is None:
            return
        meta = entry.data["output"]["meta"]
        meta["status"] = status.value
        meta["timestamp"] = self._scheduler.timestamp()
        if processing_time is not None:
            meta["processingTime"] = processing_time
        if data_size is not None:
            meta["dataSize"] = data_size
        self._changed(node_id, copy.deepcopy(entry.data), changes={"output": {"meta": copy.deepcopy(meta)}})

    # === Errors ===

    def record_error(
        self,
        node_id: str,
        code: str,
        message: str,
        *,
        source: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> NodeErrorEntry | None:
        """Append an error to a node's error section and emit NodeError."""
        entry = self._nodes.get(node_id)
        if entry is None:
            logger.warning("error_for_unknown_node", node_id=node_id, code=code, message=message)
            return None
        error: NodeErrorEntry = {
            "code": str(code),
            "message": message,
            "source": source,
            "timestamp": self._scheduler.timestamp(),
        }
        if details:
            error["details"] = copy.deepcopy(dict(details))
        entry.data["error"]["errors"].append(error)
        entry.data["error"]["hasError"] = True
        logger.info("node_error_recorded", node_id=node_id, code=str(code), message=message)
        self._bus.emit(NodeError(node_id=node_id, code=str(code), message=message, source=source))
        self._changed(node_id, copy.deepcopy(entry.data), changes={"error": copy.deepcopy(entry.data["error"])})
        return copy.deepcopy(error)

    def clear_errors(self, node_id: str) -> None:
        entry = self._nodes.get(node_id)
        if entry is None or not entry.data["error"]["errors"]:
            return
        entry.data["error"] = {"hasError": False, "errors": []}
        self._changed(node_id, copy.deepcopy(entry.data), changes={"error": copy.deepcopy(entry.data["error"])})

    # === Connections ===

    def add_connection(
        self,
        source_node_id: str,
        target_node_id: str,
        source_handle: str = DEFAULT_HANDLE,
        target_handle: str = DEFAULT_HANDLE,
        *,
        edge_id: str | None = None,
        priority: int | None = None,
    ) -> ConnectionRecord | None:
        """Connect two registered nodes.

        Re-adding the same composite id overwrites the existing record. When
        the target's ``input.config.allowMultipleConnections`` is False, the
        target's other connections are removed first.

        Returns:
            Copy of the connection record, or None if either node is unknown
        """
        source = self._nodes.get(source_node_id)
        target = self._nodes.get(target_node_id)
        if source is None or target is None:
            logger.debug("connection_to_unknown_node", source=source_node_id, target=target_node_id)
            return None

        cid = connection_id(source_node_id, target_node_id, source_handle, target_handle)
        replaced = False
        allow_multiple = target.data["input"]["config"].get(
            "allowMultipleConnections", self._settings.allow_multiple_connections
        )
        if not allow_multiple:
            for existing_id in list(target.data["input"]["connections"]):
                if existing_id != cid:
                    self.remove_connection_by_id(existing_id)
                    replaced = True

        now = self._scheduler.timestamp()
        snapshot = copy.deepcopy(source.data["output"]["data"])
        record = ConnectionRecord(
            id=cid,
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            source_handle=source_handle,
            target_handle=target_handle,
            data=snapshot,
            edge_id=strip_edge_prefix(edge_id) if edge_id else None,
            meta=ConnectionMeta(timestamp=now, data_type=infer_data_type(snapshot), priority=priority),
        )
        target.data["input"]["connections"][cid] = record
        self._connections[cid] = ConnectionIndexEntry(
            connection_id=cid,
            source_node_id=source_node_id,
            target_node_id=target_node_id,
            created_at=now,
            edge_id=record.edge_id,
        )
        logger.debug("connection_added", connection_id=cid, replaced=replaced)
        self._bus.emit(ConnectionAdded(connection_id=cid, connection=copy.deepcopy(record), replaced=replaced))
        self._notify(target_node_id, copy.deepcopy(target.data))
        return copy.deepcopy(record)

    def remove_connection(
        self,
        source_node_id: str,
        target_node_id: str,
        source_handle: str = DEFAULT_HANDLE,
        target_handle: str = DEFAULT_HANDLE,
    ) -> ConnectionRecord | None:
        """Remove one connection. Returns the removed record, or None."""
        return self.remove_connection_by_id(connection_id(source_node_id, target_node_id, source_handle, target_handle))

    def remove_connection_by_id(self, cid: str) -> ConnectionRecord | None:
        """Remove a connection by composite id and reset the target's processed state.

        The target's chosen aggregation strategy survives the reset.
        """
        index_entry = self._connections.pop(cid, None)
        if index_entry is None:
            return None
        target = self._nodes.get(index_entry.target_node_id)
        if target is None:
            return None
        record: ConnectionRecord | None = target.data["input"]["connections"].pop(cid, None)
        if record is None:
            return None

        processed = target.data["input"]["processed"]
        target.data["input"]["processed"] = {"strategy": processed["strategy"]} if "strategy" in processed else {}

        logger.debug("connection_removed", connection_id=cid)
        self._bus.emit(ConnectionRemoved(connection_id=cid, connection=copy.deepcopy(record)))
        self._notify(index_entry.target_node_id, copy.deepcopy(target.data))
        return copy.deepcopy(record)

    def find_connection_by_edge_id(self, edge_id: str) -> ConnectionIndexEntry | None:
        """Look up a connection by canvas edge id (with or without the canvas prefix)."""
        stripped = strip_edge_prefix(edge_id)
        for entry in self._connections.values():
            if entry.edge_id == stripped or entry.connection_id == stripped:
                return entry
        return None

    def remove_connection_by_edge_id(self, edge_id: str) -> ConnectionRecord | None:
        """Remove the connection behind a canvas edge. Unknown ids are a logged no-op."""
        entry = self.find_connection_by_edge_id(edge_id)
        if entry is None:
            logger.debug("edge_not_found", edge_id=edge_id)
            return None
        return self.remove_connection_by_id(entry.connection_id)

    def get_connection(self, cid: str) -> ConnectionRecord | None:
        entry = self._connections.get(cid)
        if entry is None:
            return None
        target = self._nodes[entry.target_node_id]
        record: ConnectionRecord = target.data["input"]["connections"][cid]
        return copy.deepcopy(record)

    def get_connections(self, node_id: str) -> dict[str, list[ConnectionIndexEntry]]:
        """Incoming and outgoing connections of a node."""
        incoming = [e for e in self._connections.values() if e.target_node_id == node_id]
        outgoing = [e for e in self._connections.values() if e.source_node_id == node_id]
        return {"incoming": incoming, "outgoing": outgoing}

    def downstream_of(self, node_id: str) -> list[str]:
        """Target node ids of a node's outgoing connections, in connection order, without duplicates."""
        targets: list[str] = []
        for entry in self._connections.values():
            if entry.source_node_id == node_id and entry.target_node_id not in targets:
                targets.append(entry.target_node_id)
        return targets

    # === Aggregation ===

    def aggregate_inputs(
        self,
        node_id: str,
        custom_handler: CustomAggregator | None = None,
    ) -> AggregationResult | None:
        """Refresh connection snapshots and aggregate them into input.processed.

        Each connection's data is refreshed from its source's live output and
        its timestamp set to the source output's timestamp. Aggregation
        failures are recorded on the node as AGGREGATION_ERROR.
        """
        entry = self._nodes.get(node_id)
        if entry is None:
            return None

        now = self._scheduler.timestamp()
        connections: dict[str, ConnectionRecord] = entry.data["input"]["connections"]
        for record in connections.values():
            source = self._nodes.get(record.source_node_id)
            if source is None:
                continue
            record.data = copy.deepcopy(source.data["output"]["data"])
            record.meta.data_type = infer_data_type(record.data)
            record.meta.timestamp = source.data["output"]["meta"]["timestamp"]
            record.meta.last_processed = now

        processed = entry.data["input"]["processed"]
        strategy = processed.get("strategy") or self._settings.default_aggregation_strategy.value
        result = aggregate(
            connections,
            strategy,
            entry.data["input"]["config"],
            node_data=copy.deepcopy(entry.data),
            custom_handler=custom_handler,
            aggregators=self._aggregators,
        )
        entry.data["input"]["processed"] = {
            "strategy": strategy,
            "data": copy.deepcopy(result.value),
            "connectionCount": len(connections),
            "aggregatedAt": now,
        }
        if result.error is not None:
            self.record_error(node_id, ErrorCode.AGGREGATION_ERROR, str(result.error), source=node_id)
        self._changed(
            node_id,
            copy.deepcopy(entry.data),
            changes={"input": {"processed": copy.deepcopy(entry.data["input"]["processed"])}},
        )
        return AggregationResult(copy.deepcopy(result.value), result.strategy, result.error)

    # === Stats / lifecycle ===

    def get_stats(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        by_category: dict[str, int] = {}
        with_errors = 0
        for entry in self._nodes.values():
            status = entry.data["output"]["meta"]["status"]
            category = entry.data["meta"]["category"]
            by_status[status] = by_status.get(status, 0) + 1
            by_category[category] = by_category.get(category, 0) + 1
            if entry.data["error"]["hasError"]:
                with_errors += 1
        return {
            "nodes": len(self._nodes),
            "connections": len(self._connections),
            "byStatus": by_status,
            "byCategory": by_category,
            "nodesWithErrors": with_errors,
        }

    def clear(self) -> None:
        """Drop every node and connection without emitting events."""
        self._nodes.clear()
        self._connections.clear()

    # === Internals ===

    def _changed(self, node_id: str, snapshot: dict[str, Any], changes: dict[str, Any] | None = None) -> None:
        self._bus.emit(NodeDataUpdated(node_id=node_id, data=snapshot, changes=changes if changes is not None else snapshot))
        self._notify(node_id, snapshot)

    def _notify(self, node_id: str, snapshot: dict[str, Any]) -> None:
        entry = self._nodes.get(node_id)
        if entry is None or entry.callback_ref is None:
            return
        callback = entry.callback_ref()
        if callback is None:
            entry.callback_ref = None
            return
        try:
            callback(node_id, snapshot)
        except Exception:
            # Presentation callbacks never affect store state
            logger.exception("update_callback_failed", node_id=node_id)
