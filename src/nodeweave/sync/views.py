# src/nodeweave/sync/views.py
"""In-memory canvas and projection views.

The canvas is the interactive editor's node and edge state; the projection
is the derived flow view that also surfaces synchronization conflicts. Both
are plain dict-backed collections keyed by id. Rendering is out of scope;
these are the state the Synchronization Manager reconciles.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

import structlog

from nodeweave.contracts.sync import ConflictRecord

logger = structlog.get_logger(__name__)


def _edge(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": data["id"],
        "source": data.get("source"),
        "target": data.get("target"),
        "sourceHandle": data.get("sourceHandle"),
        "targetHandle": data.get("targetHandle"),
        **({"data": copy.deepcopy(data["data"])} if "data" in data else {}),
    }


class GraphView:
    def __init__(self) -> None:
        self.nodes: dict[str, dict[str, Any]] = {}
        self.edges: dict[str, dict[str, Any]] = {}

    def get_node(self, node_id: str) -> dict[str, Any] | None:
        node = self.nodes.get(node_id)
        return copy.deepcopy(node) if node is not None else None

    def get_edge(self, edge_id: str) -> dict[str, Any] | None:
        edge = self.edges.get(edge_id)
        return copy.deepcopy(edge) if edge is not None else None

    def upsert_node(self, node_id: str, values: Mapping[str, Any]) -> dict[str, Any]:
        node = self.nodes.setdefault(node_id, {"id": node_id, "position": {"x": 0, "y": 0}, "data": {}})
        for key, value in values.items():
            if key != "id":
                node[key] = copy.deepcopy(value)
        return node

    def remove_node(self, node_id: str) -> bool:
        if self.nodes.pop(node_id, None) is None:
            return False
        # Edges cannot outlive their endpoints
        for edge_id in [e for e, edge in self.edges.items() if node_id in (edge["source"], edge["target"])]:
            del self.edges[edge_id]
        return True

    def update_position(self, node_id: str, position: Mapping[str, Any]) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node {node_id!r}")
        node["position"] = {"x": position.get("x", 0), "y": position.get("y", 0)}

    def update_node_data(self, node_id: str, data: Mapping[str, Any]) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node {node_id!r}")
        node["data"] = copy.deepcopy(dict(data))

    def upsert_edge(self, edge: Mapping[str, Any]) -> dict[str, Any]:
        record = _edge(edge)
        self.edges[record["id"]] = record
        return record

    def remove_edge(self, edge_id: str) -> bool:
        return self.edges.pop(edge_id, None) is not None

    def clear(self) -> None:
        self.nodes.clear()
        self.edges.clear()


class CanvasState(GraphView):
    """Editor-side nodes and edges.

    ``on_store_update`` is the update callback handed to the store when the
    canvas adds a node, so store changes refresh the canvas node's data.
    """

    def on_store_update(self, node_id: str, data: dict[str, Any]) -> None:
        node = self.nodes.get(node_id)
        if node is not None:
            node["data"] = data


class FlowProjection(GraphView):
    """Derived flow view. Also collects synchronization conflicts."""

    def __init__(self) -> None:
        super().__init__()
        self.conflicts: list[ConflictRecord] = []

    def set_selected(self, node_id: str, selected: bool) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node {node_id!r}")
        node["selected"] = selected

    def set_dimensions(self, node_id: str, dimensions: Mapping[str, Any]) -> None:
        node = self.nodes.get(node_id)
        if node is None:
            raise KeyError(f"Unknown node {node_id!r}")
        node["dimensions"] = {"width": dimensions.get("width"), "height": dimensions.get("height")}

    def report_conflict(self, record: ConflictRecord) -> None:
        self.conflicts.append(record)
        logger.warning(
            "sync_conflict_reported",
            item_id=record.item.id,
            strategy=record.resolution.strategy,
            error=str(record.error),
        )

    def clear(self) -> None:
        super().clear()
        self.conflicts.clear()
