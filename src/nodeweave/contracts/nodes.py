"""Node and connection records.

Node records are plain nested dicts (sections ``meta``, ``input``, ``output``,
``error`` and ``plugin``) because they are handed to plugins and the
presentation layer as JSON-like data. Connection records are dataclasses
owned by the target node's ``input.connections`` map.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from nodeweave.contracts.enums import NodeCategory, NodeSection, NodeStatus

DEFAULT_HANDLE = "default"

# Canvas edge ids carry this prefix; the store indexes edges without it.
EDGE_ID_PREFIX = "xy-edge__"

NODE_SECTIONS: frozenset[str] = frozenset(s.value for s in NodeSection)


def connection_id(
    source_node_id: str,
    target_node_id: str,
    source_handle: str = DEFAULT_HANDLE,
    target_handle: str = DEFAULT_HANDLE,
) -> str:
    """Composite connection identity ``source-target-sourceHandle-targetHandle``."""
    return f"{source_node_id}-{target_node_id}-{source_handle}-{target_handle}"


def strip_edge_prefix(edge_id: str) -> str:
    """Remove the canvas edge prefix if present."""
    if edge_id.startswith(EDGE_ID_PREFIX):
        return edge_id[len(EDGE_ID_PREFIX) :]
    return edge_id


def infer_data_type(value: Any) -> str:
    """Name the JSON type of a payload, for connection metadata."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


@dataclass
class ConnectionMeta:
    """Connection metadata.

    ``timestamp`` starts as the creation time and is refreshed to the source
    output's timestamp whenever the snapshot is refreshed, so the ``latest``
    aggregation strategy can order connections by when their data was produced.
    """

    timestamp: str
    data_type: str = "null"
    is_active: bool = True
    priority: int | None = None
    last_processed: str | None = None


@dataclass
class ConnectionRecord:
    """A directed link from one node's output handle to another node's input handle."""

    id: str
    source_node_id: str
    target_node_id: str
    meta: ConnectionMeta
    source_handle: str = DEFAULT_HANDLE
    target_handle: str = DEFAULT_HANDLE
    data: Any = None
    edge_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Wire form in the editor's camelCase shape."""
        return {
            "id": self.id,
            "sourceNodeId": self.source_node_id,
            "targetNodeId": self.target_node_id,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
            "data": copy.deepcopy(self.data),
            "edgeId": self.edge_id,
            "meta": {
                "timestamp": self.meta.timestamp,
                "dataType": self.meta.data_type,
                "isActive": self.meta.is_active,
                "priority": self.meta.priority,
                "lastProcessed": self.meta.last_processed,
            },
        }


@dataclass(frozen=True)
class ConnectionIndexEntry:
    """Store-wide index entry for a connection."""

    connection_id: str
    source_node_id: str
    target_node_id: str
    created_at: str
    edge_id: str | None = None


def new_node_data(initial: Mapping[str, Any] | None, timestamp: str) -> dict[str, Any]:
    """Build a complete node record with defaults filled in.

    Values supplied in ``initial`` win over defaults one level deep per
    section; ``output.meta`` is filled the same way.
    """
    initial = copy.deepcopy(dict(initial or {}))
    meta = initial.get("meta") or {}
    input_section = initial.get("input") or {}
    output = initial.get("output") or {}
    plugin = initial.get("plugin")

    data: dict[str, Any] = {
        "meta": {
            "label": "Untitled Node",
            "description": "",
            "function": "Generic Function",
            "emoji": "⚙️",
            "version": "1.0.0",
            "category": NodeCategory.PROCESS.value,
            "capabilities": [],
            **meta,
        },
        "input": {
            "connections": {},
            "processed": {},
            "config": {},
            **input_section,
        },
        "output": {
            "data": {},
            "directives": {},
            **output,
            "meta": {
                "timestamp": timestamp,
                "status": NodeStatus.IDLE.value,
                "processingTime": None,
                "dataSize": None,
                **(output.get("meta") or {}),
            },
        },
        "error": {"hasError": False, "errors": []},
        "plugin": None,
    }
    if plugin:
        data["plugin"] = {
            "version": "1.0.0",
            "config": {},
            "state": {},
            **plugin,
        }
    return data


def validate_node_data(data: Mapping[str, Any]) -> list[str]:
    """Check a node record's structure. Returns a list of problems (empty if valid)."""
    errors: list[str] = []
    meta = data.get("meta")
    if not isinstance(meta, Mapping):
        errors.append("meta section is required")
    else:
        if not meta.get("label"):
            errors.append("meta.label is required")
        if meta.get("category") not in {c.value for c in NodeCategory}:
            errors.append('meta.category must be "input", "process", or "output"')

    input_section = data.get("input")
    if not isinstance(input_section, Mapping):
        errors.append("input section is required")
    else:
        for key in ("connections", "processed", "config"):
            if not isinstance(input_section.get(key), Mapping):
                errors.append(f"input.{key} must be a mapping")

    output = data.get("output")
    if not isinstance(output, Mapping):
        errors.append("output section is required")
    else:
        if not isinstance(output.get("meta"), Mapping):
            errors.append("output.meta is required")
        elif output["meta"].get("status") not in {s.value for s in NodeStatus}:
            errors.append('output.meta.status must be "idle", "processing", "success", or "error"')
        if not isinstance(output.get("directives"), Mapping):
            errors.append("output.directives must be a mapping")

    error = data.get("error")
    if not isinstance(error, Mapping):
        errors.append("error section is required")
    else:
        if not isinstance(error.get("hasError"), bool):
            errors.append("error.hasError must be boolean")
        if not isinstance(error.get("errors"), list):
            errors.append("error.errors must be a list")

    plugin = data.get("plugin")
    if plugin is not None and not isinstance(plugin, Mapping):
        errors.append("plugin must be a mapping or null")
    return errors
