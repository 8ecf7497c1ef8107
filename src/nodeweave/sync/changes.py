# src/nodeweave/sync/changes.py
"""Diff two canvas snapshots into canvas SyncChanges."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from nodeweave.contracts.sync import SyncChange

Snapshot = Mapping[str, Mapping[str, Any]] | Iterable[Mapping[str, Any]]


def _by_id(snapshot: Snapshot) -> dict[str, Mapping[str, Any]]:
    if isinstance(snapshot, Mapping):
        return dict(snapshot)
    return {item["id"]: item for item in snapshot}


def detect_node_changes(
    old: Snapshot,
    new: Snapshot,
    *,
    timestamp: float = 0.0,
    source: str | None = None,
) -> list[SyncChange]:
    """Changes that turn ``old`` nodes into ``new`` nodes.

    Emits ``add`` and ``remove`` for membership, then ``position``,
    ``select`` and ``update`` (data) for nodes present in both.
    """
    before = _by_id(old)
    after = _by_id(new)
    changes: list[SyncChange] = []

    def change(kind: str, node_id: str, data: Any = None) -> None:
        changes.append(SyncChange(type=kind, target_id=node_id, data=data, timestamp=timestamp, source=source))

    for node_id, node in after.items():
        previous = before.get(node_id)
        if previous is None:
            change("add", node_id, dict(node))
            continue
        if node.get("position") != previous.get("position"):
            change("position", node_id, {"position": node.get("position")})
        if bool(node.get("selected")) != bool(previous.get("selected")):
            change("select", node_id, {"selected": bool(node.get("selected"))})
        if node.get("data") != previous.get("data"):
            change("update", node_id, {"data": node.get("data")})

    for node_id in before:
        if node_id not in after:
            change("remove", node_id)
    return changes


def detect_edge_changes(
    old: Snapshot,
    new: Snapshot,
    *,
    timestamp: float = 0.0,
    source: str | None = None,
) -> list[SyncChange]:
    """``connect`` for new edges, ``disconnect`` for removed ones.

    An edge whose endpoints changed is reported as a disconnect followed by
    a connect.
    """
    before = _by_id(old)
    after = _by_id(new)
    changes: list[SyncChange] = []
    endpoint_keys = ("source", "target", "sourceHandle", "targetHandle")

    for edge_id, edge in before.items():
        current = after.get(edge_id)
        if current is None or any(current.get(k) != edge.get(k) for k in endpoint_keys):
            changes.append(
                SyncChange(type="disconnect", target_id=edge_id, data=dict(edge), timestamp=timestamp, source=source)
            )
    for edge_id, edge in after.items():
        previous = before.get(edge_id)
        if previous is None or any(previous.get(k) != edge.get(k) for k in endpoint_keys):
            changes.append(
                SyncChange(type="connect", target_id=edge_id, data=dict(edge), timestamp=timestamp, source=source)
            )
    return changes
