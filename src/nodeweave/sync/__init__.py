"""Synchronization between the store, the canvas and the flow projection."""

from nodeweave.sync.changes import detect_edge_changes, detect_node_changes
from nodeweave.sync.manager import SynchronizationManager
from nodeweave.sync.resolver import ConflictResolver
from nodeweave.sync.views import CanvasState, FlowProjection

__all__ = [
    "CanvasState",
    "ConflictResolver",
    "FlowProjection",
    "SynchronizationManager",
    "detect_edge_changes",
    "detect_node_changes",
]
