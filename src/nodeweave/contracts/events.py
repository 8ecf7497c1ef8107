"""Store change events.

Emitted synchronously on the store's event bus after every mutation. The
Synchronization Manager and the presentation layer subscribe by event class.
"""

from dataclasses import dataclass, field
from typing import Any

from nodeweave.contracts.nodes import ConnectionRecord


@dataclass(frozen=True)
class NodeDataUpdated:
    """A node's sections changed.

    ``changes`` is the partial update that was applied, keyed by section.
    ``data`` is a snapshot of the full record after the update.
    """

    node_id: str
    data: dict[str, Any]
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConnectionAdded:
    """A connection was inserted into the target node's inputs."""

    connection_id: str
    connection: ConnectionRecord
    replaced: bool = False


@dataclass(frozen=True)
class ConnectionRemoved:
    """A connection was removed from the target node's inputs."""

    connection_id: str
    connection: ConnectionRecord


@dataclass(frozen=True)
class NodeRemoved:
    """A node was unregistered from the store."""

    node_id: str


@dataclass(frozen=True)
class NodeProcessing:
    """Processing of a node started."""

    node_id: str


@dataclass(frozen=True)
class NodeProcessed:
    """Processing of a node finished successfully."""

    node_id: str
    output: Any
    processing_time: float


@dataclass(frozen=True)
class NodeError:
    """An error was recorded on a node's error section."""

    node_id: str
    code: str
    message: str
    source: str | None = None
