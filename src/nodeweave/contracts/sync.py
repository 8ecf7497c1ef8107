"""Synchronization queue items, conflict resolutions and history entries."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nodeweave.contracts.enums import ConflictStrategy, SyncSource, SyncStatus
from nodeweave.contracts.errors import SyncConflictError


@dataclass
class SyncChange:
    """One change carried by a sync item.

    ``source`` is the originator (a ChangeOrigin value such as ``user``),
    used by source_priority resolution. It is distinct from the item's
    SyncSource, which only selects the translator.
    """

    type: str
    target_id: str
    data: Any = None
    timestamp: float = 0.0
    source: str | None = None


@dataclass
class SyncItem:
    """A unit of work on the synchronization queue."""

    id: str
    source: SyncSource
    changes: list[SyncChange] = field(default_factory=list)
    timestamp: float = 0.0
    retry_count: int = 0


@dataclass(frozen=True)
class ConflictResolution:
    """What a conflict strategy decided.

    Only fields relevant to the chosen strategy are populated: ``delay`` for
    retry, ``data``/``requires_validation`` for merge, ``rollback_to``/
    ``requires_reload`` for rollback, ``winner`` for latest_wins and
    source_priority.
    """

    strategy: ConflictStrategy
    resolved: bool
    data: Any = None
    winner: SyncChange | None = None
    delay: float | None = None
    requires_validation: bool = False
    requires_reload: bool = False
    rollback_to: float | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ConflictRecord:
    """A dropped sync item, forwarded to the projection for surfacing."""

    item: SyncItem
    error: SyncConflictError
    resolution: ConflictResolution
    timestamp: float


@dataclass(frozen=True)
class SyncHistoryEntry:
    """One line of the synchronization ring buffer."""

    id: str
    source: SyncSource
    status: SyncStatus
    duration: float
    timestamp: float
    change_count: int
    error: str | None = None
