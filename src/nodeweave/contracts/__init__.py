"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
nodeweave.core.config.
"""

from nodeweave.contracts.directives import (
    Directive,
    DirectiveMeta,
    DirectiveOutcome,
    DirectiveSummary,
    DirectiveTarget,
    ProcessingInstructions,
    RetryPolicy,
)
from nodeweave.contracts.enums import (
    AggregationStrategy,
    ChangeOrigin,
    ConflictStrategy,
    DirectiveStatus,
    ErrorCode,
    NodeCategory,
    NodeSection,
    NodeStatus,
    SyncSource,
    SyncStatus,
    TargetOperation,
)
from nodeweave.contracts.errors import (
    AggregationError,
    DirectiveApplicationError,
    NodeErrorEntry,
    NodeweaveError,
    RetryExhaustedError,
    SyncConflictError,
    TargetPathError,
    ValidationError,
)
from nodeweave.contracts.events import (
    ConnectionAdded,
    ConnectionRemoved,
    NodeDataUpdated,
    NodeError,
    NodeProcessed,
    NodeProcessing,
    NodeRemoved,
)
from nodeweave.contracts.nodes import (
    DEFAULT_HANDLE,
    EDGE_ID_PREFIX,
    ConnectionIndexEntry,
    ConnectionMeta,
    ConnectionRecord,
    connection_id,
)
from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.contracts.sync import (
    ConflictRecord,
    ConflictResolution,
    SyncChange,
    SyncHistoryEntry,
    SyncItem,
)

__all__ = [
    "DEFAULT_HANDLE",
    "EDGE_ID_PREFIX",
    "AggregationError",
    "AggregationStrategy",
    "ChangeOrigin",
    "ConflictRecord",
    "ConflictResolution",
    "ConflictStrategy",
    "ConnectionAdded",
    "ConnectionIndexEntry",
    "ConnectionMeta",
    "ConnectionRecord",
    "ConnectionRemoved",
    "Directive",
    "DirectiveApplicationError",
    "DirectiveMeta",
    "DirectiveOutcome",
    "DirectiveStatus",
    "DirectiveSummary",
    "DirectiveTarget",
    "ErrorCode",
    "NodeCategory",
    "NodeDataUpdated",
    "NodeError",
    "NodeErrorEntry",
    "NodeProcessed",
    "NodeProcessing",
    "NodeRemoved",
    "NodeSection",
    "NodeStatus",
    "NodeweaveError",
    "ProcessingContext",
    "ProcessingInstructions",
    "ProcessingOutput",
    "RetryExhaustedError",
    "RetryPolicy",
    "SyncChange",
    "SyncConflictError",
    "SyncHistoryEntry",
    "SyncItem",
    "SyncSource",
    "SyncStatus",
    "TargetOperation",
    "TargetPathError",
    "ValidationError",
    "connection_id",
]
