"""Status codes, strategies, and kinds shared across subsystem boundaries."""

from enum import StrEnum


class NodeStatus(StrEnum):
    """Processing status of a node's output.

    Stored in the node record (output.meta.status).
    """

    IDLE = "idle"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class NodeCategory(StrEnum):
    """Role of a node in the workflow graph."""

    INPUT = "input"
    PROCESS = "process"
    OUTPUT = "output"


class NodeSection(StrEnum):
    """Top-level sections of a node record."""

    META = "meta"
    INPUT = "input"
    OUTPUT = "output"
    ERROR = "error"
    PLUGIN = "plugin"


class AggregationStrategy(StrEnum):
    """How multiple incoming connection values are combined.

    Values:
        MERGE: Shallow-merge mapping payloads in connection order
        ARRAY: Keep every payload, paired with its connection id
        LATEST: Keep only the most recently produced payload
        PRIORITY: Merge in ascending priority so the highest wins per key
        CUSTOM: Delegate to a named or supplied aggregator
    """

    MERGE = "merge"
    ARRAY = "array"
    LATEST = "latest"
    PRIORITY = "priority"
    CUSTOM = "custom"


class TargetOperation(StrEnum):
    """Mutation applied by a directive at its target path."""

    SET = "set"
    MERGE = "merge"


class DirectiveStatus(StrEnum):
    """Outcome of dispatching a single directive."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    BATCHED = "batched"
    FAILED = "failed"


class SyncSource(StrEnum):
    """Representation a synchronization item originated from."""

    CANVAS = "canvas"
    STORE = "store"
    PROJECTION = "projection"


class ChangeOrigin(StrEnum):
    """Originator of a change, ordered by trust for source_priority resolution."""

    USER = "user"
    CANVAS = "canvas"
    STORE = "store"
    PROJECTION = "projection"


class ConflictStrategy(StrEnum):
    """Conflict-resolution strategies used by the Synchronization Manager."""

    RETRY = "retry"
    MERGE = "merge"
    ROLLBACK = "rollback"
    LATEST_WINS = "latest_wins"
    SOURCE_PRIORITY = "source_priority"


class SyncStatus(StrEnum):
    """Outcome recorded in the synchronization history."""

    SUCCESS = "success"
    RETRYING = "retrying"
    CONFLICT = "conflict"


class ErrorCode(StrEnum):
    """Codes stored in a node's error section."""

    PROCESSING_ERROR = "PROCESSING_ERROR"
    AGGREGATION_ERROR = "AGGREGATION_ERROR"
    PLUGIN_ERROR = "PLUGIN_ERROR"
    DIRECTIVE_PROCESSING_ERROR = "DIRECTIVE_PROCESSING_ERROR"
    DIRECTIVE_RETRY_EXHAUSTED = "DIRECTIVE_RETRY_EXHAUSTED"
    BATCH_PROCESSING_ERROR = "BATCH_PROCESSING_ERROR"
