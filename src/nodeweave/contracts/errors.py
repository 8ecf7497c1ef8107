"""Error taxonomy and node error payloads.

Every exception raised by nodeweave derives from NodeweaveError so callers
can catch the whole family at an API boundary. Aggregation and directive
failures are normally absorbed into the owning node's error section (see
NodeErrorEntry) rather than raised; only top-level misuse and retry
exhaustion escape to the caller.
"""

from typing import Any, NotRequired, TypedDict


class NodeErrorEntry(TypedDict):
    """One entry in a node's ``error.errors`` list."""

    code: str
    message: str
    source: str | None
    timestamp: str
    details: NotRequired[dict[str, Any]]


class NodeErrorSection(TypedDict):
    """Shape of a node's ``error`` section."""

    hasError: bool
    errors: list[NodeErrorEntry]


class NodeweaveError(Exception):
    """Base class for all nodeweave errors."""


class ValidationError(NodeweaveError):
    """Raised for malformed calls or malformed directive structure."""


class TargetPathError(NodeweaveError):
    """Raised when a directive's target path cannot be resolved on the live node."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid target path {path!r}: {reason}")


class AggregationError(NodeweaveError):
    """Raised inside the aggregation engine when a strategy fails.

    Never escapes aggregate(); it is carried on the AggregationResult.
    """

    def __init__(self, strategy: str, message: str) -> None:
        self.strategy = strategy
        super().__init__(f"Aggregation strategy {strategy!r} failed: {message}")


class DirectiveApplicationError(NodeweaveError):
    """Raised when a directive cannot be validated or applied."""

    def __init__(
        self,
        message: str,
        *,
        target_node_id: str | None = None,
        directive_type: str | None = None,
    ) -> None:
        self.target_node_id = target_node_id
        self.directive_type = directive_type
        super().__init__(message)


class RetryExhaustedError(NodeweaveError):
    """Raised when a retried operation ran out of attempts.

    ``summary`` is set when the error is raised at the end of a batch of
    directives, so callers still see what succeeded.
    """

    def __init__(
        self,
        attempts: int,
        last_error: BaseException | None,
        *,
        directive_id: str | None = None,
        summary: dict[str, Any] | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.directive_id = directive_id
        self.summary = summary
        super().__init__(f"Max retries ({attempts} attempts) exceeded: {last_error}")


class SyncConflictError(NodeweaveError):
    """Records a synchronization item that could not be reconciled."""

    def __init__(self, item_id: str, strategy: str, cause: BaseException) -> None:
        self.item_id = item_id
        self.strategy = strategy
        self.cause = cause
        super().__init__(f"Sync item {item_id} dropped after {strategy}: {cause}")
