"""Plugin processing inputs and outputs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nodeweave.contracts.nodes import ConnectionRecord


@dataclass(frozen=True)
class ProcessingContext:
    """What a plugin sees about the node it is processing.

    ``aggregation_strategy`` is the plugin-layer selection (from the plugin's
    own ``aggregationStrategy`` config). It is independent of the node-layer
    strategy the store already applied to build ``inputs``.
    """

    node_id: str
    node_data: dict[str, Any]
    connections: dict[str, ConnectionRecord]
    timestamp: str
    aggregation_strategy: str | None = None


@dataclass
class ProcessingOutput:
    """Result of a plugin's ``process`` call.

    ``directives`` maps target node id to a list of wire-form directives to
    dispatch after the node's output is stored.
    """

    success: bool
    data: Any = None
    errors: list[str] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    directives: dict[str, list[Any]] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any, **kwargs: Any) -> ProcessingOutput:
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def failure(cls, *errors: str) -> ProcessingOutput:
        return cls(success=False, errors=list(errors))
