# src/nodeweave/engine/aggregation.py
"""Input Aggregation Engine.

Combines the values arriving on a node's incoming connections into one
logical input. Every strategy is total: zero, one or many connections all
produce a value, and failures are reported on the result instead of raised.

Strategies:
- merge: shallow key overwrite in connection order (later connection wins)
- array: {"connections": [ids...], "data": [values...]}
- latest: the connection whose data was produced most recently
- priority: merge in ascending meta.priority, so the highest priority wins
- custom: a supplied handler, or one selected by name from AggregatorRegistry
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from nodeweave.contracts.enums import AggregationStrategy
from nodeweave.contracts.errors import AggregationError
from nodeweave.contracts.nodes import ConnectionRecord

logger = structlog.get_logger(__name__)

CustomAggregator = Callable[[Mapping[str, ConnectionRecord], Mapping[str, Any]], Any]


@dataclass(frozen=True)
class AggregationResult:
    """Aggregated value plus the strategy actually used."""

    value: Any
    strategy: AggregationStrategy
    error: AggregationError | None = None


class AggregatorRegistry:
    """Closed registry of named custom aggregators.

    Nodes select a custom aggregator by name (input.config.customAggregator);
    arbitrary code is never taken from node data.
    """

    def __init__(self) -> None:
        self._aggregators: dict[str, CustomAggregator] = {}

    def register(self, name: str, aggregator: CustomAggregator) -> None:
        """Register an aggregator.

        Raises:
            ValueError: If the name is already registered
        """
        if name in self._aggregators:
            raise ValueError(f"Duplicate aggregator name: '{name}'")
        self._aggregators[name] = aggregator

    def unregister(self, name: str) -> None:
        self._aggregators.pop(name, None)

    def get(self, name: str | None) -> CustomAggregator | None:
        if name is None:
            return None
        return self._aggregators.get(name)

    def names(self) -> list[str]:
        return sorted(self._aggregators)

    def clear(self) -> None:
        self._aggregators.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._aggregators

    def __len__(self) -> int:
        return len(self._aggregators)


def resolve_strategy(name: str | AggregationStrategy | None) -> AggregationStrategy:
    """Map a strategy name to a strategy; unknown names fall back to merge."""
    if name is None:
        return AggregationStrategy.MERGE
    try:
        return AggregationStrategy(name)
    except ValueError:
        logger.debug("unknown_aggregation_strategy", strategy=name, fallback=AggregationStrategy.MERGE.value)
        return AggregationStrategy.MERGE


def _merge(records: list[ConnectionRecord]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for record in records:
        if isinstance(record.data, Mapping):
            result.update(record.data)
    return result


def _array(records: list[ConnectionRecord]) -> dict[str, Any]:
    return {
        "connections": [record.id for record in records],
        "data": [record.data for record in records],
    }


def timestamp_key(value: Any) -> float | None:
    """Sortable key for a timestamp that may be an ISO string or a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).timestamp()
        except ValueError:
            return None
    return None


def _latest(records: list[ConnectionRecord]) -> dict[str, Any]:
    best: ConnectionRecord | None = None
    best_key = float("-inf")
    best_raw: Any = None
    for record in records:
        raw = record.meta.timestamp if record.meta.timestamp is not None else record.meta.last_processed
        key = timestamp_key(raw)
        if key is None:
            key = float("-inf")
        # >= so the last record wins a tie
        if best is None or key >= best_key:
            best, best_key, best_raw = record, key, raw
    if best is None:
        return {"latest": None, "source": None, "timestamp": None}
    return {"latest": best.data, "source": best.source_node_id, "timestamp": best_raw}


def _priority(records: list[ConnectionRecord]) -> dict[str, Any]:
    # Ascending priority; among equals the first-registered sorts last, so it wins
    ordered = sorted(
        enumerate(records),
        key=lambda pair: (pair[1].meta.priority or 0, -pair[0]),
    )
    return _merge([record for _, record in ordered])


def aggregate(
    connections: Mapping[str, ConnectionRecord],
    strategy: str | AggregationStrategy | None = None,
    config: Mapping[str, Any] | None = None,
    *,
    node_data: Mapping[str, Any] | None = None,
    custom_handler: CustomAggregator | None = None,
    aggregators: AggregatorRegistry | None = None,
) -> AggregationResult:
    """Combine connection values with the given strategy.

    Args:
        connections: Ordered map of connection id to record
        strategy: Strategy name; unknown names fall back to merge
        config: Node input config (``customAggregator`` selects a named aggregator)
        node_data: The target node's data, passed to custom aggregators
        custom_handler: Explicit aggregator for the custom strategy
        aggregators: Registry used to look up named custom aggregators

    Returns:
        AggregationResult; ``error`` is set when the custom strategy failed
    """
    resolved = resolve_strategy(strategy)
    records = list(connections.values())

    if resolved == AggregationStrategy.MERGE:
        return AggregationResult(_merge(records), resolved)
    if resolved == AggregationStrategy.ARRAY:
        return AggregationResult(_array(records), resolved)
    if resolved == AggregationStrategy.LATEST:
        return AggregationResult(_latest(records), resolved)
    if resolved == AggregationStrategy.PRIORITY:
        return AggregationResult(_priority(records), resolved)

    handler = custom_handler
    if handler is None and aggregators is not None:
        handler = aggregators.get((config or {}).get("customAggregator"))
    if handler is None:
        error = AggregationError(resolved.value, "no custom aggregator configured")
        logger.warning("custom_aggregator_missing", aggregator=(config or {}).get("customAggregator"))
        return AggregationResult({}, resolved, error)
    try:
        value = handler(dict(connections), dict(node_data or {}))
    except Exception as e:
        error = AggregationError(resolved.value, str(e))
        error.__cause__ = e
        logger.warning("custom_aggregation_failed", error=str(e))
        return AggregationResult({}, resolved, error)
    return AggregationResult(value, resolved)
