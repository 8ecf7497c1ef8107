# src/nodeweave/sync/resolver.py
"""Conflict resolution strategies for failed synchronization items.

The failure message selects a strategy:

- network / timeout       -> retry
- version / conflict      -> merge
- corrupt / invalid       -> rollback
- anything else           -> the configured default (latest_wins)

Strategies only decide; the Synchronization Manager acts on the decision
(re-queue for retry, record a conflict otherwise).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from nodeweave.contracts.enums import ConflictStrategy
from nodeweave.contracts.sync import ConflictResolution, SyncChange, SyncItem
from nodeweave.core.config import SyncSettings

logger = structlog.get_logger(__name__)

StrategyHandler = Callable[[SyncItem, BaseException], ConflictResolution]

_MESSAGE_RULES: tuple[tuple[tuple[str, ...], ConflictStrategy], ...] = (
    (("network", "timeout"), ConflictStrategy.RETRY),
    (("version", "conflict"), ConflictStrategy.MERGE),
    (("corrupt", "invalid"), ConflictStrategy.ROLLBACK),
)


class ConflictResolver:
    """Picks and runs a conflict strategy.

    Example:
        resolver = ConflictResolver(SyncSettings(), now=scheduler.now)
        strategy = resolver.determine_strategy(error)
        resolution = resolver.resolve(strategy, item, error)
    """

    def __init__(self, settings: SyncSettings, now: Callable[[], float]) -> None:
        self._settings = settings
        self._now = now
        self._default = settings.default_strategy
        self._handlers: dict[str, StrategyHandler] = {
            ConflictStrategy.RETRY.value: self._retry,
            ConflictStrategy.MERGE.value: self._merge,
            ConflictStrategy.ROLLBACK.value: self._rollback,
            ConflictStrategy.LATEST_WINS.value: self._latest_wins,
            ConflictStrategy.SOURCE_PRIORITY.value: self._source_priority,
        }

    @property
    def default_strategy(self) -> ConflictStrategy:
        return self._default

    def set_default(self, strategy: ConflictStrategy | str) -> None:
        """Change the fallthrough strategy.

        Raises:
            ValueError: For an unknown strategy or ``retry``
        """
        resolved = ConflictStrategy(strategy)
        if resolved == ConflictStrategy.RETRY:
            raise ValueError("default strategy cannot be 'retry'")
        self._default = resolved

    def register_strategy(self, name: ConflictStrategy | str, handler: StrategyHandler) -> None:
        """Replace a built-in strategy's behaviour.

        Only the closed set of ConflictStrategy names can be registered, since
        the manager acts on the strategy kind.
        """
        self._handlers[ConflictStrategy(name).value] = handler

    def determine_strategy(self, error: BaseException) -> ConflictStrategy:
        message = str(error).lower()
        for keywords, strategy in _MESSAGE_RULES:
            if any(keyword in message for keyword in keywords):
                return strategy
        return self._default

    def resolve(self, strategy: ConflictStrategy, item: SyncItem, error: BaseException) -> ConflictResolution:
        resolution = self._handlers[strategy.value](item, error)
        logger.debug(
            "sync_conflict_resolved",
            item_id=item.id,
            strategy=strategy,
            resolved=resolution.resolved,
        )
        return resolution

    # === Strategies ===

    def _retry(self, item: SyncItem, error: BaseException) -> ConflictResolution:
        if item.retry_count >= self._settings.max_retries:
            return ConflictResolution(
                strategy=ConflictStrategy.RETRY,
                resolved=False,
                reason=f"retries exhausted after {item.retry_count} attempts",
            )
        delay = min(self._settings.base_delay_seconds * 2**item.retry_count, self._settings.max_delay_seconds)
        return ConflictResolution(strategy=ConflictStrategy.RETRY, resolved=True, delay=delay)

    def _merge(self, item: SyncItem, error: BaseException) -> ConflictResolution:
        merged: dict[str, Any] = {}
        for change in item.changes:
            if isinstance(change.data, dict):
                merged.update(change.data)
        return ConflictResolution(
            strategy=ConflictStrategy.MERGE,
            resolved=True,
            data=merged,
            requires_validation=True,
        )

    def _rollback(self, item: SyncItem, error: BaseException) -> ConflictResolution:
        return ConflictResolution(
            strategy=ConflictStrategy.ROLLBACK,
            resolved=True,
            rollback_to=self._now() - self._settings.rollback_window_seconds,
            requires_reload=True,
        )

    def _latest_wins(self, item: SyncItem, error: BaseException) -> ConflictResolution:
        winner: SyncChange | None = None
        for change in item.changes:
            if winner is None or change.timestamp > winner.timestamp:
                winner = change
        return ConflictResolution(
            strategy=ConflictStrategy.LATEST_WINS,
            resolved=winner is not None,
            winner=winner,
            data=winner.data if winner is not None else None,
        )

    def _source_priority(self, item: SyncItem, error: BaseException) -> ConflictResolution:
        priorities = self._settings.source_priority
        winner: SyncChange | None = None
        best = -1
        for change in item.changes:
            rank = priorities.get(change.source or item.source.value, 0)
            if winner is None or rank > best:
                winner, best = change, rank
        return ConflictResolution(
            strategy=ConflictStrategy.SOURCE_PRIORITY,
            resolved=winner is not None,
            winner=winner,
            data=winner.data if winner is not None else None,
        )
