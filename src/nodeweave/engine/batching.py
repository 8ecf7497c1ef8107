# src/nodeweave/engine/batching.py
"""Batch Processor for non-immediate directives.

Each target node has its own queue, kept sorted ascending by priority
(lower number is serviced first; equal priorities keep arrival order).
A queue flushes when:

- it reaches max_batch_size (flushed inline, awaited by the adder)
- max_batch_delay seconds pass with no new additions (timer; the timer is
  cleared and rescheduled on every addition)

A flush detaches the queue before dispatch, so directives added while a
flush is running land in the next cycle. Queued directives are applied
concurrently and each gets its own outcome.
"""

from __future__ import annotations

import asyncio
import bisect
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from nodeweave.contracts.directives import Directive, DirectiveOutcome
from nodeweave.contracts.enums import DirectiveStatus
from nodeweave.engine.scheduler import Scheduler, TimerHandle

logger = structlog.get_logger(__name__)


@dataclass
class BatchItem:
    """A queued directive."""

    directive: Directive
    target_node_id: str
    source_node_id: str | None
    directive_id: str
    sequence: int
    queued_at: float
    sort_key: tuple[int, int] = field(init=False)

    def __post_init__(self) -> None:
        self.sort_key = (self.directive.processing.priority, self.sequence)


BatchHandler = Callable[[BatchItem], Awaitable[DirectiveOutcome]]
FailureHandler = Callable[[BatchItem, Exception], None]


class BatchProcessor:
    """Per-target priority queues with size and inactivity flush triggers.

    Example:
        batches = BatchProcessor(apply_item, scheduler, max_batch_size=10, max_batch_delay=5.0)
        await batches.add(item)          # queued, timer (re)started
        outcomes = await batches.flush("node-b")
    """

    def __init__(
        self,
        handler: BatchHandler,
        scheduler: Scheduler,
        *,
        max_batch_size: int = 10,
        max_batch_delay: float = 5.0,
        on_failure: FailureHandler | None = None,
    ) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self._handler = handler
        self._scheduler = scheduler
        self._max_batch_size = max_batch_size
        self._max_batch_delay = max_batch_delay
        self._on_failure = on_failure
        self._queues: dict[str, list[BatchItem]] = {}
        self._timers: dict[str, TimerHandle] = {}
        self._sequence = itertools.count()
        self.batches_flushed = 0
        self.items_processed = 0

    def make_item(
        self,
        directive: Directive,
        target_node_id: str,
        source_node_id: str | None,
        directive_id: str,
    ) -> BatchItem:
        return BatchItem(
            directive=directive,
            target_node_id=target_node_id,
            source_node_id=source_node_id,
            directive_id=directive_id,
            sequence=next(self._sequence),
            queued_at=self._scheduler.now(),
        )

    async def add(self, item: BatchItem) -> list[DirectiveOutcome]:
        """Queue an item.

        Returns:
            Outcomes of the flush this addition triggered, or an empty list
            if the queue is still below max_batch_size.
        """
        queue = self._queues.setdefault(item.target_node_id, [])
        bisect.insort(queue, item, key=lambda queued: queued.sort_key)
        self._cancel_timer(item.target_node_id)
        logger.debug("directive_batched", target=item.target_node_id, queue_size=len(queue))

        if len(queue) >= self._max_batch_size:
            return await self.flush(item.target_node_id)

        target = item.target_node_id
        self._timers[target] = self._scheduler.call_later(self._max_batch_delay, lambda: self.flush(target))
        return []

    async def flush(self, target_node_id: str) -> list[DirectiveOutcome]:
        """Apply every queued directive for a target concurrently."""
        self._cancel_timer(target_node_id)
        queue = self._queues.pop(target_node_id, [])
        if not queue:
            return []

        outcomes = await asyncio.gather(*(self._run(item) for item in queue))
        self.batches_flushed += 1
        self.items_processed += len(queue)
        failed = sum(1 for outcome in outcomes if outcome.status == DirectiveStatus.FAILED)
        logger.info("batch_flushed", target=target_node_id, size=len(queue), failed=failed)
        return list(outcomes)

    async def flush_all(self) -> list[DirectiveOutcome]:
        outcomes: list[DirectiveOutcome] = []
        for target in list(self._queues):
            outcomes.extend(await self.flush(target))
        return outcomes

    async def _run(self, item: BatchItem) -> DirectiveOutcome:
        try:
            return await self._handler(item)
        except Exception as e:
            logger.warning(
                "batched_directive_failed",
                target=item.target_node_id,
                directive_type=item.directive.type,
                error=str(e),
            )
            if self._on_failure is not None:
                self._on_failure(item, e)
            return DirectiveOutcome(
                directive_type=item.directive.type,
                target_node_id=item.target_node_id,
                status=DirectiveStatus.FAILED,
                directive_id=item.directive_id,
                error=str(e),
            )

    def _cancel_timer(self, target_node_id: str) -> None:
        timer = self._timers.pop(target_node_id, None)
        if timer is not None:
            timer.cancel()

    def queue_size(self, target_node_id: str) -> int:
        return len(self._queues.get(target_node_id, []))

    def pending(self, target_node_id: str) -> list[BatchItem]:
        return list(self._queues.get(target_node_id, []))

    def get_stats(self) -> dict[str, Any]:
        pending = sum(len(queue) for queue in self._queues.values())
        return {
            "queues": len(self._queues),
            "pending": pending,
            "averageQueueSize": pending / len(self._queues) if self._queues else 0.0,
            "batchesFlushed": self.batches_flushed,
            "itemsProcessed": self.items_processed,
            "averageBatchSize": self.items_processed / self.batches_flushed if self.batches_flushed else 0.0,
        }

    def clear(self) -> None:
        """Drop every queue and cancel every flush timer."""
        for target in list(self._timers):
            self._cancel_timer(target)
        self._queues.clear()
        self.batches_flushed = 0
        self.items_processed = 0
