# tests/engine/test_batching.py
"""Tests for per-target batch queues."""

import pytest

from nodeweave.contracts.directives import Directive, DirectiveOutcome
from nodeweave.contracts.enums import DirectiveStatus
from nodeweave.engine.batching import BatchItem, BatchProcessor
from nodeweave.engine.scheduler import VirtualScheduler


def _directive(payload: str, priority: int = 5) -> Directive:
    return Directive.from_wire(
        {
            "type": "update-config",
            "target": {"section": "input", "path": "config.value", "operation": "set"},
            "payload": payload,
            "processing": {"immediate": False, "priority": priority},
        }
    )


class _Recorder:
    def __init__(self, fail_on: str | None = None) -> None:
        self.applied: list[str] = []
        self.fail_on = fail_on

    async def __call__(self, item: BatchItem) -> DirectiveOutcome:
        if item.directive.payload == self.fail_on:
            raise RuntimeError("boom")
        self.applied.append(item.directive.payload)
        return DirectiveOutcome(
            directive_type=item.directive.type,
            target_node_id=item.target_node_id,
            status=DirectiveStatus.APPLIED,
            directive_id=item.directive_id,
            attempts=1,
        )


def _item(batches: BatchProcessor, payload: str, *, target: str = "b", priority: int = 5) -> BatchItem:
    return batches.make_item(_directive(payload, priority), target, "a", f"dir-{payload}")


class TestBatchProcessor:
    @pytest.mark.asyncio
    async def test_flushes_after_inactivity(self) -> None:
        scheduler = VirtualScheduler()
        handler = _Recorder()
        batches = BatchProcessor(handler, scheduler, max_batch_size=10, max_batch_delay=5.0)

        assert await batches.add(_item(batches, "one")) == []
        await scheduler.advance(4.0)
        assert handler.applied == []

        await scheduler.advance(1.0)
        assert handler.applied == ["one"]
        assert batches.queue_size("b") == 0

    @pytest.mark.asyncio
    async def test_new_addition_restarts_timer(self) -> None:
        scheduler = VirtualScheduler()
        handler = _Recorder()
        batches = BatchProcessor(handler, scheduler, max_batch_size=10, max_batch_delay=5.0)

        await batches.add(_item(batches, "one"))
        await scheduler.advance(4.0)
        await batches.add(_item(batches, "two"))
        await scheduler.advance(4.0)
        assert handler.applied == []

        await scheduler.advance(1.0)
        assert handler.applied == ["one", "two"]
        assert scheduler.pending_timers == 0

    @pytest.mark.asyncio
    async def test_flushes_inline_at_max_size(self) -> None:
        scheduler = VirtualScheduler()
        handler = _Recorder()
        batches = BatchProcessor(handler, scheduler, max_batch_size=2, max_batch_delay=5.0)

        await batches.add(_item(batches, "one"))
        outcomes = await batches.add(_item(batches, "two"))

        assert [o.status for o in outcomes] == [DirectiveStatus.APPLIED, DirectiveStatus.APPLIED]
        assert handler.applied == ["one", "two"]
        assert scheduler.pending_timers == 0

    @pytest.mark.asyncio
    async def test_lower_priority_number_first_then_arrival(self) -> None:
        scheduler = VirtualScheduler()
        batches = BatchProcessor(_Recorder(), scheduler, max_batch_size=10)

        await batches.add(_item(batches, "late", priority=9))
        await batches.add(_item(batches, "first-urgent", priority=1))
        await batches.add(_item(batches, "second-urgent", priority=1))

        assert [i.directive.payload for i in batches.pending("b")] == ["first-urgent", "second-urgent", "late"]

    @pytest.mark.asyncio
    async def test_queues_are_per_target(self) -> None:
        scheduler = VirtualScheduler()
        handler = _Recorder()
        batches = BatchProcessor(handler, scheduler, max_batch_size=10)

        await batches.add(_item(batches, "to-b", target="b"))
        await batches.add(_item(batches, "to-c", target="c"))
        await batches.flush("b")

        assert handler.applied == ["to-b"]
        assert batches.queue_size("c") == 1
        assert batches.get_stats()["queues"] == 1

    @pytest.mark.asyncio
    async def test_failure_isolated_and_reported(self) -> None:
        scheduler = VirtualScheduler()
        failures: list[str] = []
        handler = _Recorder(fail_on="bad")
        batches = BatchProcessor(
            handler,
            scheduler,
            on_failure=lambda item, error: failures.append(f"{item.directive_id}:{error}"),
        )

        await batches.add(_item(batches, "good"))
        await batches.add(_item(batches, "bad"))
        outcomes = await batches.flush("b")

        assert {o.directive_id: o.status for o in outcomes} == {
            "dir-good": DirectiveStatus.APPLIED,
            "dir-bad": DirectiveStatus.FAILED,
        }
        assert failures == ["dir-bad:boom"]
        assert handler.applied == ["good"]

    @pytest.mark.asyncio
    async def test_clear_cancels_timers(self) -> None:
        scheduler = VirtualScheduler()
        handler = _Recorder()
        batches = BatchProcessor(handler, scheduler)

        await batches.add(_item(batches, "one"))
        batches.clear()
        await scheduler.advance(10.0)

        assert handler.applied == []
        assert batches.get_stats()["pending"] == 0

    @pytest.mark.asyncio
    async def test_stats(self) -> None:
        batches = BatchProcessor(_Recorder(), VirtualScheduler(), max_batch_size=2)

        await batches.add(_item(batches, "one"))
        await batches.add(_item(batches, "two"))

        stats = batches.get_stats()
        assert stats["batchesFlushed"] == 1
        assert stats["itemsProcessed"] == 2
        assert stats["averageBatchSize"] == 2.0

    def test_rejects_zero_batch_size(self) -> None:
        with pytest.raises(ValueError, match="max_batch_size"):
            BatchProcessor(_Recorder(), VirtualScheduler(), max_batch_size=0)
