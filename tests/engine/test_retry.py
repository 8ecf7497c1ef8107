# tests/engine/test_retry.py
"""Tests for RetryManager."""

import pytest

from nodeweave.contracts.directives import RetryPolicy
from nodeweave.contracts.errors import RetryExhaustedError
from nodeweave.core.config import RetrySettings
from nodeweave.engine.retry import RetryManager, policy_from_settings
from nodeweave.engine.scheduler import VirtualScheduler


class _Flaky:
    """Fails the first ``failures`` calls."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return "done"


class TestRetryManager:
    @pytest.mark.asyncio
    async def test_success_first_try_does_not_sleep(self) -> None:
        scheduler = VirtualScheduler()
        manager = RetryManager(scheduler)
        operation = _Flaky(0)

        result = await manager.execute_with_retry(
            operation, policy=RetryPolicy(), directive_id="d1", target_node_id="b"
        )

        assert result == "done"
        assert operation.calls == 1
        assert scheduler.sleeps == []

    @pytest.mark.asyncio
    async def test_recovers_after_failures(self) -> None:
        scheduler = VirtualScheduler()
        manager = RetryManager(scheduler)
        operation = _Flaky(2)
        retries: list[int] = []

        result = await manager.execute_with_retry(
            operation,
            policy=RetryPolicy(max_retries=3, delay=1.0, backoff_multiplier=2.0, max_delay=10.0),
            directive_id="d1",
            target_node_id="b",
            on_retry=lambda attempt, error: retries.append(attempt),
        )

        assert result == "done"
        assert operation.calls == 3
        assert retries == [1, 2]
        assert scheduler.sleeps == [1.0, 2.0]
        assert manager.total_retries == 2

    @pytest.mark.asyncio
    async def test_max_retries_three_means_four_attempts(self) -> None:
        scheduler = VirtualScheduler()
        manager = RetryManager(scheduler)
        operation = _Flaky(100)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await manager.execute_with_retry(
                operation,
                policy=RetryPolicy(max_retries=3, delay=1.0, backoff_multiplier=2.0, max_delay=10.0),
                directive_id="d1",
                target_node_id="b",
            )

        assert operation.calls == 4
        assert exc_info.value.attempts == 4
        assert exc_info.value.directive_id == "d1"
        assert str(exc_info.value.last_error) == "failure 4"
        assert scheduler.sleeps == [1.0, 2.0, 4.0]
        assert manager.total_exhausted == 1
        assert manager.in_flight == 0

    @pytest.mark.asyncio
    async def test_delay_capped_at_max_delay(self) -> None:
        scheduler = VirtualScheduler()
        manager = RetryManager(scheduler)

        with pytest.raises(RetryExhaustedError):
            await manager.execute_with_retry(
                _Flaky(100),
                policy=RetryPolicy(max_retries=4, delay=2.0, backoff_multiplier=3.0, max_delay=10.0),
                directive_id="d1",
                target_node_id="b",
            )

        assert scheduler.sleeps == [2.0, 6.0, 10.0, 10.0]

    @pytest.mark.asyncio
    async def test_zero_retries_single_attempt(self) -> None:
        scheduler = VirtualScheduler()
        operation = _Flaky(1)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await RetryManager(scheduler).execute_with_retry(
                operation, policy=RetryPolicy(max_retries=0), directive_id="d1", target_node_id="b"
            )

        assert operation.calls == 1
        assert exc_info.value.attempts == 1
        assert scheduler.sleeps == []

    def test_policy_from_settings(self) -> None:
        policy = policy_from_settings(
            RetrySettings(max_retries=5, delay_seconds=0.5, backoff_multiplier=3.0, max_delay_seconds=20.0)
        )

        assert policy == RetryPolicy(max_retries=5, delay=0.5, backoff_multiplier=3.0, max_delay=20.0)

    def test_stats_start_empty(self) -> None:
        stats = RetryManager(VirtualScheduler()).get_stats()

        assert stats["inFlight"] == 0
        assert stats["totalRetries"] == 0
