# src/nodeweave/engine/retry.py
"""RetryManager: directive retry logic with tenacity integration.

Delay before retry n is ``min(delay * backoff_multiplier ** (n - 1), max_delay)``.
``max_retries`` counts retries, so a policy with max_retries=3 makes at most
four attempts. Waits go through the Scheduler, so tests on a VirtualScheduler
run without real sleeping.

Retry waits are never cancelled by newer activity; each run ends in success
or exhaustion.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    stop_after_attempt,
    wait_exponential,
)

from nodeweave.contracts.directives import RetryPolicy
from nodeweave.contracts.errors import RetryExhaustedError
from nodeweave.core.config import RetrySettings
from nodeweave.engine.scheduler import Scheduler

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def policy_from_settings(settings: RetrySettings) -> RetryPolicy:
    """Default RetryPolicy from configuration."""
    return RetryPolicy(
        max_retries=settings.max_retries,
        delay=settings.delay_seconds,
        backoff_multiplier=settings.backoff_multiplier,
        max_delay=settings.max_delay_seconds,
    )


@dataclass
class RetryState:
    """Live bookkeeping for one directive being retried."""

    directive_id: str
    target_node_id: str
    attempts: int = 0
    last_error: str | None = None
    next_delay: float | None = None


class RetryManager:
    """Runs async operations under a RetryPolicy.

    Tracks in-flight retry state per directive id for observability.

    Example:
        manager = RetryManager(scheduler)
        await manager.execute_with_retry(
            lambda: apply(directive),
            policy=directive.processing.retry_policy,
            directive_id=directive_id,
            target_node_id="node-b",
        )
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._states: dict[str, RetryState] = {}
        self.total_retries = 0
        self.total_exhausted = 0

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        policy: RetryPolicy,
        directive_id: str,
        target_node_id: str,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds or the policy is exhausted.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            policy: Retry policy
            directive_id: Stable id used to key retry state
            target_node_id: Target of the directive, for stats
            on_retry: Called with (attempt, error) before each retry wait

        Returns:
            Result of the first successful attempt

        Raises:
            RetryExhaustedError: If every attempt failed
        """
        state = RetryState(directive_id=directive_id, target_node_id=target_node_id)
        self._states[directive_id] = state
        last_error: BaseException | None = None

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else None
            state.next_delay = delay
            self.total_retries += 1
            logger.info(
                "directive_retry_scheduled",
                directive_id=directive_id,
                target=target_node_id,
                attempt=retry_state.attempt_number,
                delay=delay,
                error=str(error),
            )
            if on_retry is not None and error is not None:
                on_retry(retry_state.attempt_number, error)

        try:
            async for attempt_state in AsyncRetrying(
                stop=stop_after_attempt(policy.max_retries + 1),
                wait=wait_exponential(
                    multiplier=policy.delay,
                    exp_base=policy.backoff_multiplier,
                    min=0,
                    max=policy.max_delay,
                ),
                sleep=self._scheduler.sleep,
                before_sleep=_before_sleep,
                reraise=False,  # RetryError is converted to RetryExhaustedError below
            ):
                with attempt_state:
                    state.attempts = attempt_state.retry_state.attempt_number
                    try:
                        result = await operation()
                    except Exception as e:
                        last_error = e
                        state.last_error = str(e)
                        raise
                return result
        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            self.total_exhausted += 1
            logger.warning(
                "directive_retry_exhausted",
                directive_id=directive_id,
                target=target_node_id,
                attempts=state.attempts,
                error=str(final_error),
            )
            raise RetryExhaustedError(state.attempts, final_error, directive_id=directive_id) from e
        finally:
            self._states.pop(directive_id, None)

        # AsyncRetrying always returns or raises
        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover

    @property
    def in_flight(self) -> int:
        return len(self._states)

    def get_stats(self) -> dict[str, Any]:
        by_attempts: dict[int, int] = {}
        by_target: dict[str, int] = {}
        for state in self._states.values():
            by_attempts[state.attempts] = by_attempts.get(state.attempts, 0) + 1
            by_target[state.target_node_id] = by_target.get(state.target_node_id, 0) + 1
        return {
            "inFlight": len(self._states),
            "byAttempts": by_attempts,
            "byTarget": by_target,
            "totalRetries": self.total_retries,
            "totalExhausted": self.total_exhausted,
        }

    def clear(self) -> None:
        self._states.clear()
        self.total_retries = 0
        self.total_exhausted = 0
