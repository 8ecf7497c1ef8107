# src/nodeweave/engine/directives.py
"""Directive Processor.

Applies directives emitted by one node's processing onto another node's
state. Per directive:

    received -> validated -> (skipped | applied | queued | retrying) -> (done | exhausted)

1. Validate structure (Directive model) and the target path against the
   live target node. Failures never mutate anything.
2. Gate on ``processing.conditional`` (sandboxed; any failure skips).
3. Apply now (``immediate``, the default) or queue in the target's batch.
4. With a ``retryPolicy``, application runs under the RetryManager and
   exhaustion is raised to the caller. Without one, a failure is recorded
   on the issuing node as DIRECTIVE_PROCESSING_ERROR.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from nodeweave.contracts.directives import Directive, DirectiveOutcome, DirectiveSummary, RetryPolicy
from nodeweave.contracts.enums import DirectiveStatus, ErrorCode, NodeSection
from nodeweave.contracts.errors import (
    DirectiveApplicationError,
    RetryExhaustedError,
    TargetPathError,
    ValidationError,
)
from nodeweave.core.canonical import stable_hash
from nodeweave.core.config import BatchSettings, EvaluatorSettings, RetrySettings
from nodeweave.core.paths import apply_at_path, split_path
from nodeweave.engine.batching import BatchItem, BatchProcessor
from nodeweave.engine.conditions import ConditionalEvaluator
from nodeweave.engine.retry import RetryManager, policy_from_settings
from nodeweave.engine.scheduler import Scheduler
from nodeweave.engine.store import NodeStore

logger = structlog.get_logger(__name__)


@dataclass
class ProcessorStats:
    """Running counters. Batched directives count as batched when queued."""

    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    retried: int = 0
    batched: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalProcessed": self.total_processed,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "retried": self.retried,
            "batched": self.batched,
        }


class DirectiveProcessor:
    """Validates, gates, batches, retries and applies directives.

    Example:
        processor = DirectiveProcessor(store, scheduler)
        summary = await processor.process_directives(
            "node-a",
            {"node-b": [{"type": "update-config",
                         "target": {"section": "input", "path": "config.mode", "operation": "set"},
                         "payload": "strict"}]},
        )
    """

    def __init__(
        self,
        store: NodeStore,
        scheduler: Scheduler,
        *,
        batch_settings: BatchSettings | None = None,
        retry_settings: RetrySettings | None = None,
        evaluator_settings: EvaluatorSettings | None = None,
    ) -> None:
        batch_settings = batch_settings or BatchSettings()
        evaluator_settings = evaluator_settings or EvaluatorSettings()
        self._store = store
        self._scheduler = scheduler
        self._default_policy = policy_from_settings(retry_settings or RetrySettings())
        self._evaluator = ConditionalEvaluator(evaluator_settings.max_expression_length)
        self._retry = RetryManager(scheduler)
        self._batches = BatchProcessor(
            self._apply_batched,
            scheduler,
            max_batch_size=batch_settings.max_batch_size,
            max_batch_delay=batch_settings.max_batch_delay_seconds,
            on_failure=self._record_batch_failure,
        )
        self._stats = ProcessorStats()
        self._active: set[asyncio.Future[None]] = set()

    @property
    def evaluator(self) -> ConditionalEvaluator:
        return self._evaluator

    @property
    def batches(self) -> BatchProcessor:
        return self._batches

    @property
    def retry_manager(self) -> RetryManager:
        return self._retry

    def directive_id(self, directive: Directive, target_node_id: str) -> str:
        """``target-type-hash-timestamp``; the hash covers canonical directive content and target."""
        digest = stable_hash({"directive": directive.to_wire(), "target": target_node_id})[:16]
        return f"{target_node_id}-{directive.type}-{digest}-{self._scheduler.timestamp()}"

    # === Public API ===

    async def process_directive(
        self,
        directive: Directive | Mapping[str, Any] | str,
        target_node_id: str,
        source_node_id: str | None = None,
    ) -> DirectiveOutcome:
        """Dispatch one directive to one target.

        Raises:
            RetryExhaustedError: If the directive's retry policy ran out of attempts
        """
        marker: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._active.add(marker)
        try:
            return await self._process(directive, target_node_id, source_node_id)
        finally:
            marker.set_result(None)
            self._active.discard(marker)

    async def process_directives(
        self,
        source_node_id: str,
        directives_by_target: Mapping[str, Sequence[Directive | Mapping[str, Any] | str]],
    ) -> DirectiveSummary:
        """Dispatch a source node's directives, target by target, in order.

        Raises:
            ValidationError: If the source id or the directive map is malformed
            RetryExhaustedError: After all directives ran, if any exhausted its
                retries; ``summary`` carries the per-directive results
        """
        if not isinstance(source_node_id, str) or not source_node_id:
            raise ValidationError("source_node_id must be a non-empty string")
        if not isinstance(directives_by_target, Mapping):
            raise ValidationError("directives must be a mapping of target node id to directive list")
        for target, directives in directives_by_target.items():
            if not isinstance(directives, Sequence) or isinstance(directives, str | bytes):
                raise ValidationError(f"directives for {target!r} must be a list")

        summary = DirectiveSummary()
        exhausted: list[RetryExhaustedError] = []
        for target, directives in directives_by_target.items():
            for raw in directives:
                summary.total_directives += 1
                try:
                    outcome = await self.process_directive(raw, target, source_node_id)
                except RetryExhaustedError as e:
                    exhausted.append(e)
                    outcome = DirectiveOutcome(
                        directive_type=_directive_type(raw),
                        target_node_id=target,
                        status=DirectiveStatus.FAILED,
                        directive_id=e.directive_id,
                        attempts=e.attempts,
                        error=str(e),
                    )
                summary.record(outcome)

        logger.info(
            "directives_processed",
            source=source_node_id,
            total=summary.total_directives,
            successful=summary.successful,
            failed=summary.failed,
            skipped=summary.skipped,
            batched=summary.batched,
        )
        if exhausted:
            first = exhausted[0]
            raise RetryExhaustedError(
                first.attempts,
                first.last_error,
                directive_id=first.directive_id,
                summary=summary.to_dict(),
            ) from first
        return summary

    async def flush_batches(self) -> list[DirectiveOutcome]:
        """Force every batch queue to flush now."""
        return await self._batches.flush_all()

    def get_stats(self) -> dict[str, Any]:
        return {
            "processor": self._stats.to_dict(),
            "retry": self._retry.get_stats(),
            "batch": self._batches.get_stats(),
        }

    async def cleanup(self, timeout: float = 5.0) -> bool:
        """Wait (bounded) for in-flight directives, then drop queues and reset counters.

        Returns:
            False if in-flight work was still running when the timeout expired
        """
        drained = True
        active = set(self._active)
        if active:
            _done, pending = await asyncio.wait(active, timeout=timeout)
            drained = not pending
            if pending:
                logger.warning("directive_cleanup_timeout", pending=len(pending), timeout=timeout)
        self._batches.clear()
        self._retry.clear()
        self._stats = ProcessorStats()
        return drained

    # === Pipeline ===

    async def _process(
        self,
        raw: Directive | Mapping[str, Any] | str,
        target_node_id: str,
        source_node_id: str | None,
    ) -> DirectiveOutcome:
        self._stats.total_processed += 1
        try:
            directive = self._validate(raw, target_node_id)
        except DirectiveApplicationError as e:
            self._stats.failed += 1
            self._record(source_node_id or target_node_id, ErrorCode.DIRECTIVE_PROCESSING_ERROR, e, target_node_id)
            return DirectiveOutcome(_directive_type(raw), target_node_id, DirectiveStatus.FAILED, error=str(e))

        source = source_node_id or directive.meta.source
        directive_id = self.directive_id(directive, target_node_id)

        conditional = directive.processing.conditional
        if conditional and not self._passes(conditional, source, target_node_id):
            self._stats.skipped += 1
            logger.debug("directive_skipped", directive_id=directive_id, conditional=conditional[:80])
            return DirectiveOutcome(directive.type, target_node_id, DirectiveStatus.SKIPPED, directive_id=directive_id)

        if not directive.processing.immediate:
            self._stats.batched += 1
            await self._batches.add(self._batches.make_item(directive, target_node_id, source, directive_id))
            return DirectiveOutcome(directive.type, target_node_id, DirectiveStatus.BATCHED, directive_id=directive_id)

        policy = directive.processing.retry_policy
        if policy is not None:
            attempts = await self._apply_with_retry(directive, target_node_id, source, directive_id, policy)
            self._stats.successful += 1
            return DirectiveOutcome(
                directive.type, target_node_id, DirectiveStatus.APPLIED, directive_id=directive_id, attempts=attempts
            )

        try:
            self._apply(directive, target_node_id)
        except DirectiveApplicationError as e:
            self._stats.failed += 1
            self._record(source or target_node_id, ErrorCode.DIRECTIVE_PROCESSING_ERROR, e, target_node_id)
            return DirectiveOutcome(
                directive.type, target_node_id, DirectiveStatus.FAILED, directive_id=directive_id, attempts=1, error=str(e)
            )
        self._stats.successful += 1
        return DirectiveOutcome(directive.type, target_node_id, DirectiveStatus.APPLIED, directive_id=directive_id, attempts=1)

    def _validate(self, raw: Directive | Mapping[str, Any] | str, target_node_id: str) -> Directive:
        try:
            directive = Directive.from_wire(raw)
        except ValidationError as e:
            raise DirectiveApplicationError(str(e), target_node_id=target_node_id, directive_type=_directive_type(raw)) from e
        try:
            segments = split_path(directive.target.path)
        except TargetPathError as e:
            raise DirectiveApplicationError(str(e), target_node_id=target_node_id, directive_type=directive.type) from e
        if directive.target.section == NodeSection.INPUT and segments[0] == "connections":
            error = TargetPathError(directive.target.path, "input.connections is managed by the store")
            raise DirectiveApplicationError(str(error), target_node_id=target_node_id, directive_type=directive.type) from error
        return directive

    def _passes(self, conditional: str, source_node_id: str | None, target_node_id: str) -> bool:
        source_data = self._store.get_node_data(source_node_id) if source_node_id else None
        target_data = self._store.get_node_data(target_node_id)
        context = self._evaluator.build_context(
            source_data,
            target_data,
            source_node_id if source_data is not None else target_node_id,
            self._scheduler.timestamp(),
        )
        return self._evaluator.evaluate(conditional, context)

    def _apply(self, directive: Directive, target_node_id: str) -> None:
        """Check the target path on the live node and write through the store.

        Raises:
            DirectiveApplicationError: If the target is unknown or the path does not resolve
        """
        data = self._store.get_node_data(target_node_id)
        if data is None:
            raise DirectiveApplicationError(
                f"Target node {target_node_id!r} not found",
                target_node_id=target_node_id,
                directive_type=directive.type,
            )
        section = directive.target.section.value
        try:
            head, value = apply_at_path(
                data.get(section) or {},
                directive.target.path,
                directive.target.operation,
                directive.payload,
            )
            self._store.update_node_data(target_node_id, {section: {head: value}})
        except (TargetPathError, ValidationError) as e:
            raise DirectiveApplicationError(str(e), target_node_id=target_node_id, directive_type=directive.type) from e
        logger.debug(
            "directive_applied",
            target=target_node_id,
            directive_type=directive.type,
            section=section,
            path=directive.target.path,
            operation=directive.target.operation.value,
        )

    async def _apply_with_retry(
        self,
        directive: Directive,
        target_node_id: str,
        source_node_id: str | None,
        directive_id: str,
        policy: RetryPolicy,
    ) -> int:
        attempts = 0

        async def _attempt() -> None:
            nonlocal attempts
            attempts += 1
            self._apply(directive, target_node_id)

        def _on_retry(attempt: int, error: BaseException) -> None:
            self._stats.retried += 1

        try:
            await self._retry.execute_with_retry(
                _attempt,
                policy=self._effective_policy(policy),
                directive_id=directive_id,
                target_node_id=target_node_id,
                on_retry=_on_retry,
            )
        except RetryExhaustedError as e:
            self._stats.failed += 1
            self._record(
                source_node_id or target_node_id,
                ErrorCode.DIRECTIVE_RETRY_EXHAUSTED,
                e,
                target_node_id,
                attempts=e.attempts,
            )
            raise
        return attempts

    def _effective_policy(self, policy: RetryPolicy) -> RetryPolicy:
        """Fields the directive left unset come from the configured defaults."""
        explicit = policy.model_dump(include=policy.model_fields_set)
        return self._default_policy.model_copy(update=explicit)

    async def _apply_batched(self, item: BatchItem) -> DirectiveOutcome:
        directive = item.directive
        policy = directive.processing.retry_policy
        attempts = 1
        if policy is None:
            self._apply(directive, item.target_node_id)
        else:
            try:
                attempts = await self._apply_with_retry(
                    directive, item.target_node_id, item.source_node_id, item.directive_id, policy
                )
            except RetryExhaustedError as e:
                # No caller is waiting on a flushed batch; the error is on the source node
                return DirectiveOutcome(
                    directive.type,
                    item.target_node_id,
                    DirectiveStatus.FAILED,
                    directive_id=item.directive_id,
                    attempts=e.attempts,
                    error=str(e),
                )
        self._stats.successful += 1
        return DirectiveOutcome(
            directive.type, item.target_node_id, DirectiveStatus.APPLIED, directive_id=item.directive_id, attempts=attempts
        )

    def _record_batch_failure(self, item: BatchItem, error: Exception) -> None:
        self._stats.failed += 1
        self._record(item.source_node_id or item.target_node_id, ErrorCode.BATCH_PROCESSING_ERROR, error, item.target_node_id)

    def _record(
        self,
        node_id: str,
        code: ErrorCode,
        error: BaseException,
        target_node_id: str,
        **details: Any,
    ) -> None:
        self._store.record_error(
            node_id,
            code,
            str(error),
            source=node_id,
            details={"targetNodeId": target_node_id, **details},
        )


def _directive_type(raw: Any) -> str:
    if isinstance(raw, Directive):
        return raw.type
    if isinstance(raw, Mapping):
        return str(raw.get("type") or "unknown")
    return "unknown"
