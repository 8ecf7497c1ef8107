"""Directive wire models and dispatch outcomes.

A directive is a deferred mutation one node's processing asks to have applied
to another node's state. The wire shape is camelCase JSON; the models accept
either the camelCase aliases or the snake_case field names.

Example wire form:
    {
        "type": "update-config",
        "target": {"section": "input", "path": "config.mode", "operation": "set"},
        "payload": "strict",
        "processing": {"immediate": false, "priority": 2,
                       "retryPolicy": {"maxRetries": 3, "delay": 1.0}},
        "meta": {"source": "node-a"}
    }
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from nodeweave.contracts.enums import DirectiveStatus, NodeSection, TargetOperation
from nodeweave.contracts.errors import ValidationError

_WIRE_CONFIG: dict[str, Any] = {
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
}


class RetryPolicy(BaseModel):
    """Retry behaviour for one directive.

    ``max_retries`` counts retries, not attempts: max_retries=3 means up to
    four applications in total. Delays are in seconds.
    """

    model_config = _WIRE_CONFIG

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    delay: float = Field(default=1.0, ge=0, description="Delay before the first retry")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Delay growth per retry")
    max_delay: float = Field(default=10.0, ge=0, description="Upper bound for any single delay")


class DirectiveTarget(BaseModel):
    """Where on the target node the payload lands."""

    model_config = _WIRE_CONFIG

    section: NodeSection
    path: str = Field(min_length=1)
    operation: TargetOperation


class ProcessingInstructions(BaseModel):
    """How and when the directive is applied."""

    model_config = _WIRE_CONFIG

    immediate: bool = True
    conditional: str | None = None
    retry_policy: RetryPolicy | None = None
    priority: int = 5


class DirectiveMeta(BaseModel):
    """Free-form directive metadata; ``source`` names the issuing node."""

    model_config = {**_WIRE_CONFIG, "extra": "allow"}

    source: str | None = None


class Directive(BaseModel):
    """A validated directive."""

    model_config = _WIRE_CONFIG

    type: str = Field(min_length=1)
    target: DirectiveTarget
    payload: Any
    processing: ProcessingInstructions = Field(default_factory=ProcessingInstructions)
    meta: DirectiveMeta = Field(default_factory=DirectiveMeta)

    @model_validator(mode="after")
    def _merge_requires_mapping(self) -> Directive:
        if self.target.operation == TargetOperation.MERGE and not isinstance(self.payload, Mapping):
            raise ValueError("merge operation requires an object payload")
        return self

    @classmethod
    def from_wire(cls, raw: Directive | Mapping[str, Any] | str) -> Directive:
        """Validate a wire-form directive.

        Raises:
            ValidationError: If the structure is malformed
        """
        if isinstance(raw, Directive):
            return raw
        try:
            if isinstance(raw, str):
                return cls.model_validate_json(raw)
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            raise ValidationError(f"Malformed directive: {e}") from e

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-safe dict."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass
class DirectiveOutcome:
    """Result of dispatching one directive to one target."""

    directive_type: str
    target_node_id: str
    status: DirectiveStatus
    directive_id: str | None = None
    attempts: int = 0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in (DirectiveStatus.APPLIED, DirectiveStatus.BATCHED)


@dataclass
class DirectiveSummary:
    """Counters for a ``process_directives`` call.

    Batched directives count towards ``successful`` as well as ``batched``.
    """

    total_directives: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    batched: int = 0
    results: dict[str, list[DirectiveOutcome]] = field(default_factory=dict)

    def record(self, outcome: DirectiveOutcome) -> None:
        self.results.setdefault(outcome.target_node_id, []).append(outcome)
        if outcome.status == DirectiveStatus.SKIPPED:
            self.skipped += 1
        elif outcome.status == DirectiveStatus.FAILED:
            self.failed += 1
        else:
            self.successful += 1
            if outcome.status == DirectiveStatus.BATCHED:
                self.batched += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalDirectives": self.total_directives,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "batched": self.batched,
            "results": {
                target: [
                    {
                        "type": o.directive_type,
                        "status": o.status.value,
                        "directiveId": o.directive_id,
                        "attempts": o.attempts,
                        "error": o.error,
                    }
                    for o in outcomes
                ]
                for target, outcomes in self.results.items()
            },
        }
