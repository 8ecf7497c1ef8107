# src/nodeweave/core/config.py
"""
Configuration schema and loading for nodeweave.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction. Durations are seconds.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from nodeweave.contracts.enums import AggregationStrategy, ChangeOrigin, ConflictStrategy


class StoreSettings(BaseModel):
    """Node & Connection Store defaults."""

    model_config = {"frozen": True}

    default_aggregation_strategy: AggregationStrategy = Field(
        default=AggregationStrategy.MERGE,
        description="Strategy used when a node's input.processed.strategy is unset",
    )
    allow_multiple_connections: bool = Field(
        default=True,
        description="Default for input.config.allowMultipleConnections",
    )


class BatchSettings(BaseModel):
    """Directive batch queue thresholds.

    A target's queue flushes when it holds max_batch_size directives, or
    after max_batch_delay_seconds with no new additions.
    """

    model_config = {"frozen": True}

    max_batch_size: int = Field(default=10, gt=0, description="Flush when the queue reaches this size")
    max_batch_delay_seconds: float = Field(default=5.0, gt=0, description="Inactivity window before a flush")


class RetrySettings(BaseModel):
    """Default retry policy values for directives that request retries."""

    model_config = {"frozen": True}

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    delay_seconds: float = Field(default=1.0, ge=0, description="Delay before the first retry")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential backoff base")
    max_delay_seconds: float = Field(default=10.0, ge=0, description="Maximum backoff delay")

    @model_validator(mode="after")
    def validate_delays(self) -> "RetrySettings":
        if self.max_delay_seconds < self.delay_seconds:
            raise ValueError("max_delay_seconds must be >= delay_seconds")
        return self


class EvaluatorSettings(BaseModel):
    """Conditional evaluator limits."""

    model_config = {"frozen": True}

    max_expression_length: int = Field(default=500, gt=0, description="Longer expressions evaluate to False")


class SyncSettings(BaseModel):
    """Synchronization Manager configuration."""

    model_config = {"frozen": True}

    max_history: int = Field(default=100, gt=0, description="Ring buffer size for sync outcomes")
    max_retries: int = Field(default=3, ge=0, description="Retry resolutions before an item is dropped")
    base_delay_seconds: float = Field(default=1.0, ge=0, description="Base delay for retry resolution")
    max_delay_seconds: float = Field(default=10.0, ge=0, description="Cap for retry resolution delay")
    rollback_window_seconds: float = Field(default=30.0, ge=0, description="How far back a rollback points")
    default_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.LATEST_WINS,
        description="Strategy used when the failure message matches no rule",
    )
    source_priority: dict[str, int] = Field(
        default_factory=lambda: {
            ChangeOrigin.USER.value: 3,
            ChangeOrigin.CANVAS.value: 2,
            ChangeOrigin.STORE.value: 1,
            ChangeOrigin.PROJECTION.value: 0,
        },
        description="Higher wins in source_priority resolution",
    )

    @field_validator("default_strategy")
    @classmethod
    def validate_default_strategy(cls, v: ConflictStrategy) -> ConflictStrategy:
        # Retry needs an item to re-queue; it cannot be the fallthrough.
        if v == ConflictStrategy.RETRY:
            raise ValueError("default_strategy cannot be 'retry'")
        return v


class ProcessingSettings(BaseModel):
    """When node processing starts without an explicit process_node call."""

    model_config = {"frozen": True}

    process_on_connect: bool = Field(
        default=True,
        description="Process the target node (and downstream) when a connection is added",
    )


class CleanupSettings(BaseModel):
    """Shutdown behaviour."""

    model_config = {"frozen": True}

    drain_timeout_seconds: float = Field(default=5.0, ge=0, description="Bounded wait for in-flight work")


class LoggingSettings(BaseModel):
    """structlog configuration."""

    model_config = {"frozen": True}

    level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    json_output: bool = Field(default=False, description="Render JSON lines instead of console output")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v!r}")
        return normalized


class NodeweaveSettings(BaseModel):
    """Top-level configuration. Every section has defaults."""

    model_config = {"frozen": True}

    store: StoreSettings = Field(default_factory=StoreSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    evaluator: EvaluatorSettings = Field(default_factory=EvaluatorSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(config_path: Path | None = None) -> NodeweaveSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (NODEWEAVE_*) - highest priority
    2. Config file (if given)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: NODEWEAVE_BATCH__MAX_BATCH_SIZE for nested keys.

    Raises:
        pydantic.ValidationError: If configuration fails validation
        FileNotFoundError: If config_path is given but does not exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="NODEWEAVE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config: dict[str, Any] = {k.lower(): _lower_keys(v) for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    return NodeweaveSettings(**raw_config)


def dump_settings(settings: NodeweaveSettings) -> str:
    """Render settings as YAML that load_settings() accepts."""
    return yaml.safe_dump(settings.model_dump(mode="json"), sort_keys=False)


def _lower_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value
