# tests/conftest.py
"""Shared test fixtures.

Every time-dependent component is built on a VirtualScheduler, so batch
flush timers, retry backoff and sync re-queues run on virtual time:

    await scheduler.advance(5.0)   # fires every timer due within 5s

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/engine/test_aggregation.py
"""

import os
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from nodeweave.core.events import EventBus
from nodeweave.engine.aggregation import AggregatorRegistry
from nodeweave.engine.directives import DirectiveProcessor
from nodeweave.engine.scheduler import VirtualScheduler
from nodeweave.engine.store import NodeStore


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def store(bus: EventBus, scheduler: VirtualScheduler) -> NodeStore:
    return NodeStore(bus=bus, scheduler=scheduler, aggregators=AggregatorRegistry())


@pytest.fixture
def directives(store: NodeStore, scheduler: VirtualScheduler) -> DirectiveProcessor:
    return DirectiveProcessor(store, scheduler)


class EventRecorder:
    """Collects every event of the subscribed types, in order."""

    def __init__(self, bus: EventBus, *event_types: type) -> None:
        self.events: list[Any] = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of_type(self, event_type: type) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


@pytest.fixture
def record_events(bus: EventBus):
    def _record(*event_types: type) -> EventRecorder:
        return EventRecorder(bus, *event_types)

    return _record


def directive(
    path: str,
    payload: Any,
    *,
    section: str = "input",
    operation: str = "set",
    **processing: Any,
) -> dict[str, Any]:
    """Wire-form directive helper."""
    wire: dict[str, Any] = {
        "type": "update-config",
        "target": {"section": section, "path": path, "operation": operation},
        "payload": payload,
    }
    if processing:
        wire["processing"] = processing
    return wire


@pytest.fixture
def make_directive():
    return directive


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
