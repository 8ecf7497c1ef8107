"""Runtime engine: store, aggregation, directives, retry, batching, scheduling.

NodeProcessor lives in nodeweave.engine.processor and is not re-exported
here, since it depends on the plugin registry.
"""

from nodeweave.engine.aggregation import AggregationResult, AggregatorRegistry, aggregate
from nodeweave.engine.clock import Clock, MockClock, SystemClock
from nodeweave.engine.directives import DirectiveProcessor
from nodeweave.engine.scheduler import AsyncioScheduler, Scheduler, VirtualScheduler
from nodeweave.engine.store import NodeStore

__all__ = [
    "AggregationResult",
    "AggregatorRegistry",
    "AsyncioScheduler",
    "Clock",
    "DirectiveProcessor",
    "MockClock",
    "NodeStore",
    "Scheduler",
    "SystemClock",
    "VirtualScheduler",
    "aggregate",
]
