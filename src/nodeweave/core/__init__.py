"""Core infrastructure: configuration, logging, events, hashing, path helpers."""

from nodeweave.core.canonical import canonical_json, stable_hash
from nodeweave.core.config import NodeweaveSettings, load_settings
from nodeweave.core.events import EventBus, EventBusProtocol, NullEventBus

__all__ = [
    "EventBus",
    "EventBusProtocol",
    "NodeweaveSettings",
    "NullEventBus",
    "canonical_json",
    "load_settings",
    "stable_hash",
]
