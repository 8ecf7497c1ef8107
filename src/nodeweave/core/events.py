"""Event bus for store change notifications.

A synchronous bus keyed by event class. The store emits contract events
(nodeweave.contracts.events) after each mutation; the Synchronization
Manager and presentation code subscribe to the classes they care about.
"""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol for event bus implementations.

    Lets EventBus and NullEventBus satisfy the interface without inheritance.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def unsubscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Remove a previously subscribed handler."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Simple synchronous event bus.

    Handlers are called in subscription order. Handler exceptions propagate
    to the emitter: subscribers are library code, and a broken subscriber
    should fail loudly at the mutation that triggered it.

    Example:
        bus = EventBus()
        bus.subscribe(ConnectionAdded, lambda e: print(e.connection_id))
        store = NodeStore(bus=bus)
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance
        """
        self._subscribers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        handlers = self._subscribers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers.

        Events with no subscribers are silently ignored.
        """
        # Copy: handlers may unsubscribe while being called
        for handler in list(self._subscribers.get(type(event), [])):
            handler(event)

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))

    def clear(self) -> None:
        self._subscribers.clear()


class NullEventBus:
    """No-op event bus for stores nobody observes.

    Does NOT inherit from EventBus, so subscribing to it expecting callbacks
    is visibly a different type rather than a silent no-op subclass.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """No-op subscription - handler will never be called."""

    def unsubscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """No-op."""

    def emit(self, event: T) -> None:
        """No-op emission."""
