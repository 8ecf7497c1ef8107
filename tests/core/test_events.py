"""Tests for EventBus infrastructure."""

from dataclasses import dataclass

from nodeweave.core.events import EventBus, EventBusProtocol, NullEventBus


@dataclass(frozen=True)
class PingEvent:
    value: str


@dataclass(frozen=True)
class CountEvent:
    count: int


class TestEventBus:
    """Tests for EventBus implementation."""

    def test_subscribe_and_emit(self) -> None:
        bus = EventBus()
        received: list[PingEvent] = []

        bus.subscribe(PingEvent, received.append)
        bus.emit(PingEvent(value="hello"))

        assert received == [PingEvent(value="hello")]

    def test_handlers_called_in_subscription_order(self) -> None:
        bus = EventBus()
        calls: list[str] = []

        bus.subscribe(PingEvent, lambda e: calls.append("first"))
        bus.subscribe(PingEvent, lambda e: calls.append("second"))
        bus.emit(PingEvent(value="x"))

        assert calls == ["first", "second"]

    def test_events_are_routed_by_type(self) -> None:
        bus = EventBus()
        pings: list[PingEvent] = []
        counts: list[CountEvent] = []
        bus.subscribe(PingEvent, pings.append)
        bus.subscribe(CountEvent, counts.append)

        bus.emit(CountEvent(count=2))

        assert pings == []
        assert counts == [CountEvent(count=2)]

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        received: list[PingEvent] = []
        bus.subscribe(PingEvent, received.append)

        bus.unsubscribe(PingEvent, received.append)
        bus.emit(PingEvent(value="x"))

        assert received == []
        assert bus.subscriber_count(PingEvent) == 0

    def test_handler_may_unsubscribe_during_emit(self) -> None:
        bus = EventBus()
        calls: list[str] = []

        def once(event: PingEvent) -> None:
            calls.append(event.value)
            bus.unsubscribe(PingEvent, once)

        bus.subscribe(PingEvent, once)
        bus.emit(PingEvent(value="a"))
        bus.emit(PingEvent(value="b"))

        assert calls == ["a"]

    def test_emit_without_subscribers_is_noop(self) -> None:
        EventBus().emit(PingEvent(value="nobody"))


class TestNullEventBus:
    def test_satisfies_protocol_and_drops_events(self) -> None:
        bus: EventBusProtocol = NullEventBus()
        received: list[PingEvent] = []

        bus.subscribe(PingEvent, received.append)
        bus.emit(PingEvent(value="x"))

        assert received == []
