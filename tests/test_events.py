"""Tests for the event bus system."""

import asyncio

import pytest

from hotswap.events import Event, EventBus, EventType


@pytest.fixture
def event_bus_fixture() -> EventBus:
    """Create a fresh event bus for each test."""
    return EventBus()


async def test_emit_convenience_method(event_bus_fixture: EventBus) -> None:
    """Test the emit convenience method."""
    received: list[Event] = []
    event_bus_fixture.add_callback(received.append)

    emitted = await event_bus_fixture.emit(
        EventType.CONTEXT_LOADED,
        data={"entry_point": "app:main"},
        generation=4,
    )

    assert emitted.type == EventType.CONTEXT_LOADED
    assert emitted.data["entry_point"] == "app:main"
    assert emitted.generation == 4
    assert [e.id for e in received] == [emitted.id]


async def test_handlers_run_in_registration_order(event_bus_fixture: EventBus) -> None:
    order: list[str] = []
    event_bus_fixture.add_callback(lambda event: order.append("first"))
    event_bus_fixture.add_callback(lambda event: order.append("second"))

    await event_bus_fixture.emit(EventType.REBUILD_REQUESTED, data={"coalesced": 5})

    assert order == ["first", "second"]


async def test_callback_execution(event_bus_fixture: EventBus) -> None:
    """Test that callbacks are called for events."""
    received_events: list[Event] = []

    def callback(event: Event) -> None:
        received_events.append(event)

    event_bus_fixture.add_callback(callback)
    await event_bus_fixture.emit(EventType.CONTROLLER_STARTED)

    assert len(received_events) == 1
    assert received_events[0].type == EventType.CONTROLLER_STARTED

    event_bus_fixture.remove_callback(callback)
    event_bus_fixture.remove_callback(callback)
    await event_bus_fixture.emit(EventType.CONTROLLER_STOPPED)

    assert len(received_events) == 1


async def test_async_callback(event_bus_fixture: EventBus) -> None:
    """Test that async callbacks work correctly."""
    received: list[Event] = []

    async def async_callback(event: Event) -> None:
        await asyncio.sleep(0.01)
        received.append(event)

    event_bus_fixture.add_callback(async_callback)
    await event_bus_fixture.emit(EventType.BUILD_SUCCEEDED, data={"entry_point": "app:main"})

    assert len(received) == 1
    assert received[0].data["entry_point"] == "app:main"


async def test_handler_removing_itself(event_bus_fixture: EventBus) -> None:
    """A handler may unregister while an event is being delivered."""
    received: list[Event] = []

    def once(event: Event) -> None:
        event_bus_fixture.remove_callback(once)

    event_bus_fixture.add_callback(once)
    event_bus_fixture.add_callback(received.append)

    await event_bus_fixture.emit(EventType.BUILD_STARTED)
    await event_bus_fixture.emit(EventType.BUILD_STARTED)

    assert len(received) == 2


async def test_failing_callback_does_not_stop_delivery(event_bus_fixture: EventBus) -> None:
    """A raising callback is logged and later callbacks still run."""
    received: list[Event] = []

    def broken(event: Event) -> None:
        raise RuntimeError("callback bug")

    event_bus_fixture.add_callback(broken)
    event_bus_fixture.add_callback(received.append)

    await event_bus_fixture.emit(EventType.LOAD_FAILED, data={"error": "boom"})

    assert len(received) == 1


def test_event_defaults() -> None:
    event = Event(type=EventType.BUILD_FAILED)

    assert event.data == {}
    assert event.generation is None
    assert event.timestamp.tzinfo is not None
    assert len(event.id) == 12


def test_event_type_values() -> None:
    """Test that EventType enum has expected values."""
    assert EventType.REBUILD_REQUESTED.value == "rebuild.requested"
    assert EventType.CONTEXT_UNLOADED.value == "context.unloaded"
    assert EventType.CONTROLLER_HALTED.value == "controller.halted"
