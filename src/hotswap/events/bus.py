"""Event bus for reporting hot-swap progress to interested parties."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from hotswap.events.types import Event, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[Event], Any]


class EventBus:
    """Delivers controller events to registered handlers, in order.

    Handlers may be plain functions or coroutine functions. A handler that
    raises is logged and the remaining handlers still see the event.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def add_callback(self, callback: EventHandler) -> None:
        self._handlers.append(callback)

    def remove_callback(self, callback: EventHandler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        if callback in self._handlers:
            self._handlers.remove(callback)

    async def publish(self, event: Event) -> None:
        logger.debug(f"{event.type.value} (generation {event.generation})")

        # Handlers may remove themselves while the event is delivered
        for handler in tuple(self._handlers):
            try:
                outcome = handler(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Event handler failed on {event.type.value}")

    async def emit(
        self,
        event_type: EventType,
        data: dict[str, Any] | None = None,
        generation: int | None = None,
    ) -> Event:
        """Build an event and publish it.

        Returns:
            The published event
        """
        event = Event(type=event_type, data=data or {}, generation=generation)
        await self.publish(event)
        return event
