"""Thread-safe synchronous signals with explicit subscription handles.

Signals connect the recipe source, directory bundles, and the recipe
aggregator. They are fired from arbitrary threads (watcher threads
included), so every handler list is guarded by a lock and handlers are
invoked on a snapshot outside of it.
"""

import logging
import threading
from collections.abc import Callable
from itertools import count
from typing import Any

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by a subscribe call.

    Calling ``unsubscribe()`` releases the subscription. It is safe to call
    more than once.
    """

    def __init__(self, release: Callable[[], None], description: str = ""):
        self._release = release
        self._lock = threading.Lock()
        self._active = True
        self.description = description

    @property
    def active(self) -> bool:
        """Check whether the subscription is still live."""
        return self._active

    def unsubscribe(self) -> None:
        """Release the subscription."""
        with self._lock:
            if not self._active:
                return
            self._active = False
        self._release()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self._active else "released"
        return f"<Subscription {self.description or '?'} ({state})>"


class SubscriptionRegistry:
    """Owner-side collection of subscription handles.

    Lets an owner release everything it subscribed to in one call,
    including subscriptions held on behalf of components it created.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    def add(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions if s.active)

    def close(self) -> None:
        """Release every registered subscription."""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.unsubscribe()


class Signal:
    """A named, synchronous, thread-safe signal.

    Handlers are called in connection order. Exceptions raised by a
    handler propagate to the code that emitted the signal.
    """

    def __init__(self, name: str):
        self.name = name
        self._handlers: dict[int, Callable[..., Any]] = {}
        self._ids = count()
        self._lock = threading.Lock()

    def connect(self, handler: Callable[..., Any]) -> Subscription:
        """Connect a handler and return its subscription handle."""
        with self._lock:
            handler_id = next(self._ids)
            self._handlers[handler_id] = handler

        def release() -> None:
            with self._lock:
                self._handlers.pop(handler_id, None)

        return Subscription(release, description=self.name)

    def emit(self, *args: Any) -> None:
        """Invoke every connected handler with ``args``."""
        with self._lock:
            handlers = list(self._handlers.values())
        for handler in handlers:
            handler(*args)

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def __repr__(self) -> str:
        return f"<Signal {self.name} handlers={self.handler_count}>"
