"""Isolation mechanism contract and shared context bookkeeping.

Based on the unload-then-load protocol:
- create() hands out a context for a unit identity
- load() brings a compiled unit into the context
- invoke_entry_point() starts the unit
- unload() releases everything the context holds, or raises UnloadError
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import Enum

from hotswap.build.compiler import CompiledUnit

logger = logging.getLogger(__name__)


class IsolationError(Exception):
    """Base class for isolation failures."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Context {name}: {reason}")


class LoadError(IsolationError):
    """Raised when a unit cannot be loaded or started."""


class UnloadError(IsolationError):
    """Raised when a context could not be fully released.

    The context may still be partially resident after this error.
    """


class ContextState(str, Enum):
    """Lifecycle states of an isolated context."""

    CREATED = "created"
    LOADED = "loaded"
    RUNNING = "running"
    UNLOADED = "unloaded"


class IsolatedContext:
    """A boundary within which one compiled unit is loaded and runs.

    Contexts are scoped resources: ``close()`` (or leaving a ``with``
    block) unloads them, and closing twice is harmless.
    """

    def __init__(self, mechanism: "IsolationMechanism", name: str):
        self.mechanism = mechanism
        self.name = name
        self.state = ContextState.CREATED
        self.unit: CompiledUnit | None = None
        self.error: BaseException | None = None  # Raised by the entry point, if any

    @property
    def live(self) -> bool:
        return self.state != ContextState.UNLOADED

    def close(self) -> None:
        if self.live:
            self.mechanism.unload(self)

    def __enter__(self) -> "IsolatedContext":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} ({self.state.value})>"


class IsolationMechanism(ABC):
    """Creates, loads, starts, and unloads isolated contexts.

    A name identifies at most one live context at a time: creating a
    second context with the name of a live one raises IsolationError.
    """

    def __init__(self) -> None:
        self._live: dict[str, IsolatedContext] = {}
        self._lock = threading.Lock()

    def create(self, name: str) -> IsolatedContext:
        with self._lock:
            if name in self._live:
                raise IsolationError(name, "a live context with this name already exists")
            context = self._new_context(name)
            self._live[name] = context
        logger.debug(f"Created context {name}")
        return context

    def load(self, context: IsolatedContext, unit: CompiledUnit) -> None:
        """Load ``unit`` into ``context``.

        Raises:
            LoadError: If the unit's modules fail to load.
        """
        if context.state != ContextState.CREATED:
            raise LoadError(context.name, f"cannot load into a {context.state.value} context")
        self._load(context, unit)
        context.unit = unit
        context.state = ContextState.LOADED
        logger.debug(f"Loaded {len(unit.modules)} modules into {context.name}")

    def invoke_entry_point(self, context: IsolatedContext) -> None:
        """Start the loaded unit's entry point.

        Raises:
            LoadError: If the entry point cannot be started.
        """
        if context.state != ContextState.LOADED:
            raise LoadError(context.name, f"cannot start a {context.state.value} context")
        self._invoke(context)
        context.state = ContextState.RUNNING
        logger.info(f"Started {context.name} ({context.unit.entry_point})")

    def unload(self, context: IsolatedContext) -> None:
        """Release every resource held by ``context``.

        Returns only after the release is complete.

        Raises:
            UnloadError: If the context could not be fully released.
        """
        if context.state == ContextState.UNLOADED:
            return
        self._release(context)
        context.state = ContextState.UNLOADED
        with self._lock:
            self._live.pop(context.name, None)
        logger.info(f"Unloaded context {context.name}")

    @property
    def live_contexts(self) -> list[str]:
        with self._lock:
            return list(self._live)

    def _new_context(self, name: str) -> IsolatedContext:
        return IsolatedContext(self, name)

    @abstractmethod
    def _load(self, context: IsolatedContext, unit: CompiledUnit) -> None: ...

    @abstractmethod
    def _invoke(self, context: IsolatedContext) -> None: ...

    @abstractmethod
    def _release(self, context: IsolatedContext) -> None: ...
