"""Hot-swap controller: rebuilds the recipe and swaps the running unit.

Flow for every rebuild request:
1. Snapshot the recipe (source, reference, resource files)
2. Build on a worker thread
3. On failure: report, keep the running unit untouched
4. On success: unload the running unit, then load and start the new one

Requests arriving while a rebuild is in flight collapse into a single
follow-up rebuild. An unload failure halts the controller: no later
request is allowed to load code while an old unit may still be resident.
"""

import asyncio
import contextlib
import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from hotswap import __version__
from hotswap.build.builder import Builder, BuildFailure
from hotswap.build.compiler import CompiledUnit, Diagnostic
from hotswap.build.config import BuildConfig
from hotswap.events import EventBus, EventType
from hotswap.isolation.base import IsolatedContext, IsolationError, IsolationMechanism, UnloadError
from hotswap.recipe.aggregator import RecipeAggregator

logger = logging.getLogger(__name__)

# Rebuild results kept for get_swap_history
HISTORY_LIMIT = 100


class SwapStatus(Enum):
    """Status of a rebuild attempt."""

    SUCCESS = "success"
    NO_SOURCES = "no_sources"
    BUILD_FAILED = "build_failed"
    BUILD_TIMEOUT = "build_timeout"
    LOAD_FAILED = "load_failed"
    UNLOAD_FAILED = "unload_failed"
    HALTED = "halted"


@dataclass
class SwapResult:
    """Result of one rebuild attempt."""

    status: SwapStatus
    generation: int | None = None  # Generation running after the attempt
    source_files: list[Path] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    error_message: str | None = None
    unloaded_generation: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.status == SwapStatus.SUCCESS


class HotSwapController:
    """Owns the active isolated context and drives rebuilds.

    The active context is private to the controller. At most one context
    is live at any time: the previous one is fully unloaded before the
    next is created.
    """

    def __init__(
        self,
        recipe: RecipeAggregator,
        builder: Builder,
        isolation: IsolationMechanism,
        build_config: BuildConfig,
        event_bus: EventBus | None = None,
        build_timeout: float | None = None,
        prepare_recipe: Callable[[], None] | None = None,
    ):
        self.recipe = recipe
        self.builder = builder
        self.isolation = isolation
        self.build_config = build_config
        self.event_bus = event_bus
        self.build_timeout = build_timeout
        self.prepare_recipe = prepare_recipe  # Runs before each snapshot, off the event loop

        self._active: IsolatedContext | None = None
        self._generation = 0
        self._halted = False
        self._swap_history: deque[SwapResult] = deque(maxlen=HISTORY_LIMIT)
        self._swap_lock = asyncio.Lock()

        # Request bookkeeping shared with watcher threads
        self._state_lock = threading.Lock()
        self._pending_requests = 0
        self.requests_received = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wakeup: asyncio.Event | None = None

        self._running = False
        self._runner: asyncio.Task | None = None
        self._subscription = recipe.rebuild_requested.connect(self.request_rebuild)

    # -- request intake ------------------------------------------------------

    def request_rebuild(self) -> None:
        """Ask for a rebuild. Safe to call from any thread; never blocks."""
        with self._state_lock:
            self.requests_received += 1
            self._pending_requests += 1
            loop, wakeup = self._loop, self._wakeup

        if loop is not None and wakeup is not None:
            try:
                loop.call_soon_threadsafe(wakeup.set)
            except RuntimeError:
                logger.debug("Event loop closed, rebuild request not delivered")

    def _take_pending(self) -> int:
        with self._state_lock:
            pending, self._pending_requests = self._pending_requests, 0
        return pending

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Start processing rebuild requests."""
        with self._state_lock:
            self._loop = asyncio.get_running_loop()
            self._wakeup = asyncio.Event()
            if self._pending_requests:
                self._wakeup.set()

        self._running = True
        self._runner = asyncio.create_task(self._rebuild_loop())
        logger.info(f"Hot-swap controller started (hotswap v{__version__})")
        await self._emit(EventType.CONTROLLER_STARTED)

    async def stop(self) -> None:
        """Stop processing requests and unload the running unit.

        Raises:
            UnloadError: If the running unit could not be released.
        """
        self._running = False
        self._subscription.unsubscribe()

        if self._runner is not None:
            self._runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._runner
            self._runner = None

        with self._state_lock:
            self._loop = None
            self._wakeup = None

        async with self._swap_lock:
            if self._active is not None:
                generation = self._generation
                try:
                    await asyncio.to_thread(self._unload_active)
                except UnloadError as e:
                    self._halted = True
                    logger.critical(f"Failed to unload generation {generation} on shutdown: {e}")
                    await self._emit(EventType.UNLOAD_FAILED, {"error": str(e)}, generation)
                    raise
                await self._emit(EventType.CONTEXT_UNLOADED, generation=generation)

        logger.info("Hot-swap controller stopped")
        await self._emit(EventType.CONTROLLER_STOPPED)

    async def _rebuild_loop(self) -> None:
        """Drain rebuild requests, one rebuild at a time."""
        while self._running:
            await self._wakeup.wait()
            self._wakeup.clear()

            pending = self._take_pending()
            if not pending:
                continue
            if pending > 1:
                logger.debug(f"Coalesced {pending} rebuild requests")
            await self._emit(EventType.REBUILD_REQUESTED, {"coalesced": pending})

            try:
                await self.rebuild()
            except Exception as e:
                logger.error(f"Rebuild loop error: {e}")

    # -- rebuild -------------------------------------------------------------

    async def rebuild(self) -> SwapResult:
        """Build the current recipe and swap it in on success.

        Attempts are serialized: a call made while another is in flight
        waits for it to finish.
        """
        async with self._swap_lock:
            result = await self._rebuild_locked()
            self._swap_history.append(result)
            return result

    async def _rebuild_locked(self) -> SwapResult:
        if self._halted:
            logger.error("Controller halted after an unload failure, rebuild refused")
            return SwapResult(
                status=SwapStatus.HALTED,
                generation=self._current_generation(),
                error_message="Controller halted after an unload failure",
            )

        if self.prepare_recipe is not None:
            await asyncio.to_thread(self.prepare_recipe)

        source_files = self.recipe.list_all_source_files()
        if not source_files:
            logger.warning("Recipe has no source files, nothing to build")
            return SwapResult(status=SwapStatus.NO_SOURCES, generation=self._current_generation())

        config = self.build_config.with_references(
            [*self.recipe.list_all_reference_files(), *self.recipe.list_external_references()]
        )
        generation = self._generation + 1
        await self._emit(EventType.BUILD_STARTED, {"source_files": len(source_files)}, generation)

        outcome = await self.builder.build_async(
            config,
            source_files,
            self.recipe.list_all_resource_files(),
            timeout=self.build_timeout,
        )

        if isinstance(outcome, BuildFailure):
            await self._emit(
                EventType.BUILD_FAILED,
                {"message": outcome.message, "diagnostics": [str(d) for d in outcome.diagnostics]},
                generation,
            )
            return SwapResult(
                status=SwapStatus.BUILD_TIMEOUT if outcome.timed_out else SwapStatus.BUILD_FAILED,
                generation=self._current_generation(),
                source_files=source_files,
                diagnostics=outcome.diagnostics,
                error_message=outcome.message,
            )

        await self._emit(EventType.BUILD_SUCCEEDED, {"entry_point": outcome.entry_point}, generation)

        # The swap must run to completion even if this task is cancelled
        swap = asyncio.ensure_future(asyncio.to_thread(self._swap, outcome, generation))
        try:
            result = await asyncio.shield(swap)
        except asyncio.CancelledError:
            await swap
            raise
        result.source_files = source_files
        await self._report_swap(result, generation)
        return result

    def _swap(self, unit: CompiledUnit, generation: int) -> SwapResult:
        """Unload the running unit, then load and start ``unit``."""
        unloaded = None
        if self._active is not None:
            unloaded = self._generation
            try:
                self._unload_active()
            except UnloadError as e:
                self._halted = True
                logger.critical(f"Unload of generation {unloaded} failed, halting: {e}")
                return SwapResult(
                    status=SwapStatus.UNLOAD_FAILED,
                    generation=unloaded,
                    error_message=str(e),
                )

        try:
            context = self.isolation.create(unit.name)
        except IsolationError as e:
            logger.error(f"Cannot create context for generation {generation}: {e}")
            return SwapResult(SwapStatus.LOAD_FAILED, error_message=str(e), unloaded_generation=unloaded)

        try:
            self.isolation.load(context, unit)
            self.isolation.invoke_entry_point(context)
        except IsolationError as e:
            logger.error(f"Generation {generation} failed to start: {e}")
            try:
                self.isolation.unload(context)
            except UnloadError as ue:
                self._halted = True
                logger.critical(f"Cleanup of failed generation {generation} failed, halting: {ue}")
                return SwapResult(
                    status=SwapStatus.UNLOAD_FAILED,
                    error_message=str(ue),
                    unloaded_generation=unloaded,
                )
            return SwapResult(SwapStatus.LOAD_FAILED, error_message=str(e), unloaded_generation=unloaded)

        self._active = context
        self._generation = generation
        logger.info(f"Swapped in generation {generation} ({unit.entry_point})")
        return SwapResult(SwapStatus.SUCCESS, generation=generation, unloaded_generation=unloaded)

    def _unload_active(self) -> None:
        context = self._active
        if context is None:
            return
        self.isolation.unload(context)
        self._active = None

    async def _report_swap(self, result: SwapResult, generation: int) -> None:
        if result.unloaded_generation is not None:
            await self._emit(EventType.CONTEXT_UNLOADED, generation=result.unloaded_generation)

        if result.status == SwapStatus.SUCCESS:
            await self._emit(EventType.CONTEXT_LOADED, generation=generation)
        elif result.status == SwapStatus.LOAD_FAILED:
            await self._emit(EventType.LOAD_FAILED, {"error": result.error_message}, generation)
        elif result.status == SwapStatus.UNLOAD_FAILED:
            await self._emit(EventType.UNLOAD_FAILED, {"error": result.error_message}, result.generation)
            await self._emit(EventType.CONTROLLER_HALTED, {"error": result.error_message})

    async def _emit(self, event_type: EventType, data: dict | None = None, generation: int | None = None) -> None:
        if self.event_bus is not None:
            await self.event_bus.emit(event_type, data, generation)

    # -- introspection -------------------------------------------------------

    def _current_generation(self) -> int | None:
        return self._generation if self._active is not None else None

    @property
    def generation(self) -> int | None:
        """Generation currently running, or None when nothing is loaded."""
        return self._current_generation()

    @property
    def is_loaded(self) -> bool:
        return self._active is not None

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def running(self) -> bool:
        return self._running

    def get_swap_history(self, limit: int = 10) -> list[SwapResult]:
        """Get recent rebuild results.

        Args:
            limit: Maximum number of results to return.

        Returns:
            List of recent SwapResults, oldest first.
        """
        return list(self._swap_history)[-limit:]
