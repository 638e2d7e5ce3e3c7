"""In-process isolation: the unit lives in its own synthetic package.

Loading installs a meta-path finder for the unit and imports its modules;
the entry point runs on a dedicated thread. Unloading asks the unit to
stop (via an optional ``shutdown()`` in the entry module), waits for the
entry thread, then removes the finders and every module the unit brought
into ``sys.modules``.
"""

import asyncio
import gc
import importlib
import inspect
import logging
import sys
import threading

from hotswap.build.compiler import CompiledUnit
from hotswap.isolation.base import (
    IsolatedContext,
    IsolationMechanism,
    LoadError,
    UnloadError,
)
from hotswap.isolation.loader import ReferenceFinder, UnitFinder, purge_modules

logger = logging.getLogger(__name__)

SHUTDOWN_HOOK = "shutdown"


class InProcessContext(IsolatedContext):
    """Context state for an in-process unit."""

    def __init__(self, mechanism: IsolationMechanism, name: str):
        super().__init__(mechanism, name)
        self.finder: UnitFinder | None = None
        self.reference_finder: ReferenceFinder | None = None
        self.thread: threading.Thread | None = None

    def entry_module(self):
        if self.unit is None:
            return None
        return sys.modules.get(f"{self.name}.{self.unit.entry_module}")


class InProcessIsolation(IsolationMechanism):
    """Runs compiled units inside the host interpreter."""

    def __init__(self, unload_timeout: float = 5.0):
        super().__init__()
        self.unload_timeout = unload_timeout

    def _new_context(self, name: str) -> InProcessContext:
        return InProcessContext(self, name)

    def _load(self, context: InProcessContext, unit: CompiledUnit) -> None:
        if unit.name != context.name:
            raise LoadError(context.name, f"unit {unit.name!r} does not match context")
        if context.name in sys.modules:
            raise LoadError(context.name, "a module with this name is already imported")

        context.finder = UnitFinder(
            context.name,
            unit.modules,
            {name: str(path) for name, path in unit.module_paths.items()},
            {name: str(path) for name, path in unit.resources.items()},
        )
        sys.meta_path.insert(0, context.finder)
        if unit.reference_paths:
            context.reference_finder = ReferenceFinder([str(p) for p in unit.reference_paths])
            sys.meta_path.append(context.reference_finder)

        try:
            importlib.import_module(context.name)
            for module_name in unit.modules:
                importlib.import_module(f"{context.name}.{module_name}")
        except Exception as e:
            logger.error(f"Failed to load {context.name}: {e}")
            self._remove_finders(context)
            raise LoadError(context.name, f"{type(e).__name__}: {e}") from e

    def _invoke(self, context: InProcessContext) -> None:
        module = context.entry_module()
        entry = getattr(module, context.unit.entry_function, None)
        if not callable(entry):
            raise LoadError(context.name, f"entry point {context.unit.entry_point} is not callable")

        def run() -> None:
            try:
                result = entry()
                if inspect.iscoroutine(result):
                    asyncio.run(result)
            except Exception as e:
                context.error = e
                logger.exception(f"Entry point of {context.name} raised")

        context.thread = threading.Thread(target=run, name=f"hotswap-{context.name}", daemon=True)
        context.thread.start()

    def _release(self, context: InProcessContext) -> None:
        module = context.entry_module()
        hook = getattr(module, SHUTDOWN_HOOK, None)
        if callable(hook):
            try:
                hook()
            except Exception as e:
                logger.warning(f"{SHUTDOWN_HOOK}() of {context.name} raised: {e}")

        if context.thread is not None:
            context.thread.join(self.unload_timeout)
            if context.thread.is_alive():
                raise UnloadError(
                    context.name,
                    f"entry point still running after {self.unload_timeout} seconds",
                )

        purged = self._remove_finders(context)
        gc.collect()
        logger.debug(f"Purged {len(purged)} modules of {context.name}")

    def _remove_finders(self, context: InProcessContext) -> list[str]:
        purged: list[str] = []
        for finder in (context.finder, context.reference_finder):
            if finder is None:
                continue
            purged.extend(purge_modules(finder.owns))
            if finder in sys.meta_path:
                sys.meta_path.remove(finder)
        context.finder = None
        context.reference_finder = None
        return purged
