"""Process isolation: each unit runs in its own child interpreter.

The unit's code objects are marshalled and handed to a ``spawn`` child,
which installs the same import machinery as in-process loading and calls
the entry point. Unloading terminates the child.
"""

import asyncio
import importlib
import inspect
import logging
import marshal
import multiprocessing
import sys
from multiprocessing.process import BaseProcess

from hotswap.build.compiler import CompiledUnit
from hotswap.isolation.base import (
    IsolatedContext,
    IsolationMechanism,
    LoadError,
    UnloadError,
)
from hotswap.isolation.loader import ReferenceFinder, UnitFinder

logger = logging.getLogger(__name__)


def _run_unit(package: str, payload: bytes) -> None:
    """Child-process entry: load the marshalled unit and run its entry point."""
    data = marshal.loads(payload)
    sys.meta_path.insert(0, UnitFinder(package, data["modules"], data["paths"], data["resources"]))
    if data["references"]:
        sys.meta_path.append(ReferenceFinder(data["references"]))

    importlib.import_module(package)
    for module_name in data["modules"]:
        importlib.import_module(f"{package}.{module_name}")

    module = sys.modules[f"{package}.{data['entry_module']}"]
    result = getattr(module, data["entry_function"])()
    if inspect.iscoroutine(result):
        asyncio.run(result)


class ProcessContext(IsolatedContext):
    """Context state for a unit running in a child process."""

    def __init__(self, mechanism: IsolationMechanism, name: str):
        super().__init__(mechanism, name)
        self.payload: bytes | None = None
        self.process: BaseProcess | None = None

    @property
    def exitcode(self) -> int | None:
        return self.process.exitcode if self.process is not None else None


class ProcessIsolation(IsolationMechanism):
    """Runs compiled units in child processes."""

    def __init__(self, unload_timeout: float = 5.0, start_method: str = "spawn"):
        super().__init__()
        self.unload_timeout = unload_timeout
        self._mp = multiprocessing.get_context(start_method)

    def _new_context(self, name: str) -> ProcessContext:
        return ProcessContext(self, name)

    def _load(self, context: ProcessContext, unit: CompiledUnit) -> None:
        try:
            context.payload = marshal.dumps(
                {
                    "modules": unit.modules,
                    "paths": {name: str(path) for name, path in unit.module_paths.items()},
                    "resources": {name: str(path) for name, path in unit.resources.items()},
                    "references": [str(p) for p in unit.reference_paths],
                    "entry_module": unit.entry_module,
                    "entry_function": unit.entry_function,
                }
            )
        except ValueError as e:
            raise LoadError(context.name, f"unit cannot be marshalled: {e}") from e

    def _invoke(self, context: ProcessContext) -> None:
        context.process = self._mp.Process(
            target=_run_unit,
            args=(context.name, context.payload),
            name=f"hotswap-{context.name}",
            daemon=True,
        )
        try:
            context.process.start()
        except OSError as e:
            raise LoadError(context.name, f"cannot start child process: {e}") from e
        logger.debug(f"Child process {context.process.pid} started for {context.name}")

    def _release(self, context: ProcessContext) -> None:
        process = context.process
        context.payload = None
        if process is None:
            return

        if process.is_alive():
            process.terminate()
            process.join(self.unload_timeout)
        if process.is_alive():
            logger.warning(f"Child {process.pid} ignored terminate, killing")
            process.kill()
            process.join(self.unload_timeout)
        if process.is_alive():
            raise UnloadError(context.name, f"child process {process.pid} did not exit")

        logger.debug(f"Child process of {context.name} exited with {process.exitcode}")
        process.close()
        context.process = None
