"""Build orchestration on top of a compiler service."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from hotswap.build.compiler import CompiledUnit, CompilerService, Diagnostic, PythonCompiler
from hotswap.build.config import BuildConfig

logger = logging.getLogger(__name__)


@dataclass
class BuildFailure:
    """A build that produced no unit."""

    message: str
    diagnostics: list[Diagnostic] = field(default_factory=list)
    timed_out: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class Builder:
    """Invokes a compiler service and folds its output into a result.

    Building never loads or swaps anything.
    """

    def __init__(self, compiler: CompilerService | None = None):
        self.compiler = compiler or PythonCompiler()

    def build(
        self,
        config: BuildConfig,
        source_files: list[Path],
        resource_files: list[Path] | None = None,
    ) -> CompiledUnit | BuildFailure:
        """Build the given source files.

        Args:
            config: Build configuration.
            source_files: Ordered list of source file paths.
            resource_files: Files to carry along with the unit.

        Returns:
            The compiled unit, or a BuildFailure carrying the diagnostics.
        """
        if not source_files:
            return BuildFailure("No source files to build")

        logger.info(f"Building {config.output_name} from {len(source_files)} source files")
        try:
            output = self.compiler.compile(config, list(source_files), resource_files)
        except Exception as e:
            logger.exception(f"Compiler service failed on {config.output_name}")
            return BuildFailure(f"{type(e).__name__}: {e}")

        for diagnostic in output.diagnostics:
            if not diagnostic.is_error:
                logger.warning(str(diagnostic))

        errors = output.errors
        if errors or output.unit is None:
            message = "Compilation failed: " + ", ".join(str(d) for d in errors)
            logger.error(message)
            return BuildFailure(message, diagnostics=output.diagnostics)

        logger.info(f"Built {output.unit.name} (entry point {output.unit.entry_point})")
        return output.unit

    async def build_async(
        self,
        config: BuildConfig,
        source_files: list[Path],
        resource_files: list[Path] | None = None,
        timeout: float | None = None,
    ) -> CompiledUnit | BuildFailure:
        """Build on a worker thread, giving up after ``timeout`` seconds.

        A timed-out compile keeps running on its thread; its result is
        discarded.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.build, config, source_files, resource_files),
                timeout=timeout,
            )
        except TimeoutError:
            logger.error(f"Build timed out after {timeout} seconds")
            return BuildFailure(f"Build timed out after {timeout} seconds", timed_out=True)
