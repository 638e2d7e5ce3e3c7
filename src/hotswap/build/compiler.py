"""Compiler service: turns Python source files into a loadable unit.

The compiler only produces code objects. It never executes them and never
touches ``sys.modules``; loading is the isolation mechanism's job.
"""

import ast
import importlib.util
import json
import keyword
import logging
import os
import warnings
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from types import CodeType

from hotswap import __version__
from hotswap.build.config import BuildConfig

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIXES = (".zip", ".whl", ".egg")


class DiagnosticSeverity(str, Enum):
    """Severity of a compiler diagnostic."""

    ERROR = "error"
    WARNING = "warning"


@dataclass
class Diagnostic:
    """A single message reported by the compiler."""

    severity: DiagnosticSeverity
    message: str
    path: Path | None = None
    line: int | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == DiagnosticSeverity.ERROR

    def __str__(self) -> str:
        location = ""
        if self.path is not None:
            location = f"{self.path}:{self.line}: " if self.line else f"{self.path}: "
        return f"{location}{self.severity.value}: {self.message}"


@dataclass
class CompiledUnit:
    """The artifact of a successful build.

    Modules are kept in source order; they are executed in that order when
    the unit is loaded.
    """

    name: str
    modules: dict[str, CodeType]
    module_paths: dict[str, Path]
    entry_module: str
    entry_function: str
    reference_paths: list[Path] = field(default_factory=list)
    resources: dict[str, Path] = field(default_factory=dict)
    artifact_path: Path | None = None
    built_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def entry_point(self) -> str:
        return f"{self.entry_module}:{self.entry_function}"


@dataclass
class CompilerOutput:
    """What a compiler service returns: a unit, diagnostics, or both."""

    unit: CompiledUnit | None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]


class CompilerService(ABC):
    """Abstract compiler service."""

    @abstractmethod
    def compile(
        self,
        config: BuildConfig,
        source_files: list[Path],
        resource_files: list[Path] | None = None,
    ) -> CompilerOutput:
        """Compile the given sources.

        Args:
            config: Build configuration.
            source_files: Ordered list of source file paths.
            resource_files: Files carried along with the unit.

        Returns:
            CompilerOutput with a unit when no error diagnostics were produced.
        """
        ...


def is_path_reference(reference: str) -> bool:
    """Check whether a reference names a path rather than a module."""
    return "/" in reference or os.sep in reference or reference.endswith(ARCHIVE_SUFFIXES)


class PythonCompiler(CompilerService):
    """Compiles Python modules with the builtin ``compile()``.

    Each source file becomes one module named after its file stem. Modules
    of one unit are loaded as siblings inside a package, so they import
    each other with relative imports (``from . import helpers``).
    """

    def compile(
        self,
        config: BuildConfig,
        source_files: list[Path],
        resource_files: list[Path] | None = None,
    ) -> CompilerOutput:
        diagnostics: list[Diagnostic] = []
        modules: dict[str, CodeType] = {}
        module_paths: dict[str, Path] = {}
        trees: dict[str, ast.Module] = {}

        if not config.output_name.isidentifier():
            diagnostics.append(self._error(f"Output name {config.output_name!r} is not a valid package name"))

        for path in source_files:
            path = Path(path)
            name = path.stem
            if not name.isidentifier() or keyword.iskeyword(name):
                diagnostics.append(self._error(f"{name!r} is not a valid module name", path))
                continue
            if name in module_paths:
                diagnostics.append(
                    self._error(f"Duplicate module name {name!r} (also {module_paths[name]})", path)
                )
                continue
            module_paths[name] = path

            compiled = self._compile_file(path, diagnostics)
            if compiled is not None:
                trees[name], modules[name] = compiled

        reference_paths = self._resolve_references(config.references, diagnostics)
        resources = self._collect_resources(resource_files or [], diagnostics)

        entry_module = None
        if not any(d.is_error for d in diagnostics):
            entry_module = self._find_entry_module(config, trees, diagnostics)

        if any(d.is_error for d in diagnostics) or entry_module is None:
            return CompilerOutput(unit=None, diagnostics=diagnostics)

        unit = CompiledUnit(
            name=config.output_name,
            modules=modules,
            module_paths=module_paths,
            entry_module=entry_module,
            entry_function=config.entry_function,
            reference_paths=reference_paths,
            resources=resources,
        )

        if not config.in_memory:
            self._write_archive(config, unit, diagnostics)
            if any(d.is_error for d in diagnostics):
                return CompilerOutput(unit=None, diagnostics=diagnostics)

        return CompilerOutput(unit=unit, diagnostics=diagnostics)

    def _error(self, message: str, path: Path | None = None, line: int | None = None) -> Diagnostic:
        return Diagnostic(DiagnosticSeverity.ERROR, message, path, line)

    def _compile_file(
        self, path: Path, diagnostics: list[Diagnostic]
    ) -> tuple[ast.Module, CodeType] | None:
        """Parse and compile one file, recording problems as diagnostics."""
        try:
            source = path.read_bytes()
        except OSError as e:
            diagnostics.append(self._error(f"Cannot read source: {e.strerror or e}", path))
            return None

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                tree = ast.parse(source, filename=str(path))
                code = compile(tree, str(path), "exec", dont_inherit=True)
            except SyntaxError as e:
                diagnostics.append(self._error(e.msg, path, e.lineno))
                return None
            except ValueError as e:
                diagnostics.append(self._error(str(e), path))
                return None

        for warning in caught:
            if issubclass(warning.category, SyntaxWarning):
                diagnostics.append(
                    Diagnostic(DiagnosticSeverity.WARNING, str(warning.message), path, warning.lineno)
                )

        return tree, code

    def _resolve_references(self, references: tuple[str, ...], diagnostics: list[Diagnostic]) -> list[Path]:
        """Check every reference and return the path references."""
        paths: list[Path] = []
        for reference in references:
            if is_path_reference(reference):
                path = Path(reference)
                if not path.exists():
                    diagnostics.append(self._error(f"Reference not found: {reference}"))
                else:
                    paths.append(path.resolve())
                continue

            # Only the top-level name is looked up so no parent package gets imported
            top_level = reference.split(".", 1)[0]
            try:
                spec = importlib.util.find_spec(top_level)
            except (ImportError, ValueError):
                spec = None
            if spec is None:
                diagnostics.append(self._error(f"Unresolved reference: {reference}"))
        return paths

    def _collect_resources(self, resource_files: list[Path], diagnostics: list[Diagnostic]) -> dict[str, Path]:
        resources: dict[str, Path] = {}
        for path in resource_files:
            path = Path(path)
            if not path.is_file():
                diagnostics.append(self._error("Resource file not found", path))
            elif path.name in resources:
                diagnostics.append(
                    Diagnostic(
                        DiagnosticSeverity.WARNING,
                        f"Resource name {path.name!r} already provided by {resources[path.name]}",
                        path,
                    )
                )
            else:
                resources[path.name] = path
        return resources

    def _find_entry_module(
        self, config: BuildConfig, trees: dict[str, ast.Module], diagnostics: list[Diagnostic]
    ) -> str | None:
        """Locate the module defining the entry function."""

        def defines(tree: ast.Module, function: str) -> bool:
            return any(
                isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef) and node.name == function
                for node in tree.body
            )

        function = config.entry_function
        wanted = config.entry_module
        if wanted is not None:
            if wanted not in trees:
                diagnostics.append(self._error(f"Entry module {wanted!r} is not part of the build"))
                return None
            if not defines(trees[wanted], function):
                diagnostics.append(self._error(f"Entry point {function!r} not defined in module {wanted!r}"))
                return None
            return wanted

        for name, tree in trees.items():
            if defines(tree, function):
                return name

        diagnostics.append(self._error(f"No entry point {function!r} found in {len(trees)} source files"))
        return None

    def _write_archive(self, config: BuildConfig, unit: CompiledUnit, diagnostics: list[Diagnostic]) -> None:
        """Write the unit's sources, resources, and manifest to a zip archive."""
        if config.output_path is None:
            diagnostics.append(self._error("Output path required when not building in memory"))
            return

        output_path = Path(config.output_path)
        manifest = {
            "name": unit.name,
            "entry_point": unit.entry_point,
            "modules": list(unit.modules),
            "references": [str(p) for p in unit.reference_paths],
            "resources": list(unit.resources),
            "built_at": unit.built_at.isoformat(),
            "hotswap_version": __version__,
        }

        tmp_path = output_path.with_name(output_path.name + ".tmp")
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                archive.writestr(f"{unit.name}/__init__.py", "")
                for name, path in unit.module_paths.items():
                    archive.write(path, f"{unit.name}/{name}.py")
                for name, path in unit.resources.items():
                    archive.write(path, f"{unit.name}/resources/{name}")
                archive.writestr("manifest.json", json.dumps(manifest, indent=2))
            os.replace(tmp_path, output_path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            diagnostics.append(self._error(f"Cannot write output archive: {e}", output_path))
            return

        unit.artifact_path = output_path
        logger.info(f"Wrote {output_path} ({len(unit.modules)} modules)")
