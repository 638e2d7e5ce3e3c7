"""Tests for the compiler service and builder."""

import json
import sys
import threading
import zipfile
from pathlib import Path

import pytest

from hotswap.build import (
    BuildConfig,
    Builder,
    BuildFailure,
    CompiledUnit,
    CompilerOutput,
    CompilerService,
    DiagnosticSeverity,
    PythonCompiler,
)


class TestBuildConfig:
    """Tests for BuildConfig."""

    def test_entry_point_parsing(self):
        """Entry points may name a module."""
        assert BuildConfig().entry_module is None
        assert BuildConfig().entry_function == "main"

        config = BuildConfig(entry_point="server:serve")
        assert config.entry_module == "server"
        assert config.entry_function == "serve"

    def test_with_references_appends_without_duplicates(self):
        """Extra references are appended once."""
        config = BuildConfig(references=("json",))
        extended = config.with_references(["json", Path("/libs/vendor.zip")])

        assert extended.references == ("json", "/libs/vendor.zip")
        assert config.references == ("json",)


class TestPythonCompiler:
    """Tests for PythonCompiler."""

    def test_compiles_modules_in_order(self, write_module):
        """Each source becomes a module; order is preserved."""
        a = write_module("alpha.py", "def main():\n    return 1\n")
        b = write_module("beta.py", "VALUE = 2\n")

        output = PythonCompiler().compile(BuildConfig(output_name="app"), [b, a])

        assert output.errors == []
        unit = output.unit
        assert list(unit.modules) == ["beta", "alpha"]
        assert unit.entry_module == "alpha"
        assert unit.entry_point == "alpha:main"
        assert unit.module_paths["alpha"] == a

    def test_syntax_error_is_diagnostic(self, write_module):
        """Syntax errors are reported with file and line."""
        bad = write_module("broken.py", "def main():\n    return (\n")

        output = PythonCompiler().compile(BuildConfig(), [bad])

        assert output.unit is None
        assert len(output.errors) == 1
        assert output.errors[0].path == bad
        assert output.errors[0].line is not None
        assert str(bad) in str(output.errors[0])

    def test_missing_entry_point(self, write_module):
        """A build without the entry function fails."""
        path = write_module("lib.py", "X = 1\n")

        output = PythonCompiler().compile(BuildConfig(), [path])

        assert output.unit is None
        assert "No entry point 'main'" in output.errors[0].message

    def test_named_entry_module(self, write_module):
        """An explicit entry module must define the entry function."""
        a = write_module("a.py", "def main(): pass\n")
        b = write_module("b.py", "def serve(): pass\n")

        ok = PythonCompiler().compile(BuildConfig(entry_point="b:serve"), [a, b])
        assert ok.unit.entry_point == "b:serve"

        missing = PythonCompiler().compile(BuildConfig(entry_point="a:serve"), [a, b])
        assert missing.unit is None

        unknown = PythonCompiler().compile(BuildConfig(entry_point="zzz:main"), [a, b])
        assert "not part of the build" in unknown.errors[0].message

    def test_async_entry_point_is_accepted(self, write_module):
        """Coroutine functions qualify as entry points."""
        path = write_module("app.py", "async def main():\n    return None\n")

        output = PythonCompiler().compile(BuildConfig(), [path])

        assert output.unit is not None

    def test_duplicate_and_invalid_module_names(self, write_module):
        """Module names must be unique identifiers."""
        first = write_module("app.py", "def main(): pass\n", directory="one")
        second = write_module("app.py", "def main(): pass\n", directory="two")
        invalid = write_module("my-module.py", "X = 1\n")

        output = PythonCompiler().compile(BuildConfig(), [first, second, invalid])

        messages = [d.message for d in output.errors]
        assert any("Duplicate module name 'app'" in m for m in messages)
        assert any("not a valid module name" in m for m in messages)

    def test_unreadable_source(self, tmp_path: Path):
        """A missing file is an error diagnostic, not an exception."""
        output = PythonCompiler().compile(BuildConfig(), [tmp_path / "gone.py"])

        assert output.unit is None
        assert "Cannot read source" in output.errors[0].message

    def test_references(self, write_module, tmp_path: Path):
        """Module references resolve via the interpreter, paths must exist."""
        app = write_module("app.py", "def main(): pass\n")
        vendor = tmp_path / "vendor"
        vendor.mkdir()

        ok = PythonCompiler().compile(BuildConfig(references=("json", "os.path", str(vendor))), [app])
        assert ok.errors == []
        assert ok.unit.reference_paths == [vendor.resolve()]

        bad = PythonCompiler().compile(
            BuildConfig(references=("no_such_module_xyz", str(tmp_path / "nope.zip"))), [app]
        )
        messages = [d.message for d in bad.errors]
        assert "Unresolved reference: no_such_module_xyz" in messages
        assert any(m.startswith("Reference not found") for m in messages)

    def test_compiling_does_not_import(self, write_module, unit_name: str):
        """Compilation never executes module code."""
        path = write_module("app.py", "import sys\nsys.stdout.write('side effect')\ndef main(): pass\n")

        PythonCompiler().compile(BuildConfig(output_name=unit_name), [path])

        assert not any(name.startswith(unit_name) for name in sys.modules)

    def test_resources(self, write_module, tmp_path: Path):
        """Resource files are carried by name; duplicates warn."""
        app = write_module("app.py", "def main(): pass\n")
        one = write_module("data.json", "{}", directory="r1")
        two = write_module("data.json", "[]", directory="r2")

        output = PythonCompiler().compile(BuildConfig(), [app], [one, two])

        assert output.unit.resources == {"data.json": one}
        warnings = [d for d in output.diagnostics if d.severity == DiagnosticSeverity.WARNING]
        assert len(warnings) == 1

    def test_writes_archive(self, write_module, tmp_path: Path):
        """Output mode writes sources, resources, and a manifest."""
        app = write_module("app.py", "def main(): pass\n")
        res = write_module("logo.txt", "hi", directory="assets")
        archive = tmp_path / "out" / "app.zip"

        output = PythonCompiler().compile(
            BuildConfig(in_memory=False, output_path=archive, output_name="demo"), [app], [res]
        )

        assert output.unit.artifact_path == archive
        with zipfile.ZipFile(archive) as zf:
            names = set(zf.namelist())
            manifest = json.loads(zf.read("manifest.json"))
        assert {"demo/__init__.py", "demo/app.py", "demo/resources/logo.txt"} <= names
        assert manifest["entry_point"] == "app:main"
        assert not (tmp_path / "out" / "app.zip.tmp").exists()

    def test_output_mode_requires_path(self, write_module):
        """Output mode without a path fails."""
        app = write_module("app.py", "def main(): pass\n")

        output = PythonCompiler().compile(BuildConfig(in_memory=False), [app])

        assert output.unit is None
        assert "Output path required" in output.errors[0].message


class SlowCompiler(CompilerService):
    """Compiler that blocks until released."""

    def __init__(self):
        self.release = threading.Event()

    def compile(self, config, source_files, resource_files=None) -> CompilerOutput:
        self.release.wait(5)
        return CompilerOutput(unit=None)


class BrokenCompiler(CompilerService):
    """Compiler whose service call raises."""

    def compile(self, config, source_files, resource_files=None) -> CompilerOutput:
        raise OSError("compiler service unavailable")


class TestBuilder:
    """Tests for Builder."""

    def test_success_returns_unit(self, write_module):
        """A clean build returns the compiled unit."""
        app = write_module("app.py", "def main(): pass\n")

        result = Builder().build(BuildConfig(), [app])

        assert isinstance(result, CompiledUnit)

    def test_failure_concatenates_diagnostics(self, write_module):
        """Failures carry every error message."""
        a = write_module("a.py", "def main(:\n")
        b = write_module("b.py", "x = = 1\n")

        result = Builder().build(BuildConfig(), [a, b])

        assert isinstance(result, BuildFailure)
        assert result.message.startswith("Compilation failed: ")
        assert str(a) in result.message
        assert str(b) in result.message
        assert len(result.diagnostics) == 2

    def test_no_sources(self):
        """Building nothing is a failure."""
        result = Builder().build(BuildConfig(), [])

        assert isinstance(result, BuildFailure)

    def test_compiler_exception_becomes_failure(self, write_module):
        """An exception from the compiler service is reported as a failure."""
        app = write_module("app.py", "def main(): pass\n")

        result = Builder(BrokenCompiler()).build(BuildConfig(), [app])

        assert isinstance(result, BuildFailure)
        assert result.message == "OSError: compiler service unavailable"
        assert not result.timed_out

    async def test_compiler_exception_in_build_async(self, write_module):
        app = write_module("app.py", "def main(): pass\n")

        result = await Builder(BrokenCompiler()).build_async(BuildConfig(), [app], timeout=10)

        assert isinstance(result, BuildFailure)

    async def test_build_async_timeout(self, write_module):
        """A compile exceeding the timeout yields a timed-out failure."""
        compiler = SlowCompiler()
        app = write_module("app.py", "def main(): pass\n")

        result = await Builder(compiler).build_async(BuildConfig(), [app], timeout=0.05)
        compiler.release.set()

        assert isinstance(result, BuildFailure)
        assert result.timed_out

    async def test_build_async_success(self, write_module):
        """build_async returns the same result as build."""
        app = write_module("app.py", "def main(): pass\n")

        result = await Builder().build_async(BuildConfig(), [app], timeout=10)

        assert isinstance(result, CompiledUnit)


@pytest.mark.parametrize("entry", ["main", "app:main"])
def test_entry_point_forms(write_module, entry: str):
    """Both entry point forms resolve to the same module."""
    app = write_module("app.py", "def main(): pass\n")

    output = PythonCompiler().compile(BuildConfig(entry_point=entry), [app])

    assert output.unit.entry_point == "app:main"
