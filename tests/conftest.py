"""Pytest configuration and fixtures."""

import threading
from collections.abc import Callable
from pathlib import Path
from uuid import uuid4

import pytest

from hotswap.build.compiler import CompiledUnit
from hotswap.events.signal import Subscription
from hotswap.isolation.base import IsolatedContext, IsolationMechanism, LoadError, UnloadError
from hotswap.watch.service import DirectoryWatchService, FileChange, WatchSubscriptionError


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="run tests that rely on real OS file notifications or child processes",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "live: mark test as relying on OS notifications or processes (deselect with '-m \"not live\"')",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is specified."""
    if config.getoption("--run-live"):
        return

    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeWatchService(DirectoryWatchService):
    """In-memory watch service; tests fire changes by hand."""

    def __init__(self, unwatchable: set[Path] | None = None):
        self.unwatchable = unwatchable or set()
        self.callbacks: dict[Path, Callable[[FileChange], None]] = {}
        self.subscribe_count = 0
        self._lock = threading.Lock()

    def subscribe(self, root: Path, callback: Callable[[FileChange], None]) -> Subscription:
        root = Path(root)
        if root in self.unwatchable:
            raise WatchSubscriptionError(root, "permission denied")
        with self._lock:
            self.callbacks[root] = callback
            self.subscribe_count += 1

        def release() -> None:
            with self._lock:
                self.callbacks.pop(root, None)

        return Subscription(release, description=f"fake:{root}")

    @property
    def watched(self) -> set[Path]:
        with self._lock:
            return set(self.callbacks)

    def fire(self, root: Path, path: Path | None = None, change_type: str = "modified") -> None:
        with self._lock:
            callback = self.callbacks[Path(root)]
        callback(FileChange(path=Path(path or root), change_type=change_type))


class FakeIsolation(IsolationMechanism):
    """Isolation mechanism that records every call instead of running code."""

    def __init__(self, fail_load: bool = False, fail_unload: bool = False):
        super().__init__()
        self.fail_load = fail_load
        self.fail_unload = fail_unload
        self.calls: list[tuple[str, str]] = []
        self.max_live = 0

    def create(self, name: str) -> IsolatedContext:
        context = super().create(name)
        self.calls.append(("create", name))
        self.max_live = max(self.max_live, len(self.live_contexts))
        return context

    def _load(self, context: IsolatedContext, unit: CompiledUnit) -> None:
        self.calls.append(("load", context.name))
        if self.fail_load:
            raise LoadError(context.name, "boom at import")

    def _invoke(self, context: IsolatedContext) -> None:
        self.calls.append(("invoke", context.name))

    def _release(self, context: IsolatedContext) -> None:
        self.calls.append(("unload", context.name))
        if self.fail_unload:
            raise UnloadError(context.name, "still resident")

    @property
    def actions(self) -> list[str]:
        return [action for action, _ in self.calls]


@pytest.fixture
def fake_watch() -> FakeWatchService:
    return FakeWatchService()


@pytest.fixture
def fake_isolation() -> FakeIsolation:
    return FakeIsolation()


@pytest.fixture
def unit_name() -> str:
    """A package name no other test uses, so sys.modules never collides."""
    return f"hotswap_test_{uuid4().hex[:8]}"


@pytest.fixture
def write_module(tmp_path: Path) -> Callable[..., Path]:
    """Write a source file under tmp_path and return its path."""

    def write(name: str, body: str, directory: str = "src") -> Path:
        path = tmp_path / directory / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body)
        return path

    return write
