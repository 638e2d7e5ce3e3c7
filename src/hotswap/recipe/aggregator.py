"""Recipe aggregation: turns recipe-source events into a coherent recipe.

Based on the hot-swap pipeline design:
- One DirectoryBundle per directory that holds tracked files
- Bundles appear on the first file that needs them and disappear when empty
- Any bundle's change notification becomes a single ``rebuild_requested``
- Flattened snapshot queries over the whole recipe
"""

import logging
import threading
from pathlib import Path

from hotswap.events.signal import Signal, Subscription, SubscriptionRegistry
from hotswap.recipe.bundle import DirectoryBundle
from hotswap.recipe.classifier import FileCategory
from hotswap.recipe.source import RecipeSource
from hotswap.watch.service import DirectoryWatchService, FileChange

logger = logging.getLogger(__name__)


class RecipeAggregator:
    """Maintains the directory-keyed recipe for one recipe source.

    All mutations and queries go through a single lock: recipe-source
    events and watcher threads may arrive concurrently. Signals are never
    emitted while the lock is held.

    External reference names have set semantics: adding a name twice keeps
    one entry, and removing it drops it entirely.
    """

    def __init__(self, source: RecipeSource, watch_service: DirectoryWatchService):
        self.source = source
        self.watch_service = watch_service
        self.rebuild_requested = Signal("rebuild_requested")

        self._bundles: dict[Path, DirectoryBundle] = {}
        self._forwarders: dict[Path, Subscription] = {}
        self._external_references: dict[str, None] = {}
        self._lock = threading.RLock()
        self._closed = False

        self._subscriptions = SubscriptionRegistry()
        self._subscribe_to_source()

    def _subscribe_to_source(self) -> None:
        for category in FileCategory:
            added, removed = self.source.file_signals(category)
            self._subscriptions.add(added.connect(lambda p, c=category: self.on_file_added(p, c)))
            self._subscriptions.add(removed.connect(lambda p, c=category: self.on_file_removed(p, c)))

        self._subscriptions.add(self.source.directory_added.connect(self.on_directory_added))
        self._subscriptions.add(self.source.directory_removed.connect(self.on_directory_removed))
        self._subscriptions.add(
            self.source.external_reference_added.connect(self.on_external_reference_added)
        )
        self._subscriptions.add(
            self.source.external_reference_removed.connect(self.on_external_reference_removed)
        )

    # -- recipe-source handlers ----------------------------------------------

    def on_source_file_added(self, path: Path) -> None:
        self.on_file_added(path, FileCategory.SOURCE)

    def on_source_file_removed(self, path: Path) -> None:
        self.on_file_removed(path, FileCategory.SOURCE)

    def on_reference_file_added(self, path: Path) -> None:
        self.on_file_added(path, FileCategory.REFERENCE)

    def on_reference_file_removed(self, path: Path) -> None:
        self.on_file_removed(path, FileCategory.REFERENCE)

    def on_resource_file_added(self, path: Path) -> None:
        self.on_file_added(path, FileCategory.RESOURCE)

    def on_resource_file_removed(self, path: Path) -> None:
        self.on_file_removed(path, FileCategory.RESOURCE)

    def on_file_added(self, path: Path, category: FileCategory) -> None:
        """Add a file to the bundle of its containing directory.

        Raises:
            WatchSubscriptionError: If a new bundle's directory cannot be watched.
        """
        path = Path(path)
        with self._lock:
            bundle = self._get_or_create_bundle(path.parent)
            bundle.add_file(path, category)
        logger.debug(f"Added {category.value} file {path}")

    def on_file_removed(self, path: Path, category: FileCategory) -> None:
        """Remove a file; drops the bundle once it holds nothing."""
        path = Path(path)
        with self._lock:
            bundle = self._bundles.get(path.parent)
            if bundle is None:
                return
            bundle.remove_file(path, category)
            if bundle.is_empty():
                self._destroy_bundle(path.parent)
        logger.debug(f"Removed {category.value} file {path}")

    def on_directory_added(self, path: Path) -> None:
        with self._lock:
            self._get_or_create_bundle(Path(path))

    def on_directory_removed(self, path: Path) -> None:
        with self._lock:
            self._destroy_bundle(Path(path))

    def on_external_reference_added(self, name: str) -> None:
        with self._lock:
            self._external_references[name] = None

    def on_external_reference_removed(self, name: str) -> None:
        with self._lock:
            self._external_references.pop(name, None)

    # -- bundle lifecycle ----------------------------------------------------

    def _get_or_create_bundle(self, directory: Path) -> DirectoryBundle:
        if self._closed:
            raise RuntimeError("RecipeAggregator is closed")

        bundle = self._bundles.get(directory)
        if bundle is None:
            bundle = DirectoryBundle(directory, self.watch_service)
            self._bundles[directory] = bundle
            self._forwarders[directory] = bundle.changed.connect(self._on_bundle_changed)
            logger.info(f"Tracking directory {directory}")
        return bundle

    def _destroy_bundle(self, directory: Path) -> None:
        bundle = self._bundles.pop(directory, None)
        if bundle is None:
            return
        self._forwarders.pop(directory).unsubscribe()
        bundle.close()
        logger.info(f"Stopped tracking directory {directory}")

    def _on_bundle_changed(self, change: FileChange) -> None:
        self.rebuild_requested.emit()

    # -- queries -------------------------------------------------------------

    def list_directories(self) -> list[Path]:
        with self._lock:
            return list(self._bundles)

    def _list_files(self, category: FileCategory) -> list[Path]:
        with self._lock:
            return [path for bundle in self._bundles.values() for path in bundle.files(category)]

    def list_all_source_files(self) -> list[Path]:
        return self._list_files(FileCategory.SOURCE)

    def list_all_reference_files(self) -> list[Path]:
        return self._list_files(FileCategory.REFERENCE)

    def list_all_resource_files(self) -> list[Path]:
        return self._list_files(FileCategory.RESOURCE)

    def list_external_references(self) -> list[str]:
        with self._lock:
            return list(self._external_references)

    def get_bundle(self, directory: Path) -> DirectoryBundle | None:
        with self._lock:
            return self._bundles.get(Path(directory))

    def describe(self) -> str:
        """Render the recipe as indented text."""
        lines = ["Recipe:"]
        with self._lock:
            for bundle in self._bundles.values():
                lines.append(f"  Directory: {bundle.directory}")
                for category in FileCategory:
                    lines.append(f"    {category.value.capitalize()} files:")
                    lines.extend(f"      - {path.name}" for path in bundle.files(category))
            if self._external_references:
                lines.append("  External references:")
                lines.extend(f"    - {name}" for name in self._external_references)
        return "\n".join(lines)

    # -- disposal ------------------------------------------------------------

    def close(self) -> None:
        """Detach from the recipe source and release every directory watch."""
        self._subscriptions.close()
        with self._lock:
            self._closed = True
            for directory in list(self._bundles):
                self._destroy_bundle(directory)
        logger.debug("RecipeAggregator closed")

    def __enter__(self) -> "RecipeAggregator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
