"""Per-directory grouping of classified files plus its change watch."""

import logging
from pathlib import Path

from hotswap.events.signal import Signal, Subscription
from hotswap.recipe.classifier import FileCategory, SourceClassifier
from hotswap.watch.service import DirectoryWatchService, FileChange

logger = logging.getLogger(__name__)


class DirectoryBundle:
    """Files of one directory, grouped by category, plus a recursive watch.

    Any change anywhere under the directory fires ``changed``, whether or
    not the touched path is tracked. The bundle owns its watch
    subscription and releases it in ``close()``.
    """

    def __init__(self, directory: Path, watch_service: DirectoryWatchService):
        self.directory = Path(directory)
        self.classifiers: dict[FileCategory, SourceClassifier] = {
            category: SourceClassifier() for category in FileCategory
        }
        self.changed = Signal(f"bundle.changed:{self.directory}")

        # Raises WatchSubscriptionError; the bundle is never half-built
        self._watch: Subscription = watch_service.subscribe(self.directory, self._on_change)

    def _on_change(self, change: FileChange) -> None:
        logger.debug(f"{change.change_type}: {change.path}")
        self.changed.emit(change)

    def add_file(self, path: Path, category: FileCategory) -> None:
        self.classifiers[category].add(path)

    def remove_file(self, path: Path, category: FileCategory) -> None:
        self.classifiers[category].remove(path)

    def files(self, category: FileCategory) -> list[Path]:
        return self.classifiers[category].paths

    def is_empty(self) -> bool:
        """Check whether every category is empty."""
        return all(len(c) == 0 for c in self.classifiers.values())

    @property
    def watching(self) -> bool:
        return self._watch.active

    def close(self) -> None:
        """Release the directory watch."""
        self._watch.unsubscribe()

    def __repr__(self) -> str:
        counts = ", ".join(f"{c.value}={len(s)}" for c, s in self.classifiers.items())
        return f"DirectoryBundle({self.directory}, {counts})"
