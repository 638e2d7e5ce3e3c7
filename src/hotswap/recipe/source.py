"""Recipe sources: emitters of file, directory, and reference events.

A recipe source decides which files make up the buildable unit; the
aggregator only reacts to what it emits.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from hotswap.events.signal import Signal
from hotswap.recipe.classifier import FileCategory, SourceClassifier

logger = logging.getLogger(__name__)

DEFAULT_IGNORE_PATTERNS = [
    "__pycache__",
    ".pyc",
    ".git",
    ".venv",
    ".egg-info",
]

# Editor swap, backup and lock files
EDITOR_TEMP_SUFFIXES = (".swp", ".swo", ".swx", "~")
EDITOR_TEMP_PREFIXES = (".#",)

# Source files are Python modules, whatever the name filter matches
SOURCE_SUFFIX = ".py"


class RecipeSource:
    """Event interface of a recipe source.

    Every signal carries one argument: an absolute ``Path`` for file and
    directory events, a name string for external references.
    """

    def __init__(self) -> None:
        self.source_file_added = Signal("source_file_added")
        self.source_file_removed = Signal("source_file_removed")
        self.reference_file_added = Signal("reference_file_added")
        self.reference_file_removed = Signal("reference_file_removed")
        self.resource_file_added = Signal("resource_file_added")
        self.resource_file_removed = Signal("resource_file_removed")
        self.directory_added = Signal("directory_added")
        self.directory_removed = Signal("directory_removed")
        self.external_reference_added = Signal("external_reference_added")
        self.external_reference_removed = Signal("external_reference_removed")

    def file_signals(self, category: FileCategory) -> tuple[Signal, Signal]:
        """Get the (added, removed) signal pair for a file category."""
        return {
            FileCategory.SOURCE: (self.source_file_added, self.source_file_removed),
            FileCategory.REFERENCE: (self.reference_file_added, self.reference_file_removed),
            FileCategory.RESOURCE: (self.resource_file_added, self.resource_file_removed),
        }[category]

    def add_file(self, path: Path | str, category: FileCategory = FileCategory.SOURCE) -> None:
        self.file_signals(category)[0].emit(Path(path))

    def remove_file(self, path: Path | str, category: FileCategory = FileCategory.SOURCE) -> None:
        self.file_signals(category)[1].emit(Path(path))

    def add_directory(self, path: Path | str) -> None:
        self.directory_added.emit(Path(path))

    def remove_directory(self, path: Path | str) -> None:
        self.directory_removed.emit(Path(path))

    def add_external_reference(self, name: str) -> None:
        self.external_reference_added.emit(name)

    def remove_external_reference(self, name: str) -> None:
        self.external_reference_removed.emit(name)


@dataclass
class RecipeEntry:
    """One directory scanned by a DirectoryRecipeSource."""

    directory: Path
    source_filter: str | None = ".py"
    reference_filter: str | None = None
    resource_filter: str | None = None
    exclude: list[Path] = field(default_factory=list)

    def classifiers(self) -> dict[FileCategory, SourceClassifier]:
        """Build one filter-mode classifier per configured category."""
        filters = {
            FileCategory.SOURCE: self.source_filter,
            FileCategory.REFERENCE: self.reference_filter,
            FileCategory.RESOURCE: self.resource_filter,
        }
        return {
            category: SourceClassifier(filter_text=text, paths=self.exclude)
            for category, text in filters.items()
            if text
        }


class DirectoryRecipeSource(RecipeSource):
    """Recipe source that derives the recipe from directory scans.

    Each ``refresh()`` rescans the configured directories and emits
    added/removed events for the difference since the previous scan.
    """

    def __init__(
        self,
        entries: list[RecipeEntry],
        external_references: list[str] | None = None,
        ignore_patterns: list[str] | None = None,
    ):
        super().__init__()
        self.entries = entries
        self.external_references = list(external_references or [])
        self.ignore_patterns = ignore_patterns or DEFAULT_IGNORE_PATTERNS

        self._known: dict[Path, FileCategory] = {}
        self._initialized = False
        self._lock = threading.Lock()

    def _should_ignore(self, path: Path) -> bool:
        """Check if path should be ignored."""
        if path.name.endswith(EDITOR_TEMP_SUFFIXES) or path.name.startswith(EDITOR_TEMP_PREFIXES):
            return True
        path_str = str(path)
        return any(pattern in path_str for pattern in self.ignore_patterns)

    def _scan_files(self) -> dict[Path, FileCategory]:
        """Scan all configured directories and classify matching files."""
        files: dict[Path, FileCategory] = {}

        for entry in self.entries:
            if not entry.directory.exists():
                logger.warning(f"Recipe directory does not exist: {entry.directory}")
                continue

            classifiers = entry.classifiers()
            for path in sorted(entry.directory.rglob("*")):
                if not path.is_file() or self._should_ignore(path):
                    continue
                for category, classifier in classifiers.items():
                    if category is FileCategory.SOURCE and path.suffix != SOURCE_SUFFIX:
                        continue
                    if classifier.includes(path):
                        files.setdefault(path.absolute(), category)
                        break

        return files

    def refresh(self) -> None:
        """Rescan the directories and emit the differences."""
        with self._lock:
            if not self._initialized:
                for name in self.external_references:
                    self.add_external_reference(name)
                self._initialized = True

            current = self._scan_files()
            previous = self._known

            for path, category in previous.items():
                if current.get(path) != category:
                    self.remove_file(path, category)

            # Removals may have dropped a configured directory's bundle and its watch
            for entry in self.entries:
                if entry.directory.exists():
                    self.add_directory(entry.directory.absolute())

            for path, category in current.items():
                if previous.get(path) != category:
                    self.add_file(path, category)

            added = len(current.keys() - previous.keys())
            removed = len(previous.keys() - current.keys())
            if added or removed:
                logger.info(f"Recipe refreshed: {added} added, {removed} removed, {len(current)} total")

            self._known = current
