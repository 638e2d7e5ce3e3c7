"""Source classification: decides whether a path belongs to a category."""

from enum import Enum
from pathlib import Path


class FileCategory(str, Enum):
    """Categories of files tracked by a recipe."""

    SOURCE = "source"
    REFERENCE = "reference"
    RESOURCE = "resource"


class ClassifierMode(str, Enum):
    """How a SourceClassifier decides membership."""

    LIST = "list"  # Only explicitly listed paths are included
    FILTER = "filter"  # Names containing the filter text, minus listed paths


class SourceClassifier:
    """Decides whether a file path belongs to one named category.

    In list mode the explicit paths are the members. In filter mode a path
    is a member when its file name contains ``filter_text`` and it is not
    listed; the explicit paths act as an exclusion list.
    """

    def __init__(self, filter_text: str | None = None, paths: list[Path | str] | None = None):
        self.filter_text = filter_text
        self._paths: dict[Path, None] = {Path(p): None for p in paths or []}

    @property
    def mode(self) -> ClassifierMode:
        return ClassifierMode.LIST if self.filter_text is None else ClassifierMode.FILTER

    def includes(self, path: Path | str) -> bool:
        """Check whether ``path`` belongs to this category."""
        path = Path(path)
        if self.mode is ClassifierMode.FILTER:
            return self.filter_text in path.name and path not in self._paths
        return path in self._paths

    def add(self, path: Path | str) -> None:
        self._paths[Path(path)] = None

    def remove(self, path: Path | str) -> None:
        self._paths.pop(Path(path), None)

    @property
    def paths(self) -> list[Path]:
        """Snapshot of the explicit paths, in insertion order."""
        return list(self._paths)

    def __len__(self) -> int:
        return len(self._paths)

    def __repr__(self) -> str:
        return f"SourceClassifier(mode={self.mode.value}, filter={self.filter_text!r}, paths={len(self)})"
