"""Build configuration."""

from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_OUTPUT_NAME = "hotswap_app"
DEFAULT_ENTRY_POINT = "main"


@dataclass(frozen=True)
class BuildConfig:
    """Configuration for one build invocation.

    ``references`` mixes two kinds of entries: paths (import roots such as
    directories, ``.zip`` or ``.whl`` files) and importable module names
    resolved against the host interpreter.
    """

    in_memory: bool = True
    output_path: Path | None = None  # Archive written when in_memory is False
    output_name: str = DEFAULT_OUTPUT_NAME  # Package name the unit is loaded under
    entry_point: str = DEFAULT_ENTRY_POINT  # "function" or "module:function"
    references: tuple[str, ...] = ()

    @property
    def entry_module(self) -> str | None:
        """Module named by the entry point, or None to search all modules."""
        if ":" in self.entry_point:
            return self.entry_point.split(":", 1)[0]
        return None

    @property
    def entry_function(self) -> str:
        return self.entry_point.rsplit(":", 1)[-1]

    def with_references(self, extra: Iterable[str | Path]) -> "BuildConfig":
        """Return a copy with ``extra`` appended to the reference list."""
        additions = tuple(str(r) for r in extra if str(r) not in self.references)
        return replace(self, references=(*self.references, *additions))
