"""Configuration loading from ``hotswap.toml``.

Example::

    [build]
    in_memory = true
    output_name = "app"
    entry_point = "main"
    references = ["json"]
    timeout = 60             # 0 disables the build timeout

    [isolation]
    mode = "in-process"      # or "process"
    unload_timeout = 5.0

    [watch]
    polling = false

    [[recipe.directories]]
    path = "src"
    source_filter = ".py"
    resource_filter = ".json"
    exclude = ["src/scratch.py"]

Relative paths are resolved against the directory holding the file.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli

from hotswap.build.config import DEFAULT_ENTRY_POINT, DEFAULT_OUTPUT_NAME, BuildConfig
from hotswap.isolation import InProcessIsolation, IsolationMechanism, ProcessIsolation
from hotswap.recipe.source import RecipeEntry

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "hotswap.toml"
ISOLATION_MODES = ("in-process", "process")


class ConfigError(Exception):
    """Raised when the configuration file is malformed."""


@dataclass
class BuildSettings:
    """Settings for the build step."""

    in_memory: bool = True
    output_path: Path | None = None
    output_name: str = DEFAULT_OUTPUT_NAME
    entry_point: str = DEFAULT_ENTRY_POINT
    references: list[str] = field(default_factory=list)
    timeout: float | None = 120.0  # None disables the build timeout

    def to_build_config(self) -> BuildConfig:
        return BuildConfig(
            in_memory=self.in_memory,
            output_path=self.output_path,
            output_name=self.output_name,
            entry_point=self.entry_point,
            references=tuple(self.references),
        )


@dataclass
class IsolationSettings:
    """Settings for the isolation mechanism."""

    mode: str = "in-process"
    unload_timeout: float = 5.0

    def create_mechanism(self) -> IsolationMechanism:
        if self.mode == "process":
            return ProcessIsolation(unload_timeout=self.unload_timeout)
        return InProcessIsolation(unload_timeout=self.unload_timeout)


@dataclass
class WatchSettings:
    """Settings for directory watching."""

    polling: bool = False
    poll_interval: float = 1.0


@dataclass
class RecipeSettings:
    """Which directories and external references make up the recipe."""

    directories: list[RecipeEntry] = field(default_factory=list)
    external_references: list[str] = field(default_factory=list)


@dataclass
class HotswapConfig:
    """Complete configuration."""

    build: BuildSettings = field(default_factory=BuildSettings)
    isolation: IsolationSettings = field(default_factory=IsolationSettings)
    watch: WatchSettings = field(default_factory=WatchSettings)
    recipe: RecipeSettings = field(default_factory=RecipeSettings)
    path: Path | None = None  # File the config was read from


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _typed(section: dict[str, Any], key: str, expected: type | tuple[type, ...], default: Any) -> Any:
    value = section.get(key, default)
    if value is not default and not isinstance(value, expected):
        raise ConfigError(f"{key} must be of type {getattr(expected, '__name__', expected)}, got {value!r}")
    return value


def _parse_entry(raw: Any, base_dir: Path) -> RecipeEntry:
    if not isinstance(raw, dict) or "path" not in raw:
        raise ConfigError("Each [[recipe.directories]] entry needs a path")
    return RecipeEntry(
        directory=(base_dir / raw["path"]).absolute(),
        source_filter=_typed(raw, "source_filter", str, ".py"),
        reference_filter=_typed(raw, "reference_filter", str, None),
        resource_filter=_typed(raw, "resource_filter", str, None),
        exclude=[(base_dir / p).absolute() for p in _typed(raw, "exclude", list, [])],
    )


def parse_config(data: dict[str, Any], base_dir: Path) -> HotswapConfig:
    """Build a HotswapConfig from parsed TOML data.

    Raises:
        ConfigError: If a section or value is malformed.
    """
    build = _section(data, "build")
    output_path = _typed(build, "output_path", str, None)
    build_settings = BuildSettings(
        in_memory=_typed(build, "in_memory", bool, True),
        output_path=(base_dir / output_path).absolute() if output_path else None,
        output_name=_typed(build, "output_name", str, DEFAULT_OUTPUT_NAME),
        entry_point=_typed(build, "entry_point", str, DEFAULT_ENTRY_POINT),
        references=[
            str((base_dir / r).absolute()) if "/" in r else r
            for r in _typed(build, "references", list, [])
        ],
        timeout=_typed(build, "timeout", (int, float), 120.0) or None,
    )
    if not build_settings.in_memory and build_settings.output_path is None:
        raise ConfigError("build.output_path is required when build.in_memory is false")

    isolation = _section(data, "isolation")
    isolation_settings = IsolationSettings(
        mode=_typed(isolation, "mode", str, "in-process"),
        unload_timeout=_typed(isolation, "unload_timeout", (int, float), 5.0),
    )
    if isolation_settings.mode not in ISOLATION_MODES:
        raise ConfigError(
            f"isolation.mode must be one of {', '.join(ISOLATION_MODES)}, got {isolation_settings.mode!r}"
        )

    watch = _section(data, "watch")
    watch_settings = WatchSettings(
        polling=_typed(watch, "polling", bool, False),
        poll_interval=_typed(watch, "poll_interval", (int, float), 1.0),
    )

    recipe = _section(data, "recipe")
    recipe_settings = RecipeSettings(
        directories=[_parse_entry(raw, base_dir) for raw in _typed(recipe, "directories", list, [])],
        external_references=_typed(recipe, "external_references", list, []),
    )

    return HotswapConfig(
        build=build_settings,
        isolation=isolation_settings,
        watch=watch_settings,
        recipe=recipe_settings,
    )


def load_config(path: Path | None = None) -> HotswapConfig:
    """Load configuration from a TOML file.

    Args:
        path: Config file; defaults to ``hotswap.toml`` in the working directory.

    Returns:
        The parsed configuration, or defaults when the file does not exist.

    Raises:
        ConfigError: If the file cannot be parsed.
    """
    path = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_FILE
    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return HotswapConfig()

    try:
        data = tomli.loads(path.read_text())
    except tomli.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e

    config = parse_config(data, path.parent.absolute())
    config.path = path
    logger.debug(f"Loaded config from {path}")
    return config
