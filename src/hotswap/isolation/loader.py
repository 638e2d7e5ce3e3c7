"""Import machinery serving a compiled unit's modules.

The unit is exposed as a synthetic package: ``<package>.<module>`` for
every compiled module, with the package's ``resources`` attribute mapping
resource names to paths.
"""

import importlib.util
import sys
from collections.abc import Callable
from importlib.abc import Loader, MetaPathFinder
from importlib.machinery import ModuleSpec, PathFinder
from pathlib import Path
from types import CodeType, ModuleType


class UnitFinder(MetaPathFinder, Loader):
    """Finds and executes the modules of one compiled unit."""

    def __init__(
        self,
        package: str,
        modules: dict[str, CodeType],
        module_paths: dict[str, str] | None = None,
        resources: dict[str, str] | None = None,
    ):
        self.package = package
        self.modules = modules
        self.module_paths = module_paths or {}
        self.resources = resources or {}

    def find_spec(self, fullname, path=None, target=None) -> ModuleSpec | None:
        if fullname == self.package:
            return importlib.util.spec_from_loader(fullname, self, is_package=True)

        parent, _, name = fullname.rpartition(".")
        if parent != self.package or name not in self.modules:
            return None

        origin = self.module_paths.get(name)
        spec = importlib.util.spec_from_loader(fullname, self, origin=origin)
        if origin is not None:
            spec.has_location = True
        return spec

    def create_module(self, spec: ModuleSpec) -> None:
        return None

    def exec_module(self, module: ModuleType) -> None:
        if module.__name__ == self.package:
            module.resources = {name: Path(path) for name, path in self.resources.items()}
            return
        name = module.__name__.rpartition(".")[2]
        exec(self.modules[name], module.__dict__)

    def owns(self, module_name: str) -> bool:
        return module_name == self.package or module_name.startswith(self.package + ".")


class ReferenceFinder(MetaPathFinder):
    """Resolves top-level imports against a unit's reference roots.

    Installed after the default finders so host modules take precedence.
    """

    def __init__(self, paths: list[str]):
        self.paths = list(paths)

    def find_spec(self, fullname, path=None, target=None) -> ModuleSpec | None:
        if path is not None:
            return None  # Submodules resolve through their package's __path__
        return PathFinder.find_spec(fullname, self.paths)

    def owns(self, module_name: str) -> bool:
        module = sys.modules.get(module_name)
        origin = getattr(getattr(module, "__spec__", None), "origin", None)
        return origin is not None and any(origin.startswith(p) for p in self.paths)


def purge_modules(predicate: Callable[[str], bool]) -> list[str]:
    """Remove every module whose name matches ``predicate`` from sys.modules."""
    names = [name for name in list(sys.modules) if predicate(name)]
    for name in names:
        sys.modules.pop(name, None)
    return names
