"""Catalogue of available DNA modules.

The registry is a pure lookup table once loaded: conflict resolution, the
composition engine and the scaffolder only ever read from it, so a single
instance can be shared by concurrent generation runs.  Modules are loaded from
``module.yaml`` / ``module.yml`` / ``module.json`` manifests, each sitting in
the directory that also holds the module's file templates.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from dnagen.errors import RegistryError

from .models import Module, version_key

_BUILTIN_CATALOG_DIR = Path(__file__).resolve().parent.parent / "catalog"

MANIFEST_NAMES: tuple[str, ...] = ("module.yaml", "module.yml", "module.json")


class ModuleRegistry:
    """Versioned, read-only lookup of :class:`Module` definitions."""

    def __init__(self, modules: Iterable[Module] = ()) -> None:
        self._modules: dict[str, dict[str, Module]] = {}
        for module in modules:
            self.register(module)

    # -- Construction --------------------------------------------------------

    @classmethod
    def builtin(cls) -> "ModuleRegistry":
        """Return a registry populated with the packaged module catalogue."""
        registry = cls()
        registry.load_directory(_BUILTIN_CATALOG_DIR)
        return registry

    @classmethod
    def from_directories(
        cls, directories: Iterable[str | Path], *, include_builtin: bool = True
    ) -> "ModuleRegistry":
        """Build a registry from the built-in catalogue plus extra directories."""
        registry = cls.builtin() if include_builtin else cls()
        for directory in directories:
            registry.load_directory(directory)
        return registry

    def register(self, module: Module) -> None:
        """Add *module* to the catalogue.

        Raises:
            RegistryError: On a duplicate id/version pair or a self-dependency.
        """
        if module.id in module.requires:
            raise RegistryError(
                f"Module {module.id} has self-dependency",
                "MODULE_SELF_DEPENDENCY",
                context={"module_id": module.id},
            )
        versions = self._modules.setdefault(module.id, {})
        if module.version in versions:
            raise RegistryError(
                f"Module {module.id}@{module.version} is already registered",
                "MODULE_DUPLICATE",
                context={"module_id": module.id, "version": module.version},
            )
        versions[module.version] = module

    def load_directory(self, path: str | Path) -> list[Module]:
        """Load every module manifest found under *path*.

        Returns:
            The modules that were registered, in discovery order.
        """
        root = Path(path)
        if not root.is_dir():
            raise RegistryError(
                f"Module catalogue directory not found: {root}",
                "CATALOG_NOT_FOUND",
                context={"path": str(root)},
            )

        loaded: list[Module] = []
        for manifest in sorted(root.rglob("module.*")):
            if manifest.name not in MANIFEST_NAMES:
                continue
            module = _load_manifest(manifest)
            self.register(module)
            loaded.append(module)
        return loaded

    # -- Lookup --------------------------------------------------------------

    def get_module(self, module_id: str, version: Optional[str] = None) -> Optional[Module]:
        """Return a module by id.

        ``version`` of ``None`` or ``"latest"`` selects the highest semantic
        version.  Returns ``None`` when nothing matches.
        """
        versions = self._modules.get(module_id)
        if not versions:
            return None
        if version is None or version == "latest":
            return versions[max(versions, key=version_key)]
        return versions.get(version)

    def list_available_modules(self) -> list[Module]:
        """Latest version of every registered module, sorted by id."""
        return [self.get_module(module_id) for module_id in sorted(self._modules)]  # type: ignore[misc]

    def versions(self, module_id: str) -> list[str]:
        """All registered versions of *module_id*, oldest first."""
        return sorted(self._modules.get(module_id, {}), key=version_key)

    def dependency_tree(self, module_id: str) -> dict[str, list[str]]:
        """Map every module reachable through ``requires`` edges to its direct requirements."""
        tree: dict[str, list[str]] = {}
        stack = [module_id]
        while stack:
            current = stack.pop()
            if current in tree:
                continue
            module = self.get_module(current)
            if module is None:
                continue
            tree[current] = list(module.requires)
            stack.extend(module.requires)
        return tree

    def has_circular_dependencies(self, module_ids: Iterable[str]) -> bool:
        """Return ``True`` if the ``requires`` graph among *module_ids* has a cycle."""
        ids = set(module_ids)
        graph = {
            mid: [dep for dep in module.requires if dep in ids]
            for mid in ids
            if (module := self.get_module(mid)) is not None
        }
        return find_cycle(graph) is not None

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[Module]:
        return iter(self.list_available_modules())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def find_cycle(graph: dict[str, list[str]]) -> Optional[list[str]]:
    """Return one dependency cycle in *graph* (as a path of ids), or ``None``.

    Iterative depth-first search so deep chains cannot hit the recursion limit.
    """
    white, grey, black = 0, 1, 2
    colour = {node: white for node in graph}

    for start in graph:
        if colour[start] != white:
            continue
        path: list[str] = [start]
        iters = [iter(graph[start])]
        colour[start] = grey
        while iters:
            try:
                nxt = next(iters[-1])
            except StopIteration:
                colour[path.pop()] = black
                iters.pop()
                continue
            if nxt not in colour:
                continue
            if colour[nxt] == grey:
                return path[path.index(nxt):] + [nxt]
            if colour[nxt] == white:
                colour[nxt] = grey
                path.append(nxt)
                iters.append(iter(graph[nxt]))
    return None


def _load_manifest(manifest: Path) -> Module:
    try:
        raw = manifest.read_text(encoding="utf-8")
        if manifest.suffix == ".json":
            data: Any = json.loads(raw)
        else:
            data = yaml.safe_load(raw)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise RegistryError(
            f"Cannot read module manifest {manifest}: {exc}",
            "MANIFEST_UNREADABLE",
            context={"path": str(manifest)},
        ) from exc

    if not isinstance(data, dict):
        raise RegistryError(
            f"Module manifest {manifest} must contain a mapping",
            "MANIFEST_INVALID",
            context={"path": str(manifest)},
        )

    try:
        return Module.model_validate({**data, "source_dir": manifest.parent})
    except ValidationError as exc:
        raise RegistryError(
            f"Invalid module manifest {manifest}: {exc.error_count()} error(s)\n{exc}",
            "MANIFEST_INVALID",
            context={"path": str(manifest)},
        ) from exc
