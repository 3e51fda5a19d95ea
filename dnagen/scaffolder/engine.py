"""Template instantiation: render a composition into a project directory.

The engine renders the base project files (README, ``.gitignore`` and the
framework manifest) plus every file shipped by the composed modules, combines
files that target the same path according to their merge strategy, and writes
the result through a :class:`~dnagen.rollback.RollbackManager` transaction so
that a failed run can be undone.
"""

from __future__ import annotations

import asyncio
import json
import stat
import time
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Optional

import yaml
from pydantic import BaseModel, Field
from rich.console import Console

from dnagen.errors import TemplateError
from dnagen.registry.models import CompositionResult, MergeStrategy, SupportedFramework
from dnagen.rollback import RollbackManager
from dnagen.utils import sanitize_name

from .templates import TemplateRenderer

# (message, percent 0-100) -> None
ProgressCallback = Callable[[str, float], None]


# ---------------------------------------------------------------------------
# Base templates
# ---------------------------------------------------------------------------

BASE_TEMPLATES: list[tuple[str, str]] = [
    ("README.md.j2", "README.md"),
    ("gitignore.j2", ".gitignore"),
]

MANIFEST_TEMPLATES: dict[SupportedFramework, tuple[str, str]] = {
    SupportedFramework.FLUTTER: ("pubspec.yaml.j2", "pubspec.yaml"),
}
DEFAULT_MANIFEST: tuple[str, str] = ("package.json.j2", "package.json")


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class TemplateConfig(BaseModel):
    """What to instantiate and where."""

    name: str = Field(..., description="Project name")
    output_path: Path = Field(..., description="Project root directory")
    framework: SupportedFramework
    template_type: str = Field(default="foundation")
    description: str = Field(default="")
    variables: dict[str, Any] = Field(default_factory=dict, description="Extra template variables")


class InstantiationMetrics(BaseModel):
    files_generated: int = 0
    lines_of_code: int = 0
    execution_time_ms: float = 0.0


class InstantiationResult(BaseModel):
    success: bool = True
    output_path: Path
    generated_files: list[str] = Field(default_factory=list, description="Project-relative paths")
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metrics: InstantiationMetrics = Field(default_factory=InstantiationMetrics)


class _Piece(BaseModel):
    strategy: MergeStrategy
    content: str
    origin: str


# ---------------------------------------------------------------------------
# TemplateInstantiationEngine
# ---------------------------------------------------------------------------


class TemplateInstantiationEngine:
    """Renders base and module templates and writes them transactionally."""

    def __init__(
        self,
        rollback: RollbackManager,
        renderer: TemplateRenderer | None = None,
        console: Console | None = None,
        verbose: bool = False,
    ) -> None:
        self.rollback = rollback
        self.renderer = renderer or TemplateRenderer()
        self.console = console or Console()
        self.verbose = verbose

    # -- Public API --------------------------------------------------------

    async def instantiate(
        self,
        config: TemplateConfig,
        composition: CompositionResult,
        transaction_id: str,
        progress: Optional[ProgressCallback] = None,
    ) -> InstantiationResult:
        """Render and write every project file.

        Raises:
            TemplateError: If a template is missing, fails to render or
                targets a path outside the project.
            RollbackError: If a file cannot be written.
        """
        started = time.perf_counter()
        result = InstantiationResult(output_path=config.output_path)
        context = self.build_context(config, composition)

        _report(progress, "Rendering templates", 0.0)
        planned = await asyncio.to_thread(self._plan, config, composition, context, result.warnings)

        total = len(planned)
        for index, (target, pieces) in enumerate(planned.items(), start=1):
            content = merge_contents(target, pieces)
            path = config.output_path / target
            await self.rollback.record_file_creation(transaction_id, path, content)
            if path.suffix == ".sh":
                await asyncio.to_thread(_make_executable, path)

            result.generated_files.append(target)
            result.metrics.lines_of_code += len(content.splitlines())
            if self.verbose:
                self.console.print(f"[dim]  wrote {target}[/dim]")
            _report(progress, f"Generated {target}", index / total * 100)

        result.metrics.files_generated = len(result.generated_files)
        result.metrics.execution_time_ms = round((time.perf_counter() - started) * 1000, 3)
        return result

    def build_context(self, config: TemplateConfig, composition: CompositionResult) -> dict[str, Any]:
        """Build the Jinja2 template context shared by every file."""
        return {
            **config.variables,
            "project_name": config.name,
            "project_name_slug": sanitize_name(config.name),
            "description": config.description,
            "framework": config.framework.value,
            "template_type": config.template_type,
            "modules": composition.module_ids,
            "module_configs": {m.id: m.config for m in composition.modules},
            "variables": config.variables,
        }

    # -- Planning ----------------------------------------------------------

    def _plan(
        self,
        config: TemplateConfig,
        composition: CompositionResult,
        context: dict[str, Any],
        warnings: list[str],
    ) -> dict[str, list[_Piece]]:
        planned: dict[str, list[_Piece]] = {}

        manifest = MANIFEST_TEMPLATES.get(config.framework, DEFAULT_MANIFEST)
        for template_name, target in [*BASE_TEMPLATES, manifest]:
            content = self.renderer.render(template_name, context)
            planned.setdefault(target, []).append(
                _Piece(strategy=MergeStrategy.REPLACE, content=content, origin="base")
            )

        for resolved in composition.modules:
            module = resolved.module
            if module.files and module.source_dir is None:
                raise TemplateError(
                    f"Module {module.id} has files but no source directory",
                    "MODULE_SOURCE_MISSING",
                    context={"module_id": module.id},
                )
            module_context = {
                **context,
                "module": {"id": module.id, "name": module.display_name, "version": module.version},
                "config": resolved.config,
            }
            for module_file in module.files:
                if not module_file.applies_to(config.framework):
                    continue
                target = _safe_target(self.renderer.render_string(module_file.target, module_context), module.id)
                content = self.renderer.render_path(module.source_dir / module_file.source, module_context)
                pieces = planned.setdefault(target, [])
                if pieces and module_file.merge_strategy is MergeStrategy.REPLACE:
                    warnings.append(f"{module.id} replaces {target} previously written by {pieces[-1].origin}")
                pieces.append(_Piece(strategy=module_file.merge_strategy, content=content, origin=module.id))

        return planned


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------


def merge_contents(target: str, pieces: list[_Piece] | list[tuple[MergeStrategy, str]]) -> str:
    """Combine every piece written to *target* into the final file content.

    ``replace`` keeps the last piece, ``append``/``prepend`` concatenate and
    ``merge`` deep-merges JSON or YAML mappings, falling back to appending.
    """
    result: Optional[str] = None
    for piece in pieces:
        strategy, content = (piece.strategy, piece.content) if isinstance(piece, _Piece) else piece
        if result is None or strategy is MergeStrategy.REPLACE:
            result = content
        elif strategy is MergeStrategy.APPEND:
            result = _join(result, content)
        elif strategy is MergeStrategy.PREPEND:
            result = _join(content, result)
        else:
            result = _merge_structured(target, result, content)
    return result or ""


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *override* into a copy of *base*.

    Nested mappings merge, lists are unioned in order, anything else is
    replaced by the override.
    """
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        elif isinstance(current, list) and isinstance(value, list):
            merged[key] = current + [item for item in value if item not in current]
        else:
            merged[key] = value
    return merged


def _merge_structured(target: str, existing: str, incoming: str) -> str:
    suffix = PurePosixPath(target).suffix
    try:
        if suffix == ".json":
            left, right = json.loads(existing), json.loads(incoming)
            if isinstance(left, dict) and isinstance(right, dict):
                return json.dumps(deep_merge(left, right), indent=2) + "\n"
        elif suffix in (".yaml", ".yml"):
            left, right = yaml.safe_load(existing), yaml.safe_load(incoming)
            if isinstance(left, dict) and isinstance(right, dict):
                return yaml.safe_dump(deep_merge(left, right), sort_keys=False)
    except (ValueError, yaml.YAMLError):
        pass
    return _join(existing, incoming)


def _join(first: str, second: str) -> str:
    if first and not first.endswith("\n"):
        first += "\n"
    return first + second


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _safe_target(rendered: str, module_id: str) -> str:
    """Normalise a rendered module output path and keep it inside the project."""
    target = rendered.strip().replace("\\", "/")
    path = PurePosixPath(target)
    if not target or path.is_absolute() or ".." in path.parts:
        raise TemplateError(
            f"Module {module_id} targets invalid path '{rendered}'",
            "TEMPLATE_TARGET_INVALID",
            context={"module_id": module_id, "target": rendered},
        )
    return str(path)


def _make_executable(path: Path) -> None:
    """Set the executable bit on a file."""
    current = path.stat().st_mode
    path.chmod(current | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _report(progress: Optional[ProgressCallback], message: str, percent: float) -> None:
    if progress is not None:
        progress(message, percent)
