"""Composition engine: turn a module request into a validated module set.

The engine drives the :class:`~dnagen.registry.resolver.ConflictResolver` over
the requested modules, pulls in their ``requires`` closure, orders the result
topologically and then checks the finished set against the configured
:class:`~dnagen.config.CompositionThresholds`.  Ordinary conflicts never raise;
every violated rule becomes one :class:`CompositionIssue` and the result is
marked invalid.
"""

from __future__ import annotations

import time
import tracemalloc
from collections import Counter, deque
from typing import Any, Callable, Optional

from rich.console import Console

from dnagen.config import CompositionThresholds
from dnagen.errors import UnknownModuleError

from .models import (
    EXCLUSIVE_CATEGORIES,
    Composition,
    CompositionIssue,
    CompositionResult,
    ConflictResolution,
    IssueSeverity,
    Module,
    PerformanceMetrics,
    ResolvedModule,
)
from .registry import ModuleRegistry, find_cycle
from .resolver import ConflictResolver

# (event name, payload) -> None
CompositionEventHandler = Callable[[str, dict[str, Any]], None]

MAX_MODULES_PER_CATEGORY = 3


class CompositionEngine:
    """Resolve, order and validate module compositions."""

    def __init__(
        self,
        registry: ModuleRegistry,
        thresholds: CompositionThresholds | None = None,
        resolver: ConflictResolver | None = None,
        *,
        allow_experimental: bool = False,
        console: Console | None = None,
        verbose: bool = False,
    ) -> None:
        self.registry = registry
        self.thresholds = thresholds or CompositionThresholds()
        self.resolver = resolver or ConflictResolver(registry)
        self.allow_experimental = allow_experimental
        self.console = console or Console()
        self.verbose = verbose

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def compose(
        self,
        composition: Composition,
        on_event: Optional[CompositionEventHandler] = None,
        interactive: bool = False,
    ) -> CompositionResult:
        """Compose *composition* into a :class:`CompositionResult`."""
        started = time.perf_counter()
        tracing = not tracemalloc.is_tracing()
        if tracing:
            tracemalloc.start()

        try:
            result = self._compose(composition, on_event, interactive)
            peak = tracemalloc.get_traced_memory()[1] if tracemalloc.is_tracing() else 0
        finally:
            if tracing:
                tracemalloc.stop()

        elapsed_ms = (time.perf_counter() - started) * 1000
        result.performance.elapsed_ms = round(elapsed_ms, 3)
        result.performance.peak_memory_bytes = peak

        if elapsed_ms > self.thresholds.max_composition_time_ms:
            result.warnings.append(_warning(
                "COMPOSITION_SLOW",
                f"Composition took {elapsed_ms:.0f}ms (threshold {self.thresholds.max_composition_time_ms}ms)",
            ))
        if peak > self.thresholds.max_memory_bytes:
            result.warnings.append(_warning(
                "COMPOSITION_MEMORY_HIGH",
                f"Composition used {peak} bytes (threshold {self.thresholds.max_memory_bytes})",
            ))

        if self.verbose:
            self.console.print(
                f"[dim]Composition: {len(result.modules)} module(s), valid={result.valid}, "
                f"{result.performance.elapsed_ms:.1f}ms[/dim]"
            )
        return result

    def preview(self, composition: Composition) -> dict[str, Any]:
        """Summarise what :meth:`compose` would produce without touching disk."""
        result = self.compose(composition)
        file_count = sum(
            1
            for resolved in result.modules
            for module_file in resolved.module.files
            if module_file.applies_to(composition.framework)
        )
        return {
            "valid": result.valid,
            "modules": result.module_ids,
            "dependency_order": result.dependency_order,
            "conflicts": [issue.message for issue in result.errors if issue.code == "MODULE_CONFLICT"],
            "resolutions": [r.model_dump(mode="json") for r in result.resolutions],
            "estimated_files": file_count,
            "complexity": result.performance.complexity,
            "errors": result.error_messages(),
            "warnings": [w.message for w in result.warnings],
        }

    # ------------------------------------------------------------------
    # Composition steps
    # ------------------------------------------------------------------

    def _compose(
        self,
        composition: Composition,
        on_event: Optional[CompositionEventHandler],
        interactive: bool,
    ) -> CompositionResult:
        errors: list[CompositionIssue] = []
        warnings: list[CompositionIssue] = []
        resolutions: list[ConflictResolution] = []
        selected: list[str] = []
        pinned: dict[str, Module] = {}
        request_config: dict[str, dict[str, Any]] = {}

        # 1. Requested modules, in request order.
        for request in composition.modules:
            module = self.registry.get_module(request.module_id, request.version)
            if module is None:
                errors.append(CompositionIssue(
                    code="MODULE_NOT_FOUND",
                    message=_not_found_message(request.module_id, request.version),
                    module_id=request.module_id,
                ))
                continue
            if module.id in selected:
                request_config.setdefault(module.id, {}).update(request.config)
                continue

            selected = self._resolve(module.id, selected, resolutions, on_event, interactive)
            if module.id in selected:
                pinned[module.id] = module
                request_config[module.id] = dict(request.config)
                _emit(on_event, "module-validated", {"module_id": module.id, "version": module.version})

        # 2. Dependency closure.
        errors.extend(self._close_dependencies(selected, pinned, resolutions, on_event, interactive))

        modules = {mid: pinned.get(mid) or self.registry.get_module(mid) for mid in selected}
        modules = {mid: m for mid, m in modules.items() if m is not None}

        # 3. Ordering and validation.
        graph = {mid: [dep for dep in m.requires if dep in modules] for mid, m in modules.items()}
        cycle = find_cycle(graph)
        order: list[str] = []
        depth = 0
        if cycle is not None:
            errors.append(CompositionIssue(
                code="CIRCULAR_DEPENDENCY",
                message=f"Circular dependency detected: {' -> '.join(cycle)}",
                module_id=cycle[0],
            ))
        else:
            order = topological_order(graph)
            depth = dependency_depth(graph, order)
            if depth > self.thresholds.max_dependency_depth:
                errors.append(CompositionIssue(
                    code="DEPENDENCY_TOO_DEEP",
                    message=(
                        f"Dependency depth {depth} exceeds maximum {self.thresholds.max_dependency_depth}"
                    ),
                ))

        complexity = complexity_score(modules.values())
        self._validate(composition, modules, complexity, errors, warnings)

        resolved = [
            ResolvedModule(module=modules[mid], config={**modules[mid].config_defaults, **request_config.get(mid, {})})
            for mid in (order or list(modules))
        ]
        return CompositionResult(
            valid=not errors,
            modules=resolved,
            dependency_order=order,
            resolutions=resolutions,
            errors=errors,
            warnings=warnings,
            performance=PerformanceMetrics(
                complexity=complexity,
                module_count=len(modules),
                dependency_depth=depth,
            ),
        )

    def _resolve(
        self,
        module_id: str,
        selected: list[str],
        resolutions: list[ConflictResolution],
        on_event: Optional[CompositionEventHandler],
        interactive: bool,
    ) -> list[str]:
        outcome = self.resolver.resolve_conflicts(module_id, selected, interactive=interactive)
        if outcome.resolution is not None:
            resolutions.append(outcome.resolution)
            _emit(on_event, "conflict-detected", {
                "module_id": module_id,
                "conflicts": [ctx.conflicting_modules for ctx in outcome.conflicts],
                "resolution": outcome.resolution.strategy.value,
            })
        return outcome.updated_modules

    def _close_dependencies(
        self,
        selected: list[str],
        pinned: dict[str, Module],
        resolutions: list[ConflictResolution],
        on_event: Optional[CompositionEventHandler],
        interactive: bool,
    ) -> list[CompositionIssue]:
        """Pull every ``requires`` id into *selected* (mutated in place)."""
        errors: list[CompositionIssue] = []
        reported: set[tuple[str, str]] = set()
        queue = deque(selected)

        while queue:
            mid = queue.popleft()
            if mid not in selected:
                continue
            module = pinned.get(mid) or self.registry.get_module(mid)
            if module is None:
                continue
            for dep in module.requires:
                if dep in selected:
                    continue
                if (mid, dep) in reported:
                    continue
                try:
                    updated = self._resolve(dep, selected, resolutions, on_event, interactive)
                except UnknownModuleError:
                    updated = selected
                if dep not in updated:
                    reported.add((mid, dep))
                    errors.append(CompositionIssue(
                        code="UNSATISFIED_DEPENDENCY",
                        message=f"Module {mid} requires {dep}, which could not be added",
                        module_id=mid,
                    ))
                    continue
                selected[:] = updated
                queue.append(dep)
                _emit(on_event, "dependency-added", {"module_id": dep, "required_by": mid})

        # A later resolution may have removed something an earlier module needs.
        for mid in selected:
            module = pinned.get(mid) or self.registry.get_module(mid)
            if module is None:
                continue
            for dep in module.requires:
                if dep not in selected and (mid, dep) not in reported:
                    reported.add((mid, dep))
                    errors.append(CompositionIssue(
                        code="UNSATISFIED_DEPENDENCY",
                        message=f"Module {mid} requires {dep}, which is not part of the composition",
                        module_id=mid,
                    ))
        return errors

    def _validate(
        self,
        composition: Composition,
        modules: dict[str, Module],
        complexity: int,
        errors: list[CompositionIssue],
        warnings: list[CompositionIssue],
    ) -> None:
        limits = self.thresholds
        if len(modules) > limits.max_modules:
            errors.append(CompositionIssue(
                code="TOO_MANY_MODULES",
                message=f"Composition has {len(modules)} modules (maximum {limits.max_modules})",
            ))
        if complexity > limits.max_complexity:
            errors.append(CompositionIssue(
                code="COMPLEXITY_EXCEEDED",
                message=f"Composition complexity {complexity} exceeds maximum {limits.max_complexity}",
            ))

        for mid, module in modules.items():
            if not module.supports(composition.framework):
                errors.append(CompositionIssue(
                    code="FRAMEWORK_INCOMPATIBLE",
                    message=f"Module {mid} is not compatible with {composition.framework.value}",
                    module_id=mid,
                ))
            if module.experimental:
                if self.allow_experimental:
                    warnings.append(_warning("EXPERIMENTAL_MODULE", f"Module {mid} is experimental", mid))
                else:
                    errors.append(CompositionIssue(
                        code="EXPERIMENTAL_NOT_ALLOWED",
                        message=f"Module {mid} is experimental and experimental modules are not allowed",
                        module_id=mid,
                    ))
            if module.deprecated:
                warnings.append(_warning("DEPRECATED_MODULE", f"Module {mid} is deprecated", mid))

        # Explicit rules between resolved modules, each unordered pair once.
        ids = list(modules)
        for i, left in enumerate(ids):
            for right in ids[i + 1:]:
                rule = modules[left].conflicts_with(right) or modules[right].conflicts_with(left)
                if rule is not None:
                    errors.append(CompositionIssue(
                        code="MODULE_CONFLICT",
                        message=f"Module {left} conflicts with {right}: {rule.reason}",
                        module_id=left,
                    ))

        by_category = Counter(module.category for module in modules.values())
        for category, count in by_category.items():
            if category in EXCLUSIVE_CATEGORIES and count > 1:
                warnings.append(_warning(
                    "CATEGORY_CONFLICT",
                    f"Multiple {category.value} modules selected; only one is recommended",
                ))
            if count > MAX_MODULES_PER_CATEGORY:
                warnings.append(_warning(
                    "CATEGORY_OVERUSE",
                    f"{count} modules in category {category.value} (more than {MAX_MODULES_PER_CATEGORY})",
                ))


# ---------------------------------------------------------------------------
# Graph helpers
# ---------------------------------------------------------------------------


def topological_order(graph: dict[str, list[str]]) -> list[str]:
    """Kahn's algorithm over ``requires`` edges; dependencies come first.

    Ties are broken by insertion order of *graph*.  Assumes *graph* is acyclic.
    """
    dependants: dict[str, list[str]] = {node: [] for node in graph}
    pending = {node: len(deps) for node, deps in graph.items()}
    for node, deps in graph.items():
        for dep in deps:
            dependants[dep].append(node)

    ready = deque(node for node in graph if pending[node] == 0)
    order: list[str] = []
    while ready:
        node = ready.popleft()
        order.append(node)
        for child in dependants[node]:
            pending[child] -= 1
            if pending[child] == 0:
                ready.append(child)
    return order


def dependency_depth(graph: dict[str, list[str]], order: list[str]) -> int:
    """Length of the longest ``requires`` chain, counted in edges."""
    depth: dict[str, int] = {}
    for node in order:
        depth[node] = max((depth[dep] + 1 for dep in graph[node]), default=0)
    return max(depth.values(), default=0)


def complexity_score(modules) -> int:
    """10 per module, 5 per requires edge, 3 per conflict rule, 15 per framework."""
    modules = list(modules)
    frameworks = {fw for module in modules for fw in module.compatible_frameworks}
    return (
        10 * len(modules)
        + 5 * sum(len(m.requires) for m in modules)
        + 3 * sum(len(m.conflicts) for m in modules)
        + 15 * len(frameworks)
    )


def _warning(code: str, message: str, module_id: Optional[str] = None) -> CompositionIssue:
    return CompositionIssue(code=code, message=message, severity=IssueSeverity.WARNING, module_id=module_id)


def _not_found_message(module_id: str, version: str) -> str:
    if version and version != "latest":
        return f"Module not found: {module_id}@{version}"
    return f"Module not found: {module_id}"


def _emit(handler: Optional[CompositionEventHandler], event: str, payload: dict[str, Any]) -> None:
    if handler is None:
        return
    try:
        handler(event, payload)
    except Exception:  # noqa: BLE001
        pass
