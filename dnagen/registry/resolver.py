"""Conflict detection and resolution for DNA module selection.

Given a candidate module and the modules already selected for a project, the
:class:`ConflictResolver` finds three kinds of conflict:

* **direct**   -- the candidate's own rules name a selected module;
* **reverse**  -- a selected module's rules name the candidate;
* **category** -- the candidate belongs to an exclusive category
  (authentication, payment, database) that is already occupied.

Each conflict shape is settled once per resolver instance and the decision is
cached, so the same shape always resolves the same way within a session.
Interactive sessions delegate the choice to a *chooser* callable; the default
chooser keeps the existing selection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from rich.console import Console
from rich.prompt import IntPrompt, Prompt
from rich.table import Table

from dnagen.errors import CompositionError, UnknownModuleError

from .models import (
    EXCLUSIVE_CATEGORIES,
    ConflictResolution,
    ConflictRule,
    ConflictSeverity,
    Module,
    ResolutionStrategy,
)
from .registry import ModuleRegistry


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass
class ConflictContext:
    """One detected conflict for a candidate module."""

    module_id: str
    conflicting_modules: list[str]
    rule: ConflictRule
    kind: str
    selected_modules: list[str]
    available_modules: list[Module] = field(default_factory=list, repr=False)

    @property
    def severity(self) -> ConflictSeverity:
        return self.rule.severity


@dataclass
class ResolutionOutcome:
    """Result of :meth:`ConflictResolver.resolve_conflicts`.

    ``resolution`` is ``None`` when no conflict was found.
    """

    resolution: Optional[ConflictResolution]
    updated_modules: list[str]
    conflicts: list[ConflictContext] = field(default_factory=list)


# Signature: (candidate, conflicts, offered options) -> chosen resolution
ResolutionChooser = Callable[
    [Module, list[ConflictContext], list[ConflictResolution]],
    ConflictResolution,
]


def keep_existing_policy(
    candidate: Module,
    conflicts: list[ConflictContext],
    options: list[ConflictResolution],
) -> ConflictResolution:
    """Default chooser: never disturb modules that are already selected."""
    for option in options:
        if option.strategy is ResolutionStrategy.KEEP_EXISTING:
            return option
    return ConflictResolution(
        strategy=ResolutionStrategy.KEEP_EXISTING,
        reason="Automatic conflict resolution - kept existing modules",
    )


class PromptChooser:
    """Ask the operator to pick a resolution through Rich prompts."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def __call__(
        self,
        candidate: Module,
        conflicts: list[ConflictContext],
        options: list[ConflictResolution],
    ) -> ConflictResolution:
        self._show_conflicts(candidate, conflicts)
        for index, option in enumerate(options, start=1):
            self.console.print(f"  [bold]{index}[/bold]. {option.description}")

        choice = IntPrompt.ask(
            f"How would you like to resolve conflicts for [cyan]{candidate.display_name}[/cyan]?",
            console=self.console,
            choices=[str(i) for i in range(1, len(options) + 1)],
            default=2 if len(options) > 1 else 1,
        )
        chosen = options[choice - 1]

        if chosen.strategy is ResolutionStrategy.MANUAL_SELECT:
            return self._manual_select(candidate, conflicts)
        if chosen.strategy is ResolutionStrategy.SUGGEST_ALTERNATIVE:
            alternative = Prompt.ask(
                "Select an alternative module",
                console=self.console,
                choices=chosen.alternative_modules,
                default=chosen.alternative_modules[0],
            )
            return chosen.model_copy(
                update={
                    "selected_module": alternative,
                    "reason": f"Selected alternative module: {alternative}",
                }
            )
        return chosen

    def _show_conflicts(self, candidate: Module, conflicts: list[ConflictContext]) -> None:
        table = Table(
            title=f"Module conflict detected: {candidate.display_name}",
            show_header=True,
            header_style="bold yellow",
        )
        table.add_column("Severity")
        table.add_column("Kind")
        table.add_column("Reason")
        table.add_column("Conflicting with")
        for ctx in conflicts:
            severity = "[red]ERROR[/red]" if ctx.severity is ConflictSeverity.ERROR else "[yellow]WARNING[/yellow]"
            table.add_row(severity, ctx.kind, ctx.rule.reason, ", ".join(ctx.conflicting_modules))
        self.console.print(table)

    def _manual_select(self, candidate: Module, conflicts: list[ConflictContext]) -> ConflictResolution:
        existing = _unique(mid for ctx in conflicts for mid in ctx.conflicting_modules)
        allowed = [candidate.id, *existing]
        while True:
            raw = Prompt.ask(
                f"Modules to keep (comma separated, from: {', '.join(allowed)})",
                console=self.console,
                default=candidate.id,
            )
            kept = [item.strip() for item in raw.split(",") if item.strip()]
            unknown = [item for item in kept if item not in allowed]
            if kept and not unknown:
                break
            self.console.print("[red]Select at least one of the listed modules.[/red]")

        return ConflictResolution(
            strategy=ResolutionStrategy.MANUAL_SELECT,
            selected_module=candidate.id if candidate.id in kept else None,
            kept_modules=kept,
            reason=f"Manually selected modules: {', '.join(kept)}",
        )


# ---------------------------------------------------------------------------
# ConflictResolver
# ---------------------------------------------------------------------------


class ConflictResolver:
    """Detects and settles conflicts between a candidate and a selection.

    Parameters
    ----------
    registry:
        Catalogue used to look up module definitions.
    chooser:
        Called in interactive mode to pick one of the offered resolutions.
        Defaults to :func:`keep_existing_policy`.
    """

    def __init__(self, registry: ModuleRegistry, chooser: ResolutionChooser | None = None) -> None:
        self.registry = registry
        self.chooser: ResolutionChooser = chooser or keep_existing_policy
        self._history: dict[str, ConflictResolution] = {}

    # -- Public API ----------------------------------------------------------

    def resolve_conflicts(
        self,
        module_id: str,
        selected_modules: list[str],
        interactive: bool = False,
    ) -> ResolutionOutcome:
        """Resolve conflicts for adding *module_id* to *selected_modules*.

        Raises:
            UnknownModuleError: If *module_id* is not in the registry.
        """
        candidate = self._require(module_id)
        selected = list(selected_modules)
        if module_id in selected:
            return ResolutionOutcome(resolution=None, updated_modules=selected)

        conflicts = self.detect_conflicts(module_id, selected)
        if not conflicts:
            return ResolutionOutcome(resolution=None, updated_modules=[*selected, module_id])

        key = conflict_key(module_id, conflicts)
        cached = self._history.get(key)

        if not interactive:
            resolution = cached or ConflictResolution(
                strategy=ResolutionStrategy.KEEP_EXISTING,
                reason="Automatic conflict resolution - kept existing modules",
            )
        else:
            options = self.resolution_options(module_id, conflicts)
            resolution = self.chooser(candidate, conflicts, options)
            offered = {option.strategy for option in options}
            if resolution.strategy not in offered:
                raise CompositionError(
                    f"Resolution strategy '{resolution.strategy.value}' was not offered for {module_id}",
                    "RESOLUTION_NOT_OFFERED",
                    context={"module_id": module_id, "offered": sorted(s.value for s in offered)},
                )
        self._history[key] = resolution

        updated = self.apply_resolution(resolution, module_id, selected, conflicts)
        return ResolutionOutcome(resolution=resolution, updated_modules=updated, conflicts=conflicts)

    def detect_conflicts(self, module_id: str, selected_modules: list[str]) -> list[ConflictContext]:
        """Return every direct, reverse and category conflict for *module_id*."""
        candidate = self._require(module_id)
        selected = [mid for mid in selected_modules if mid != module_id]
        available = self.registry.list_available_modules()
        contexts: list[ConflictContext] = []

        # Direct: the candidate's own rules.
        for rule in candidate.conflicts:
            hits = [mid for mid in selected if rule.matches(mid)]
            if hits:
                contexts.append(ConflictContext(module_id, hits, rule, "direct", selected, available))

        # Reverse: selected modules whose rules name the candidate.
        for mid in selected:
            other = self.registry.get_module(mid)
            if other is None:
                continue
            rule = other.conflicts_with(module_id)
            if rule is None:
                continue
            reverse_rule = ConflictRule(
                target=rule.target,
                reason=f"{other.display_name} conflicts with {candidate.display_name}: {rule.reason}",
                severity=rule.severity,
                resolution=rule.resolution,
            )
            contexts.append(ConflictContext(module_id, [mid], reverse_rule, "reverse", selected, available))

        # Category: one module per exclusive category.
        if candidate.category in EXCLUSIVE_CATEGORIES:
            hits = [
                mid for mid in selected
                if (other := self.registry.get_module(mid)) is not None
                and other.category == candidate.category
            ]
            if hits:
                rule = ConflictRule(
                    target=hits[0],
                    reason=f"Only one {candidate.category.value} module allowed",
                    severity=ConflictSeverity.WARNING,
                )
                contexts.append(ConflictContext(module_id, hits, rule, "category", selected, available))

        return contexts

    def resolution_options(self, module_id: str, conflicts: list[ConflictContext]) -> list[ConflictResolution]:
        """Build the menu of resolutions applicable to *conflicts*."""
        candidate = self._require(module_id)
        name = candidate.display_name
        conflicting_names = []
        for mid in _conflicting_ids(conflicts):
            other = self.registry.get_module(mid)
            conflicting_names.append(other.display_name if other else mid)

        options = [
            ConflictResolution(
                strategy=ResolutionStrategy.REPLACE,
                reason=f"Replace conflicting modules with {name}",
                description=f"Replace conflicting modules ({', '.join(conflicting_names)}) with {name}",
            ),
            ConflictResolution(
                strategy=ResolutionStrategy.KEEP_EXISTING,
                reason="Keep existing modules, skip new module",
                description=f"Keep existing modules, don't add {name}",
            ),
        ]

        if len(conflicts) > 1:
            options.append(
                ConflictResolution(
                    strategy=ResolutionStrategy.MANUAL_SELECT,
                    reason="Manually choose which modules to keep",
                    description="Manually select which modules to keep",
                )
            )

        alternatives = self.find_alternatives(module_id, conflicts)
        if alternatives:
            options.append(
                ConflictResolution(
                    strategy=ResolutionStrategy.SUGGEST_ALTERNATIVE,
                    alternative_modules=alternatives,
                    reason="Use alternative module without conflicts",
                    description=f"Use alternative module ({len(alternatives)} available)",
                )
            )

        if any(ctx.severity is ConflictSeverity.WARNING for ctx in conflicts):
            options.append(
                ConflictResolution(
                    strategy=ResolutionStrategy.REMOVE_CONFLICTING,
                    reason="Remove all conflicting modules",
                    description=f"Remove all conflicting modules and add {name}",
                )
            )

        return options

    def find_alternatives(self, module_id: str, conflicts: list[ConflictContext]) -> list[str]:
        """Same-category modules that would fit the selection without conflicts."""
        candidate = self.registry.get_module(module_id)
        if candidate is None:
            return []

        conflicting = set(_conflicting_ids(conflicts))
        selected = conflicts[0].selected_modules if conflicts else []
        rest = [mid for mid in selected if mid not in conflicting]

        alternatives: list[str] = []
        for module in self.registry.list_available_modules():
            if (
                module.id == module_id
                or module.category != candidate.category
                or module.id in conflicting
                or module.id in selected
            ):
                continue
            if self._would_conflict(module, rest):
                continue
            alternatives.append(module.id)
        return alternatives

    def apply_resolution(
        self,
        resolution: ConflictResolution,
        module_id: str,
        selected_modules: list[str],
        conflicts: list[ConflictContext],
    ) -> list[str]:
        """Return the selection after applying *resolution*."""
        updated = list(selected_modules)
        conflicting = set(_conflicting_ids(conflicts))
        strategy = resolution.strategy

        if strategy in (ResolutionStrategy.REPLACE, ResolutionStrategy.REMOVE_CONFLICTING):
            updated = [mid for mid in updated if mid not in conflicting]
            updated.append(module_id)

        elif strategy is ResolutionStrategy.KEEP_EXISTING:
            pass

        elif strategy is ResolutionStrategy.MANUAL_SELECT:
            kept = set(resolution.kept_modules)
            if resolution.selected_module:
                kept.add(resolution.selected_module)
            updated = [mid for mid in updated if mid not in conflicting or mid in kept]
            if module_id in kept and module_id not in updated:
                updated.append(module_id)

        elif strategy is ResolutionStrategy.SUGGEST_ALTERNATIVE:
            alternative = resolution.selected_module or next(iter(resolution.alternative_modules), None)
            if alternative and alternative not in updated:
                updated.append(alternative)

        return updated

    # -- History -------------------------------------------------------------

    def resolution_history(self) -> dict[str, ConflictResolution]:
        """Copy of every cached resolution keyed by conflict shape."""
        return dict(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def export_patterns(self) -> dict[str, dict]:
        """Serialisable form of the resolution cache, for reuse in later sessions."""
        return {key: resolution.model_dump(mode="json") for key, resolution in self._history.items()}

    def import_patterns(self, patterns: dict[str, dict]) -> None:
        for key, raw in patterns.items():
            self._history[key] = ConflictResolution.model_validate(raw)

    # -- Internal ------------------------------------------------------------

    def _require(self, module_id: str) -> Module:
        module = self.registry.get_module(module_id)
        if module is None:
            raise UnknownModuleError(module_id)
        return module

    def _would_conflict(self, module: Module, selected: list[str]) -> bool:
        for mid in selected:
            if module.conflicts_with(mid) is not None:
                return True
            other = self.registry.get_module(mid)
            if other is not None and other.conflicts_with(module.id) is not None:
                return True
        return False


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def conflict_key(module_id: str, conflicts: list[ConflictContext]) -> str:
    """Cache key for a conflict shape: candidate plus sorted conflicting ids."""
    return f"{module_id}:{','.join(sorted(set(_conflicting_ids(conflicts))))}"


def _conflicting_ids(conflicts: list[ConflictContext]) -> list[str]:
    return _unique(mid for ctx in conflicts for mid in ctx.conflicting_modules)


def _unique(items) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)
