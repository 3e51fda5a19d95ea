"""Unit tests for conflict detection and resolution (dnagen.registry.resolver).

Tests cover:
- resolve_conflicts without conflicts, with a selected candidate, with an unknown id
- detect_conflicts (direct, reverse, category, glob rules)
- resolution_options menus
- apply_resolution for every strategy
- the resolution cache (history, export/import, clear)
- keep_existing_policy and PromptChooser
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from dnagen.errors import CompositionError, UnknownModuleError
from dnagen.registry import (
    ConflictResolution,
    ConflictResolver,
    ModuleRegistry,
    PromptChooser,
    ResolutionStrategy,
    keep_existing_policy,
)
from dnagen.registry.resolver import conflict_key


def _always(strategy: ResolutionStrategy, **fields):
    """Chooser that picks the offered option with *strategy*."""

    def chooser(candidate, conflicts, options):
        for option in options:
            if option.strategy is strategy:
                return option.model_copy(update=fields)
        raise AssertionError(f"{strategy} not offered")

    return chooser


# ---------------------------------------------------------------------------
# resolve_conflicts
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestResolveConflicts:
    def test_no_conflict_appends(self, auth_registry: ModuleRegistry):
        outcome = ConflictResolver(auth_registry).resolve_conflicts("analytics-posthog", ["auth-firebase"])
        assert outcome.resolution is None
        assert outcome.updated_modules == ["auth-firebase", "analytics-posthog"]

    def test_already_selected_is_unchanged(self, auth_registry: ModuleRegistry):
        outcome = ConflictResolver(auth_registry).resolve_conflicts("auth-firebase", ["auth-firebase"])
        assert outcome.resolution is None
        assert outcome.updated_modules == ["auth-firebase"]

    def test_unknown_module(self, auth_registry: ModuleRegistry):
        with pytest.raises(UnknownModuleError) as exc_info:
            ConflictResolver(auth_registry).resolve_conflicts("auth-ghost", [])
        assert exc_info.value.code == "MODULE_NOT_FOUND"

    def test_non_interactive_keeps_existing(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry)
        outcome = resolver.resolve_conflicts("auth-supabase", ["auth-firebase"])
        assert outcome.resolution.strategy is ResolutionStrategy.KEEP_EXISTING
        assert outcome.updated_modules == ["auth-firebase"]
        assert outcome.conflicts

    def test_input_selection_not_mutated(self, auth_registry: ModuleRegistry):
        selected = ["auth-firebase"]
        ConflictResolver(auth_registry, _always(ResolutionStrategy.REPLACE)).resolve_conflicts(
            "auth-supabase", selected, interactive=True
        )
        assert selected == ["auth-firebase"]

    def test_interactive_replace(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry, _always(ResolutionStrategy.REPLACE))
        outcome = resolver.resolve_conflicts("auth-supabase", ["auth-firebase", "analytics-posthog"], interactive=True)
        assert outcome.updated_modules == ["analytics-posthog", "auth-supabase"]

    def test_cached_resolution_reused_non_interactively(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry, _always(ResolutionStrategy.REPLACE))
        resolver.resolve_conflicts("auth-supabase", ["auth-firebase"], interactive=True)

        outcome = resolver.resolve_conflicts("auth-supabase", ["auth-firebase"])
        assert outcome.resolution.strategy is ResolutionStrategy.REPLACE
        assert outcome.updated_modules == ["auth-supabase"]

    def test_strategy_not_offered_rejected(self, module_factory):
        registry = ModuleRegistry([
            module_factory("tracker", "analytics", conflicts=[{"target": "watcher"}]),
            module_factory("watcher", "monitoring"),
        ])
        chooser = lambda candidate, conflicts, options: ConflictResolution(  # noqa: E731
            strategy=ResolutionStrategy.MANUAL_SELECT
        )
        resolver = ConflictResolver(registry, chooser)
        with pytest.raises(CompositionError) as exc_info:
            resolver.resolve_conflicts("tracker", ["watcher"], interactive=True)
        assert exc_info.value.code == "RESOLUTION_NOT_OFFERED"


# ---------------------------------------------------------------------------
# detect_conflicts
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestDetectConflicts:
    def test_direct_reverse_and_category(self, auth_registry: ModuleRegistry):
        conflicts = ConflictResolver(auth_registry).detect_conflicts("auth-supabase", ["auth-firebase"])
        assert [ctx.kind for ctx in conflicts] == ["direct", "reverse", "category"]
        assert all(ctx.conflicting_modules == ["auth-firebase"] for ctx in conflicts)

    def test_reverse_rule_names_both_modules(self, auth_registry: ModuleRegistry):
        conflicts = ConflictResolver(auth_registry).detect_conflicts("auth-supabase", ["auth-firebase"])
        reverse = next(ctx for ctx in conflicts if ctx.kind == "reverse")
        assert reverse.rule.reason.startswith("auth-firebase conflicts with auth-supabase")

    def test_category_conflict_is_warning(self, auth_registry: ModuleRegistry):
        conflicts = ConflictResolver(auth_registry).detect_conflicts("auth-magic", ["auth-firebase"])
        assert len(conflicts) == 1
        assert conflicts[0].kind == "category"
        assert conflicts[0].severity.value == "warning"

    def test_non_exclusive_category_has_no_conflict(self, module_factory):
        registry = ModuleRegistry([module_factory("a", "analytics"), module_factory("b", "analytics")])
        assert ConflictResolver(registry).detect_conflicts("a", ["b"]) == []

    def test_glob_rule(self, module_factory):
        registry = ModuleRegistry([
            module_factory(
                "auth-clerk", "authentication",
                conflicts=[{"target": "auth-*", "severity": "warning"}],
            ),
            module_factory("auth-supabase", "authentication"),
        ])
        conflicts = ConflictResolver(registry).detect_conflicts("auth-clerk", ["auth-supabase"])
        assert conflicts[0].kind == "direct"
        assert conflicts[0].rule.target == "auth-*"

    def test_candidate_ignored_in_selection(self, auth_registry: ModuleRegistry):
        assert ConflictResolver(auth_registry).detect_conflicts("auth-firebase", ["auth-firebase"]) == []


# ---------------------------------------------------------------------------
# resolution_options / apply_resolution
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestResolutionOptions:
    def test_full_menu(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry)
        conflicts = resolver.detect_conflicts("auth-supabase", ["auth-firebase"])
        options = resolver.resolution_options("auth-supabase", conflicts)
        assert [o.strategy for o in options] == [
            ResolutionStrategy.REPLACE,
            ResolutionStrategy.KEEP_EXISTING,
            ResolutionStrategy.MANUAL_SELECT,
            ResolutionStrategy.SUGGEST_ALTERNATIVE,
            ResolutionStrategy.REMOVE_CONFLICTING,
        ]
        assert options[3].alternative_modules == ["auth-magic"]
        assert "auth-firebase" in options[0].description

    def test_minimal_menu(self, module_factory):
        registry = ModuleRegistry([
            module_factory("tracker", "analytics", conflicts=[{"target": "watcher"}]),
            module_factory("watcher", "monitoring"),
        ])
        resolver = ConflictResolver(registry)
        options = resolver.resolution_options("tracker", resolver.detect_conflicts("tracker", ["watcher"]))
        assert [o.strategy for o in options] == [ResolutionStrategy.REPLACE, ResolutionStrategy.KEEP_EXISTING]


@pytest.mark.unit
class TestApplyResolution:
    @pytest.fixture
    def setup(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry)
        selected = ["auth-firebase", "analytics-posthog"]
        return resolver, selected, resolver.detect_conflicts("auth-supabase", selected)

    def test_replace(self, setup):
        resolver, selected, conflicts = setup
        resolution = ConflictResolution(strategy=ResolutionStrategy.REPLACE)
        assert resolver.apply_resolution(resolution, "auth-supabase", selected, conflicts) == [
            "analytics-posthog", "auth-supabase",
        ]

    def test_remove_conflicting(self, setup):
        resolver, selected, conflicts = setup
        resolution = ConflictResolution(strategy=ResolutionStrategy.REMOVE_CONFLICTING)
        assert resolver.apply_resolution(resolution, "auth-supabase", selected, conflicts) == [
            "analytics-posthog", "auth-supabase",
        ]

    def test_keep_existing(self, setup):
        resolver, selected, conflicts = setup
        resolution = ConflictResolution(strategy=ResolutionStrategy.KEEP_EXISTING)
        assert resolver.apply_resolution(resolution, "auth-supabase", selected, conflicts) == selected

    def test_manual_select_candidate(self, setup):
        resolver, selected, conflicts = setup
        resolution = ConflictResolution(
            strategy=ResolutionStrategy.MANUAL_SELECT, kept_modules=["auth-supabase"]
        )
        assert resolver.apply_resolution(resolution, "auth-supabase", selected, conflicts) == [
            "analytics-posthog", "auth-supabase",
        ]

    def test_manual_select_existing(self, setup):
        resolver, selected, conflicts = setup
        resolution = ConflictResolution(
            strategy=ResolutionStrategy.MANUAL_SELECT, kept_modules=["auth-firebase"]
        )
        assert resolver.apply_resolution(resolution, "auth-supabase", selected, conflicts) == selected

    def test_suggest_alternative(self, setup):
        resolver, selected, conflicts = setup
        resolution = ConflictResolution(
            strategy=ResolutionStrategy.SUGGEST_ALTERNATIVE,
            alternative_modules=["auth-magic"],
        )
        assert resolver.apply_resolution(resolution, "auth-supabase", selected, conflicts) == [
            "auth-firebase", "analytics-posthog", "auth-magic",
        ]


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestResolutionHistory:
    def test_conflict_key(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry)
        conflicts = resolver.detect_conflicts("auth-supabase", ["auth-firebase"])
        assert conflict_key("auth-supabase", conflicts) == "auth-supabase:auth-firebase"

    def test_history_recorded_and_cleared(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry)
        resolver.resolve_conflicts("auth-supabase", ["auth-firebase"])
        assert list(resolver.resolution_history()) == ["auth-supabase:auth-firebase"]
        resolver.clear_history()
        assert resolver.resolution_history() == {}

    def test_export_import_patterns(self, auth_registry: ModuleRegistry):
        first = ConflictResolver(auth_registry, _always(ResolutionStrategy.REPLACE))
        first.resolve_conflicts("auth-supabase", ["auth-firebase"], interactive=True)
        patterns = first.export_patterns()
        assert patterns["auth-supabase:auth-firebase"]["strategy"] == "replace"

        second = ConflictResolver(auth_registry)
        second.import_patterns(patterns)
        outcome = second.resolve_conflicts("auth-supabase", ["auth-firebase"])
        assert outcome.updated_modules == ["auth-supabase"]


# ---------------------------------------------------------------------------
# Choosers
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestChoosers:
    def test_keep_existing_policy_picks_offered_option(self, auth_registry: ModuleRegistry):
        resolver = ConflictResolver(auth_registry)
        conflicts = resolver.detect_conflicts("auth-supabase", ["auth-firebase"])
        options = resolver.resolution_options("auth-supabase", conflicts)
        chosen = keep_existing_policy(auth_registry.get_module("auth-supabase"), conflicts, options)
        assert chosen is options[1]

    def test_keep_existing_policy_without_options(self, auth_registry: ModuleRegistry):
        chosen = keep_existing_policy(auth_registry.get_module("auth-supabase"), [], [])
        assert chosen.strategy is ResolutionStrategy.KEEP_EXISTING

    def test_prompt_chooser_replace(self, auth_registry: ModuleRegistry, quiet_console):
        resolver = ConflictResolver(auth_registry, PromptChooser(quiet_console))
        with patch("dnagen.registry.resolver.IntPrompt.ask", return_value=1):
            outcome = resolver.resolve_conflicts("auth-supabase", ["auth-firebase"], interactive=True)
        assert outcome.resolution.strategy is ResolutionStrategy.REPLACE
        assert "Module conflict detected" in quiet_console.file.getvalue()

    def test_prompt_chooser_manual_select(self, auth_registry: ModuleRegistry, quiet_console):
        resolver = ConflictResolver(auth_registry, PromptChooser(quiet_console))
        with patch("dnagen.registry.resolver.IntPrompt.ask", return_value=3), \
                patch("dnagen.registry.resolver.Prompt.ask", side_effect=["nope", "auth-supabase"]):
            outcome = resolver.resolve_conflicts("auth-supabase", ["auth-firebase"], interactive=True)
        assert outcome.resolution.strategy is ResolutionStrategy.MANUAL_SELECT
        assert outcome.resolution.kept_modules == ["auth-supabase"]
        assert outcome.updated_modules == ["auth-supabase"]

    def test_prompt_chooser_alternative(self, auth_registry: ModuleRegistry, quiet_console):
        resolver = ConflictResolver(auth_registry, PromptChooser(quiet_console))
        with patch("dnagen.registry.resolver.IntPrompt.ask", return_value=4), \
                patch("dnagen.registry.resolver.Prompt.ask", return_value="auth-magic"):
            outcome = resolver.resolve_conflicts("auth-supabase", ["auth-firebase"], interactive=True)
        assert outcome.resolution.selected_module == "auth-magic"
        assert outcome.updated_modules == ["auth-firebase", "auth-magic"]

    def test_no_shared_module_level_chooser(self):
        import dnagen.registry as registry_package
        from dnagen.registry import resolver as resolver_module

        assert not hasattr(resolver_module, "prompt_chooser")
        assert "prompt_chooser" not in registry_package.__all__
