"""DNA module catalogue, conflict resolution and composition.

Quick usage::

    from dnagen.registry import Composition, CompositionEngine, ModuleRegistry

    registry = ModuleRegistry.builtin()
    engine = CompositionEngine(registry)
    result = engine.compose(Composition.from_ids(["auth-supabase", "payment-stripe"], "nextjs"))
    print(result.valid, result.dependency_order)
"""

from dnagen.registry.composer import CompositionEngine
from dnagen.registry.models import (
    Composition,
    CompositionIssue,
    CompositionResult,
    ConflictResolution,
    ConflictRule,
    ConflictSeverity,
    MergeStrategy,
    Module,
    ModuleCategory,
    ModuleFile,
    ModuleRequest,
    ResolutionStrategy,
    ResolvedModule,
    SupportedFramework,
)
from dnagen.registry.registry import ModuleRegistry
from dnagen.registry.resolver import (
    ConflictContext,
    ConflictResolver,
    PromptChooser,
    ResolutionOutcome,
    keep_existing_policy,
)

__all__ = [
    "Composition",
    "CompositionEngine",
    "CompositionIssue",
    "CompositionResult",
    "ConflictContext",
    "ConflictResolution",
    "ConflictResolver",
    "ConflictRule",
    "ConflictSeverity",
    "MergeStrategy",
    "Module",
    "ModuleCategory",
    "ModuleFile",
    "ModuleRegistry",
    "ModuleRequest",
    "PromptChooser",
    "ResolutionOutcome",
    "ResolutionStrategy",
    "ResolvedModule",
    "SupportedFramework",
    "keep_existing_policy",
]
