"""dnagen scaffolder -- renders composed modules into a project tree.

Quick usage::

    from dnagen.scaffolder import TemplateConfig, TemplateInstantiationEngine

    engine = TemplateInstantiationEngine(rollback_manager)
    result = await engine.instantiate(config, composition_result, transaction_id)
"""

from dnagen.scaffolder.engine import (
    InstantiationResult,
    TemplateConfig,
    TemplateInstantiationEngine,
    deep_merge,
    merge_contents,
)
from dnagen.scaffolder.templates import TemplateRenderer

__all__ = [
    "InstantiationResult",
    "TemplateConfig",
    "TemplateInstantiationEngine",
    "TemplateRenderer",
    "deep_merge",
    "merge_contents",
]
