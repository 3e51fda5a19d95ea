"""dnagen -- compose versioned DNA modules into new projects.

Usage::

    from dnagen import Config, GenerationPipeline, GenerationRequest, ModuleRegistry, RollbackManager

    config = Config()
    registry = ModuleRegistry.builtin()
    pipeline = GenerationPipeline(registry, RollbackManager(config.temp_path), config)
    result = await pipeline.generate(
        GenerationRequest(name="my-app", output_path="./my-app", framework="nextjs",
                          modules=["auth-supabase", "payment-stripe"])
    )
"""

from dnagen.config import CompositionThresholds, Config, PipelineSettings
from dnagen.errors import DnaError, ErrorCategory
from dnagen.models import GenerationRequest, GenerationResult, PipelineEvent
from dnagen.pipeline import CancellationToken, GenerationPipeline
from dnagen.registry import CompositionEngine, ConflictResolver, ModuleRegistry
from dnagen.rollback import RollbackManager

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "CompositionEngine",
    "CompositionThresholds",
    "Config",
    "ConflictResolver",
    "DnaError",
    "ErrorCategory",
    "GenerationPipeline",
    "GenerationRequest",
    "GenerationResult",
    "ModuleRegistry",
    "PipelineEvent",
    "PipelineSettings",
    "RollbackManager",
]
