"""dnagen configuration.

Centralised, typed configuration for composition limits and the generation
pipeline. All settings use Pydantic v2 models so they can be validated at
construction time and serialised to/from JSON or environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class CompositionThresholds(BaseModel):
    """Limits enforced by the composition engine.

    ``max_composition_time_ms`` and ``max_memory_bytes`` are soft limits that
    only produce warnings; the remaining three invalidate a composition.
    """

    max_modules: int = Field(default=50, ge=1)
    max_dependency_depth: int = Field(default=10, ge=0)
    max_complexity: int = Field(default=1000, ge=0)
    max_composition_time_ms: int = Field(default=5000, ge=0)
    max_memory_bytes: int = Field(default=50 * 1024 * 1024, ge=0)


class PipelineSettings(BaseModel):
    """Tuning knobs for the generation pipeline."""

    max_retries: int = Field(default=3, ge=0, description="Retries per stage after the first attempt")
    retry_backoff_seconds: float = Field(
        default=1.0, ge=0.0, description="Multiplier for the 2**attempt backoff delay"
    )
    timeout_seconds: float = Field(default=600.0, gt=0, description="Wall-clock budget for one run")
    allow_experimental: bool = Field(default=False)
    interactive: bool = Field(default=False, description="Ask the operator to resolve conflicts")


class Config(BaseModel):
    """Global dnagen configuration.

    Instances are typically created once by the CLI entry point and then
    passed to the registry, rollback manager and pipeline.
    """

    tool_name: str = Field(default="dnagen")
    work_dir: Path = Field(default=Path("."))
    catalog_dirs: list[Path] = Field(default_factory=list)
    thresholds: CompositionThresholds = Field(default_factory=CompositionThresholds)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    verbose: bool = Field(default=False)

    # ------------------------------------------------------------------
    # Derived paths (read-only properties)
    # ------------------------------------------------------------------

    @property
    def temp_path(self) -> Path:
        """Backup directory used by the rollback manager (``.dnagen-temp/``)."""
        return self.work_dir / f".{self.tool_name}-temp"

    @property
    def report_name(self) -> str:
        """File name of the generation report written into each project."""
        return "dna-generation-report.json"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file and return its path."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            DNAGEN_WORK_DIR, DNAGEN_CATALOG_DIRS (``os.pathsep`` separated),
            DNAGEN_MAX_MODULES, DNAGEN_MAX_DEPENDENCY_DEPTH,
            DNAGEN_MAX_COMPLEXITY, DNAGEN_MAX_RETRIES,
            DNAGEN_RETRY_BACKOFF, DNAGEN_TIMEOUT, DNAGEN_ALLOW_EXPERIMENTAL,
            DNAGEN_VERBOSE.
        """
        threshold_kwargs: dict[str, Any] = {}
        if os.environ.get("DNAGEN_MAX_MODULES"):
            threshold_kwargs["max_modules"] = int(os.environ["DNAGEN_MAX_MODULES"])
        if os.environ.get("DNAGEN_MAX_DEPENDENCY_DEPTH"):
            threshold_kwargs["max_dependency_depth"] = int(os.environ["DNAGEN_MAX_DEPENDENCY_DEPTH"])
        if os.environ.get("DNAGEN_MAX_COMPLEXITY"):
            threshold_kwargs["max_complexity"] = int(os.environ["DNAGEN_MAX_COMPLEXITY"])

        pipeline_kwargs: dict[str, Any] = {}
        if os.environ.get("DNAGEN_MAX_RETRIES"):
            pipeline_kwargs["max_retries"] = int(os.environ["DNAGEN_MAX_RETRIES"])
        if os.environ.get("DNAGEN_RETRY_BACKOFF"):
            pipeline_kwargs["retry_backoff_seconds"] = float(os.environ["DNAGEN_RETRY_BACKOFF"])
        if os.environ.get("DNAGEN_TIMEOUT"):
            pipeline_kwargs["timeout_seconds"] = float(os.environ["DNAGEN_TIMEOUT"])
        if os.environ.get("DNAGEN_ALLOW_EXPERIMENTAL"):
            pipeline_kwargs["allow_experimental"] = _env_flag("DNAGEN_ALLOW_EXPERIMENTAL")

        catalog_raw = os.environ.get("DNAGEN_CATALOG_DIRS", "")
        catalog_dirs = [Path(p) for p in catalog_raw.split(os.pathsep) if p.strip()]

        return cls(
            work_dir=Path(os.environ.get("DNAGEN_WORK_DIR", ".")),
            catalog_dirs=catalog_dirs,
            thresholds=CompositionThresholds(**threshold_kwargs),
            pipeline=PipelineSettings(**pipeline_kwargs),
            verbose=_env_flag("DNAGEN_VERBOSE"),
        )


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}
