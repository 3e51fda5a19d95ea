"""Request, result and event models shared by the pipeline and its collaborators."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from dnagen.registry.models import SupportedFramework


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Generation request / result
# ---------------------------------------------------------------------------


class GenerationRequest(BaseModel):
    """Everything needed to generate one project."""

    name: str = Field(..., description="Project name")
    output_path: Path = Field(..., description="Project root directory to create")
    framework: SupportedFramework
    template_type: str = Field(default="foundation")
    description: str = Field(default="")
    modules: list[str] = Field(default_factory=list, description="Requested DNA module ids")
    module_config: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Per-module configuration overrides"
    )
    variables: dict[str, Any] = Field(default_factory=dict, description="Extra template variables")
    interactive: bool = Field(default=False, description="Ask before resolving conflicts")
    overwrite: bool = Field(default=False, description="Allow a non-empty output directory")


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StageMetrics(BaseModel):
    """Timing and outcome of one pipeline stage."""

    name: str
    status: StageStatus = StageStatus.PENDING
    attempts: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None


class RollbackMetrics(BaseModel):
    """Outcome of the rollback performed after a failed run."""

    status: str = Field(default="none", description="full, partial or none")
    undone_operations: int = 0
    failed_operations: list[str] = Field(default_factory=list)
    duration_ms: float = 0.0
    error: Optional[str] = None


class PipelineMetrics(BaseModel):
    total_duration_ms: float = 0.0
    files_generated: int = 0
    lines_of_code: int = 0
    stages: dict[str, StageMetrics] = Field(default_factory=dict)
    rollback: Optional[RollbackMetrics] = None


class GenerationResult(BaseModel):
    """Outcome of :meth:`GenerationPipeline.generate`."""

    success: bool = False
    output_path: Path
    generated_files: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metrics: PipelineMetrics = Field(default_factory=PipelineMetrics)
    rollback_status: Optional[str] = Field(
        default=None, description="full, partial or none after a failure; None on success"
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationResult(BaseModel):
    """Outcome of a validation collaborator."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    PIPELINE_STARTED = "pipeline:started"
    PIPELINE_COMPLETED = "pipeline:completed"
    PIPELINE_FAILED = "pipeline:failed"
    PIPELINE_ABORTED = "pipeline:aborted"
    STAGE_STARTED = "stage:started"
    STAGE_PROGRESS = "stage:progress"
    STAGE_COMPLETED = "stage:completed"
    STAGE_FAILED = "stage:failed"
    STAGE_RETRY = "stage:retry"
    ROLLBACK_STARTED = "rollback:started"
    ROLLBACK_COMPLETED = "rollback:completed"


class PipelineEvent(BaseModel):
    """A progress notification delivered to ``on_event`` callbacks."""

    type: EventType
    session_id: str
    stage: Optional[str] = None
    message: str = ""
    progress: float = Field(default=0.0, ge=0.0, le=100.0, description="Overall progress in percent")
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=_now)
