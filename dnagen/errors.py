"""Typed error hierarchy for dnagen.

Every error raised by the registry, the rollback manager, the scaffolder or
the pipeline derives from :class:`DnaError`, which carries a machine-readable
``code``, an :class:`ErrorCategory`, an optional recovery ``suggestion`` and a
free-form ``context`` mapping.  The pipeline uses ``retryable`` to decide
whether a failing stage is worth another attempt.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Broad classification used when reporting failures."""

    COMPOSITION = "composition"
    VALIDATION = "validation"
    TEMPLATE = "template"
    ROLLBACK = "rollback"
    PIPELINE = "pipeline"
    REGISTRY = "registry"


class DnaError(Exception):
    """Base class for all dnagen errors."""

    category: ErrorCategory = ErrorCategory.PIPELINE
    retryable: bool = True

    def __init__(
        self,
        message: str,
        code: str = "DNA_ERROR",
        *,
        suggestion: str = "",
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.suggestion = suggestion
        self.context: dict[str, Any] = context or {}
        super().__init__(message)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable description of the error."""
        return {
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# ---------------------------------------------------------------------------
# Registry / composition
# ---------------------------------------------------------------------------


class RegistryError(DnaError):
    """Raised when the module catalogue cannot be loaded or is inconsistent."""

    category = ErrorCategory.REGISTRY
    retryable = False


class CompositionError(DnaError):
    """Raised when a composition cannot be built or is invalid."""

    category = ErrorCategory.COMPOSITION
    retryable = False


class UnknownModuleError(CompositionError):
    """Raised when a module id is not present in the registry."""

    def __init__(self, module_id: str) -> None:
        self.module_id = module_id
        super().__init__(
            f"Module not found: {module_id}",
            "MODULE_NOT_FOUND",
            suggestion="Check the module id against the available catalogue",
            context={"module_id": module_id},
        )


# ---------------------------------------------------------------------------
# Validation / templates
# ---------------------------------------------------------------------------


class RequestValidationError(DnaError):
    """Raised when a generation request or a validation step fails."""

    category = ErrorCategory.VALIDATION
    retryable = False

    def __init__(self, message: str, errors: Optional[list[str]] = None, code: str = "VALIDATION_FAILED") -> None:
        self.errors = list(errors or [message])
        super().__init__(message, code, context={"errors": self.errors})


class TemplateError(DnaError):
    """Raised when a template is missing, fails to render or targets an invalid path."""

    category = ErrorCategory.TEMPLATE
    retryable = False


# ---------------------------------------------------------------------------
# Rollback
# ---------------------------------------------------------------------------


class RollbackError(DnaError):
    """Raised when a tracked filesystem mutation or an undo step fails."""

    category = ErrorCategory.ROLLBACK


class RollbackFailedError(RollbackError):
    """Raised after a rollback sweep in which one or more undo steps failed.

    Operations that were undone successfully stay undone; the project
    directory may be left partially generated.
    """

    retryable = False

    def __init__(
        self,
        reason: str,
        failed_operations: list[str],
        undone_operations: list[str],
    ) -> None:
        self.reason = reason
        self.failed_operations = list(failed_operations)
        self.undone_operations = list(undone_operations)
        super().__init__(
            f"Rollback failed: {reason}. Failed operations: "
            f"{', '.join(self.failed_operations) or 'none'}",
            "ROLLBACK_FAILED",
            suggestion=(
                "Manual cleanup may be required. Check the project directory "
                "and remove any partial files"
            ),
            context={
                "failed_operations": self.failed_operations,
                "undone_operations": self.undone_operations,
            },
        )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class StageError(DnaError):
    """Raised when a pipeline stage fails irrecoverably."""

    def __init__(self, stage: str, message: str, *, retryable: bool = True) -> None:
        self.stage = stage
        self.retryable = retryable
        super().__init__(f"Stage '{stage}': {message}", "STAGE_FAILED", context={"stage": stage})


class PipelineTimeoutError(DnaError):
    """Raised when the pipeline exceeds its wall-clock budget."""

    retryable = False

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Pipeline timeout exceeded ({timeout:g}s)",
            "PIPELINE_TIMEOUT",
            context={"timeout_seconds": timeout},
        )


class PipelineAbortedError(DnaError):
    """Raised when a cancellation request is observed at a stage boundary."""

    retryable = False

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(
            f"Pipeline aborted before stage '{stage}'",
            "PIPELINE_ABORTED",
            context={"stage": stage},
        )
