"""Pydantic v2 models for DNA modules and compositions.

Defines the catalogue entries held by the :class:`~dnagen.registry.registry.ModuleRegistry`
and the request/result types that flow through conflict resolution and the
composition engine.
"""

from __future__ import annotations

import fnmatch
import re
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class ModuleCategory(str, Enum):
    """Closed set of module categories."""
    AUTHENTICATION = "authentication"
    PAYMENT = "payment"
    DATABASE = "database"
    UI_FRAMEWORK = "ui-framework"
    ANALYTICS = "analytics"
    AI_INTEGRATION = "ai-integration"
    REAL_TIME = "real-time"
    SECURITY = "security"
    TESTING = "testing"
    MONITORING = "monitoring"


# Only one module of each of these categories may be active in a project.
EXCLUSIVE_CATEGORIES: frozenset[ModuleCategory] = frozenset({
    ModuleCategory.AUTHENTICATION,
    ModuleCategory.PAYMENT,
    ModuleCategory.DATABASE,
})


class SupportedFramework(str, Enum):
    """Target frameworks a project can be generated for."""
    NEXTJS = "nextjs"
    REACT_NATIVE = "react-native"
    FLUTTER = "flutter"
    TAURI = "tauri"
    SVELTEKIT = "sveltekit"
    TYPESCRIPT = "typescript"


class ConflictSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class MergeStrategy(str, Enum):
    """How several module files targeting the same path are combined."""
    REPLACE = "replace"
    MERGE = "merge"
    APPEND = "append"
    PREPEND = "prepend"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class ResolutionStrategy(str, Enum):
    """Ways of settling a detected module conflict."""
    REPLACE = "replace"
    KEEP_EXISTING = "keep-existing"
    MANUAL_SELECT = "manual-select"
    SUGGEST_ALTERNATIVE = "suggest-alternative"
    REMOVE_CONFLICTING = "remove-conflicting"


# ---------------------------------------------------------------------------
# Semantic versions
# ---------------------------------------------------------------------------

_SEMVER_RE = re.compile(
    r"^(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)


def version_key(version: str) -> tuple[int, int, int, int, str]:
    """Sort key for a semantic version; releases sort after their pre-releases."""
    match = _SEMVER_RE.match(version)
    if match is None:
        raise ValueError(f"Invalid semantic version: {version!r}")
    pre = match.group("pre")
    return (
        int(match.group("major")),
        int(match.group("minor")),
        int(match.group("patch")),
        0 if pre else 1,
        pre or "",
    )


# ---------------------------------------------------------------------------
# Module building blocks
# ---------------------------------------------------------------------------

class ConflictRule(BaseModel):
    """A declared incompatibility with another module.

    ``target`` is either an exact module id or a glob pattern such as
    ``auth-*``.  The matcher is compiled once when the rule is built.
    """

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., min_length=1, description="Module id or glob pattern")
    reason: str = Field(default="", description="Why the two modules cannot coexist")
    severity: ConflictSeverity = Field(default=ConflictSeverity.ERROR)
    resolution: str = Field(default="", description="Hint shown to the operator")

    _matcher: Optional[re.Pattern[str]] = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        if self.kind == "glob":
            self._matcher = re.compile(fnmatch.translate(self.target))

    @computed_field  # type: ignore[misc]
    @property
    def kind(self) -> str:
        """``"glob"`` when the target contains wildcard characters, else ``"exact"``."""
        return "glob" if any(ch in self.target for ch in "*?[") else "exact"

    def matches(self, module_id: str) -> bool:
        """Return ``True`` if *module_id* is named by this rule."""
        if self._matcher is None:
            return module_id == self.target
        return self._matcher.match(module_id) is not None


class ModuleFile(BaseModel):
    """A template shipped by a module and where it lands in the project."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Template path relative to the module directory")
    target: str = Field(..., description="Project-relative output path (may contain Jinja2)")
    merge_strategy: MergeStrategy = Field(default=MergeStrategy.REPLACE)
    frameworks: list[SupportedFramework] = Field(
        default_factory=list, description="Restrict the file to these frameworks (empty = all)"
    )

    def applies_to(self, framework: SupportedFramework | str) -> bool:
        return not self.frameworks or SupportedFramework(framework) in self.frameworks


class Module(BaseModel):
    """An immutable catalogue entry describing one DNA module."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=r"^[a-z0-9][a-z0-9-]*$")
    name: str = Field(default="")
    version: str = Field(default="1.0.0")
    category: ModuleCategory
    description: str = Field(default="")
    compatible_frameworks: frozenset[SupportedFramework] = Field(
        default_factory=frozenset, description="Empty means framework-agnostic"
    )
    conflicts: tuple[ConflictRule, ...] = Field(default_factory=tuple)
    requires: tuple[str, ...] = Field(default_factory=tuple)
    files: tuple[ModuleFile, ...] = Field(default_factory=tuple)
    config_defaults: dict[str, Any] = Field(default_factory=dict)
    deprecated: bool = False
    experimental: bool = False
    source_dir: Optional[Path] = Field(default=None, exclude=True)

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        version_key(value)
        return value

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def supports(self, framework: SupportedFramework | str) -> bool:
        return not self.compatible_frameworks or SupportedFramework(framework) in self.compatible_frameworks

    def conflicts_with(self, module_id: str) -> Optional[ConflictRule]:
        """Return the first rule naming *module_id*, ignoring self-matches."""
        if module_id == self.id:
            return None
        for rule in self.conflicts:
            if rule.matches(module_id):
                return rule
        return None


# ---------------------------------------------------------------------------
# Composition input
# ---------------------------------------------------------------------------

class ModuleRequest(BaseModel):
    """One requested module inside a composition."""
    module_id: str
    version: str = Field(default="latest")
    config: dict[str, Any] = Field(default_factory=dict)


class Composition(BaseModel):
    """A requested module set for one project.  Immutable input to the composer."""

    model_config = ConfigDict(frozen=True)

    modules: tuple[ModuleRequest, ...] = Field(default_factory=tuple)
    framework: SupportedFramework
    template_type: str = Field(default="foundation")
    project_name: str = Field(default="")
    global_config: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_ids(cls, module_ids: list[str], framework: SupportedFramework | str, **kwargs: Any) -> "Composition":
        """Shortcut for a composition of latest-version modules without config."""
        return cls(
            modules=tuple(ModuleRequest(module_id=mid) for mid in module_ids),
            framework=SupportedFramework(framework),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Conflict resolution
# ---------------------------------------------------------------------------

class ConflictResolution(BaseModel):
    """The decision taken for one conflict shape."""

    strategy: ResolutionStrategy
    selected_module: Optional[str] = Field(
        default=None, description="Alternative id (suggest-alternative) or the candidate (manual-select)"
    )
    alternative_modules: list[str] = Field(default_factory=list)
    kept_modules: list[str] = Field(
        default_factory=list, description="Modules the operator chose to keep (manual-select)"
    )
    reason: str = Field(default="")
    description: str = Field(default="", description="Menu text when offered as an option")


# ---------------------------------------------------------------------------
# Composition output
# ---------------------------------------------------------------------------

class CompositionIssue(BaseModel):
    """A single error or warning produced while composing."""
    code: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    module_id: Optional[str] = None


class ResolvedModule(BaseModel):
    """A module selected into a composition, with its merged configuration."""
    module: Module
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.module.id


class PerformanceMetrics(BaseModel):
    complexity: int = 0
    module_count: int = 0
    dependency_depth: int = 0
    elapsed_ms: float = 0.0
    peak_memory_bytes: int = 0


class CompositionResult(BaseModel):
    """Outcome of :meth:`CompositionEngine.compose`."""

    valid: bool = False
    modules: list[ResolvedModule] = Field(default_factory=list)
    dependency_order: list[str] = Field(default_factory=list)
    resolutions: list[ConflictResolution] = Field(default_factory=list)
    errors: list[CompositionIssue] = Field(default_factory=list)
    warnings: list[CompositionIssue] = Field(default_factory=list)
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)

    @property
    def module_ids(self) -> list[str]:
        return [m.id for m in self.modules]

    def get(self, module_id: str) -> Optional[ResolvedModule]:
        for resolved in self.modules:
            if resolved.id == module_id:
                return resolved
        return None

    def error_messages(self) -> list[str]:
        return [e.message for e in self.errors]
