"""Validation collaborators used by the generation pipeline.

Checks a :class:`GenerationRequest` before anything runs, a composition before
any file is written, and the generated project afterwards (essential files
plus a regex scan for hardcoded credentials and world-writable files).
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import stat
from pathlib import Path

from dnagen.models import GenerationRequest, ValidationResult
from dnagen.registry.models import CompositionResult, SupportedFramework
from dnagen.registry.registry import ModuleRegistry

PROJECT_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

# Rough on-disk footprint used for the free-space check.
BYTES_PER_FILE_ESTIMATE = 8 * 1024
BASE_FILE_COUNT = 3

ESSENTIAL_FILES: dict[SupportedFramework, list[str]] = {
    SupportedFramework.FLUTTER: ["README.md", ".gitignore", "pubspec.yaml"],
}
DEFAULT_ESSENTIAL_FILES = ["README.md", ".gitignore", "package.json"]


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_SECRET_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (
        "api key",
        re.compile(r"""(?i)\bapi[_-]?key\b["']?\s*[:=]\s*["'][A-Za-z0-9_\-]{16,}["']"""),
    ),
    (
        "secret",
        re.compile(r"""(?i)\b(?:secret|token)\b["']?\s*[:=]\s*["'][^"'\s]{8,}["']"""),
    ),
    (
        "password",
        re.compile(r"""(?i)\bpassword\b["']?\s*[:=]\s*["'][^"'\s]{4,}["']"""),
    ),
    ("Stripe live key", re.compile(r"\b[sr]k_live_[0-9A-Za-z]{16,}\b")),
    ("AWS access key", re.compile(r"\bAKIA[0-9A-Z]{16}\b")),
]

_SKIP_DIRS = {"node_modules", ".git", "dist", "build", ".dart_tool", ".next", ".svelte-kit"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _nearest_existing(path: Path) -> Path:
    current = path
    while not current.exists() and current.parent != current:
        current = current.parent
    return current


def _collect_files(root: Path) -> list[Path]:
    """Recursively collect files, skipping dependency and build directories."""
    results: list[Path] = []
    for child in sorted(root.iterdir()):
        if child.is_dir():
            if child.name in _SKIP_DIRS:
                continue
            results.extend(_collect_files(child))
        elif child.is_file():
            results.append(child)
    return results


def _find_line(content: str, match_start: int) -> int:
    """Return the 1-based line number for a character offset."""
    return content[:match_start].count("\n") + 1


# ---------------------------------------------------------------------------
# Request validation
# ---------------------------------------------------------------------------


def validate_request(request: GenerationRequest) -> ValidationResult:
    """Check the request fields and the output location."""
    result = ValidationResult()

    if not request.name.strip():
        result.errors.append("Project name is required")
    elif not PROJECT_NAME_RE.match(request.name):
        result.errors.append(
            f"Invalid project name '{request.name}': must start with a letter and contain "
            "only letters, digits, '-' and '_'"
        )
        result.suggestions.append("Use a name such as 'my-app'")

    if not request.template_type.strip():
        result.errors.append("Template type is required")

    duplicates = sorted({m for m in request.modules if request.modules.count(m) > 1})
    if duplicates:
        result.warnings.append(f"Duplicate modules requested: {', '.join(duplicates)}")

    output = Path(request.output_path)
    if output.exists():
        if not output.is_dir():
            result.errors.append(f"Output path exists and is not a directory: {output}")
        elif any(output.iterdir()) and not request.overwrite:
            result.errors.append(f"Output directory is not empty: {output}")
            result.suggestions.append("Choose another output path or pass overwrite=True")

    parent = _nearest_existing(output.parent)
    if not os.access(parent, os.W_OK):
        result.errors.append(f"Output location is not writable: {parent}")

    result.valid = not result.errors
    return result


def validate_pre_generation(
    composition: CompositionResult,
    request: GenerationRequest,
    registry: ModuleRegistry,
) -> ValidationResult:
    """Check that a composition can be rendered before anything is written."""
    result = ValidationResult()

    if not composition.valid:
        result.errors.extend(composition.error_messages() or ["Composition is invalid"])

    file_count = BASE_FILE_COUNT
    for resolved in composition.modules:
        module = resolved.module
        if module.id not in registry:
            result.errors.append(f"Module {module.id} is not in the registry")
            continue
        for module_file in module.files:
            if not module_file.applies_to(request.framework):
                continue
            file_count += 1
            if module.source_dir is None or not (module.source_dir / module_file.source).is_file():
                result.errors.append(f"Template source missing for {module.id}: {module_file.source}")

    required = file_count * BYTES_PER_FILE_ESTIMATE
    try:
        free = shutil.disk_usage(_nearest_existing(Path(request.output_path))).free
    except OSError as exc:
        result.warnings.append(f"Could not determine free disk space: {exc}")
    else:
        if free < required:
            result.errors.append(f"Insufficient disk space: {required} bytes needed, {free} available")

    result.valid = not result.errors
    return result


# ---------------------------------------------------------------------------
# Post-generation checks
# ---------------------------------------------------------------------------


async def validate_project_structure(path: str | Path, framework: SupportedFramework | str) -> ValidationResult:
    """Check that the essential project files were generated."""
    root = Path(path)
    expected = ESSENTIAL_FILES.get(SupportedFramework(framework), DEFAULT_ESSENTIAL_FILES)

    def _missing() -> list[str]:
        return [name for name in expected if not (root / name).is_file()]

    missing = await asyncio.to_thread(_missing)
    result = ValidationResult(
        valid=not missing,
        errors=[f"Essential file missing: {name}" for name in missing],
    )
    return result


async def scan_for_secrets(path: str | Path) -> ValidationResult:
    """Scan a generated project for hardcoded credentials and world-writable files.

    Findings are reported as warnings; the result stays valid.
    """
    root = Path(path)

    def _scan() -> list[str]:
        findings: list[str] = []
        if not root.is_dir():
            return findings
        for file_path in _collect_files(root):
            rel = file_path.relative_to(root).as_posix()
            try:
                mode = file_path.stat().st_mode
            except OSError:
                continue
            if mode & stat.S_IWOTH:
                findings.append(f"{rel}: file is world-writable")
            try:
                content = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for label, pattern in _SECRET_PATTERNS:
                for match in pattern.finditer(content):
                    findings.append(f"{rel}:{_find_line(content, match.start())}: possible hardcoded {label}")
        return findings

    findings = await asyncio.to_thread(_scan)
    return ValidationResult(
        valid=True,
        warnings=findings,
        suggestions=["Move credentials into environment variables"] if findings else [],
    )
