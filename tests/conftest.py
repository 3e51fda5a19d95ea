"""Shared pytest fixtures for the dnagen test suite.

Provides reusable fixtures for:
- Temporary project directories
- A quiet Rich console
- In-memory module registries built from small module factories
- A registry backed by a temporary on-disk catalogue
- Rollback managers pointing at a temporary backup directory
"""

from __future__ import annotations

import io
import textwrap
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from dnagen.config import Config, PipelineSettings
from dnagen.registry import ModuleRegistry
from dnagen.registry.models import Module
from dnagen.rollback import RollbackManager


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary directory for generated projects (auto-cleanup)."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    yield project_dir


@pytest.fixture
def quiet_console() -> Console:
    """Rich console that writes into a buffer instead of the terminal."""
    return Console(file=io.StringIO(), force_terminal=False, width=120)


# ---------------------------------------------------------------------------
# Modules & registries
# ---------------------------------------------------------------------------

def make_module(module_id: str, category: str = "analytics", **kwargs: Any) -> Module:
    """Build a Module with sensible defaults for tests."""
    return Module.model_validate({"id": module_id, "category": category, **kwargs})


@pytest.fixture
def module_factory():
    """Return the :func:`make_module` helper."""
    return make_module


@pytest.fixture
def auth_registry() -> ModuleRegistry:
    """Registry with two mutually exclusive auth providers and a third auth module."""
    return ModuleRegistry([
        make_module(
            "auth-firebase",
            "authentication",
            conflicts=[{"target": "auth-supabase", "reason": "Both provide auth", "severity": "error"}],
        ),
        make_module(
            "auth-supabase",
            "authentication",
            conflicts=[{"target": "auth-firebase", "reason": "Both provide auth", "severity": "error"}],
        ),
        make_module("auth-magic", "authentication"),
        make_module("analytics-posthog", "analytics"),
    ])


@pytest.fixture
def builtin_registry() -> ModuleRegistry:
    """Registry loaded from the packaged catalogue."""
    return ModuleRegistry.builtin()


@pytest.fixture
def catalog_dir(tmp_path: Path) -> Path:
    """A small on-disk catalogue with one YAML and one JSON manifest."""
    root = tmp_path / "catalog"
    (root / "greeter").mkdir(parents=True)
    (root / "greeter" / "module.yaml").write_text(
        textwrap.dedent(
            """\
            id: greeter
            name: Greeter
            version: 1.0.0
            category: testing
            config_defaults:
              greeting: Hello
            files:
              - source: greet.txt.j2
                target: "src/{{ project_name_slug }}.txt"
              - source: run.sh.j2
                target: scripts/greet.sh
            """
        ),
        encoding="utf-8",
    )
    (root / "greeter" / "greet.txt.j2").write_text(
        "{{ config.greeting }}, {{ project_name }}!\n", encoding="utf-8"
    )
    (root / "greeter" / "run.sh.j2").write_text("#!/bin/sh\necho hi\n", encoding="utf-8")

    (root / "json-module").mkdir()
    (root / "json-module" / "module.json").write_text(
        '{"id": "json-module", "category": "monitoring", "version": "2.0.0", "requires": ["greeter"]}',
        encoding="utf-8",
    )
    return root


# ---------------------------------------------------------------------------
# Rollback & config
# ---------------------------------------------------------------------------

@pytest.fixture
def rollback_manager(tmp_path: Path, quiet_console: Console) -> RollbackManager:
    """Rollback manager with its backups under the test's tmp_path."""
    return RollbackManager(tmp_path / ".dnagen-temp", console=quiet_console)


@pytest.fixture
def fast_config(tmp_path: Path) -> Config:
    """Config with no retry backoff and a short timeout."""
    return Config(
        work_dir=tmp_path,
        pipeline=PipelineSettings(max_retries=2, retry_backoff_seconds=0.0, timeout_seconds=30.0),
    )
