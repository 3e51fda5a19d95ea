"""End-to-end generation against the packaged module catalogue.

Runs the full pipeline (and the ``dnagen`` command line) without fakes.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

from dnagen.models import GenerationRequest
from dnagen.pipeline import GenerationPipeline, main
from dnagen.registry import Composition, CompositionEngine, ModuleRegistry
from dnagen.rollback import RollbackManager


@pytest.mark.integration
class TestBuiltinCatalogue:
    def test_conflicting_auth_providers_resolved(self, builtin_registry: ModuleRegistry):
        result = CompositionEngine(builtin_registry).compose(
            Composition.from_ids(["auth-firebase", "auth-supabase"], "nextjs")
        )
        assert result.valid
        assert result.module_ids == ["auth-firebase"]
        assert result.resolutions[0].strategy.value == "keep-existing"

    async def test_full_nextjs_project(
        self, builtin_registry: ModuleRegistry, rollback_manager: RollbackManager, fast_config, quiet_console,
        tmp_path: Path,
    ):
        pipeline = GenerationPipeline(builtin_registry, rollback_manager, fast_config, out=quiet_console)
        request = GenerationRequest(
            name="shop",
            output_path=tmp_path / "shop",
            framework="nextjs",
            modules=["auth-firebase", "auth-supabase", "payment-stripe", "ui-tailwind", "analytics-posthog"],
        )

        result = await pipeline.generate(request)

        assert result.success, result.errors
        assert result.rollback_status is None
        package = json.loads((tmp_path / "shop" / "package.json").read_text())
        assert package["name"] == "shop"
        assert "firebase" in package["dependencies"]
        assert "@supabase/supabase-js" not in package["dependencies"]

        report = json.loads((tmp_path / "shop" / "dna-generation-report.json").read_text())
        assert "auth-supabase" not in report["modules"]
        assert report["resolutions"][0]["strategy"] == "keep-existing"
        assert rollback_manager.active_transactions() == []


@pytest.mark.integration
class TestCommandLine:
    def _run(self, monkeypatch, tmp_path: Path, *args: str) -> None:
        monkeypatch.setenv("DNAGEN_WORK_DIR", str(tmp_path))
        monkeypatch.setattr(sys, "argv", ["dnagen", *args])
        main()

    def test_generates_project(self, monkeypatch, tmp_path: Path):
        self._run(monkeypatch, tmp_path, "cli-app", "-m", "payment-stripe")

        project = tmp_path / "cli-app"
        assert (project / "README.md").is_file()
        assert (project / "dna-generation-report.json").is_file()
        assert not any((tmp_path / ".dnagen-temp").glob("*"))

    def test_extra_catalogue(self, monkeypatch, tmp_path: Path, catalog_dir: Path):
        self._run(monkeypatch, tmp_path, "greet", "--catalog", str(catalog_dir), "-m", "json-module")
        assert (tmp_path / "greet" / "src" / "greet.txt").read_text() == "Hello, greet!\n"

    def test_failure_exits_non_zero(self, monkeypatch, tmp_path: Path):
        with pytest.raises(SystemExit) as exc_info:
            self._run(monkeypatch, tmp_path, "bad-app", "-m", "no-such-module")
        assert exc_info.value.code == 1
        assert not (tmp_path / "bad-app").exists()

    def test_invalid_timeout(self, monkeypatch, tmp_path: Path):
        with pytest.raises(SystemExit):
            self._run(monkeypatch, tmp_path, "app", "--timeout", "0")
