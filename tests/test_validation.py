"""Unit tests for the validation collaborators (dnagen.validation).

Tests cover:
- validate_request (names, duplicates, output directory checks)
- validate_pre_generation (invalid compositions, missing templates, disk space)
- validate_project_structure (essential files per framework)
- scan_for_secrets (credential patterns, skipped directories, world-writable files)
"""

from __future__ import annotations

import os
from collections import namedtuple
from pathlib import Path
from unittest.mock import patch

import pytest

from dnagen.models import GenerationRequest
from dnagen.registry import Composition, CompositionEngine, ModuleRegistry
from dnagen.registry.models import CompositionIssue, CompositionResult, ResolvedModule
from dnagen.validation import (
    scan_for_secrets,
    validate_pre_generation,
    validate_project_structure,
    validate_request,
)


def _request(output: Path, **kwargs) -> GenerationRequest:
    fields = {"name": "demo-app", "output_path": output, "framework": "nextjs"}
    fields.update(kwargs)
    return GenerationRequest(**fields)


# ---------------------------------------------------------------------------
# validate_request
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestValidateRequest:
    def test_valid_request(self, tmp_path: Path):
        result = validate_request(_request(tmp_path / "new"))
        assert result.valid
        assert result.errors == []

    @pytest.mark.parametrize("name", ["", "   ", "1app", "my app", "app!"])
    def test_invalid_names(self, tmp_path: Path, name: str):
        result = validate_request(_request(tmp_path / "new", name=name))
        assert not result.valid

    def test_empty_template_type(self, tmp_path: Path):
        result = validate_request(_request(tmp_path / "new", template_type=""))
        assert "Template type is required" in result.errors

    def test_duplicate_modules_warn(self, tmp_path: Path):
        result = validate_request(_request(tmp_path / "new", modules=["a", "b", "a"]))
        assert result.valid
        assert result.warnings == ["Duplicate modules requested: a"]

    def test_non_empty_output_rejected(self, tmp_project_dir: Path):
        (tmp_project_dir / "existing.txt").write_text("x")
        result = validate_request(_request(tmp_project_dir))
        assert not result.valid
        assert result.suggestions

    def test_non_empty_output_allowed_with_overwrite(self, tmp_project_dir: Path):
        (tmp_project_dir / "existing.txt").write_text("x")
        assert validate_request(_request(tmp_project_dir, overwrite=True)).valid

    def test_empty_existing_output_allowed(self, tmp_project_dir: Path):
        assert validate_request(_request(tmp_project_dir)).valid

    def test_output_is_a_file(self, tmp_path: Path):
        target = tmp_path / "file.txt"
        target.write_text("x")
        result = validate_request(_request(target))
        assert any("not a directory" in e for e in result.errors)

    def test_unwritable_parent(self, tmp_path: Path):
        with patch("dnagen.validation.os.access", return_value=False):
            result = validate_request(_request(tmp_path / "new"))
        assert any("not writable" in e for e in result.errors)


# ---------------------------------------------------------------------------
# validate_pre_generation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestValidatePreGeneration:
    def test_valid_builtin_composition(self, builtin_registry: ModuleRegistry, tmp_path: Path):
        composition = CompositionEngine(builtin_registry).compose(
            Composition.from_ids(["payment-stripe"], "nextjs")
        )
        result = validate_pre_generation(composition, _request(tmp_path / "new"), builtin_registry)
        assert result.valid, result.errors

    def test_invalid_composition(self, builtin_registry: ModuleRegistry, tmp_path: Path):
        composition = CompositionResult(
            valid=False, errors=[CompositionIssue(code="X", message="broken")]
        )
        result = validate_pre_generation(composition, _request(tmp_path / "new"), builtin_registry)
        assert result.errors == ["broken"]

    def test_module_not_in_registry(self, module_factory, tmp_path: Path):
        composition = CompositionResult(valid=True, modules=[ResolvedModule(module=module_factory("ghost"))])
        result = validate_pre_generation(composition, _request(tmp_path / "new"), ModuleRegistry())
        assert result.errors == ["Module ghost is not in the registry"]

    def test_missing_template_source(self, catalog_dir: Path, tmp_path: Path):
        (catalog_dir / "greeter" / "run.sh.j2").unlink()
        registry = ModuleRegistry.from_directories([catalog_dir], include_builtin=False)
        composition = CompositionEngine(registry).compose(Composition.from_ids(["greeter"], "nextjs"))
        result = validate_pre_generation(composition, _request(tmp_path / "new"), registry)
        assert result.errors == ["Template source missing for greeter: run.sh.j2"]

    def test_insufficient_disk_space(self, builtin_registry: ModuleRegistry, tmp_path: Path):
        usage = namedtuple("usage", "total used free")(100, 100, 0)
        composition = CompositionResult(valid=True)
        with patch("dnagen.validation.shutil.disk_usage", return_value=usage):
            result = validate_pre_generation(composition, _request(tmp_path / "new"), builtin_registry)
        assert any("Insufficient disk space" in e for e in result.errors)

    def test_disk_usage_failure_only_warns(self, builtin_registry: ModuleRegistry, tmp_path: Path):
        composition = CompositionResult(valid=True)
        with patch("dnagen.validation.shutil.disk_usage", side_effect=OSError("no stat")):
            result = validate_pre_generation(composition, _request(tmp_path / "new"), builtin_registry)
        assert result.valid
        assert result.warnings


# ---------------------------------------------------------------------------
# validate_project_structure
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestValidateProjectStructure:
    async def test_complete_node_project(self, tmp_project_dir: Path):
        for name in ("README.md", ".gitignore", "package.json"):
            (tmp_project_dir / name).write_text("x")
        assert (await validate_project_structure(tmp_project_dir, "nextjs")).valid

    async def test_missing_files(self, tmp_project_dir: Path):
        (tmp_project_dir / "README.md").write_text("x")
        result = await validate_project_structure(tmp_project_dir, "sveltekit")
        assert not result.valid
        assert result.errors == [
            "Essential file missing: .gitignore",
            "Essential file missing: package.json",
        ]

    async def test_flutter_expects_pubspec(self, tmp_project_dir: Path):
        for name in ("README.md", ".gitignore", "package.json"):
            (tmp_project_dir / name).write_text("x")
        result = await validate_project_structure(tmp_project_dir, "flutter")
        assert result.errors == ["Essential file missing: pubspec.yaml"]


# ---------------------------------------------------------------------------
# scan_for_secrets
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestScanForSecrets:
    async def test_clean_project(self, tmp_project_dir: Path):
        (tmp_project_dir / "index.ts").write_text('const key = process.env.API_KEY ?? "";\n')
        result = await scan_for_secrets(tmp_project_dir)
        assert result.valid
        assert result.warnings == []
        assert result.suggestions == []

    async def test_hardcoded_credentials(self, tmp_project_dir: Path):
        (tmp_project_dir / "src").mkdir()
        (tmp_project_dir / "src" / "config.ts").write_text(
            'export const config = {\n'
            '  apiKey: "abcdefghijklmnop1234",\n'
            '  password: "hunter22",\n'
            '};\n'
        )
        result = await scan_for_secrets(tmp_project_dir)
        assert result.valid
        assert "src/config.ts:2: possible hardcoded api key" in result.warnings
        assert "src/config.ts:3: possible hardcoded password" in result.warnings
        assert result.suggestions

    async def test_provider_key_formats(self, tmp_project_dir: Path):
        (tmp_project_dir / "keys.txt").write_text(
            "sk_live_" + "a" * 24 + "\nAKIA" + "B" * 16 + "\n"
        )
        warnings = (await scan_for_secrets(tmp_project_dir)).warnings
        assert any("Stripe live key" in w for w in warnings)
        assert any("AWS access key" in w for w in warnings)

    async def test_dependency_directories_skipped(self, tmp_project_dir: Path):
        (tmp_project_dir / "node_modules" / "pkg").mkdir(parents=True)
        (tmp_project_dir / "node_modules" / "pkg" / "index.js").write_text('password = "hunter22"')
        assert (await scan_for_secrets(tmp_project_dir)).warnings == []

    async def test_binary_files_ignored(self, tmp_project_dir: Path):
        (tmp_project_dir / "logo.png").write_bytes(b"\x89PNG\xff\xfe")
        assert (await scan_for_secrets(tmp_project_dir)).warnings == []

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    async def test_world_writable_file(self, tmp_project_dir: Path):
        target = tmp_project_dir / "open.sh"
        target.write_text("echo hi\n")
        target.chmod(0o777)
        warnings = (await scan_for_secrets(tmp_project_dir)).warnings
        assert warnings == ["open.sh: file is world-writable"]

    async def test_missing_directory(self, tmp_path: Path):
        assert (await scan_for_secrets(tmp_path / "missing")).warnings == []
