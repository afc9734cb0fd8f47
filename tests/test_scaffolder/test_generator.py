"""Tests for the generation orchestrator.

Covers:
- Conditional file inclusion and dependency filtering
- Render context (blueprint, dependencies, choices)
- Determinism of rendered content and archives
- Progress callbacks
- Error propagation (validation, rendering, conflicts)
- Disk mode, assembly modes and the async wrapper
- Preview (destinations only) and size limits
"""

from __future__ import annotations

from pathlib import Path

import pytest

from forge.blueprints.loader import BlueprintLoader
from forge.config import LimitsConfig
from forge.errors import (
    DestinationConflict,
    RenderError,
    ResourceLimitExceeded,
    SchemaNotFound,
    VariableValidationError,
)
from forge.scaffolder.archive import unpack_archive
from forge.scaffolder.assembler import AssemblyMode
from forge.scaffolder.generator import GenerationResult, ProjectGenerator

pytestmark = pytest.mark.unit


@pytest.fixture
def generator(service_blueprint: Path, loader: BlueprintLoader) -> ProjectGenerator:
    return ProjectGenerator(loader)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_conditional_file_excluded_by_default(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})

        assert result.paths == ["main.go", "go.mod", "scripts/run.sh"]
        assert result.project_name == "demo"

    def test_conditional_file_included(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo", "UseAuth": True})

        assert "internal/auth/jwt.go" in result.paths
        assert result.file("internal/auth/jwt.go").text() == 'package auth\n\nconst Kind = "jwt"\n'

    def test_condition_false_for_none_auth(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo", "UseAuth": "yes", "AuthType": "none"})
        assert not any(p.startswith("internal/auth") for p in result.paths)

    def test_dependencies_in_module_file(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo", "UseAuth": True})

        assert [d.module for d in result.dependencies] == [
            "github.com/golang-jwt/jwt/v5",
            "github.com/spf13/cobra",
        ]
        assert result.file("go.mod").text() == (
            "module example.com/demo\n"
            "require github.com/golang-jwt/jwt/v5 v5.2.0\n"
            "require github.com/spf13/cobra v1.8.0\n"
        )

    def test_filters_and_numbers_render(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "my-svc", "Workers": "8"})
        assert "// MySvc runs 8 workers." in result.file("main.go").text()

    def test_result_carries_config_and_hooks(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})

        assert result.config == {
            "ProjectName": "demo",
            "UseAuth": False,
            "AuthType": "jwt",
            "Workers": 4,
        }
        assert [h.name for h in result.hooks] == ["tidy"]
        assert result.generation_time >= 0

    def test_executable_flag_propagates(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})
        assert result.file("scripts/run.sh").executable is True

    def test_progress_callback(self, generator: ProjectGenerator) -> None:
        seen: list[tuple[str, int, int]] = []
        generator.generate(
            "svc", {"ProjectName": "demo"}, progress=lambda f, i, n: seen.append((f.path, i, n))
        )
        assert seen == [("main.go", 1, 3), ("go.mod", 2, 3), ("scripts/run.sh", 3, 3)]


class TestDeterminism:
    def test_identical_inputs_identical_outputs(self, generator: ProjectGenerator) -> None:
        payload = {"ProjectName": "demo", "UseAuth": True}
        first = generator.generate("svc", payload)
        second = generator.generate("svc", dict(payload))

        assert first.files == second.files
        assert generator.package(first) == generator.package(second)

    def test_package_round_trip(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})
        files = unpack_archive(generator.package(result))
        assert files == {f.path: f.content for f in result.files}


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_unknown_blueprint(self, generator: ProjectGenerator) -> None:
        with pytest.raises(SchemaNotFound):
            generator.generate("missing", {})

    def test_missing_required(self, generator: ProjectGenerator) -> None:
        with pytest.raises(VariableValidationError) as exc_info:
            generator.generate("svc", {})
        assert [e.field for e in exc_info.value.errors] == ["ProjectName"]

    def test_render_error_collects_all_files(self, write_blueprint, loader: BlueprintLoader) -> None:
        write_blueprint(
            "bad",
            {
                "type": "bad",
                "variables": [{"name": "Path", "default": "ok"}],
                "files": [
                    {"source": "a.tmpl", "destination": "{{ Path }}/a.txt"},
                    {"source": "b.tmpl", "destination": "{{ Path }}/b.txt"},
                ],
            },
            {"a.tmpl": "{{ Path.missing }}", "b.tmpl": "{{ Path.nope }}"},
        )

        with pytest.raises(RenderError) as exc_info:
            ProjectGenerator(loader).generate("bad", {})

        assert [f.source for f in exc_info.value.failures] == ["a.tmpl", "b.tmpl"]

    def test_destination_conflict(self, write_blueprint, loader: BlueprintLoader) -> None:
        write_blueprint(
            "dup",
            {
                "type": "dup",
                "variables": [{"name": "A", "default": "x"}, {"name": "B", "default": "x"}],
                "files": [
                    {"source": "t.tmpl", "destination": "{{ A }}.txt"},
                    {"source": "t.tmpl", "destination": "{{ B }}.txt"},
                ],
            },
            {"t.tmpl": "same"},
        )

        with pytest.raises(DestinationConflict) as exc_info:
            ProjectGenerator(loader).generate("dup", {})

        assert exc_info.value.paths == ["x.txt"]


# ---------------------------------------------------------------------------
# Disk and async
# ---------------------------------------------------------------------------


class TestOutputs:
    def test_write_to_disk(self, generator: ProjectGenerator, tmp_path: Path) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})
        root = generator.write(result, tmp_path / "demo")

        assert (root / "go.mod").read_text().startswith("module example.com/demo")
        assert sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file()) == [
            "go.mod",
            "main.go",
            "scripts/run.sh",
        ]

    async def test_generate_async(self, generator: ProjectGenerator) -> None:
        result = await generator.generate_async("svc", {"ProjectName": "demo"})
        assert isinstance(result, GenerationResult)
        assert len(result.files) == 3

    def test_renderer_cache_follows_reload(self, generator: ProjectGenerator) -> None:
        first = generator.renderer_for(generator.loader.load("svc"))
        assert generator.renderer_for(generator.loader.load("svc")) is first

        generator.loader.reload()

        assert generator.renderer_for(generator.loader.load("svc")) is not first

    def test_assemble_in_memory(self, generator: ProjectGenerator) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})
        files = generator.assemble(result, AssemblyMode.MEMORY)

        assert list(files) == ["main.go", "go.mod", "scripts/run.sh"]
        assert files["scripts/run.sh"] == b"#!/bin/sh\nexec ./demo\n"

    def test_assemble_to_disk(self, generator: ProjectGenerator, tmp_path: Path) -> None:
        result = generator.generate("svc", {"ProjectName": "demo"})
        root = generator.assemble(result, AssemblyMode.DISK, tmp_path / "out")
        assert (root / "main.go").is_file()

    def test_limits_apply_to_generation(self, service_blueprint: Path, loader: BlueprintLoader) -> None:
        generator = ProjectGenerator(loader, LimitsConfig(max_files=2))
        with pytest.raises(ResourceLimitExceeded, match="file count 3"):
            generator.generate("svc", {"ProjectName": "demo"})


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


class TestPreview:
    def test_lists_active_destinations(self, generator: ProjectGenerator) -> None:
        paths = generator.preview("svc", {"ProjectName": "demo", "UseAuth": True, "AuthType": "oauth2"})
        assert paths == ["main.go", "go.mod", "internal/auth/oauth2.go", "scripts/run.sh"]

    def test_bodies_are_not_rendered(self, write_blueprint, loader: BlueprintLoader) -> None:
        write_blueprint(
            "lazy",
            {
                "type": "lazy",
                "variables": [{"name": "Path", "default": "pkg"}],
                "files": [{"source": "a.tmpl", "destination": "{{ Path }}/a.txt"}],
            },
            {"a.tmpl": "{{ Path.missing }}"},
        )

        assert ProjectGenerator(loader).preview("lazy", {}) == ["pkg/a.txt"]

    def test_bad_destination_is_reported(self, write_blueprint, loader: BlueprintLoader) -> None:
        write_blueprint(
            "escape",
            {
                "type": "escape",
                "variables": [{"name": "Path", "default": ".."}],
                "files": [{"source": "a.tmpl", "destination": "{{ Path }}/a.txt"}],
            },
            {"a.tmpl": "body"},
        )

        with pytest.raises(RenderError) as exc_info:
            ProjectGenerator(loader).preview("escape", {})

        assert [f.destination for f in exc_info.value.failures] == ["{{ Path }}/a.txt"]

    def test_invalid_payload(self, generator: ProjectGenerator) -> None:
        with pytest.raises(VariableValidationError):
            generator.preview("svc", {"ProjectName": "Not Valid"})
