"""Shared pytest fixtures for the blueprint-forge test suite.

Provides reusable fixtures for:
- Writing throwaway blueprints into a temporary search path
- A loader over the built-in blueprints
- A controllable clock for session expiry tests
- Service instances with independent stores and broadcasters
"""

from __future__ import annotations

import textwrap
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
import yaml

from forge.blueprints.loader import BlueprintLoader
from forge.config import BUILTIN_BLUEPRINTS_DIR, Config


# ---------------------------------------------------------------------------
# Blueprint authoring
# ---------------------------------------------------------------------------

BlueprintWriter = Callable[..., Path]


@pytest.fixture
def blueprints_dir(tmp_path: Path) -> Path:
    """Empty blueprint search path."""
    path = tmp_path / "blueprints"
    path.mkdir()
    return path


@pytest.fixture
def write_blueprint(blueprints_dir: Path) -> BlueprintWriter:
    """Factory writing ``template.yaml`` plus template files.

    Usage::

        write_blueprint("svc", {"type": "svc", ...}, {"main.go.tmpl": "..."})
    """

    def _write(
        directory: str,
        definition: dict[str, Any] | str,
        templates: dict[str, str] | None = None,
    ) -> Path:
        root = blueprints_dir / directory
        root.mkdir(parents=True, exist_ok=True)
        if isinstance(definition, str):
            text = textwrap.dedent(definition)
        else:
            text = yaml.safe_dump(definition, sort_keys=False)
        (root / "template.yaml").write_text(text, encoding="utf-8")
        for name, body in (templates or {}).items():
            path = root / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(body, encoding="utf-8")
        return root

    return _write


@pytest.fixture
def service_definition() -> dict[str, Any]:
    """A small but complete blueprint exercising every feature."""
    return {
        "name": "Test Service",
        "description": "Service used by the test suite",
        "type": "svc",
        "architecture": "standard",
        "version": "0.1.0",
        "variables": [
            {"name": "ProjectName", "type": "string", "required": True,
             "validation": "^[a-z][a-z0-9-]*$"},
            {"name": "UseAuth", "type": "bool", "default": False},
            {"name": "AuthType", "type": "string", "default": "jwt",
             "choices": ["jwt", "oauth2", "none"]},
            {"name": "Workers", "type": "number", "default": 4},
        ],
        "files": [
            {"source": "main.go.tmpl", "destination": "main.go"},
            {"source": "go.mod.tmpl", "destination": "go.mod"},
            {"source": "auth.go.tmpl", "destination": "internal/auth/{{ AuthType }}.go",
             "condition": 'UseAuth and AuthType != "none"'},
            {"source": "run.sh.tmpl", "destination": "scripts/run.sh", "executable": True},
        ],
        "dependencies": [
            {"module": "github.com/spf13/cobra", "version": "v1.8.0"},
            {"module": "github.com/golang-jwt/jwt/v5", "version": "v5.2.0",
             "condition": '{{and .UseAuth (eq .AuthType "jwt")}}'},
        ],
        "post_hooks": [{"name": "tidy", "command": "go", "args": ["mod", "tidy"]}],
    }


SERVICE_TEMPLATES = {
    "main.go.tmpl": (
        "package main\n\n"
        "// {{ ProjectName | pascal_case }} runs {{ Workers }} workers.\n"
        "func main() {}\n"
    ),
    "go.mod.tmpl": (
        "module example.com/{{ ProjectName }}\n"
        "{% for dep in dependencies %}\n"
        "require {{ dep.module }} {{ dep.version }}\n"
        "{% endfor %}\n"
    ),
    "auth.go.tmpl": "package auth\n\nconst Kind = \"{{ AuthType }}\"\n",
    "run.sh.tmpl": "#!/bin/sh\nexec ./{{ ProjectName }}\n",
}


@pytest.fixture
def service_blueprint(write_blueprint: BlueprintWriter, service_definition: dict[str, Any]) -> Path:
    """Writes the ``svc`` blueprint and returns its directory."""
    return write_blueprint("svc", service_definition, SERVICE_TEMPLATES)


@pytest.fixture
def loader(blueprints_dir: Path) -> BlueprintLoader:
    """Loader over the temporary search path."""
    return BlueprintLoader([blueprints_dir])


@pytest.fixture
def builtin_loader() -> BlueprintLoader:
    """Loader over the blueprints shipped with the package."""
    return BlueprintLoader([BUILTIN_BLUEPRINTS_DIR])


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced clock for deterministic expiry."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def forge_config(blueprints_dir: Path, tmp_path: Path) -> Config:
    """Config pointing at the temporary search path and the built-ins."""
    return Config(
        blueprint_paths=[blueprints_dir, BUILTIN_BLUEPRINTS_DIR],
        output_dir=tmp_path / "output",
    )
