"""blueprint-forge configuration.

Centralised, typed configuration for the generation engine and its session
lifecycle. All settings use Pydantic v2 models so they can be validated at
construction time and serialised to/from JSON or environment variables.
"""

from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

BUILTIN_BLUEPRINTS_DIR = Path(__file__).parent / "blueprints" / "builtin"


class SessionConfig(BaseModel):
    """Lifetime settings for generated artifacts held in memory."""

    ttl_seconds: int = Field(
        default=24 * 3600, ge=1, description="How long an artifact stays downloadable"
    )
    sweep_interval_seconds: int = Field(
        default=3600, ge=1, description="Interval between background expiry sweeps"
    )

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)


class BroadcastConfig(BaseModel):
    """Tuning knobs for the progress broadcaster."""

    queue_size: int = Field(
        default=256, ge=1, description="Per-listener buffer before the listener is dropped"
    )


class LimitsConfig(BaseModel):
    """Upper bounds on the size of one generated project."""

    max_files: int = Field(default=1000, ge=1, description="Files per project")
    max_file_size: int = Field(
        default=10 * 1024 * 1024, ge=1, description="Bytes allowed in any single file"
    )
    max_total_size: int = Field(
        default=100 * 1024 * 1024, ge=1, description="Bytes allowed across all files"
    )
    max_directories: int = Field(default=100, ge=1, description="Distinct directories per project")


class Config(BaseModel):
    """Global blueprint-forge configuration.

    Instances are typically created once by the hosting application and then
    handed to ``GenerationService``, which builds the loader, the session
    store and the broadcaster from it.
    """

    blueprint_paths: list[Path] = Field(
        default_factory=lambda: [BUILTIN_BLUEPRINTS_DIR],
        description="Directories searched for blueprint folders",
    )
    output_dir: Path = Field(
        default=Path("./output"), description="Parent directory for projects written to disk"
    )
    download_url_prefix: str = Field(default="/api/v1/download")
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)

    def download_url(self, generation_id: str) -> str:
        """Return the download URL for a stored generation."""
        return f"{self.download_url_prefix.rstrip('/')}/{generation_id}"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Parent directories are created.

        Returns:
            The path where the file was written.
        """
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
            FORGE_BLUEPRINT_PATHS (``os.pathsep`` separated), FORGE_OUTPUT_DIR,
            FORGE_DOWNLOAD_URL_PREFIX, FORGE_SESSION_TTL,
            FORGE_SWEEP_INTERVAL, FORGE_BROADCAST_QUEUE_SIZE, FORGE_MAX_FILES,
            FORGE_MAX_FILE_SIZE, FORGE_MAX_TOTAL_SIZE.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("FORGE_BLUEPRINT_PATHS"):
            kwargs["blueprint_paths"] = [
                Path(p) for p in os.environ["FORGE_BLUEPRINT_PATHS"].split(os.pathsep) if p
            ]
        if os.environ.get("FORGE_OUTPUT_DIR"):
            kwargs["output_dir"] = Path(os.environ["FORGE_OUTPUT_DIR"])
        if os.environ.get("FORGE_DOWNLOAD_URL_PREFIX"):
            kwargs["download_url_prefix"] = os.environ["FORGE_DOWNLOAD_URL_PREFIX"]

        session_kwargs: dict[str, Any] = {}
        if os.environ.get("FORGE_SESSION_TTL"):
            session_kwargs["ttl_seconds"] = int(os.environ["FORGE_SESSION_TTL"])
        if os.environ.get("FORGE_SWEEP_INTERVAL"):
            session_kwargs["sweep_interval_seconds"] = int(os.environ["FORGE_SWEEP_INTERVAL"])

        broadcast_kwargs: dict[str, Any] = {}
        if os.environ.get("FORGE_BROADCAST_QUEUE_SIZE"):
            broadcast_kwargs["queue_size"] = int(os.environ["FORGE_BROADCAST_QUEUE_SIZE"])

        limit_kwargs: dict[str, Any] = {}
        for env_name, field in (
            ("FORGE_MAX_FILES", "max_files"),
            ("FORGE_MAX_FILE_SIZE", "max_file_size"),
            ("FORGE_MAX_TOTAL_SIZE", "max_total_size"),
        ):
            if os.environ.get(env_name):
                limit_kwargs[field] = int(os.environ[env_name])

        return cls(
            sessions=SessionConfig(**session_kwargs),
            broadcast=BroadcastConfig(**broadcast_kwargs),
            limits=LimitsConfig(**limit_kwargs),
            **kwargs,
        )
