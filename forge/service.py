"""Framework-agnostic generation service.

``GenerationService`` is what a web layer binds its routes to: one method per
route, each returning a Pydantic response model that serialises with
``model_dump()``.  The service owns no global state; the loader, session
store and broadcaster are passed in (or built from a ``Config``).

Usage::

    async with GenerationService(Config()) as service:
        response = await service.generate("cli-simple", {"ProjectName": "demo"})
        payload = service.download(response.id)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field
from rich.markup import escape

from forge.blueprints.loader import BlueprintLoader
from forge.blueprints.models import BlueprintSchema
from forge.blueprints.variables import FieldError, VariableResolver
from forge.config import Config
from forge.errors import ERR_CANCELLED, ERR_UNKNOWN, DuplicateGeneration, ForgeError
from forge.scaffolder.assembler import AssemblyMode
from forge.scaffolder.generator import GenerationResult, ProjectGenerator
from forge.scaffolder.templates import RenderedFile
from forge.sessions.broadcaster import EventKind, Listener, ProgressBroadcaster, ProgressEvent
from forge.sessions.store import SessionStore
from forge.utils import (
    format_duration,
    print_error,
    print_success,
    print_summary_table,
    print_warning,
    sanitize_name,
)

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class BlueprintSummary(BaseModel):
    id: str
    name: str
    description: str = ""
    type: str = ""
    architecture: str = ""
    file_count: int = 0
    dependencies: list[str] = Field(default_factory=list)


class VariableInfo(BaseModel):
    name: str
    type: str
    description: str = ""
    default: Any = None
    required: bool = False
    validation: Optional[str] = None
    choices: list[str] = Field(default_factory=list)


class BlueprintDetail(BlueprintSummary):
    version: str = ""
    variables: list[VariableInfo] = Field(default_factory=list)
    files: list[dict[str, Any]] = Field(default_factory=list)
    hooks: list[dict[str, Any]] = Field(default_factory=list)


class ValidationReport(BaseModel):
    blueprint_id: str
    valid: bool
    errors: list[FieldError] = Field(default_factory=list)


class PreviewReport(BaseModel):
    blueprint_id: str
    files: list[str] = Field(default_factory=list, description="Destination paths, in order")


class GeneratedFileInfo(BaseModel):
    path: str
    size: int
    type: str


class GenerateResponse(BaseModel):
    id: str
    status: str = "completed"
    blueprint_id: str
    files_generated: int
    generation_time: float = Field(..., description="Seconds")
    download_url: str
    expires_at: datetime
    files: list[GeneratedFileInfo] = Field(default_factory=list)


class DownloadPayload(BaseModel):
    filename: str
    content_type: str = ZIP_CONTENT_TYPE
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class GenerationService:
    """Binds the generation engine to its session lifecycle."""

    def __init__(
        self,
        config: Config | None = None,
        *,
        loader: BlueprintLoader | None = None,
        store: SessionStore | None = None,
        broadcaster: ProgressBroadcaster | None = None,
    ) -> None:
        self.config = config or Config()
        self.loader = loader or BlueprintLoader(self.config.blueprint_paths)
        self.store = store or SessionStore(
            ttl=self.config.sessions.ttl,
            sweep_interval=self.config.sessions.sweep_interval_seconds,
        )
        self.broadcaster = broadcaster or ProgressBroadcaster(self.config.broadcast.queue_size)
        self.generator = ProjectGenerator(self.loader, self.config.limits)

    # -- Lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Start the expiry sweeper and the progress broadcaster."""
        self.store.start()
        await self.broadcaster.start()

    async def stop(self) -> None:
        await self.broadcaster.stop()
        self.store.stop()

    async def __aenter__(self) -> "GenerationService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    # -- Blueprints --------------------------------------------------------

    def list_blueprints(self) -> list[BlueprintSummary]:
        """GET /blueprints"""
        return [BlueprintSummary(**schema.summary()) for schema in self.loader.list()]

    def get_blueprint(self, blueprint_id: str) -> BlueprintDetail:
        """GET /blueprints/{id}"""
        return _detail(self.loader.load(blueprint_id))

    def validate(self, blueprint_id: str, config: dict[str, Any] | None) -> ValidationReport:
        """POST /validate"""
        schema = self.loader.load(blueprint_id)
        errors = VariableResolver(schema).validate(config)
        return ValidationReport(blueprint_id=schema.id, valid=not errors, errors=errors)

    def preview(self, blueprint_id: str, config: dict[str, Any] | None) -> PreviewReport:
        """POST /preview: the files a generation would produce, nothing rendered."""
        paths = self.generator.preview(blueprint_id, config)
        return PreviewReport(blueprint_id=blueprint_id, files=paths)

    # -- Generation --------------------------------------------------------

    async def generate(
        self,
        blueprint_id: str,
        config: dict[str, Any] | None,
        generation_id: str | None = None,
    ) -> GenerateResponse:
        """POST /generate

        Renders in a worker thread, stores the archive and returns where to
        download it.  Listeners subscribed to *generation_id* receive one
        ``file_added`` event per file and then ``complete`` or ``error``.
        A cancelled call stores nothing.

        Raises:
            DuplicateGeneration: *generation_id* belongs to a live artifact;
                checked before anything renders.
            ForgeError: Any engine failure, after the ``error`` event is sent.
        """
        generation_id = generation_id or uuid.uuid4().hex

        def on_rendered(rendered: RenderedFile, index: int, total: int) -> None:
            self.broadcaster.broadcast_threadsafe(
                ProgressEvent(
                    generation_id=generation_id,
                    kind=EventKind.FILE_ADDED,
                    payload={
                        "path": rendered.path,
                        "size": rendered.size,
                        "type": rendered.kind,
                        "index": index,
                        "total": total,
                        "progress": round(index * 100 / total) if total else 100,
                    },
                )
            )

        try:
            if generation_id in self.store:
                raise DuplicateGeneration(generation_id)
            result, archive = await asyncio.to_thread(
                self._generate_and_pack, blueprint_id, config, on_rendered
            )
            artifact = self.store.new_artifact(generation_id, result, archive)
            self.store.put(artifact)
        except asyncio.CancelledError:
            logger.warning("Generation %s from %s cancelled", generation_id, blueprint_id)
            self._broadcast_error(generation_id, ERR_CANCELLED, "generation cancelled")
            raise
        except ForgeError as exc:
            logger.warning("Generation %s from %s failed: %s", generation_id, blueprint_id, exc)
            self._broadcast_error(generation_id, exc.code, exc.message)
            raise
        except Exception as exc:
            logger.exception("Generation %s from %s crashed", generation_id, blueprint_id)
            self._broadcast_error(generation_id, ERR_UNKNOWN, str(exc) or type(exc).__name__)
            raise

        response = GenerateResponse(
            id=artifact.id,
            blueprint_id=artifact.blueprint_id,
            files_generated=len(artifact.files),
            generation_time=artifact.generation_time,
            download_url=self.config.download_url(artifact.id),
            expires_at=artifact.expires_at,
            files=[GeneratedFileInfo(path=f.path, size=f.size, type=f.kind) for f in artifact.files],
        )
        self.broadcaster.broadcast(
            ProgressEvent(
                generation_id=generation_id,
                kind=EventKind.COMPLETE,
                payload={
                    "files_generated": response.files_generated,
                    "download_url": response.download_url,
                    "progress": 100,
                },
            )
        )
        return response

    async def generate_to_disk(
        self,
        blueprint_id: str,
        config: dict[str, Any] | None,
        output_dir: str | Path | None = None,
    ) -> Path:
        """Generate straight onto disk; nothing is stored in the session store.

        Without *output_dir* the project goes to a directory named after it
        under ``config.output_dir``.
        """

        def run() -> Path:
            result = self.generator.generate(blueprint_id, config)
            target = output_dir
            if target is None:
                name = sanitize_name(result.project_name) or result.blueprint_id
                target = self.config.output_dir / name
            return self.generator.assemble(result, AssemblyMode.DISK, target)

        return await asyncio.to_thread(run)

    def _generate_and_pack(
        self, blueprint_id: str, config: dict[str, Any] | None, progress: Any
    ) -> tuple[GenerationResult, bytes]:
        result = self.generator.generate(blueprint_id, config, progress=progress)
        return result, self.generator.package(result)

    # -- Artifacts ---------------------------------------------------------

    def download(self, generation_id: str) -> DownloadPayload:
        """GET /download/{id}"""
        artifact = self.store.get(generation_id)
        name = sanitize_name(artifact.project_name) or artifact.id
        return DownloadPayload(filename=f"{name}.zip", content=artifact.archive)

    def delete(self, generation_id: str) -> bool:
        """DELETE /projects/{id}"""
        removed = self.store.delete(generation_id)
        if removed:
            logger.info("Deleted generation %s", generation_id)
        return removed

    # -- Progress ----------------------------------------------------------

    def subscribe(self, generation_id: str) -> Listener:
        """WebSocket connect: stream progress for *generation_id*."""
        return self.broadcaster.register(generation_id)

    def unsubscribe(self, listener: Listener) -> None:
        self.broadcaster.unregister(listener)

    def _broadcast_error(self, generation_id: str, code: str, message: str) -> None:
        self.broadcaster.broadcast(
            ProgressEvent(
                generation_id=generation_id,
                kind=EventKind.ERROR,
                payload={"code": code, "message": message},
            )
        )

    # -- Reporting ---------------------------------------------------------

    def print_summary(self, response: GenerateResponse) -> None:
        """Print a Rich summary of a finished generation."""
        print_summary_table(
            {
                "Generation": response.id,
                "Blueprint": response.blueprint_id,
                "Files": str(response.files_generated),
                "Time": format_duration(response.generation_time),
                "Download": response.download_url,
                "Expires": response.expires_at.isoformat(),
            },
            title="Generation Summary",
        )
        print_success(f"Generated {response.files_generated} file(s)")

    def print_failure(self, exc: ForgeError) -> None:
        """Print a failed request, one warning line per field or file."""
        print_error(escape(f"[{exc.code}] {exc.message}"))
        for error in getattr(exc, "errors", ()):
            print_warning(escape(f"  {error.field}: {error.message}"))
        for failure in getattr(exc, "failures", ()):
            print_warning(
                escape(f"  {failure.source} -> {failure.destination}: {failure.message}")
            )


def _detail(schema: BlueprintSchema) -> BlueprintDetail:
    return BlueprintDetail(
        **schema.summary(),
        version=schema.version,
        variables=[
            VariableInfo(
                name=v.name,
                type=v.kind.value,
                description=v.description,
                default=v.default,
                required=v.required,
                validation=v.pattern,
                choices=list(v.choices),
            )
            for v in schema.variables
        ],
        files=[
            {"source": f.source, "destination": f.destination, "condition": f.condition}
            for f in schema.files
        ],
        hooks=[h.model_dump() for h in schema.hooks],
    )
