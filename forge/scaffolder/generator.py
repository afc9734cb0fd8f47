"""Generation orchestrator.

Runs one request through the pipeline::

    resolve variables -> filter files -> merge dependencies -> render -> check

and returns a ``GenerationResult`` holding the rendered files.  Packaging
(ZIP) and writing to disk are separate steps so the same result can be used
for either.  Nothing in here touches the session store; the generator is
stateless apart from a cache of per-blueprint renderers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from forge.blueprints.conditions import evaluate_condition
from forge.blueprints.loader import BlueprintLoader
from forge.blueprints.models import BlueprintSchema, DependencySpec, FileMapping, Hook
from forge.blueprints.variables import ResolvedVariables, VariableResolver
from forge.config import LimitsConfig
from forge.errors import RenderError

from .archive import pack_archive
from .assembler import AssemblyMode, ProjectAssembler
from .dependencies import manifest_context, merge_dependencies
from .templates import FileRenderFailure, RenderCallback, RenderedFile, TemplateRenderer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result model
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    """Everything one generation produced, before it is stored or written."""
    model_config = ConfigDict(frozen=True)

    blueprint_id: str
    project_name: str = Field(default="", description="Used for archive and download names")
    files: tuple[RenderedFile, ...] = Field(default=())
    dependencies: tuple[DependencySpec, ...] = Field(default=())
    hooks: tuple[Hook, ...] = Field(default=())
    config: dict[str, Any] = Field(default_factory=dict, description="Resolved plain values")
    generation_time: float = Field(default=0.0, description="Seconds spent generating")

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    def file(self, path: str) -> Optional[RenderedFile]:
        for rendered in self.files:
            if rendered.path == path:
                return rendered
        return None


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class ProjectGenerator:
    """Generates projects from blueprints provided by a ``BlueprintLoader``.

    Safe to share between threads; each call works on its own data and the
    renderer cache is lock-protected.
    """

    def __init__(self, loader: BlueprintLoader, limits: LimitsConfig | None = None) -> None:
        self.loader = loader
        self.assembler = ProjectAssembler(limits)
        self._renderers: dict[str, tuple[BlueprintSchema, TemplateRenderer]] = {}
        self._lock = threading.Lock()

    # -- Public API --------------------------------------------------------

    def generate(
        self,
        blueprint_id: str,
        payload: dict[str, Any] | None,
        *,
        progress: RenderCallback | None = None,
    ) -> GenerationResult:
        """Generate a project in memory.

        Args:
            blueprint_id: Blueprint to generate from.
            payload: Raw configuration values keyed by variable name.
            progress: Called after each file renders with
                ``(file, index, total)``.

        Raises:
            SchemaNotFound, SchemaMalformed: From the loader.
            VariableValidationError: The payload is invalid.
            RenderError: One or more files failed to render.
            DestinationConflict: Two files rendered to the same path.
            ResourceLimitExceeded: The project is larger than allowed.
        """
        started = time.perf_counter()
        schema = self.loader.load(blueprint_id)
        resolved = VariableResolver(schema).resolve(payload)

        active = self.active_files(schema, resolved)
        dependencies = merge_dependencies(schema.dependencies, resolved)
        context = self.build_context(schema, resolved, dependencies)

        renderer = self.renderer_for(schema)
        files = renderer.render_all(active, context, on_rendered=progress)
        self.assembler.check(files)

        elapsed = time.perf_counter() - started
        logger.info(
            "Generated %s: %d of %d file(s), %d dependency(ies) in %.3fs",
            schema.id,
            len(files),
            len(schema.files),
            len(dependencies),
            elapsed,
        )
        return GenerationResult(
            blueprint_id=schema.id,
            project_name=_project_name(resolved, schema),
            files=tuple(files),
            dependencies=tuple(dependencies),
            hooks=schema.hooks,
            config=resolved.as_context(),
            generation_time=elapsed,
        )

    async def generate_async(
        self,
        blueprint_id: str,
        payload: dict[str, Any] | None,
        *,
        progress: RenderCallback | None = None,
    ) -> GenerationResult:
        """Run :meth:`generate` in a worker thread."""
        return await asyncio.to_thread(
            self.generate, blueprint_id, payload, progress=progress
        )

    def preview(self, blueprint_id: str, payload: dict[str, Any] | None) -> list[str]:
        """Dry run: the destination paths a generation would produce.

        Only destination templates are rendered; file bodies are not.

        Raises:
            SchemaNotFound, SchemaMalformed, VariableValidationError: As for
                :meth:`generate`.
            RenderError: A destination path failed to render.
        """
        schema = self.loader.load(blueprint_id)
        resolved = VariableResolver(schema).resolve(payload)
        dependencies = merge_dependencies(schema.dependencies, resolved)
        context = self.build_context(schema, resolved, dependencies)
        renderer = self.renderer_for(schema)

        paths: list[str] = []
        failures: list[FileRenderFailure] = []
        for mapping in self.active_files(schema, resolved):
            try:
                paths.append(renderer.render_path(mapping.destination, context))
            except Exception as exc:  # templates can raise anything at runtime
                failures.append(
                    FileRenderFailure(
                        source=mapping.source,
                        destination=mapping.destination,
                        message=str(exc) or type(exc).__name__,
                    )
                )
        if failures:
            raise RenderError(failures)
        return paths

    def assemble(
        self,
        result: GenerationResult,
        mode: AssemblyMode,
        output_dir: str | Path | None = None,
    ) -> dict[str, bytes] | Path:
        """Hand *result* to the assembler in the requested mode."""
        return self.assembler.assemble(result.files, mode, output_dir)

    def write(self, result: GenerationResult, output_dir: str | Path) -> Path:
        """Materialise *result* under *output_dir* (must be missing or empty)."""
        return self.assemble(result, AssemblyMode.DISK, output_dir)

    def package(self, result: GenerationResult, root: str | None = None) -> bytes:
        """Pack *result* into a ZIP archive."""
        return pack_archive(result.files, root=root)

    # -- Pipeline steps ----------------------------------------------------

    @staticmethod
    def active_files(schema: BlueprintSchema, resolved: ResolvedVariables) -> list[FileMapping]:
        """File mappings whose condition holds, in blueprint order."""
        return [m for m in schema.files if evaluate_condition(m.condition, resolved)]

    @staticmethod
    def build_context(
        schema: BlueprintSchema,
        resolved: ResolvedVariables,
        dependencies: list[DependencySpec],
    ) -> dict[str, Any]:
        context = resolved.as_context()
        context["blueprint"] = schema.summary()
        context["dependencies"] = manifest_context(dependencies)
        context["choices"] = {v.name: list(v.choices) for v in schema.variables if v.choices}
        return context

    def renderer_for(self, schema: BlueprintSchema) -> TemplateRenderer:
        # Keyed on the schema object so a reloaded blueprint gets a fresh renderer.
        with self._lock:
            cached = self._renderers.get(schema.id)
            if cached is None or cached[0] is not schema:
                cached = (schema, TemplateRenderer.for_schema(schema))
                self._renderers[schema.id] = cached
            return cached[1]

    def clear_cache(self) -> None:
        with self._lock:
            self._renderers.clear()


def _project_name(resolved: ResolvedVariables, schema: BlueprintSchema) -> str:
    for name in ("ProjectName", "project_name", "name"):
        value = resolved.value(name)
        if isinstance(value, str) and value:
            return value
    return schema.id
