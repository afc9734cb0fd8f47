"""Jinja2 template rendering for blueprint files.

Provides the TemplateRenderer class which renders a blueprint's source
templates and destination-path templates against the resolved variable
context.  Templates are held in memory (read once by the loader), rendered in
a sandbox, and any reference to a name the context does not define is an
error rather than an empty string.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from jinja2 import DictLoader, StrictUndefined, Undefined, meta
from jinja2.sandbox import ImmutableSandboxedEnvironment
from pydantic import BaseModel, ConfigDict, Field

from forge.blueprints.models import BlueprintSchema, FileMapping
from forge.errors import RenderError
from forge.utils import detect_file_kind

# Names the generator adds to every render context on top of the variables.
RESERVED_CONTEXT_NAMES = frozenset({"blueprint", "dependencies", "choices"})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class RenderedFile(BaseModel):
    """A rendered file ready for assembly."""
    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Relative POSIX destination path")
    content: bytes = Field(default=b"")
    kind: str = Field(default="text", description="Content kind for display only")
    executable: bool = Field(default=False)

    @property
    def size(self) -> int:
        return len(self.content)

    def text(self) -> str:
        return self.content.decode("utf-8")


class FileRenderFailure(BaseModel):
    """Why a single file mapping could not be rendered."""
    model_config = ConfigDict(frozen=True)

    source: str
    destination: str
    message: str


RenderCallback = Callable[[RenderedFile, int, int], None]


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------

class TemplateRenderer:
    """Renders one blueprint's templates.

    The environment is sandboxed, strict about undefined names, and keeps
    trailing newlines so output matches the template byte for byte.  A
    renderer holds no per-request state and may be shared across threads.
    """

    def __init__(self, templates: Mapping[str, str] | None = None) -> None:
        self.env = ImmutableSandboxedEnvironment(
            loader=DictLoader(dict(templates or {})),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        # Register custom filters
        self.env.filters["slugify"] = _slugify_filter
        self.env.filters["pascal_case"] = _pascal_case_filter
        self.env.filters["snake_case"] = _snake_case_filter
        self.env.filters["camel_case"] = _camel_case_filter
        self.env.filters["kebab_case"] = _kebab_case_filter
        self.env.filters["default_if_empty"] = _default_if_empty_filter

    @classmethod
    def for_schema(cls, schema: BlueprintSchema) -> "TemplateRenderer":
        return cls(schema.templates)

    # -- Single template rendering -----------------------------------------

    def render(self, template_name: str, context: Mapping[str, Any]) -> str:
        """Render a named template with the provided context."""
        template = self.env.get_template(template_name)
        return template.render(**context)

    def render_string(self, template_string: str, context: Mapping[str, Any]) -> str:
        """Render an inline template string with the provided context.

        Used for destination paths, which are small templates themselves.
        """
        template = self.env.from_string(template_string)
        return template.render(**context)

    def render_path(self, destination: str, context: Mapping[str, Any]) -> str:
        """Render a destination-path template and normalise the result."""
        return normalise_destination(self.render_string(destination, context))

    # -- Static analysis ---------------------------------------------------

    def referenced_names(self, template_source: str) -> set[str]:
        """Return every free name *template_source* reads from its context.

        The source is also compiled, so unknown filters or tests are caught
        here.  Raises ``jinja2.TemplateSyntaxError`` (or another
        ``TemplateError``) if it does not.
        """
        ast = self.env.parse(template_source)
        self.env.compile(ast)
        return set(meta.find_undeclared_variables(ast))

    # -- File rendering ----------------------------------------------------

    def render_file(self, mapping: FileMapping, context: Mapping[str, Any]) -> RenderedFile:
        """Render one (already active) file mapping."""
        path = self.render_path(mapping.destination, context)
        content = self.render(mapping.source, context)
        return RenderedFile(
            path=path,
            content=content.encode("utf-8"),
            kind=detect_file_kind(path),
            executable=mapping.executable,
        )

    def render_all(
        self,
        mappings: Iterable[FileMapping],
        context: Mapping[str, Any],
        *,
        on_rendered: RenderCallback | None = None,
    ) -> list[RenderedFile]:
        """Render every mapping, collecting failures instead of stopping.

        Args:
            mappings: Active file mappings, in blueprint order.
            context: Render context shared by all files.
            on_rendered: Called after each successful file with
                ``(file, index, total)``.

        Returns:
            The rendered files in mapping order.

        Raises:
            RenderError: If any mapping failed; carries every failure.
        """
        mappings = list(mappings)
        total = len(mappings)
        rendered: list[RenderedFile] = []
        failures: list[FileRenderFailure] = []

        for index, mapping in enumerate(mappings, start=1):
            try:
                result = self.render_file(mapping, context)
            except Exception as exc:  # templates can raise anything at runtime
                failures.append(
                    FileRenderFailure(
                        source=mapping.source,
                        destination=mapping.destination,
                        message=str(exc) or type(exc).__name__,
                    )
                )
                continue
            rendered.append(result)
            if on_rendered is not None:
                on_rendered(result, index, total)

        if failures:
            raise RenderError(failures)
        return rendered

    # -- Utility -----------------------------------------------------------

    def list_templates(self) -> list[str]:
        """Return a sorted list of all template names this renderer knows."""
        return sorted(self.env.list_templates())


# ---------------------------------------------------------------------------
# Destination paths
# ---------------------------------------------------------------------------

def normalise_destination(rendered: str) -> str:
    """Turn a rendered destination into a clean relative POSIX path.

    Raises:
        ValueError: If the path is empty, absolute, or climbs out of the
            project root.
    """
    text = rendered.strip().replace("\\", "/")
    if text.startswith("/") or re.match(r"^[A-Za-z]:", text):
        raise ValueError(f"destination {rendered!r} is absolute")
    parts: list[str] = []
    for part in text.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise ValueError(f"destination {rendered!r} escapes the project root")
        parts.append(part)
    if not parts:
        raise ValueError("destination rendered to an empty path")
    return "/".join(parts)


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def _slugify_filter(value: Any) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: Any) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", str(value))
    return "".join(word[:1].upper() + word[1:] for word in parts if word)


def _snake_case_filter(value: Any) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", str(value))
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def _camel_case_filter(value: Any) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = _pascal_case_filter(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


def _kebab_case_filter(value: Any) -> str:
    """Convert ``SomeThing`` or ``some_thing`` to ``some-thing``."""
    return _snake_case_filter(value).replace("_", "-")


def _default_if_empty_filter(value: Any, fallback: Any = "") -> Any:
    """Return *fallback* when *value* is undefined, ``None`` or empty."""
    if isinstance(value, Undefined) or value is None or value == "":
        return fallback
    return value
