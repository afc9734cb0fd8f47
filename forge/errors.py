"""Exception hierarchy for blueprint-forge.

Every error raised by the engine derives from ``ForgeError`` and carries a
stable ``code`` so an HTTP layer can map it to a response without inspecting
the message.  Errors that describe many problems at once (variable
validation, rendering, destination conflicts) keep the individual problems
as structured items so callers can report all of them in one round trip.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from forge.blueprints.variables import FieldError
    from forge.scaffolder.templates import FileRenderFailure


# ---------------------------------------------------------------------------
# Error codes
# ---------------------------------------------------------------------------

ERR_UNKNOWN = "UNKNOWN"
ERR_SCHEMA_NOT_FOUND = "TEMPLATE_NOT_FOUND"
ERR_SCHEMA_MALFORMED = "TEMPLATE_MALFORMED"
ERR_VALIDATION = "VALIDATION_ERROR"
ERR_RENDER = "GENERATION_ERROR"
ERR_DESTINATION_CONFLICT = "DESTINATION_CONFLICT"
ERR_FILESYSTEM = "FILESYSTEM_ERROR"
ERR_ARTIFACT_NOT_FOUND = "PROJECT_NOT_FOUND"
ERR_ARCHIVE = "INVALID_ARCHIVE"
ERR_GENERATION_EXISTS = "PROJECT_EXISTS"
ERR_RESOURCE_LIMIT = "RESOURCE_LIMIT_EXCEEDED"
ERR_CANCELLED = "CANCELLED"


class ForgeError(Exception):
    """Base class for all engine errors."""

    code: str = ERR_UNKNOWN

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"[{self.code}] {message}")


# ---------------------------------------------------------------------------
# Load time
# ---------------------------------------------------------------------------


class SchemaNotFound(ForgeError):
    """No blueprint is registered under the requested identifier."""

    code = ERR_SCHEMA_NOT_FOUND

    def __init__(self, blueprint_id: str) -> None:
        self.blueprint_id = blueprint_id
        super().__init__(f"blueprint '{blueprint_id}' not found")


class SchemaMalformed(ForgeError):
    """A blueprint definition failed to parse or failed a static check."""

    code = ERR_SCHEMA_MALFORMED

    def __init__(self, blueprint_id: str, field: str, reason: str) -> None:
        self.blueprint_id = blueprint_id
        self.field = field
        self.reason = reason
        super().__init__(f"blueprint '{blueprint_id}': {field}: {reason}")


class ConditionSyntaxError(ForgeError):
    """A condition expression does not match the condition grammar."""

    code = ERR_SCHEMA_MALFORMED

    def __init__(self, expression: str, reason: str, position: int | None = None) -> None:
        self.expression = expression
        self.reason = reason
        self.position = position
        where = f" at offset {position}" if position is not None else ""
        super().__init__(f"invalid condition {expression!r}{where}: {reason}")


# ---------------------------------------------------------------------------
# Request time
# ---------------------------------------------------------------------------


class VariableValidationError(ForgeError):
    """The configuration payload violated one or more variable constraints."""

    code = ERR_VALIDATION

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        fields = ", ".join(e.field for e in self.errors)
        super().__init__(f"{len(self.errors)} invalid field(s): {fields}")


class RenderError(ForgeError):
    """One or more file mappings failed to render."""

    code = ERR_RENDER

    def __init__(self, failures: list[FileRenderFailure]) -> None:
        self.failures = list(failures)
        sources = ", ".join(f.source for f in self.failures)
        super().__init__(f"{len(self.failures)} file(s) failed to render: {sources}")


class DestinationConflict(ForgeError):
    """Two or more file mappings rendered to the same destination path."""

    code = ERR_DESTINATION_CONFLICT

    def __init__(self, paths: list[str]) -> None:
        self.paths = sorted(paths)
        super().__init__(f"duplicate destination path(s): {', '.join(self.paths)}")


class ResourceLimitExceeded(ForgeError):
    """A generated project is larger than the configured limits allow."""

    code = ERR_RESOURCE_LIMIT

    def __init__(self, limit: str, actual: int, maximum: int) -> None:
        self.limit = limit
        self.actual = actual
        self.maximum = maximum
        super().__init__(f"{limit} {actual} exceeds the limit of {maximum}")


class OutputDirectoryError(ForgeError):
    """The on-disk target cannot receive a generated project."""

    code = ERR_FILESYSTEM


class ArtifactNotFound(ForgeError):
    """The generation id is unknown, deleted, or past its expiry."""

    code = ERR_ARTIFACT_NOT_FOUND

    def __init__(self, generation_id: str) -> None:
        self.generation_id = generation_id
        super().__init__(f"project '{generation_id}' not found or expired")


class DuplicateGeneration(ForgeError):
    """A live generation is already stored under the requested id."""

    code = ERR_GENERATION_EXISTS

    def __init__(self, generation_id: str) -> None:
        self.generation_id = generation_id
        super().__init__(f"project '{generation_id}' already exists")


class ArchiveError(ForgeError):
    """An archive blob is not a valid ZIP or holds an unsafe member name."""

    code = ERR_ARCHIVE
