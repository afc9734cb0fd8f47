"""Pydantic v2 models describing a loaded blueprint.

A blueprint is a declarative, parameterised project template: the variables
a user may set, the files to render (optionally gated by a condition), the
module dependencies to declare, and the post-generation hooks an external
runner may execute.  Every model here is frozen; a ``BlueprintSchema`` is
shared read-only by all generation requests once the loader has built it.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class VariableKind(str, Enum):
    """Value type of a blueprint variable."""
    STRING = "string"
    BOOL = "bool"
    CHOICE = "choice"
    NUMBER = "number"


_KIND_ALIASES: dict[str, VariableKind] = {
    "string": VariableKind.STRING,
    "str": VariableKind.STRING,
    "bool": VariableKind.BOOL,
    "boolean": VariableKind.BOOL,
    "choice": VariableKind.CHOICE,
    "enum": VariableKind.CHOICE,
    "number": VariableKind.NUMBER,
    "int": VariableKind.NUMBER,
    "integer": VariableKind.NUMBER,
    "float": VariableKind.NUMBER,
}


# ---------------------------------------------------------------------------
# Manifest entries
# ---------------------------------------------------------------------------

class VariableSpec(BaseModel):
    """A configurable variable declared by a blueprint."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., description="Variable name as referenced by templates")
    kind: VariableKind = Field(default=VariableKind.STRING, alias="type")
    description: str = Field(default="")
    default: Optional[Any] = Field(default=None, description="Value used when none is supplied")
    required: bool = Field(default=False)
    pattern: Optional[str] = Field(
        default=None, alias="validation", description="Regex a string value must match"
    )
    choices: tuple[str, ...] = Field(default=())

    @field_validator("kind", mode="before")
    @classmethod
    def _normalise_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            kind = _KIND_ALIASES.get(value.strip().lower())
            if kind is None:
                raise ValueError(f"unknown variable type '{value}'")
            return kind
        return value

    @field_validator("pattern", mode="before")
    @classmethod
    def _blank_pattern_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("choices", mode="before")
    @classmethod
    def _stringify_choices(cls, value: Any) -> Any:
        if value is None:
            return ()
        return tuple(str(v) for v in value)

    @property
    def has_default(self) -> bool:
        return self.default is not None


class FileMapping(BaseModel):
    """A template source and where it lands in the generated project."""
    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Template identifier relative to the blueprint root")
    destination: str = Field(..., description="Destination path template")
    condition: Optional[str] = Field(default=None, description="Inclusion condition")
    executable: bool = Field(default=False, description="Mark the output file executable")

    @field_validator("condition", mode="before")
    @classmethod
    def _blank_condition_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class DependencySpec(BaseModel):
    """A module dependency, optionally gated by a condition."""
    model_config = ConfigDict(frozen=True)

    module: str = Field(..., description="Module identity, e.g. 'github.com/spf13/cobra'")
    version: str = Field(default="", description="Version constraint")
    condition: Optional[str] = Field(default=None)

    @field_validator("version", mode="before")
    @classmethod
    def _stringify_version(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("condition", mode="before")
    @classmethod
    def _blank_condition_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Hook(BaseModel):
    """A post-generation command, executed by an external runner."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(default="")
    command: str = Field(...)
    args: tuple[str, ...] = Field(default=())
    work_dir: str = Field(default="")
    description: str = Field(default="")


# ---------------------------------------------------------------------------
# Blueprint schema
# ---------------------------------------------------------------------------

class BlueprintSchema(BaseModel):
    """A fully loaded and statically checked blueprint."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Stable identifier used in requests")
    name: str = Field(default="")
    description: str = Field(default="")
    type: str = Field(default="")
    architecture: str = Field(default="")
    version: str = Field(default="")
    variables: tuple[VariableSpec, ...] = Field(default=())
    files: tuple[FileMapping, ...] = Field(default=())
    dependencies: tuple[DependencySpec, ...] = Field(default=())
    hooks: tuple[Hook, ...] = Field(default=())
    templates: Mapping[str, str] = Field(
        default_factory=dict, description="Template source text keyed by FileMapping.source"
    )
    root: Optional[Path] = Field(default=None, description="Directory the blueprint was read from")

    def variable(self, name: str) -> VariableSpec | None:
        """Return the variable declared as *name*, if any."""
        for spec in self.variables:
            if spec.name == name:
                return spec
        return None

    @property
    def variable_names(self) -> list[str]:
        return [v.name for v in self.variables]

    def summary(self) -> dict[str, Any]:
        """Return the listing view of this blueprint (no template bodies)."""
        return {
            "id": self.id,
            "name": self.name or self.id,
            "description": self.description,
            "type": self.type,
            "architecture": self.architecture,
            "file_count": len(self.files),
            "dependencies": [d.module for d in self.dependencies],
        }
