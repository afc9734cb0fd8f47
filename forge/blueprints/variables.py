"""Variable resolution and validation.

Merges a raw configuration payload with a blueprint's declared defaults and
turns every value into a typed, tagged variant.  Nothing downstream of the
resolver inspects raw payload types again.

Rules, applied per declared variable in declaration order:

1. a supplied (non-empty) value is type-checked, then membership-checked for
   choices and pattern-checked for strings;
2. otherwise the declared default is used (a blank default counts only for
   an optional string variable);
3. otherwise a required variable records ``missing_required_field``;
4. otherwise the variable stays unset.

All violations are accumulated so a caller can report them together.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from forge.blueprints.models import BlueprintSchema, VariableKind, VariableSpec
from forge.errors import VariableValidationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tagged values
# ---------------------------------------------------------------------------

class StringValue(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["string"] = "string"
    value: str


class BoolValue(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["bool"] = "bool"
    value: bool


class ChoiceValue(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["choice"] = "choice"
    value: str
    choices: tuple[str, ...] = ()


class NumberValue(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["number"] = "number"
    value: Union[int, float]


VariableValue = Annotated[
    Union[StringValue, BoolValue, ChoiceValue, NumberValue],
    Field(discriminator="kind"),
]


class ResolvedVariables(Mapping[str, "VariableValue"]):
    """Immutable mapping of variable name to its typed value.

    Unset optional variables are simply absent.
    """

    __slots__ = ("_values", "_order")

    def __init__(self, values: Mapping[str, VariableValue] | None = None) -> None:
        self._values: dict[str, VariableValue] = dict(values or {})
        self._order = tuple(self._values)

    def __getitem__(self, name: str) -> VariableValue:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._order)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v.value!r}" for k, v in self._values.items())
        return f"ResolvedVariables({inner})"

    def value(self, name: str, default: Any = None) -> Any:
        """Return the plain Python value of *name*, or *default* if unset."""
        item = self._values.get(name)
        return default if item is None else item.value

    def as_context(self) -> dict[str, Any]:
        """Plain ``{name: value}`` mapping for templates and conditions."""
        return {name: item.value for name, item in self._values.items()}

    def as_dict(self) -> dict[str, dict[str, Any]]:
        """Serialisable view including each value's kind tag."""
        return {name: item.model_dump() for name, item in self._values.items()}


# ---------------------------------------------------------------------------
# Field errors
# ---------------------------------------------------------------------------

class ErrorCode(str, Enum):
    """Kinds of per-field validation failure."""
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_TYPE = "invalid_type"
    INVALID_CHOICE = "invalid_choice"
    PATTERN_MISMATCH = "pattern_mismatch"


class FieldError(BaseModel):
    """A single configuration problem, reported alongside all others."""
    model_config = ConfigDict(frozen=True)

    field: str = Field(..., description="Variable name the error applies to")
    code: ErrorCode
    message: str


# ---------------------------------------------------------------------------
# Coercion
# ---------------------------------------------------------------------------

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0"}


class _CoercionError(ValueError):
    pass


def _is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and raw.strip() == "")


def _coerce(spec: VariableSpec, raw: Any) -> VariableValue:
    """Convert *raw* into the tagged value for *spec* or raise ``_CoercionError``."""
    if spec.kind is VariableKind.BOOL:
        if isinstance(raw, bool):
            return BoolValue(value=raw)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return BoolValue(value=True)
            if lowered in _FALSE_STRINGS:
                return BoolValue(value=False)
        raise _CoercionError(f"expected a boolean, got {raw!r}")

    if spec.kind is VariableKind.NUMBER:
        if isinstance(raw, bool):
            raise _CoercionError(f"expected a number, got {raw!r}")
        if isinstance(raw, (int, float)):
            return NumberValue(value=raw)
        if isinstance(raw, str):
            text = raw.strip()
            try:
                return NumberValue(value=int(text))
            except ValueError:
                pass
            try:
                return NumberValue(value=float(text))
            except ValueError:
                pass
        raise _CoercionError(f"expected a number, got {raw!r}")

    # string and choice both carry text
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        raise _CoercionError(f"expected a string, got {type(raw).__name__}")
    text = raw if isinstance(raw, str) else str(raw)
    if spec.kind is VariableKind.CHOICE:
        return ChoiceValue(value=text, choices=spec.choices)
    return StringValue(value=text)


def check_value(spec: VariableSpec, raw: Any) -> tuple[VariableValue | None, FieldError | None]:
    """Type-, choice- and pattern-check a single supplied value.

    Returns the tagged value on success, otherwise the ``FieldError``.  The
    loader reuses this to validate declared defaults.
    """
    try:
        value = _coerce(spec, raw)
    except _CoercionError as exc:
        return None, FieldError(field=spec.name, code=ErrorCode.INVALID_TYPE, message=str(exc))

    if spec.choices and str(value.value) not in spec.choices:
        return None, FieldError(
            field=spec.name,
            code=ErrorCode.INVALID_CHOICE,
            message=f"'{value.value}' is not one of: {', '.join(spec.choices)}",
        )

    if spec.pattern and isinstance(value, (StringValue, ChoiceValue)):
        if re.search(spec.pattern, value.value) is None:
            return None, FieldError(
                field=spec.name,
                code=ErrorCode.PATTERN_MISMATCH,
                message=f"'{value.value}' does not match pattern {spec.pattern}",
            )

    return value, None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class VariableResolver:
    """Resolves configuration payloads against one blueprint's variables."""

    def __init__(self, schema: BlueprintSchema) -> None:
        self.schema = schema

    def _resolve(
        self, payload: Mapping[str, Any] | None
    ) -> tuple[dict[str, VariableValue], list[FieldError]]:
        payload = payload or {}
        values: dict[str, VariableValue] = {}
        errors: list[FieldError] = []

        for spec in self.schema.variables:
            raw = payload.get(spec.name)
            if not _is_blank(raw):
                value, error = check_value(spec, raw)
                if error is not None:
                    errors.append(error)
                else:
                    values[spec.name] = value
                continue

            if spec.has_default and not _is_blank(spec.default):
                value, error = check_value(spec, spec.default)
                if error is not None:
                    errors.append(error)
                else:
                    values[spec.name] = value
                continue

            # A blank default only means something for an optional string.
            if spec.has_default and spec.kind is VariableKind.STRING and not spec.required:
                values[spec.name] = StringValue(value="")
                continue

            if spec.required:
                errors.append(
                    FieldError(
                        field=spec.name,
                        code=ErrorCode.MISSING_REQUIRED_FIELD,
                        message=f"{spec.name} is required",
                    )
                )

        unknown = sorted(set(payload) - set(self.schema.variable_names))
        if unknown:
            logger.debug(
                "Ignoring undeclared configuration keys for %s: %s",
                self.schema.id,
                ", ".join(unknown),
            )
        return values, errors

    def validate(self, payload: Mapping[str, Any] | None) -> list[FieldError]:
        """Return every constraint violation in *payload* (empty when valid)."""
        _, errors = self._resolve(payload)
        return errors

    def resolve(self, payload: Mapping[str, Any] | None) -> ResolvedVariables:
        """Return the resolved variables or raise ``VariableValidationError``."""
        values, errors = self._resolve(payload)
        if errors:
            raise VariableValidationError(errors)
        return ResolvedVariables(values)
