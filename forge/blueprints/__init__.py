"""Blueprint definitions: loading, variable resolution and conditions.

Usage::

    from forge.blueprints import BlueprintLoader, VariableResolver

    loader = BlueprintLoader(["./blueprints"])
    schema = loader.load("cli-simple")
    resolved = VariableResolver(schema).resolve({"ProjectName": "demo"})
"""

from forge.blueprints.conditions import Condition, evaluate_condition, parse_condition
from forge.blueprints.loader import BlueprintLoader, load_blueprint
from forge.blueprints.models import (
    BlueprintSchema,
    DependencySpec,
    FileMapping,
    Hook,
    VariableKind,
    VariableSpec,
)
from forge.blueprints.variables import (
    FieldError,
    ResolvedVariables,
    VariableResolver,
)

__all__ = [
    "BlueprintLoader",
    "BlueprintSchema",
    "Condition",
    "DependencySpec",
    "FieldError",
    "FileMapping",
    "Hook",
    "ResolvedVariables",
    "VariableKind",
    "VariableResolver",
    "VariableSpec",
    "evaluate_condition",
    "load_blueprint",
    "parse_condition",
]
