"""Blueprint discovery, parsing and static checking.

A blueprint lives in its own directory containing a ``template.yaml``
definition next to the source templates it references::

    cli-simple/
        template.yaml
        main.go.tmpl
        cmd/root.go.tmpl

``BlueprintLoader`` scans one or more search paths for such directories,
parses each definition into a frozen ``BlueprintSchema`` and rejects anything
that would only fail later at generation time: unparseable conditions,
missing or malformed templates, references to undeclared variables, and
defaults that violate their own constraints.  Loaded schemas are cached for
the lifetime of the loader.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from forge.blueprints.conditions import RESERVED_WORDS, parse_condition
from forge.blueprints.models import (
    BlueprintSchema,
    DependencySpec,
    FileMapping,
    Hook,
    VariableKind,
    VariableSpec,
)
from forge.blueprints.variables import check_value
from forge.errors import ConditionSyntaxError, SchemaMalformed, SchemaNotFound

logger = logging.getLogger(__name__)

DEFINITION_FILE = "template.yaml"

_INCLUDABLE_SECTIONS = ("variables", "files", "dependencies", "post_hooks")


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class BlueprintLoader:
    """Loads and caches blueprints found under a set of search paths.

    The loader is safe to share between threads: discovery and cache
    population happen under a lock, and cached schemas are immutable.
    """

    def __init__(self, search_paths: Iterable[str | Path]) -> None:
        self.search_paths = [Path(p) for p in search_paths]
        self._lock = threading.Lock()
        self._index: dict[str, Path] | None = None
        self._cache: dict[str, BlueprintSchema] = {}

    # -- Public API --------------------------------------------------------

    def list(self) -> list[BlueprintSchema]:
        """Load every discoverable blueprint, ordered by type then id.

        Blueprints that fail to load are skipped with a warning so one broken
        definition does not hide the others; ``load`` still reports them.
        """
        schemas: list[BlueprintSchema] = []
        for blueprint_id in self._discover():
            try:
                schemas.append(self.load(blueprint_id))
            except SchemaMalformed as exc:
                logger.warning("Skipping blueprint %s: %s", blueprint_id, exc)
        return sorted(schemas, key=lambda s: (s.type, s.id))

    def load(self, blueprint_id: str) -> BlueprintSchema:
        """Return the schema for *blueprint_id*.

        Raises:
            SchemaNotFound: No blueprint has this id.
            SchemaMalformed: The definition failed to parse or a static check.
        """
        with self._lock:
            cached = self._cache.get(blueprint_id)
        if cached is not None:
            return cached

        directory = self._discover().get(blueprint_id)
        if directory is None:
            raise SchemaNotFound(blueprint_id)

        schema = load_blueprint(directory, blueprint_id=blueprint_id)
        with self._lock:
            # Another thread may have won the race; keep the first schema.
            schema = self._cache.setdefault(blueprint_id, schema)
        return schema

    def exists(self, blueprint_id: str) -> bool:
        return blueprint_id in self._discover()

    def ids(self) -> list[str]:
        return sorted(self._discover())

    def types(self) -> list[str]:
        """Return the distinct blueprint types, sorted."""
        return sorted({schema.type for schema in self.list()})

    def by_type(self, blueprint_type: str) -> list[BlueprintSchema]:
        return [schema for schema in self.list() if schema.type == blueprint_type]

    def reload(self) -> None:
        """Forget discovered directories and cached schemas."""
        with self._lock:
            self._index = None
            self._cache.clear()

    # -- Discovery ---------------------------------------------------------

    def _discover(self) -> dict[str, Path]:
        with self._lock:
            if self._index is not None:
                return self._index

            index: dict[str, Path] = {}
            for root in self.search_paths:
                if not root.is_dir():
                    logger.warning("Blueprint search path %s does not exist", root)
                    continue
                for definition in sorted(root.glob(f"*/{DEFINITION_FILE}")):
                    directory = definition.parent
                    try:
                        raw = _read_yaml(definition, directory.name)
                    except SchemaMalformed as exc:
                        logger.warning("Skipping blueprint at %s: %s", directory, exc)
                        continue
                    blueprint_id = derive_blueprint_id(raw, directory.name)
                    if blueprint_id in index:
                        logger.warning(
                            "Blueprint id '%s' at %s shadowed by %s",
                            blueprint_id,
                            directory,
                            index[blueprint_id],
                        )
                        continue
                    index[blueprint_id] = directory

            logger.debug("Discovered %d blueprint(s)", len(index))
            self._index = index
            return index


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def derive_blueprint_id(raw: dict[str, Any], directory_name: str) -> str:
    """Compute a blueprint's id from its definition.

    An explicit ``id`` wins; otherwise ``<type>-<architecture>`` unless the
    architecture is empty or ``standard``, in which case just ``<type>``.
    Definitions without a type use their directory name.
    """
    explicit = str(raw.get("id") or "").strip()
    if explicit:
        return explicit
    blueprint_type = str(raw.get("type") or "").strip()
    if not blueprint_type:
        return directory_name
    architecture = str(raw.get("architecture") or "").strip()
    if architecture and architecture != "standard":
        return f"{blueprint_type}-{architecture}"
    return blueprint_type


def load_blueprint(directory: str | Path, *, blueprint_id: str | None = None) -> BlueprintSchema:
    """Parse and statically check the blueprint in *directory*.

    Args:
        directory: Blueprint directory containing ``template.yaml``.
        blueprint_id: Id to report in errors and to assign when the
            definition does not carry one. Derived when omitted.

    Returns:
        The frozen, checked schema.
    """
    root = Path(directory)
    definition = root / DEFINITION_FILE
    label = blueprint_id or root.name
    if not definition.is_file():
        raise SchemaNotFound(label)

    raw = _read_yaml(definition, label)
    blueprint_id = blueprint_id or derive_blueprint_id(raw, root.name)
    raw = _apply_includes(raw, root, blueprint_id)

    variables = _parse_entries(raw, "variables", VariableSpec, blueprint_id)
    files = _parse_entries(raw, "files", FileMapping, blueprint_id)
    dependencies = _parse_entries(raw, "dependencies", DependencySpec, blueprint_id)
    hooks = _parse_entries(raw, "post_hooks", Hook, blueprint_id, fallback_key="hooks")

    variables = [_normalise_variable(v) for v in variables]
    templates = _read_templates(root, files, blueprint_id)

    try:
        schema = BlueprintSchema(
            id=blueprint_id,
            name=str(raw.get("name") or blueprint_id),
            description=str(raw.get("description") or ""),
            type=str(raw.get("type") or ""),
            architecture=str(raw.get("architecture") or ""),
            version=str(raw.get("version") or ""),
            variables=tuple(variables),
            files=tuple(files),
            dependencies=tuple(dependencies),
            hooks=tuple(hooks),
            templates=templates,
            root=root,
        )
    except ValidationError as exc:
        raise SchemaMalformed(blueprint_id, "definition", _first_error(exc)) from exc

    check_schema(schema)
    logger.debug(
        "Loaded blueprint %s (%d variables, %d files, %d dependencies)",
        schema.id,
        len(schema.variables),
        len(schema.files),
        len(schema.dependencies),
    )
    return schema


def _parse_yaml(path: Path, blueprint_id: str, field: str) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise SchemaMalformed(blueprint_id, field, f"invalid YAML: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise SchemaMalformed(blueprint_id, field, f"unreadable: {exc}") from exc


def _read_yaml(path: Path, blueprint_id: str) -> dict[str, Any]:
    data = _parse_yaml(path, blueprint_id, path.name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SchemaMalformed(blueprint_id, path.name, "expected a mapping at the top level")
    return data


def _apply_includes(raw: dict[str, Any], root: Path, blueprint_id: str) -> dict[str, Any]:
    """Merge sections pulled in through ``include:`` into the definition.

    An included file may hold either the bare list or a mapping with the
    section name as key.  Inline entries come first, included ones after.
    """
    includes = raw.get("include")
    if not includes:
        return raw
    if not isinstance(includes, dict):
        raise SchemaMalformed(blueprint_id, "include", "expected a mapping of section -> file")

    merged = dict(raw)
    for section, relative in includes.items():
        if section not in _INCLUDABLE_SECTIONS:
            logger.debug("Blueprint %s: ignoring include for '%s'", blueprint_id, section)
            continue
        path = _safe_join(root, str(relative))
        if path is None or not path.is_file():
            raise SchemaMalformed(blueprint_id, f"include.{section}", f"file '{relative}' not found")
        data = _parse_yaml(path, blueprint_id, f"include.{section}")
        if isinstance(data, dict):
            data = data.get(section)
        if data is None:
            continue
        if not isinstance(data, list):
            raise SchemaMalformed(blueprint_id, f"include.{section}", "expected a list")
        merged[section] = list(merged.get(section) or []) + data
    return merged


def _parse_entries(
    raw: dict[str, Any],
    section: str,
    model: type,
    blueprint_id: str,
    *,
    fallback_key: str | None = None,
) -> list[Any]:
    entries = raw.get(section)
    if entries is None and fallback_key is not None:
        entries = raw.get(fallback_key)
        section = fallback_key
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise SchemaMalformed(blueprint_id, section, "expected a list")

    parsed = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise SchemaMalformed(blueprint_id, f"{section}[{index}]", "expected a mapping")
        try:
            parsed.append(model.model_validate(entry))
        except ValidationError as exc:
            raise SchemaMalformed(
                blueprint_id, f"{section}[{index}]", _first_error(exc)
            ) from exc
    return parsed


def _normalise_variable(spec: VariableSpec) -> VariableSpec:
    if spec.kind is VariableKind.STRING and spec.choices:
        return spec.model_copy(update={"kind": VariableKind.CHOICE})
    return spec


def _read_templates(
    root: Path, files: list[FileMapping], blueprint_id: str
) -> dict[str, str]:
    templates: dict[str, str] = {}
    for index, mapping in enumerate(files):
        if mapping.source in templates:
            continue
        path = _safe_join(root, mapping.source)
        if path is None:
            raise SchemaMalformed(
                blueprint_id, f"files[{index}].source", f"'{mapping.source}' is outside the blueprint"
            )
        if not path.is_file():
            raise SchemaMalformed(
                blueprint_id, f"files[{index}].source", f"template '{mapping.source}' not found"
            )
        try:
            templates[mapping.source] = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SchemaMalformed(
                blueprint_id, f"files[{index}].source", f"unreadable template: {exc}"
            ) from exc
    return templates


def _safe_join(root: Path, relative: str) -> Path | None:
    candidate = (root / relative).resolve()
    try:
        candidate.relative_to(root.resolve())
    except ValueError:
        return None
    return candidate


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


# ---------------------------------------------------------------------------
# Static checks
# ---------------------------------------------------------------------------

def check_schema(schema: BlueprintSchema) -> None:
    """Reject a schema whose problems would otherwise surface mid-generation.

    Raises:
        SchemaMalformed: Naming the first offending field.
    """
    # Imported here: the scaffolder package imports this module.
    from forge.scaffolder.templates import RESERVED_CONTEXT_NAMES, TemplateRenderer

    blueprint_id = schema.id
    declared: set[str] = set()

    for index, spec in enumerate(schema.variables):
        field = f"variables[{index}]"
        if spec.name in declared:
            raise SchemaMalformed(blueprint_id, field, f"duplicate variable '{spec.name}'")
        if spec.name in RESERVED_WORDS or spec.name in RESERVED_CONTEXT_NAMES:
            raise SchemaMalformed(blueprint_id, field, f"'{spec.name}' is a reserved name")
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", spec.name):
            raise SchemaMalformed(blueprint_id, field, f"invalid variable name '{spec.name}'")
        declared.add(spec.name)

        if spec.pattern:
            try:
                re.compile(spec.pattern)
            except re.error as exc:
                raise SchemaMalformed(blueprint_id, f"{field}.validation", str(exc)) from exc
        if spec.kind is VariableKind.CHOICE and not spec.choices:
            raise SchemaMalformed(blueprint_id, f"{field}.choices", "choice variable without choices")
        blank_default = isinstance(spec.default, str) and spec.default.strip() == ""
        if blank_default and spec.kind is not VariableKind.STRING:
            raise SchemaMalformed(
                blueprint_id, f"{field}.default", f"blank default for a {spec.kind.value} variable"
            )
        if spec.has_default and not blank_default:
            _, error = check_value(spec, spec.default)
            if error is not None:
                raise SchemaMalformed(blueprint_id, f"{field}.default", error.message)

    def check_condition(field: str, expression: str | None) -> None:
        if expression is None:
            return
        try:
            condition = parse_condition(expression)
        except ConditionSyntaxError as exc:
            raise SchemaMalformed(blueprint_id, field, exc.reason) from exc
        unknown = condition.variables - declared
        if unknown:
            raise SchemaMalformed(
                blueprint_id, field, f"undeclared variable(s): {', '.join(sorted(unknown))}"
            )

    allowed = declared | RESERVED_CONTEXT_NAMES
    renderer = TemplateRenderer.for_schema(schema)

    def check_template(field: str, source: str) -> None:
        try:
            names = renderer.referenced_names(source)
        except Exception as exc:  # jinja2 raises several TemplateError subclasses
            raise SchemaMalformed(blueprint_id, field, f"invalid template: {exc}") from exc
        unknown = names - allowed
        if unknown:
            raise SchemaMalformed(
                blueprint_id, field, f"undeclared variable(s): {', '.join(sorted(unknown))}"
            )

    checked_sources: set[str] = set()
    for index, mapping in enumerate(schema.files):
        check_condition(f"files[{index}].condition", mapping.condition)
        check_template(f"files[{index}].destination", mapping.destination)
        if mapping.source not in checked_sources:
            check_template(f"files[{index}].source", schema.templates[mapping.source])
            checked_sources.add(mapping.source)

    for index, dependency in enumerate(schema.dependencies):
        check_condition(f"dependencies[{index}].condition", dependency.condition)
