"""Dependency manifest merging.

Blueprints may declare the same module more than once, typically once
unconditionally and again under a feature condition with a different
version.  ``merge_dependencies`` drops entries whose condition is false and
collapses the rest to one entry per module.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from forge.blueprints.conditions import evaluate_condition
from forge.blueprints.models import DependencySpec
from forge.blueprints.variables import ResolvedVariables

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(
    r"^v?(?P<major>0|[1-9]\d*)"
    r"(?:\.(?P<minor>0|[1-9]\d*))?"
    r"(?:\.(?P<patch>0|[1-9]\d*))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+[0-9A-Za-z.-]+)?$"
)


def parse_version(version: str) -> tuple[Any, ...] | None:
    """Return a sortable key for a semantic version, or ``None``.

    Missing minor/patch components count as zero.  A release sorts above any
    of its pre-releases; pre-release identifiers compare numerically when
    both are numbers and lexically otherwise.
    """
    match = _SEMVER_RE.match(version.strip())
    if match is None:
        return None
    core = tuple(int(match.group(part) or 0) for part in ("major", "minor", "patch"))
    pre = match.group("pre")
    if pre is None:
        return core + ((1,),)
    identifiers = tuple(
        (0, int(ident), "") if ident.isdigit() else (1, 0, ident) for ident in pre.split(".")
    )
    return core + ((0, identifiers),)


def _prefer(current: DependencySpec, candidate: DependencySpec) -> DependencySpec:
    a = parse_version(current.version)
    b = parse_version(candidate.version)
    if a is not None and b is not None:
        return candidate if b > a else current
    return candidate


def merge_dependencies(
    specs: Iterable[DependencySpec],
    resolved: ResolvedVariables | Mapping[str, Any],
) -> list[DependencySpec]:
    """Filter *specs* by condition and merge duplicates.

    When two active entries name the same module the higher semantic
    version wins; if either version is not a semantic version the entry
    declared later wins.  The result is sorted by module name.
    """
    merged: dict[str, DependencySpec] = {}
    for spec in specs:
        if not evaluate_condition(spec.condition, resolved):
            continue
        existing = merged.get(spec.module)
        if existing is None:
            merged[spec.module] = spec
            continue
        chosen = _prefer(existing, spec)
        if chosen is not existing:
            logger.debug(
                "Dependency %s: %s replaces %s", spec.module, chosen.version, existing.version
            )
        merged[spec.module] = chosen

    return sorted(merged.values(), key=lambda d: d.module)


def manifest_context(dependencies: Iterable[DependencySpec]) -> list[dict[str, str]]:
    """Template-facing view of the merged manifest."""
    return [{"module": d.module, "version": d.version} for d in dependencies]
