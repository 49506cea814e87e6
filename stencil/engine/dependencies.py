"""Dependency merging and manifest rendering.

Dependencies declared by a blueprint (and optionally by the caller) are
deduplicated by module name. When the same module is declared twice the
narrower of two nested constraints wins; constraints that merely overlap,
or do not overlap at all, are a :class:`~stencil.errors.DependencyConflict`.
The merged list is always sorted by module name so manifests are
reproducible regardless of declaration order.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

import yaml

from stencil.blueprint.models import Dependency
from stencil.errors import DependencyConflict
from stencil.versions import VersionRange, parse_constraint

logger = logging.getLogger(__name__)


def merge_dependencies(*declared: Iterable[Dependency]) -> list[Dependency]:
    """Merge one or more dependency lists into one deduplicated, sorted list.

    Conditions on the inputs are ignored; callers filter conditional
    dependencies before merging. The returned dependencies carry no
    condition.

    Raises:
        DependencyConflict: If two constraints for one module are not nested.
        ValueError: If a constraint string is malformed.
    """
    chosen: dict[str, tuple[Dependency, VersionRange]] = {}

    for dependencies in declared:
        for dep in dependencies:
            plain = Dependency(module=dep.module, version=dep.version.strip())
            candidate = (plain, parse_constraint(dep.version))
            current = chosen.get(dep.module)
            if current is None:
                chosen[dep.module] = candidate
                continue
            chosen[dep.module] = _reconcile(dep.module, current, candidate)

    return [chosen[module][0] for module in sorted(chosen)]


def _reconcile(
    module: str,
    current: tuple[Dependency, VersionRange],
    candidate: tuple[Dependency, VersionRange],
) -> tuple[Dependency, VersionRange]:
    current_range, candidate_range = current[1], candidate[1]
    current_covers = current_range.contains(candidate_range)
    candidate_covers = candidate_range.contains(current_range)

    if current_covers and candidate_covers:
        # Same range spelled differently ("1.2.3" vs "v1.2.3"); pick one stably.
        return min(current, candidate, key=lambda item: item[0].version)
    if current_covers:
        logger.debug(
            "Narrowing %s from %r to %r", module, current[0].version, candidate[0].version
        )
        return candidate
    if candidate_covers:
        logger.debug(
            "Keeping %s at %r over wider %r", module, current[0].version, candidate[0].version
        )
        return current
    raise DependencyConflict(module, current[0].version, candidate[0].version)


# ---------------------------------------------------------------------------
# Manifest rendering
# ---------------------------------------------------------------------------


def build_manifest(
    blueprint_id: str,
    dependencies: Iterable[Dependency],
    *,
    blueprint_version: str = "",
    variables: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Return the manifest document for one generation."""
    manifest: dict[str, Any] = {
        "blueprint": blueprint_id,
        "dependencies": [
            {"module": dep.module, "version": dep.version} for dep in dependencies
        ],
    }
    if blueprint_version:
        manifest["blueprint_version"] = blueprint_version
    if variables is not None:
        manifest["variables"] = dict(variables)
    return manifest


def render_manifest(manifest: Mapping[str, Any], fmt: str = "json") -> bytes:
    """Serialise a manifest deterministically (sorted keys, trailing newline)."""
    if fmt == "json":
        text = json.dumps(manifest, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    elif fmt == "yaml":
        text = yaml.safe_dump(
            dict(manifest), sort_keys=True, default_flow_style=False, allow_unicode=True
        )
    else:
        raise ValueError(f"Unknown manifest format: {fmt!r}")
    return text.encode("utf-8")
