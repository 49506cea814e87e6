"""Blueprint catalog.

The catalog is an explicitly constructed registry of blueprints with a
load-once lifecycle: blueprints are registered (or loaded from a directory
of ``blueprint.yaml`` descriptors), the catalog is frozen, and from then on
it is shared read-only by any number of generations.

Registration is where authoring mistakes are caught. Every file condition,
dependency condition and feature flag is parsed into an expression tree
exactly once, so a misspelled variable name surfaces here as
:class:`~stencil.errors.UnknownVariableReference` instead of silently
dropping a file at generation time.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from stencil.blueprint.models import Blueprint, VariableType
from stencil.blueprint.sources import DirectorySource, TemplateSource
from stencil.errors import (
    BlueprintNotFound,
    CatalogError,
    ConditionEvaluationError,
    InvalidVariableValue,
    UnknownVariableReference,
)
from stencil.expressions import Expression, parse_condition
from stencil.versions import parse_constraint

logger = logging.getLogger(__name__)

DESCRIPTOR_NAMES = ("blueprint.yaml", "blueprint.yml")


@dataclass(frozen=True, eq=False)
class CompiledBlueprint:
    """A registered blueprint together with its parsed conditions.

    ``file_conditions`` and ``dependency_conditions`` are aligned by index
    with ``blueprint.files`` and ``blueprint.dependencies``.
    """

    blueprint: Blueprint
    file_conditions: tuple[Expression, ...]
    dependency_conditions: tuple[Expression, ...]
    flags: tuple[tuple[str, Expression], ...]
    source: TemplateSource | None = None

    @property
    def id(self) -> str:
        return self.blueprint.id


def compile_blueprint(blueprint: Blueprint, source: TemplateSource | None = None) -> CompiledBlueprint:
    """Validate *blueprint* and parse all of its expressions.

    Raises:
        CatalogError: For structural authoring errors (duplicate names, bad
            defaults, malformed constraints or patterns).
        UnknownVariableReference: When an expression names an undeclared
            variable or flag.
        ConditionEvaluationError: When an expression does not parse.
    """
    bid = blueprint.id
    _check_variables(blueprint)

    names = set(blueprint.variable_names)
    flags: list[tuple[str, Expression]] = []
    for flag in blueprint.flags:
        if flag.name in names:
            raise CatalogError(f"flag '{flag.name}' shadows a variable or earlier flag", bid)
        # A flag may only reference variables and flags declared before it.
        expr = _parse(flag.when, names, blueprint_id=bid, variable=flag.name, step="compile-flag")
        flags.append((flag.name, expr))
        names.add(flag.name)

    file_conditions = tuple(
        _parse(f.condition, names, blueprint_id=bid, file=f.source, step="compile-condition")
        for f in blueprint.files
    )

    dependency_conditions = []
    for dep in blueprint.dependencies:
        try:
            parse_constraint(dep.version)
        except ValueError as exc:
            raise CatalogError(f"dependency '{dep.module}': {exc}", bid) from exc
        dependency_conditions.append(
            _parse(dep.condition, names, blueprint_id=bid, step=f"compile-dependency:{dep.module}")
        )

    hook_names = [hook.name for hook in blueprint.hooks]
    if len(set(hook_names)) != len(hook_names):
        raise CatalogError("hook names must be unique", bid)

    return CompiledBlueprint(
        blueprint=blueprint,
        file_conditions=file_conditions,
        dependency_conditions=tuple(dependency_conditions),
        flags=tuple(flags),
        source=source,
    )


def _parse(text: str, names: set[str], **location: Any) -> Expression:
    try:
        return parse_condition(text, known_names=names)
    except (UnknownVariableReference, ConditionEvaluationError) as exc:
        raise exc.annotate(**location)


def _check_variables(blueprint: Blueprint) -> None:
    bid = blueprint.id
    seen: set[str] = set()
    for variable in blueprint.variables:
        if variable.name in seen:
            raise CatalogError(f"variable '{variable.name}' is declared twice", bid)
        seen.add(variable.name)

        if variable.type is VariableType.ENUM and not variable.choices:
            raise CatalogError(f"enum variable '{variable.name}' declares no choices", bid)
        if variable.validation:
            try:
                re.compile(variable.validation)
            except re.error as exc:
                raise CatalogError(
                    f"variable '{variable.name}' has an invalid validation pattern: {exc}", bid
                ) from exc
        if variable.default is not None:
            try:
                variable.coerce(variable.default)
            except InvalidVariableValue as exc:
                raise CatalogError(f"default is invalid: {exc.message}", bid) from exc


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Catalog:
    """Registry of compiled blueprints.

    Typical lifecycle::

        catalog = Catalog()
        catalog.load_directory("blueprints/")
        catalog.freeze()
        generator = Generator(catalog)

    :meth:`from_directory` performs all three steps at once.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CompiledBlueprint] = {}
        self._lock = threading.RLock()
        self._frozen = False

    @classmethod
    def from_directory(cls, path: str | Path) -> "Catalog":
        catalog = cls()
        catalog.load_directory(path)
        catalog.freeze()
        return catalog

    # -- Registration --------------------------------------------------------

    def register(
        self,
        blueprint: Blueprint | dict[str, Any],
        source: TemplateSource | None = None,
    ) -> CompiledBlueprint:
        """Validate, compile and add a blueprint.

        Args:
            blueprint: A :class:`Blueprint` or a raw descriptor mapping.
            source: Provider for this blueprint's templates. When omitted the
                generator's default provider is used.
        """
        if isinstance(blueprint, dict):
            blueprint = _validate_descriptor(blueprint)

        compiled = compile_blueprint(blueprint, source)
        with self._lock:
            if self._frozen:
                raise CatalogError("catalog is frozen; no further registration allowed", blueprint.id)
            if blueprint.id in self._entries:
                raise CatalogError("a blueprint with this id is already registered", blueprint.id)
            self._entries[blueprint.id] = compiled
        logger.debug("Registered blueprint %s (%d files)", blueprint.id, len(blueprint.files))
        return compiled

    def load_file(self, path: str | Path, source: TemplateSource | None = None) -> CompiledBlueprint:
        """Register the blueprint described by one YAML descriptor file.

        The blueprint id defaults to the name of the descriptor's directory
        and templates are loaded from a ``files/`` directory next to the
        descriptor, or from the descriptor's directory itself.
        """
        descriptor = Path(path)
        try:
            data = yaml.safe_load(descriptor.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise CatalogError(f"cannot read {descriptor}: {exc}") from exc
        if not isinstance(data, dict):
            raise CatalogError(f"{descriptor} does not contain a mapping")

        data.setdefault("id", descriptor.parent.name)
        if source is None:
            files_dir = descriptor.parent / "files"
            source = DirectorySource(files_dir if files_dir.is_dir() else descriptor.parent)
        return self.register(data, source)

    def load_directory(self, path: str | Path) -> list[CompiledBlueprint]:
        """Register every blueprint found one level below *path*."""
        root = Path(path)
        if not root.is_dir():
            raise CatalogError(f"blueprint directory not found: {root}")

        loaded: list[CompiledBlueprint] = []
        for child in sorted(p for p in root.iterdir() if p.is_dir()):
            for name in DESCRIPTOR_NAMES:
                descriptor = child / name
                if descriptor.is_file():
                    loaded.append(self.load_file(descriptor))
                    break
        logger.info("Loaded %d blueprints from %s", len(loaded), root)
        return loaded

    def freeze(self) -> None:
        """End the loading phase; the catalog is read-only afterwards."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    # -- Lookup --------------------------------------------------------------

    def get(self, blueprint_id: str) -> CompiledBlueprint:
        with self._lock:
            try:
                return self._entries[blueprint_id]
            except KeyError:
                raise BlueprintNotFound(blueprint_id) from None

    def list(self) -> list[Blueprint]:
        """All registered blueprints, sorted by id."""
        with self._lock:
            return [self._entries[key].blueprint for key in sorted(self._entries)]

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def __contains__(self, blueprint_id: object) -> bool:
        with self._lock:
            return blueprint_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _validate_descriptor(data: dict[str, Any]) -> Blueprint:
    try:
        return Blueprint.model_validate(data)
    except ValidationError as exc:
        raise CatalogError(f"invalid blueprint descriptor: {exc}", str(data.get("id", ""))) from exc
