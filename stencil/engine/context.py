"""Context building: user values + defaults + derived flags.

:class:`ContextBuilder` resolves every variable a blueprint declares,
validates the supplied values all at once, evaluates the blueprint's
feature flags, and freezes the result into a :class:`GenerationContext`.
Nothing downstream re-validates: once a context exists, it is valid.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

from stencil.blueprint.catalog import CompiledBlueprint, compile_blueprint
from stencil.blueprint.models import Blueprint
from stencil.errors import GenerationError, InvalidVariableValue, MissingRequiredVariable
from stencil.expressions import evaluate

logger = logging.getLogger(__name__)


class GenerationContext(Mapping[str, Any]):
    """Immutable lookup of resolved variable values and derived flags.

    List values are stored as tuples so nothing reachable from the context
    can be mutated; :meth:`as_dict` returns plain lists again.
    """

    __slots__ = ("_values", "_variables", "_flags")

    def __init__(self, variables: Mapping[str, Any], flags: Mapping[str, bool] | None = None) -> None:
        frozen_vars = {name: _freeze(value) for name, value in variables.items()}
        frozen_flags = {name: bool(value) for name, value in (flags or {}).items()}
        self._variables = MappingProxyType(frozen_vars)
        self._flags = MappingProxyType(frozen_flags)
        self._values = MappingProxyType({**frozen_vars, **frozen_flags})

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"GenerationContext({dict(self._values)!r})"

    @property
    def variables(self) -> Mapping[str, Any]:
        return self._variables

    @property
    def flags(self) -> Mapping[str, bool]:
        return self._flags

    def as_dict(self) -> dict[str, Any]:
        """A mutable deep copy with lists restored, for templates and manifests."""
        return {name: _thaw(value) for name, value in self._values.items()}

    def variables_dict(self) -> dict[str, Any]:
        return {name: _thaw(value) for name, value in self._variables.items()}


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class ContextBuilder:
    """Builds a :class:`GenerationContext` from a blueprint and user values."""

    def build(
        self,
        blueprint: Blueprint | CompiledBlueprint,
        user_values: Mapping[str, Any] | None = None,
    ) -> GenerationContext:
        """Resolve, validate and freeze all variables and flags.

        Raises:
            MissingRequiredVariable: A required variable has no value.
            InvalidVariableValue: A value fails type, choice or pattern checks,
                or names a variable the blueprint does not declare.
            UnknownVariableReference / ConditionEvaluationError: A flag
                expression is broken (only possible for uncompiled blueprints).
        """
        compiled = blueprint if isinstance(blueprint, CompiledBlueprint) else compile_blueprint(blueprint)
        definition = compiled.blueprint
        supplied = dict(user_values or {})

        unknown = sorted(set(supplied) - set(definition.variable_names))
        if unknown:
            raise InvalidVariableValue(
                unknown[0], supplied[unknown[0]], "not declared by this blueprint",
                blueprint_id=definition.id, step="context",
            )

        resolved: dict[str, Any] = {}
        for variable in definition.variables:
            try:
                if variable.name in supplied:
                    resolved[variable.name] = variable.coerce(supplied[variable.name])
                elif variable.required:
                    raise MissingRequiredVariable(variable.name)
                elif variable.default is not None:
                    resolved[variable.name] = variable.coerce(copy.deepcopy(variable.default))
                else:
                    resolved[variable.name] = variable.zero_value()
            except GenerationError as exc:
                raise exc.annotate(blueprint_id=definition.id, variable=variable.name, step="context")

        flags: dict[str, bool] = {}
        for name, expr in compiled.flags:
            scope = {**resolved, **flags}
            try:
                flags[name] = evaluate(expr, scope)
            except GenerationError as exc:
                raise exc.annotate(blueprint_id=definition.id, variable=name, step="flags")

        logger.debug(
            "Resolved %d variables and %d flags for %s", len(resolved), len(flags), definition.id
        )
        return GenerationContext(resolved, flags)
