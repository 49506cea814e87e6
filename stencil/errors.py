"""Exception hierarchy for the Stencil scaffolding engine.

Every fatal error raised while generating a project derives from
:class:`GenerationError` and carries enough context (blueprint, file,
variable, hook, step) to point at the exact declaration responsible.
Hook errors are the exception: they happen after the transaction has been
committed, so the hook runner collects them instead of raising them.
"""

from __future__ import annotations

from typing import Any


class StencilError(Exception):
    """Base class for all Stencil errors."""


# ---------------------------------------------------------------------------
# Generation errors (fatal)
# ---------------------------------------------------------------------------


class GenerationError(StencilError):
    """Raised when a project cannot be generated.

    The location attributes are optional and may be filled in later by
    :meth:`annotate` as the error propagates up through the orchestrator.
    """

    code = "GENERATION_ERROR"

    def __init__(
        self,
        message: str,
        *,
        blueprint_id: str = "",
        file: str = "",
        variable: str = "",
        hook: str = "",
        step: str = "",
    ) -> None:
        self.message = message
        self.blueprint_id = blueprint_id
        self.file = file
        self.variable = variable
        self.hook = hook
        self.step = step
        super().__init__(message)

    def annotate(self, **location: str) -> "GenerationError":
        """Fill in any location attribute that is not already set.

        Returns the error itself so callers can ``raise exc.annotate(...)``.
        """
        for key, value in location.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown error location: {key}")
            if value and not getattr(self, key):
                setattr(self, key, value)
        return self

    @property
    def location(self) -> dict[str, str]:
        """The non-empty location attributes, in a stable order."""
        items = (
            ("blueprint", self.blueprint_id),
            ("step", self.step),
            ("file", self.file),
            ("variable", self.variable),
            ("hook", self.hook),
        )
        return {key: value for key, value in items if value}

    def __str__(self) -> str:
        where = ", ".join(f"{k}={v}" for k, v in self.location.items())
        if where:
            return f"[{self.code}] {self.message} ({where})"
        return f"[{self.code}] {self.message}"


class MissingRequiredVariable(GenerationError):
    code = "MISSING_REQUIRED_VARIABLE"

    def __init__(self, variable: str, **location: Any) -> None:
        super().__init__(
            f"Variable '{variable}' is required but no value was supplied",
            variable=variable,
            **location,
        )


class InvalidVariableValue(GenerationError):
    """A supplied value does not match the variable's type, choices or validation."""

    code = "INVALID_VARIABLE_VALUE"

    def __init__(self, variable: str, value: Any, reason: str, **location: Any) -> None:
        self.value = value
        self.reason = reason
        super().__init__(
            f"Invalid value {value!r} for variable '{variable}': {reason}",
            variable=variable,
            **location,
        )


class UnknownVariableReference(GenerationError):
    """An expression references a name the blueprint never declares."""

    code = "UNKNOWN_VARIABLE_REFERENCE"

    def __init__(self, variable: str, expression: str = "", **location: Any) -> None:
        self.expression = expression
        message = f"Unknown variable '{variable}'"
        if expression:
            message += f" in expression {expression!r}"
        super().__init__(message, variable=variable, **location)


class ConditionEvaluationError(GenerationError):
    code = "CONDITION_EVALUATION_ERROR"

    def __init__(self, expression: str, reason: str, **location: Any) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Cannot evaluate {expression!r}: {reason}", **location)


class TemplateExpansionError(GenerationError):
    """A template failed to parse or render."""

    code = "TEMPLATE_EXPANSION_ERROR"

    def __init__(
        self,
        source_id: str,
        reason: str,
        lineno: int | None = None,
        **location: Any,
    ) -> None:
        self.source_id = source_id
        self.lineno = lineno
        self.reason = reason
        where = f"{source_id}:{lineno}" if lineno else source_id
        location.setdefault("file", source_id)
        super().__init__(f"Failed to expand {where}: {reason}", **location)


class UnsafeDestinationPath(GenerationError):
    code = "UNSAFE_DESTINATION_PATH"

    def __init__(self, path: str, reason: str, **location: Any) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Unsafe destination path {path!r}: {reason}", **location)


class DuplicateDestination(GenerationError):
    """Two selected files resolve to the same destination path."""

    code = "DUPLICATE_DESTINATION"

    def __init__(self, path: str, first: str, second: str, **location: Any) -> None:
        self.path = path
        self.sources = (first, second)
        location.setdefault("file", second)
        super().__init__(
            f"Destination {path!r} is produced by both '{first}' and '{second}'",
            **location,
        )


class DependencyConflict(GenerationError):
    code = "DEPENDENCY_CONFLICT"

    def __init__(self, module: str, first: str, second: str, **location: Any) -> None:
        self.module = module
        self.constraints = (first, second)
        super().__init__(
            f"Conflicting constraints for '{module}': {first!r} and {second!r}",
            **location,
        )


class FilesystemError(GenerationError):
    """Wraps the ``OSError`` that caused a filesystem operation to fail."""

    code = "FILESYSTEM_ERROR"

    def __init__(self, message: str, path: str = "", cause: OSError | None = None, **location: Any) -> None:
        self.path = path
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, **location)


class OutputPathInUse(GenerationError):
    code = "OUTPUT_PATH_IN_USE"

    def __init__(self, path: str, **location: Any) -> None:
        self.path = path
        super().__init__(
            f"Output path '{path}' is already being generated by another call",
            **location,
        )


class OutputPathNotEmpty(GenerationError):
    code = "OUTPUT_PATH_NOT_EMPTY"

    def __init__(self, path: str, reason: str = "directory exists and is not empty", **location: Any) -> None:
        self.path = path
        super().__init__(f"Cannot generate into '{path}': {reason}", **location)


class BlueprintNotFound(GenerationError):
    code = "BLUEPRINT_NOT_FOUND"

    def __init__(self, blueprint_id: str) -> None:
        super().__init__(f"Blueprint '{blueprint_id}' not found", blueprint_id=blueprint_id)


class TemplateSourceNotFound(GenerationError):
    code = "TEMPLATE_SOURCE_NOT_FOUND"

    def __init__(self, source_path: str, reason: str = "no such template", **location: Any) -> None:
        self.source_path = source_path
        location.setdefault("file", source_path)
        super().__init__(f"Cannot load template '{source_path}': {reason}", **location)


class TransactionClosedError(GenerationError):
    """An operation was attempted on a committed or rolled-back transaction."""

    code = "TRANSACTION_CLOSED"


# ---------------------------------------------------------------------------
# Catalog errors
# ---------------------------------------------------------------------------


class CatalogError(StencilError):
    """Raised for blueprint authoring problems detected at registration."""

    def __init__(self, message: str, blueprint_id: str = "") -> None:
        self.blueprint_id = blueprint_id
        if blueprint_id:
            message = f"Blueprint '{blueprint_id}': {message}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Hook errors (non-fatal, collected by the hook runner)
# ---------------------------------------------------------------------------


class HookFailure(StencilError):
    """A post-generation hook exited unsuccessfully."""

    def __init__(self, hook: str, message: str, output: str = "") -> None:
        self.hook = hook
        self.output = output
        super().__init__(f"Hook '{hook}' failed: {message}")


class HookTimeout(HookFailure):
    """A post-generation hook exceeded its timeout and was killed."""

    def __init__(self, hook: str, timeout: float, output: str = "") -> None:
        self.timeout = timeout
        super().__init__(hook, f"timed out after {timeout:g}s", output=output)
