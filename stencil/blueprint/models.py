"""Pydantic v2 models describing a blueprint.

A blueprint is the static description of one generatable project: typed
variables, templated files, derived feature flags, dependency declarations
and post-generation hooks. Models are frozen so a registered blueprint
cannot change underneath a running generation.

The field names accept the aliases used by ``blueprint.yaml`` descriptors
(``post_hooks``, ``features``, ``enabled_when``, ``work_dir``).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from stencil.errors import InvalidVariableValue


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class VariableType(str, Enum):
    """Type of a blueprint variable."""

    STRING = "string"
    BOOL = "bool"
    ENUM = "enum"
    INT = "int"
    LIST = "list"


_TYPE_ALIASES: dict[str, str] = {
    "str": "string",
    "text": "string",
    "boolean": "bool",
    "choice": "enum",
    "integer": "int",
    "number": "int",
    "array": "list",
}

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0", ""}


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------


class Variable(BaseModel):
    """A typed configuration variable declared by a blueprint."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Name used in templates and conditions")
    type: VariableType = Field(default=VariableType.STRING)
    description: str = Field(default="")
    required: bool = Field(default=False)
    default: Optional[Any] = Field(default=None, description="Value used when none is supplied")
    choices: tuple[str, ...] = Field(default=(), description="Allowed values (enum)")
    validation: str = Field(default="", description="Regular expression values must fully match")

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _TYPE_ALIASES.get(lowered, lowered)
        return value

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", value):
            raise ValueError(f"variable name {value!r} is not a valid identifier")
        return value

    def zero_value(self) -> Any:
        """The value used when the variable is optional and has no default."""
        if self.type is VariableType.STRING:
            return ""
        if self.type is VariableType.BOOL:
            return False
        if self.type is VariableType.INT:
            return 0
        if self.type is VariableType.LIST:
            return []
        if self.type is VariableType.ENUM:
            return self.choices[0] if self.choices else ""
        raise AssertionError(f"unhandled variable type {self.type!r}")

    def coerce(self, raw: Any) -> Any:
        """Convert *raw* to this variable's type and validate it.

        String forms are accepted for every type so values coming from a
        command line or environment can be passed through unchanged.

        Raises:
            InvalidVariableValue: If the value cannot be converted, is not one
                of the declared choices, or does not match the validation
                pattern.
        """
        if self.type is VariableType.STRING:
            value = self._coerce_string(raw)
        elif self.type is VariableType.ENUM:
            value = self._coerce_string(raw)
            if value not in self.choices:
                raise InvalidVariableValue(
                    self.name, raw, f"must be one of {list(self.choices)}"
                )
        elif self.type is VariableType.BOOL:
            value = self._coerce_bool(raw)
        elif self.type is VariableType.INT:
            value = self._coerce_int(raw)
        elif self.type is VariableType.LIST:
            value = self._coerce_list(raw)
        else:
            raise AssertionError(f"unhandled variable type {self.type!r}")

        if self.type is VariableType.STRING and self.choices and value not in self.choices:
            raise InvalidVariableValue(self.name, raw, f"must be one of {list(self.choices)}")
        if self.validation:
            items = value if isinstance(value, list) else [value]
            for item in items:
                if not re.fullmatch(self.validation, str(item)):
                    raise InvalidVariableValue(
                        self.name, raw, f"does not match pattern {self.validation!r}"
                    )
        return value

    # -- Per-type coercion ---------------------------------------------------

    def _coerce_string(self, raw: Any) -> str:
        if isinstance(raw, str):
            return raw
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return str(raw)
        raise InvalidVariableValue(self.name, raw, "expected a string")

    def _coerce_bool(self, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, int) and raw in (0, 1):
            return bool(raw)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        raise InvalidVariableValue(self.name, raw, "expected a boolean")

    def _coerce_int(self, raw: Any) -> int:
        if isinstance(raw, bool):
            raise InvalidVariableValue(self.name, raw, "expected an integer")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str) and re.fullmatch(r"\s*[-+]?\d+\s*", raw):
            return int(raw)
        raise InvalidVariableValue(self.name, raw, "expected an integer")

    def _coerce_list(self, raw: Any) -> list[Any]:
        if isinstance(raw, str):
            return [part.strip() for part in raw.split(",") if part.strip()]
        if isinstance(raw, (list, tuple)):
            for item in raw:
                if not isinstance(item, (str, int, bool)):
                    raise InvalidVariableValue(
                        self.name, raw, "list items must be strings, integers or booleans"
                    )
            return list(raw)
        raise InvalidVariableValue(self.name, raw, "expected a list")


class FeatureFlag(BaseModel):
    """A boolean flag derived from resolved variable values."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    when: str = Field(..., validation_alias=AliasChoices("when", "enabled_when"))
    description: str = Field(default="")


# ---------------------------------------------------------------------------
# Files, dependencies, hooks
# ---------------------------------------------------------------------------


class FileDefinition(BaseModel):
    """One templated file of a blueprint."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., min_length=1, description="Template path inside the source provider")
    destination: str = Field(
        default="", description="Destination path template, relative to the output root"
    )
    condition: str = Field(default="", description="Inclusion condition; empty means always")
    executable: bool = Field(default=False)

    @model_validator(mode="before")
    @classmethod
    def _default_destination(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("destination") and data.get("source"):
            destination = str(data["source"])
            for suffix in (".j2", ".tmpl"):
                if destination.endswith(suffix):
                    destination = destination[: -len(suffix)]
                    break
            data = {**data, "destination": destination}
        return data


class Dependency(BaseModel):
    """An external dependency declared by a blueprint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    module: str = Field(..., min_length=1, validation_alias=AliasChoices("module", "name"))
    version: str = Field(default="", description="Version constraint; empty means any")
    condition: str = Field(default="", description="Inclusion condition; empty means always")

    def __str__(self) -> str:
        return f"{self.module}@{self.version}" if self.version else self.module


class Hook(BaseModel):
    """A command run against the generated tree after commit."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)
    args: tuple[str, ...] = Field(default=())
    work_dir: str = Field(
        default="",
        validation_alias=AliasChoices("work_dir", "working_directory", "workdir"),
        description="Working directory relative to the generated root",
    )
    timeout: Optional[float] = Field(default=None, gt=0)


class ManifestSettings(BaseModel):
    """Where and how the dependency manifest is written."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True)
    path: str = Field(default="stencil.lock.json")
    format: Literal["json", "yaml"] = Field(default="json")


# ---------------------------------------------------------------------------
# Blueprint
# ---------------------------------------------------------------------------


class Blueprint(BaseModel):
    """A named, reusable definition of a generatable project."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    description: str = Field(default="")
    version: str = Field(default="")
    variables: tuple[Variable, ...] = Field(default=())
    files: tuple[FileDefinition, ...] = Field(default=())
    dependencies: tuple[Dependency, ...] = Field(default=())
    hooks: tuple[Hook, ...] = Field(
        default=(), validation_alias=AliasChoices("hooks", "post_hooks")
    )
    flags: tuple[FeatureFlag, ...] = Field(
        default=(), validation_alias=AliasChoices("flags", "features")
    )
    manifest: ManifestSettings = Field(default_factory=ManifestSettings)

    def get_variable(self, name: str) -> Variable | None:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    @property
    def variable_names(self) -> list[str]:
        return [v.name for v in self.variables]
