"""Stencil -- declarative project scaffolding.

Given a blueprint (templated files, typed variables, derived feature flags,
dependency declarations and post-generation hooks) and a concrete set of
values, Stencil writes a ready-to-build source tree. A failure partway
through never leaves a half-written tree behind.

Quick usage::

    from stencil import Catalog, Generator

    catalog = Catalog.from_directory("blueprints/")
    generator = Generator(catalog)
    result = await generator.generate(
        "go-web", {"project_name": "svc", "framework": "gin"}, "/tmp/svc"
    )
"""

from stencil.blueprint import (
    Blueprint,
    Catalog,
    Dependency,
    DirectorySource,
    FeatureFlag,
    FileDefinition,
    Hook,
    MemorySource,
    Variable,
    VariableType,
)
from stencil.config import EngineConfig
from stencil.engine import GenerationResult, Generator, HookResult, HookStatus, PlannedPath
from stencil.errors import GenerationError, HookFailure, StencilError

__version__ = "0.1.0"

__all__ = [
    # Blueprints
    "Blueprint",
    "Catalog",
    "Dependency",
    "DirectorySource",
    "FeatureFlag",
    "FileDefinition",
    "Hook",
    "MemorySource",
    "Variable",
    "VariableType",
    # Engine
    "EngineConfig",
    "GenerationResult",
    "Generator",
    "HookResult",
    "HookStatus",
    "PlannedPath",
    # Errors
    "GenerationError",
    "HookFailure",
    "StencilError",
]
