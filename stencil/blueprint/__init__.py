"""Blueprint definitions, template sources and the blueprint catalog.

Key classes:
    Blueprint         - Frozen description of one generatable project
    Catalog           - Load-once registry that compiles blueprint conditions
    DirectorySource   - Template provider backed by a directory
    MemorySource      - Template provider backed by an in-memory mapping
"""

from .catalog import Catalog, CompiledBlueprint, compile_blueprint
from .models import (
    Blueprint,
    Dependency,
    FeatureFlag,
    FileDefinition,
    Hook,
    ManifestSettings,
    Variable,
    VariableType,
)
from .sources import DirectorySource, MemorySource, TemplateSource

__all__ = [
    # Models
    "Blueprint",
    "Dependency",
    "FeatureFlag",
    "FileDefinition",
    "Hook",
    "ManifestSettings",
    "Variable",
    "VariableType",
    # Catalog
    "Catalog",
    "CompiledBlueprint",
    "compile_blueprint",
    # Sources
    "DirectorySource",
    "MemorySource",
    "TemplateSource",
]
