"""Stencil generation engine.

Turns a registered blueprint plus user values into files on disk: context
building, template expansion, dependency merging, transactional writes and
post-generation hooks.

Key classes:
    Generator             - Orchestrates generate / preview / render
    ContextBuilder        - Resolves and validates variables and flags
    TemplateExpander      - Sandboxed Jinja2 expansion of files and paths
    GenerationTransaction - Reversible log of created files and directories
    HookRunner            - Sequential post-generation commands
"""

from .context import ContextBuilder, GenerationContext
from .dependencies import build_manifest, merge_dependencies, render_manifest
from .generator import GenerationResult, Generator, PlannedPath
from .hooks import HookResult, HookRunner, HookStatus
from .templates import TemplateExpander, resolve_destination
from .transaction import GenerationTransaction, TransactionState, claim_output_root

__all__ = [
    # Orchestration
    "Generator",
    "GenerationResult",
    "PlannedPath",
    # Context
    "ContextBuilder",
    "GenerationContext",
    # Templates
    "TemplateExpander",
    "resolve_destination",
    # Dependencies
    "merge_dependencies",
    "build_manifest",
    "render_manifest",
    # Transaction
    "GenerationTransaction",
    "TransactionState",
    "claim_output_root",
    # Hooks
    "HookRunner",
    "HookResult",
    "HookStatus",
]
