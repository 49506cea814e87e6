"""Stencil engine configuration.

Typed configuration for the generation engine. Settings use a Pydantic v2
model so they are validated at construction time and can be serialised to
and from JSON or read from environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


_TRUE_STRINGS = {"1", "true", "yes", "on"}


class EngineConfig(BaseModel):
    """Tuning knobs for :class:`~stencil.engine.generator.Generator`.

    Instances are typically created once by the caller and passed to the
    generator, which hands the relevant values down to the transaction and
    the hook runner.
    """

    hook_timeout: float = Field(
        default=300, ge=1, description="Default per-hook timeout in seconds"
    )
    max_workers: int = Field(
        default=8, ge=1, description="Maximum files expanded and written concurrently"
    )
    file_mode: int = Field(default=0o644, ge=0, le=0o777)
    executable_mode: int = Field(default=0o755, ge=0, le=0o777)
    dir_mode: int = Field(default=0o755, ge=0, le=0o777)
    run_hooks: bool = Field(
        default=True, description="Run post-generation hooks after commit"
    )
    verbose: bool = Field(
        default=False, description="Print progress and rollback notices to the console"
    )

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build an ``EngineConfig`` from environment variables.

        Recognised variables (all optional):
            STENCIL_HOOK_TIMEOUT, STENCIL_MAX_WORKERS, STENCIL_RUN_HOOKS,
            STENCIL_VERBOSE.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("STENCIL_HOOK_TIMEOUT"):
            kwargs["hook_timeout"] = float(os.environ["STENCIL_HOOK_TIMEOUT"])
        if os.environ.get("STENCIL_MAX_WORKERS"):
            kwargs["max_workers"] = int(os.environ["STENCIL_MAX_WORKERS"])
        if os.environ.get("STENCIL_RUN_HOOKS"):
            kwargs["run_hooks"] = os.environ["STENCIL_RUN_HOOKS"].strip().lower() in _TRUE_STRINGS
        if os.environ.get("STENCIL_VERBOSE"):
            kwargs["verbose"] = os.environ["STENCIL_VERBOSE"].strip().lower() in _TRUE_STRINGS
        return cls(**kwargs)
