"""Post-generation hook execution.

Hooks run strictly one after another against a committed project tree.
A hook that fails or times out is recorded in its :class:`HookResult` and
the runner moves on to the next one; nothing here can undo the generated
files.
"""

from __future__ import annotations

import logging
import shlex
import time
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from stencil.blueprint.models import Hook
from stencil.errors import HookFailure, HookTimeout
from stencil.utils import print_warning, run_command

logger = logging.getLogger(__name__)

# Commands containing any of these need a shell to mean what they say.
_SHELL_CHARS = set("*?[]{}|&;<>$`~")


class HookStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class HookResult(BaseModel):
    """Outcome of a single hook run."""

    name: str
    command: str = Field(default="")
    status: HookStatus
    returncode: Optional[int] = Field(default=None)
    output: str = Field(default="")
    duration: float = Field(default=0.0, ge=0)
    timeout: Optional[float] = Field(default=None, description="Effective timeout in seconds, once the hook ran")
    error: str = Field(default="", description="Why the hook did not succeed")

    @property
    def ok(self) -> bool:
        return self.status is HookStatus.SUCCEEDED

    def raise_for_status(self) -> None:
        """Raise :class:`HookTimeout` or :class:`HookFailure` unless the hook succeeded."""
        if self.status is HookStatus.TIMED_OUT:
            limit = self.timeout if self.timeout is not None else self.duration
            raise HookTimeout(self.name, limit, output=self.output)
        if self.status is HookStatus.FAILED:
            raise HookFailure(self.name, self.error or "non-zero exit", output=self.output)


def build_command(hook: Hook) -> str | list[str]:
    """Return what :func:`~stencil.utils.run_command` should execute.

    Explicit ``args`` are executed directly. A command string containing
    glob or shell metacharacters runs through the shell; anything else is
    split shell-style and executed directly.
    """
    if hook.args:
        return [hook.command, *hook.args]
    if not hook.command.strip():
        raise ValueError("command is empty")
    if any(char in _SHELL_CHARS for char in hook.command):
        return hook.command
    return shlex.split(hook.command)


class HookRunner:
    """Runs a blueprint's post-generation hooks in declaration order."""

    def __init__(self, timeout: float = 300, verbose: bool = False) -> None:
        self.timeout = timeout
        self.verbose = verbose

    async def run(self, hooks: Iterable[Hook], project_root: str | Path) -> list[HookResult]:
        """Run every hook sequentially and return one result per hook."""
        results: list[HookResult] = []
        for hook in hooks:
            result = await self.run_one(hook, project_root)
            results.append(result)
            if not result.ok:
                logger.warning("Hook %s %s: %s", hook.name, result.status.value, result.error)
                if self.verbose:
                    print_warning(f"Hook '{hook.name}' {result.status.value}: {result.error}")
        return results

    async def run_one(self, hook: Hook, project_root: str | Path) -> HookResult:
        root = Path(project_root).resolve()
        display = " ".join([hook.command, *hook.args])

        cwd = (root / hook.work_dir).resolve() if hook.work_dir else root
        if cwd != root and root not in cwd.parents:
            return HookResult(
                name=hook.name,
                command=display,
                status=HookStatus.FAILED,
                error=f"working directory {hook.work_dir!r} is outside the project root",
            )
        if not cwd.is_dir():
            return HookResult(
                name=hook.name,
                command=display,
                status=HookStatus.FAILED,
                error=f"working directory {hook.work_dir!r} does not exist",
            )

        try:
            cmd = build_command(hook)
        except ValueError as exc:
            return HookResult(
                name=hook.name, command=display, status=HookStatus.FAILED,
                error=f"cannot parse command: {exc}",
            )

        timeout = hook.timeout or self.timeout
        logger.debug("Running hook %s in %s: %s", hook.name, cwd, display)
        started = time.monotonic()
        try:
            outcome = await run_command(cmd, cwd=cwd, timeout=timeout)
        except OSError as exc:
            # Executable not found or not runnable.
            return HookResult(
                name=hook.name,
                command=display,
                status=HookStatus.FAILED,
                duration=time.monotonic() - started,
                timeout=timeout,
                error=str(exc),
            )

        if outcome.timed_out:
            return HookResult(
                name=hook.name,
                command=display,
                status=HookStatus.TIMED_OUT,
                returncode=outcome.returncode,
                output=outcome.output,
                duration=outcome.duration,
                timeout=timeout,
                error=f"timed out after {timeout:g}s",
            )
        if outcome.returncode != 0:
            return HookResult(
                name=hook.name,
                command=display,
                status=HookStatus.FAILED,
                returncode=outcome.returncode,
                output=outcome.output,
                duration=outcome.duration,
                timeout=timeout,
                error=f"exited with status {outcome.returncode}",
            )
        return HookResult(
            name=hook.name,
            command=display,
            status=HookStatus.SUCCEEDED,
            returncode=0,
            output=outcome.output,
            duration=outcome.duration,
            timeout=timeout,
        )
