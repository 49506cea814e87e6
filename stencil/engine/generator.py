"""Generation orchestrator.

Ties the engine together. For one ``generate`` call the
:class:`Generator`:

1. builds and validates the context (no filesystem effect on failure);
2. selects files by condition and expands every destination path;
3. filters and merges dependencies;
4. claims the output root and opens a transaction;
5. loads, expands and writes the selected files concurrently;
6. writes the dependency manifest;
7. commits, then runs post-generation hooks.

Steps 1 to 3 are pure, so every authoring or input error surfaces before
the first directory is created. Any failure in steps 4 to 6, including
cancellation, rolls the transaction back before the error propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from stencil.blueprint.catalog import Catalog, CompiledBlueprint
from stencil.blueprint.models import Dependency, Hook
from stencil.blueprint.sources import TemplateSource
from stencil.config import EngineConfig
from stencil.engine.context import ContextBuilder, GenerationContext
from stencil.engine.dependencies import build_manifest, merge_dependencies, render_manifest
from stencil.engine.hooks import HookResult, HookRunner
from stencil.engine.templates import TemplateExpander, normalise_destination
from stencil.engine.transaction import GenerationTransaction, claim_output_root
from stencil.errors import (
    DuplicateDestination,
    FilesystemError,
    GenerationError,
    OutputPathNotEmpty,
    TemplateSourceNotFound,
)
from stencil.expressions import evaluate, render
from stencil.utils import format_duration, print_error, print_success, print_summary_table

logger = logging.getLogger(__name__)

_MANIFEST_SOURCE = "<manifest>"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlannedPath:
    """A selected file and where it will be written, relative to the root."""

    source: str
    destination: str
    executable: bool = False


class GenerationResult(BaseModel):
    """Summary of a committed generation."""

    blueprint_id: str
    project_path: Path
    files: list[Path] = Field(default_factory=list, description="Written files; manifest last")
    manifest_path: Optional[Path] = Field(default=None)
    dependencies: list[Dependency] = Field(default_factory=list)
    hook_results: list[HookResult] = Field(default_factory=list)
    duration: float = Field(default=0.0, ge=0)

    @property
    def failed_hooks(self) -> list[HookResult]:
        return [result for result in self.hook_results if not result.ok]


@dataclass
class _Plan:
    compiled: CompiledBlueprint
    context: GenerationContext
    files: list[PlannedPath]
    dependencies: list[Dependency]
    hooks: list[Hook]
    manifest_path: str
    source: Optional[TemplateSource]

    @property
    def blueprint_id(self) -> str:
        return self.compiled.id


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class Generator:
    """Generates projects from the blueprints of a :class:`Catalog`.

    A generator holds no per-generation state; one instance can serve
    concurrent ``generate`` calls for different output roots.

    Args:
        catalog: Registry the blueprint ids are looked up in.
        source: Template provider for blueprints registered without one.
        config: Engine tuning; defaults to ``EngineConfig()``.
    """

    def __init__(
        self,
        catalog: Catalog,
        source: TemplateSource | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.catalog = catalog
        self.source = source
        self.config = config or EngineConfig()
        self.context_builder = ContextBuilder()
        self.expander = TemplateExpander()
        self.hook_runner = HookRunner(timeout=self.config.hook_timeout, verbose=self.config.verbose)

    # -- Public API --------------------------------------------------------

    async def generate(
        self,
        blueprint_id: str,
        user_values: Mapping[str, Any] | None,
        output_root: str | Path,
        extra_dependencies: Iterable[Dependency] = (),
    ) -> GenerationResult:
        """Generate a project tree under *output_root*.

        *output_root* must not exist or must be an empty directory. On
        success every selected file and the manifest exist on disk; on
        failure nothing this call created remains.

        Raises:
            GenerationError: Any fatal error, annotated with the blueprint
                and, where known, the file, variable and step responsible.
        """
        started = time.monotonic()
        plan = self._plan(blueprint_id, user_values, extra_dependencies)
        logger.info("Generating %s into %s (%d files)", plan.blueprint_id, output_root, len(plan.files))

        with claim_output_root(output_root) as root:
            try:
                await asyncio.to_thread(_check_output_root, root)
            except GenerationError as exc:
                raise exc.annotate(blueprint_id=plan.blueprint_id)

            txn = GenerationTransaction(
                root,
                dir_mode=self.config.dir_mode,
                file_mode=self.config.file_mode,
                executable_mode=self.config.executable_mode,
            )
            try:
                await asyncio.to_thread(txn.open)
                written = await self._write_files(plan, txn)
                manifest_path = await self._write_manifest(plan, txn)
                txn.commit()
            except BaseException as exc:
                errors = txn.rollback()
                if isinstance(exc, GenerationError):
                    exc.annotate(blueprint_id=plan.blueprint_id)
                logger.warning("Generation of %s failed, rolled back: %s", plan.blueprint_id, exc)
                if self.config.verbose:
                    print_error(f"Generation failed, rolled back {root}: {exc}")
                    for message in errors:
                        print_error(message)
                raise

            hook_results: list[HookResult] = []
            if self.config.run_hooks and plan.hooks:
                hook_results = await self.hook_runner.run(plan.hooks, root)
                for hook_result in hook_results:
                    txn.record_hook(hook_result)

        result = GenerationResult(
            blueprint_id=plan.blueprint_id,
            project_path=root,
            files=written + ([manifest_path] if manifest_path else []),
            manifest_path=manifest_path,
            dependencies=plan.dependencies,
            hook_results=hook_results,
            duration=time.monotonic() - started,
        )
        logger.info(
            "Generated %s: %d files, %d failed hooks", plan.blueprint_id, len(result.files), len(result.failed_hooks)
        )
        if self.config.verbose:
            self._print_summary(result)
        return result

    def preview(
        self,
        blueprint_id: str,
        user_values: Mapping[str, Any] | None,
        extra_dependencies: Iterable[Dependency] = (),
    ) -> list[PlannedPath]:
        """Return the files ``generate`` would write, without touching the disk.

        Raises the same validation errors ``generate`` raises before its
        first write.
        """
        return list(self._plan(blueprint_id, user_values, extra_dependencies).files)

    async def render(
        self,
        blueprint_id: str,
        user_values: Mapping[str, Any] | None,
        extra_dependencies: Iterable[Dependency] = (),
    ) -> dict[str, bytes]:
        """Expand the selected files in memory.

        Returns ``{destination: content}`` in declaration order, with the
        manifest (when enabled) last. Nothing is written.
        """
        plan = self._plan(blueprint_id, user_values, extra_dependencies)
        contents = await asyncio.gather(*(self._expand(plan, planned) for planned in plan.files))
        rendered = {planned.destination: data for planned, data in zip(plan.files, contents)}
        if plan.manifest_path:
            rendered[plan.manifest_path] = self._manifest_bytes(plan)
        return rendered

    # -- Planning (pure) ---------------------------------------------------

    def _plan(
        self,
        blueprint_id: str,
        user_values: Mapping[str, Any] | None,
        extra_dependencies: Iterable[Dependency],
    ) -> _Plan:
        compiled = self.catalog.get(blueprint_id)
        blueprint = compiled.blueprint
        context = self.context_builder.build(compiled, user_values)

        manifest_path = ""
        if blueprint.manifest.enabled:
            try:
                manifest_path = normalise_destination(blueprint.manifest.path)
            except GenerationError as exc:
                raise exc.annotate(blueprint_id=blueprint_id, file=_MANIFEST_SOURCE, step="manifest")

        files: list[PlannedPath] = []
        claimed: dict[str, str] = {}
        if manifest_path:
            claimed[manifest_path] = _MANIFEST_SOURCE
        for definition, condition in zip(blueprint.files, compiled.file_conditions):
            try:
                if not evaluate(condition, context):
                    logger.debug("Skipping %s: condition %r is false", definition.source, render(condition))
                    continue
                destination = self.expander.expand_path(
                    definition.destination, context, source_id=definition.source
                )
                if destination in claimed:
                    raise DuplicateDestination(destination, claimed[destination], definition.source)
            except GenerationError as exc:
                raise exc.annotate(blueprint_id=blueprint_id, file=definition.source, step="plan")
            claimed[destination] = definition.source
            files.append(PlannedPath(definition.source, destination, definition.executable))

        selected_deps = []
        for dependency, condition in zip(blueprint.dependencies, compiled.dependency_conditions):
            try:
                if evaluate(condition, context):
                    selected_deps.append(dependency)
            except GenerationError as exc:
                raise exc.annotate(blueprint_id=blueprint_id, step=f"dependency:{dependency.module}")
        try:
            dependencies = merge_dependencies(selected_deps, extra_dependencies)
        except GenerationError as exc:
            raise exc.annotate(blueprint_id=blueprint_id, step="dependencies")
        except ValueError as exc:
            raise GenerationError(str(exc), blueprint_id=blueprint_id, step="dependencies") from exc

        hooks = [self._expand_hook(blueprint_id, hook, context) for hook in blueprint.hooks]

        source = compiled.source or self.source
        if files and source is None:
            raise TemplateSourceNotFound(
                files[0].source, "no template source configured", blueprint_id=blueprint_id, step="plan"
            )

        logger.debug(
            "Planned %s: %d of %d files, %d dependencies",
            blueprint_id, len(files), len(blueprint.files), len(dependencies),
        )
        return _Plan(compiled, context, files, dependencies, hooks, manifest_path, source)

    def _expand_hook(self, blueprint_id: str, hook: Hook, context: GenerationContext) -> Hook:
        try:
            return hook.model_copy(
                update={
                    "command": self.expander.render_string(hook.command, context, hook.name),
                    "args": tuple(self.expander.render_string(arg, context, hook.name) for arg in hook.args),
                    "work_dir": self.expander.render_string(hook.work_dir, context, hook.name),
                }
            )
        except GenerationError as exc:
            # The hook's name stands in for a file; clear it so "hook" carries it.
            exc.file = ""
            raise exc.annotate(blueprint_id=blueprint_id, hook=hook.name, step="hooks")

    # -- Writing -----------------------------------------------------------

    async def _expand(self, plan: _Plan, planned: PlannedPath) -> bytes:
        try:
            try:
                data = await asyncio.to_thread(plan.source.load, planned.source)
            except OSError as exc:
                raise FilesystemError(
                    f"Cannot read template {planned.source}", path=planned.source, cause=exc
                ) from exc
        except GenerationError as exc:
            raise exc.annotate(blueprint_id=plan.blueprint_id, file=planned.source, step="load")
        try:
            return self.expander.expand(data, plan.context, source_id=planned.source)
        except GenerationError as exc:
            raise exc.annotate(blueprint_id=plan.blueprint_id, file=planned.source, step="expand")

    async def _write_files(self, plan: _Plan, txn: GenerationTransaction) -> list[Path]:
        semaphore = asyncio.Semaphore(self.config.max_workers)

        async def write_one(planned: PlannedPath) -> Path:
            async with semaphore:
                content = await self._expand(plan, planned)
                try:
                    return await asyncio.to_thread(
                        txn.create_file, planned.destination, content, executable=planned.executable
                    )
                except GenerationError as exc:
                    raise exc.annotate(blueprint_id=plan.blueprint_id, file=planned.source, step="write")

        # Every worker finishes before the first error (in declaration
        # order) is raised, so rollback never races an in-flight write.
        outcomes = await asyncio.gather(*(write_one(p) for p in plan.files), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    async def _write_manifest(self, plan: _Plan, txn: GenerationTransaction) -> Optional[Path]:
        if not plan.manifest_path:
            return None
        try:
            return await asyncio.to_thread(txn.create_file, plan.manifest_path, self._manifest_bytes(plan))
        except GenerationError as exc:
            raise exc.annotate(blueprint_id=plan.blueprint_id, file=plan.manifest_path, step="manifest")

    def _manifest_bytes(self, plan: _Plan) -> bytes:
        blueprint = plan.compiled.blueprint
        manifest = build_manifest(
            blueprint.id,
            plan.dependencies,
            blueprint_version=blueprint.version,
            variables=plan.context.variables_dict(),
        )
        return render_manifest(manifest, blueprint.manifest.format)

    # -- Output ------------------------------------------------------------

    def _print_summary(self, result: GenerationResult) -> None:
        print_success(f"Generated {result.blueprint_id} into {result.project_path}")
        hooks_ok = len(result.hook_results) - len(result.failed_hooks)
        print_summary_table(
            {
                "Blueprint": result.blueprint_id,
                "Files": str(len(result.files)),
                "Dependencies": str(len(result.dependencies)),
                "Hooks": f"{hooks_ok}/{len(result.hook_results)} succeeded",
                "Duration": format_duration(result.duration),
            },
            title="Generation Summary",
        )


def _check_output_root(root: Path) -> None:
    if not root.exists():
        return
    if not root.is_dir():
        raise OutputPathNotEmpty(str(root), "path exists and is not a directory", step="claim")
    if any(root.iterdir()):
        raise OutputPathNotEmpty(str(root), step="claim")
