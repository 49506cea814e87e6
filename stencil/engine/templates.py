"""Jinja2 template expansion for blueprint files and destination paths.

Provides the :class:`TemplateExpander` which renders template bytes and
destination path templates against a :class:`GenerationContext`. The
environment is sandboxed, treats undefined names as errors, and exposes no
clock, randomness or environment lookups, so the same template and the
same context always expand to the same bytes.
"""

from __future__ import annotations

import re
import traceback
from pathlib import Path, PurePosixPath
from typing import Any, Mapping

from jinja2 import StrictUndefined, TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from stencil.errors import TemplateExpansionError, UnsafeDestinationPath

_TEMPLATE_FILENAME = "<template>"
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")

# Jinja2 ships these by default; they would make output non-deterministic.
_NONDETERMINISTIC_GLOBALS = ("lipsum",)
_NONDETERMINISTIC_FILTERS = ("random",)


# ---------------------------------------------------------------------------
# TemplateExpander
# ---------------------------------------------------------------------------


class TemplateExpander:
    """Expands file contents and path templates with a generation context.

    One expander can be shared by concurrent generations: the underlying
    environment holds no per-render state.
    """

    def __init__(self) -> None:
        self.env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        for name in _NONDETERMINISTIC_GLOBALS:
            self.env.globals.pop(name, None)
        for name in _NONDETERMINISTIC_FILTERS:
            self.env.filters.pop(name, None)
        self.env.filters["slugify"] = _slugify_filter
        self.env.filters["pascal_case"] = _pascal_case_filter
        self.env.filters["snake_case"] = _snake_case_filter
        self.env.filters["camel_case"] = _camel_case_filter

    # -- File contents -----------------------------------------------------

    def expand(
        self,
        template_bytes: bytes,
        ctx: Mapping[str, Any],
        source_id: str = _TEMPLATE_FILENAME,
    ) -> bytes:
        """Render *template_bytes* (UTF-8) with *ctx* and return UTF-8 bytes.

        Raises:
            TemplateExpansionError: On invalid UTF-8, a syntax error, an
                undefined name, or any other rendering failure. The line
                number is included when Jinja2 reports one.
        """
        try:
            text = template_bytes.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TemplateExpansionError(source_id, f"template is not valid UTF-8: {exc}") from exc
        return self.render_string(text, ctx, source_id).encode("utf-8")

    def render_string(self, template_string: str, ctx: Mapping[str, Any], source_id: str = _TEMPLATE_FILENAME) -> str:
        """Render an inline template string; errors are wrapped like :meth:`expand`."""
        try:
            template = self.env.from_string(template_string)
            return template.render(_as_dict(ctx))
        except TemplateSyntaxError as exc:
            raise TemplateExpansionError(source_id, exc.message or str(exc), exc.lineno) from exc
        except TemplateError as exc:
            raise TemplateExpansionError(source_id, str(exc), _template_lineno(exc)) from exc
        except Exception as exc:
            raise TemplateExpansionError(
                source_id, f"{type(exc).__name__}: {exc}", _template_lineno(exc)
            ) from exc

    # -- Destination paths -------------------------------------------------

    def expand_path(self, path_template: str, ctx: Mapping[str, Any], source_id: str = "") -> str:
        """Expand a destination path template into a safe relative posix path.

        Backslashes are treated as separators, ``.`` and empty segments are
        dropped.

        Raises:
            TemplateExpansionError: If the path template fails to render.
            UnsafeDestinationPath: If the result is empty, absolute,
                contains a ``..`` segment or a control character.
        """
        rendered = self.render_string(path_template, ctx, source_id=source_id or path_template)
        return normalise_destination(rendered)


def normalise_destination(path: str) -> str:
    """Validate and normalise an already-expanded destination path."""
    candidate = path.strip().replace("\\", "/")
    if not candidate:
        raise UnsafeDestinationPath(path, "destination is empty")
    if candidate.startswith("/") or _DRIVE_RE.match(candidate):
        raise UnsafeDestinationPath(path, "destination must be relative")
    if _CONTROL_RE.search(candidate):
        raise UnsafeDestinationPath(path, "destination contains a control character")

    parts: list[str] = []
    for part in candidate.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            raise UnsafeDestinationPath(path, "destination may not contain '..'")
        parts.append(part)
    if not parts:
        raise UnsafeDestinationPath(path, "destination is empty")
    return str(PurePosixPath(*parts))


def resolve_destination(root: str | Path, relative: str) -> Path:
    """Join *relative* onto *root* and verify the result stays inside *root*.

    The check uses resolved paths, so a symlinked directory inside the
    output root that points elsewhere is rejected as well.
    """
    base = Path(root).resolve()
    target = (base / normalise_destination(relative)).resolve()
    if target != base and base not in target.parents:
        raise UnsafeDestinationPath(relative, f"resolves outside the output root {base}")
    if target == base:
        raise UnsafeDestinationPath(relative, "resolves to the output root itself")
    return target


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------


def _slugify_filter(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    parts = re.split(r"[-_\s]+", str(value))
    return "".join(word[:1].upper() + word[1:] for word in parts if word)


def _snake_case_filter(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", str(value))
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return re.sub(r"[-\s]+", "_", s2).lower()


def _camel_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = _pascal_case_filter(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _as_dict(ctx: Mapping[str, Any]) -> dict[str, Any]:
    as_dict = getattr(ctx, "as_dict", None)
    if callable(as_dict):
        return as_dict()
    return dict(ctx)


def _template_lineno(exc: BaseException) -> int | None:
    lineno = getattr(exc, "lineno", None)
    if isinstance(lineno, int):
        return lineno
    # Jinja2 rewrites tracebacks so template frames carry the template's
    # filename and line numbers.
    found = None
    for frame in traceback.extract_tb(exc.__traceback__):
        if frame.filename == _TEMPLATE_FILENAME:
            found = frame.lineno
    return found
