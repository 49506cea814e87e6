"""Template source providers.

A provider yields the raw bytes of a blueprint's template files. Providers
are side-effect free and idempotent: loading the same path twice returns
the same bytes. Two implementations ship with Stencil, one backed by a
directory on disk and one backed by an in-memory mapping (handy for tests
and for blueprints embedded in Python code).
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from stencil.errors import TemplateSourceNotFound


@runtime_checkable
class TemplateSource(Protocol):
    """Anything that can load template bytes by source path."""

    def load(self, source_path: str) -> bytes:
        ...


def _normalise_source_path(source_path: str) -> str:
    """Return a clean relative posix path, rejecting traversal."""
    path = PurePosixPath(source_path.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        raise TemplateSourceNotFound(source_path, "source paths must stay inside the blueprint")
    parts = [p for p in path.parts if p not in ("", ".")]
    if not parts:
        raise TemplateSourceNotFound(source_path, "empty source path")
    return "/".join(parts)


class DirectorySource:
    """Loads templates from a directory on disk."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def load(self, source_path: str) -> bytes:
        relative = _normalise_source_path(source_path)
        path = self.root / relative
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise TemplateSourceNotFound(source_path, f"not found under {self.root}") from None
        except IsADirectoryError:
            raise TemplateSourceNotFound(source_path, "is a directory") from None

    def exists(self, source_path: str) -> bool:
        try:
            relative = _normalise_source_path(source_path)
        except TemplateSourceNotFound:
            return False
        return (self.root / relative).is_file()

    def __repr__(self) -> str:
        return f"DirectorySource({str(self.root)!r})"


class MemorySource:
    """Loads templates from an in-memory ``{source_path: content}`` mapping."""

    def __init__(self, files: Mapping[str, str | bytes]) -> None:
        self._files: dict[str, bytes] = {}
        for key, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else bytes(content)
            self._files[_normalise_source_path(key)] = data

    def load(self, source_path: str) -> bytes:
        try:
            return self._files[_normalise_source_path(source_path)]
        except KeyError:
            raise TemplateSourceNotFound(source_path) from None

    def exists(self, source_path: str) -> bool:
        try:
            return _normalise_source_path(source_path) in self._files
        except TemplateSourceNotFound:
            return False

    def __len__(self) -> int:
        return len(self._files)
