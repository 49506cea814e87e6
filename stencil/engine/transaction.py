"""Transactional filesystem writes for one generation.

A :class:`GenerationTransaction` records every directory and file it
creates, in order. If generation fails the log is undone in reverse, which
removes exactly what this generation created and nothing else: files are
always created exclusively, so a pre-existing file is never overwritten and
therefore never deleted.

Every state change and every create happens under one lock, so once
:meth:`GenerationTransaction.rollback` has started no new operation can be
recorded behind its back.
"""

from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Union

from stencil.engine.templates import resolve_destination
from stencil.errors import FilesystemError, OutputPathInUse, TransactionClosedError

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


# ---------------------------------------------------------------------------
# Reversible operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreatedDirectory:
    path: Path

    def undo(self) -> None:
        # rmdir refuses non-empty directories, so foreign content survives.
        os.rmdir(self.path)


@dataclass(frozen=True)
class CreatedFile:
    path: Path

    def undo(self) -> None:
        self.path.unlink(missing_ok=True)


Operation = Union[CreatedDirectory, CreatedFile]


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


# ---------------------------------------------------------------------------
# GenerationTransaction
# ---------------------------------------------------------------------------


class GenerationTransaction:
    """Operation log for one generation's filesystem effects.

    Usage::

        with GenerationTransaction(root) as txn:
            txn.create_file("cmd/main.go", b"package main\\n")
            txn.commit()

    Leaving the ``with`` block without committing rolls back.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        dir_mode: int = 0o755,
        file_mode: int = 0o644,
        executable_mode: int = 0o755,
    ) -> None:
        self.root = Path(root).resolve()
        self.dir_mode = dir_mode
        self.file_mode = file_mode
        self.executable_mode = executable_mode

        self._lock = threading.Lock()
        self._state = TransactionState.OPEN
        self._operations: list[Operation] = []
        self._known_dirs: set[Path] = set()
        self._hook_results: list[Any] = []
        self._opened = False

    def __enter__(self) -> "GenerationTransaction":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is TransactionState.OPEN:
            self.rollback()

    # -- State ---------------------------------------------------------------

    @property
    def state(self) -> TransactionState:
        return self._state

    @property
    def files(self) -> list[Path]:
        """Files created by this transaction, in creation order."""
        with self._lock:
            return [op.path for op in self._operations if isinstance(op, CreatedFile)]

    @property
    def directories(self) -> list[Path]:
        with self._lock:
            return [op.path for op in self._operations if isinstance(op, CreatedDirectory)]

    @property
    def hook_results(self) -> list[Any]:
        with self._lock:
            return list(self._hook_results)

    def _require_open(self, action: str) -> None:
        if self._state is not TransactionState.OPEN:
            raise TransactionClosedError(
                f"Cannot {action}: transaction is already {self._state.value}",
                step="transaction",
            )

    # -- Operations ----------------------------------------------------------

    def open(self) -> Path:
        """Create the output root (and any missing parents), recording each."""
        with self._lock:
            self._require_open("open")
            if not self._opened:
                self._make_dirs(self.root)
                self._opened = True
        logger.debug("Opened transaction at %s", self.root)
        return self.root

    def ensure_directory(self, path: str | Path) -> Path:
        """Create *path* and its missing parents inside the output root.

        Concurrent requests for the same directory are deduplicated; only
        the directories this transaction actually created are recorded.
        """
        target = Path(path)
        if not target.is_absolute():
            target = self.root / target
        target = target.resolve()
        if target != self.root and self.root not in target.parents:
            raise FilesystemError(
                f"Directory {target} is outside the output root {self.root}",
                path=str(target),
                step="write",
            )
        with self._lock:
            self._require_open("create directory")
            self._make_dirs(target)
        return target

    def create_file(self, relative_path: str, content: bytes, *, executable: bool = False) -> Path:
        """Exclusively create a file under the root and write *content*.

        The file is recorded before any byte is written, so a failed write
        is still undone by rollback.

        Raises:
            UnsafeDestinationPath: If the path escapes the output root.
            FilesystemError: If the file already exists or cannot be written.
            TransactionClosedError: If the transaction has ended.
        """
        target = resolve_destination(self.root, relative_path)
        self.ensure_directory(target.parent)
        mode = self.executable_mode if executable else self.file_mode

        with self._lock:
            self._require_open("create file")
            try:
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
            except FileExistsError as exc:
                raise FilesystemError(
                    f"Refusing to overwrite existing file {relative_path}",
                    path=str(target),
                    cause=exc,
                    step="write",
                ) from exc
            except OSError as exc:
                raise FilesystemError(
                    f"Cannot create {relative_path}", path=str(target), cause=exc, step="write"
                ) from exc
            self._operations.append(CreatedFile(target))

        try:
            try:
                _write_all(fd, content)
            finally:
                os.close(fd)
        except OSError as exc:
            raise FilesystemError(
                f"Cannot write {relative_path}", path=str(target), cause=exc, step="write"
            ) from exc

        with self._lock:
            self._require_open("set file mode")
            try:
                # os.open applies the umask; set the exact mode explicitly.
                os.chmod(target, mode)
            except OSError as exc:
                raise FilesystemError(
                    f"Cannot set mode on {relative_path}", path=str(target), cause=exc, step="write"
                ) from exc
        return target

    def record_hook(self, result: Any) -> None:
        """Attach a hook outcome for reporting; hooks are never undone."""
        with self._lock:
            self._hook_results.append(result)

    def commit(self) -> None:
        with self._lock:
            self._require_open("commit")
            self._state = TransactionState.COMMITTED
            count = len(self._operations)
        logger.info("Committed %d operations under %s", count, self.root)

    def rollback(self) -> list[str]:
        """Undo every recorded operation in reverse order.

        Undo failures do not stop the rollback; they are logged and
        returned as messages. Rolling back twice is a no-op.

        Raises:
            TransactionClosedError: If the transaction was committed.
        """
        with self._lock:
            if self._state is TransactionState.ROLLED_BACK:
                return []
            self._require_open("roll back")
            self._state = TransactionState.ROLLED_BACK
            operations = list(reversed(self._operations))

        errors: list[str] = []
        for operation in operations:
            try:
                operation.undo()
            except OSError as exc:
                message = f"Could not undo {type(operation).__name__} {operation.path}: {exc}"
                logger.warning(message)
                errors.append(message)
        logger.info(
            "Rolled back %d operations under %s (%d errors)", len(operations), self.root, len(errors)
        )
        return errors

    # -- Internal ------------------------------------------------------------

    def _make_dirs(self, target: Path) -> None:
        """Create *target* and missing ancestors. Caller holds the lock."""
        if target in self._known_dirs:
            return
        missing: list[Path] = []
        current = target
        while not current.exists():
            missing.append(current)
            if current.parent == current:
                break
            current = current.parent
        if not current.is_dir():
            raise FilesystemError(
                f"{current} exists and is not a directory", path=str(current), step="write"
            )

        for directory in reversed(missing):
            try:
                os.mkdir(directory, self.dir_mode)
            except FileExistsError:
                if directory.is_dir():
                    continue
                raise FilesystemError(
                    f"{directory} exists and is not a directory", path=str(directory), step="write"
                ) from None
            except OSError as exc:
                raise FilesystemError(
                    f"Cannot create directory {directory}", path=str(directory), cause=exc, step="write"
                ) from exc
            self._operations.append(CreatedDirectory(directory))
        self._known_dirs.add(target)


# ---------------------------------------------------------------------------
# Output root ownership
# ---------------------------------------------------------------------------

_active_roots: set[Path] = set()
_active_lock = threading.Lock()


@contextmanager
def claim_output_root(path: str | Path) -> Iterator[Path]:
    """Hold exclusive ownership of an output root for this process.

    Raises:
        OutputPathInUse: If another generation already holds *path*.
    """
    root = Path(path).resolve()
    with _active_lock:
        if root in _active_roots:
            raise OutputPathInUse(str(root), step="claim")
        _active_roots.add(root)
    try:
        yield root
    finally:
        with _active_lock:
            _active_roots.discard(root)
