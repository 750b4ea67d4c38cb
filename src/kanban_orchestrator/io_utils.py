"""File helpers for the YAML state root: inter-process locks, atomic writes, tolerant reads."""

from __future__ import annotations

import os
from pathlib import Path
from typing import IO, Any, Optional

import yaml

from .constants import WINDOWS_LOCK_BYTES


def _lock_handle(handle: IO[str], *, blocking: bool = True) -> None:
    """Take an exclusive lock; raises OSError when `blocking` is False and it is held."""
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        handle.truncate(WINDOWS_LOCK_BYTES)
        handle.flush()
        mode = msvcrt.LK_LOCK if blocking else msvcrt.LK_NBLCK
        msvcrt.locking(handle.fileno(), mode, WINDOWS_LOCK_BYTES)
        return
    import fcntl

    fcntl.flock(handle, fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_handle(handle: IO[str]) -> None:
    if os.name == "nt":
        import msvcrt

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, WINDOWS_LOCK_BYTES)
        return
    import fcntl

    fcntl.flock(handle, fcntl.LOCK_UN)


class FileLock:
    """Exclusive lock on a sidecar ``.lock`` file, held for the ``with`` block.

    Serializes read-modify-write cycles on one state file across processes
    (a CLI invocation and a running server share the same state root).
    """

    def __init__(self, lock_path: Path) -> None:
        self.lock_path = lock_path
        self._handle: Optional[IO[str]] = None

    def __enter__(self) -> "FileLock":
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self.lock_path, "a+", encoding="utf-8")
        _lock_handle(self._handle)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            _unlock_handle(handle)
        finally:
            handle.close()


class SessionLease:
    """Exclusive lock held by the process that owns a running session.

    The operating system drops the lock when the owner exits, so another
    process can tell a live session from one orphaned by a crash.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> bool:
        """Take the lease without waiting; False when another holder has it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        try:
            _lock_handle(handle, blocking=False)
        except OSError:
            handle.close()
            return False
        self._handle = handle
        return True

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            _unlock_handle(handle)
        finally:
            handle.close()


def lease_is_held(path: Path) -> bool:
    """True when some open handle (in any process) holds the lease at `path`."""
    if not path.exists():
        return False
    lease = SessionLease(path)
    if lease.acquire():
        lease.release()
        return False
    return True


def _atomic_write_yaml(path: Path, data: dict[str, Any]) -> None:
    """Write `data` next to `path` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    staging = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    with open(staging, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False, allow_unicode=True)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(staging, path)


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """Read a YAML mapping.

    Returns:
        ``(data, error)``. A missing or empty file yields ``(default, None)``;
        unreadable or non-mapping content yields ``(default, message)`` so the
        caller can refuse to overwrite it.
    """
    if not path.exists():
        return default, None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: invalid YAML: {exc}"
    if data is None:
        return default, None
    if not isinstance(data, dict):
        return default, f"{path.name}: expected a mapping, got {type(data).__name__}"
    return data, None


def _read_log_tail(path: Path, max_chars: int = 2000) -> str:
    """Last `max_chars` of a run log, cut at a line boundary when possible."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    if len(text) <= max_chars:
        return text
    tail = text[-max_chars:]
    newline = tail.find("\n")
    return tail[newline + 1 :] if 0 <= newline < len(tail) - 1 else tail
