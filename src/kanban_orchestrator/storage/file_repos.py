"""YAML-backed repositories under the project's state root.

Each collection lives in one ``<name>.yaml`` file with a sidecar ``.lock``.
Every read-modify-write runs inside `_YamlCollection.transaction`, which holds
the thread lock and the inter-process file lock for its whole duration.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

from loguru import logger

from ..constants import SCHEMA_VERSION
from ..domain.models import Plan, SessionRecord, Task
from ..errors import StorageError
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from ..utils import _now_iso
from .interfaces import PlanRepository, SessionHistoryRepository, TaskRepository

T = TypeVar("T")


class _YamlCollection(Generic[T]):
    def __init__(
        self,
        path: Path,
        lock_path: Path,
        key: str,
        loader: Callable[[dict[str, Any]], T],
        dumper: Callable[[T], dict[str, Any]],
    ) -> None:
        self.path = path
        self.key = key
        self._file_lock = FileLock(lock_path)
        self._thread_lock = threading.RLock()
        self._loader = loader
        self._dumper = dumper

    def _read(self) -> list[T]:
        data, err = _load_data_with_error(self.path, {})
        if err:
            logger.error("Refusing to use corrupted state file {}: {}", self.path, err)
            raise StorageError(err)
        items = data.get(self.key) or []
        if not isinstance(items, list):
            raise StorageError(f"{self.path.name}: '{self.key}' must be a list")
        return [self._loader(item) for item in items if isinstance(item, dict)]

    def _write(self, items: list[T]) -> None:
        _atomic_write_yaml(
            self.path,
            {"version": SCHEMA_VERSION, self.key: [self._dumper(item) for item in items]},
        )

    @contextmanager
    def transaction(self) -> Iterator[tuple[list[T], Callable[[list[T]], None]]]:
        """Yield the current items and a `save(items)` callback, under both locks."""
        with self._thread_lock, self._file_lock:
            yield self._read(), self._write

    def snapshot(self) -> list[T]:
        with self.transaction() as (items, _):
            return items


class FileTaskRepository(TaskRepository):
    def __init__(self, path: Path, lock_path: Path) -> None:
        self._collection = _YamlCollection[Task](path, lock_path, "tasks", Task.from_dict, Task.to_dict)

    def list(self) -> list[Task]:
        return self._collection.snapshot()

    def get(self, task_id: str) -> Optional[Task]:
        return next((task for task in self.list() if task.id == task_id), None)

    def upsert(self, task: Task) -> Task:
        task.updated_at = _now_iso()
        with self._collection.transaction() as (tasks, save):
            positions = {existing.id: idx for idx, existing in enumerate(tasks)}
            if task.id in positions:
                tasks[positions[task.id]] = task
            else:
                tasks.append(task)
            save(tasks)
        return task


class FilePlanRepository(PlanRepository):
    """At most one plan per task; saving replaces the previous one."""

    def __init__(self, path: Path, lock_path: Path) -> None:
        self._collection = _YamlCollection[Plan](path, lock_path, "plans", Plan.from_dict, Plan.to_dict)

    def get(self, task_id: str) -> Optional[Plan]:
        return next((plan for plan in self._collection.snapshot() if plan.task_id == task_id), None)

    def save(self, plan: Plan) -> Plan:
        with self._collection.transaction() as (plans, save):
            save([p for p in plans if p.task_id != plan.task_id] + [plan])
        return plan

    def delete(self, task_id: str) -> bool:
        with self._collection.transaction() as (plans, save):
            remaining = [p for p in plans if p.task_id != task_id]
            if len(remaining) == len(plans):
                return False
            save(remaining)
        return True


class FileSessionHistoryRepository(SessionHistoryRepository):
    """Finished sessions, newest first, capped at `limit` entries."""

    def __init__(self, path: Path, lock_path: Path, *, limit: int) -> None:
        self._limit = max(1, int(limit))
        self._collection = _YamlCollection[SessionRecord](
            path,
            lock_path,
            "sessions",
            SessionRecord.from_dict,
            lambda s: s.to_dict(include_thoughts=True),
        )

    def list(self) -> list[SessionRecord]:
        return self._collection.snapshot()

    def append(self, session: SessionRecord) -> None:
        with self._collection.transaction() as (sessions, save):
            newest_first = [session] + [s for s in sessions if s.id != session.id]
            save(newest_first[: self._limit])
