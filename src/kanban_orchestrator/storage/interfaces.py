from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..domain.models import Plan, SessionRecord, Task


class TaskRepository(ABC):
    @abstractmethod
    def list(self) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    def get(self, task_id: str) -> Optional[Task]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, task: Task) -> Task:
        raise NotImplementedError


class PlanRepository(ABC):
    @abstractmethod
    def get(self, task_id: str) -> Optional[Plan]:
        raise NotImplementedError

    @abstractmethod
    def save(self, plan: Plan) -> Plan:
        raise NotImplementedError

    @abstractmethod
    def delete(self, task_id: str) -> bool:
        raise NotImplementedError


class SessionHistoryRepository(ABC):
    @abstractmethod
    def list(self) -> list[SessionRecord]:
        raise NotImplementedError

    @abstractmethod
    def append(self, session: SessionRecord) -> None:
        raise NotImplementedError
