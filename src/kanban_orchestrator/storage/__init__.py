from .bootstrap import ensure_state_root
from .container import Container
from .file_repos import FilePlanRepository, FileSessionHistoryRepository, FileTaskRepository
from .interfaces import PlanRepository, SessionHistoryRepository, TaskRepository

__all__ = [
    "Container",
    "ensure_state_root",
    "TaskRepository",
    "PlanRepository",
    "SessionHistoryRepository",
    "FileTaskRepository",
    "FilePlanRepository",
    "FileSessionHistoryRepository",
]
