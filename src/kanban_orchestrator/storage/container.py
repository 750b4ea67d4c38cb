from __future__ import annotations

from pathlib import Path

from ..config import OrchestratorSettings, load_orchestrator_config
from ..constants import PLANS_DIR_NAME, SESSIONS_DIR_NAME
from .bootstrap import ensure_state_root
from .file_repos import FilePlanRepository, FileSessionHistoryRepository, FileTaskRepository


class Container:
    """Durable state for one project directory."""

    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir.resolve()
        self.state_root = ensure_state_root(self.project_dir)
        self.settings = OrchestratorSettings.from_config(load_orchestrator_config(self.project_dir))

        self.tasks = FileTaskRepository(self.state_root / "tasks.yaml", self.state_root / "tasks.lock")
        self.plans = FilePlanRepository(self.state_root / "plans.yaml", self.state_root / "plans.lock")
        self.session_history = FileSessionHistoryRepository(
            self.state_root / "sessions.yaml",
            self.state_root / "sessions.lock",
            limit=self.settings.history_limit,
        )

    @property
    def project_id(self) -> str:
        return self.project_dir.name

    @property
    def sessions_dir(self) -> Path:
        return self.state_root / SESSIONS_DIR_NAME

    def plan_output_path(self, task_id: str) -> Path:
        return self.state_root / PLANS_DIR_NAME / task_id / "plan.md"
