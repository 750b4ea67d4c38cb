from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from ..domain.models import AgentResult, Plan, SessionRecord, Task, Thought
from ..errors import PlanNotFound, TaskNotFound
from ..events.bus import EventBus
from ..sessions.registry import SessionRegistry
from ..storage.container import Container
from ..workers.launcher import AgentLauncher, CommandLauncher
from ..workers.profiles import ConfigProfileResolver, ProfileResolver
from ..workers.supervisor import AgentSupervisor
from .plans import PlanStep, parse_plan_steps
from .state_machine import TaskStateMachine


class OrchestratorService:
    """Wires the engine together and exposes its commands and queries."""

    def __init__(
        self,
        container: Container,
        bus: Optional[EventBus] = None,
        *,
        launcher: Optional[AgentLauncher] = None,
        profiles: Optional[ProfileResolver] = None,
    ) -> None:
        self.container = container
        self.settings = container.settings
        self.bus = bus or EventBus()
        self.registry = SessionRegistry(container.session_history, history_limit=self.settings.history_limit)
        self.profiles = profiles or ConfigProfileResolver(self.settings.agents)
        self.supervisor = AgentSupervisor(
            registry=self.registry,
            bus=self.bus,
            launcher=launcher or CommandLauncher(self.settings.agent_command, env=self.settings.agent_env),
            sessions_dir=container.sessions_dir,
            settings=self.settings,
            cwd=container.project_dir,
        )
        self.state_machine = TaskStateMachine(
            tasks=container.tasks,
            plans=container.plans,
            supervisor=self.supervisor,
            bus=self.bus,
            profiles=self.profiles,
            plan_output_path=container.plan_output_path,
            settings=self.settings,
        )

    # -- commands ----------------------------------------------------------

    def create_task(self, title: str, **fields: Any) -> Task:
        return self.state_machine.create_task(title, **fields)

    def update_task(self, task_id: str, **fields: Any) -> Task:
        return self.state_machine.update_task(task_id, **fields)

    def move_task(self, task_id: str, status: str) -> Task:
        return self.state_machine.move_task(task_id, status)

    def archive_task(self, task_id: str) -> Task:
        return self.state_machine.archive_task(task_id)

    def request_planning(self, task_id: str, *, expected_status: Optional[str] = None) -> SessionRecord:
        return self.state_machine.request_planning(task_id, expected_status=expected_status)

    def regenerate_plan(self, task_id: str, *, expected_status: Optional[str] = None) -> SessionRecord:
        return self.state_machine.regenerate_plan(task_id, expected_status=expected_status)

    def approve_plan(self, task_id: str, *, expected_status: Optional[str] = None) -> Plan:
        return self.state_machine.approve_plan(task_id, expected_status=expected_status)

    def request_execution(self, task_id: str, *, expected_status: Optional[str] = None) -> SessionRecord:
        return self.state_machine.request_execution(task_id, expected_status=expected_status)

    def kill_session(self, session_id: str) -> bool:
        return self.state_machine.kill_session(session_id)

    def kill_task(self, task_id: str) -> bool:
        return self.state_machine.kill(task_id)

    def reconcile(self) -> list[str]:
        return self.state_machine.reconcile()

    def wait_for_session(self, session_id: str, timeout: Optional[float] = None) -> SessionRecord:
        self.supervisor.wait(session_id, timeout=timeout)
        return self.registry.get(session_id)

    def shutdown(self) -> None:
        active = self.registry.list_active()
        if active:
            logger.warning("Shutting down with {} active session(s)", len(active))
        for session in active:
            self.kill_session(session.id)

    # -- queries -----------------------------------------------------------

    def list_tasks(self, *, include_archived: bool = False) -> list[Task]:
        tasks = self.container.tasks.list()
        if include_archived:
            return tasks
        return [task for task in tasks if not task.archived]

    def get_task(self, task_id: str) -> Task:
        task = self.container.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task not found: {task_id}")
        return task

    def get_plan(self, task_id: str) -> Plan:
        plan = self.container.plans.get(task_id)
        if plan is None:
            raise PlanNotFound(f"No plan for task {task_id}")
        return plan

    def plan_steps(self, task_id: str) -> list[PlanStep]:
        return parse_plan_steps(self.get_plan(task_id).content)

    def describe_session(self, session: SessionRecord, *, include_thoughts: bool = False) -> dict[str, Any]:
        data = session.to_dict(include_thoughts=include_thoughts)
        data["health"] = session.health(
            recent_seconds=self.settings.health_recent_seconds,
            stale_seconds=self.settings.health_stale_seconds,
            now=time.time(),
        )
        return data

    def active_sessions(self) -> list[dict[str, Any]]:
        return [self.describe_session(s) for s in self.registry.list_active()]

    def session_history(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        return [self.describe_session(s) for s in self.registry.list_history(limit)]

    def get_session(self, session_id: str) -> SessionRecord:
        return self.registry.get(session_id)

    def thoughts(self, session_id: str, cursor: int = 0) -> list[Thought]:
        return self.registry.thoughts_after(session_id, cursor)

    def session_result(self, session_id: str) -> Optional[AgentResult]:
        return self.registry.get(session_id).result

    def status(self) -> dict[str, Any]:
        tasks = self.list_tasks()
        by_status: dict[str, int] = {}
        for task in tasks:
            by_status[task.execution_status] = by_status.get(task.execution_status, 0) + 1
        return {
            "project": self.container.project_id,
            "tasks": len(tasks),
            "execution_status": by_status,
            "sessions": self.registry.stats(),
        }


def create_orchestrator(
    project_dir: Path,
    *,
    launcher: Optional[AgentLauncher] = None,
    bus: Optional[EventBus] = None,
    reconcile: bool = True,
) -> OrchestratorService:
    """Build an orchestrator for `project_dir`, repairing interrupted tasks."""
    service = OrchestratorService(Container(project_dir), bus, launcher=launcher)
    if reconcile:
        service.reconcile()
    return service
