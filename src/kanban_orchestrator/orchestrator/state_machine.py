"""Per-task execution lifecycle.

Every change to a task goes through this module. Commands for the same task
are serialized on a per-task lock; a caller passing `expected_status` that no
longer matches gets `StaleStateError` instead of a merged update.

The plan-first gate lives here and nowhere else: execution of a plan-first
task is refused until its plan is approved.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from loguru import logger

from ..config import OrchestratorSettings
from ..domain.models import BOARD_STATUSES, PRIORITIES, AgentProfile, Plan, SessionRecord, Task
from ..errors import (
    GateViolation,
    InvalidTransition,
    PlanNotFound,
    SpawnError,
    StaleStateError,
    TaskNotFound,
)
from ..events.bus import EventBus
from ..storage.interfaces import PlanRepository, TaskRepository
from ..utils import _now_iso
from ..workers.profiles import ProfileResolver
from ..workers.supervisor import AgentSupervisor
from ..workers.verify import expand_home
from .plans import parse_plan_steps
from .prompts import build_execution_prompt, build_planning_prompt

TRANSITIONS: dict[tuple[str, str], str] = {
    ("draft", "request_planning"): "planning",
    ("draft", "request_execution"): "executing",
    ("planning", "plan_complete"): "plan-ready",
    ("planning", "plan_failed"): "error",
    ("planning", "kill"): "error",
    ("plan-ready", "approve"): "plan-pending",
    ("plan-ready", "regenerate_plan"): "planning",
    ("plan-pending", "request_execution"): "executing",
    ("executing", "execution_complete"): "complete",
    ("executing", "execution_failed"): "error",
    ("executing", "kill"): "error",
    ("error", "request_planning"): "planning",
    ("error", "request_execution"): "executing",
}

EDITABLE_FIELDS = (
    "title",
    "description",
    "priority",
    "plan_first",
    "output_folder",
    "expected_output",
    "agent_id",
    "agent_type",
)

KILLED_NOTE = "Killed by user"
RESTART_NOTE = "Execution interrupted by orchestrator restart"


class TaskStateMachine:
    def __init__(
        self,
        *,
        tasks: TaskRepository,
        plans: PlanRepository,
        supervisor: AgentSupervisor,
        bus: EventBus,
        profiles: ProfileResolver,
        plan_output_path: Callable[[str], Path],
        settings: Optional[OrchestratorSettings] = None,
    ) -> None:
        self.tasks = tasks
        self.plans = plans
        self.supervisor = supervisor
        self.bus = bus
        self.profiles = profiles
        self.plan_output_path = plan_output_path
        self.settings = settings or OrchestratorSettings()
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def locked(self, task_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(task_id, threading.RLock())
        with lock:
            yield

    def _load(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task not found: {task_id}")
        return task

    def _ensure_expected(self, task: Task, event: str, expected_status: Optional[str]) -> None:
        if expected_status is not None and task.execution_status != expected_status:
            raise StaleStateError(
                task.id,
                task.execution_status,
                event,
                f"Task {task.id} is '{task.execution_status}', expected '{expected_status}'",
            )

    def _check(self, task: Task, event: str, expected_status: Optional[str] = None) -> str:
        self._ensure_expected(task, event, expected_status)
        destination = TRANSITIONS.get((task.execution_status, event))
        if destination is None:
            raise InvalidTransition(task.id, task.execution_status, event)
        return destination

    def _publish_task(self, event_type: str, task: Task, **extra: Any) -> None:
        self.bus.publish(event_type, task_id=task.id, payload={"task": task.to_dict(), **extra})

    def _agent_settings(self, task: Task) -> tuple[Optional[AgentProfile], str, float]:
        profile = self.profiles.resolve(task.agent_id)
        model = (profile.model if profile else None) or self.settings.default_model
        timeout = (profile.timeout_seconds if profile else None) or self.settings.default_timeout_seconds
        return profile, model, float(timeout)

    # -- board commands ----------------------------------------------------

    def create_task(self, title: str, **fields: Any) -> Task:
        if not title.strip():
            raise ValueError("Task title is required")
        task = Task(title=title.strip())
        self._apply_fields(task, fields)
        with self.locked(task.id):
            task = self.tasks.upsert(task)
            self._publish_task("task-created", task)
        logger.info("Created task {} ({})", task.id, task.title)
        return task

    def update_task(self, task_id: str, **fields: Any) -> Task:
        with self.locked(task_id):
            task = self._load(task_id)
            if "plan_first" in fields and task.execution_status in {"planning", "executing"}:
                raise InvalidTransition(
                    task.id,
                    task.execution_status,
                    "update",
                    f"Task {task.id}: cannot change plan_first while a session is running",
                )
            self._apply_fields(task, fields)
            task = self.tasks.upsert(task)
            self._publish_task("task-updated", task)
            return task

    def _apply_fields(self, task: Task, fields: dict[str, Any]) -> None:
        unknown = set(fields) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if "priority" in fields and fields["priority"] not in PRIORITIES:
            raise ValueError(f"Invalid priority '{fields['priority']}'")
        for name, value in fields.items():
            if name == "plan_first":
                value = bool(value)
            setattr(task, name, value)

    def move_task(self, task_id: str, status: str) -> Task:
        if status not in BOARD_STATUSES:
            raise ValueError(f"Invalid board status '{status}'")
        with self.locked(task_id):
            task = self._load(task_id)
            previous = task.status
            task.status = status
            task = self.tasks.upsert(task)
            self._publish_task("task-moved", task, **{"from": previous, "to": status})
            return task

    def archive_task(self, task_id: str) -> Task:
        with self.locked(task_id):
            task = self._load(task_id)
            if self.supervisor.registry.active_for_task(task.id) is not None:
                raise InvalidTransition(
                    task.id,
                    task.execution_status,
                    "archive",
                    f"Task {task.id}: cannot archive while a session is running",
                )
            task.archived = True
            task.archived_at = _now_iso()
            task = self.tasks.upsert(task)
            self._publish_task("task-archived", task)
            return task

    # -- lifecycle commands ------------------------------------------------

    def request_planning(self, task_id: str, *, expected_status: Optional[str] = None) -> SessionRecord:
        with self.locked(task_id):
            task = self._load(task_id)
            if not task.plan_first:
                raise InvalidTransition(
                    task.id,
                    task.execution_status,
                    "request_planning",
                    f"Task {task.id} does not use plan-first; request execution instead",
                )
            destination = self._check(task, "request_planning", expected_status)
            return self._start_planning(task, destination)

    def regenerate_plan(self, task_id: str, *, expected_status: Optional[str] = None) -> SessionRecord:
        with self.locked(task_id):
            task = self._load(task_id)
            destination = self._check(task, "regenerate_plan", expected_status)
            return self._start_planning(task, destination)

    def _start_planning(self, task: Task, destination: str) -> SessionRecord:
        profile, model, timeout = self._agent_settings(task)
        plan_path = self.plan_output_path(task.id)
        try:
            plan_path.parent.mkdir(parents=True, exist_ok=True)
            plan_path.unlink(missing_ok=True)
        except OSError as exc:
            raise SpawnError(f"Cannot prepare plan path for task {task.id}: {exc}") from exc
        # A fresh planning run always starts without a plan; the approval gate
        # must not pass on a plan from an earlier round.
        if self.plans.delete(task.id):
            logger.info("Discarded previous plan for task {} before replanning", task.id)

        prompt = build_planning_prompt(task, plan_path=plan_path, timeout_seconds=timeout, profile=profile)
        session = self.supervisor.spawn_session(
            task.id,
            "planning",
            prompt,
            model,
            timeout,
            plan_path,
            task_title=task.title,
            profile=profile,
            on_finish=self._on_planning_finished,
        )
        task.execution_status = destination
        task.error = None
        task.session_id = session.id
        task = self.tasks.upsert(task)
        self._publish_task("task-updated", task, session_id=session.id)
        return session

    def approve_plan(self, task_id: str, *, expected_status: Optional[str] = None) -> Plan:
        with self.locked(task_id):
            task = self._load(task_id)
            destination = self._check(task, "approve", expected_status)
            plan = self.plans.get(task.id)
            if plan is None:
                raise PlanNotFound(f"No plan for task {task.id}")
            plan.status = "approved"
            plan.approved_at = _now_iso()
            plan = self.plans.save(plan)
            task.execution_status = destination
            task = self.tasks.upsert(task)
            self.bus.publish("plan-approved", task_id=task.id, payload={"plan": plan.to_dict()})
            self._publish_task("task-updated", task)
            logger.info("Plan approved for task {}", task.id)
            return plan

    def request_execution(self, task_id: str, *, expected_status: Optional[str] = None) -> SessionRecord:
        with self.locked(task_id):
            task = self._load(task_id)
            self._ensure_expected(task, "request_execution", expected_status)
            plan = self.plans.get(task.id)
            if task.plan_first and (plan is None or not plan.approved):
                raise GateViolation(f"Task {task.id}: plan not approved")
            destination = self._check(task, "request_execution")

            profile, model, timeout = self._agent_settings(task)
            folder = expand_home(task.output_folder or self.settings.default_output_folder)
            try:
                folder.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise SpawnError(f"Cannot create output folder {folder}: {exc}") from exc
            output_path = folder / f"{task.id}-output.md"

            total_steps = len(parse_plan_steps(plan.content)) if plan is not None else 0
            prompt = build_execution_prompt(
                task,
                output_folder=str(folder),
                output_path=output_path,
                timeout_seconds=timeout,
                plan=plan if plan is not None and plan.approved else None,
                profile=profile,
            )
            session = self.supervisor.spawn_session(
                task.id,
                "executing",
                prompt,
                model,
                timeout,
                output_path,
                task_title=task.title,
                total_steps=total_steps,
                output_folder=str(folder),
                profile=profile,
                on_finish=self._on_execution_finished,
            )
            task.execution_status = destination
            task.error = None
            task.session_id = session.id
            task = self.tasks.upsert(task)
            self._publish_task("task-updated", task, session_id=session.id)
            return session

    def kill(self, task_id: str) -> bool:
        """Kill the task's running session; False when nothing was running."""
        with self.locked(task_id):
            task = self._load(task_id)
            session = self.supervisor.registry.active_for_task(task.id)
            if session is None:
                return False
            destination = self._check(task, "kill")
            if not self.supervisor.kill_session(session.id):
                return False
            task.execution_status = destination
            task.error = KILLED_NOTE
            task = self.tasks.upsert(task)
            self._publish_task("task-updated", task, session_id=session.id)
            return True

    def kill_session(self, session_id: str) -> bool:
        session = self.supervisor.registry.get(session_id)
        if session.terminal:
            return False
        with self.locked(session.task_id):
            active = self.supervisor.registry.active_for_task(session.task_id)
            if active is None or active.id != session_id:
                return False
            return self.kill(session.task_id)

    # -- session completion ------------------------------------------------

    def _on_planning_finished(self, session: SessionRecord, response_text: str) -> None:
        with self.locked(session.task_id):
            task = self.tasks.get(session.task_id)
            if task is None:
                logger.warning("Planning session {} finished for missing task {}", session.id, session.task_id)
                return
            if task.execution_status != "planning":
                logger.info("Ignoring planning result for task {} in '{}'", task.id, task.execution_status)
                return

            content = ""
            if session.status == "complete":
                plan_path = self.plan_output_path(task.id)
                if plan_path.exists():
                    content = plan_path.read_text(encoding="utf-8")
                if not content.strip():
                    content = response_text

            if session.status == "complete" and content.strip():
                plan = self.plans.save(
                    Plan(
                        task_id=task.id,
                        content=content.strip(),
                        agent_type=task.agent_type,
                        status="draft",
                        session_id=session.id,
                    )
                )
                task.execution_status = TRANSITIONS[("planning", "plan_complete")]
                task.error = None
                task = self.tasks.upsert(task)
                self.bus.publish(
                    "plan-ready",
                    task_id=task.id,
                    session_id=session.id,
                    payload={"plan": plan.to_dict(), "steps": len(parse_plan_steps(plan.content))},
                )
                self._publish_task("task-updated", task, session_id=session.id)
                return

            task.execution_status = TRANSITIONS[("planning", "plan_failed")]
            task.error = session.error or "Planning produced no plan"
            task = self.tasks.upsert(task)
            self._publish_task("task-updated", task, session_id=session.id)

    def _on_execution_finished(self, session: SessionRecord, response_text: str) -> None:
        with self.locked(session.task_id):
            task = self.tasks.get(session.task_id)
            if task is None:
                logger.warning("Execution session {} finished for missing task {}", session.id, session.task_id)
                return
            if task.execution_status != "executing":
                logger.info("Ignoring execution result for task {} in '{}'", task.id, task.execution_status)
                return

            if session.status != "complete":
                task.execution_status = TRANSITIONS[("executing", "execution_failed")]
                task.error = session.error or "Execution failed"
                task = self.tasks.upsert(task)
                self._publish_task("task-updated", task, session_id=session.id)
                return

            result = session.result
            previous = task.status
            task.execution_status = TRANSITIONS[("executing", "execution_complete")]
            task.status = "done"
            task.error = None
            task.completed_at = _now_iso()
            if result is not None:
                task.completion_summary = result.to_dict()
                for path in result.files:
                    if path not in task.files:
                        task.files.append(path)
            task = self.tasks.upsert(task)
            self.plans.delete(task.id)
            self._publish_task("task-completed", task, session_id=session.id)
            self._publish_task("task-moved", task, **{"from": previous, "to": "done"})

    def reconcile(self) -> list[str]:
        """Repair tasks left mid-session by a previous process.

        Returns:
            Ids of the tasks that were changed.
        """
        changed: list[str] = []
        for task in self.tasks.list():
            if task.execution_status not in {"planning", "executing"}:
                continue
            with self.locked(task.id):
                task = self._load(task.id)
                if task.execution_status not in {"planning", "executing"}:
                    continue
                if self.supervisor.registry.active_for_task(task.id) is not None:
                    continue
                if task.session_id and self.supervisor.session_alive(task.session_id):
                    logger.debug("Task {} is still owned by live session {}", task.id, task.session_id)
                    continue
                if task.execution_status == "planning":
                    if self.plans.get(task.id) is not None:
                        task.execution_status = "plan-ready"
                    else:
                        task.execution_status = "error"
                        task.error = "Planning interrupted by orchestrator restart"
                else:
                    task.execution_status = "error"
                    task.error = RESTART_NOTE
                task = self.tasks.upsert(task)
                self._publish_task("task-updated", task)
                changed.append(task.id)
        if changed:
            logger.warning("Reconciled {} interrupted task(s): {}", len(changed), ", ".join(changed))
        return changed
