"""Task lifecycle tests driven through real agent subprocesses."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from kanban_orchestrator.errors import (
    GateViolation,
    InvalidTransition,
    SpawnError,
    StaleStateError,
)
from kanban_orchestrator.events import Event
from kanban_orchestrator.orchestrator import create_orchestrator
from kanban_orchestrator.orchestrator.state_machine import KILLED_NOTE, RESTART_NOTE
from kanban_orchestrator.storage import Container
from kanban_orchestrator.workers import CommandLauncher

PLAN_AND_EXECUTE = """
import sys
from pathlib import Path

prompt = Path(sys.argv[1]).read_text(encoding="utf-8")
output = Path(sys.argv[2])

if "You are a planning agent" in prompt:
    output.write_text(
        "# Execution Plan: Report\\n\\n"
        "### Step 1: Gather\\n**Agent:** researcher\\n**Time:** 5 minutes\\n\\nCollect sources.\\n\\n"
        "### Step 2: Write\\n**Agent:** writer\\n**Time:** 10 minutes\\n\\nWrite it up.\\n",
        encoding="utf-8",
    )
    print("STEP_COMPLETE")
    print("Result: plan saved")
    sys.exit(0)

assert "Step 1: Gather" in prompt
print("Step 1 of 2: gathering", flush=True)
print("Step 2 of 2: writing", flush=True)
output.write_text("# Report\\n", encoding="utf-8")
ghost = output.parent / "never-written.md"
print("STEP_COMPLETE")
print("Result: Report written")
print("Files created:")
print(output)
print(ghost)
print("Notes: Tokens used: 321")
"""

SLEEPER = """
import time
print("working", flush=True)
time.sleep(30)
"""

FAILING = """
import sys
sys.exit(3)
"""

SLOW_EXECUTOR = """
import sys
import time
from pathlib import Path

print("working", flush=True)
time.sleep(2)
Path(sys.argv[2]).write_text("# Done\\n", encoding="utf-8")
print("STEP_COMPLETE")
print("Result: finished after the second service opened the project")
"""

PLAN_ONCE_THEN_FAIL = """
import sys
from pathlib import Path

runs = Path(__file__).with_suffix(".runs")
count = int(runs.read_text()) if runs.exists() else 0
runs.write_text(str(count + 1))
if count == 0:
    Path(sys.argv[2]).write_text(
        "# Execution Plan: Old\\n\\n### Step 1: Old approach\\n\\nDo it the old way.\\n",
        encoding="utf-8",
    )
    print("STEP_COMPLETE")
    print("Result: plan saved")
    sys.exit(0)
sys.exit(4)
"""


def _record(service: Any) -> list[Event]:
    events: list[Event] = []
    service.bus.subscribe(events.append)
    return events


def test_plan_first_gate_refuses_unapproved_execution(make_service, agent_command, tmp_path: Path) -> None:
    service = make_service(agent_command(SLEEPER))
    task = service.create_task("Gated", plan_first=True, output_folder=str(tmp_path / "out"))

    with pytest.raises(GateViolation, match="plan not approved"):
        service.request_execution(task.id)

    assert service.registry.list_active() == []
    assert service.get_task(task.id).execution_status == "draft"


def test_illegal_transitions_are_rejected(make_service, agent_command) -> None:
    service = make_service(agent_command(SLEEPER))
    plain = service.create_task("Plain")
    gated = service.create_task("Gated", plan_first=True)

    with pytest.raises(InvalidTransition):
        service.approve_plan(gated.id)
    with pytest.raises(InvalidTransition):
        service.request_planning(plain.id)
    with pytest.raises(InvalidTransition):
        service.regenerate_plan(gated.id)


def test_stale_expected_status_is_rejected(make_service, agent_command, tmp_path: Path) -> None:
    service = make_service(agent_command(SLEEPER))
    task = service.create_task("Stale", output_folder=str(tmp_path / "out"))

    with pytest.raises(StaleStateError):
        service.request_execution(task.id, expected_status="plan-pending")

    assert service.registry.list_active() == []


def test_plan_approve_execute_round_trip(make_service, agent_command, tmp_path: Path) -> None:
    service = make_service(agent_command(PLAN_AND_EXECUTE))
    events = _record(service)
    out = tmp_path / "out"
    task = service.create_task("Report", plan_first=True, output_folder=str(out))

    planning = service.request_planning(task.id)
    assert service.wait_for_session(planning.id, timeout=30).status == "complete"

    assert service.get_task(task.id).execution_status == "plan-ready"
    plan = service.get_plan(task.id)
    assert plan.status == "draft"
    assert [step.title for step in service.plan_steps(task.id)] == ["Gather", "Write"]

    approved = service.approve_plan(task.id, expected_status="plan-ready")
    assert approved.approved
    assert service.get_task(task.id).execution_status == "plan-pending"

    execution = service.request_execution(task.id, expected_status="plan-pending")
    assert execution.total_steps == 2
    finished = service.wait_for_session(execution.id, timeout=30)

    assert finished.status == "complete"
    assert finished.current_step == 2
    assert finished.tokens_used == 321
    assert finished.result is not None
    assert finished.result.files == (str(out / f"{task.id}-output.md"),)

    done = service.get_task(task.id)
    assert done.execution_status == "complete"
    assert done.status == "done"
    assert done.files == [str(out / f"{task.id}-output.md")]
    assert done.completion_summary["result"] == "Report written"
    assert service.container.plans.get(task.id) is None

    types = [e.type for e in events]
    for expected in (
        "plan-ready",
        "plan-approved",
        "session-started",
        "session-progress",
        "session-completed",
        "task-completed",
        "task-moved",
    ):
        assert expected in types
    assert types.index("plan-ready") < types.index("plan-approved") < types.index("task-completed")


def test_kill_moves_task_to_error_once(make_service, agent_command, tmp_path: Path) -> None:
    service = make_service(agent_command(SLEEPER))
    task = service.create_task("Long", output_folder=str(tmp_path / "out"))
    session = service.request_execution(task.id)

    assert service.kill_task(task.id) is True
    assert service.kill_task(task.id) is False
    assert service.kill_session(session.id) is False

    assert service.wait_for_session(session.id, timeout=15).status == "killed"
    killed = service.get_task(task.id)
    assert killed.execution_status == "error"
    assert killed.error == KILLED_NOTE
    assert service.registry.active_for_task(task.id) is None


def test_second_execution_request_is_refused_while_running(make_service, agent_command, tmp_path: Path) -> None:
    service = make_service(agent_command(SLEEPER))
    task = service.create_task("Busy", output_folder=str(tmp_path / "out"))
    session = service.request_execution(task.id)

    with pytest.raises(InvalidTransition):
        service.request_execution(task.id)
    with pytest.raises(InvalidTransition):
        service.archive_task(task.id)

    service.kill_session(session.id)
    service.wait_for_session(session.id, timeout=15)
    assert service.archive_task(task.id).archived


def test_failed_planning_sets_error(make_service, agent_command) -> None:
    service = make_service(agent_command(FAILING))
    task = service.create_task("Doomed", plan_first=True)

    session = service.request_planning(task.id)
    assert service.wait_for_session(session.id, timeout=30).status == "error"

    failed = service.get_task(task.id)
    assert failed.execution_status == "error"
    assert failed.error
    assert service.container.plans.get(task.id) is None


def test_spawn_failure_leaves_task_untouched(tmp_path: Path) -> None:
    from kanban_orchestrator.orchestrator import OrchestratorService

    service = OrchestratorService(Container(tmp_path / "project"), launcher=CommandLauncher("echo no-prompt"))
    task = service.create_task("Unlaunchable", output_folder=str(tmp_path / "out"))

    with pytest.raises(SpawnError):
        service.request_execution(task.id)

    assert service.get_task(task.id).execution_status == "draft"
    assert service.registry.active_for_task(task.id) is None


def test_reconcile_repairs_interrupted_tasks(tmp_path: Path) -> None:
    project = tmp_path / "project"
    container = Container(project)
    executing = container.tasks.upsert(_task("Was executing", "executing"))
    planning = container.tasks.upsert(_task("Was planning", "planning", plan_first=True))

    service = create_orchestrator(project, launcher=CommandLauncher("echo {prompt}"))

    repaired = service.get_task(executing.id)
    assert repaired.execution_status == "error"
    assert repaired.error == RESTART_NOTE
    assert service.get_task(planning.id).execution_status == "error"


def test_board_commands(make_service, agent_command) -> None:
    service = make_service(agent_command(SLEEPER))
    events = _record(service)
    task = service.create_task("Board", priority="P1")

    moved = service.move_task(task.id, "today")
    updated = service.update_task(task.id, description="more detail")

    assert moved.status == "today"
    assert updated.description == "more detail"
    assert [e.type for e in events] == ["task-moved", "task-updated"]
    assert events[0].payload["from"] == "backlog"
    with pytest.raises(ValueError):
        service.move_task(task.id, "someday")
    with pytest.raises(ValueError):
        service.update_task(task.id, status="done")


def _task(title: str, execution_status: str, **fields: Any):
    from kanban_orchestrator.domain.models import Task

    return Task(title=title, execution_status=execution_status, **fields)


def test_reconcile_leaves_tasks_owned_by_another_live_service(make_service, agent_command, tmp_path: Path) -> None:
    owner = make_service(agent_command(SLOW_EXECUTOR))
    task = owner.create_task("Long job", output_folder=str(tmp_path / "out"))
    session = owner.request_execution(task.id)

    other = create_orchestrator(tmp_path / "project", launcher=CommandLauncher("echo {prompt}"))

    assert other.reconcile() == []
    seen = other.get_task(task.id)
    assert seen.execution_status == "executing"
    assert seen.session_id == session.id
    assert other.supervisor.session_alive(session.id)

    assert owner.wait_for_session(session.id, timeout=30).status == "complete"
    assert other.get_task(task.id).execution_status == "complete"
    assert not other.supervisor.session_alive(session.id)


def test_reconcile_repairs_task_whose_session_lease_was_released(tmp_path: Path) -> None:
    project = tmp_path / "project"
    container = Container(project)
    lease = container.sessions_dir / "session-gone" / "lease"
    lease.parent.mkdir(parents=True)
    lease.write_text("", encoding="utf-8")
    task = container.tasks.upsert(_task("Orphaned", "executing", session_id="session-gone"))

    service = create_orchestrator(project, launcher=CommandLauncher("echo {prompt}"))

    repaired = service.get_task(task.id)
    assert repaired.execution_status == "error"
    assert repaired.error == RESTART_NOTE


def test_replanning_from_error_discards_the_approved_plan(make_service, agent_command, tmp_path: Path) -> None:
    service = make_service(agent_command(PLAN_ONCE_THEN_FAIL))
    task = service.create_task("Retry", plan_first=True, output_folder=str(tmp_path / "out"))

    session = service.request_planning(task.id)
    assert service.wait_for_session(session.id, timeout=30).status == "complete"
    service.approve_plan(task.id)
    session = service.request_execution(task.id)
    assert service.wait_for_session(session.id, timeout=30).status == "error"
    assert service.get_task(task.id).execution_status == "error"

    session = service.request_planning(task.id)
    assert service.container.plans.get(task.id) is None
    assert service.wait_for_session(session.id, timeout=30).status == "error"

    assert service.get_task(task.id).execution_status == "error"
    assert service.container.plans.get(task.id) is None
    with pytest.raises(GateViolation, match="plan not approved"):
        service.request_execution(task.id)
