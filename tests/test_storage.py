from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from kanban_orchestrator.domain.models import Plan, SessionRecord, Task
from kanban_orchestrator.errors import StorageError
from kanban_orchestrator.storage import Container, ensure_state_root


def test_state_root_is_seeded(tmp_path: Path) -> None:
    root = ensure_state_root(tmp_path)

    for name in ("tasks.yaml", "plans.yaml", "sessions.yaml", "config.yaml"):
        assert (root / name).exists()
    assert (root / "sessions").is_dir()
    assert yaml.safe_load((root / "tasks.yaml").read_text(encoding="utf-8"))["tasks"] == []


def test_task_upsert_and_reload(tmp_path: Path) -> None:
    container = Container(tmp_path)
    task = container.tasks.upsert(Task(title="Persist me", plan_first=True))
    task.description = "changed"
    container.tasks.upsert(task)

    reloaded = Container(tmp_path).tasks.get(task.id)

    assert reloaded is not None
    assert reloaded.description == "changed"
    assert reloaded.plan_first is True
    assert len(container.tasks.list()) == 1


def test_plan_save_replaces_and_delete(tmp_path: Path) -> None:
    container = Container(tmp_path)
    container.plans.save(Plan(task_id="task-1", content="first"))
    container.plans.save(Plan(task_id="task-1", content="second", status="approved"))

    plan = container.plans.get("task-1")
    assert plan is not None
    assert plan.content == "second"
    assert plan.approved

    assert container.plans.delete("task-1") is True
    assert container.plans.delete("task-1") is False
    assert container.plans.get("task-1") is None


def test_session_history_is_capped(tmp_path: Path) -> None:
    (tmp_path / ".kanban_orchestrator").mkdir()
    (tmp_path / ".kanban_orchestrator" / "config.yaml").write_text(
        yaml.safe_dump({"sessions": {"history_limit": 2}}), encoding="utf-8"
    )
    container = Container(tmp_path)
    for n in range(3):
        container.session_history.append(SessionRecord(task_id=f"task-{n}", kind="executing", status="complete"))

    assert [s.task_id for s in container.session_history.list()] == ["task-2", "task-1"]


def test_corrupted_state_file_is_not_overwritten(tmp_path: Path) -> None:
    container = Container(tmp_path)
    tasks_file = container.state_root / "tasks.yaml"
    tasks_file.write_text("tasks: [unclosed\n", encoding="utf-8")

    with pytest.raises(StorageError):
        container.tasks.upsert(Task(title="lost"))

    assert tasks_file.read_text(encoding="utf-8") == "tasks: [unclosed\n"
