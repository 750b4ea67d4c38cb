from __future__ import annotations

import shlex
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from kanban_orchestrator.orchestrator import OrchestratorService
from kanban_orchestrator.storage import Container
from kanban_orchestrator.workers import CommandLauncher


@pytest.fixture
def agent_command(tmp_path: Path) -> Callable[[str], str]:
    """Write a fake agent script and return a command template that runs it.

    The script receives the prompt file and the session output path as argv.
    """
    counter = {"n": 0}

    def _make(body: str) -> str:
        counter["n"] += 1
        script = tmp_path / "agents" / f"agent_{counter['n']}.py"
        script.parent.mkdir(parents=True, exist_ok=True)
        script.write_text(textwrap.dedent(body), encoding="utf-8")
        return f"{shlex.quote(sys.executable)} {shlex.quote(str(script))} {{prompt_file}} {{output_path}}"

    return _make


@pytest.fixture
def make_service(tmp_path: Path) -> Callable[[str], OrchestratorService]:
    services: list[OrchestratorService] = []

    def _make(command: str) -> OrchestratorService:
        service = OrchestratorService(Container(tmp_path / "project"), launcher=CommandLauncher(command))
        services.append(service)
        return service

    yield _make

    for service in services:
        service.shutdown()
        for session in service.registry.list_history():
            service.supervisor.wait(session.id, timeout=10)
