from __future__ import annotations

from pathlib import Path

import pytest

from kanban_orchestrator.workers.launcher import CommandLauncher, LaunchSpec


def _spec(tmp_path: Path, prompt: str = "Say hi") -> LaunchSpec:
    prompt_path = tmp_path / "prompt.txt"
    prompt_path.write_text(prompt, encoding="utf-8")
    return LaunchSpec(
        session_id="session-abc",
        prompt=prompt,
        prompt_path=prompt_path,
        model="anthropic/claude-sonnet-4-5",
        timeout_seconds=90.0,
        output_path=str(tmp_path / "out.md"),
        run_dir=tmp_path,
        cwd=tmp_path,
    )


def test_prompt_with_quotes_stays_single_argument(tmp_path: Path) -> None:
    launcher = CommandLauncher("agent --message {prompt} --timeout {timeout_seconds} --model {model}")

    argv = launcher.build_argv(_spec(tmp_path, prompt="It's \"quoted\"\nand multi-line"))

    assert argv == [
        "agent",
        "--message",
        "It's \"quoted\"\nand multi-line",
        "--timeout",
        "90",
        "--model",
        "anthropic/claude-sonnet-4-5",
    ]


def test_default_template_placeholders(tmp_path: Path) -> None:
    launcher = CommandLauncher(
        "openclaw agent --local --session-id {session_id} --message {prompt} --timeout {timeout_seconds} --json"
    )

    argv = launcher.build_argv(_spec(tmp_path))

    assert argv[:5] == ["openclaw", "agent", "--local", "--session-id", "session-abc"]
    assert argv[-1] == "--json"


def test_unknown_placeholder_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unknown placeholder"):
        CommandLauncher("agent {nope}").build_argv(_spec(tmp_path))


def test_command_without_prompt_input_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="stdin"):
        CommandLauncher("agent --json").launch(_spec(tmp_path))


def test_stdin_mode(tmp_path: Path) -> None:
    assert CommandLauncher("agent -").uses_stdin() is True
    assert CommandLauncher("agent {prompt_file}").uses_stdin() is False
