"""Start agent processes from a configurable command template."""

from __future__ import annotations

import os
import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..constants import MODEL_ENV, OUTPUT_PATH_ENV
from ..domain.models import AgentProfile


@dataclass(frozen=True)
class LaunchSpec:
    """Everything a launcher needs to start one session's process."""

    session_id: str
    prompt: str
    prompt_path: Path
    model: str
    timeout_seconds: float
    output_path: str
    run_dir: Path
    cwd: Path
    profile: Optional[AgentProfile] = None
    env: dict[str, str] = field(default_factory=dict)


class AgentLauncher(ABC):
    """Starts a live process with readable stdout/stderr for a session."""

    @abstractmethod
    def launch(self, spec: LaunchSpec) -> subprocess.Popen:
        """Start the process.

        Raises:
            OSError: The executable could not be started.
            ValueError: The launch configuration is invalid.
        """
        raise NotImplementedError


class CommandLauncher(AgentLauncher):
    """Run a shell-style command template, one process per session.

    The template is split with `shlex` before placeholders are filled in, so
    a prompt containing quotes or newlines always stays a single argument.
    """

    def __init__(self, command: str, *, env: Optional[dict[str, str]] = None) -> None:
        self.command = command
        self.env = dict(env or {})

    def build_argv(self, spec: LaunchSpec) -> list[str]:
        values = {
            "prompt": spec.prompt,
            "prompt_file": str(spec.prompt_path),
            "model": spec.model,
            "timeout_seconds": str(int(spec.timeout_seconds)),
            "output_path": spec.output_path,
            "session_id": spec.session_id,
            "run_dir": str(spec.run_dir),
        }
        try:
            parts = shlex.split(self.command)
        except ValueError as exc:
            raise ValueError(f"Invalid agent command: {exc}") from exc
        if not parts:
            raise ValueError("Agent command is empty")
        try:
            return [part.format(**values) for part in parts]
        except (KeyError, IndexError) as exc:
            raise ValueError(f"Unknown placeholder in agent command: {exc}") from exc

    def uses_stdin(self) -> bool:
        return "-" in shlex.split(self.command) and not self._uses_prompt_placeholder()

    def _uses_prompt_placeholder(self) -> bool:
        return "{prompt}" in self.command or "{prompt_file}" in self.command

    def launch(self, spec: LaunchSpec) -> subprocess.Popen:
        argv = self.build_argv(spec)
        if not self._uses_prompt_placeholder() and "-" not in argv:
            raise ValueError("Agent command must include {prompt}, {prompt_file}, or '-' to accept stdin input.")

        env = os.environ.copy()
        env[OUTPUT_PATH_ENV] = spec.output_path
        env[MODEL_ENV] = spec.model
        env.update(self.env)
        env.update(spec.env)

        stdin_prompt = self.uses_stdin()
        process = subprocess.Popen(
            argv,
            cwd=spec.cwd,
            stdin=subprocess.PIPE if stdin_prompt else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            bufsize=1,
            env=env,
        )
        if stdin_prompt and process.stdin:
            try:
                process.stdin.write(spec.prompt)
                process.stdin.flush()
                process.stdin.close()
            except BrokenPipeError:
                pass
        return process
