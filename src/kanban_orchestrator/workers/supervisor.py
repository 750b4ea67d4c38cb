"""Spawn, stream, time out and kill agent processes, one per session.

Each session gets a monitor thread that waits on the process with a hard
wall-clock timeout, plus one reader thread per pipe that turns output lines
into thoughts as they arrive. The process handle never leaves this module.
"""

from __future__ import annotations

import subprocess
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import IO, Callable, Optional

from loguru import logger

from ..config import OrchestratorSettings
from ..constants import DISCOVERY_SLACK_SECONDS
from ..domain.models import AgentProfile, AgentResult, SessionKind, SessionRecord, SessionStatus
from ..errors import AgentTimeoutError, SpawnError
from ..events.bus import EventBus
from ..io_utils import SessionLease, _read_log_tail, lease_is_held
from ..logging_utils import summarize_session
from ..sessions.registry import SessionRegistry
from .launcher import AgentLauncher, LaunchSpec
from .output import augment_prompt, extract_response_text, parse_agent_output
from .thoughts import ThoughtDraft, ThoughtExtractor, detect_step
from .verify import discover_output_files, expand_home, merge_discovered, verify_file_claims

FinishCallback = Callable[[SessionRecord, str], None]


@dataclass(frozen=True)
class RunSignals:
    """What was observed about a finished process."""

    killed: bool
    timed_out: bool
    timeout_seconds: float
    exit_code: Optional[int]
    response_text: str
    result: AgentResult
    output_written: bool
    stderr_tail: str = ""


@dataclass(frozen=True)
class SessionOutcome:
    status: SessionStatus
    error_type: Optional[str] = None
    error: Optional[str] = None


def _timeout_outcome(s: RunSignals) -> SessionOutcome:
    return SessionOutcome(
        "error",
        AgentTimeoutError.error_type,
        f"Agent timed out after {int(s.timeout_seconds)}s",
    )


def _agent_error_outcome(s: RunSignals) -> SessionOutcome:
    return SessionOutcome("error", "agent_error", s.result.error or s.result.result or "Agent reported STEP_ERROR")


def _exit_code_outcome(s: RunSignals) -> SessionOutcome:
    message = f"Agent exited with code {s.exit_code}"
    if s.stderr_tail.strip():
        message += f": {s.stderr_tail.strip()[-500:]}"
    return SessionOutcome("error", "exit_code", message)


# Evaluated top to bottom; the first matching rule decides the session status.
DECISION_TABLE: list[tuple[str, Callable[[RunSignals], bool], Callable[[RunSignals], SessionOutcome]]] = [
    ("killed", lambda s: s.killed, lambda s: SessionOutcome("killed", "killed", "Killed by user")),
    ("timeout", lambda s: s.timed_out, _timeout_outcome),
    ("complete_marker", lambda s: s.result.status == "complete", lambda s: SessionOutcome("complete")),
    ("output_file", lambda s: s.output_written, lambda s: SessionOutcome("complete")),
    ("error_marker", lambda s: s.result.status == "error", _agent_error_outcome),
    (
        "clean_exit",
        lambda s: s.exit_code == 0 and bool(s.response_text.strip()),
        lambda s: SessionOutcome("complete"),
    ),
    (
        "empty_output",
        lambda s: s.exit_code == 0,
        lambda s: SessionOutcome("error", "empty_output", "Agent exited cleanly but produced no output"),
    ),
    ("exit_code", lambda s: True, _exit_code_outcome),
]


def classify_outcome(signals: RunSignals) -> tuple[str, SessionOutcome]:
    """Return the name of the matching rule and its outcome."""
    for name, matches, outcome in DECISION_TABLE:
        if matches(signals):
            return name, outcome(signals)
    raise AssertionError("decision table has no fallback rule")


def _estimate_tokens(prompt: str, output: str) -> int:
    return (len(prompt) + len(output)) // 4


def _fresh_file(path: str, since: float) -> bool:
    if not path:
        return False
    target = expand_home(path)
    try:
        return target.is_file() and target.stat().st_mtime >= since - DISCOVERY_SLACK_SECONDS
    except OSError:
        return False


class AgentSupervisor:
    """Owns every agent process the orchestrator starts."""

    def __init__(
        self,
        *,
        registry: SessionRegistry,
        bus: EventBus,
        launcher: AgentLauncher,
        sessions_dir: Path,
        settings: Optional[OrchestratorSettings] = None,
        cwd: Optional[Path] = None,
    ) -> None:
        self.registry = registry
        self.bus = bus
        self.launcher = launcher
        self.sessions_dir = sessions_dir
        self.settings = settings or OrchestratorSettings()
        self.cwd = cwd or Path.cwd()
        self._lock = threading.Lock()
        self._handles: dict[str, subprocess.Popen] = {}
        self._monitors: dict[str, threading.Thread] = {}
        self._killed: set[str] = set()

    def spawn_session(
        self,
        task_id: str,
        kind: SessionKind,
        prompt: str,
        model: str,
        timeout_seconds: float,
        output_path: str | Path,
        *,
        task_title: str = "",
        total_steps: int = 0,
        output_folder: Optional[str] = None,
        profile: Optional[AgentProfile] = None,
        on_finish: Optional[FinishCallback] = None,
    ) -> SessionRecord:
        """Start one agent process for `task_id`.

        Raises:
            ConcurrencyViolation: The task already has an active session.
            SpawnError: The process could not be started; nothing is left
                registered for the task.
        """
        session = SessionRecord(
            task_id=task_id,
            kind=kind,
            model=model,
            task_title=task_title,
            total_steps=total_steps,
            output_path=str(output_path),
        )
        self.registry.register(session)

        run_dir = self.sessions_dir / session.id
        full_prompt = augment_prompt(prompt)
        lease = SessionLease(self.lease_path(session.id))
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
            if not lease.acquire():
                raise OSError(f"Session lease {lease.path} is already held")
            prompt_path = run_dir / "prompt.txt"
            prompt_path.write_text(full_prompt, encoding="utf-8")
            spec = LaunchSpec(
                session_id=session.id,
                prompt=full_prompt,
                prompt_path=prompt_path,
                model=model,
                timeout_seconds=timeout_seconds,
                output_path=str(output_path),
                run_dir=run_dir,
                cwd=self.cwd,
                profile=profile,
            )
            started_at = time.time()
            process = self.launcher.launch(spec)
        except Exception as exc:
            lease.release()
            self.registry.discard(session.id)
            logger.error("Failed to start agent for task {}: {}", task_id, exc)
            raise SpawnError(f"Failed to start agent for task {task_id}: {exc}") from exc

        session.run_dir = str(run_dir)
        logger.info(
            "Spawned {} session {} for task {} (model={}, timeout={}s, output={})",
            kind,
            session.id,
            task_id,
            model,
            int(timeout_seconds),
            output_path,
        )

        monitor = threading.Thread(
            target=self._monitor,
            args=(session, process, spec, started_at, output_folder, on_finish, lease),
            name=f"session-{session.id}",
            daemon=True,
        )
        with self._lock:
            self._handles[session.id] = process
            self._monitors[session.id] = monitor
            killed_early = session.status == "killed"
        if killed_early:
            self._terminate(process)

        self.bus.publish(
            "session-started",
            task_id=task_id,
            session_id=session.id,
            payload=session.to_dict(),
        )
        monitor.start()
        return session

    def kill_session(self, session_id: str) -> bool:
        """Terminate a running session.

        Returns:
            True if the session was running and is now killed, False if it had
            already finished.

        Raises:
            SessionNotFound: The id is unknown.
        """
        with self._lock:
            session = self.registry.mark_killed(session_id)
            if session is None:
                return False
            self._killed.add(session_id)
            process = self._handles.get(session_id)

        logger.warning("Killing session {} for task {}", session_id, session.task_id)
        if process is not None:
            self._terminate(process)
        self.bus.publish(
            "session-failed",
            task_id=session.task_id,
            session_id=session_id,
            payload=session.to_dict(),
        )
        return True

    def lease_path(self, session_id: str) -> Path:
        return self.sessions_dir / session_id / "lease"

    def session_alive(self, session_id: str) -> bool:
        """True while this or another orchestrator process still supervises `session_id`."""
        if any(session.id == session_id for session in self.registry.list_active()):
            return True
        return lease_is_held(self.lease_path(session_id))

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            process = self._handles.get(session_id)
        return process is not None and process.poll() is None

    def wait(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the session's monitor thread has finished."""
        with self._lock:
            monitor = self._monitors.get(session_id)
        if monitor is None:
            return True
        monitor.join(timeout=timeout)
        return not monitor.is_alive()

    def shutdown(self) -> None:
        for session in self.registry.list_active():
            self.kill_session(session.id)

    def _terminate(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.settings.kill_grace_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _pump(
        self,
        session: SessionRecord,
        pipe: Optional[IO[str]],
        log_path: Path,
        stream: str,
        extractor: ThoughtExtractor,
        captured: list[str],
    ) -> None:
        if pipe is None:
            return
        with open(log_path, "w", encoding="utf-8") as log:
            for line in iter(pipe.readline, ""):
                log.write(line)
                log.flush()
                captured.append(line)
                for draft in extractor.feed(line, stream):
                    self._record_thought(session, draft, stream)
        pipe.close()

    def _record_thought(self, session: SessionRecord, draft: ThoughtDraft, stream: str) -> None:
        thought = self.registry.append_thought(
            session.id,
            draft.kind,
            draft.content,
            stream=stream,
            tool_name=draft.tool_name,
        )
        if thought is None:
            return
        if draft.kind in {"text", "thinking"}:
            step = detect_step(draft.content)
            if step is not None:
                current, total = step
                self.registry.update_progress(session.id, current_step=current, total_steps=total)
        self.bus.publish(
            "session-progress",
            task_id=session.task_id,
            session_id=session.id,
            payload={
                "thought": thought.to_dict(),
                "current_step": session.current_step,
                "total_steps": session.total_steps,
            },
        )

    def _monitor(
        self,
        session: SessionRecord,
        process: subprocess.Popen,
        spec: LaunchSpec,
        started_at: float,
        output_folder: Optional[str],
        on_finish: Optional[FinishCallback],
        lease: SessionLease,
    ) -> None:
        try:
            self._supervise(session, process, spec, started_at, output_folder, on_finish)
        finally:
            lease.release()

    def _supervise(
        self,
        session: SessionRecord,
        process: subprocess.Popen,
        spec: LaunchSpec,
        started_at: float,
        output_folder: Optional[str],
        on_finish: Optional[FinishCallback],
    ) -> None:
        extractor = ThoughtExtractor()
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        stdout_path = spec.run_dir / "stdout.log"
        stderr_path = spec.run_dir / "stderr.log"
        readers = [
            threading.Thread(
                target=self._pump,
                args=(session, process.stdout, stdout_path, "stdout", extractor, stdout_lines),
                daemon=True,
            ),
            threading.Thread(
                target=self._pump,
                args=(session, process.stderr, stderr_path, "stderr", extractor, stderr_lines),
                daemon=True,
            ),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            process.wait(timeout=spec.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning("Session {} timed out after {}s; terminating", session.id, int(spec.timeout_seconds))
            self._terminate(process)

        exit_code = process.poll()
        if exit_code is None:
            exit_code = -1
        for reader in readers:
            reader.join(timeout=5)

        with self._lock:
            self._handles.pop(session.id, None)
            killed = session.id in self._killed
            self._killed.discard(session.id)
        if killed:
            logger.info("Session {} ended after kill: {}", session.id, summarize_session(session))
            return

        stdout_text = "".join(stdout_lines)
        if extractor.saw_structured:
            response_text = extractor.response_text()
        else:
            response_text = extract_response_text(stdout_text)
        (spec.run_dir / "response.txt").write_text(response_text, encoding="utf-8")

        result = parse_agent_output(response_text)
        result, _ = verify_file_claims(result)
        if output_folder:
            discovered = discover_output_files(
                expand_home(output_folder),
                started_at,
                exclude=result.files,
            )
            result = merge_discovered(result, discovered)

        signals = RunSignals(
            killed=False,
            timed_out=timed_out,
            timeout_seconds=spec.timeout_seconds,
            exit_code=exit_code,
            response_text=response_text,
            result=result,
            output_written=_fresh_file(spec.output_path, started_at),
            stderr_tail=_read_log_tail(stderr_path),
        )
        rule, outcome = classify_outcome(signals)

        tokens = result.tokens_used or extractor.usage_tokens or _estimate_tokens(spec.prompt, stdout_text)
        result = replace(result, tokens_used=tokens)
        finished = self.registry.finish(
            session.id,
            status=outcome.status,
            result=result,
            error=outcome.error,
            error_type=outcome.error_type,
            exit_code=exit_code,
            tokens_used=tokens,
            estimated_cost=round(tokens * self.settings.cost_per_token, 6),
        )
        if finished is None:
            return

        logger.info("Session finished via '{}': {}", rule, summarize_session(finished))
        event_type = "session-completed" if finished.status == "complete" else "session-failed"
        self.bus.publish(
            event_type,
            task_id=finished.task_id,
            session_id=finished.id,
            payload={**finished.to_dict(), "response_text": response_text},
        )
        if on_finish is None:
            return
        try:
            on_finish(finished, response_text)
        except Exception:
            logger.exception("Finish handler failed for session {}", finished.id)
