"""Active and finished sessions, guarded by one lock.

The registry is the single place that enforces one active session per task.
`register` is an atomic check-and-set, so two concurrent spawn requests for
the same task cannot both succeed.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Optional

from loguru import logger

from ..domain.models import AgentResult, SessionRecord, SessionStatus, Thought
from ..errors import ConcurrencyViolation, SessionNotFound, StorageError
from ..storage.interfaces import SessionHistoryRepository
from ..utils import _now_iso


class SessionRegistry:
    def __init__(
        self,
        history_repo: Optional[SessionHistoryRepository] = None,
        *,
        history_limit: int = 50,
    ) -> None:
        self._lock = threading.RLock()
        self._history_repo = history_repo
        self._history_limit = max(1, int(history_limit))
        self._active_by_task: dict[str, SessionRecord] = {}
        self._active: dict[str, SessionRecord] = {}
        self._history: list[SessionRecord] = []
        if history_repo is not None:
            self._history = history_repo.list()[: self._history_limit]

    def register(self, session: SessionRecord) -> SessionRecord:
        with self._lock:
            current = self._active_by_task.get(session.task_id)
            if current is not None:
                raise ConcurrencyViolation(
                    f"Task {session.task_id} already has an active session ({current.id})"
                )
            self._active_by_task[session.task_id] = session
            self._active[session.id] = session
            return session

    def discard(self, session_id: str) -> None:
        """Forget a session that never started."""
        with self._lock:
            session = self._active.pop(session_id, None)
            if session is not None and self._active_by_task.get(session.task_id) is session:
                del self._active_by_task[session.task_id]

    def get(self, session_id: str) -> SessionRecord:
        with self._lock:
            session = self._active.get(session_id)
            if session is not None:
                return session
            for session in self._history:
                if session.id == session_id:
                    return session
        raise SessionNotFound(f"Session not found: {session_id}")

    def active_for_task(self, task_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._active_by_task.get(task_id)

    def list_active(self) -> list[SessionRecord]:
        with self._lock:
            return list(self._active.values())

    def list_history(self, limit: Optional[int] = None) -> list[SessionRecord]:
        with self._lock:
            history = list(self._history)
        return history[:limit] if limit is not None else history

    def append_thought(
        self,
        session_id: str,
        kind: str,
        content: str,
        *,
        stream: str = "stdout",
        tool_name: Optional[str] = None,
    ) -> Optional[Thought]:
        """Append a thought in arrival order; returns None once the session is finished."""
        with self._lock:
            session = self._active.get(session_id)
            if session is None or session.terminal:
                return None
            thought = Thought(
                seq=len(session.thoughts) + 1,
                kind=kind,
                content=content,
                stream=stream,
                tool_name=tool_name,
            )
            session.thoughts.append(thought)
            session.last_activity = time.time()
            return thought

    def update_progress(
        self,
        session_id: str,
        *,
        current_step: Optional[int] = None,
        total_steps: Optional[int] = None,
    ) -> None:
        with self._lock:
            session = self._active.get(session_id)
            if session is None:
                return
            if total_steps is not None and total_steps > session.total_steps:
                session.total_steps = total_steps
            if current_step is not None and current_step > session.current_step:
                session.current_step = current_step

    def thoughts_after(self, session_id: str, cursor: int = 0) -> list[Thought]:
        """Thoughts with ``seq > cursor``; pass the last seen seq to page forward."""
        session = self.get(session_id)
        with self._lock:
            return [t for t in session.thoughts if t.seq > cursor]

    def mark_killed(self, session_id: str, note: str = "Killed by user") -> Optional[SessionRecord]:
        """Move a running session to history as killed.

        Returns:
            The session, or None when it had already finished.

        Raises:
            SessionNotFound: The id is unknown.
        """
        with self._lock:
            session = self.get(session_id)
            if session.terminal:
                return None
            session.status = "killed"
            session.error = note
            session.error_type = "killed"
            session.finished_at = _now_iso()
            self._retire(session)
            return session

    def finish(
        self,
        session_id: str,
        *,
        status: SessionStatus,
        result: Optional[AgentResult] = None,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
        exit_code: Optional[int] = None,
        tokens_used: int = 0,
        estimated_cost: float = 0.0,
    ) -> Optional[SessionRecord]:
        """Record the terminal state; returns None if a kill got there first."""
        with self._lock:
            session = self._active.get(session_id)
            if session is None or session.terminal:
                return None
            session.status = status
            session.result = result
            session.error = error
            session.error_type = error_type
            session.exit_code = exit_code
            session.tokens_used = tokens_used
            session.estimated_cost = estimated_cost
            session.finished_at = _now_iso()
            if status == "complete" and session.total_steps:
                session.current_step = session.total_steps
            self._retire(session)
            return session

    def stats(self) -> dict[str, Any]:
        with self._lock:
            finished = list(self._history)
            return {
                "active": len(self._active),
                "history": len(finished),
                "tokens_used": sum(s.tokens_used for s in finished),
                "estimated_cost": round(sum(s.estimated_cost for s in finished), 6),
            }

    def _retire(self, session: SessionRecord) -> None:
        self._active.pop(session.id, None)
        if self._active_by_task.get(session.task_id) is session:
            del self._active_by_task[session.task_id]
        self._history = [s for s in self._history if s.id != session.id]
        self._history.insert(0, session)
        del self._history[self._history_limit :]
        if self._history_repo is None:
            return
        try:
            self._history_repo.append(session)
        except (OSError, StorageError):
            logger.exception("Failed to persist session history for {}", session.id)
