from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Literal, Optional

from ..utils import _new_id, _now_iso

BoardStatus = Literal["backlog", "today", "tomorrow", "done"]
Priority = Literal["P0", "P1", "P2", "P3"]
ExecutionStatus = Literal[
    "draft",
    "plan-pending",
    "planning",
    "plan-ready",
    "executing",
    "error",
    "complete",
]
SessionKind = Literal["planning", "executing"]
SessionStatus = Literal["running", "complete", "error", "killed"]
Health = Literal["healthy", "slow", "stale"]
ThoughtKind = Literal["thinking", "text", "tool", "toolResult"]
ResultStatus = Literal["complete", "error", "unknown"]
PlanStatus = Literal["draft", "approved"]

BOARD_STATUSES = ("backlog", "today", "tomorrow", "done")
PRIORITIES = ("P0", "P1", "P2", "P3")
TERMINAL_SESSION_STATUSES = frozenset({"complete", "error", "killed"})


@dataclass
class Task:
    id: str = field(default_factory=lambda: _new_id("task"))
    title: str = ""
    description: str = ""
    status: BoardStatus = "backlog"
    priority: Priority = "P2"
    execution_status: ExecutionStatus = "draft"
    plan_first: bool = False
    output_folder: str = ""
    expected_output: Optional[str] = None
    files: list[str] = field(default_factory=list)
    completion_summary: Optional[dict[str, Any]] = None
    agent_id: Optional[str] = None
    session_id: Optional[str] = None
    agent_type: str = "auto"
    error: Optional[str] = None
    archived: bool = False
    archived_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        payload = {k: data.get(k) for k in cls.__dataclass_fields__ if k in data}
        payload["id"] = str(data.get("id") or _new_id("task"))
        payload["title"] = str(data.get("title") or "")
        payload["description"] = str(data.get("description") or "")
        payload["status"] = str(data.get("status") or "backlog")
        payload["priority"] = str(data.get("priority") or "P2")
        payload["execution_status"] = str(data.get("execution_status") or "draft")
        payload["plan_first"] = bool(data.get("plan_first"))
        payload["output_folder"] = str(data.get("output_folder") or "")
        payload["agent_type"] = str(data.get("agent_type") or "auto")
        payload["archived"] = bool(data.get("archived"))
        payload["files"] = [str(f) for f in list(data.get("files") or [])]
        payload["metadata"] = dict(data.get("metadata") or {})
        return cls(**payload)


@dataclass
class Plan:
    """Agent-produced approach for a task; one per task, latest wins."""

    task_id: str = ""
    content: str = ""
    agent_type: str = "auto"
    status: PlanStatus = "draft"
    session_id: Optional[str] = None
    created_at: str = field(default_factory=_now_iso)
    approved_at: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.status == "approved"

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "content": self.content,
            "metadata": {
                "agent_type": self.agent_type,
                "created_at": self.created_at,
                "status": self.status,
                "approved_at": self.approved_at,
                "session_id": self.session_id,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Plan":
        meta = dict(data.get("metadata") or {})
        return cls(
            task_id=str(data.get("task_id") or ""),
            content=str(data.get("content") or ""),
            agent_type=str(meta.get("agent_type") or "auto"),
            status="approved" if meta.get("status") == "approved" else "draft",
            session_id=meta.get("session_id"),
            created_at=str(meta.get("created_at") or _now_iso()),
            approved_at=meta.get("approved_at"),
        )


@dataclass
class Thought:
    seq: int
    kind: ThoughtKind
    content: str
    stream: str = "stdout"
    tool_name: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Thought":
        return cls(
            seq=int(data.get("seq") or 0),
            kind=str(data.get("kind") or "text"),
            content=str(data.get("content") or ""),
            stream=str(data.get("stream") or "stdout"),
            tool_name=data.get("tool_name"),
            timestamp=str(data.get("timestamp") or _now_iso()),
        )


@dataclass(frozen=True)
class AgentResult:
    """Structured outcome parsed from a session's final output."""

    status: ResultStatus = "unknown"
    result: str = ""
    files: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()
    notes: str = ""
    error: Optional[str] = None
    tokens_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "result": self.result,
            "files": list(self.files),
            "urls": list(self.urls),
            "notes": self.notes,
            "error": self.error,
            "tokens_used": self.tokens_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentResult":
        return cls(
            status=str(data.get("status") or "unknown"),
            result=str(data.get("result") or ""),
            files=tuple(str(f) for f in list(data.get("files") or [])),
            urls=tuple(str(u) for u in list(data.get("urls") or [])),
            notes=str(data.get("notes") or ""),
            error=data.get("error"),
            tokens_used=int(data.get("tokens_used") or 0),
        )


def compute_health(
    last_activity: float,
    *,
    now: float,
    recent_seconds: float,
    stale_seconds: float,
) -> Health:
    """Derive liveness from the time since the last output."""
    silence = max(0.0, now - last_activity)
    if silence <= recent_seconds:
        return "healthy"
    if silence <= stale_seconds:
        return "slow"
    return "stale"


@dataclass
class SessionRecord:
    """One spawned agent process and its accumulated output.

    The process handle itself stays inside the supervisor; this record only
    carries observable state.
    """

    task_id: str
    kind: SessionKind
    id: str = field(default_factory=lambda: _new_id("session"))
    status: SessionStatus = "running"
    model: str = ""
    task_title: str = ""
    started_at: str = field(default_factory=_now_iso)
    finished_at: Optional[str] = None
    current_step: int = 0
    total_steps: int = 0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    thoughts: list[Thought] = field(default_factory=list)
    result: Optional[AgentResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    exit_code: Optional[int] = None
    output_path: str = ""
    run_dir: str = ""
    last_activity: float = field(default_factory=time.time)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def health(
        self,
        *,
        recent_seconds: float,
        stale_seconds: float,
        now: Optional[float] = None,
    ) -> Health:
        if self.terminal:
            return "healthy"
        return compute_health(
            self.last_activity,
            now=time.time() if now is None else now,
            recent_seconds=recent_seconds,
            stale_seconds=stale_seconds,
        )

    def to_dict(self, *, include_thoughts: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "task_id": self.task_id,
            "task_title": self.task_title,
            "kind": self.kind,
            "status": self.status,
            "model": self.model,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "tokens_used": self.tokens_used,
            "estimated_cost": self.estimated_cost,
            "thought_count": len(self.thoughts),
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "error_type": self.error_type,
            "exit_code": self.exit_code,
            "output_path": self.output_path,
            "run_dir": self.run_dir,
        }
        if include_thoughts:
            data["thoughts"] = [t.to_dict() for t in self.thoughts]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionRecord":
        result = data.get("result")
        return cls(
            id=str(data.get("id") or _new_id("session")),
            task_id=str(data.get("task_id") or ""),
            kind="planning" if data.get("kind") == "planning" else "executing",
            status=str(data.get("status") or "error"),
            model=str(data.get("model") or ""),
            task_title=str(data.get("task_title") or ""),
            started_at=str(data.get("started_at") or _now_iso()),
            finished_at=data.get("finished_at"),
            current_step=int(data.get("current_step") or 0),
            total_steps=int(data.get("total_steps") or 0),
            tokens_used=int(data.get("tokens_used") or 0),
            estimated_cost=float(data.get("estimated_cost") or 0.0),
            thoughts=[Thought.from_dict(t) for t in list(data.get("thoughts") or []) if isinstance(t, dict)],
            result=AgentResult.from_dict(result) if isinstance(result, dict) else None,
            error=data.get("error"),
            error_type=data.get("error_type"),
            exit_code=data.get("exit_code"),
            output_path=str(data.get("output_path") or ""),
            run_dir=str(data.get("run_dir") or ""),
        )


@dataclass(frozen=True)
class AgentProfile:
    """Opaque agent configuration passed through to the launcher."""

    id: str
    name: str = ""
    agent_type: str = "auto"
    description: str = ""
    model: Optional[str] = None
    system_prompt: str = ""
    timeout_seconds: Optional[float] = None
    permissions: dict[str, Any] = field(default_factory=dict)
