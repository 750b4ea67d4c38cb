"""Error taxonomy for the orchestration engine.

Commands raise these synchronously. Failures that happen after a session has
started are recorded on the session (``error_type``) and published as
``session-failed`` events instead of being raised to the original caller.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for orchestration failures."""

    error_type = "orchestrator_error"


class ConfigError(OrchestratorError):
    error_type = "config_error"


class StorageError(OrchestratorError):
    """A state file exists but cannot be read; it is left untouched."""

    error_type = "storage_error"


class SpawnError(OrchestratorError):
    """The agent process could not be started; the task keeps its prior state."""

    error_type = "spawn_error"


class AgentTimeoutError(OrchestratorError):
    """The agent process exceeded its wall-clock budget and was terminated."""

    error_type = "timeout"


class ExecutionError(OrchestratorError):
    """Nonzero exit without a completion marker, or an explicit STEP_ERROR."""

    error_type = "execution_error"


class GateViolation(OrchestratorError):
    """Execution was requested before the task's plan was approved."""

    error_type = "gate_violation"


class ConcurrencyViolation(OrchestratorError):
    """A session is already active for the task."""

    error_type = "concurrency_violation"


class InvalidTransition(OrchestratorError):
    error_type = "invalid_transition"

    def __init__(self, task_id: str, current: str, event: str, message: str | None = None) -> None:
        self.task_id = task_id
        self.current = current
        self.event = event
        super().__init__(message or f"Task {task_id}: cannot apply '{event}' while '{current}'")


class StaleStateError(InvalidTransition):
    """The caller's view of the task status is out of date."""

    error_type = "stale_state"


class TaskNotFound(OrchestratorError):
    error_type = "task_not_found"


class SessionNotFound(OrchestratorError):
    error_type = "session_not_found"


class PlanNotFound(OrchestratorError):
    error_type = "plan_not_found"
