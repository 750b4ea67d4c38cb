from .models import AgentProfile, AgentResult, Plan, SessionRecord, Task, Thought, compute_health

__all__ = [
    "Task",
    "Plan",
    "Thought",
    "AgentResult",
    "SessionRecord",
    "AgentProfile",
    "compute_health",
]
