from .plans import PlanStep, parse_plan_steps
from .service import OrchestratorService, create_orchestrator
from .state_machine import TRANSITIONS, TaskStateMachine

__all__ = [
    "PlanStep",
    "parse_plan_steps",
    "OrchestratorService",
    "create_orchestrator",
    "TRANSITIONS",
    "TaskStateMachine",
]
