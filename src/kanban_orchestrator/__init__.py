"""Provide the public `kanban_orchestrator` package exports."""

from __future__ import annotations

from .errors import (
    ConcurrencyViolation,
    GateViolation,
    InvalidTransition,
    OrchestratorError,
    SpawnError,
    StaleStateError,
    StorageError,
)
from .orchestrator import OrchestratorService, create_orchestrator
from .workers.output import parse_agent_output

__version__ = "0.1.0"

__all__ = [
    "ConcurrencyViolation",
    "GateViolation",
    "InvalidTransition",
    "OrchestratorError",
    "OrchestratorService",
    "SpawnError",
    "StaleStateError",
    "StorageError",
    "create_orchestrator",
    "parse_agent_output",
    "__version__",
]
