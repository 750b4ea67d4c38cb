"""Load orchestrator configuration from `.kanban_orchestrator/config.yaml`."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_AGENT_COMMAND,
    DEFAULT_COST_PER_TOKEN,
    DEFAULT_HEALTH_RECENT_SECONDS,
    DEFAULT_HEALTH_STALE_SECONDS,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_KILL_GRACE_SECONDS,
    DEFAULT_MODEL,
    DEFAULT_OUTPUT_FOLDER,
    DEFAULT_TIMEOUT_SECONDS,
    STATE_DIR_NAME,
)
from .errors import ConfigError
from .io_utils import _load_data_with_error


def load_orchestrator_config(project_dir: Path) -> dict[str, Any]:
    """Load the optional orchestrator config file.

    Args:
        project_dir: Directory holding the `.kanban_orchestrator` state root.

    Returns:
        The parsed config mapping, or an empty dict when the file is missing.

    Raises:
        ConfigError: If the file exists but cannot be parsed.
    """
    path = project_dir.resolve() / STATE_DIR_NAME / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if err:
        raise ConfigError(err)
    return data


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


@dataclass(frozen=True)
class OrchestratorSettings:
    """Resolved runtime settings with defaults applied."""

    agent_command: str = DEFAULT_AGENT_COMMAND
    default_model: str = DEFAULT_MODEL
    default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    agent_env: dict[str, str] = field(default_factory=dict)
    history_limit: int = DEFAULT_HISTORY_LIMIT
    health_recent_seconds: float = DEFAULT_HEALTH_RECENT_SECONDS
    health_stale_seconds: float = DEFAULT_HEALTH_STALE_SECONDS
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    cost_per_token: float = DEFAULT_COST_PER_TOKEN
    default_output_folder: str = DEFAULT_OUTPUT_FOLDER
    agents: dict[str, dict[str, Any]] = field(default_factory=dict)
    log_level: str = "INFO"

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "OrchestratorSettings":
        agent_cfg = _as_dict(config.get("agent"))
        sessions_cfg = _as_dict(config.get("sessions"))

        command = str(agent_cfg.get("command") or DEFAULT_AGENT_COMMAND).strip()
        env = {str(k): str(v) for k, v in _as_dict(agent_cfg.get("env")).items()}

        recent = _number(sessions_cfg.get("health_recent_seconds"), DEFAULT_HEALTH_RECENT_SECONDS)
        stale = _number(sessions_cfg.get("health_stale_seconds"), DEFAULT_HEALTH_STALE_SECONDS)
        if stale < recent:
            raise ConfigError(
                f"sessions.health_stale_seconds ({stale}) must be >= health_recent_seconds ({recent})"
            )

        agents = {
            str(agent_id): dict(raw)
            for agent_id, raw in _as_dict(config.get("agents")).items()
            if isinstance(raw, dict)
        }

        return cls(
            agent_command=command,
            default_model=str(agent_cfg.get("default_model") or DEFAULT_MODEL),
            default_timeout_seconds=_number(agent_cfg.get("default_timeout_seconds"), DEFAULT_TIMEOUT_SECONDS),
            agent_env=env,
            history_limit=int(_number(sessions_cfg.get("history_limit"), DEFAULT_HISTORY_LIMIT)),
            health_recent_seconds=recent,
            health_stale_seconds=stale,
            kill_grace_seconds=_number(sessions_cfg.get("kill_grace_seconds"), DEFAULT_KILL_GRACE_SECONDS),
            cost_per_token=_number(sessions_cfg.get("cost_per_token"), DEFAULT_COST_PER_TOKEN),
            default_output_folder=str(
                _get_nested(config, "tasks", "default_output_folder") or DEFAULT_OUTPUT_FOLDER
            ),
            agents=agents,
            log_level=str(_get_nested(config, "logging", "level") or "INFO"),
        )
