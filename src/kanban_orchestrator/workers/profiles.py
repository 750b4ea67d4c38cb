"""Resolve agent ids to the profile bundle handed to the launcher."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..domain.models import AgentProfile


class ProfileResolver(ABC):
    @abstractmethod
    def resolve(self, agent_id: Optional[str]) -> Optional[AgentProfile]:
        raise NotImplementedError

    @abstractmethod
    def list(self) -> list[AgentProfile]:
        raise NotImplementedError


def _profile_from_config(agent_id: str, raw: dict[str, Any]) -> AgentProfile:
    timeout = raw.get("timeout")
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        timeout = None
    return AgentProfile(
        id=agent_id,
        name=str(raw.get("name") or agent_id),
        agent_type=str(raw.get("type") or "auto"),
        description=str(raw.get("description") or ""),
        model=str(raw["model"]) if raw.get("model") else None,
        system_prompt=str(raw.get("prompt") or ""),
        timeout_seconds=float(timeout) if timeout is not None else None,
        permissions=dict(raw.get("permissions") or {}),
    )


class ConfigProfileResolver(ProfileResolver):
    """Profiles declared under ``agents:`` in config.yaml."""

    def __init__(self, agents: dict[str, dict[str, Any]]) -> None:
        self._profiles = {agent_id: _profile_from_config(agent_id, raw) for agent_id, raw in agents.items()}

    def resolve(self, agent_id: Optional[str]) -> Optional[AgentProfile]:
        if not agent_id:
            return None
        return self._profiles.get(agent_id)

    def list(self) -> list[AgentProfile]:
        return list(self._profiles.values())
