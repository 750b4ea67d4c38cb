from __future__ import annotations

from pathlib import Path

import yaml

from ..constants import CONFIG_FILE, PLANS_DIR_NAME, SCHEMA_VERSION, SESSIONS_DIR_NAME, STATE_DIR_NAME
from ..io_utils import _atomic_write_yaml

STATE_FILES = {
    "tasks": "tasks.yaml",
    "plans": "plans.yaml",
    "sessions": "sessions.yaml",
    "config": CONFIG_FILE,
}

DEFAULT_CONFIG = {
    "agent": {},
    "sessions": {},
    "tasks": {},
    "agents": {},
    "logging": {"level": "INFO"},
}


def ensure_state_root(project_dir: Path) -> Path:
    """Create the state root and seed any missing state files."""
    state_root = project_dir / STATE_DIR_NAME
    state_root.mkdir(parents=True, exist_ok=True)
    (state_root / SESSIONS_DIR_NAME).mkdir(exist_ok=True)
    (state_root / PLANS_DIR_NAME).mkdir(exist_ok=True)

    for name, file_name in STATE_FILES.items():
        target = state_root / file_name
        if target.exists():
            continue
        if name == "config":
            _atomic_write_yaml(target, {"schema_version": SCHEMA_VERSION, **DEFAULT_CONFIG})
        else:
            target.write_text(yaml.safe_dump({"version": SCHEMA_VERSION, name: []}), encoding="utf-8")

    return state_root
