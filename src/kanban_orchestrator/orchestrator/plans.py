from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_STEP_RE = re.compile(r"^###\s*Step\s+(\d+)\s*:\s*(.+)$")
_MINUTES_RE = re.compile(r"(\d+)\s*minutes?", re.IGNORECASE)


@dataclass
class PlanStep:
    number: int
    title: str
    agent: str = "auto"
    estimated_minutes: Optional[int] = None
    instructions: str = ""


def parse_plan_steps(content: str) -> list[PlanStep]:
    """Extract ``### Step N: Title`` sections from plan markdown."""
    steps: list[PlanStep] = []
    current: Optional[PlanStep] = None
    for line in (content or "").splitlines():
        m = _STEP_RE.match(line.strip())
        if m:
            current = PlanStep(number=int(m.group(1)), title=m.group(2).strip())
            steps.append(current)
            continue
        if current is None:
            continue
        if "**Agent:**" in line:
            agent = line.split("**Agent:**", 1)[1].strip().lower()
            current.agent = re.sub(r"\s+", "-", agent) or "auto"
        elif "**Time:**" in line:
            m = _MINUTES_RE.search(line)
            if m:
                current.estimated_minutes = int(m.group(1))
        elif line.strip() and not line.startswith("#"):
            current.instructions += line + "\n"
    return steps
