"""Prompt templates for planning and execution sessions.

The output-contract footer is appended later by the supervisor.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..domain.models import AgentProfile, Plan, Task


def _system_section(profile: Optional[AgentProfile]) -> str:
    if profile is None or not profile.system_prompt.strip():
        return ""
    return f"{profile.system_prompt.strip()}\n\n---\n\n"


def _time_constraint(timeout_seconds: float) -> str:
    seconds = int(timeout_seconds)
    minutes = max(1, round(seconds / 60))
    return (
        f"**Time Constraint:** You have {seconds} seconds ({minutes} minutes) to finish. "
        "Budget your time accordingly."
    )


def build_planning_prompt(
    task: Task,
    *,
    plan_path: Path,
    timeout_seconds: float,
    profile: Optional[AgentProfile] = None,
) -> str:
    return f"""{_system_section(profile)}You are a planning agent. Create a detailed execution plan for this task:

**Task Title:** {task.title}
**Task Description:** {task.description or 'No description provided'}
**Priority:** {task.priority}
{_time_constraint(timeout_seconds)}

Create a plan with:
1. Clear objective based on the task
2. 3-7 concrete execution steps that make sense for THIS specific task
3. Realistic time estimates per step
4. Success criteria

Save the plan to: {plan_path}

Use this format:

# Execution Plan: {task.title}

## Objective
{{Clear objective specific to this task}}

## Execution Steps

### Step 1: {{Step Title}}
**Agent:** {{coder|ui-designer|researcher|writer|planner}}
**Time:** {{X}} minutes

{{Specific instructions for this step}}

### Step 2: ...
(continue for each step)

## Success Criteria
- [ ] {{Specific criterion}}
"""


def build_execution_prompt(
    task: Task,
    *,
    output_folder: str,
    output_path: Path,
    timeout_seconds: float,
    plan: Optional[Plan] = None,
    profile: Optional[AgentProfile] = None,
) -> str:
    identity = f"**Agent:** {profile.name}\n" if profile is not None else ""
    expected = f"\n**Expected Output:** {task.expected_output}" if task.expected_output else ""
    plan_section = ""
    if plan is not None and plan.content.strip():
        plan_section = f"\n**Approved Plan:**\n{plan.content.strip()}\n\nWork through the steps in order and mention \"Step N\" as you start each one.\n"
    return f"""{_system_section(profile)}You are an execution agent working on a task.
{identity}
**Task:** {task.title}
**Description:** {task.description or 'No description'}{expected}
{_time_constraint(timeout_seconds)}
{plan_section}
**Your Job:**
1. Execute this task completely; do not defer work or leave it incomplete
2. Create any necessary files in {output_folder}/
3. Write your final deliverable to {output_path}
4. Report what you accomplished

**Testing Requirements:**
1. If creating a file, verify it exists with `ls -la [filepath]`
2. If creating a URL, verify it responds before reporting it
3. Never claim success without verification; report actual errors

Begin execution now."""
