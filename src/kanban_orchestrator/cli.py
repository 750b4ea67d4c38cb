"""Command-line entry point for the kanban orchestrator."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .domain.models import BOARD_STATUSES, PRIORITIES, SessionRecord, Thought
from .errors import OrchestratorError
from .logging_utils import configure_logging
from .orchestrator import OrchestratorService, create_orchestrator

_THOUGHT_STYLES = {
    "thinking": "dim italic",
    "text": "white",
    "tool": "cyan",
    "toolResult": "green",
}


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _ctx(args: argparse.Namespace, *, reconcile: bool = False) -> OrchestratorService:
    """Open the project; only commands that start sessions repair interrupted tasks."""
    orchestrator = create_orchestrator(_resolve_project_dir(args.project_dir), reconcile=reconcile)
    configure_logging(args.log_level or orchestrator.settings.log_level)
    return orchestrator


def _emit(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def _print_thought(console: Console, thought: Thought) -> None:
    label = thought.kind if not thought.tool_name else f"{thought.kind}:{thought.tool_name}"
    style = _THOUGHT_STYLES.get(thought.kind, "white")
    if thought.stream == "stderr":
        style = "yellow"
    console.print(f"[bold]{thought.seq:>4}[/bold] [{label}] ", end="")
    console.print(thought.content, style=style, markup=False, highlight=False)


def _follow(orchestrator: OrchestratorService, session: SessionRecord, *, quiet: bool) -> int:
    console = Console(stderr=True)
    cursor = 0
    console.print(f"[bold]Session {session.id}[/bold] ({session.kind}, model={session.model})")
    try:
        while True:
            done = orchestrator.supervisor.wait(session.id, timeout=0.5)
            if not quiet:
                for thought in orchestrator.thoughts(session.id, cursor):
                    _print_thought(console, thought)
                    cursor = thought.seq
            if done:
                break
    except KeyboardInterrupt:
        orchestrator.kill_session(session.id)
        console.print("[red]Session killed[/red]")

    final = orchestrator.get_session(session.id)
    _emit({"session": orchestrator.describe_session(final)})
    if final.status == "complete":
        console.print(f"[green]✓ {final.kind} complete[/green]")
        return 0
    console.print(f"[red]✗ {final.status}: {final.error or 'unknown error'}[/red]")
    return 1


def _task_add(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    fields: dict[str, Any] = {
        "description": args.description,
        "priority": args.priority,
        "plan_first": args.plan_first,
    }
    if args.output_folder:
        fields["output_folder"] = args.output_folder
    if args.expected_output:
        fields["expected_output"] = args.expected_output
    if args.agent:
        fields["agent_id"] = args.agent
    task = orchestrator.create_task(args.title, **fields)
    _emit({"task": task.to_dict()})
    return 0


def _task_list(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    tasks = orchestrator.list_tasks(include_archived=args.all)
    table = Table(title="Tasks")
    for column in ("id", "title", "board", "priority", "execution", "plan-first"):
        table.add_column(column)
    for task in tasks:
        table.add_row(
            task.id,
            task.title,
            task.status,
            task.priority,
            task.execution_status,
            "yes" if task.plan_first else "no",
        )
    Console().print(table)
    return 0


def _task_show(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    task = orchestrator.get_task(args.task_id)
    payload: dict[str, Any] = {"task": task.to_dict()}
    plan = orchestrator.container.plans.get(task.id)
    if plan is not None:
        payload["plan"] = plan.to_dict()
    _emit(payload)
    return 0


def _task_move(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    _emit({"task": orchestrator.move_task(args.task_id, args.status).to_dict()})
    return 0


def _task_archive(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    _emit({"task": orchestrator.archive_task(args.task_id).to_dict()})
    return 0


def _plan(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args, reconcile=True)
    if args.regenerate:
        session = orchestrator.regenerate_plan(args.task_id)
    else:
        session = orchestrator.request_planning(args.task_id)
    code = _follow(orchestrator, session, quiet=args.quiet)
    plan = orchestrator.container.plans.get(args.task_id)
    if plan is not None:
        Console(stderr=True).print(plan.content, markup=False)
    return code


def _approve(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    plan = orchestrator.approve_plan(args.task_id)
    _emit({"plan": plan.to_dict()})
    return 0


def _execute(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args, reconcile=True)
    session = orchestrator.request_execution(args.task_id)
    return _follow(orchestrator, session, quiet=args.quiet)


def _sessions(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    table = Table(title="Sessions")
    for column in ("id", "task", "kind", "status", "tokens", "cost", "finished"):
        table.add_column(column)
    for data in orchestrator.session_history(args.limit):
        table.add_row(
            data["id"],
            data["task_title"] or data["task_id"],
            data["kind"],
            data["status"],
            str(data["tokens_used"]),
            f"${data['estimated_cost']:.4f}",
            str(data["finished_at"] or ""),
        )
    Console().print(table)
    return 0


def _thoughts(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    console = Console()
    for thought in orchestrator.thoughts(args.session_id, args.cursor):
        _print_thought(console, thought)
    return 0


def _status(args: argparse.Namespace) -> int:
    orchestrator = _ctx(args)
    _emit(orchestrator.status())
    return 0


def _serve(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'kanban-orchestrator[server]'\n")
        return 1

    from .server import create_app

    app = create_app(orchestrator=_ctx(args, reconcile=True))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Kanban task/session orchestrator")
    parser.add_argument("--project-dir", default=None, help="Project directory (default: current working directory)")
    parser.add_argument("--log-level", default=None, help="Override logging.level from config.yaml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    task = subparsers.add_parser("task", help="Manage tasks")
    task_sub = task.add_subparsers(dest="task_cmd", required=True)
    tadd = task_sub.add_parser("add", help="Create a task")
    tadd.add_argument("title")
    tadd.add_argument("--description", default="")
    tadd.add_argument("--priority", default="P2", choices=list(PRIORITIES))
    tadd.add_argument("--plan-first", action="store_true", help="Require an approved plan before execution")
    tadd.add_argument("--output-folder", default=None)
    tadd.add_argument("--expected-output", default=None)
    tadd.add_argument("--agent", default=None, help="Agent profile id from config.yaml")
    tadd.set_defaults(func=_task_add)
    tlist = task_sub.add_parser("list", help="List tasks")
    tlist.add_argument("--all", action="store_true", help="Include archived tasks")
    tlist.set_defaults(func=_task_list)
    tshow = task_sub.add_parser("show", help="Show a task and its plan")
    tshow.add_argument("task_id")
    tshow.set_defaults(func=_task_show)
    tmove = task_sub.add_parser("move", help="Move a task to another board column")
    tmove.add_argument("task_id")
    tmove.add_argument("status", choices=list(BOARD_STATUSES))
    tmove.set_defaults(func=_task_move)
    tarchive = task_sub.add_parser("archive", help="Archive a task")
    tarchive.add_argument("task_id")
    tarchive.set_defaults(func=_task_archive)

    plan = subparsers.add_parser("plan", help="Run a planning session for a plan-first task")
    plan.add_argument("task_id")
    plan.add_argument("--regenerate", action="store_true", help="Discard the current plan and plan again")
    plan.add_argument("--quiet", action="store_true", help="Do not stream thoughts")
    plan.set_defaults(func=_plan)

    approve = subparsers.add_parser("approve", help="Approve a task's plan")
    approve.add_argument("task_id")
    approve.set_defaults(func=_approve)

    execute = subparsers.add_parser("execute", help="Run an execution session for a task")
    execute.add_argument("task_id")
    execute.add_argument("--quiet", action="store_true", help="Do not stream thoughts")
    execute.set_defaults(func=_execute)

    sessions = subparsers.add_parser("sessions", help="List finished sessions")
    sessions.add_argument("--limit", type=int, default=20)
    sessions.set_defaults(func=_sessions)

    thoughts = subparsers.add_parser("thoughts", help="Print a session's thoughts")
    thoughts.add_argument("session_id")
    thoughts.add_argument("--cursor", type=int, default=0, help="Only show thoughts after this sequence number")
    thoughts.set_defaults(func=_thoughts)

    status = subparsers.add_parser("status", help="Show orchestrator status")
    status.set_defaults(func=_status)

    serve = subparsers.add_parser("serve", help="Stream events to WebSocket clients at /ws")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", default=8000, type=int)
    serve.set_defaults(func=_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except (OrchestratorError, ValueError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
