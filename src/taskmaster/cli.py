"""Command line interface for the Taskmaster backend.

Every command works in two modes.  Interactive (default) renders rich panels
and tables and prints a one-line error on failure.  ``--json`` writes a single
JSON document to stdout instead, including ``{"success": false, "error": ...}``
on failure, for scripts and MCP-style callers.  Both exit non-zero on error.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import VALID_LOG_LEVELS, load_config
from .errors import TaskmasterError
from .task_engine.engine import TaskEngine
from .task_engine.model import TaskStatus

Render = Callable[[Console], None]


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - "
            "{message}"
        ),
    )


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _emit(args: argparse.Namespace, payload: Any, render: Render) -> None:
    if args.json:
        sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")
        return
    render(Console())


# ---------------------------------------------------------------------------
# Task commands
# ---------------------------------------------------------------------------

def _set_status(args: argparse.Namespace, engine: TaskEngine) -> int:
    result = engine.set_status(args.id, args.status)

    def render(console: Console) -> None:
        lines = [f"[bold]{ref}[/bold] -> {result.status}" for ref in result.updated_ids]
        if not result.changes:
            lines.append("[dim]No changes; already at the requested status.[/dim]")
        for change in result.changes:
            if change.task_id not in result.updated_ids:
                lines.append(f"[dim]{change.task_id}: {change.old_status} -> {change.new_status}[/dim]")
        for note in result.notes:
            lines.append(f"[cyan]{note}[/cyan]")
        for issue in result.dependency_issues:
            lines.append(f"[yellow]Dependency {issue.dependency} of {issue.ref} is {issue.reason}[/yellow]")
        console.print(Panel("\n".join(lines), title="Status updated", border_style="green"))

    _emit(args, result.to_dict(), render)
    return 0


def _delegate(args: argparse.Namespace, engine: TaskEngine) -> int:
    task = engine.delegate(args.task_id)
    payload = {"success": True, "agent": task.agent, "task": task.to_dict()}

    def render(console: Console) -> None:
        console.print(Panel(
            f"Task [bold]{task.id}[/bold] ({task.title}) delegated to [bold]{task.agent}[/bold]\n"
            f"Status: {task.status.value}",
            title="Delegated",
            border_style="green",
        ))

    _emit(args, payload, render)
    return 0


def _assign_agents(args: argparse.Namespace, engine: TaskEngine) -> int:
    assigned = engine.assign_agents_round_robin()
    payload = {"success": True, "assigned": assigned}

    def render(console: Console) -> None:
        if assigned:
            console.print(f"Assigned {len(assigned)} task(s): {', '.join(str(i) for i in assigned)}")
        else:
            console.print("[dim]Every task already has an assignee.[/dim]")

    _emit(args, payload, render)
    return 0


def _progress(args: argparse.Namespace, engine: TaskEngine) -> int:
    task = engine.update_progress(args.task_id, args.value)
    payload = {"success": True, "task": task.to_dict()}

    def render(console: Console) -> None:
        console.print(f"Task [bold]{task.id}[/bold] progress {task.progress}% ({task.status.value})")

    _emit(args, payload, render)
    return 0


def _feedback(args: argparse.Namespace, engine: TaskEngine) -> int:
    entry = engine.add_feedback(args.task_id, args.agent, args.message)
    payload = {"success": True, "feedback": entry}

    def render(console: Console) -> None:
        console.print(f"Feedback from [bold]{entry['agent']}[/bold] added to task {args.task_id}")

    _emit(args, payload, render)
    return 0


def _validate_deps(args: argparse.Namespace, engine: TaskEngine) -> int:
    issues = engine.validate_dependencies()
    payload = {"success": True, "valid": not issues, "issues": [i.to_dict() for i in issues]}

    def render(console: Console) -> None:
        if not issues:
            console.print("[green]All dependencies resolve.[/green]")
            return
        table = Table(title="Dependency issues")
        table.add_column("Task")
        table.add_column("Dependency")
        table.add_column("Problem")
        for issue in issues:
            table.add_row(issue.ref, str(issue.dependency), issue.reason)
        console.print(table)

    _emit(args, payload, render)
    return 0


# ---------------------------------------------------------------------------
# Sprint commands
# ---------------------------------------------------------------------------

def _sprint_list(args: argparse.Namespace, engine: TaskEngine) -> int:
    sprints = engine.load_sprints().sprints
    payload = {"sprints": [s.to_dict() for s in sprints]}

    def render(console: Console) -> None:
        table = Table(title="Sprints")
        for column in ("ID", "Name", "Status", "Start", "End", "Tasks"):
            table.add_column(column)
        for s in sprints:
            table.add_row(str(s.id), s.name, s.status, s.start_date or "-", s.end_date or "-", str(len(s.tasks)))
        console.print(table)

    _emit(args, payload, render)
    return 0


def _sprint_create(args: argparse.Namespace, engine: TaskEngine) -> int:
    sprint = engine.create_sprint(
        args.name, goal=args.goal or "", start_date=args.start, end_date=args.end
    )

    def render(console: Console) -> None:
        console.print(f"Created sprint [bold]{sprint.id}[/bold]: {sprint.name}")

    _emit(args, sprint.to_dict(), render)
    return 0


def _sprint_plan(args: argparse.Namespace, engine: TaskEngine) -> int:
    result = engine.plan_sprint(args.sprint_id, args.limit)

    def render(console: Console) -> None:
        console.print(Panel(
            f"Included: {', '.join(str(i) for i in result.included) or '-'}\n"
            f"Excluded: {', '.join(str(i) for i in result.excluded) or '-'}",
            title=f"Sprint {result.sprint.id} planned",
            border_style="green",
        ))

    _emit(args, result.to_dict(), render)
    return 0


def _sprint_metrics(args: argparse.Namespace, engine: TaskEngine) -> int:
    metrics = engine.sprint_metrics()

    def render(console: Console) -> None:
        table = Table(title="Sprint metrics")
        for column in ("ID", "Name", "Total", "Completed"):
            table.add_column(column)
        for m in metrics:
            table.add_row(str(m["id"]), m["name"], str(m["total"]), str(m["completed"]))
        console.print(table)

    _emit(args, {"metrics": metrics}, render)
    return 0


def _sprint_report(args: argparse.Namespace, engine: TaskEngine) -> int:
    report = engine.sprint_report(args.sprint_id)

    def render(console: Console) -> None:
        summary = report["summary"]
        table = Table(title=f"Sprint {report['sprint']}: {summary['completed']}/{summary['total']} completed")
        for column in ("ID", "Title", "Status", "Agent"):
            table.add_column(column)
        for t in report["tasks"]:
            table.add_row(str(t["id"]), t.get("title", ""), t.get("status", ""), t.get("agent") or "-")
        console.print(table)

    _emit(args, report, render)
    return 0


# ---------------------------------------------------------------------------
# Agent commands
# ---------------------------------------------------------------------------

def _agent_list(args: argparse.Namespace, engine: TaskEngine) -> int:
    agents = engine.load_agents().agents

    def render(console: Console) -> None:
        table = Table(title="Agents")
        for column in ("ID", "Name", "Status", "Role", "Capabilities"):
            table.add_column(column)
        for a in agents:
            table.add_row(
                str(a.id if a.id is not None else "-"), a.name, a.status, a.role or "-",
                ", ".join(a.capabilities) or "-",
            )
        console.print(table)

    _emit(args, {"agents": [a.to_dict() for a in agents]}, render)
    return 0


def _agent_metrics(args: argparse.Namespace, engine: TaskEngine) -> int:
    metrics = engine.agent_metrics()

    def render(console: Console) -> None:
        table = Table(title="Agent metrics")
        for column in ("Name", "Available", "Assigned", "Completed", "Open"):
            table.add_column(column)
        for m in metrics:
            table.add_row(
                m["name"], "yes" if m["available"] else "no",
                str(m["assigned"]), str(m["completed"]), str(m["workload"]),
            )
        console.print(table)

    _emit(args, {"metrics": metrics}, render)
    return 0


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

def _server(args: argparse.Namespace, engine: TaskEngine) -> int:
    try:
        import uvicorn
    except ImportError:
        sys.stderr.write("Install server extras: pip install 'taskmaster[server]'\n")
        return 1

    from .server import create_app

    app = create_app(project_dir=engine.config.project_dir, config=engine.config)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskmaster", description="Task tracking and sprint planning")
    parser.add_argument("--project-dir", default=None, help="Project directory (default: current working directory)")
    parser.add_argument("--json", action="store_true", help="Write JSON to stdout instead of formatted output")
    parser.add_argument("--debug", action="store_true", help="Verbose logging and tracebacks on error")
    parser.add_argument("--log-level", default=None, type=str.upper, choices=sorted(VALID_LOG_LEVELS))
    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("set-status", help="Set the status of one or more tasks/subtasks")
    status.add_argument("-i", "--id", required=True, help="Comma-separated ids, e.g. 1,2 or 3.1")
    status.add_argument("-s", "--status", required=True, help=f"One of: {', '.join(TaskStatus.values())}")
    status.set_defaults(func=_set_status)

    delegate = subparsers.add_parser("delegate", help="Assign the least-loaded available agent to a task")
    delegate.add_argument("task_id")
    delegate.set_defaults(func=_delegate)

    assign = subparsers.add_parser("assign-agents", help="Round-robin an assignee onto every unassigned task")
    assign.set_defaults(func=_assign_agents)

    progress = subparsers.add_parser("progress", help="Record task progress (0-100)")
    progress.add_argument("task_id")
    progress.add_argument("value", type=float)
    progress.set_defaults(func=_progress)

    feedback = subparsers.add_parser("feedback", help="Add agent feedback to a task")
    feedback.add_argument("task_id")
    feedback.add_argument("--agent", required=True)
    feedback.add_argument("--message", required=True)
    feedback.set_defaults(func=_feedback)

    deps = subparsers.add_parser("validate-deps", help="Report dependency ids that do not resolve")
    deps.set_defaults(func=_validate_deps)

    sprint = subparsers.add_parser("sprint", help="Manage sprints")
    sprint_sub = sprint.add_subparsers(dest="sprint_cmd", required=True)
    slist = sprint_sub.add_parser("list", help="List sprints")
    slist.set_defaults(func=_sprint_list)
    screate = sprint_sub.add_parser("create", help="Create a sprint")
    screate.add_argument("name")
    screate.add_argument("--goal", default="")
    screate.add_argument("--start", default=None, help="Start date (ISO 8601)")
    screate.add_argument("--end", default=None, help="End date (ISO 8601)")
    screate.set_defaults(func=_sprint_create)
    splan = sprint_sub.add_parser("plan", help="Fill a sprint with open tasks")
    splan.add_argument("sprint_id", type=int)
    splan.add_argument("--limit", type=int, default=None)
    splan.set_defaults(func=_sprint_plan)
    smetrics = sprint_sub.add_parser("metrics", help="Completion counts per sprint")
    smetrics.set_defaults(func=_sprint_metrics)
    sreport = sprint_sub.add_parser("report", help="Tasks whose sprint field names this sprint")
    sreport.add_argument("sprint_id", type=int)
    sreport.set_defaults(func=_sprint_report)

    agent = subparsers.add_parser("agent", help="Inspect agents")
    agent_sub = agent.add_subparsers(dest="agent_cmd", required=True)
    alist = agent_sub.add_parser("list", help="List agents")
    alist.set_defaults(func=_agent_list)
    ametrics = agent_sub.add_parser("metrics", help="Assigned and completed counts per agent")
    ametrics.set_defaults(func=_agent_metrics)

    server = subparsers.add_parser("server", help="Start the HTTP API server")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", default=8000, type=int)
    server.set_defaults(func=_server)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1

    config, err = load_config(_resolve_project_dir(args.project_dir))
    if args.debug:
        config.debug = True
    level = args.log_level or ("DEBUG" if config.debug else config.log_level)
    _configure_logging(level)
    if err:
        logger.warning("Ignoring unreadable config: {}", err)

    try:
        return int(handler(args, TaskEngine(config)) or 0)
    except TaskmasterError as exc:
        if config.debug:
            logger.exception("Command {} failed", args.command)
        if args.json:
            sys.stdout.write(json.dumps({"success": False, "error": exc.to_dict()}, indent=2) + "\n")
        else:
            sys.stderr.write(f"Error: {exc.message}\n")
        return 1
