"""MCP server exposing Clavix task planning and completion tracking tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.resources import TextResource

from taskplan import (
    ImplementationWorkflow,
    TaskPlanner,
    latest_config_file,
    setup_logging,
)
from taskplan.errors import PrdDirectoryNotFoundError

mcp = FastMCP("clavix-tasks")

DEFAULT_OUTPUTS_DIR = Path(".clavix") / "outputs"


def _outputs_dir() -> Path:
    env_outputs = os.getenv("CLAVIX_OUTPUTS_DIR")
    if env_outputs:
        return Path(env_outputs).expanduser().resolve()
    return (Path.cwd() / DEFAULT_OUTPUTS_DIR).resolve()


def _resolve_project_dir(project_dir: Optional[str], project: Optional[str] = None) -> Path:
    if project_dir:
        resolved = Path(project_dir).expanduser().resolve()
        if not resolved.is_dir():
            raise ValueError(f"Provided project_dir '{project_dir}' does not exist.")
        return resolved

    env_dir = os.getenv("CLAVIX_PROJECT_DIR")
    if env_dir:
        env_path = Path(env_dir).expanduser().resolve()
        if not env_path.is_dir():
            raise ValueError(
                f"Environment variable CLAVIX_PROJECT_DIR points to '{env_dir}', which does not exist."
            )
        return env_path

    return TaskPlanner().find_prd_directory(_outputs_dir(), project)


def _resolve_tracked_dir(project_dir: Optional[str], project: Optional[str] = None) -> Path:
    """Like _resolve_project_dir, but prefer the most recently tracked project."""
    if project_dir or project or os.getenv("CLAVIX_PROJECT_DIR"):
        return _resolve_project_dir(project_dir, project)

    latest = latest_config_file(_outputs_dir())
    if latest:
        return latest.parent
    return _resolve_project_dir(None)


def _workflow(project_dir: Optional[str], project: Optional[str] = None, *, tracked: bool = False) -> ImplementationWorkflow:
    resolver = _resolve_tracked_dir if tracked else _resolve_project_dir
    return ImplementationWorkflow(resolver(project_dir, project))


def _resolution_error(error: Exception) -> Dict[str, Any]:
    return {
        "error": str(error),
        "suggestion": "Pass project_dir explicitly or set CLAVIX_PROJECT_DIR / CLAVIX_OUTPUTS_DIR",
        "next_suggested_step": "plan_tasks",
    }


@mcp.tool()
def plan_tasks(
    project_dir: Optional[str] = None,
    project: Optional[str] = None,
    source: str = "auto",
) -> Dict[str, Any]:
    """STEP 1: Generate tasks.md from the project's PRD.
    source is one of auto, full, quick, mini or prompt; auto prefers the full PRD."""

    try:
        workflow = _workflow(project_dir, project)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.plan(source)


@mcp.tool()
def start_implementation(
    project_dir: Optional[str] = None,
    project: Optional[str] = None,
    commit_strategy: str = "none",
) -> Dict[str, Any]:
    """STEP 2: Create the completion ledger for tasks.md.
    commit_strategy is one of per-task, per-5-tasks, per-phase or none."""

    try:
        workflow = _workflow(project_dir, project)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.start(commit_strategy)


@mcp.tool()
def list_tasks(project_dir: Optional[str] = None, project: Optional[str] = None) -> Dict[str, Any]:
    """List every phase and task with its id, checkbox state and blocked flag."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.list_tasks()


@mcp.tool()
def next_task(project_dir: Optional[str] = None, project: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve the first open, unblocked task to guide sequential execution."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.next_task()


@mcp.tool()
def complete_task(
    task_id: Optional[str] = None,
    project_dir: Optional[str] = None,
    project: Optional[str] = None,
) -> Dict[str, Any]:
    """Check off a task in tasks.md and record it in the ledger; defaults to the next open task when task_id omitted."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.complete_task(task_id)


@mcp.tool()
def block_task(
    task_id: str,
    reason: str,
    project_dir: Optional[str] = None,
    project: Optional[str] = None,
) -> Dict[str, Any]:
    """Mark a task as blocked with a reason so next_task skips it."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.block_task(task_id, reason)


@mcp.tool()
def unblock_task(task_id: str, project_dir: Optional[str] = None, project: Optional[str] = None) -> Dict[str, Any]:
    """Remove a task from the blocked list."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.unblock_task(task_id)


@mcp.tool()
def implementation_status(project_dir: Optional[str] = None, project: Optional[str] = None) -> Dict[str, Any]:
    """Report ledger state, live task statistics and per-phase progress."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.status()


@mcp.tool()
def save_checkpoint(project_dir: Optional[str] = None, project: Optional[str] = None) -> Dict[str, Any]:
    """Save a resume checkpoint with the current task and per-phase progress."""

    try:
        workflow = _workflow(project_dir, project, tracked=True)
    except (ValueError, PrdDirectoryNotFoundError) as e:
        return _resolution_error(e)
    return workflow.checkpoint()


PROJECTS_URI = "clavix://projects"


def _projects_text(text: str) -> TextResource:
    return TextResource(uri=PROJECTS_URI, name="projects", text=text, mime_type="text/plain")


@mcp.resource(PROJECTS_URI)
def resource_projects():
    """Resource view listing PRD projects and their available sources."""

    outputs = _outputs_dir()
    if not outputs.is_dir():
        return _projects_text(f"No outputs directory found at {outputs}. Set CLAVIX_OUTPUTS_DIR.")

    planner = TaskPlanner()
    projects = sorted(
        entry for entry in outputs.iterdir()
        if entry.is_dir() and entry.name != "archive" and planner.has_prd_file(entry)
    )
    if not projects:
        return _projects_text("No PRD projects found yet.")

    lines = ["Clavix Projects"]
    for project_path in projects:
        lines.append("")
        lines.append(f"- {project_path.name}: {', '.join(planner.detect_available_sources(project_path))}")
        tasks_path = project_path / "tasks.md"
        if tasks_path.exists():
            lines.append(f"  Tasks: {tasks_path}")

    return _projects_text("\n".join(lines))


if __name__ == "__main__":
    log_file = os.getenv("CLAVIX_LOG_FILE")
    setup_logging(os.getenv("CLAVIX_LOG_LEVEL", "INFO").upper(), Path(log_file) if log_file else None)
    mcp.run(transport="stdio")
