"""Serialization of implementation plans to and from checkbox markdown.

``tasks.md`` is the source of truth for task state. Task ids are not stored
in the file: every parse regenerates them as ``<sanitized-phase>-<ordinal>``.
Ids are therefore stable across re-reads of an unmodified file, but renaming
a phase or reordering tasks changes them. Callers must resolve ids against a
fresh parse before addressing a task.
"""

from __future__ import annotations

import os
import re
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .errors import TasksFileNotFoundError
from .extraction import task_id_for
from .models import Task, TaskPhase, TaskStats

TASKS_FILENAME = "tasks.md"
TASKS_TITLE = "# Implementation Tasks"
TASKS_FOOTER = "*Generated by Clavix /clavix:plan*"

_PHASE_HEADING_RE = re.compile(r"^##\s+(.+)$")
_TASK_LINE_RE = re.compile(r"^-\s+\[([ x])\]\s+(.+?)(?:\s+\(ref:\s+(.+?)\))?$")
_PROJECT_TITLE_RE = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)


def atomic_write(path: Path | str, content: str) -> None:
    """Write file atomically via temp + rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def extract_project_title(prd_content: str) -> Optional[str]:
    """Return the first level-1 heading of a PRD, if any."""
    match = _PROJECT_TITLE_RE.search(prd_content or "")
    return match.group(1) if match else None


def format_task_line(task: Task) -> str:
    checkbox = "[x]" if task.completed else "[ ]"
    reference = f" (ref: {task.prd_reference})" if task.prd_reference else ""
    return f"- {checkbox} {task.description}{reference}"


def render_tasks_file(
    phases: Iterable[TaskPhase],
    prd_content: str = "",
    generated_at: Optional[datetime] = None,
) -> str:
    """Render phases to the tasks.md document."""
    generated_at = generated_at or datetime.now()
    lines: List[str] = [TASKS_TITLE, ""]

    project = extract_project_title(prd_content)
    if project:
        lines.extend([f"**Project**: {project}", ""])

    lines.extend([f"**Generated**: {generated_at.strftime('%x, %X')}", "", "---", ""])

    for phase in phases:
        lines.extend([f"## {phase.name}", ""])
        lines.extend(format_task_line(task) for task in phase.tasks)
        lines.append("")

    lines.extend(["---", "", TASKS_FOOTER])
    return "\n".join(lines) + "\n"


def write_tasks_file(path: Path | str, phases: Iterable[TaskPhase], prd_content: str = "") -> Path:
    """Render and atomically write tasks.md."""
    path = Path(path)
    atomic_write(path, render_tasks_file(phases, prd_content))
    return path


def parse_tasks_file(content: str) -> List[TaskPhase]:
    """Parse tasks.md content into phases, regenerating task ids."""
    phases: List[TaskPhase] = []
    current: Optional[TaskPhase] = None

    for line in content.splitlines():
        heading = _PHASE_HEADING_RE.match(line)
        if heading:
            current = TaskPhase(name=heading.group(1).strip())
            phases.append(current)
            continue

        task_match = _TASK_LINE_RE.match(line)
        if task_match and current is not None:
            reference = task_match.group(3)
            current.tasks.append(
                Task(
                    id=task_id_for(current.name, len(current.tasks) + 1),
                    description=task_match.group(2).strip(),
                    phase=current.name,
                    completed=task_match.group(1) == "x",
                    prd_reference=reference.strip() if reference else None,
                )
            )

    return phases


def read_tasks_file(path: Path | str) -> List[TaskPhase]:
    """Read and parse a tasks.md file."""
    path = Path(path)
    if not path.exists():
        raise TasksFileNotFoundError(str(path))
    return parse_tasks_file(path.read_text(encoding="utf-8"))


# ----------------------------------------------------------------------
# Queries over parsed phases
# ----------------------------------------------------------------------


def iter_tasks(phases: Iterable[TaskPhase]) -> Iterable[Task]:
    for phase in phases:
        yield from phase.tasks


def all_task_ids(phases: Iterable[TaskPhase]) -> List[str]:
    return [task.id for task in iter_tasks(phases)]


def validate_task_exists(phases: Iterable[TaskPhase], task_id: str) -> Optional[Task]:
    """Return the task with ``task_id``, or None."""
    for task in iter_tasks(phases):
        if task.id == task_id:
            return task
    return None


def find_first_incomplete_task(phases: Iterable[TaskPhase]) -> Optional[Task]:
    for task in iter_tasks(phases):
        if not task.completed:
            return task
    return None


def get_task_stats(phases: Iterable[TaskPhase]) -> TaskStats:
    tasks = list(iter_tasks(phases))
    return TaskStats.from_counts(len(tasks), sum(1 for task in tasks if task.completed))


def phase_progress(phases: Iterable[TaskPhase]) -> Dict[str, int]:
    """Completed task count per phase name."""
    return {phase.name: phase.completed_count for phase in phases}
