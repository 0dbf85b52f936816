"""Implementation workflow for a single PRD project directory.

This module ties the planner, the task file, the verifier and the ledger
together into the plan, start, complete cycle, and reports commit points
according to the configured commit strategy.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .codec import (
    TASKS_FILENAME,
    find_first_incomplete_task,
    get_task_stats,
    iter_tasks,
    phase_progress,
    read_tasks_file,
)
from .errors import ConfigNotFoundError, TaskNotFoundError, TaskPlanError, VerificationError
from .ledger import CompletionLedger
from .models import COMMIT_STRATEGIES, Task, TaskPhase
from .plan_logging import log_error_with_context, log_operation, observability_hooks
from .planner import TaskPlanner
from .verifier import CompletionVerifier

logger = logging.getLogger("taskplan.workflow")

COMMIT_PREFIX = "clavix:"
TASKS_PER_BATCH_COMMIT = 5

# Suggestions returned alongside an error, keyed by error class name.
_RECOVERY_HINTS = {
    "PrdNotFoundError": ("Save a PRD (full-prd.md, quick-prd.md, ...) in the project directory", "plan_tasks"),
    "PrdDirectoryNotFoundError": ("Pass the project directory explicitly or set CLAVIX_PROJECT_DIR", "plan_tasks"),
    "TasksFileNotFoundError": ("Generate tasks.md from the PRD first", "plan_tasks"),
    "ConfigNotFoundError": ("Start the implementation to create the ledger", "start_implementation"),
    "TaskNotFoundError": ("Use one of the task ids returned by list_tasks", "list_tasks"),
    "VerificationError": ("Check that tasks.md is writable and inspect tasks.md.backup", "list_tasks"),
}


def commit_due(
    strategy: str,
    completed_count: int,
    task: Task,
    phases: Sequence[TaskPhase],
    recent_task_ids: Sequence[str] = (),
) -> Dict[str, Any]:
    """Decide whether ``strategy`` calls for a commit after ``task``.

    Returns ``{"commit": bool, "message": str | None}``. The message is the
    one a git commit would carry; nothing is committed here.
    """
    if strategy not in COMMIT_STRATEGIES:
        raise ValueError(f"Unknown commit strategy '{strategy}'")

    message: Optional[str] = None
    if strategy == "per-task":
        message = f"{COMMIT_PREFIX} {task.description}"
    elif strategy == "per-5-tasks":
        if completed_count > 0 and completed_count % TASKS_PER_BATCH_COMMIT == 0:
            batch = set(recent_task_ids[-TASKS_PER_BATCH_COMMIT:])
            descriptions = [t.description for t in iter_tasks(phases) if t.id in batch]
            message = f"{COMMIT_PREFIX} Completed {len(batch)} tasks\n\nCompleted tasks:\n" + "\n".join(
                f"- {description}" for description in descriptions
            )
    elif strategy == "per-phase":
        phase = next((p for p in phases if p.name == task.phase), None)
        if phase is not None and phase.is_complete():
            message = f"{COMMIT_PREFIX} Completed {phase.name}\n\nCompleted tasks:\n" + "\n".join(
                f"- {t.description}" for t in phase.tasks
            )

    return {"strategy": strategy, "commit": message is not None, "message": message}


class ImplementationWorkflow:
    """Runs the plan and completion workflow for one PRD directory."""

    def __init__(self, prd_dir: Path | str, planner: Optional[TaskPlanner] = None):
        self.prd_dir = Path(prd_dir)
        self.planner = planner or TaskPlanner()
        self.ledger = CompletionLedger()
        self.verifier = CompletionVerifier()

    @property
    def tasks_path(self) -> Path:
        return self.prd_dir / TASKS_FILENAME

    @property
    def config_path(self) -> Path:
        return CompletionLedger.config_path(self.prd_dir)

    def _error_payload(self, operation: str, error: Exception, **context: Any) -> Dict[str, Any]:
        logger.error(f"{operation} failed: {error}")
        log_error_with_context(error, {"operation": operation, "prd_dir": str(self.prd_dir), **context})

        suggestion, next_step = _RECOVERY_HINTS.get(
            type(error).__name__, ("Check the project directory and try again", operation)
        )
        payload: Dict[str, Any] = {
            "error": str(error),
            "suggestion": suggestion,
            "next_suggested_step": next_step,
        }
        if isinstance(error, TaskNotFoundError):
            payload["available_task_ids"] = list(error.available_ids)
        if isinstance(error, VerificationError):
            payload["warnings"] = list(error.warnings)
        return payload

    @staticmethod
    def _task_view(task: Optional[Task]) -> Optional[Dict[str, Any]]:
        return task.to_dict() if task else None

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, source: str = "auto") -> Dict[str, Any]:
        """Generate tasks.md from the project's PRD."""
        try:
            result = self.planner.generate_tasks_from_prd(self.prd_dir, source)
        except (TaskPlanError, ValueError, OSError) as e:
            return self._error_payload("plan_tasks", e, source=source)

        observability_hooks.log_event(
            "tasks_planned", prd_dir=str(self.prd_dir), total_tasks=result.total_tasks
        )
        return {
            **result.to_dict(),
            "next_suggested_step": "start_implementation",
            "message": f"Generated {result.total_tasks} tasks in {len(result.phases)} phases at {result.output_path}",
        }

    def start(self, commit_strategy: str = "none") -> Dict[str, Any]:
        """Create (or recreate) the ledger for the current tasks.md."""
        try:
            if commit_strategy not in COMMIT_STRATEGIES:
                raise ValueError(
                    f"Invalid commit strategy '{commit_strategy}'. Expected one of: {', '.join(COMMIT_STRATEGIES)}"
                )
            phases = read_tasks_file(self.tasks_path)
            config = self.ledger.initialize(self.config_path, self.tasks_path, phases, commit_strategy)
        except (TaskPlanError, ValueError, OSError) as e:
            return self._error_payload("start_implementation", e, commit_strategy=commit_strategy)

        return {
            "config_path": str(self.config_path),
            "commit_strategy": config.commit_strategy,
            "current_task": self._task_view(config.current_task),
            "stats": config.stats.to_dict() if config.stats else None,
            "next_suggested_step": "complete_task",
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_tasks(self) -> Dict[str, Any]:
        try:
            phases = read_tasks_file(self.tasks_path)
            blocked = self._blocked_ids()
        except TaskPlanError as e:
            return self._error_payload("list_tasks", e)

        return {
            "tasks_path": str(self.tasks_path),
            "phases": [
                {
                    "name": phase.name,
                    "completed": phase.completed_count,
                    "total": len(phase.tasks),
                    "tasks": [{**task.to_dict(), "blocked": task.id in blocked} for task in phase.tasks],
                }
                for phase in phases
            ],
            "stats": get_task_stats(phases).to_dict(),
        }

    def next_task(self) -> Dict[str, Any]:
        """First open task in file order that is not blocked."""
        try:
            phases = read_tasks_file(self.tasks_path)
            blocked = self._blocked_ids()
        except TaskPlanError as e:
            return self._error_payload("next_task", e)

        upcoming = next((t for t in iter_tasks(phases) if not t.completed and t.id not in blocked), None)
        stats = get_task_stats(phases)
        return {
            "task": self._task_view(upcoming),
            "stats": stats.to_dict(),
            "blocked_task_ids": sorted(blocked),
            "message": "All tasks completed" if stats.remaining == 0 else None,
        }

    def status(self) -> Dict[str, Any]:
        """Ledger state merged with live file statistics."""
        try:
            phases = read_tasks_file(self.tasks_path)
            state = self.ledger.get_state(self.config_path)
            config = self.ledger.read(self.config_path)
        except TaskPlanError as e:
            return self._error_payload("implementation_status", e)

        return {
            **state,
            "commitStrategy": config.commit_strategy,
            "blockedTasks": [blocked.to_dict() for blocked in config.blocked_tasks],
            "resumeCheckpoint": config.resume_checkpoint.to_dict() if config.resume_checkpoint else None,
            "stats": get_task_stats(phases).to_dict(),
            "phaseProgress": phase_progress(phases),
        }

    def _blocked_ids(self) -> set[str]:
        try:
            return set(self.ledger.blocked_task_ids(self.config_path))
        except ConfigNotFoundError:
            return set()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def complete_task(self, task_id: Optional[str] = None) -> Dict[str, Any]:
        """Check off ``task_id`` (default: the first open task) and track it."""
        try:
            config = self.ledger.read(self.config_path)
            phases = read_tasks_file(self.tasks_path)
            if task_id is None:
                first_open = find_first_incomplete_task(phases)
                if first_open is None:
                    return {"message": "All tasks completed", "task": None, "stats": get_task_stats(phases).to_dict()}
                task_id = first_open.id

            with log_operation("complete_task", prd_dir=str(self.prd_dir), task_id=task_id):
                result = self.verifier.mark_task_completed_with_validation(self.tasks_path, task_id)

                # The checkbox moved, so the earlier parse is stale.
                updated_phases = read_tasks_file(self.tasks_path)
                task = next(t for t in iter_tasks(updated_phases) if t.id == task_id)
                config = self.ledger.track_completion(self.config_path, task_id)

                stats = get_task_stats(updated_phases)
                upcoming = find_first_incomplete_task(updated_phases)
                self.ledger.update(
                    self.config_path,
                    stats=stats,
                    current_task=upcoming or task,
                )
                if config.is_blocked(task_id):
                    self.ledger.remove_blocked_task(self.config_path, task_id)

            commit = commit_due(
                config.commit_strategy,
                len(config.completed_task_ids),
                task,
                updated_phases,
                config.completed_task_ids,
            )
        except (TaskPlanError, ValueError, OSError) as e:
            return self._error_payload("complete_task", e, task_id=task_id)

        observability_hooks.log_event("task_completed", prd_dir=str(self.prd_dir), task_id=task_id)
        return {
            "task": task.to_dict(),
            "already_completed": result.already_completed,
            "warnings": result.warnings,
            "stats": stats.to_dict(),
            "next_task": self._task_view(upcoming),
            "commit": commit,
            "next_suggested_step": "complete_task" if upcoming else None,
        }

    def block_task(self, task_id: str, reason: str) -> Dict[str, Any]:
        try:
            phases = read_tasks_file(self.tasks_path)
            if not any(task.id == task_id for task in iter_tasks(phases)):
                raise TaskNotFoundError(task_id, [task.id for task in iter_tasks(phases)])
            config = self.ledger.add_blocked_task(self.config_path, task_id, reason)
        except TaskPlanError as e:
            return self._error_payload("block_task", e, task_id=task_id)

        return {"blocked_tasks": [blocked.to_dict() for blocked in config.blocked_tasks]}

    def unblock_task(self, task_id: str) -> Dict[str, Any]:
        try:
            config = self.ledger.remove_blocked_task(self.config_path, task_id)
        except TaskPlanError as e:
            return self._error_payload("unblock_task", e, task_id=task_id)

        return {"blocked_tasks": [blocked.to_dict() for blocked in config.blocked_tasks]}

    def checkpoint(self) -> Dict[str, Any]:
        """Record the current task and per-phase progress for resuming later."""
        try:
            phases = read_tasks_file(self.tasks_path)
            current = find_first_incomplete_task(phases)
            current_id = current.id if current else self._last_task_id(phases)
            config = self.ledger.create_resume_checkpoint(self.config_path, current_id, phase_progress(phases))
        except TaskPlanError as e:
            return self._error_payload("save_checkpoint", e)

        return {"resumeCheckpoint": config.resume_checkpoint.to_dict()}

    @staticmethod
    def _last_task_id(phases: List[TaskPhase]) -> str:
        tasks = list(iter_tasks(phases))
        return tasks[-1].id if tasks else ""
