"""Verified checkbox mutation for tasks.md.

Marking a task is a minimal in-place patch of one checkbox line, followed by
a re-parse that confirms the change landed. A backup of the file is held for
the duration of the attempt and is only released once the change has been
verified; on every other exit path the file is restored from it.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import List

from .codec import all_task_ids, atomic_write, iter_tasks, read_tasks_file, validate_task_exists
from .errors import TaskNotFoundError, TaskPlanError, TasksFileNotFoundError, VerificationError
from .models import MarkResult, Task, TaskPhase
from .plan_logging import log_operation, log_performance, log_task_update

logger = logging.getLogger("taskplan.verifier")

BACKUP_SUFFIX = ".backup"


class TaskFileBackup:
    """Scoped backup of a tasks file.

    Entering the context copies the file aside. Calling :meth:`release`
    marks the change as confirmed and the backup is deleted on exit; leaving
    the context without releasing restores the original content and keeps
    the backup file for inspection.
    """

    def __init__(self, path: Path, enabled: bool = True):
        self.path = path
        self.backup_path = path.with_name(path.name + BACKUP_SUFFIX)
        self.enabled = enabled
        self.available = False
        self.failed = False
        self._released = False

    def __enter__(self) -> "TaskFileBackup":
        if self.enabled:
            try:
                shutil.copyfile(self.path, self.backup_path)
                self.available = True
            except OSError as e:
                logger.warning(f"Failed to create backup of {self.path}: {e}")
                self.failed = True
        return self

    def restore(self) -> None:
        if self.available:
            shutil.copyfile(self.backup_path, self.path)

    def release(self) -> None:
        self._released = True

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self.available:
            return False
        if self._released:
            self.backup_path.unlink(missing_ok=True)
        else:
            self.restore()
            logger.warning(f"Restored {self.path} from backup")
        return False


class CompletionVerifier:
    """Marks tasks complete in tasks.md and verifies the result."""

    # ------------------------------------------------------------------
    # Unverified primitives
    # ------------------------------------------------------------------

    def _find_task(self, phases: List[TaskPhase], task_id: str) -> Task:
        task = validate_task_exists(phases, task_id)
        if task is None:
            raise TaskNotFoundError(task_id, all_task_ids(phases))
        return task

    @staticmethod
    def checkbox_pattern(task: Task) -> re.Pattern:
        """Pattern for the unchecked line holding ``task``."""
        description = re.escape(task.description)
        reference = rf"\s+\(ref:\s+{re.escape(task.prd_reference)}\)" if task.prd_reference else ""
        return re.compile(rf"^(-\s+\[) (\]\s+{description}{reference}[ \t]*)(?=\r?$)", re.MULTILINE)

    def mark_task_completed(self, tasks_path: Path | str, task_id: str) -> bool:
        """Flip the checkbox of ``task_id`` without verifying.

        Only the matching line changes; everything else in the file is
        preserved byte for byte. Returns False when no line was changed.
        """
        path = Path(tasks_path)
        phases = read_tasks_file(path)
        target = self._find_task(phases, task_id)

        # Earlier open tasks with identical text occupy earlier matches.
        occurrence = 0
        for task in iter_tasks(phases):
            if task is target:
                break
            if (
                not task.completed
                and task.description == target.description
                and task.prd_reference == target.prd_reference
            ):
                occurrence += 1

        with path.open(encoding="utf-8", newline="") as handle:
            content = handle.read()
        matches = list(self.checkbox_pattern(target).finditer(content))
        if occurrence >= len(matches):
            logger.warning(f"No unchecked line found for task '{task_id}' in {path}")
            return False

        match = matches[occurrence]
        updated = f"{content[:match.start()]}{match.group(1)}x{match.group(2)}{content[match.end():]}"
        atomic_write(path, updated)
        return True

    def verify_task_marked(self, tasks_path: Path | str, task_id: str) -> bool:
        """Re-parse the file and report whether ``task_id`` is checked."""
        try:
            phases = read_tasks_file(tasks_path)
        except (TaskPlanError, OSError) as e:
            logger.warning(f"Verification read failed for {tasks_path}: {e}")
            return False
        task = validate_task_exists(phases, task_id)
        return task.completed if task else False

    # ------------------------------------------------------------------
    # Verified transition
    # ------------------------------------------------------------------

    @log_performance("mark_task_completed")
    def mark_task_completed_with_validation(
        self,
        tasks_path: Path | str,
        task_id: str,
        *,
        retry_on_failure: bool = True,
        create_backup: bool = True,
    ) -> MarkResult:
        """Mark ``task_id`` completed, verifying and retrying once on mismatch.

        Raises :class:`TasksFileNotFoundError` or :class:`TaskNotFoundError`
        when the task cannot be addressed, and :class:`VerificationError`
        when the change does not land; in that case the file has been
        restored to its previous content.
        """
        path = Path(tasks_path)
        if not path.exists():
            raise TasksFileNotFoundError(str(path))

        with log_operation("mark_task_completed", tasks_path=str(path), task_id=task_id):
            phases = read_tasks_file(path)
            task = self._find_task(phases, task_id)

            if task.completed:
                logger.info(f"Task '{task_id}' was already completed")
                return MarkResult(
                    success=True,
                    already_completed=True,
                    warnings=[f'Task "{task_id}" was already marked as completed'],
                )

            warnings: List[str] = []
            retried = False
            with TaskFileBackup(path, enabled=create_backup) as backup:
                if backup.failed:
                    warnings.append("Failed to create backup file")

                self.mark_task_completed(path, task_id)
                if not self.verify_task_marked(path, task_id):
                    if not (retry_on_failure and backup.available):
                        raise VerificationError("Task completion verification failed", warnings)

                    warnings.append("First attempt failed verification, retrying...")
                    retried = True
                    backup.restore()
                    self.mark_task_completed(path, task_id)

                    if not self.verify_task_marked(path, task_id):
                        raise VerificationError(
                            "Failed to mark task as completed even after retry. "
                            "File has been restored from backup.",
                            warnings,
                        )
                    warnings.append("Task marked successfully on retry")

                backup.release()

        log_task_update(str(path), task_id, True, retried=retried)
        return MarkResult(success=True, warnings=warnings)

