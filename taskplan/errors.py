"""Exception types raised by the planning and tracking engine.

Every error carries an actionable ``hint`` which is appended to its message,
so callers can surface ``str(error)`` directly to users.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class TaskPlanError(Exception):
    """Base class for all engine errors."""

    default_hint: Optional[str] = None

    def __init__(self, message: str, *, hint: Optional[str] = None):
        self.message = message
        self.hint = hint if hint is not None else self.default_hint
        super().__init__(message)

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\n\nHint: {self.hint}"
        return self.message


# ----------------------------------------------------------------------
# Not found
# ----------------------------------------------------------------------


class PrdNotFoundError(TaskPlanError, FileNotFoundError):
    """No PRD artifact matched the requested source order."""

    default_hint = "Generate a PRD first, or pass a different source type."

    def __init__(self, directory: str, source: str = "auto"):
        self.directory = directory
        self.source = source
        if source == "auto":
            message = f"No PRD artifacts found in {directory}"
        else:
            message = f'No PRD artifacts found for source "{source}" in {directory}'
        super().__init__(message)


class PrdDirectoryNotFoundError(TaskPlanError, FileNotFoundError):
    """No project directory containing a PRD could be located."""

    default_hint = "Have you generated a PRD yet?"


class TasksFileNotFoundError(TaskPlanError, FileNotFoundError):
    """The tasks.md file does not exist."""

    default_hint = 'Run "plan" to generate tasks.md from the PRD.'

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Tasks file not found: {path}")


class ConfigNotFoundError(TaskPlanError, FileNotFoundError):
    """The completion ledger does not exist."""

    default_hint = 'Run "implement" first to initialize configuration.'

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Config file not found: {path}")


class TaskNotFoundError(TaskPlanError, LookupError):
    """A task id is not present in the parsed task file."""

    def __init__(self, task_id: str, available_ids: Iterable[str]):
        self.task_id = task_id
        self.available_ids: List[str] = list(available_ids)
        listing = "\n".join(self.available_ids) or "(no tasks found)"
        super().__init__(
            f'Task ID "{task_id}" not found. Available task IDs:\n{listing}',
            hint="Task IDs are regenerated on every read; list tasks again if tasks.md was edited.",
        )


# ----------------------------------------------------------------------
# Validation / corruption
# ----------------------------------------------------------------------


class ConfigValidationError(TaskPlanError, ValueError):
    """The ledger failed structural validation."""

    default_hint = "Fix the listed fields or re-run implement to regenerate the config."

    def __init__(self, issues: Iterable[str]):
        self.issues = list(issues)
        super().__init__("Config validation failed: " + "; ".join(self.issues))


class ConfigCorruptError(TaskPlanError):
    """The ledger file exists but cannot be decoded."""

    default_hint = 'Delete the file and run "implement" again to regenerate it.'


class ConfigWriteError(TaskPlanError, OSError):
    """The ledger could not be persisted."""

    default_hint = "Check that the project directory exists and is writable."


# ----------------------------------------------------------------------
# Verification
# ----------------------------------------------------------------------


class VerificationError(TaskPlanError, RuntimeError):
    """A checkbox mutation did not take effect even after retrying."""

    default_hint = "Check tasks.md formatting for the task line; the file was restored from backup."

    def __init__(self, message: str, warnings: Optional[Iterable[str]] = None):
        self.warnings = list(warnings or [])
        super().__init__(message)
