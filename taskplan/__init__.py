"""Clavix task planning: PRD to tasks.md planning and completion tracking."""

from .errors import (
    ConfigNotFoundError,
    PrdNotFoundError,
    TaskNotFoundError,
    TaskPlanError,
    VerificationError,
)
from .ledger import CompletionLedger, find_config_files, latest_config_file
from .models import ImplementConfig, Task, TaskGenerationResult, TaskPhase, TaskStats
from .plan_logging import setup_logging
from .planner import TaskPlanner
from .verifier import CompletionVerifier
from .workflow import ImplementationWorkflow, commit_due

__all__ = [
    "CompletionLedger",
    "CompletionVerifier",
    "ConfigNotFoundError",
    "ImplementConfig",
    "ImplementationWorkflow",
    "PrdNotFoundError",
    "Task",
    "TaskGenerationResult",
    "TaskNotFoundError",
    "TaskPhase",
    "TaskPlanError",
    "TaskPlanner",
    "TaskStats",
    "VerificationError",
    "commit_due",
    "find_config_files",
    "latest_config_file",
    "setup_logging",
]
