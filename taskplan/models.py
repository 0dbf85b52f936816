"""Data models for task planning and completion tracking.

This module contains the core data structures used throughout the engine,
representing planned tasks, phases, generation results and the persistent
implementation ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


COMMIT_STRATEGIES: Tuple[str, ...] = ("per-task", "per-5-tasks", "per-phase", "none")

PRD_SOURCE_TYPES: Tuple[str, ...] = ("full", "quick", "mini", "prompt")

CURRENT_SCHEMA_VERSION = 2


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(slots=True)
class Task:
    """A single checkbox entry of the implementation plan."""

    id: str
    description: str
    phase: str
    completed: bool = False
    prd_reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the ledger's camelCase representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "description": self.description,
            "phase": self.phase,
            "completed": self.completed,
        }
        if self.prd_reference is not None:
            data["prdReference"] = self.prd_reference
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            phase=data.get("phase", ""),
            completed=bool(data.get("completed", False)),
            prd_reference=data.get("prdReference"),
        )


@dataclass(slots=True)
class TaskPhase:
    """Named, ordered group of tasks."""

    name: str
    tasks: List[Task] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tasks": [task.to_dict() for task in self.tasks]}

    @property
    def completed_count(self) -> int:
        return sum(1 for task in self.tasks if task.completed)

    def is_complete(self) -> bool:
        """A phase is complete when it has tasks and all of them are checked."""
        return bool(self.tasks) and all(task.completed for task in self.tasks)


@dataclass(frozen=True, slots=True)
class TaskGenerationResult:
    """Snapshot of a single plan generation."""

    phases: Tuple[TaskPhase, ...]
    output_path: str
    source_path: str
    source_type: str

    @property
    def total_tasks(self) -> int:
        return sum(len(phase.tasks) for phase in self.phases)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phases": [phase.to_dict() for phase in self.phases],
            "totalTasks": self.total_tasks,
            "outputPath": self.output_path,
            "sourcePath": self.source_path,
            "sourceType": self.source_type,
        }


@dataclass(slots=True)
class TaskStats:
    """Aggregate completion numbers for a task file."""

    total: int = 0
    completed: int = 0
    remaining: int = 0
    percentage: float = 0.0

    @classmethod
    def from_counts(cls, total: int, completed: int) -> "TaskStats":
        percentage = (completed / total) * 100 if total > 0 else 0.0
        return cls(total=total, completed=completed, remaining=total - completed, percentage=percentage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "completed": self.completed,
            "remaining": self.remaining,
            "percentage": self.percentage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskStats":
        return cls(
            total=data.get("total", 0),
            completed=data.get("completed", 0),
            remaining=data.get("remaining", 0),
            percentage=data.get("percentage", 0.0),
        )

    def is_consistent(self) -> bool:
        return self.completed + self.remaining == self.total


@dataclass(slots=True)
class BlockedTask:
    """A task that cannot proceed, with the reason it was blocked."""

    task_id: str
    reason: str
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, str]:
        return {"taskId": self.task_id, "reason": self.reason, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockedTask":
        return cls(
            task_id=data["taskId"],
            reason=data.get("reason", ""),
            timestamp=data.get("timestamp", utc_timestamp()),
        )


@dataclass(slots=True)
class ResumeCheckpoint:
    """Recovery point for an interrupted implementation session."""

    last_task_id: str
    phase_progress: Dict[str, int] = field(default_factory=dict)
    session_start_time: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastTaskId": self.last_task_id,
            "phaseProgress": dict(self.phase_progress),
            "sessionStartTime": self.session_start_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResumeCheckpoint":
        return cls(
            last_task_id=data.get("lastTaskId", ""),
            phase_progress=dict(data.get("phaseProgress", {})),
            session_start_time=data.get("sessionStartTime", utc_timestamp()),
        )


@dataclass(slots=True)
class ImplementConfig:
    """Persistent completion ledger stored as .clavix-implement-config.json."""

    commit_strategy: str
    tasks_path: str
    current_task: Optional[Task]
    stats: Optional[TaskStats]
    timestamp: str = field(default_factory=utc_timestamp)
    last_completed_task_id: Optional[str] = None
    completed_task_ids: List[str] = field(default_factory=list)
    completion_timestamps: Dict[str, str] = field(default_factory=dict)
    blocked_tasks: List[BlockedTask] = field(default_factory=list)
    resume_checkpoint: Optional[ResumeCheckpoint] = None
    schema_version: int = CURRENT_SCHEMA_VERSION
    extra: Dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = (
        "commitStrategy",
        "tasksPath",
        "currentTask",
        "stats",
        "timestamp",
        "lastCompletedTaskId",
        "completedTaskIds",
        "completionTimestamps",
        "blockedTasks",
        "resumeCheckpoint",
        "schemaVersion",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the on-disk JSON representation.

        Keys written by other tools are kept in ``extra`` and written back
        untouched.
        """
        data: Dict[str, Any] = dict(self.extra)
        data.update(
            {
                "schemaVersion": self.schema_version,
                "commitStrategy": self.commit_strategy,
                "tasksPath": self.tasks_path,
                "currentTask": self.current_task.to_dict() if self.current_task else None,
                "stats": self.stats.to_dict() if self.stats else None,
                "timestamp": self.timestamp,
                "completedTaskIds": list(self.completed_task_ids),
                "completionTimestamps": dict(self.completion_timestamps),
                "blockedTasks": [blocked.to_dict() for blocked in self.blocked_tasks],
            }
        )
        if self.last_completed_task_id is not None:
            data["lastCompletedTaskId"] = self.last_completed_task_id
        if self.resume_checkpoint is not None:
            data["resumeCheckpoint"] = self.resume_checkpoint.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImplementConfig":
        """Create from an already migrated dictionary."""
        current_task = data.get("currentTask")
        stats = data.get("stats")
        checkpoint = data.get("resumeCheckpoint")
        return cls(
            commit_strategy=data.get("commitStrategy", ""),
            tasks_path=data.get("tasksPath", ""),
            current_task=Task.from_dict(current_task) if current_task else None,
            stats=TaskStats.from_dict(stats) if stats else None,
            timestamp=data.get("timestamp", utc_timestamp()),
            last_completed_task_id=data.get("lastCompletedTaskId"),
            completed_task_ids=list(data.get("completedTaskIds", [])),
            completion_timestamps=dict(data.get("completionTimestamps", {})),
            blocked_tasks=[BlockedTask.from_dict(item) for item in data.get("blockedTasks", [])],
            resume_checkpoint=ResumeCheckpoint.from_dict(checkpoint) if checkpoint else None,
            schema_version=data.get("schemaVersion", CURRENT_SCHEMA_VERSION),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )

    def validate(self) -> List[str]:
        """Validate the ledger structure and return any issues."""
        issues = []

        if not self.commit_strategy:
            issues.append("commitStrategy is required")
        elif self.commit_strategy not in COMMIT_STRATEGIES:
            issues.append(f'invalid commitStrategy "{self.commit_strategy}"')
        if not self.tasks_path:
            issues.append("tasksPath is required")
        if self.current_task is None:
            issues.append("currentTask is required")
        if self.stats is None:
            issues.append("stats is required")
        elif not self.stats.is_consistent():
            issues.append("stats.completed + stats.remaining must equal stats.total")
        if len(set(self.completed_task_ids)) != len(self.completed_task_ids):
            issues.append("completedTaskIds contains duplicates")

        return issues

    def is_blocked(self, task_id: str) -> bool:
        return any(blocked.task_id == task_id for blocked in self.blocked_tasks)


@dataclass(slots=True)
class MarkResult:
    """Outcome of a verified checkbox mutation."""

    success: bool
    already_completed: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "alreadyCompleted": self.already_completed,
            "error": self.error,
            "warnings": list(self.warnings),
        }
