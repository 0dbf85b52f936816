"""Persistent completion ledger (.clavix-implement-config.json).

The ledger records the commit strategy, the current task, aggregate stats
and the full completion history of an implementation session. Every
mutator is a read-modify-write of the whole file with a refreshed
top-level ``timestamp``; writes are atomic.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .codec import atomic_write, find_first_incomplete_task, get_task_stats
from .errors import ConfigCorruptError, ConfigNotFoundError, ConfigValidationError, ConfigWriteError
from .models import (
    CURRENT_SCHEMA_VERSION,
    BlockedTask,
    ImplementConfig,
    ResumeCheckpoint,
    Task,
    TaskPhase,
    utc_timestamp,
)
from .plan_logging import log_ledger_event

logger = logging.getLogger("taskplan.ledger")

CONFIG_FILENAME = ".clavix-implement-config.json"

Upgrader = Callable[[Dict[str, Any]], Dict[str, Any]]


# ----------------------------------------------------------------------
# Schema migrations
# ----------------------------------------------------------------------


def _upgrade_v1_to_v2(data: Dict[str, Any]) -> Dict[str, Any]:
    """Add completion tracking containers to a pre-tracking ledger."""
    upgraded = dict(data)
    upgraded.setdefault("completedTaskIds", [])
    upgraded.setdefault("completionTimestamps", {})
    upgraded.setdefault("blockedTasks", [])
    return upgraded


# Ordered (from_version, upgrader) steps; append new steps to migrate further.
MIGRATIONS: Tuple[Tuple[int, Upgrader], ...] = (
    (1, _upgrade_v1_to_v2),
)


def detect_schema_version(data: Dict[str, Any]) -> int:
    """Infer the schema version of raw ledger data.

    Files written before versioning have no ``schemaVersion``; those that
    already carry ``completedTaskIds`` are treated as version 2.
    """
    if "schemaVersion" in data:
        return int(data["schemaVersion"])
    return 2 if "completedTaskIds" in data else 1


def migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    """Apply upgraders in order until the current schema version is reached."""
    version = detect_schema_version(data)
    for from_version, upgrader in MIGRATIONS:
        if version == from_version:
            logger.info(f"Migrating ledger schema v{from_version} -> v{from_version + 1}")
            data = upgrader(data)
            version = from_version + 1
    data["schemaVersion"] = max(version, CURRENT_SCHEMA_VERSION)
    return data


# ----------------------------------------------------------------------
# Ledger
# ----------------------------------------------------------------------


class CompletionLedger:
    """Reads and mutates the implementation ledger file."""

    @staticmethod
    def config_path(prd_dir: Path | str) -> Path:
        """Get the ledger path for a PRD directory."""
        return Path(prd_dir) / CONFIG_FILENAME

    def read(self, config_path: Path | str) -> ImplementConfig:
        """Load the ledger, migrating older schemas."""
        path = Path(config_path)
        if not path.exists():
            raise ConfigNotFoundError(str(path))

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigCorruptError(f"Failed to read config file {path}: {e}") from e
        except OSError as e:
            raise ConfigCorruptError(f"Failed to read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigCorruptError(f"Failed to read config file {path}: expected a JSON object")

        try:
            return ImplementConfig.from_dict(migrate(data))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigCorruptError(f"Failed to read config file {path}: {e}") from e

    def write(self, config_path: Path | str, config: ImplementConfig, *, validate: bool = True) -> None:
        """Persist the ledger.

        ``validate=False`` allows intentionally partial intermediate writes.
        """
        if validate:
            issues = config.validate()
            if issues:
                raise ConfigValidationError(issues)

        path = Path(config_path)
        try:
            atomic_write(path, json.dumps(config.to_dict(), indent=2) + "\n")
        except OSError as e:
            raise ConfigWriteError(f"Failed to write config file {path}: {e}") from e

    def initialize(
        self,
        config_path: Path | str,
        tasks_path: Path | str,
        phases: List[TaskPhase],
        commit_strategy: str = "none",
    ) -> ImplementConfig:
        """Create a fresh ledger for a parsed task file.

        Tasks already checked in the file are recorded as completed.
        """
        current = find_first_incomplete_task(phases)
        if current is None:
            current = phases[-1].tasks[-1] if phases and phases[-1].tasks else Task(
                id="initial", description="Initial Task", phase="initialization"
            )

        now = utc_timestamp()
        completed = [task.id for phase in phases for task in phase.tasks if task.completed]
        config = ImplementConfig(
            commit_strategy=commit_strategy,
            tasks_path=str(tasks_path),
            current_task=current,
            stats=get_task_stats(phases),
            timestamp=now,
            completed_task_ids=completed,
            completion_timestamps={task_id: now for task_id in completed},
        )
        self.write(config_path, config)
        log_ledger_event("initialized", str(config_path), commit_strategy=commit_strategy)
        return config

    def update(self, config_path: Path | str, **updates: Any) -> ImplementConfig:
        """Replace top-level fields (snake_case attribute names)."""
        config = self.read(config_path)
        for name, value in updates.items():
            if name not in ImplementConfig.__dataclass_fields__ or name == "extra":
                raise ConfigValidationError([f"unknown config field '{name}'"])
            setattr(config, name, value)
        config.timestamp = utc_timestamp()
        self.write(config_path, config)
        log_ledger_event("updated", str(config_path), fields=sorted(updates))
        return config

    def track_completion(self, config_path: Path | str, task_id: str) -> ImplementConfig:
        """Record ``task_id`` as completed.

        Idempotent on the id list; re-tracking refreshes the completion
        timestamp and ``lastCompletedTaskId``.
        """
        config = self.read(config_path)

        if task_id not in config.completed_task_ids:
            config.completed_task_ids.append(task_id)

        now = utc_timestamp()
        config.completion_timestamps[task_id] = now
        config.last_completed_task_id = task_id
        config.timestamp = now

        self.write(config_path, config)
        log_ledger_event("completion_tracked", str(config_path), task_id=task_id)
        return config

    def add_blocked_task(self, config_path: Path | str, task_id: str, reason: str) -> ImplementConfig:
        """Block ``task_id``, replacing any previous entry for it."""
        config = self.read(config_path)
        now = utc_timestamp()
        config.blocked_tasks = [b for b in config.blocked_tasks if b.task_id != task_id]
        config.blocked_tasks.append(BlockedTask(task_id=task_id, reason=reason, timestamp=now))
        config.timestamp = now
        self.write(config_path, config)
        log_ledger_event("task_blocked", str(config_path), task_id=task_id, reason=reason)
        return config

    def remove_blocked_task(self, config_path: Path | str, task_id: str) -> ImplementConfig:
        config = self.read(config_path)
        remaining = [b for b in config.blocked_tasks if b.task_id != task_id]
        if len(remaining) != len(config.blocked_tasks):
            config.blocked_tasks = remaining
            config.timestamp = utc_timestamp()
            self.write(config_path, config)
            log_ledger_event("task_unblocked", str(config_path), task_id=task_id)
        return config

    def create_resume_checkpoint(
        self,
        config_path: Path | str,
        current_task_id: str,
        phase_progress: Dict[str, int],
    ) -> ImplementConfig:
        config = self.read(config_path)
        now = utc_timestamp()
        config.resume_checkpoint = ResumeCheckpoint(
            last_task_id=current_task_id,
            phase_progress=dict(phase_progress),
            session_start_time=now,
        )
        config.timestamp = now
        self.write(config_path, config)
        log_ledger_event("checkpoint_created", str(config_path), task_id=current_task_id)
        return config

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_state(self, config_path: Path | str) -> Dict[str, Any]:
        """Summarize the current implementation state."""
        config = self.read(config_path)
        last_id = config.last_completed_task_id
        return {
            "currentTaskId": config.current_task.id if config.current_task else None,
            "completedCount": len(config.completed_task_ids),
            "remainingCount": config.stats.remaining if config.stats else 0,
            "blockedCount": len(config.blocked_tasks),
            "lastCompletedTaskId": last_id,
            "lastCompletionTime": config.completion_timestamps.get(last_id) if last_id else None,
        }

    def is_task_completed(self, config_path: Path | str, task_id: str) -> bool:
        return task_id in self.read(config_path).completed_task_ids

    def blocked_task_ids(self, config_path: Path | str) -> List[str]:
        return [blocked.task_id for blocked in self.read(config_path).blocked_tasks]


def find_config_files(outputs_dir: Path | str, exclude: Iterable[str] = ("archive",)) -> List[Path]:
    """Ledger files under ``outputs_dir``, most recently modified first."""
    outputs = Path(outputs_dir)
    if not outputs.is_dir():
        return []
    excluded = set(exclude)
    found = [
        entry / CONFIG_FILENAME
        for entry in outputs.iterdir()
        if entry.is_dir() and entry.name not in excluded and (entry / CONFIG_FILENAME).exists()
    ]
    return sorted(found, key=lambda path: path.stat().st_mtime, reverse=True)


def latest_config_file(outputs_dir: Path | str) -> Optional[Path]:
    files = find_config_files(outputs_dir)
    return files[0] if files else None
