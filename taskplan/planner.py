"""PRD resolution and phase assembly.

The planner locates a PRD inside a project directory, turns it into an
ordered list of phases and writes them to tasks.md. Planning never fails
because a PRD lacks recognizable structure: it degrades to a fixed default
phase instead.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .codec import TASKS_FILENAME, write_tasks_file
from .errors import PrdDirectoryNotFoundError, PrdNotFoundError
from .extraction import (
    build_feature_task_descriptions,
    convert_behavior_to_task,
    extract_list_items,
    find_section,
    format_inline_text,
    group_features_by_category,
    optimize_task_description,
    split_sections,
    task_id_for,
)
from .models import PRD_SOURCE_TYPES, Task, TaskGenerationResult, TaskPhase
from .plan_logging import log_operation, log_performance, log_task_generation

logger = logging.getLogger("taskplan.planner")

SOURCE_FILE_MAP: Dict[str, Tuple[str, ...]] = {
    "full": ("full-prd.md", "PRD.md", "prd.md", "Full-PRD.md", "FULL_PRD.md", "FULL-PRD.md"),
    "quick": ("quick-prd.md", "QUICK_PRD.md"),
    "mini": ("mini-prd.md",),
    "prompt": ("optimized-prompt.md",),
}

SOURCE_ORDER_AUTO: Tuple[str, ...] = PRD_SOURCE_TYPES

ALL_KNOWN_PRD_FILES: Tuple[str, ...] = tuple(
    dict.fromkeys(name for source in SOURCE_ORDER_AUTO for name in SOURCE_FILE_MAP[source])
)

CORE_SECTION_ALIASES = ("requirements", "core features", "features", "key requirements")
TECHNICAL_SECTION_ALIASES = ("technical requirements", "technical constraints")
SUCCESS_SECTION_ALIASES = ("success criteria", "acceptance criteria")

TECHNICAL_PHASE_NAME = "Phase 1: Technical Foundations"
QA_PHASE_NAME = "Phase QA: Validation & Success"
DEFAULT_PHASE_NAME = "Phase 1: Implementation"

MAX_CONSTRAINTS = 3
MAX_SUCCESS_CRITERIA = 2
FEATURE_WARNING_THRESHOLD = 50
TASK_WARNING_THRESHOLD = 50
MAX_BEHAVIOR_LENGTH = 200

_MUST_HAVE_RE = re.compile(
    r"^###\s+Must[- ]Have Features\s*$(.*?)(?=^#{2,3}\s|\Z)",
    re.IGNORECASE | re.MULTILINE | re.DOTALL,
)
_FEATURE_HEADER_RE = re.compile(r"^####\s+(\d+)\.\s+(.+?)\s*$", re.MULTILINE)
_BEHAVIOR_LABEL_RE = re.compile(r"^\*\*Behavior\*\*:", re.IGNORECASE | re.MULTILINE)
_BEHAVIOR_BULLET_RE = re.compile(r"^[-*]\s+(.+)$")


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    """A listed directory with its modification time."""

    path: Path
    mtime: float


DirectoryLister = Callable[[Path], List[DirectoryEntry]]


def list_subdirectories(base: Path) -> List[DirectoryEntry]:
    """Default directory listing: immediate subdirectories with mtimes."""
    return [
        DirectoryEntry(path=entry, mtime=entry.stat().st_mtime)
        for entry in base.iterdir()
        if entry.is_dir()
    ]


class TaskPlanner:
    """Turns PRD documents into phased implementation plans."""

    def __init__(self, list_directory: Optional[DirectoryLister] = None):
        self.list_directory = list_directory or list_subdirectories

    # ------------------------------------------------------------------
    # PRD discovery
    # ------------------------------------------------------------------

    def resolve_prd_file(self, prd_dir: Path | str, source: str = "auto") -> Tuple[Path, str]:
        """Find the PRD in ``prd_dir`` by filename priority.

        ``source="auto"`` searches full, quick, mini and prompt in that
        order; an explicit source searches only its own filenames.
        """
        directory = Path(prd_dir)
        if source != "auto" and source not in SOURCE_FILE_MAP:
            raise ValueError(f"Unknown PRD source '{source}'. Expected one of: auto, {', '.join(SOURCE_ORDER_AUTO)}")

        order = SOURCE_ORDER_AUTO if source == "auto" else (source,)
        for source_type in order:
            for filename in SOURCE_FILE_MAP[source_type]:
                candidate = directory / filename
                if candidate.is_file():
                    return candidate, source_type

        raise PrdNotFoundError(str(directory), source)

    def has_prd_file(self, directory: Path | str) -> bool:
        directory = Path(directory)
        return any((directory / filename).is_file() for filename in ALL_KNOWN_PRD_FILES)

    def detect_available_sources(self, directory: Path | str) -> List[str]:
        """Source types that have at least one PRD file in ``directory``."""
        directory = Path(directory)
        return [
            source
            for source in SOURCE_ORDER_AUTO
            if any((directory / filename).is_file() for filename in SOURCE_FILE_MAP[source])
        ]

    def find_prd_directory(self, outputs_dir: Path | str, project_name: Optional[str] = None) -> Path:
        """Locate a project directory under ``outputs_dir``.

        With ``project_name`` that project is returned; otherwise the most
        recently modified directory holding a PRD. ``archive`` is skipped.
        """
        base = Path(outputs_dir)
        if not base.is_dir():
            raise PrdDirectoryNotFoundError(f"No {base} directory found.")

        if project_name:
            candidate = base / project_name
            if candidate.is_dir():
                return candidate
            raise PrdDirectoryNotFoundError(
                f"PRD project not found: {project_name}",
                hint=f"Available projects are the directories in {base}.",
            )

        candidates = [
            entry
            for entry in self.list_directory(base)
            if entry.path.name != "archive" and self.has_prd_file(entry.path)
        ]
        if not candidates:
            raise PrdDirectoryNotFoundError(f"No PRD directories found in {base}")

        return max(candidates, key=lambda entry: entry.mtime).path

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @log_performance("generate_tasks_from_prd")
    def generate_tasks_from_prd(self, prd_dir: Path | str, source: str = "auto") -> TaskGenerationResult:
        """Generate tasks.md for the PRD in ``prd_dir``."""
        directory = Path(prd_dir)
        prd_path, source_type = self.resolve_prd_file(directory, source)

        with log_operation("generate_tasks_from_prd", prd_dir=str(directory), source=source_type):
            prd_content = prd_path.read_text(encoding="utf-8")
            phases = self.analyze_prd(prd_content)
            output_path = write_tasks_file(directory / TASKS_FILENAME, phases, prd_content)

        result = TaskGenerationResult(
            phases=tuple(phases),
            output_path=str(output_path),
            source_path=str(prd_path),
            source_type=source_type,
        )
        log_task_generation(str(directory), result.total_tasks, source_type=source_type, phases=len(phases))
        logger.info(f"Generated {result.total_tasks} tasks in {len(phases)} phases from {prd_path}")
        return result

    def analyze_prd(self, prd_content: str) -> List[TaskPhase]:
        """Assemble the ordered phase list for a PRD document."""
        sections = split_sections(prd_content)
        phases: List[TaskPhase] = []

        core = find_section(sections, CORE_SECTION_ALIASES)
        if core:
            phases.extend(self.phases_from_core_features(core))

        if not phases and sections.get("requirements"):
            phases.extend(self.phases_from_must_have_features(sections["requirements"]))

        technical = find_section(sections, TECHNICAL_SECTION_ALIASES)
        if technical:
            self.inject_technical_constraints(phases, technical)

        success = find_section(sections, SUCCESS_SECTION_ALIASES)
        if success:
            self.append_success_criteria(phases, success)

        if not phases:
            logger.info("No recognizable PRD structure; using default phase")
            phases.append(self.default_phase())

        return self.finalize_phases(phases)

    def phases_from_core_features(self, section: str) -> List[TaskPhase]:
        """One phase per non-empty feature category."""
        features = extract_list_items(section)
        if not features:
            return []

        if len(features) > FEATURE_WARNING_THRESHOLD:
            logger.warning(
                f"PRD contains {len(features)} top-level features. Consider grouping related items."
            )

        phases: List[TaskPhase] = []
        for category, category_features in group_features_by_category(features).items():
            phase_name = f"Phase {len(phases) + 1}: {category}"
            tasks = [
                Task(id="", description=description, phase=phase_name, prd_reference=feature)
                for feature in category_features
                for description in build_feature_task_descriptions(feature)
            ]
            if tasks:
                phases.append(TaskPhase(name=phase_name, tasks=tasks))

        total = sum(len(phase.tasks) for phase in phases)
        if total > TASK_WARNING_THRESHOLD:
            logger.warning(f"Generated {total} tasks. Consider merging related tasks or simplifying PRD.")

        return phases

    def phases_from_must_have_features(self, requirements: str) -> List[TaskPhase]:
        """Phases from ``### Must-Have Features`` / ``#### N. Name`` blocks.

        Each ``**Behavior**:`` bullet becomes a task of its feature's phase.
        """
        block = _MUST_HAVE_RE.search(requirements)
        if not block:
            return []

        content = block.group(1)
        headers = list(_FEATURE_HEADER_RE.finditer(content))
        phases: List[TaskPhase] = []

        for index, header in enumerate(headers):
            number, name = header.group(1), header.group(2).strip()
            end = headers[index + 1].start() if index + 1 < len(headers) else len(content)
            phase_name = f"Phase {number}: {name}"

            behaviors = self._behavior_bullets(content[header.end():end])
            if behaviors:
                descriptions = [convert_behavior_to_task(behavior) for behavior in behaviors]
            else:
                descriptions = [f"Implement {name.lower()}"]

            phases.append(
                TaskPhase(
                    name=phase_name,
                    tasks=[
                        Task(id="", description=description, phase=phase_name, prd_reference=name)
                        for description in descriptions
                    ],
                )
            )

        return phases

    def _behavior_bullets(self, feature_block: str) -> List[str]:
        label = _BEHAVIOR_LABEL_RE.search(feature_block)
        if not label:
            return []

        bullets: List[str] = []
        for line in feature_block[label.end():].splitlines():
            if line.startswith("**") or line.startswith("#"):
                break
            match = _BEHAVIOR_BULLET_RE.match(line)
            if match:
                behavior = match.group(1).strip()
                # Overly long bullets are prose, not behaviours.
                if behavior and len(behavior) < MAX_BEHAVIOR_LENGTH:
                    bullets.append(behavior)
        return bullets

    def inject_technical_constraints(self, phases: List[TaskPhase], section: str) -> None:
        """Prepend a constraints task to the first phase (or a new first phase)."""
        constraints = extract_list_items(section, features_only=False)
        if not constraints:
            return

        description = "Ensure technical constraints are satisfied: " + "; ".join(constraints[:MAX_CONSTRAINTS])
        if not phases:
            phases.append(TaskPhase(name=TECHNICAL_PHASE_NAME))

        first = phases[0]
        first.tasks.insert(
            0,
            Task(id="", description=description, phase=first.name, prd_reference="Technical Constraints"),
        )

    def append_success_criteria(self, phases: List[TaskPhase], section: str) -> None:
        criteria = extract_list_items(section, features_only=False)[:MAX_SUCCESS_CRITERIA]
        if not criteria:
            return

        phases.append(
            TaskPhase(
                name=QA_PHASE_NAME,
                tasks=[
                    Task(
                        id="",
                        description=f"Validate success criterion: {format_inline_text(criterion)}",
                        phase=QA_PHASE_NAME,
                        prd_reference="Success Criteria",
                    )
                    for criterion in criteria
                ],
            )
        )

    def default_phase(self) -> TaskPhase:
        descriptions = (
            ("Set up project structure and dependencies", None),
            ("Implement core functionality as described in requirements", "Requirements"),
            ("Add tests and validation", None),
        )
        return TaskPhase(
            name=DEFAULT_PHASE_NAME,
            tasks=[
                Task(id="", description=description, phase=DEFAULT_PHASE_NAME, prd_reference=reference)
                for description, reference in descriptions
            ],
        )

    def finalize_phases(self, phases: Sequence[TaskPhase]) -> List[TaskPhase]:
        """Normalize every description, assign ids and drop empty phases.

        Ids use the same ``<sanitized-phase>-<ordinal>`` scheme as the
        parser, so they match a fresh read of the written file.
        """
        finalized: List[TaskPhase] = []
        for phase in phases:
            if not phase.tasks:
                continue
            for ordinal, task in enumerate(phase.tasks, start=1):
                task.description = optimize_task_description(task.description)
                task.phase = phase.name
                task.id = task_id_for(phase.name, ordinal)
            finalized.append(phase)
        return finalized
