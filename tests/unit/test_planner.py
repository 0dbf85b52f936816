"""Unit tests for PRD resolution and phase assembly."""

import logging
import os

import pytest

from taskplan.codec import read_tasks_file
from taskplan.errors import PrdDirectoryNotFoundError, PrdNotFoundError
from taskplan.planner import (
    DEFAULT_PHASE_NAME,
    QA_PHASE_NAME,
    TECHNICAL_PHASE_NAME,
    DirectoryEntry,
    TaskPlanner,
)


STRUCTURED_PRD = """# Acme Search

## Core Features
- Add pagination to the search results page
- Configure environment variables for the API keys
- Write a README guide for new contributors

## Technical Requirements
- Must run on Python 3.11
- Use PostgreSQL 15
- Response time under 200ms
- Deploy with Docker

## Success Criteria
- Users find results in under two seconds.
- Search relevance improves by 20 percent
- A third criterion that is ignored
"""


@pytest.fixture
def planner():
    return TaskPlanner()


class TestResolvePrdFile:
    """Test cases for PRD file resolution."""

    def test_auto_prefers_full_prd(self, planner, tmp_path):
        """Full PRDs win over quick PRDs in auto mode."""
        (tmp_path / "quick-prd.md").write_text("# Quick")
        (tmp_path / "PRD.md").write_text("# Full")

        path, source = planner.resolve_prd_file(tmp_path)

        assert path == tmp_path / "PRD.md"
        assert source == "full"

    def test_auto_falls_back_through_sources(self, planner, tmp_path):
        """Without a full PRD, auto picks the next available source."""
        (tmp_path / "optimized-prompt.md").write_text("# Prompt")

        _, source = planner.resolve_prd_file(tmp_path)

        assert source == "prompt"

    def test_explicit_source_does_not_fall_back(self, planner, tmp_path):
        """Requesting quick never returns a full PRD."""
        (tmp_path / "full-prd.md").write_text("# Full")

        with pytest.raises(PrdNotFoundError) as exc_info:
            planner.resolve_prd_file(tmp_path, "quick")

        assert 'for source "quick"' in str(exc_info.value)

    def test_nothing_found_in_auto(self, planner, tmp_path):
        """Auto mode reports the directory that was searched."""
        with pytest.raises(PrdNotFoundError) as exc_info:
            planner.resolve_prd_file(tmp_path)

        assert str(tmp_path) in str(exc_info.value)

    def test_unknown_source_rejected(self, planner, tmp_path):
        with pytest.raises(ValueError):
            planner.resolve_prd_file(tmp_path, "huge")

    def test_detect_available_sources(self, planner, tmp_path):
        """Sources are reported in priority order."""
        (tmp_path / "mini-prd.md").write_text("# Mini")
        (tmp_path / "QUICK_PRD.md").write_text("# Quick")

        assert planner.detect_available_sources(tmp_path) == ["quick", "mini"]
        assert planner.has_prd_file(tmp_path)


class TestFindPrdDirectory:
    """Test cases for project directory discovery."""

    def _project(self, base, name):
        path = base / name
        path.mkdir()
        (path / "full-prd.md").write_text("# PRD")
        return path

    def test_most_recent_project_wins(self, tmp_path):
        """The newest directory with a PRD is chosen and archive is skipped."""
        older = self._project(tmp_path, "older")
        newer = self._project(tmp_path, "newer")
        archive = self._project(tmp_path, "archive")
        (tmp_path / "empty").mkdir()

        listing = [
            DirectoryEntry(older, 100.0),
            DirectoryEntry(newer, 200.0),
            DirectoryEntry(archive, 300.0),
            DirectoryEntry(tmp_path / "empty", 400.0),
        ]
        planner = TaskPlanner(list_directory=lambda base: listing)

        assert planner.find_prd_directory(tmp_path) == newer

    def test_default_lister_uses_mtime(self, tmp_path):
        """The default lister reads modification times from disk."""
        first = self._project(tmp_path, "first")
        second = self._project(tmp_path, "second")
        os.utime(first, (1000, 1000))
        os.utime(second, (2000, 2000))

        assert TaskPlanner().find_prd_directory(tmp_path) == second

    def test_named_project(self, planner, tmp_path):
        """An explicit project name is resolved directly."""
        project = self._project(tmp_path, "billing")

        assert planner.find_prd_directory(tmp_path, "billing") == project

    def test_named_project_missing(self, planner, tmp_path):
        with pytest.raises(PrdDirectoryNotFoundError):
            planner.find_prd_directory(tmp_path, "missing")

    def test_missing_outputs_directory(self, planner, tmp_path):
        with pytest.raises(PrdDirectoryNotFoundError):
            planner.find_prd_directory(tmp_path / "nope")

    def test_no_projects(self, planner, tmp_path):
        (tmp_path / "archive").mkdir()

        with pytest.raises(PrdDirectoryNotFoundError):
            planner.find_prd_directory(tmp_path)


class TestAnalyzePrd:
    """Test cases for phase assembly."""

    def test_structured_prd_phases(self, planner):
        """Features are grouped by category with constraints and criteria added."""
        phases = planner.analyze_prd(STRUCTURED_PRD)

        assert [phase.name for phase in phases] == [
            "Phase 1: Configuration & Setup",
            "Phase 2: Core Implementation",
            "Phase 3: Documentation",
            QA_PHASE_NAME,
        ]

        setup = phases[0]
        assert setup.tasks[0].description == (
            "Ensure technical constraints are satisfied: "
            "Must run on Python 3.11; Use PostgreSQL 15; Response time under 200ms"
        )
        assert setup.tasks[0].prd_reference == "Technical Constraints"
        assert [task.description for task in setup.tasks[1:]] == [
            "Configure environment variables for the API keys",
            "Add tests covering environment variables for the API keys",
        ]

        assert [task.description for task in phases[1].tasks] == [
            "Add pagination to the search results page",
            "Add tests covering pagination to the search results page",
        ]
        assert phases[1].tasks[0].prd_reference == "Add pagination to the search results page"
        assert [task.description for task in phases[2].tasks] == [
            "Write a README guide for new contributors"
        ]

    def test_success_criteria_capped_at_two(self, planner):
        """Only the first two criteria become validation tasks."""
        qa = planner.analyze_prd(STRUCTURED_PRD)[-1]

        assert [task.description for task in qa.tasks] == [
            "Validate success criterion: users find results in under two seconds",
            "Validate success criterion: search relevance improves by 20 percent",
        ]
        assert all(task.prd_reference == "Success Criteria" for task in qa.tasks)

    def test_ids_follow_phase_and_ordinal(self, planner):
        """Ids match the scheme used when parsing tasks.md."""
        phases = planner.analyze_prd(STRUCTURED_PRD)

        assert [task.id for task in phases[0].tasks] == [
            "phase-1-configuration-setup-1",
            "phase-1-configuration-setup-2",
            "phase-1-configuration-setup-3",
        ]
        assert phases[-1].tasks[0].id == "phase-qa-validation-success-1"

    def test_must_have_fallback(self, planner):
        """Must-Have feature blocks become one phase per feature."""
        prd = "\n".join([
            "## Requirements",
            "### Must-Have Features",
            "#### 1. Login",
            "**Behavior**:",
            "- Users can log in",
            "- Sessions persist",
            "**Notes**:",
            "- not a behaviour",
            "#### 2. Profile",
            "Profile details are shown.",
            "### Nice-to-Have Features",
            "#### 3. Themes",
            "**Behavior**:",
            "- Dark mode",
        ])

        phases = planner.analyze_prd(prd)

        assert [phase.name for phase in phases] == ["Phase 1: Login", "Phase 2: Profile"]
        assert [task.description for task in phases[0].tasks] == [
            "Implement users can log in",
            "Implement sessions persist",
        ]
        assert [task.description for task in phases[1].tasks] == ["Implement profile"]
        assert phases[1].tasks[0].prd_reference == "Profile"

    def test_behavior_label_with_inline_text(self, planner):
        """Bullets after a label that carries text on the same line are kept."""
        prd = "\n".join([
            "## Requirements",
            "### Must-Have Features",
            "#### 1. Login",
            "**Behavior**: users sign in",
            "- Users can log in",
        ])

        phases = planner.analyze_prd(prd)

        assert [task.description for task in phases[0].tasks] == ["Implement users can log in"]

    def test_constraints_without_features_create_foundation_phase(self, planner):
        """Constraints alone produce a technical foundations phase."""
        phases = planner.analyze_prd("## Technical Constraints\n- Node 18")

        assert [phase.name for phase in phases] == [TECHNICAL_PHASE_NAME]
        assert phases[0].tasks[0].description == "Ensure technical constraints are satisfied: Node 18"
        assert phases[0].tasks[0].id == "phase-1-technical-foundations-1"

    def test_unstructured_prd_gets_default_phase(self, planner):
        """Documents without recognizable sections still produce a plan."""
        phases = planner.analyze_prd("# Idea\n\nJust some prose about the product.")

        assert len(phases) == 1
        assert phases[0].name == DEFAULT_PHASE_NAME
        assert [task.description for task in phases[0].tasks] == [
            "Set up project structure and dependencies",
            "Implement core functionality as described in requirements",
            "Add tests and validation",
        ]
        assert phases[0].tasks[1].prd_reference == "Requirements"

    def test_large_feature_lists_warn(self, planner, caplog):
        """More than 50 features logs advisory warnings without failing."""
        features = "\n".join(f"- Implement feature number {i} for the product" for i in range(51))

        with caplog.at_level(logging.WARNING, logger="taskplan.planner"):
            phases = planner.analyze_prd(f"## Features\n{features}")

        assert sum(len(phase.tasks) for phase in phases) == 102
        assert "51 top-level features" in caplog.text
        assert "Generated 102 tasks" in caplog.text


class TestGenerateTasks:
    """Test cases for writing tasks.md from a PRD directory."""

    def test_generate_writes_parseable_file(self, planner, tmp_path):
        """The written file parses back to the generated phases."""
        (tmp_path / "full-prd.md").write_text(STRUCTURED_PRD, encoding="utf-8")

        result = planner.generate_tasks_from_prd(tmp_path)

        assert result.source_type == "full"
        assert result.output_path == str(tmp_path / "tasks.md")
        assert result.total_tasks == 8

        parsed = read_tasks_file(tmp_path / "tasks.md")
        assert [task.to_dict() for phase in parsed for task in phase.tasks] == [
            task.to_dict() for phase in result.phases for task in phase.tasks
        ]

    def test_generated_file_has_project_title(self, planner, tmp_path):
        (tmp_path / "quick-prd.md").write_text(STRUCTURED_PRD, encoding="utf-8")

        planner.generate_tasks_from_prd(tmp_path, "quick")

        assert "**Project**: Acme Search" in (tmp_path / "tasks.md").read_text(encoding="utf-8")
