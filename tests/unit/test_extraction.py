"""Unit tests for PRD feature extraction and task description synthesis.

This module covers section splitting, list-item filtering, the ordered
classification rule tables and description normalisation.
"""

import pytest

from taskplan.extraction import (
    CATEGORY_CORE,
    CATEGORY_DOCS,
    CATEGORY_RELEASE,
    CATEGORY_SETUP,
    CATEGORY_TESTING,
    CATEGORY_RULES,
    KIND_COMPLEX,
    KIND_CONFIG,
    KIND_CONVERSION,
    KIND_DOCUMENTATION,
    KIND_TEST,
    build_feature_task_descriptions,
    categorize_feature,
    convert_behavior_to_task,
    detect_feature_kind,
    extract_list_items,
    find_section,
    first_match,
    format_inline_text,
    group_features_by_category,
    looks_like_code_or_path,
    normalize_section_name,
    optimize_task_description,
    sanitize_id,
    split_sections,
    starts_with_action_verb,
    starts_with_task_verb,
    task_id_for,
)


class TestSectionSplitter:
    """Test cases for level-2 section splitting."""

    def test_normalize_section_name(self):
        """Names are lowercased and stripped of non-alphanumerics."""
        assert normalize_section_name("Success Criteria") == "successcriteria"
        assert normalize_section_name("success-criteria!") == "successcriteria"

    def test_split_sections_drops_preamble(self):
        """Content before the first heading is not a section."""
        document = "# Title\nintro text\n## Overview\nSome text\n## Success Criteria\n- fast"

        sections = split_sections(document)

        assert sections == {"overview": "Some text", "successcriteria": "- fast"}

    def test_split_sections_keeps_deeper_headings(self):
        """### and #### headings stay inside their section."""
        sections = split_sections("## Requirements\n### Must-Have Features\n#### 1. Login")

        assert sections["requirements"] == "### Must-Have Features\n#### 1. Login"

    def test_split_sections_later_duplicate_wins(self):
        """A repeated heading replaces the earlier section."""
        sections = split_sections("## Features\n- first\n## Features\n- second")

        assert sections == {"features": "- second"}

    def test_find_section_uses_first_non_empty_alias(self):
        """Aliases are tried in order and empty sections are skipped."""
        sections = {"requirements": "", "corefeatures": "- item"}

        assert find_section(sections, ("requirements", "core features")) == "- item"
        assert find_section(sections, ("features",)) is None


class TestFeatureExtractor:
    """Test cases for list-item extraction and filtering."""

    def test_extract_top_level_items_only(self):
        """Nested bullets, code blocks, paths and constraints are skipped."""
        section = "\n".join([
            "- Implement user login flow with OAuth",
            "  - nested sub-step that is long enough",
            "- Users must use HTTPS everywhere in production",
            "- config.json",
            "- short",
            "```",
            "- Create an item that lives inside a code block",
            "```",
            "1. Build the reporting dashboard",
        ])

        assert extract_list_items(section) == [
            "Implement user login flow with OAuth",
            "Build the reporting dashboard",
        ]

    def test_constraint_language_kept_when_not_features_only(self):
        """Constraint sections keep deontic items."""
        section = "- Users must use HTTPS everywhere\n- Node 18"

        assert extract_list_items(section, features_only=False) == [
            "Users must use HTTPS everywhere",
            "Node 18",
        ]

    def test_short_item_with_action_verb_is_kept(self):
        """Fragments under the minimum length survive when verb-led."""
        assert extract_list_items("- Add pagination") == ["Add pagination"]

    def test_trailing_period_and_whitespace_normalized(self):
        """Items are collapsed to single spaces without a trailing period."""
        assert extract_list_items("- Create   the export   feature for reports.") == [
            "Create the export feature for reports"
        ]

    @pytest.mark.parametrize(
        "text",
        [
            "src/index.ts",
            "import fs from 'fs'",
            "export default function main",
            "{ \"key\": 1 }",
            "[1, 2, 3]",
            "npm:build",
        ],
    )
    def test_looks_like_code_or_path(self, text):
        """Code samples, paths and short commands are detected."""
        assert looks_like_code_or_path(text)

    def test_prose_mentioning_export_is_not_code(self):
        """Plain prose starting with Export is a feature, not module syntax."""
        assert not looks_like_code_or_path("Export reports to CSV files for finance")

    def test_lowercase_export_prose_is_kept(self):
        """A lowercase leading export word without module syntax is a feature."""
        assert extract_list_items("- export monthly reports to CSV for the finance team") == [
            "export monthly reports to CSV for the finance team"
        ]

    @pytest.mark.parametrize(
        "item",
        [
            "- Password reset via email link for all users",
            "- Email notifications sent for every new comment",
            "- Session timeout after thirty minutes of inactivity",
            "- Token refresh happens before the access token expires",
            "- Rate limiting on the public API endpoints",
            "- HTTPS termination at the load balancer level",
        ],
    )
    def test_constraint_nouns_are_not_features(self, item):
        """Items led by security and transport nouns are constraints."""
        assert extract_list_items(item) == []

    def test_constraint_nouns_kept_when_not_features_only(self):
        """Constraint sections still read noun-led items."""
        assert extract_list_items("- Password hashing with bcrypt", features_only=False) == [
            "Password hashing with bcrypt"
        ]


class TestVerbs:
    """Test cases for action verb detection."""

    def test_action_verbs_are_case_insensitive(self):
        """Verbs match regardless of case."""
        assert starts_with_action_verb("implement login")
        assert starts_with_action_verb("Track progress")

    def test_verb_needs_word_boundary(self):
        """A verb prefix of a longer word does not count."""
        assert not starts_with_action_verb("Additional settings page")

    def test_task_verbs_extend_action_verbs(self):
        """The final pass also accepts Set up, Fix, Refactor, Test and Verify."""
        assert starts_with_task_verb("Set up CI")
        assert starts_with_task_verb("Verify the release")
        assert not starts_with_action_verb("Set up CI")


class TestFeatureCategorizer:
    """Test cases for the ordered category rule table."""

    @pytest.mark.parametrize(
        "feature,category",
        [
            ("Configure CI environment and testing", CATEGORY_SETUP),
            ("Increase test coverage for parser module", CATEGORY_TESTING),
            ("Write a README guide for users", CATEGORY_DOCS),
            ("Deploy the service to production", CATEGORY_RELEASE),
            ("Support pagination of search results", CATEGORY_CORE),
        ],
    )
    def test_categorize_feature(self, feature, category):
        """First matching rule wins; core is the default."""
        assert categorize_feature(feature) == category

    def test_rules_are_independently_testable(self):
        """Each rule predicate can be evaluated on its own."""
        setup_predicate, label = CATEGORY_RULES[0]

        assert label == CATEGORY_SETUP
        assert setup_predicate("Install dependencies")
        assert not setup_predicate("Render the dashboard")

    def test_first_match_default(self):
        """The default label is returned when no rule matches."""
        assert first_match((), "anything", "fallback") == "fallback"

    def test_group_preserves_category_order(self):
        """Groups follow category order and omit empty categories."""
        groups = group_features_by_category([
            "Deploy the service to production",
            "Support pagination of search results",
            "Configure the environment variables",
        ])

        assert list(groups) == [CATEGORY_SETUP, CATEGORY_CORE, CATEGORY_RELEASE]
        assert groups[CATEGORY_CORE] == ["Support pagination of search results"]


class TestTaskSynthesis:
    """Test cases for turning features into task descriptions."""

    @pytest.mark.parametrize(
        "feature,kind",
        [
            ("Update tsconfig for strict mode", KIND_CONFIG),
            ("Write README documentation", KIND_DOCUMENTATION),
            ("Increase test coverage for the parser", KIND_TEST),
            ("Migrate storage layer to SQLite", KIND_CONVERSION),
            ("Add pagination", KIND_COMPLEX),
        ],
    )
    def test_detect_feature_kind(self, feature, kind):
        """Kinds are detected with config taking precedence."""
        assert detect_feature_kind(feature) == kind

    def test_verb_led_feature_gets_test_task(self):
        """A complex feature yields an implementation and a test task."""
        assert build_feature_task_descriptions("Add pagination") == [
            "Add pagination",
            "Add tests covering pagination",
        ]

    def test_config_and_docs_features_yield_single_task(self):
        """Configuration and documentation features are one task."""
        assert build_feature_task_descriptions("Update tsconfig for strict mode") == [
            "Update tsconfig for strict mode"
        ]
        assert build_feature_task_descriptions("Write README documentation") == [
            "Write README documentation"
        ]

    def test_test_feature_gets_verification_task(self):
        """Test-oriented features are followed by a verification task."""
        assert build_feature_task_descriptions("Increase test coverage for the parser") == [
            "Implement increase test coverage for the parser",
            "Verify increase test coverage for the parser passes successfully",
        ]

    def test_conversion_feature_gets_works_correctly_task(self):
        """Conversions are followed by a 'works correctly' task."""
        assert build_feature_task_descriptions("Migrate storage layer to SQLite") == [
            "Implement migrate storage layer to SQLite",
            "Test migrate storage layer to SQLite works correctly",
        ]

    def test_convert_behavior_to_task(self):
        """Behaviours gain an Implement prefix unless already verb-led."""
        assert convert_behavior_to_task("Users can log in") == "Implement users can log in"
        assert convert_behavior_to_task("**Add** pagination") == "Add pagination"

    def test_format_inline_text(self):
        """Inline text drops the leading verb, the capital and the period."""
        assert format_inline_text("Add pagination.") == "pagination"
        assert format_inline_text("Users can log in") == "users can log in"
        assert format_inline_text("Add") == "add"


class TestNormalisation:
    """Test cases for description and id normalisation."""

    def test_optimize_prefixes_missing_verb(self):
        """Descriptions without a task verb get Implement."""
        assert optimize_task_description("users can log in") == "Implement users can log in"
        assert optimize_task_description("Set up CI") == "Set up CI"

    def test_optimize_truncates_long_descriptions(self):
        """Descriptions are capped at 150 characters with an ellipsis."""
        result = optimize_task_description("Implement " + "x" * 200)

        assert len(result) == 150
        assert result.endswith("...")

    def test_sanitize_id(self):
        """Ids are lowercase, hyphenated and capped at 30 characters."""
        assert sanitize_id("Phase 1: Configuration & Setup") == "phase-1-configuration-setup"
        assert sanitize_id("Phase 2: Integration & Releasing X") == "phase-2-integration-releasing"

    def test_task_id_for(self):
        """Task ids are the sanitized phase plus a 1-based ordinal."""
        assert task_id_for("Phase 1: Login", 1) == "phase-1-login-1"
