"""Heuristic extraction of features and task descriptions from PRD markdown.

Everything in this module is deterministic pattern matching. Classification
is expressed as ordered ``(predicate, label)`` rule tables evaluated
first-match-wins, so precedence is visible in one place and each rule can be
tested on its own.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

Predicate = Callable[[str], bool]

# ----------------------------------------------------------------------
# Action verbs
# ----------------------------------------------------------------------

ACTION_VERBS: Tuple[str, ...] = (
    "Create",
    "Add",
    "Implement",
    "Build",
    "Generate",
    "Read",
    "Write",
    "Parse",
    "Analyze",
    "Display",
    "Update",
    "Handle",
    "Process",
    "Execute",
    "Mark",
    "Track",
    "Ensure",
    "Validate",
    "Configure",
)

# Accepted by the final normalisation pass, which also sees tasks that were
# not produced by behaviour conversion (defaults, QA checks).
TASK_VERBS: Tuple[str, ...] = ACTION_VERBS + ("Set up", "Fix", "Refactor", "Test", "Verify")

MAX_DESCRIPTION_LENGTH = 150
MAX_ID_LENGTH = 30


def _verb_pattern(verbs: Iterable[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(verb) for verb in verbs)
    return re.compile(rf"^(?:{alternatives})\b", re.IGNORECASE)


_ACTION_VERB_RE = _verb_pattern(ACTION_VERBS)
_TASK_VERB_RE = _verb_pattern(TASK_VERBS)


def starts_with_action_verb(text: str) -> bool:
    return bool(_ACTION_VERB_RE.match(text.strip()))


def starts_with_task_verb(text: str) -> bool:
    return bool(_TASK_VERB_RE.match(text.strip()))


# ----------------------------------------------------------------------
# Section splitting
# ----------------------------------------------------------------------

_SECTION_HEADING_RE = re.compile(r"^##\s+(.+)$")


def normalize_section_name(name: str) -> str:
    """Lowercase and drop every non-alphanumeric character.

    ``"Success Criteria"`` and ``"success-criteria!"`` both become
    ``"successcriteria"``.
    """
    return re.sub(r"[^a-z0-9]", "", name.lower())


def split_sections(document: str) -> Dict[str, str]:
    """Split a markdown document into level-2 sections keyed by normalized title.

    Lines before the first ``##`` heading are dropped. Deeper headings are
    kept as ordinary content. When two headings normalize to the same key
    the later section wins.
    """
    sections: Dict[str, str] = {}
    current: Optional[str] = None
    content: List[str] = []

    for line in document.splitlines():
        match = _SECTION_HEADING_RE.match(line)
        if match:
            if current is not None:
                sections[normalize_section_name(current)] = "\n".join(content).strip()
            current = match.group(1).strip()
            content = []
        elif current is not None:
            content.append(line)

    if current is not None:
        sections[normalize_section_name(current)] = "\n".join(content).strip()

    return sections


def find_section(sections: Dict[str, str], aliases: Sequence[str]) -> Optional[str]:
    """Return the first non-empty section matching one of ``aliases``."""
    for alias in aliases:
        content = sections.get(normalize_section_name(alias))
        if content:
            return content
    return None


# ----------------------------------------------------------------------
# Feature extraction
# ----------------------------------------------------------------------

_TOP_LEVEL_ITEM_RE = re.compile(r"^(?:[-*]|\d+[.)])\s+(.+)$")
_FILE_EXTENSION_RE = re.compile(r"\.(?:ts|js|json|md|tsx|jsx|mjs|cjs|py|ya?ml|toml)\b", re.IGNORECASE)
_MODULE_SYNTAX_RE = re.compile(
    r"^(?:import|export)\s+(?:[\w{}*,\s]+\s+from\b|default\b|\{)"
    r"|\bimport\s+[\w{}*,\s]+\s+from\b"
    r"|\bfrom\s+[\w.]+\s+import\b"
    r"|\bexport\s+(?:default|const|function|class|let|var|type|interface)\b"
    r"|\brequire\("
)
_SHORT_COMMAND_RE = re.compile(r"^[a-z-]+:[a-z-]+$", re.IGNORECASE)
_DEONTIC_RE = re.compile(r"\b(?:must|should|required)\b", re.IGNORECASE)
_CONSTRAINT_PREFIX_RE = re.compile(r"^(?:password|email|session|token|rate|https)", re.IGNORECASE)

MIN_FEATURE_LENGTH = 25


def looks_like_code_or_path(text: str) -> bool:
    """Detect list items that are code samples, file paths or commands."""
    stripped = text.strip()
    if _FILE_EXTENSION_RE.search(stripped):
        return True
    if _MODULE_SYNTAX_RE.search(stripped):
        return True
    if stripped.startswith(("{", "[")):
        return True
    if len(stripped) < 15 and _SHORT_COMMAND_RE.match(stripped):
        return True
    return False


def looks_like_implementation_detail(text: str) -> bool:
    """Detect constraint language or fragments too short to be a feature."""
    if _DEONTIC_RE.search(text):
        return True
    if _CONSTRAINT_PREFIX_RE.match(text):
        return True
    if len(text) < MIN_FEATURE_LENGTH and not starts_with_action_verb(text):
        return True
    return False


def _normalize_item(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip().rstrip(".").rstrip()


def extract_list_items(section: str, *, features_only: bool = True) -> List[str]:
    """Extract top-level list items from a section.

    Only unindented ``-``, ``*``, ``N.`` and ``N)`` items count; nested
    bullets are sub-steps of the item above them. Items inside fenced code
    blocks are skipped, as are items that look like code or paths. With
    ``features_only`` the constraint/short-fragment filter is applied too;
    constraint and criteria sections are read with it switched off.
    """
    items: List[str] = []
    in_code_block = False

    for line in section.splitlines():
        if line.strip().startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block:
            continue

        match = _TOP_LEVEL_ITEM_RE.match(line)
        if not match:
            continue

        value = match.group(1).strip()
        if not value or looks_like_code_or_path(value):
            continue
        if features_only and looks_like_implementation_detail(value):
            continue

        normalized = _normalize_item(value)
        if normalized:
            items.append(normalized)

    return items


# ----------------------------------------------------------------------
# Categorisation
# ----------------------------------------------------------------------

CATEGORY_SETUP = "Configuration & Setup"
CATEGORY_CORE = "Core Implementation"
CATEGORY_TESTING = "Testing & Validation"
CATEGORY_DOCS = "Documentation"
CATEGORY_RELEASE = "Integration & Release"

# Output order of phases, independent of rule precedence.
CATEGORY_ORDER: Tuple[str, ...] = (
    CATEGORY_SETUP,
    CATEGORY_CORE,
    CATEGORY_TESTING,
    CATEGORY_DOCS,
    CATEGORY_RELEASE,
)


def keyword_rule(pattern: str) -> Predicate:
    """Build a case-insensitive keyword predicate."""
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda text: bool(compiled.search(text))


CATEGORY_RULES: Tuple[Tuple[Predicate, str], ...] = (
    (
        keyword_rule(
            r"\b(?:config|configuration|configure|setup|set up|install|installation|package"
            r"|tsconfig|dependency|dependencies|environment)\b"
        ),
        CATEGORY_SETUP,
    ),
    (keyword_rule(r"\b(?:test|tests|testing|coverage|validation|verify|qa)\b"), CATEGORY_TESTING),
    (keyword_rule(r"\b(?:document|documentation|readme|changelog|guide|comment|comments)\b"), CATEGORY_DOCS),
    (
        keyword_rule(r"\b(?:integrate|integration|release|deploy|deployment|publish|build|distribution)\b"),
        CATEGORY_RELEASE,
    ),
)


def first_match(rules: Sequence[Tuple[Predicate, str]], text: str, default: str) -> str:
    for predicate, label in rules:
        if predicate(text):
            return label
    return default


def categorize_feature(feature: str) -> str:
    return first_match(CATEGORY_RULES, feature, CATEGORY_CORE)


def group_features_by_category(features: Iterable[str]) -> Dict[str, List[str]]:
    """Bucket features into categories, in category order, omitting empty ones."""
    groups: Dict[str, List[str]] = {category: [] for category in CATEGORY_ORDER}
    for feature in features:
        groups[categorize_feature(feature)].append(feature)
    return {category: items for category, items in groups.items() if items}


# ----------------------------------------------------------------------
# Task description synthesis
# ----------------------------------------------------------------------

KIND_CONFIG = "config"
KIND_DOCUMENTATION = "documentation"
KIND_TEST = "test"
KIND_CONVERSION = "conversion"
KIND_COMPLEX = "complex"

FEATURE_KIND_RULES: Tuple[Tuple[Predicate, str], ...] = (
    (
        keyword_rule(r"\b(?:config|configuration|setup|install|update.*json|tsconfig)\b|package\.json"),
        KIND_CONFIG,
    ),
    (keyword_rule(r"\b(?:document|documentation|readme|changelog|guide)\b"), KIND_DOCUMENTATION),
    (keyword_rule(r"\b(?:test|tests|testing|coverage|validation|verify)\b"), KIND_TEST),
    (keyword_rule(r"\b(?:convert|migrate|migration|refactor|replace|update.*code)\b"), KIND_CONVERSION),
)


def detect_feature_kind(feature: str) -> str:
    return first_match(FEATURE_KIND_RULES, feature, KIND_COMPLEX)


def strip_bold(text: str) -> str:
    return text.replace("**", "")


def convert_behavior_to_task(behavior: str) -> str:
    """Turn a behaviour statement into a verb-led task description.

    >>> convert_behavior_to_task("Users can log in")
    'Implement users can log in'
    >>> convert_behavior_to_task("**Add** pagination")
    'Add pagination'
    """
    task = strip_bold(behavior).strip()
    if not task:
        return task
    if not starts_with_action_verb(task):
        task = f"Implement {task[0].lower()}{task[1:]}"
    return task


def format_inline_text(text: str) -> str:
    """Prepare a feature for embedding mid-sentence.

    A leading action verb is dropped so that ``"Add pagination"`` reads as
    ``"pagination"`` in ``"Add tests covering pagination"``.
    """
    cleaned = strip_bold(text).strip().rstrip(".").strip()
    verb = _ACTION_VERB_RE.match(cleaned)
    if verb and cleaned[verb.end():].strip():
        cleaned = cleaned[verb.end():].strip()
    if not cleaned:
        return cleaned
    return cleaned[0].lower() + cleaned[1:]


def build_feature_task_descriptions(feature: str) -> List[str]:
    """Expand one feature into one or two task descriptions."""
    kind = detect_feature_kind(feature)
    implementation = convert_behavior_to_task(feature)
    subject = format_inline_text(feature)

    if kind in (KIND_CONFIG, KIND_DOCUMENTATION):
        return [implementation]
    if kind == KIND_TEST:
        return [implementation, f"Verify {subject} passes successfully"]
    if kind == KIND_CONVERSION:
        return [implementation, f"Test {subject} works correctly"]
    return [implementation, f"Add tests covering {subject}"]


# ----------------------------------------------------------------------
# Normalisation
# ----------------------------------------------------------------------


def optimize_task_description(description: str) -> str:
    """Guarantee a verb-led description of at most 150 characters."""
    description = description.strip()
    if not starts_with_task_verb(description):
        description = f"Implement {description}"
    if len(description) > MAX_DESCRIPTION_LENGTH:
        description = description[: MAX_DESCRIPTION_LENGTH - 3] + "..."
    return description


def sanitize_id(text: str) -> str:
    """Slugify ``text`` for use in task ids (lowercase, hyphenated, capped)."""
    slug = re.sub(r"[^a-z0-9]", "-", text.lower())
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:MAX_ID_LENGTH].rstrip("-")


def task_id_for(phase_name: str, ordinal: int) -> str:
    return f"{sanitize_id(phase_name)}-{ordinal}"
