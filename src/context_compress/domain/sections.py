"""Note compression domain model.

Defines the value types flowing through the compression pipeline: parsed
markdown sections, the closed set of memory categories, serialized blocks and
per-run workflow results.  Records are frozen dataclasses; merging and
classification build new sequences instead of editing existing values.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

CATEGORY_PREFERENCES = "preferences"
CATEGORY_DECISIONS = "decisions"
CATEGORY_FACTS = "facts"
CATEGORY_ENTITIES = "entities"
CATEGORY_LESSONS = "lessons"
CATEGORY_TODOS = "todos"
CATEGORY_OPINIONS = "opinions"

# Canonical order: detail files and index groups are emitted in this order.
CATEGORIES: Tuple[str, ...] = (
    CATEGORY_PREFERENCES,
    CATEGORY_DECISIONS,
    CATEGORY_FACTS,
    CATEGORY_ENTITIES,
    CATEGORY_LESSONS,
    CATEGORY_TODOS,
    CATEGORY_OPINIONS,
)

CATEGORY_TAGS: Dict[str, str] = {
    CATEGORY_PREFERENCES: "PREF",
    CATEGORY_DECISIONS: "DECISION",
    CATEGORY_FACTS: "FACT",
    CATEGORY_ENTITIES: "ENTITY",
    CATEGORY_LESSONS: "LESSON",
    CATEGORY_TODOS: "TODO",
    CATEGORY_OPINIONS: "OPINION",
}

DEFAULT_CATEGORY = CATEGORY_FACTS


def category_title(category: str) -> str:
    return category[:1].upper() + category[1:]


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Section:
    """One ``##`` heading block of a markdown note."""
    header: str
    fields: Dict[str, str] = field(default_factory=dict)
    bullets: Tuple[str, ...] = ()
    prose: str = ""

    @property
    def entry_count(self) -> int:
        """Number of facts this section contributes to a compressed block."""
        count = len(self.fields) + len(self.bullets)
        if count == 0 and self.prose:
            return 1
        return count


@dataclass(frozen=True)
class ClassifiedSection:
    category: str
    section: Section


def count_entries(sections: List[Section]) -> int:
    return sum(s.entry_count for s in sections)


# ---------------------------------------------------------------------------
# Serialized blocks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompressedBlock:
    """A parsed (or about to be rendered) marker-delimited block."""
    tag: str
    title: str
    segments: Tuple[str, ...] = ()
    groups: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()


# ---------------------------------------------------------------------------
# Workflow results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SizeChange:
    """Before/after byte sizes of one artifact touched by a run."""
    file: str
    before: int
    after: int

    @property
    def saved(self) -> int:
        return self.before - self.after


@dataclass
class WorkflowResult:
    name: str
    summary: str = ""
    changes: List[SizeChange] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    skipped: bool = False
    error_code: str = ""
