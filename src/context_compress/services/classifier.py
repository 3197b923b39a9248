"""Header-keyword classifier.

A section is assigned to the first category whose pattern matches its
lower-cased header.  Patterns overlap on purpose, so the rule order decides.
Classification is total: no match means ``facts``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from context_compress.domain.sections import (
    CATEGORIES,
    CATEGORY_DECISIONS,
    CATEGORY_ENTITIES,
    CATEGORY_FACTS,
    CATEGORY_LESSONS,
    CATEGORY_OPINIONS,
    CATEGORY_PREFERENCES,
    CATEGORY_TODOS,
    DEFAULT_CATEGORY,
    ClassifiedSection,
    Section,
)


@dataclass(frozen=True)
class CategoryRule:
    category: str
    pattern: "re.Pattern[str]"

    def matches(self, header: str) -> bool:
        return bool(self.pattern.search(header))


def _rule(category: str, pattern: str) -> CategoryRule:
    return CategoryRule(category=category, pattern=re.compile(pattern))


DEFAULT_RULES: Tuple[CategoryRule, ...] = (
    _rule(CATEGORY_PREFERENCES, r"prefer|style|convention|setting|config"),
    _rule(CATEGORY_DECISIONS, r"decid|decision|chose|choice|approach|architect"),
    _rule(CATEGORY_FACTS, r"fact|reference|version|url|path|endpoint|api"),
    _rule(CATEGORY_ENTITIES, r"people|person|entity|contact|team|org"),
    _rule(CATEGORY_LESSONS, r"lesson|learn|gotcha|caveat|debug|workaround|fix"),
    _rule(CATEGORY_TODOS, r"todo|task|reminder|follow.?up|pending|backlog"),
    _rule(CATEGORY_OPINIONS, r"opinion|feel|think|belief|stance|dislike|avoid"),
)


class Classifier:
    def __init__(
        self,
        rules: Sequence[CategoryRule] = DEFAULT_RULES,
        default: str = DEFAULT_CATEGORY,
    ) -> None:
        self._rules = tuple(rules)
        self._default = default

    @property
    def rules(self) -> Tuple[CategoryRule, ...]:
        return self._rules

    def classify(self, header: str) -> str:
        text = (header or "").lower()
        for rule in self._rules:
            if rule.matches(text):
                return rule.category
        return self._default

    def classify_sections(self, sections: Iterable[Section]) -> List[ClassifiedSection]:
        return [ClassifiedSection(category=self.classify(s.header), section=s) for s in sections]

    def group(self, sections: Iterable[Section]) -> Dict[str, List[Section]]:
        """Bucket sections by category, keeping input order inside each bucket."""
        grouped: Dict[str, List[Section]] = {cat: [] for cat in CATEGORIES}
        for item in self.classify_sections(sections):
            grouped.setdefault(item.category, []).append(item.section)
        return grouped
