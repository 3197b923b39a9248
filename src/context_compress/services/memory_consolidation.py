"""Memory consolidation: daily notes -> per-category detail files + MEMORY.md index.

The consolidator:
  1. Picks up markdown notes directly inside ``memory/`` that are older than
     the recency window.
  2. Parses and classifies their sections.
  3. Merges them after the sections already stored in
     ``memory/compressed/<category>.md`` (existing first, no dedup).
  4. Rewrites the detail files and the single-line ``MEMORY.md`` index.
  5. Re-reads what it wrote and compares entry counts; on drift it restores
     the pre-run backups instead of leaving suspect files behind.
  6. Only then moves the processed notes into ``memory/archive``.

Nothing is retried.  A storage failure aborts the workflow before any note is
archived, so the next run simply picks the same notes up again.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

from context_compress.config import DRIFT_MODE_RESTORE
from context_compress.domain.sections import (
    CATEGORIES,
    CATEGORY_TAGS,
    Section,
    SizeChange,
    WorkflowResult,
    count_entries,
)
from context_compress.observability.structured_log import log_json
from context_compress.services.archive import BackupRecord
from context_compress.services.block_serializer import format_group, render_block, slugify
from context_compress.services.error_codes import SemanticDriftError, StorageError
from context_compress.services.markdown_sections import parse_sections, render_detail_file
from context_compress.services.recency import split_by_age
from context_compress.services.run_context import CompressContext
from context_compress.util import byte_len

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "memory"
MEMORY_INDEX_TAG = "MEMORY-INDEX"
MEMORY_INDEX_TITLE = "Memory Index"
MEMORY_INDEX_ROOT = "./memory/compressed"
MEMORY_INDEX_HINT = "Read file for full context."
MAX_INDEX_KEYS_PER_CATEGORY = 8

_SKIP_DIRS = {"archive", "compressed"}
_INDEX_FILENAME = "MEMORY.md"


@dataclass(frozen=True)
class DriftReport:
    expected: int
    actual: int

    @property
    def ratio(self) -> float:
        if self.expected == 0:
            return 0.0 if self.actual == 0 else 1.0
        return abs(self.actual - self.expected) / self.expected


def ordered_categories(*groups: Mapping[str, List[Section]]) -> List[str]:
    """Canonical categories first, then any extra ones in first-seen order."""
    out = list(CATEGORIES)
    for group in groups:
        for cat in group:
            if cat not in out:
                out.append(cat)
    return out


def merge_categories(
    existing: Mapping[str, List[Section]],
    new: Mapping[str, List[Section]],
) -> Dict[str, List[Section]]:
    """Union per category, existing sections before new ones."""
    return {
        cat: list(existing.get(cat, [])) + list(new.get(cat, []))
        for cat in ordered_categories(existing, new)
    }


def total_entries(grouped: Mapping[str, List[Section]]) -> int:
    return sum(count_entries(list(sections)) for sections in grouped.values())


def category_tag(category: str) -> str:
    return CATEGORY_TAGS.get(category) or slugify(category).upper()


def render_memory_index(merged: Mapping[str, List[Section]]) -> str:
    segments: List[str] = [f"root:{MEMORY_INDEX_ROOT}", MEMORY_INDEX_HINT]
    for cat, sections in merged.items():
        if not sections:
            continue
        keys = [slugify(s.header) for s in sections[:MAX_INDEX_KEYS_PER_CATEGORY]]
        segments.append(format_group(category_tag(cat), [f"{cat}.md"] + keys))
    return render_block(MEMORY_INDEX_TAG, MEMORY_INDEX_TITLE, segments)


class MemoryConsolidator:
    def __init__(self, ctx: CompressContext) -> None:
        self._ctx = ctx
        self._cfg = ctx.config
        self._storage = ctx.storage

    def detail_path(self, category: str) -> Path:
        return self._cfg.compressed_dir / f"{category}.md"

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_sources(self) -> Tuple[List[Path], List[Path]]:
        """Return ``(eligible, too_recent)`` note files."""
        candidates: List[Path] = []
        for entry in self._storage.list(self._cfg.memory_dir):
            if entry.is_dir:
                if entry.name not in _SKIP_DIRS:
                    logger.debug("memory_consolidation: ignoring directory %s", entry.name)
                continue
            if not entry.name.endswith(".md") or entry.name == _INDEX_FILENAME:
                continue
            candidates.append(entry.path)
        eligible, recent = split_by_age(self._storage, candidates, self._ctx.now, self._cfg.min_age)
        for path in recent:
            logger.debug("memory_consolidation: skipping (too recent) %s", path.name)
        return eligible, recent

    def classify_sources(self, paths: Iterable[Path]) -> Dict[str, List[Section]]:
        grouped: Dict[str, List[Section]] = {cat: [] for cat in CATEGORIES}
        for path in paths:
            sections = parse_sections(self._storage.read(path))
            logger.debug("memory_consolidation: parsed %s: %d section(s)", path.name, len(sections))
            for cat, items in self._ctx.classifier.group(sections).items():
                grouped.setdefault(cat, []).extend(items)
        return grouped

    def load_existing(self, categories: Iterable[str]) -> Dict[str, List[Section]]:
        existing: Dict[str, List[Section]] = {}
        for cat in categories:
            path = self.detail_path(cat)
            if self._storage.exists(path):
                existing[cat] = parse_sections(self._storage.read(path))
        return existing

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> WorkflowResult:
        result = WorkflowResult(name=WORKFLOW_NAME)
        if not self._storage.exists(self._cfg.memory_dir):
            result.skipped = True
            result.summary = "No memory/ directory found, skipping."
            return result

        sources, recent = self.discover_sources()
        if not sources:
            result.skipped = True
            result.summary = (
                f"No daily files to process (all <{_hours(self._cfg.min_age)}h old or none found)."
            )
            return result
        logger.info("memory_consolidation: %d source file(s), %d too recent", len(sources), len(recent))

        new = self.classify_sources(sources)
        existing = self.load_existing(ordered_categories(new))
        merged = merge_categories(existing, new)
        expected = total_entries(existing) + total_entries(new)

        planned: List[Tuple[Path, str]] = []
        for cat, sections in merged.items():
            if sections:
                planned.append((self.detail_path(cat), render_detail_file(cat, sections)))
        index_line = render_memory_index(merged)
        planned.append((self._cfg.memory_file, index_line + "\n"))

        backups: List[BackupRecord] = []
        try:
            self._write_all(planned, backups, result)
        except StorageError:
            restored = self._ctx.archive().restore_all(backups)
            logger.error("memory_consolidation: write failed, rolled back %s", ", ".join(restored) or "nothing")
            raise

        index_bytes = byte_len(index_line)
        if index_bytes > self._cfg.index_max_bytes:
            msg = f"MEMORY.md index is {index_bytes} bytes (>{self._cfg.index_max_bytes} limit)"
            logger.warning("memory_consolidation: %s", msg)
            log_json(logger, "size_ceiling_exceeded", level=logging.WARNING, file="MEMORY.md", bytes=index_bytes)
            result.warnings.append(msg)

        self._verify(
            [path for path, _ in planned if path != self._cfg.memory_file],
            expected,
            backups,
            result,
        )

        archive = self._ctx.archive()
        for path in sources:
            archive.archive_source(path)

        log_json(logger, "memory_consolidated", files=len(sources), entries=expected)
        result.summary = f"Memory consolidation complete. {len(sources)} file(s) processed."
        return result

    def _write_all(
        self,
        planned: List[Tuple[Path, str]],
        backups: List[BackupRecord],
        result: WorkflowResult,
    ) -> None:
        """Write every planned file, recording each backup in ``backups`` before its write."""
        archive = self._ctx.archive()
        for path, content in planned:
            before_text = self._storage.read(path) if self._storage.exists(path) else None
            if before_text == content:
                continue
            backups.append(archive.backup(path))
            self._storage.write(path, content)
            logger.debug("memory_consolidation: wrote %s", path)
            result.changes.append(
                SizeChange(
                    file=_display_name(path, self._cfg.workspace_dir),
                    before=byte_len(before_text or ""),
                    after=byte_len(content),
                )
            )

    def _verify(
        self,
        detail_paths: List[Path],
        expected: int,
        backups: List[BackupRecord],
        result: WorkflowResult,
    ) -> None:
        actual = sum(count_entries(parse_sections(self._storage.read(p))) for p in detail_paths)
        report = DriftReport(expected=expected, actual=actual)
        if actual == expected:
            return
        logger.warning(
            "memory_consolidation: entry count changed (expected %d, found %d)", expected, actual
        )
        if report.ratio <= self._cfg.drift_threshold:
            return
        log_json(
            logger,
            "semantic_drift",
            level=logging.WARNING,
            expected=expected,
            actual=actual,
            mode=self._cfg.drift_mode,
        )
        if self._cfg.drift_mode == DRIFT_MODE_RESTORE:
            restored = self._ctx.archive().restore_all(backups)
            raise SemanticDriftError(expected=expected, actual=actual, restored=restored)
        result.warnings.append(
            f"Semantic drift: expected {expected} entries, found {actual} ({report.ratio:.0%})"
        )


def consolidate_memory(ctx: CompressContext) -> WorkflowResult:
    return MemoryConsolidator(ctx).run()


def _display_name(path: Path, workspace: Path) -> str:
    try:
        return str(path.relative_to(workspace))
    except ValueError:
        return path.name


def _hours(delta: timedelta) -> str:
    hours = delta.total_seconds() / 3600
    return f"{hours:g}"
