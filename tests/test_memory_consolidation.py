"""Tests for memory consolidation (merge & validate engine)."""
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from context_compress.config import DRIFT_MODE_WARN, CompressConfig
from context_compress.domain.sections import Section
from context_compress.services.block_serializer import parse_block
from context_compress.services.error_codes import SemanticDriftError, StorageError
from context_compress.services.markdown_sections import parse_sections
from context_compress.services.memory_consolidation import (
    MEMORY_INDEX_TAG,
    consolidate_memory,
    merge_categories,
    render_memory_index,
    total_entries,
)
from context_compress.services.run_context import build_context
from context_compress.services.storage import LocalStorage, MemoryStorage

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
WS = Path("/ws")
MEM = WS / "memory"

DAY_ONE = """# 2026-03-01

Morning standup notes.

## Decision: database
- **Choice:** Postgres 16
- managed backups

## Lesson: flaky tests
- pin the clock in tests
"""

DAY_TWO = """# 2026-03-01b

## Fact: deployment
- **Host:** fly.io
- region ams

## Random musings
Nothing structured here, just a thought.
"""


def _storage(files, ages_hours=None):
    storage = MemoryStorage({Path(p): t for p, t in files.items()}, now=NOW)
    for path, hours in (ages_hours or {}).items():
        storage.set_mtime(Path(path), NOW - timedelta(hours=hours))
    return storage


def _ctx(storage, **overrides):
    config = CompressConfig(workspace_dir=WS, **overrides)
    return build_context(config, storage=storage, now=NOW)


class TestMerge:
    def test_existing_precede_new_and_nothing_is_dropped(self):
        existing = {"decisions": [Section(header="Decision: queue", bullets=("sqs",))]}
        new = {
            "decisions": [Section(header="Decision: queue", bullets=("sqs",)), Section(header="Approach", prose="x")],
            "facts": [Section(header="Fact", fields={"a": "1", "b": "2"})],
        }
        merged = merge_categories(existing, new)
        assert [s.header for s in merged["decisions"]] == ["Decision: queue", "Decision: queue", "Approach"]
        assert total_entries(merged) == total_entries(existing) + total_entries(new) == 5
        assert merged["todos"] == []

    def test_unknown_category_is_kept_after_canonical_ones(self):
        merged = merge_categories({}, {"misc": [Section(header="m", bullets=("a",))]})
        assert list(merged)[-1] == "misc"

    def test_index_lists_at_most_eight_headers(self):
        merged = {"facts": [Section(header=f"Fact {i}", bullets=("x",)) for i in range(12)]}
        block = parse_block(render_memory_index(merged), MEMORY_INDEX_TAG)
        assert block.title == "Memory Index"
        assert block.segments[:2] == ("root:./memory/compressed", "Read file for full context.")
        (key, entries), = block.groups
        assert key == "FACT"
        assert entries[0] == "facts.md"
        assert len(entries) == 9


class TestConsolidateMemory:
    def test_scenario_two_daily_files(self):
        storage = _storage(
            {MEM / "2026-03-01.md": DAY_ONE, MEM / "2026-03-01b.md": DAY_TWO},
            ages_hours={MEM / "2026-03-01.md": 30, MEM / "2026-03-01b.md": 20},
        )
        result = consolidate_memory(_ctx(storage))

        assert result.summary == "Memory consolidation complete. 2 file(s) processed."
        decisions = storage.read(MEM / "compressed" / "decisions.md")
        facts = storage.read(MEM / "compressed" / "facts.md")
        assert "## Decision: database" in decisions
        assert "- **Choice:** Postgres 16" in decisions
        assert "## Fact: deployment" in facts
        assert "## Random musings" in facts
        assert "Nothing structured here, just a thought." in facts
        assert "Morning standup notes." not in facts

        index = storage.read(WS / "MEMORY.md")
        assert index.endswith("\n") and index.count("\n") == 1
        block = parse_block(index, MEMORY_INDEX_TAG)
        groups = dict(block.groups)
        assert groups["DECISION"] == ("decisions.md", "decision-database")
        assert groups["FACT"] == ("facts.md", "fact-deployment", "random-musings")
        assert groups["LESSON"] == ("lessons.md", "lesson-flaky-tests")

        assert not storage.exists(MEM / "2026-03-01.md")
        assert storage.read(MEM / "archive" / "2026-03-01.md") == DAY_ONE
        assert storage.read(MEM / "archive" / "2026-03-01b.md") == DAY_TWO

    def test_recent_file_is_excluded_then_processed_later(self):
        storage = _storage({MEM / "today.md": DAY_ONE}, ages_hours={MEM / "today.md": 2})
        first = consolidate_memory(_ctx(storage))
        assert first.skipped
        assert "No daily files to process" in first.summary
        assert not storage.exists(WS / "MEMORY.md")
        assert storage.exists(MEM / "today.md")

        later = build_context(CompressConfig(workspace_dir=WS), storage=storage, now=NOW + timedelta(hours=13))
        second = consolidate_memory(later)
        assert not second.skipped
        assert storage.exists(MEM / "compressed" / "decisions.md")
        assert not storage.exists(MEM / "today.md")

    def test_merge_with_previous_detail_files_preserves_counts(self):
        storage = _storage({MEM / "a.md": DAY_ONE}, ages_hours={MEM / "a.md": 24})
        consolidate_memory(_ctx(storage))
        before = sum(
            total_entries({"x": parse_sections(storage.read(MEM / "compressed" / f"{c}.md"))})
            for c in ("decisions", "lessons")
        )

        storage.write(MEM / "b.md", DAY_ONE.replace("Postgres 16", "Postgres 17"))
        storage.set_mtime(MEM / "b.md", NOW - timedelta(hours=24))
        consolidate_memory(_ctx(storage))

        decisions = parse_sections(storage.read(MEM / "compressed" / "decisions.md"))
        lessons = parse_sections(storage.read(MEM / "compressed" / "lessons.md"))
        assert [s.fields["Choice"] for s in decisions] == ["Postgres 16", "Postgres 17"]
        assert total_entries({"d": decisions, "l": lessons}) == before * 2

    def test_memory_index_and_subdirectories_are_not_sources(self):
        storage = _storage(
            {
                MEM / "MEMORY.md": "## Decision: x\n- y\n",
                MEM / "notes.txt": "## Decision: x\n- y\n",
                MEM / "archive" / "old.md": "## Decision: old\n- z\n",
                MEM / "drafts" / "draft.md": "## Decision: draft\n- z\n",
            },
            ages_hours={MEM / "MEMORY.md": 48, MEM / "notes.txt": 48},
        )
        result = consolidate_memory(_ctx(storage))
        assert result.skipped

    def test_missing_memory_dir_is_a_clean_skip(self):
        storage = _storage({WS / "SOUL.md": "## Tone\n- warm\n"})
        result = consolidate_memory(_ctx(storage))
        assert result.skipped
        assert result.summary == "No memory/ directory found, skipping."
        assert storage.files == {WS / "SOUL.md": "## Tone\n- warm\n"}

    def test_previous_index_is_backed_up(self):
        storage = _storage(
            {WS / "MEMORY.md": "# Old memory\n", MEM / "a.md": DAY_ONE},
            ages_hours={MEM / "a.md": 24},
        )
        consolidate_memory(_ctx(storage))
        backups = [p for p in storage.files if p.parent == MEM / "archive" and p.name.startswith("MEMORY-")]
        assert len(backups) == 1
        assert storage.read(backups[0]) == "# Old memory\n"

    def test_index_over_ceiling_is_a_warning(self):
        storage = _storage({MEM / "a.md": DAY_ONE}, ages_hours={MEM / "a.md": 24})
        result = consolidate_memory(_ctx(storage, index_max_bytes=64))
        assert any("MEMORY.md index is" in w for w in result.warnings)
        assert storage.exists(WS / "MEMORY.md")
        assert not storage.exists(MEM / "a.md")

    def test_nested_bullets_consolidate_without_drift(self):
        note = "## Decision: database\n- Chose Postgres\n  - because of JSONB\n  ## not a heading\n"
        storage = _storage({MEM / "a.md": note}, ages_hours={MEM / "a.md": 24})
        result = consolidate_memory(_ctx(storage))

        assert result.warnings == []
        assert not storage.exists(MEM / "a.md")
        (sec,) = parse_sections(storage.read(MEM / "compressed" / "decisions.md"))
        assert sec.bullets == ("Chose Postgres",)
        assert sec.prose == "- because of JSONB ## not a heading"

        storage.write(MEM / "b.md", note)
        storage.set_mtime(MEM / "b.md", NOW - timedelta(hours=24))
        consolidate_memory(_ctx(storage))
        assert len(parse_sections(storage.read(MEM / "compressed" / "decisions.md"))) == 2

    def test_dry_run_touches_nothing(self):
        files = {MEM / "a.md": DAY_ONE}
        storage = _storage(files, ages_hours={MEM / "a.md": 24})
        ctx = _ctx(storage, dry_run=True)
        result = consolidate_memory(ctx)
        assert result.summary == "Memory consolidation complete. 1 file(s) processed."
        assert storage.files == files
        assert ("write", str(WS / "MEMORY.md")) in ctx.storage.planned


class _TruncatingStorage(MemoryStorage):
    """Drops every bullet line written to detail files."""

    def write(self, path, text):
        if "compressed" in Path(path).parts:
            text = "\n".join(line for line in text.split("\n") if not line.startswith("- "))
        super().write(path, text)


class _FailingStorage(MemoryStorage):
    """Fails the first MEMORY.md write, then behaves."""

    failures = 1

    def write(self, path, text):
        if Path(path).name == "MEMORY.md" and self.failures:
            self.failures -= 1
            raise StorageError("write", Path(path), OSError("disk full"))
        super().write(path, text)


class TestValidation:
    def test_drift_restores_previous_files_and_keeps_sources(self):
        previous_facts = "# Facts\n\n## Fact: old\n\nplain prose fact\n\n"
        storage = _TruncatingStorage(now=NOW)
        MemoryStorage.write(storage, MEM / "compressed" / "facts.md", previous_facts)
        MemoryStorage.write(storage, MEM / "a.md", DAY_ONE)
        storage.set_mtime(MEM / "a.md", NOW - timedelta(hours=24))

        with pytest.raises(SemanticDriftError) as excinfo:
            consolidate_memory(_ctx(storage))

        assert excinfo.value.expected == 4
        assert excinfo.value.actual == 1
        assert storage.read(MEM / "compressed" / "facts.md") == previous_facts
        assert not storage.exists(MEM / "compressed" / "decisions.md")
        assert not storage.exists(WS / "MEMORY.md")
        assert storage.read(MEM / "a.md") == DAY_ONE

    def test_drift_in_warn_mode_is_advisory(self):
        storage = _TruncatingStorage(now=NOW)
        MemoryStorage.write(storage, MEM / "a.md", DAY_ONE)
        storage.set_mtime(MEM / "a.md", NOW - timedelta(hours=24))

        result = consolidate_memory(_ctx(storage, drift_mode=DRIFT_MODE_WARN))
        assert any(w.startswith("Semantic drift") for w in result.warnings)
        assert not storage.exists(MEM / "a.md")

    def test_write_failure_propagates_before_archiving(self):
        storage = _FailingStorage(now=NOW)
        MemoryStorage.write(storage, MEM / "a.md", DAY_ONE)
        storage.set_mtime(MEM / "a.md", NOW - timedelta(hours=24))

        with pytest.raises(StorageError):
            consolidate_memory(_ctx(storage))
        assert storage.read(MEM / "a.md") == DAY_ONE
        assert not any(p.parent == MEM / "archive" and p.name == "a.md" for p in storage.files)

    def test_failed_write_rolls_back_so_a_rerun_does_not_duplicate(self):
        previous = "# Decisions\n\n## Decision: queue\n\n- sqs\n\n"
        storage = _FailingStorage(now=NOW)
        MemoryStorage.write(storage, MEM / "compressed" / "decisions.md", previous)
        MemoryStorage.write(storage, MEM / "a.md", DAY_ONE)
        storage.set_mtime(MEM / "a.md", NOW - timedelta(hours=24))

        with pytest.raises(StorageError):
            consolidate_memory(_ctx(storage))
        assert storage.read(MEM / "compressed" / "decisions.md") == previous
        assert not storage.exists(MEM / "compressed" / "lessons.md")
        assert not storage.exists(WS / "MEMORY.md")

        result = consolidate_memory(_ctx(storage))
        assert result.summary == "Memory consolidation complete. 1 file(s) processed."
        decisions = parse_sections(storage.read(MEM / "compressed" / "decisions.md"))
        assert [s.header for s in decisions] == ["Decision: queue", "Decision: database"]
        lessons = parse_sections(storage.read(MEM / "compressed" / "lessons.md"))
        assert [s.header for s in lessons] == ["Lesson: flaky tests"]
        assert not storage.exists(MEM / "a.md")


class TestConsolidateOnDisk:
    def test_real_workspace(self, tmp_path):
        memory = tmp_path / "memory"
        memory.mkdir()
        (memory / "2026-03-01.md").write_text(DAY_ONE, encoding="utf-8")
        config = CompressConfig(workspace_dir=tmp_path)
        ctx = build_context(config, storage=LocalStorage(), now=datetime.now(timezone.utc) + timedelta(days=1))

        result = consolidate_memory(ctx)

        assert not result.skipped
        assert (memory / "compressed" / "decisions.md").is_file()
        assert (memory / "archive" / "2026-03-01.md").is_file()
        assert not (memory / "2026-03-01.md").exists()
        assert (tmp_path / "MEMORY.md").read_text(encoding="utf-8").startswith("<!-- MEMORY-INDEX-START -->")
