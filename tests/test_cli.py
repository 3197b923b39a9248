import os
import time

import pytest

from context_compress.cli import EXIT_MISSING_WORKSPACE, EXIT_OK, EXIT_WORKFLOW_FAILED, build_parser, main

NOTE = "## Decision: database\n- **Choice:** Postgres 16\n\n## Todo\n- rotate keys\n"
SOUL = "## Tone\n- warm\n- professional\n\n## Style\n- concise\n"
SKILL = "---\nname: healthcheck\ncommand: bun run health.ts\n---\nNeeds DEPLOY_URL.\n"


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith("CONTEXT_COMPRESS_"):
            monkeypatch.delenv(key)
    ws = tmp_path / "ws"
    (ws / "memory").mkdir(parents=True)
    note = ws / "memory" / "2026-03-01.md"
    note.write_text(NOTE, encoding="utf-8")
    day_ago = time.time() - 86400
    os.utime(note, (day_ago, day_ago))
    (ws / "SOUL.md").write_text(SOUL, encoding="utf-8")
    skills = tmp_path / "skills"
    (skills / "healthcheck").mkdir(parents=True)
    (skills / "healthcheck" / "SKILL.md").write_text(SKILL, encoding="utf-8")
    return ws, skills


def test_parser_defaults():
    args = build_parser().parse_args(["/tmp/ws"])
    assert args.workspace == "/tmp/ws"
    assert not args.dry_run
    assert args.skills_dir is None
    assert args.min_age is None


def test_full_run(workspace, capsys):
    ws, skills = workspace
    code = main([str(ws), "--skills-dir", str(skills)])
    out = capsys.readouterr().out

    assert code == EXIT_OK
    assert "--- Section A: Memory Consolidation ---" in out
    assert "Memory consolidation complete. 1 file(s) processed." in out
    assert "Bootstrap compression complete. 1 file(s) processed." in out
    assert "Skill index complete. 1 skill(s) indexed." in out
    assert "=== Compression Report ===" in out
    assert "TOTAL" in out
    assert out.rstrip().endswith("Compression complete.")

    assert (ws / "memory" / "compressed" / "decisions.md").is_file()
    assert (ws / "memory" / "compressed" / "todos.md").is_file()
    assert (ws / "memory" / "archive" / "2026-03-01.md").is_file()
    assert "<!-- SOUL-START -->" in (ws / "SOUL.md").read_text(encoding="utf-8")
    assert "healthcheck:{SKILL.md}" in (ws / "TOOLS.md").read_text(encoding="utf-8")


def test_dry_run_writes_nothing(workspace, capsys):
    ws, skills = workspace
    before = sorted(p.relative_to(ws) for p in ws.rglob("*"))

    code = main([str(ws), "--skills-dir", str(skills), "--dry-run"])
    out = capsys.readouterr().out

    assert code == EXIT_OK
    assert "Mode: DRY RUN" in out
    assert "Dry run complete. No files were modified." in out
    assert sorted(p.relative_to(ws) for p in ws.rglob("*")) == before
    assert (ws / "SOUL.md").read_text(encoding="utf-8") == SOUL


def test_skip_flags(workspace, capsys):
    ws, skills = workspace
    main([str(ws), "--skills-dir", str(skills), "--skip-memory", "--skip-skills"])
    out = capsys.readouterr().out
    assert "Section A" not in out
    assert "Section B: Bootstrap Compression" in out
    assert "Section C" not in out
    assert (ws / "memory" / "2026-03-01.md").exists()
    assert not (ws / "TOOLS.md").exists()


def test_min_age_keeps_young_notes(workspace, capsys):
    ws, skills = workspace
    main([str(ws), "--skills-dir", str(skills), "--min-age", "3 days"])
    out = capsys.readouterr().out
    assert "No daily files to process (all <72h old or none found)." in out
    assert (ws / "memory" / "2026-03-01.md").exists()


def test_bad_min_age(workspace, capsys):
    ws, _ = workspace
    assert main([str(ws), "--min-age", "-4"]) == EXIT_WORKFLOW_FAILED
    assert "--min-age" in capsys.readouterr().err


def test_missing_workspace(tmp_path, capsys):
    assert main([str(tmp_path / "nope")]) == EXIT_MISSING_WORKSPACE
    assert "workspace directory not found" in capsys.readouterr().err


def test_marker_conflict_is_a_warning_not_a_failure(workspace, capsys):
    ws, skills = workspace
    (ws / "SOUL.md").write_text(SOUL + "<!-- SOUL-START -->\n<!-- SOUL-START -->\n", encoding="utf-8")
    code = main([str(ws), "--skills-dir", str(skills), "--skip-memory"])
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert "Warning: SOUL.md: Marker conflict for SOUL" in out


def test_failed_workflow_sets_exit_code(workspace, capsys, monkeypatch):
    from context_compress.services import memory_consolidation
    from context_compress.services.error_codes import SemanticDriftError

    def boom(self):
        raise SemanticDriftError(expected=4, actual=1, restored=["decisions.md"])

    monkeypatch.setattr(memory_consolidation.MemoryConsolidator, "run", boom)
    ws, skills = workspace
    code = main([str(ws), "--skills-dir", str(skills)])
    out = capsys.readouterr().out
    assert code == EXIT_WORKFLOW_FAILED
    assert "[ERR_SEMANTIC_DRIFT] Failed: Semantic drift detected: expected 4 entries, found 1" in out
    assert "    - Inspect archive: " in out
    assert "Skill index complete." in out
