"""Skill index for TOOLS.md.

Scans ``<skills dir>/<skill>/SKILL.md`` descriptors and appends a single
``SKILLS-INDEX`` block to the workspace ``TOOLS.md``::

    ---
    name: healthcheck
    command: bun run health.ts
    ---
    Needs DEPLOY_URL and API_TOKEN.

becomes ``healthcheck:{SKILL.md},cmd:bun run health.ts,env:DEPLOY_URL,API_TOKEN``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from context_compress.domain.sections import SizeChange, WorkflowResult
from context_compress.observability.structured_log import log_json
from context_compress.services.block_serializer import append_block, render_block, strip_marker
from context_compress.services.error_codes import MarkerError
from context_compress.services.markdown_sections import parse_front_matter
from context_compress.services.run_context import CompressContext
from context_compress.util import byte_len

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "skills"
SKILLS_INDEX_TAG = "SKILLS-INDEX"
SKILLS_INDEX_TITLE = "Skills"
SKILLS_INDEX_HINT = "Read SKILL.md before invoking."
SKILL_FILENAME = "SKILL.md"
MAX_ENV_VARS = 5

_ENV_TOKEN_RE = re.compile(r"[A-Z][A-Z0-9_]{2,}")


@dataclass(frozen=True)
class SkillDescriptor:
    """A SKILL.md as seen by the index."""
    name: str
    command: str = ""
    env_vars: Tuple[str, ...] = ()
    source_path: str = ""

    def index_entry(self) -> str:
        entry = f"{self.name}:{{{SKILL_FILENAME}}}"
        if self.command:
            entry += f",cmd:{self.command}"
        if self.env_vars:
            entry += f",env:{','.join(self.env_vars)}"
        return entry


def extract_env_vars(text: str, limit: int = MAX_ENV_VARS) -> List[str]:
    """Distinct upper-case tokens that look like environment variables."""
    seen: List[str] = []
    for token in _ENV_TOKEN_RE.findall(text or ""):
        if "_" not in token or len(token) <= 3 or token in seen:
            continue
        seen.append(token)
        if len(seen) >= limit:
            break
    return seen


def parse_skill_descriptor(text: str, dir_name: str, source_path: str = "") -> SkillDescriptor:
    fields = parse_front_matter(text)
    return SkillDescriptor(
        name=fields.get("name") or dir_name,
        command=fields.get("command", ""),
        env_vars=tuple(extract_env_vars(text)),
        source_path=source_path,
    )


def display_root(skills_dir: Path) -> str:
    home = Path.home()
    try:
        return "~/" + skills_dir.relative_to(home).as_posix()
    except ValueError:
        return skills_dir.as_posix()


def render_skill_index(skills_dir: Path, skills: List[SkillDescriptor]) -> str:
    segments = [f"root:{display_root(skills_dir)}", SKILLS_INDEX_HINT]
    segments.extend(skill.index_entry() for skill in skills)
    return render_block(SKILLS_INDEX_TAG, SKILLS_INDEX_TITLE, segments)


class SkillIndexer:
    def __init__(self, ctx: CompressContext) -> None:
        self._ctx = ctx
        self._cfg = ctx.config
        self._storage = ctx.storage

    def discover(self) -> List[SkillDescriptor]:
        skills: List[SkillDescriptor] = []
        for entry in self._storage.list(self._cfg.skills_dir):
            if not entry.is_dir:
                continue
            skill_md = entry.path / SKILL_FILENAME
            if not self._storage.exists(skill_md):
                continue
            skill = parse_skill_descriptor(self._storage.read(skill_md), entry.name, str(skill_md))
            logger.debug("skill_index: found skill %s (%s)", skill.name, skill.command or "no command")
            skills.append(skill)
        return skills

    def run(self) -> WorkflowResult:
        result = WorkflowResult(name=WORKFLOW_NAME)
        if not self._storage.exists(self._cfg.skills_dir):
            result.skipped = True
            result.summary = f"No skills directory found at {self._cfg.skills_dir}, skipping."
            return result

        skills = self.discover()
        if not skills:
            result.skipped = True
            result.summary = "No skills with SKILL.md found, skipping."
            return result

        index_line = render_skill_index(self._cfg.skills_dir, skills)
        index_bytes = byte_len(index_line)
        if index_bytes > self._cfg.block_max_bytes:
            msg = f"TOOLS.md skill index is {index_bytes} bytes (>{self._cfg.block_max_bytes} limit)"
            logger.warning("skill_index: %s", msg)
            log_json(logger, "size_ceiling_exceeded", level=logging.WARNING, file="TOOLS.md", bytes=index_bytes)
            result.warnings.append(msg)

        change = self._write_index(index_line, result)
        if change is not None:
            result.changes.append(change)
        log_json(logger, "skills_indexed", skills=len(skills))
        result.summary = f"Skill index complete. {len(skills)} skill(s) indexed."
        return result

    def _write_index(self, index_line: str, result: WorkflowResult) -> Optional[SizeChange]:
        path = self._cfg.tools_file
        before = self._storage.read(path) if self._storage.exists(path) else ""
        try:
            content = append_block(strip_marker(before, SKILLS_INDEX_TAG), index_line)
        except MarkerError as exc:
            logger.warning("skill_index: TOOLS.md skipped: %s", exc)
            result.warnings.append(f"TOOLS.md: {exc}")
            return None
        if content == before:
            return None
        self._storage.write(path, content)
        return SizeChange(file="TOOLS.md", before=byte_len(before), after=byte_len(content))


def build_skill_index(ctx: CompressContext) -> WorkflowResult:
    return SkillIndexer(ctx).run()
