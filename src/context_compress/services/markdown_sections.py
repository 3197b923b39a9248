"""Structural parser for markdown notes.

Turns raw markdown into an ordered list of :class:`Section` records.  Every
line is classified as exactly one of heading, field, bullet, prose or blank;
nothing is ever rejected, unrecognised fragments degrade to prose.  Lines
before the first ``##`` heading are a document title or note and are dropped.

Also renders sections back into the human-readable detail file format, which
re-parses to the same sections.
"""
from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from context_compress.domain.sections import Section, category_title
from context_compress.util import iter_lines

_FRONT_MATTER_RE = re.compile(r"^---\r?\n[\s\S]*?\r?\n---\r?\n?")
_FRONT_MATTER_BODY_RE = re.compile(r"^---\r?\n([\s\S]*?)\r?\n---")
_FRONT_MATTER_KV_RE = re.compile(r"^(\w[\w-]*):\s*(.+)")

_HEADING_RE = re.compile(r"^##\s+(.+)")
_FIELD_RE = re.compile(r"^[-*]\s+\*\*([^*]+?):?\*\*[:\s]*(.+)?")
_BULLET_RE = re.compile(r"^[-*]\s+(.+)")


class _State(enum.Enum):
    OUTSIDE = "outside"
    HEADER_SEEN = "header_seen"
    IN_FIELD = "in_field"
    IN_BULLET = "in_bullet"


@dataclass
class _Draft:
    header: str
    fields: Dict[str, str] = field(default_factory=dict)
    bullets: List[str] = field(default_factory=list)
    prose: List[str] = field(default_factory=list)

    def freeze(self) -> Section:
        return Section(
            header=self.header,
            fields=dict(self.fields),
            bullets=tuple(self.bullets),
            prose=" ".join(self.prose),
        )


def strip_front_matter(content: str) -> str:
    match = _FRONT_MATTER_RE.match(content or "")
    return content[match.end():] if match else (content or "")


def parse_front_matter(content: str) -> Dict[str, str]:
    match = _FRONT_MATTER_BODY_RE.match(content or "")
    if not match:
        return {}
    result: Dict[str, str] = {}
    for line in match.group(1).split("\n"):
        kv = _FRONT_MATTER_KV_RE.match(line)
        if kv:
            result[kv.group(1).strip()] = kv.group(2).strip()
    return result


def iter_sections(lines: Iterable[str]) -> Iterator[Section]:
    """Yield sections from a lazy sequence of lines (front matter already removed)."""
    state = _State.OUTSIDE
    draft: Optional[_Draft] = None

    for raw in lines:
        line = raw.rstrip("\r")
        heading = _HEADING_RE.match(line)
        if heading:
            if draft is not None:
                yield draft.freeze()
            draft = _Draft(header=heading.group(1).strip())
            state = _State.HEADER_SEEN
            continue
        if state is _State.OUTSIDE or draft is None:
            continue

        field_match = _FIELD_RE.match(line)
        if field_match:
            key = field_match.group(1).strip()
            if key.endswith(":"):
                key = key[:-1]
            draft.fields[key] = (field_match.group(2) or "").strip()
            state = _State.IN_FIELD
            continue

        bullet = _BULLET_RE.match(line)
        if bullet:
            draft.bullets.append(bullet.group(1).strip())
            state = _State.IN_BULLET
            continue

        trimmed = line.strip()
        if trimmed:
            draft.prose.append(trimmed)
        # Blank and prose lines end any list run.
        state = _State.HEADER_SEEN

    if draft is not None:
        yield draft.freeze()


def parse_sections(content: str) -> List[Section]:
    body = strip_front_matter(content)
    return list(iter_sections(iter_lines(body)))


def render_detail_file(category: str, sections: List[Section]) -> str:
    """Full, human-readable reconstruction of every section in a category."""
    out: List[str] = [f"# {category_title(category)}\n\n"]
    for sec in sections:
        out.append(f"## {sec.header}\n\n")
        for key, value in sec.fields.items():
            out.append(f"- **{key}:** {value}\n")
        for bullet in sec.bullets:
            out.append(f"- {bullet}\n")
        if sec.prose:
            out.append(f"\n{_prose_line(sec.prose)}\n")
        out.append("\n")
    return "".join(out)


def _prose_line(prose: str) -> str:
    # Prose that looks like a heading, field or bullet is indented so it reads back as prose.
    if _HEADING_RE.match(prose) or _BULLET_RE.match(prose):
        return "  " + prose
    return prose
