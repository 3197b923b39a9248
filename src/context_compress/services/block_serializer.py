"""Compact pipe-delimited block serializer.

A block is a single physical line wrapped in HTML comment markers, so it is
invisible in rendered markdown but still greppable::

    <!-- SOUL-START -->[SOUL]|TONE:{warm,professional}|STYLE:{concise}<!-- SOUL-END -->

Blocks are always regenerated from scratch.  ``strip_marker`` removes the
previous block for a tag so that strip-then-append is idempotent.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Sequence, Tuple

from context_compress.domain.sections import CompressedBlock, Section
from context_compress.services.error_codes import MarkerError

PROSE_FALLBACK_CHARS = 120

_MARKDOWN_PUNCT_RE = re.compile(r"[*_`#\[\]()]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_SLUG_RE = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUN_RE = re.compile(r"-+")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_GROUP_RE = re.compile(r"^([^:{}|]+):\{(.*)\}$", re.DOTALL)


def slugify(text: str) -> str:
    value = (text or "").lower()
    value = _MARKDOWN_PUNCT_RE.sub("", value)
    value = _WHITESPACE_RE.sub("-", value)
    value = _NON_SLUG_RE.sub("", value)
    value = _HYPHEN_RUN_RE.sub("-", value)
    return value.strip("-")


def slugify_value(text: str) -> str:
    value = _MARKDOWN_PUNCT_RE.sub("", text or "")
    value = _WHITESPACE_RE.sub("-", value)
    return value.strip()


def start_marker(tag: str) -> str:
    return f"<!-- {tag}-START -->"


def end_marker(tag: str) -> str:
    return f"<!-- {tag}-END -->"


def section_entries(section: Section) -> List[str]:
    entries = [f"{slugify(k)}:{slugify_value(v)}" for k, v in section.fields.items()]
    entries.extend(slugify_value(b) for b in section.bullets)
    if not entries and section.prose:
        entries.append(slugify_value(section.prose[:PROSE_FALLBACK_CHARS]))
    return entries


def format_group(key: str, entries: Sequence[str]) -> str:
    return f"{key}:{{{','.join(entries)}}}"


def render_block(tag: str, title: str, segments: Iterable[str]) -> str:
    body = "".join(f"|{segment}" for segment in segments)
    return f"{start_marker(tag)}[{title}]{body}{end_marker(tag)}"


def serialize_sections(tag: str, title: str, sections: Iterable[Section]) -> str:
    """Render sections as one block; sections with no entries are omitted."""
    segments: List[str] = []
    for sec in sections:
        entries = section_entries(sec)
        if entries:
            segments.append(format_group(slugify(sec.header).upper(), entries))
    return render_block(tag, title, segments)


def _marker_pattern(tag: str) -> "re.Pattern[str]":
    return re.compile(
        r"\n?" + re.escape(start_marker(tag)) + r".*?" + re.escape(end_marker(tag)) + r"\n?",
        re.DOTALL,
    )


def has_marker(content: str, tag: str) -> bool:
    return start_marker(tag) in (content or "")


def check_markers(content: str, tag: str) -> int:
    """Return how many complete blocks ``tag`` has (0 or 1).

    Raises MarkerError when the tag occurs more than once or a start marker has
    no matching end marker (or the reverse).
    """
    text = content or ""
    starts = text.count(start_marker(tag))
    ends = text.count(end_marker(tag))
    if starts > 1 or ends > 1:
        raise MarkerError(tag, f"found {starts} start and {ends} end markers")
    if starts != ends:
        raise MarkerError(tag, "unterminated block")
    if starts and text.index(end_marker(tag)) < text.index(start_marker(tag)):
        raise MarkerError(tag, "end marker precedes start marker")
    return starts


def strip_marker(content: str, tag: str) -> str:
    """Remove the block for ``tag`` plus one adjacent newline on each side."""
    text = content or ""
    if check_markers(text, tag):
        text = _marker_pattern(tag).sub("\n", text, count=1)
    return _BLANK_RUN_RE.sub("\n\n", text).rstrip()


def append_block(clean: str, block: str) -> str:
    if not clean:
        return block + "\n"
    return clean + "\n\n" + block + "\n"


def parse_block(content: str, tag: str) -> CompressedBlock:
    """Read back the block for ``tag``; an absent block yields an empty one."""
    text = content or ""
    if not check_markers(text, tag):
        return CompressedBlock(tag=tag, title="")
    start = text.index(start_marker(tag)) + len(start_marker(tag))
    inner = text[start:text.index(end_marker(tag))]
    title = ""
    if inner.startswith("["):
        close = inner.find("]")
        if close >= 0:
            title = inner[1:close]
            inner = inner[close + 1:]
    segments = tuple(seg for seg in inner.split("|") if seg)
    groups: List[Tuple[str, Tuple[str, ...]]] = []
    for seg in segments:
        match = _GROUP_RE.match(seg)
        if match:
            entries = tuple(e for e in match.group(2).split(",") if e)
            groups.append((match.group(1), entries))
    return CompressedBlock(tag=tag, title=title, segments=segments, groups=tuple(groups))
