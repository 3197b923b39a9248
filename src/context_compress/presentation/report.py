from __future__ import annotations

from typing import List, Sequence

from context_compress.domain.sections import SizeChange

_COL_FILE = 20
_COL_BYTES = 12


def _signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def _row(file: str, before: int, after: int) -> str:
    saved = before - after
    tokens = round(saved / 4)
    return " | ".join(
        [
            file.ljust(_COL_FILE),
            f"{before}B".rjust(_COL_BYTES),
            f"{after}B".rjust(_COL_BYTES),
            f"{_signed(saved)}B".rjust(_COL_BYTES),
            f"~{_signed(tokens)}".rjust(_COL_BYTES),
        ]
    )


def render_report(changes: Sequence[SizeChange]) -> str:
    """Byte-level before/after table for every artifact a run changed."""
    lines: List[str] = ["=== Compression Report ===", ""]
    if not changes:
        lines.append("  No files were processed.")
        return "\n".join(lines)

    header = " | ".join(
        [
            "File".ljust(_COL_FILE),
            "Before".rjust(_COL_BYTES),
            "After".rjust(_COL_BYTES),
            "Saved".rjust(_COL_BYTES),
            "Tokens~".rjust(_COL_BYTES),
        ]
    )
    rule = "-" * len(header)
    lines.extend([header, rule])
    for change in changes:
        lines.append(_row(change.file, change.before, change.after))
    lines.append(rule)

    total_before = sum(c.before for c in changes)
    total_after = sum(c.after for c in changes)
    lines.append(_row("TOTAL", total_before, total_after))

    pct = round((total_before - total_after) / total_before * 100) if total_before > 0 else 0
    if pct > 0:
        lines.extend(["", f"  Estimated context reduction: ~{pct}%"])
    return "\n".join(lines)
