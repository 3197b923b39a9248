from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import dateparser

from context_compress.services.storage import Storage

DEFAULT_MIN_AGE = timedelta(hours=12)


def parse_min_age(text: str, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Parse ``12``, ``12.5``, ``2 days`` or ``90 minutes`` into a timedelta.

    Bare numbers are hours.  Returns None when the phrase is not understood.
    """
    value = str(text or "").strip()
    if not value:
        return None
    try:
        hours = float(value)
    except ValueError:
        pass
    else:
        return timedelta(hours=hours) if hours >= 0 else None
    base = (now or datetime.now()).replace(tzinfo=None, microsecond=0)
    phrase = value if value.lower().endswith("ago") else f"{value} ago"
    parsed = dateparser.parse(
        phrase,
        settings={
            "RELATIVE_BASE": base,
            "PREFER_DATES_FROM": "past",
            "RETURN_AS_TIMEZONE_AWARE": False,
        },
    )
    if parsed is None or parsed > base:
        return None
    return base - parsed


def is_recent(modified: datetime, now: datetime, min_age: timedelta = DEFAULT_MIN_AGE) -> bool:
    if modified.tzinfo is None:
        modified = modified.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - modified < min_age


def split_by_age(
    storage: Storage,
    paths: Iterable[Path],
    now: datetime,
    min_age: timedelta = DEFAULT_MIN_AGE,
) -> Tuple[List[Path], List[Path]]:
    """Return ``(eligible, too_recent)`` preserving input order."""
    eligible: List[Path] = []
    recent: List[Path] = []
    for path in paths:
        if is_recent(storage.mtime(path), now, min_age):
            recent.append(path)
        else:
            eligible.append(path)
    return eligible, recent
