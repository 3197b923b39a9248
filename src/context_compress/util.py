from datetime import datetime
from typing import Iterator, Optional


def iter_lines(text: str) -> Iterator[str]:
    """Yield ``text`` line by line, splitting on ``\\n`` only."""
    start = 0
    while True:
        end = text.find("\n", start)
        if end < 0:
            yield text[start:]
            return
        yield text[start:end]
        start = end + 1


def byte_len(text: str) -> int:
    return len((text or "").encode("utf-8"))


def timestamp(now: Optional[datetime] = None) -> str:
    """Backup suffix like ``20260301-143005`` (local time)."""
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
