"""Storage capability used by the compression workflows.

The workflows never touch the filesystem directly; they go through a
``Storage`` so they can run against a real workspace, an in-memory fake in
tests, or a dry-run overlay that records writes without performing them.
"""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from context_compress.services.error_codes import StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageEntry:
    name: str
    path: Path
    is_dir: bool


class Storage(Protocol):
    def read(self, path: Path) -> str:
        ...

    def write(self, path: Path, text: str) -> None:
        ...

    def list(self, directory: Path) -> List[StorageEntry]:
        ...

    def move(self, src: Path, dst: Path) -> None:
        ...

    def copy(self, src: Path, dst: Path) -> None:
        ...

    def exists(self, path: Path) -> bool:
        ...

    def remove(self, path: Path) -> None:
        ...

    def mtime(self, path: Path) -> datetime:
        ...

    def size(self, path: Path) -> int:
        ...


class LocalStorage:
    """Real filesystem, UTF-8 text."""

    def read(self, path: Path) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError("read", Path(path), exc) from exc

    def write(self, path: Path, text: str) -> None:
        p = Path(path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(text, encoding="utf-8")
        except OSError as exc:
            raise StorageError("write", p, exc) from exc

    def list(self, directory: Path) -> List[StorageEntry]:
        d = Path(directory)
        if not d.is_dir():
            return []
        try:
            return [
                StorageEntry(name=entry.name, path=entry, is_dir=entry.is_dir())
                for entry in sorted(d.iterdir(), key=lambda e: e.name)
            ]
        except OSError as exc:
            raise StorageError("list", d, exc) from exc

    def copy(self, src: Path, dst: Path) -> None:
        d = Path(dst)
        try:
            d.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, d)
        except OSError as exc:
            raise StorageError("copy", Path(src), exc) from exc

    def move(self, src: Path, dst: Path) -> None:
        # Copy first so a failed copy never loses the source.
        self.copy(src, dst)
        self.remove(src)

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def remove(self, path: Path) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError("remove", Path(path), exc) from exc

    def mtime(self, path: Path) -> datetime:
        try:
            return datetime.fromtimestamp(Path(path).stat().st_mtime, tz=timezone.utc)
        except OSError as exc:
            raise StorageError("stat", Path(path), exc) from exc

    def size(self, path: Path) -> int:
        try:
            return Path(path).stat().st_size
        except OSError as exc:
            raise StorageError("stat", Path(path), exc) from exc


class MemoryStorage:
    """Dict-backed storage for tests.  Directories exist implicitly."""

    def __init__(
        self,
        files: Optional[Dict[Path, str]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._files: Dict[Path, str] = {}
        self._mtimes: Dict[Path, datetime] = {}
        self._now = now or datetime.now(timezone.utc)
        for path, text in (files or {}).items():
            self.write(Path(path), text)

    @property
    def files(self) -> Dict[Path, str]:
        return dict(self._files)

    def set_mtime(self, path: Path, when: datetime) -> None:
        self._mtimes[Path(path)] = when

    def read(self, path: Path) -> str:
        p = Path(path)
        if p not in self._files:
            raise StorageError("read", p, FileNotFoundError(str(p)))
        return self._files[p]

    def write(self, path: Path, text: str) -> None:
        p = Path(path)
        self._files[p] = text
        self._mtimes[p] = self._now

    def list(self, directory: Path) -> List[StorageEntry]:
        d = Path(directory)
        names: Dict[str, bool] = {}
        for p in self._files:
            try:
                rel = p.relative_to(d)
            except ValueError:
                continue
            if not rel.parts:
                continue
            names[rel.parts[0]] = names.get(rel.parts[0], False) or len(rel.parts) > 1
        return [StorageEntry(name=n, path=d / n, is_dir=names[n]) for n in sorted(names)]

    def copy(self, src: Path, dst: Path) -> None:
        text = self.read(src)
        self._files[Path(dst)] = text
        self._mtimes[Path(dst)] = self._mtimes.get(Path(src), self._now)

    def move(self, src: Path, dst: Path) -> None:
        self.copy(src, dst)
        self.remove(src)

    def exists(self, path: Path) -> bool:
        p = Path(path)
        return p in self._files or any(p in f.parents for f in self._files)

    def remove(self, path: Path) -> None:
        self._files.pop(Path(path), None)
        self._mtimes.pop(Path(path), None)

    def mtime(self, path: Path) -> datetime:
        p = Path(path)
        if p not in self._files:
            raise StorageError("stat", p, FileNotFoundError(str(p)))
        return self._mtimes.get(p, self._now)

    def size(self, path: Path) -> int:
        return len(self.read(path).encode("utf-8"))


@dataclass
class _Overlay:
    written: Dict[Path, str] = field(default_factory=dict)
    removed: set = field(default_factory=set)


class DryRunStorage:
    """Wraps another storage; mutations are recorded in ``planned`` only.

    Reads see this run's pending writes so a workflow behaves exactly as it
    would for real.
    """

    def __init__(self, inner: Storage, now: Optional[datetime] = None) -> None:
        self._inner = inner
        self._now = now or datetime.now(timezone.utc)
        self._overlay = _Overlay()
        self.planned: List[Tuple[str, str]] = []

    def _plan(self, operation: str, target: str) -> None:
        self.planned.append((operation, target))
        logger.debug("dry_run: would %s %s", operation, target)

    def read(self, path: Path) -> str:
        p = Path(path)
        if p in self._overlay.written:
            return self._overlay.written[p]
        if p in self._overlay.removed:
            raise StorageError("read", p, FileNotFoundError(str(p)))
        return self._inner.read(p)

    def write(self, path: Path, text: str) -> None:
        p = Path(path)
        self._overlay.written[p] = text
        self._overlay.removed.discard(p)
        self._plan("write", str(p))

    def list(self, directory: Path) -> List[StorageEntry]:
        d = Path(directory)
        entries = {e.name: e for e in self._inner.list(d) if e.path not in self._overlay.removed}
        for p in self._overlay.written:
            if p.parent == d:
                entries.setdefault(p.name, StorageEntry(name=p.name, path=p, is_dir=False))
        return [entries[name] for name in sorted(entries)]

    def copy(self, src: Path, dst: Path) -> None:
        self._overlay.written[Path(dst)] = self.read(src)
        self._plan("copy", f"{src} -> {dst}")

    def move(self, src: Path, dst: Path) -> None:
        self._overlay.written[Path(dst)] = self.read(src)
        self._overlay.written.pop(Path(src), None)
        self._overlay.removed.add(Path(src))
        self._plan("move", f"{src} -> {dst}")

    def exists(self, path: Path) -> bool:
        p = Path(path)
        if p in self._overlay.written:
            return True
        if p in self._overlay.removed:
            return False
        return self._inner.exists(p)

    def remove(self, path: Path) -> None:
        p = Path(path)
        self._overlay.written.pop(p, None)
        self._overlay.removed.add(p)
        self._plan("remove", str(p))

    def mtime(self, path: Path) -> datetime:
        p = Path(path)
        if p in self._overlay.written:
            return self._now
        return self._inner.mtime(p)

    def size(self, path: Path) -> int:
        p = Path(path)
        if p in self._overlay.written:
            return len(self._overlay.written[p].encode("utf-8"))
        return self._inner.size(p)
