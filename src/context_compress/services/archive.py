"""Workspace backups under ``memory/archive``.

Provides an ArchiveService that:
  - Copies a file to a timestamped backup (``<stem>-<YYYYMMDD-HHMMSS><suffix>``)
    before it is rewritten.
  - Moves processed source notes into the archive (copy, then delete).
  - Restores files from the backups taken during the current run.

Usage::

    archive = ArchiveService(storage, archive_dir=ws / "memory" / "archive")
    record = archive.backup(ws / "MEMORY.md")
    # ... write new content ...
    archive.restore(record)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from context_compress.services.storage import Storage
from context_compress.util import timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupRecord:
    source_path: Path
    backup_path: Optional[Path]     # None when the source did not exist yet

    @property
    def existed(self) -> bool:
        return self.backup_path is not None


class ArchiveService:
    def __init__(self, storage: Storage, archive_dir: Path, now: Optional[datetime] = None) -> None:
        self._storage = storage
        self._archive_dir = Path(archive_dir)
        self._stamp = timestamp(now)

    @property
    def archive_dir(self) -> Path:
        return self._archive_dir

    def backup_path_for(self, path: Path) -> Path:
        p = Path(path)
        return self._archive_dir / f"{p.stem}-{self._stamp}{p.suffix}"

    def backup(self, path: Path) -> BackupRecord:
        """Copy ``path`` into the archive.  A missing file is recorded as such."""
        p = Path(path)
        if not self._storage.exists(p):
            return BackupRecord(source_path=p, backup_path=None)
        dest = self.backup_path_for(p)
        self._storage.copy(p, dest)
        logger.debug("archive: backed up %s -> %s", p, dest)
        return BackupRecord(source_path=p, backup_path=dest)

    def archive_source(self, path: Path) -> Path:
        """Move a processed source note into the archive, keeping its name."""
        p = Path(path)
        dest = self._archive_dir / p.name
        self._storage.move(p, dest)
        logger.info("archive: archived %s", p.name)
        return dest

    def restore(self, record: BackupRecord) -> None:
        """Put a file back the way it was before the current run."""
        if record.backup_path is None:
            self._storage.remove(record.source_path)
            logger.info("archive: removed %s (did not exist before run)", record.source_path)
            return
        self._storage.copy(record.backup_path, record.source_path)
        logger.info("archive: restored %s from %s", record.source_path, record.backup_path.name)

    def restore_all(self, records: List[BackupRecord]) -> List[str]:
        restored: List[str] = []
        for record in records:
            self.restore(record)
            restored.append(record.source_path.name)
        return restored

