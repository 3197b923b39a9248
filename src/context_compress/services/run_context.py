from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from context_compress.config import CompressConfig
from context_compress.services.archive import ArchiveService
from context_compress.services.classifier import Classifier
from context_compress.services.storage import DryRunStorage, LocalStorage, Storage


@dataclass
class CompressContext:
    """Everything one invocation shares across its workflows."""
    config: CompressConfig
    storage: Storage
    classifier: Classifier = field(default_factory=Classifier)
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def archive(self) -> ArchiveService:
        return ArchiveService(self.storage, self.config.archive_dir, now=self.now.astimezone())


def build_context(
    config: CompressConfig,
    storage: Optional[Storage] = None,
    now: Optional[datetime] = None,
) -> CompressContext:
    now = now or datetime.now(timezone.utc)
    base: Storage = storage if storage is not None else LocalStorage()
    if config.dry_run:
        base = DryRunStorage(base, now=now)
    return CompressContext(config=config, storage=base, now=now)
