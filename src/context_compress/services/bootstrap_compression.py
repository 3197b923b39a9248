"""Inline compression of the fixed bootstrap files (SOUL.md, USER.md, ...).

Each file keeps its prose and gets one compressed block appended.  The block
is regenerated from the prose on every run after the previous one has been
stripped, so running twice on unchanged input leaves the file byte-identical.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

from context_compress.domain.sections import SizeChange, WorkflowResult
from context_compress.observability.structured_log import log_json
from context_compress.services.block_serializer import append_block, serialize_sections, strip_marker
from context_compress.services.error_codes import MarkerError
from context_compress.services.markdown_sections import parse_sections
from context_compress.services.run_context import CompressContext
from context_compress.util import byte_len

logger = logging.getLogger(__name__)

WORKFLOW_NAME = "bootstrap"


def bootstrap_tag(filename: str) -> str:
    return Path(filename).stem.upper()


def compress_text(content: str, tag: str, title: str) -> Tuple[str, str]:
    """Strip the old block for ``tag`` and append a freshly serialized one.

    Returns ``(new_content, block)``.
    """
    clean = strip_marker(content, tag)
    block = serialize_sections(tag, title, parse_sections(clean))
    return append_block(clean, block), block


class BootstrapCompressor:
    def __init__(self, ctx: CompressContext) -> None:
        self._ctx = ctx
        self._cfg = ctx.config
        self._storage = ctx.storage

    def compress_file(self, filename: str, result: WorkflowResult) -> bool:
        """Compress one bootstrap file in place.  Returns False when it was skipped."""
        path = self._cfg.workspace_dir / filename
        content = self._storage.read(path)
        tag = bootstrap_tag(filename)
        try:
            new_content, block = compress_text(content, tag, Path(filename).stem)
        except MarkerError as exc:
            logger.warning("bootstrap_compression: %s skipped: %s", filename, exc)
            result.warnings.append(f"{filename}: {exc}")
            return False

        block_bytes = byte_len(block)
        if block_bytes > self._cfg.block_max_bytes:
            msg = f"{filename} compressed marker is {block_bytes} bytes (>{self._cfg.block_max_bytes} limit)"
            logger.warning("bootstrap_compression: %s", msg)
            log_json(logger, "size_ceiling_exceeded", level=logging.WARNING, file=filename, bytes=block_bytes)
            result.warnings.append(msg)

        if new_content == content:
            logger.debug("bootstrap_compression: %s unchanged", filename)
            return True

        self._ctx.archive().backup(path)
        self._storage.write(path, new_content)
        logger.debug("bootstrap_compression: %s -> %d bytes marker", filename, block_bytes)
        result.changes.append(
            SizeChange(file=filename, before=byte_len(content), after=byte_len(new_content))
        )
        return True

    def run(self) -> WorkflowResult:
        result = WorkflowResult(name=WORKFLOW_NAME)
        present = [f for f in self._cfg.bootstrap_files if self._storage.exists(self._cfg.workspace_dir / f)]
        if not present:
            result.skipped = True
            result.summary = "No bootstrap files found, skipping."
            return result

        processed = sum(1 for filename in present if self.compress_file(filename, result))
        log_json(logger, "bootstrap_compressed", files=processed)
        result.summary = f"Bootstrap compression complete. {processed} file(s) processed."
        return result


def compress_bootstrap(ctx: CompressContext) -> WorkflowResult:
    return BootstrapCompressor(ctx).run()
