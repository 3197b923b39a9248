from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Type


class CompressError(Exception):
    """Base class for failures raised by the compression workflows."""


class MarkerError(CompressError):
    def __init__(self, tag: str, reason: str) -> None:
        super().__init__(f"Marker conflict for {tag}: {reason}")
        self.tag = tag
        self.reason = reason


class StorageError(CompressError):
    def __init__(self, operation: str, path: Path, cause: Optional[BaseException] = None) -> None:
        detail = f": {cause}" if cause else ""
        super().__init__(f"Storage {operation} failed for {path}{detail}")
        self.operation = operation
        self.path = path
        self.cause = cause


class SemanticDriftError(CompressError):
    def __init__(self, expected: int, actual: int, restored: List[str]) -> None:
        super().__init__(
            f"Semantic drift detected: expected {expected} entries, found {actual}"
        )
        self.expected = expected
        self.actual = actual
        self.restored = restored


@dataclass(frozen=True)
class RecoveryAction:
    action_id: str
    label: str
    description: str


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    user_message: str
    triggers: Tuple[Type[BaseException], ...]
    actions: List[RecoveryAction]


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_MARKER_CONFLICT",
        title="Ambiguous compressed marker",
        user_message="A file holds more than one compressed block for the same tag, or an unterminated one.",
        triggers=(MarkerError,),
        actions=[
            RecoveryAction("edit_markers", "Remove stale markers", "Keep a single START/END pair and rerun."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_SEMANTIC_DRIFT",
        title="Entry count drift",
        user_message="Compressed output lost or gained entries; previous files were restored.",
        triggers=(SemanticDriftError,),
        actions=[
            RecoveryAction("inspect_archive", "Inspect archive", "Compare memory/archive backups with the sources."),
            RecoveryAction("rerun_dry", "Dry run", "Rerun with --dry-run --verbose to see the parsed sections."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_WRITE_FAILED",
        title="Workspace write failed",
        user_message="A file in the workspace could not be read or written.",
        triggers=(StorageError, OSError),
        actions=[
            RecoveryAction("check_permissions", "Check permissions", "Verify disk space and directory permissions."),
            RecoveryAction("rerun", "Rerun", "Source files are only archived after a successful write."),
        ],
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unknown compression error",
        user_message="An unknown error occurred.",
        triggers=(),
        actions=[
            RecoveryAction("rerun_verbose", "Rerun verbose", "Rerun with --verbose to capture the failing step."),
        ],
    ),
]


def detect_error_code(exc: BaseException) -> str:
    for entry in ERROR_CATALOG:
        if entry.triggers and isinstance(exc, entry.triggers):
            return entry.code
    return "ERR_UNKNOWN"


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")
