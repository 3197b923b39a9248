import logging
import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

SKILLS_DIR_KEY = "CONTEXT_COMPRESS_SKILLS_DIR"
MIN_AGE_KEY = "CONTEXT_COMPRESS_MIN_AGE_HOURS"
INDEX_MAX_BYTES_KEY = "CONTEXT_COMPRESS_INDEX_MAX_BYTES"
BLOCK_MAX_BYTES_KEY = "CONTEXT_COMPRESS_BLOCK_MAX_BYTES"
DRIFT_THRESHOLD_KEY = "CONTEXT_COMPRESS_DRIFT_THRESHOLD"
DRIFT_MODE_KEY = "CONTEXT_COMPRESS_DRIFT_MODE"

DEFAULT_SKILLS_DIR = Path.home() / ".openclaw" / "skills"
DEFAULT_INDEX_MAX_BYTES = 4096
DEFAULT_BLOCK_MAX_BYTES = 2048
DEFAULT_DRIFT_THRESHOLD = 0.10
MIN_CEILING_BYTES = 256

DRIFT_MODE_RESTORE = "restore"
DRIFT_MODE_WARN = "warn"
_DRIFT_MODES = {DRIFT_MODE_RESTORE, DRIFT_MODE_WARN}

BOOTSTRAP_FILES: Tuple[str, ...] = (
    "SOUL.md",
    "IDENTITY.md",
    "USER.md",
    "AGENTS.md",
    "HEARTBEAT.md",
)


@dataclass(frozen=True)
class CompressConfig:
    workspace_dir: Path
    skills_dir: Path = DEFAULT_SKILLS_DIR
    min_age: timedelta = timedelta(hours=12)
    index_max_bytes: int = DEFAULT_INDEX_MAX_BYTES
    block_max_bytes: int = DEFAULT_BLOCK_MAX_BYTES
    drift_threshold: float = DEFAULT_DRIFT_THRESHOLD
    drift_mode: str = DRIFT_MODE_RESTORE
    bootstrap_files: Tuple[str, ...] = field(default=BOOTSTRAP_FILES)
    dry_run: bool = False

    @property
    def memory_dir(self) -> Path:
        return self.workspace_dir / "memory"

    @property
    def archive_dir(self) -> Path:
        return self.memory_dir / "archive"

    @property
    def compressed_dir(self) -> Path:
        return self.memory_dir / "compressed"

    @property
    def memory_file(self) -> Path:
        return self.workspace_dir / "MEMORY.md"

    @property
    def tools_file(self) -> Path:
        return self.workspace_dir / "TOOLS.md"

    def with_overrides(self, **changes) -> "CompressConfig":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip().strip("'\"")
    except OSError as exc:
        logger.warning("config: failed to read %s: %s", path, exc)
    return data


def get_env_value(key: str, env_file: Mapping[str, str], environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    source = os.environ if environ is None else environ
    return source.get(key) or env_file.get(key)


def _int_value(raw: Optional[str], default: int, minimum: int) -> int:
    try:
        return max(minimum, int((raw or "").strip() or default))
    except ValueError:
        logger.warning("config: ignoring malformed integer %r", raw)
        return default


def _float_value(raw: Optional[str], default: float) -> float:
    try:
        value = float((raw or "").strip() or default)
    except ValueError:
        logger.warning("config: ignoring malformed number %r", raw)
        return default
    return value if value >= 0 else default


def load_config(workspace_dir: Path, environ: Optional[Mapping[str, str]] = None) -> CompressConfig:
    """Build the run configuration from the environment and ``<workspace>/.env``.

    Process environment wins over the ``.env`` file.
    """
    ws = Path(workspace_dir).expanduser().resolve()
    env_file = load_env_file(ws / ".env")

    def value(key: str) -> Optional[str]:
        return get_env_value(key, env_file, environ)

    skills_raw = (value(SKILLS_DIR_KEY) or "").strip()
    skills_dir = Path(skills_raw).expanduser() if skills_raw else DEFAULT_SKILLS_DIR

    drift_mode = (value(DRIFT_MODE_KEY) or DRIFT_MODE_RESTORE).strip().lower()
    if drift_mode not in _DRIFT_MODES:
        logger.warning("config: unknown drift mode %r, using %s", drift_mode, DRIFT_MODE_RESTORE)
        drift_mode = DRIFT_MODE_RESTORE

    return CompressConfig(
        workspace_dir=ws,
        skills_dir=skills_dir,
        min_age=timedelta(hours=_float_value(value(MIN_AGE_KEY), 12.0)),
        index_max_bytes=_int_value(value(INDEX_MAX_BYTES_KEY), DEFAULT_INDEX_MAX_BYTES, MIN_CEILING_BYTES),
        block_max_bytes=_int_value(value(BLOCK_MAX_BYTES_KEY), DEFAULT_BLOCK_MAX_BYTES, MIN_CEILING_BYTES),
        drift_threshold=_float_value(value(DRIFT_THRESHOLD_KEY), DEFAULT_DRIFT_THRESHOLD),
        drift_mode=drift_mode,
    )
