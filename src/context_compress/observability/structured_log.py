import json
from datetime import datetime, timezone
from logging import INFO, Logger
from typing import Any, Dict


def log_json(logger: Logger, event: str, level: int = INFO, **fields: Any) -> None:
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    payload.update({k: (str(v) if hasattr(v, "__fspath__") else v) for k, v in fields.items()})
    logger.log(level, json.dumps(payload, ensure_ascii=True, sort_keys=True))
