import json
import logging
from typing import Any, Dict

from . import config
from .utils import ensure_dir, file_lock, utc_now

logger = logging.getLogger(__name__)


def record_event(event_type: str, proposal_id: str, actor: str, data: Dict[str, Any]) -> Dict[str, Any]:
    entry = {
        "timestamp": utc_now(),
        "event": event_type,
        "proposal_id": proposal_id,
        "actor": actor,
        "data": data,
    }
    line = json.dumps(entry, ensure_ascii=False)
    logger.info("audit %s", line)

    path = config.audit_log_file()
    if path is not None:
        ensure_dir(path.parent)
        with file_lock(config.LOCK_DIR / "audit.log.lock"):
            with path.open("a", encoding="utf-8") as f:
                f.write(line)
                f.write("\n")
    return entry


def read_events(limit: int = 50) -> list[Dict[str, Any]]:
    path = config.audit_log_file()
    if path is None or not path.exists():
        return []
    events = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        if not raw.strip():
            continue
        try:
            events.append(json.loads(raw))
        except json.JSONDecodeError:
            events.append({"raw": raw})
    return list(reversed(events))[:limit]
