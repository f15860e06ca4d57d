from __future__ import annotations

import json
import threading
from collections import deque
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping

EVENTS_FILE_NAME = "webtrace.events.jsonl"

LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
DEFAULT_LOG_LEVEL = "INFO"
_LEVEL_ALIASES = {"WARNING": "WARN", "CRITICAL": "ERROR"}


def normalize_level(value: str) -> str:
    level = str(value).strip().upper()
    level = _LEVEL_ALIASES.get(level, level)
    if level not in LEVELS:
        raise ValueError(f"unknown log level: {value!r} (expected one of {', '.join(LEVELS)})")
    return level


def to_jsonable(value: Any) -> Any:
    """Coerce trace and event payloads into plain JSON types.

    Read-only mappings and tuples from stored traces become dicts and lists;
    anything unrecognised is rendered with ``str``.
    """
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    return str(value)


class EventLogger:
    """Append-only JSONL event sink shared by the server threads.

    Events below ``min_level`` are dropped before they are serialised, so
    per-request ``DEBUG`` events cost nothing at the default ``INFO``.
    """

    def __init__(self, log_dir: str, *, min_level: str = DEFAULT_LOG_LEVEL) -> None:
        self._path = Path(log_dir).expanduser() / EVENTS_FILE_NAME
        self._threshold = LEVELS.index(normalize_level(min_level))
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def min_level(self) -> str:
        return LEVELS[self._threshold]

    def enabled(self, level: str) -> bool:
        return LEVELS.index(normalize_level(level)) >= self._threshold

    def write(self, *, level: str, event: str, message: str = "", **fields: Any) -> None:
        level = normalize_level(level)
        if not self.enabled(level):
            return
        record: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": str(event),
            "message": str(message),
        }
        record.update((str(key), to_jsonable(value)) for key, value in fields.items())
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line)


def tail_lines(path: Path, limit: int = 120) -> List[str]:
    try:
        with path.open("r", encoding="utf-8", errors="replace") as handle:
            return [line.rstrip("\n") for line in deque(handle, maxlen=max(1, limit))]
    except OSError:
        return []
