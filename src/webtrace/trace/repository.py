from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Deque, List, Mapping, Protocol

DEFAULT_CAPACITY = 100


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(sub) for key, sub in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    return value


@dataclass(frozen=True)
class Trace:
    id: int
    timestamp: datetime
    info: Mapping[str, Any]


class TraceRepository(Protocol):
    def add(self, info: Mapping[str, Any]) -> Trace: ...

    def find_all(self, limit: int = 0) -> List[Trace]: ...


class InMemoryTraceRepository:
    """In-memory ring buffer of the most recent traces."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, *, reverse: bool = True) -> None:
        self._capacity = max(1, int(capacity))
        self._reverse = bool(reverse)
        self._items: Deque[Trace] = deque(maxlen=self._capacity)
        self._seq = 0
        self._lock = threading.Lock()

    def add(self, info: Mapping[str, Any]) -> Trace:
        frozen = _freeze(info)
        with self._lock:
            self._seq += 1
            trace = Trace(id=self._seq, timestamp=datetime.now(timezone.utc), info=frozen)
            self._items.append(trace)
            return trace

    def find_all(self, limit: int = 0) -> List[Trace]:
        with self._lock:
            items = list(self._items)
        if limit > 0:
            items = items[-limit:]
        if self._reverse:
            items.reverse()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def capacity(self) -> int:
        return self._capacity
