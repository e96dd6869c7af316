from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import threading
from typing import Deque, List


@dataclass(frozen=True)
class TraceEntry:
    event: str
    addr: int
    mnemonic: str
    detail: str


class TraceBuffer:
    def __init__(self, capacity: int = 64) -> None:
        self._entries: Deque[TraceEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(self, entry: TraceEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def snapshot(self) -> List[TraceEntry]:
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["TraceBuffer", "TraceEntry"]
