from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..models import Cursor


@dataclass(slots=True)
class InMemoryCursorStore:
    """未配置持久化路径时的默认实现：进程重启即丢失。"""

    cursor: Cursor = field(default_factory=Cursor)
    saves: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def load(self) -> Cursor:
        with self._lock:
            return self.cursor

    def save(self, cursor: Cursor) -> None:
        with self._lock:
            self.cursor = cursor
            self.saves += 1
