from __future__ import annotations

from typing import Protocol

from ..models import Cursor


class CursorStore(Protocol):
    """
    Cursor 持久化接口：
    - load：启动时调用一次；没有任何历史状态时返回空 Cursor（触发冷启动 Initial* 事件）
    - save：每次成功 diff 后调用；失败抛 PersistenceError，由 Scheduler 记录并在下一轮重试
    """

    def load(self) -> Cursor: ...

    def save(self, cursor: Cursor) -> None: ...
