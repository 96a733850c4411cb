from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Iterator

from .events import Event


logger = logging.getLogger(__name__)


class Subscription:
    """
    单个订阅方的接收句柄，拥有独立的有界 backlog。

    backlog 满时丢弃最旧的未读事件（dropped 计数 +1），发布方永不阻塞。
    迭代会一直阻塞等待新事件，直到订阅被关闭且 backlog 读空。
    """

    def __init__(self, bus: EventBus, capacity: int) -> None:
        self._bus = bus
        self._backlog: deque[Event] = deque(maxlen=capacity)
        self._cond = threading.Condition()
        self._closed = False
        self._dropped = 0

    @property
    def capacity(self) -> int:
        return self._backlog.maxlen or 0

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._backlog)

    @property
    def dropped(self) -> int:
        with self._cond:
            return self._dropped

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def _offer(self, event: Event) -> bool:
        """由 EventBus 调用；返回是否因 backlog 已满而丢弃了最旧事件。"""
        with self._cond:
            if self._closed:
                return False
            overflow = len(self._backlog) == self._backlog.maxlen
            if overflow:
                self._dropped += 1
            self._backlog.append(event)
            self._cond.notify()
            return overflow

    def get(self, timeout: float | None = None) -> Event | None:
        """
        取下一个事件。超时或订阅已关闭且无剩余事件时返回 None。
        """
        with self._cond:
            self._cond.wait_for(lambda: bool(self._backlog) or self._closed, timeout)
            if self._backlog:
                return self._backlog.popleft()
            return None

    def get_nowait(self) -> Event | None:
        with self._cond:
            if self._backlog:
                return self._backlog.popleft()
            return None

    def drain(self) -> list[Event]:
        with self._cond:
            events = list(self._backlog)
            self._backlog.clear()
            return events

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def _mark_closed(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def close(self) -> None:
        self._bus._remove(self)
        self._mark_closed()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class EventBus:
    """
    多订阅方广播：每次 subscribe() 得到全新的 backlog（不回放历史）。

    订阅列表采用写时复制的 tuple：publish 只读取当前快照，不与订阅方争锁；
    锁只保护 subscribe / unsubscribe。
    """

    def __init__(self, capacity: int = 512) -> None:
        if capacity < 1:
            raise ValueError(f"event channel capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._subscribers: tuple[Subscription, ...] = ()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._capacity)
        with self._lock:
            if self._closed:
                sub._mark_closed()
                return sub
            self._subscribers = self._subscribers + (sub,)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers = tuple(s for s in self._subscribers if s is not sub)

    def publish(self, event: Event) -> int:
        """
        投递给当前所有订阅方，返回投递数量。永不阻塞在慢订阅方上。
        """
        subscribers = self._subscribers
        for sub in subscribers:
            if sub._offer(event):
                logger.debug(
                    "subscriber backlog full, dropped oldest event: capacity=%d dropped_total=%d",
                    self._capacity,
                    sub.dropped,
                )
        return len(subscribers)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            subscribers = self._subscribers
            self._subscribers = ()
        for sub in subscribers:
            sub._mark_closed()
