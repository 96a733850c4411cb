from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .bus import EventBus
from .differ import Differ, attach_messages
from .errors import AuthenticationError, FunPayError, MalformedPayloadError, PersistenceError, TransportError
from .gateway.base import Gateway
from .events import Event, NewMessage
from .models import Credential, Cursor, Message, RawSnapshot, Snapshot
from .retry import GiveUp, RetryPolicy, RetryState
from .state.store import CursorStore


logger = logging.getLogger(__name__)


class StopSignal(Protocol):
    """threading.Event 即满足该协议；wait 返回 True 表示收到停止信号。"""

    def is_set(self) -> bool: ...

    def wait(self, timeout: float | None = None) -> bool: ...


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    DIFFING = "diffing"
    RETRYING = "retrying"
    SLEEPING = "sleeping"
    TERMINATED = "terminated"


class CycleOutcome(str, Enum):
    OK = "ok"
    EXHAUSTED = "exhausted"
    MALFORMED = "malformed"
    CRASHED = "crashed"
    STOPPED = "stopped"
    AUTHENTICATION_FAILED = "authentication_failed"


class StopReason(str, Enum):
    STOPPED = "stopped"
    AUTHENTICATION_FAILED = "authentication_failed"


@dataclass(slots=True)
class CycleReport:
    cycle_id: int
    attempts: int
    outcome: CycleOutcome
    events_emitted: int
    cursor_saved: bool
    duration_ms: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """
    run() 的终止原因。

    reason=AUTHENTICATION_FAILED 时调用方可以重新登录后再启动新的 Scheduler；
    reason=STOPPED 表示收到了显式停止信号。
    """

    reason: StopReason
    cycles: int
    error: AuthenticationError | None = None

    @property
    def fatal(self) -> bool:
        return self.reason is StopReason.AUTHENTICATION_FAILED


class Scheduler:
    """
    轮询调度器：单个会话一个实例，循环不会与自身并发执行。

    状态机：Idle -> Fetching -> {Diffing | Retrying} -> Sleeping -> Fetching -> ... -> Terminated

    每个成功周期的顺序：
    - 拉取 chats + orders（二者都成功才进入 diff，否则整轮丢弃）
    - diff 得到新 Snapshot / Cursor / 事件
    - 有 NewMessage 时拉取对应聊天历史，展开为逐条消息事件（失败则保留 bookmark 级事件）
    - 先持久化 cursor，再发布事件（进程在两步之间崩溃时宁可漏通告，也不重复通告）
    - 睡眠 polling_interval（可被停止信号提前打断）
    """

    def __init__(
        self,
        *,
        gateway: Gateway,
        credential: Credential,
        bus: EventBus,
        cursor_store: CursorStore,
        retry_policy: RetryPolicy | None = None,
        polling_interval_seconds: float = 1.5,
        error_retry_delay_seconds: float = 5.0,
    ) -> None:
        self._gateway = gateway
        self._credential = credential
        self._bus = bus
        self._cursor_store = cursor_store
        self._retry_policy = retry_policy or RetryPolicy()
        self._polling_interval_seconds = polling_interval_seconds
        self._error_retry_delay_seconds = error_retry_delay_seconds

        self._state = SchedulerState.IDLE
        self._snapshot = Snapshot.empty()
        self._retry = RetryState()
        self._differ = Differ()
        self._started = False
        self._cursor: Cursor | None = None
        self._cursor_dirty = False
        self._cycle_id = 0
        self.last_report: CycleReport | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycles(self) -> int:
        return self._cycle_id

    def _ensure_started(self) -> None:
        if self._started:
            return
        try:
            cursor = self._cursor_store.load()
        except PersistenceError:
            logger.exception("cursor load failed; starting from empty cursor: store=%s", type(self._cursor_store).__name__)
            cursor = Cursor()
        self._cursor = cursor
        self._started = True
        logger.info(
            "scheduler started: user_id=%s cursor_chats=%d cursor_orders=%d polling_interval_s=%.3f",
            self._credential.user_id,
            len(cursor.chats),
            len(cursor.orders),
            self._polling_interval_seconds,
        )

    def run(self, stop_signal: StopSignal) -> RunOutcome:
        """
        运行直到收到停止信号或遇到认证失败。重试耗尽不会终止循环。
        """
        self._ensure_started()
        try:
            while not stop_signal.is_set():
                report = self.run_once(stop_signal)
                if report.outcome is CycleOutcome.AUTHENTICATION_FAILED:
                    self._bus.close()
                    error = self._retry.last_error
                    return RunOutcome(
                        reason=StopReason.AUTHENTICATION_FAILED,
                        cycles=self._cycle_id,
                        error=error if isinstance(error, AuthenticationError) else None,
                    )
                if report.outcome is CycleOutcome.STOPPED:
                    break

                if report.outcome in (CycleOutcome.OK, CycleOutcome.MALFORMED):
                    delay = self._polling_interval_seconds
                else:
                    delay = self._error_retry_delay_seconds
                self._state = SchedulerState.SLEEPING
                if stop_signal.wait(delay):
                    break
        finally:
            self._state = SchedulerState.TERMINATED

        logger.info("scheduler stopped: cycles=%d", self._cycle_id)
        return RunOutcome(reason=StopReason.STOPPED, cycles=self._cycle_id)

    def run_once(self, stop_signal: StopSignal | None = None) -> CycleReport:
        """
        执行一个完整周期（含周期内的退避重试），不包含周期间的睡眠。
        """
        self._ensure_started()
        stop = stop_signal if stop_signal is not None else threading.Event()
        self._cycle_id += 1
        start_t = time.monotonic()
        self._retry.reset()

        def _report(outcome: CycleOutcome, *, attempts: int, events: int = 0, saved: bool = False, error: str | None = None) -> CycleReport:
            report = CycleReport(
                cycle_id=self._cycle_id,
                attempts=attempts,
                outcome=outcome,
                events_emitted=events,
                cursor_saved=saved,
                duration_ms=int((time.monotonic() - start_t) * 1000),
                error=error,
            )
            self.last_report = report
            return report

        while True:
            self._state = SchedulerState.FETCHING
            try:
                raw = self._fetch()
                break
            except (TransportError, AuthenticationError) as e:
                attempt = self._retry.record(e)
                decision = self._retry_policy.next(attempt, e)
                if isinstance(decision, GiveUp):
                    if decision.fatal:
                        logger.error(
                            "authentication rejected; polling terminated: cycle=%d user_id=%s error=%s",
                            self._cycle_id,
                            self._credential.user_id,
                            e,
                        )
                        return _report(CycleOutcome.AUTHENTICATION_FAILED, attempts=attempt, error=str(e))
                    logger.error(
                        "poll cycle failed: cycle=%d attempts=%d reason=%s cooldown_s=%.3f error=%s",
                        self._cycle_id,
                        attempt,
                        decision.reason,
                        self._error_retry_delay_seconds,
                        e,
                    )
                    self._retry.reset()
                    return _report(CycleOutcome.EXHAUSTED, attempts=attempt, error=f"{type(e).__name__}: {e}")

                self._state = SchedulerState.RETRYING
                logger.warning(
                    "fetch failed, retrying: cycle=%d attempt=%d delay_s=%.3f error=%s",
                    self._cycle_id,
                    attempt,
                    decision.delay_seconds,
                    e,
                )
                if stop.wait(decision.delay_seconds):
                    return _report(CycleOutcome.STOPPED, attempts=attempt)
            except MalformedPayloadError as e:
                logger.error("malformed payload from gateway; cycle skipped: cycle=%d error=%s", self._cycle_id, e)
                return _report(CycleOutcome.MALFORMED, attempts=self._retry.attempt + 1, error=str(e))
            except Exception as e:  # noqa: BLE001
                logger.exception("cycle crashed: cycle=%d", self._cycle_id)
                return _report(CycleOutcome.CRASHED, attempts=self._retry.attempt + 1, error=f"{type(e).__name__}: {e}")

        attempts = self._retry.attempt + 1
        self._retry.reset()

        self._state = SchedulerState.DIFFING
        assert self._cursor is not None
        try:
            result = self._differ.diff(self._snapshot, raw, self._cursor)
        except MalformedPayloadError as e:
            logger.error("malformed snapshot; cycle skipped: cycle=%d error=%s", self._cycle_id, e)
            return _report(CycleOutcome.MALFORMED, attempts=attempts, error=str(e))
        except Exception as e:  # noqa: BLE001
            logger.exception("cycle crashed during diff: cycle=%d", self._cycle_id)
            return _report(CycleOutcome.CRASHED, attempts=attempts, error=f"{type(e).__name__}: {e}")

        events = self._with_messages(result.events)
        self._snapshot = result.snapshot
        saved = self._persist(result.cursor)

        for event in events:
            logger.debug("publish event: cycle=%d kind=%s", self._cycle_id, event.kind)
            self._bus.publish(event)

        return _report(CycleOutcome.OK, attempts=attempts, events=len(events), saved=saved)

    def _fetch(self) -> RawSnapshot:
        chats = self._gateway.fetch_chats(self._credential)
        orders = self._gateway.fetch_orders(self._credential)
        return RawSnapshot(chats=chats, orders=orders)

    def _with_messages(self, events: tuple[Event, ...]) -> tuple[Event, ...]:
        chats = {e.chat.id: e.chat.name for e in events if isinstance(e, NewMessage)}
        if not chats:
            return events
        try:
            histories: dict[int, list[Message]] = self._gateway.fetch_chat_histories(self._credential, chats)
        except FunPayError as e:
            logger.warning(
                "chat history fetch failed; publishing bookmark-only messages: cycle=%d chats=%d error=%s",
                self._cycle_id,
                len(chats),
                e,
            )
            return events
        except Exception:  # noqa: BLE001
            logger.exception("chat history fetch crashed; publishing bookmark-only messages: cycle=%d", self._cycle_id)
            return events
        return attach_messages(events, histories)

    def _persist(self, cursor: Cursor) -> bool:
        changed = cursor != self._cursor
        self._cursor = cursor
        if not changed and not self._cursor_dirty:
            return False
        try:
            self._cursor_store.save(cursor)
        except PersistenceError as e:
            self._cursor_dirty = True
            logger.warning("cursor save failed; continuing in-memory, will retry next cycle: cycle=%d error=%s", self._cycle_id, e)
            return False
        except Exception:  # noqa: BLE001
            self._cursor_dirty = True
            logger.exception("cursor save crashed; continuing in-memory: cycle=%d", self._cycle_id)
            return False
        self._cursor_dirty = False
        return True
