from __future__ import annotations

from dataclasses import dataclass

from .errors import AuthenticationError


@dataclass(frozen=True, slots=True)
class Retry:
    delay_seconds: float


@dataclass(frozen=True, slots=True)
class GiveUp:
    reason: str
    fatal: bool = False


RetryDecision = Retry | GiveUp


@dataclass(slots=True)
class RetryState:
    """
    单个轮询周期内的失败连击计数；任何一次成功拉取后清零。
    """

    attempt: int = 0
    last_error: BaseException | None = None

    def record(self, error: BaseException) -> int:
        self.attempt += 1
        self.last_error = error
        return self.attempt

    def reset(self) -> None:
        self.attempt = 0
        self.last_error = None


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    纯函数式的退避决策（无 I/O、无随机抖动，便于断言）。

    - 第 n 次失败的等待时间：base * 2^(n-1)，配置了 max_delay 时封顶
    - n > max_retries 时放弃（GiveUp，非致命：由 Scheduler 冷却后继续）
    - AuthenticationError 永不重试（GiveUp(fatal=True)）
    """

    base_delay_seconds: float = 0.02
    max_retries: int = 3
    max_delay_seconds: float | None = None

    def next(self, attempt: int, error: BaseException) -> RetryDecision:
        if isinstance(error, AuthenticationError):
            return GiveUp(reason="authentication rejected", fatal=True)
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        if attempt > self.max_retries:
            return GiveUp(reason=f"retries exhausted after {attempt - 1} retries")

        delay = self.base_delay_seconds * (2 ** (attempt - 1))
        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        return Retry(delay_seconds=delay)
