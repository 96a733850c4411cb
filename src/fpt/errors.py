from __future__ import annotations


class FunPayError(Exception):
    """所有 fpt 异常的基类。"""


class TransportError(FunPayError):
    """
    网络层失败（超时、连接错误、429/5xx 等非成功状态）。

    由 Scheduler 按 RetryPolicy 重试，永远不会被当作致命错误。
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        url: str | None = None,
        body_prefix: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.url = url
        self.body_prefix = body_prefix


class AuthenticationError(FunPayError):
    """凭证被拒绝或已过期；重试无意义，轮询随之终止。"""


class MalformedPayloadError(FunPayError):
    """网关返回的数据无法解释；本轮被跳过，Snapshot 保持不变。"""


class PersistenceError(FunPayError):
    """Cursor 存储读写失败；非致命，下一次成功轮询时重试。"""


class AccountNotInitiatedError(FunPayError):
    """尚未 login() 就调用了需要会话的操作。"""

    def __init__(self, message: str = "account not initiated; call login() first") -> None:
        super().__init__(message)
