from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from .gateway.urls import DEFAULT_BASE_URL


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
)


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_number(d: Mapping[str, Any], key: str, default: float | None, *, where: str) -> float | None:
    v = d.get(key, default)
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ValueError(f"Expected number at {where}.{key}, got {v!r}")
    return float(v)


def _get_int(d: Mapping[str, Any], key: str, default: int, *, where: str) -> int:
    v = d.get(key, default)
    if isinstance(v, bool) or not isinstance(v, int):
        raise ValueError(f"Expected integer at {where}.{key}, got {v!r}")
    return v


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """
    仅供 Gateway 使用的传输层参数，对调度核心不透明。
    """

    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    redirect_limit: int = 10
    request_timeout_seconds: float = 20.0
    proxy_url: str | None = None


@dataclass(frozen=True, slots=True)
class StateConfig:
    """
    backend:
      - "memory"：不落盘（默认）
      - "json"：path 指向 JSON 文件
      - "sqlite"：path 指向 SQLite 数据库
    """

    backend: str = "memory"
    path: str | None = None


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    polling_interval_seconds:
      - 两次成功轮询之间的间隔
    error_retry_delay_seconds:
      - 单轮重试耗尽后的冷却时间
    event_channel_capacity:
      - 每个订阅方 backlog 上限（满了丢最旧事件）
    retry_base_delay_seconds / max_retries / retry_max_delay_seconds:
      - RetryPolicy 参数；第 n 次失败等待 base * 2^(n-1)
    golden_key_env:
      - 会话凭证所在的环境变量名（凭证不落配置文件）
    """

    polling_interval_seconds: float = 1.5
    error_retry_delay_seconds: float = 5.0
    event_channel_capacity: int = 512
    retry_base_delay_seconds: float = 0.02
    max_retries: int = 3
    retry_max_delay_seconds: float | None = None
    golden_key_env: str = "FUNPAY_GOLDEN_KEY"
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    state: StateConfig = field(default_factory=StateConfig)

    def __post_init__(self) -> None:
        if self.event_channel_capacity < 1:
            raise ValueError(f"event_channel_capacity must be >= 1, got {self.event_channel_capacity}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        for name in ("polling_interval_seconds", "error_retry_delay_seconds", "retry_base_delay_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.state.backend not in ("memory", "json", "sqlite"):
            raise ValueError(f"unknown state backend: {self.state.backend!r}")
        if self.state.backend != "memory" and not self.state.path:
            raise ValueError(f"state backend {self.state.backend!r} requires state.path")

    @classmethod
    def default(cls) -> AppConfig:
        return cls()

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式（与 state 一样不引入第三方依赖）。

    JSON 顶层结构（示意）：
    {
      "polling_interval_seconds": 1.5,
      "error_retry_delay_seconds": 5,
      "event_channel_capacity": 512,
      "retry_base_delay_ms": 20,
      "max_retries": 3,
      "gateway": { "base_url": "https://funpay.com", "redirect_limit": 10 },
      "state": { "backend": "json", "path": "./funpay_state.json" },
      "auth": { "golden_key_env": "FUNPAY_GOLDEN_KEY" }
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")
    defaults = AppConfig.default()

    gw = _require_dict(root.get("gateway", {}), where="$.gateway")
    gateway_cfg = GatewayConfig(
        base_url=(_get_str(gw, "base_url") or DEFAULT_BASE_URL).rstrip("/"),
        user_agent=_get_str(gw, "user_agent") or DEFAULT_USER_AGENT,
        redirect_limit=_get_int(gw, "redirect_limit", 10, where="$.gateway"),
        request_timeout_seconds=_get_number(root, "request_timeout_seconds", 20.0, where="$") or 20.0,
        proxy_url=_get_str(gw, "proxy_url"),
    )

    st = _require_dict(root.get("state", {}), where="$.state")
    state_cfg = StateConfig(
        backend=_get_str(st, "backend") or ("json" if st.get("path") else "memory"),
        path=_get_str(st, "path"),
    )

    auth = _require_dict(root.get("auth", {}), where="$.auth")
    retry_base_ms = _get_number(root, "retry_base_delay_ms", defaults.retry_base_delay_seconds * 1000, where="$")

    return AppConfig(
        polling_interval_seconds=_get_number(
            root, "polling_interval_seconds", defaults.polling_interval_seconds, where="$"
        )
        or 0.0,
        error_retry_delay_seconds=_get_number(
            root, "error_retry_delay_seconds", defaults.error_retry_delay_seconds, where="$"
        )
        or 0.0,
        event_channel_capacity=_get_int(root, "event_channel_capacity", defaults.event_channel_capacity, where="$"),
        retry_base_delay_seconds=(retry_base_ms or 0.0) / 1000.0,
        max_retries=_get_int(root, "max_retries", defaults.max_retries, where="$"),
        retry_max_delay_seconds=_get_number(root, "retry_max_delay_seconds", None, where="$"),
        golden_key_env=_get_str(auth, "golden_key_env") or defaults.golden_key_env,
        gateway=gateway_cfg,
        state=state_cfg,
    )
