import json

import pytest

from fpt.account import build_cursor_store
from fpt.config import AppConfig, StateConfig, load_config
from fpt.state.json_store import JsonFileCursorStore
from fpt.state.memory_store import InMemoryCursorStore
from fpt.state.sqlite_store import SqliteCursorStore


def _write(tmp_path, data) -> str:  # noqa: ANN001
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


def test_defaults() -> None:
    cfg = AppConfig.default()
    assert cfg.polling_interval_seconds == 1.5
    assert cfg.error_retry_delay_seconds == 5.0
    assert cfg.event_channel_capacity == 512
    assert cfg.retry_base_delay_seconds == 0.02
    assert cfg.max_retries == 3
    assert cfg.gateway.base_url == "https://funpay.com"
    assert cfg.state.backend == "memory"


def test_load_full_config(tmp_path) -> None:  # noqa: ANN001
    path = _write(
        tmp_path,
        {
            "polling_interval_seconds": 3,
            "error_retry_delay_seconds": 10,
            "event_channel_capacity": 16,
            "retry_base_delay_ms": 100,
            "max_retries": 5,
            "retry_max_delay_seconds": 2,
            "request_timeout_seconds": 7,
            "gateway": {"base_url": "http://127.0.0.1:8080/", "redirect_limit": 3, "proxy_url": "http://p:1"},
            "state": {"backend": "sqlite", "path": str(tmp_path / "s.sqlite3")},
            "auth": {"golden_key_env": "MY_KEY"},
        },
    )
    cfg = load_config(path)

    assert cfg.polling_interval_seconds == 3.0
    assert cfg.error_retry_delay_seconds == 10.0
    assert cfg.event_channel_capacity == 16
    assert cfg.retry_base_delay_seconds == pytest.approx(0.1)
    assert cfg.max_retries == 5
    assert cfg.retry_max_delay_seconds == 2.0
    assert cfg.gateway.base_url == "http://127.0.0.1:8080"
    assert cfg.gateway.redirect_limit == 3
    assert cfg.gateway.request_timeout_seconds == 7.0
    assert cfg.gateway.proxy_url == "http://p:1"
    assert cfg.golden_key_env == "MY_KEY"
    assert isinstance(build_cursor_store(cfg), SqliteCursorStore)


def test_state_path_without_backend_means_json(tmp_path) -> None:  # noqa: ANN001
    cfg = load_config(_write(tmp_path, {"state": {"path": str(tmp_path / "c.json")}}))
    assert cfg.state.backend == "json"
    assert isinstance(build_cursor_store(cfg), JsonFileCursorStore)


def test_empty_config_uses_memory_store(tmp_path) -> None:  # noqa: ANN001
    cfg = load_config(_write(tmp_path, {}))
    assert cfg == AppConfig.default()
    assert isinstance(build_cursor_store(cfg), InMemoryCursorStore)


@pytest.mark.parametrize(
    "data, fragment",
    [
        ([], "$"),
        ({"event_channel_capacity": "big"}, "$.event_channel_capacity"),
        ({"max_retries": 1.5}, "$.max_retries"),
        ({"polling_interval_seconds": True}, "$.polling_interval_seconds"),
        ({"gateway": []}, "$.gateway"),
    ],
)
def test_invalid_values_name_the_path(tmp_path, data, fragment) -> None:  # noqa: ANN001
    with pytest.raises(ValueError) as ei:
        load_config(_write(tmp_path, data))
    assert fragment in str(ei.value)


def test_semantic_validation() -> None:
    with pytest.raises(ValueError):
        AppConfig(event_channel_capacity=0)
    with pytest.raises(ValueError):
        AppConfig(polling_interval_seconds=-1)
    with pytest.raises(ValueError):
        AppConfig(state=StateConfig(backend="json"))
    with pytest.raises(ValueError):
        AppConfig(state=StateConfig(backend="redis", path="x"))


def test_resolve_env(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("FUNPAY_GOLDEN_KEY", "secret")
    cfg = AppConfig.default()
    assert cfg.resolve_env(cfg.golden_key_env) == "secret"
    assert cfg.resolve_env(None) is None
