from __future__ import annotations

import logging
from typing import Any

from .bus import EventBus, Subscription
from .config import AppConfig
from .errors import AccountNotInitiatedError
from .gateway import Gateway, HttpGateway, UrlBuilder
from .http_utils import HttpClient
from .models import (
    CategoryFilter,
    CategorySubcategory,
    Credential,
    MarketOffer,
    Message,
    Offer,
    OfferEditParams,
    OfferFullParams,
    Order,
    chat_id_for_user,
)
from .retry import RetryPolicy
from .scheduler import RunOutcome, Scheduler, StopSignal
from .state.json_store import JsonFileCursorStore
from .state.memory_store import InMemoryCursorStore
from .state.sqlite_store import SqliteCursorStore
from .state.store import CursorStore


logger = logging.getLogger(__name__)


def build_gateway(config: AppConfig) -> HttpGateway:
    http = HttpClient(
        timeout_seconds=config.gateway.request_timeout_seconds,
        user_agent=config.gateway.user_agent,
        redirect_limit=config.gateway.redirect_limit,
        proxy_url=config.gateway.proxy_url,
    )
    return HttpGateway(http, UrlBuilder(config.gateway.base_url))


def build_cursor_store(config: AppConfig) -> CursorStore:
    if config.state.backend == "sqlite" and config.state.path:
        store = SqliteCursorStore(config.state.path)
        store.ensure_schema()
        return store
    if config.state.backend == "json" and config.state.path:
        return JsonFileCursorStore(config.state.path)
    return InMemoryCursorStore()


class Sender:
    """
    出站与按需查询操作（消息、订单、商品、分类）。只共享只读凭证，可与轮询循环并发使用。
    """

    def __init__(self, gateway: Gateway, credential: Credential) -> None:
        if credential.user_id is None:
            raise AccountNotInitiatedError()
        self._gateway = gateway
        self._credential = credential

    @property
    def seller_id(self) -> int:
        assert self._credential.user_id is not None
        return self._credential.user_id

    def chat_id_for_user(self, user_id: int) -> str:
        return chat_id_for_user(self.seller_id, user_id)

    def send_chat_message(self, chat_id: str, text: str) -> None:
        self._gateway.send_chat_message(self._credential, chat_id, text)

    def get_chat_messages(self, chat_id: str) -> list[Message]:
        return self._gateway.get_chat_messages(self._credential, chat_id)

    def get_order(self, order_id: str) -> Order:
        return self._gateway.get_order(self._credential, order_id.lstrip("#"))

    def get_order_secrets(self, order_id: str) -> list[str]:
        return self._gateway.get_order_secrets(self._credential, order_id.lstrip("#"))

    def get_offer_params(self, offer_id: int, node_id: int) -> OfferFullParams:
        return self._gateway.get_offer_params(self._credential, offer_id, node_id)

    def edit_offer(self, offer_id: int, node_id: int, params: OfferEditParams) -> Any:
        """
        先读取当前表单值，再与 params 合并后提交；未指定的字段保持原值。
        """
        current = self._gateway.get_offer_params(self._credential, offer_id, node_id)
        merged = current.params.merge(params)
        logger.debug(
            "edit offer: offer_id=%d node_id=%d price=%r quantity=%r",
            offer_id,
            node_id,
            merged.price,
            merged.quantity,
        )
        return self._gateway.edit_offer(self._credential, offer_id, node_id, merged)

    def list_my_offers(self, node_id: int) -> list[Offer]:
        return self._gateway.list_my_offers(self._credential, node_id)

    def get_market_offers(self, node_id: int) -> list[MarketOffer]:
        return self._gateway.get_market_offers(self._credential, node_id)

    def get_category_subcategories(self, node_id: int) -> list[CategorySubcategory]:
        return self._gateway.get_category_subcategories(self._credential, node_id)

    def get_category_filters(self, node_id: int) -> list[CategoryFilter]:
        return self._gateway.get_category_filters(self._credential, node_id)


class Account:
    """
    面向使用方的门面：登录、订阅事件、创建 Sender、运行轮询。

    用法：
        account = Account(golden_key, config)
        account.login()
        sub = account.subscribe()
        outcome = account.start_polling_loop(stop_event)

    认证失败后 bus 会被关闭；再次 login() 会换上新的 bus，之前的订阅不会再收到事件，需重新 subscribe()。
    """

    def __init__(
        self,
        golden_key: str,
        config: AppConfig | None = None,
        *,
        gateway: Gateway | None = None,
        cursor_store: CursorStore | None = None,
    ) -> None:
        self.config = config or AppConfig.default()
        self._golden_key = golden_key
        self._gateway: Gateway = gateway if gateway is not None else build_gateway(self.config)
        self._cursor_store = cursor_store if cursor_store is not None else build_cursor_store(self.config)
        self._bus = EventBus(self.config.event_channel_capacity)
        self._credential: Credential | None = None

    def __repr__(self) -> str:
        return f"Account(user_id={self.user_id!r}, username={self.username!r}, golden_key=[redacted])"

    @property
    def credential(self) -> Credential:
        if self._credential is None:
            raise AccountNotInitiatedError()
        return self._credential

    @property
    def user_id(self) -> int | None:
        return self._credential.user_id if self._credential else None

    @property
    def username(self) -> str | None:
        return self._credential.username if self._credential else None

    @property
    def bus(self) -> EventBus:
        return self._bus

    def login(self) -> Credential:
        self._credential = self._gateway.authenticate(self._golden_key)
        self._reopen_bus()
        logger.info("logged in: user_id=%s username=%s", self._credential.user_id, self._credential.username)
        return self._credential

    def _reopen_bus(self) -> None:
        if self._bus.closed:
            self._bus = EventBus(self.config.event_channel_capacity)
            logger.info("event bus reopened after close: capacity=%d", self._bus.capacity)

    def subscribe(self) -> Subscription:
        return self._bus.subscribe()

    def create_sender(self) -> Sender:
        return Sender(self._gateway, self.credential)

    def build_scheduler(self) -> Scheduler:
        self._reopen_bus()
        return Scheduler(
            gateway=self._gateway,
            credential=self.credential,
            bus=self._bus,
            cursor_store=self._cursor_store,
            retry_policy=RetryPolicy(
                base_delay_seconds=self.config.retry_base_delay_seconds,
                max_retries=self.config.max_retries,
                max_delay_seconds=self.config.retry_max_delay_seconds,
            ),
            polling_interval_seconds=self.config.polling_interval_seconds,
            error_retry_delay_seconds=self.config.error_retry_delay_seconds,
        )

    def start_polling_loop(self, stop_signal: StopSignal) -> RunOutcome:
        return self.build_scheduler().run(stop_signal)
