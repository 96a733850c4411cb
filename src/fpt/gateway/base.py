from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from ..models import (
    CategoryFilter,
    CategorySubcategory,
    Credential,
    MarketOffer,
    Message,
    Offer,
    OfferEditParams,
    OfferFullParams,
    Order,
)


class Gateway(Protocol):
    """
    远端市场的 HTTP 边界。

    fetch_* 返回未经校验的原始结构（由 Differ 负责解释）；
    失败时抛 TransportError / AuthenticationError / MalformedPayloadError。
    任何满足本协议的对象都可以替换实现（测试中用内存 fake 注入确定性数据）。
    """

    def authenticate(self, golden_key: str) -> Credential: ...

    def fetch_chats(self, credential: Credential) -> Sequence[Any]: ...

    def fetch_orders(self, credential: Credential) -> Any: ...

    def fetch_chat_histories(self, credential: Credential, chats: Mapping[int, str | None]) -> dict[int, list[Message]]: ...

    def get_chat_messages(self, credential: Credential, chat_id: str) -> list[Message]: ...

    def send_chat_message(self, credential: Credential, chat_id: str, text: str) -> None: ...

    def get_offer_params(self, credential: Credential, offer_id: int, node_id: int) -> OfferFullParams: ...

    def edit_offer(self, credential: Credential, offer_id: int, node_id: int, params: OfferEditParams) -> Any: ...

    def list_my_offers(self, credential: Credential, node_id: int) -> list[Offer]: ...

    def get_order(self, credential: Credential, order_id: str) -> Order: ...

    def get_order_secrets(self, credential: Credential, order_id: str) -> list[str]: ...

    def get_market_offers(self, credential: Credential, node_id: int) -> list[MarketOffer]: ...

    def get_category_subcategories(self, credential: Credential, node_id: int) -> list[CategorySubcategory]: ...

    def get_category_filters(self, credential: Credential, node_id: int) -> list[CategoryFilter]: ...
