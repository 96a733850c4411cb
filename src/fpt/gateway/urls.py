from __future__ import annotations

from dataclasses import dataclass

from ..http_utils import with_query_params


DEFAULT_BASE_URL = "https://funpay.com"


@dataclass(frozen=True, slots=True)
class UrlBuilder:
    base_url: str = DEFAULT_BASE_URL

    def home(self) -> str:
        return f"{self.base_url}/"

    def runner(self) -> str:
        return f"{self.base_url}/runner/"

    def orders_trade(self) -> str:
        return f"{self.base_url}/orders/trade"

    def chat_page(self, chat_id: str) -> str:
        return with_query_params(f"{self.base_url}/chat/", {"node": chat_id})

    def offer_edit(self, node_id: int, offer_id: int) -> str:
        return with_query_params(f"{self.base_url}/lots/offerEdit", {"node": str(node_id), "offer": str(offer_id)})

    def offer_save(self) -> str:
        return f"{self.base_url}/lots/offerSave"

    def lots_trade(self, node_id: int) -> str:
        return f"{self.base_url}/lots/{node_id}/trade"

    def order_page(self, order_id: str) -> str:
        return f"{self.base_url}/orders/{order_id}/"

    def lots_page(self, node_id: int) -> str:
        return f"{self.base_url}/lots/{node_id}/"
