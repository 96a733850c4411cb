import threading
from dataclasses import dataclass, field
from typing import Any

import pytest

from fpt.account import Account, Sender
from fpt.config import AppConfig
from fpt.errors import AccountNotInitiatedError, AuthenticationError
from fpt.events import InitialChat, NewMessage
from fpt.models import (
    CategoryFilter,
    CategoryFilterType,
    CategorySubcategory,
    Credential,
    MarketOffer,
    Message,
    Offer,
    OfferEditParams,
    OfferFullParams,
    Order,
    OrderStatus,
    SubcategoryType,
)
from fpt.scheduler import StopReason
from fpt.state.memory_store import InMemoryCursorStore


@dataclass
class FakeGateway:
    """纯内存网关：记录出站调用，返回预设的聊天 / 订单 / 商品数据。"""

    accept_key: str = "good"
    chats: list[dict[str, Any]] = field(default_factory=list)
    current_params: OfferEditParams = field(default_factory=OfferEditParams)
    sent: list[tuple[str, str]] = field(default_factory=list)
    edits: list[OfferEditParams] = field(default_factory=list)
    reject_fetches: int = 0
    histories: dict[int, list[Message]] = field(default_factory=dict)
    queries: list[tuple[str, Any]] = field(default_factory=list)

    def authenticate(self, golden_key: str) -> Credential:
        if golden_key != self.accept_key:
            raise AuthenticationError("bad key")
        return Credential(golden_key=golden_key, user_agent="ua", csrf_token="t", user_id=10, username="me")

    def fetch_chats(self, credential: Credential) -> Any:
        if self.reject_fetches > 0:
            self.reject_fetches -= 1
            raise AuthenticationError("session expired")
        return self.chats

    def fetch_orders(self, credential: Credential) -> Any:
        return {"counters": None, "orders": []}

    def fetch_chat_histories(self, credential: Credential, chats: Any) -> dict[int, list[Message]]:
        return {chat_id: self.histories.get(chat_id, []) for chat_id in chats}

    def get_chat_messages(self, credential: Credential, chat_id: str) -> list[Message]:
        self.queries.append(("chat", chat_id))
        return [m for msgs in self.histories.values() for m in msgs if m.chat_id == chat_id]

    def send_chat_message(self, credential: Credential, chat_id: str, text: str) -> None:
        self.sent.append((chat_id, text))

    def get_offer_params(self, credential: Credential, offer_id: int, node_id: int) -> OfferFullParams:
        return OfferFullParams(offer_id=offer_id, node_id=node_id, params=self.current_params)

    def edit_offer(self, credential: Credential, offer_id: int, node_id: int, params: OfferEditParams) -> Any:
        self.edits.append(params)
        return {"done": True}

    def list_my_offers(self, credential: Credential, node_id: int) -> list[Offer]:
        return [Offer(id=1, node_id=node_id, description="x", price=1.0, currency="₽", active=True)]

    def get_order(self, credential: Credential, order_id: str) -> Order:
        self.queries.append(("order", order_id))
        return Order(
            id=order_id,
            status=OrderStatus.PAID,
            short_description="Gold",
            full_description=None,
            lot_params=(),
            subcategory_id=None,
            subcategory_name="",
            amount=1,
            price=5.0,
            currency="RUB",
            buyer_id=3,
            buyer_username="buyer",
            chat_id="0",
        )

    def get_order_secrets(self, credential: Credential, order_id: str) -> list[str]:
        self.queries.append(("secrets", order_id))
        return ["KEY-1"]

    def get_market_offers(self, credential: Credential, node_id: int) -> list[MarketOffer]:
        self.queries.append(("market", node_id))
        return []

    def get_category_subcategories(self, credential: Credential, node_id: int) -> list[CategorySubcategory]:
        self.queries.append(("subcategories", node_id))
        return [CategorySubcategory(id=node_id, name="Gold", offer_count=2, subcategory_type=SubcategoryType.CHIPS, is_active=True)]

    def get_category_filters(self, credential: Credential, node_id: int) -> list[CategoryFilter]:
        self.queries.append(("filters", node_id))
        return [CategoryFilter(id="server", name="Server", filter_type=CategoryFilterType.RANGE)]


def _account(gw: FakeGateway, key: str = "good") -> Account:
    return Account(key, AppConfig.default(), gateway=gw, cursor_store=InMemoryCursorStore())


def test_operations_require_login() -> None:
    account = _account(FakeGateway())
    assert account.user_id is None
    with pytest.raises(AccountNotInitiatedError):
        account.create_sender()
    with pytest.raises(AccountNotInitiatedError):
        account.build_scheduler()


def test_login_populates_identity() -> None:
    account = _account(FakeGateway())
    account.login()
    assert account.user_id == 10
    assert account.username == "me"
    assert "good" not in repr(account)


def test_login_rejected() -> None:
    with pytest.raises(AuthenticationError):
        _account(FakeGateway(), key="bad").login()


def test_sender_merges_offer_params_before_saving() -> None:
    gw = FakeGateway(current_params=OfferEditParams(price="10", quantity="3", active=True))
    account = _account(gw)
    account.login()
    sender = account.create_sender()

    result = sender.edit_offer(5, 7, OfferEditParams(price="15"))

    assert result == {"done": True}
    assert gw.edits == [OfferEditParams(price="15", quantity="3", active=True)]


def test_sender_messages_and_offers() -> None:
    gw = FakeGateway()
    account = _account(gw)
    account.login()
    sender = account.create_sender()

    sender.send_chat_message(sender.chat_id_for_user(3), "hello")
    assert gw.sent == [("users-3-10", "hello")]
    assert [o.id for o in sender.list_my_offers(7)] == [1]


def test_sender_needs_user_id() -> None:
    with pytest.raises(AccountNotInitiatedError):
        Sender(FakeGateway(), Credential(golden_key="k", user_agent="ua"))


def test_polling_loop_delivers_to_subscribers() -> None:
    gw = FakeGateway(chats=[{"id": 1, "name": "a", "node_msg_id": 5}])
    account = _account(gw)
    account.login()
    sub = account.subscribe()
    stop = threading.Event()

    t = threading.Thread(target=account.start_polling_loop, args=(stop,))
    t.start()
    event = sub.get(timeout=5)
    stop.set()
    t.join(timeout=5)

    assert isinstance(event, InitialChat)
    assert not t.is_alive()


def test_relogin_after_auth_failure_restores_delivery() -> None:
    gw = FakeGateway(chats=[{"id": 1, "name": "a", "node_msg_id": 5}], reject_fetches=1)
    account = _account(gw)
    account.login()
    stale = account.subscribe()

    outcome = account.start_polling_loop(threading.Event())
    assert outcome.reason is StopReason.AUTHENTICATION_FAILED
    assert stale.closed

    account.login()
    assert not account.bus.closed
    sub = account.subscribe()
    stop = threading.Event()
    t = threading.Thread(target=account.start_polling_loop, args=(stop,))
    t.start()
    event = sub.get(timeout=5)
    stop.set()
    t.join(timeout=5)

    assert isinstance(event, InitialChat)
    assert not t.is_alive()
    assert stale.get_nowait() is None


def test_new_message_events_carry_message_text() -> None:
    gw = FakeGateway(chats=[{"id": 1, "name": "a", "node_msg_id": 5}])
    account = _account(gw)
    account.login()
    sub = account.subscribe()
    scheduler = account.build_scheduler()
    scheduler.run_once()

    gw.chats = [{"id": 1, "name": "a", "node_msg_id": 6}]
    gw.histories = {1: [Message(id=6, chat_id="1", chat_name="a", text="is it in stock?", author_id=3)]}
    scheduler.run_once()

    events = sub.drain()
    assert [type(e) for e in events] == [InitialChat, NewMessage]
    assert events[1].message is not None
    assert events[1].message.text == "is it in stock?"
    assert events[1].message.chat_name == "a"


def test_sender_read_only_queries() -> None:
    gw = FakeGateway(histories={1: [Message(id=2, chat_id="1", chat_name=None, text="hi", author_id=3)]})
    account = _account(gw)
    account.login()
    sender = account.create_sender()

    assert [m.text for m in sender.get_chat_messages("1")] == ["hi"]
    assert sender.get_order("#ABC").id == "ABC"
    assert sender.get_order_secrets("ABC") == ["KEY-1"]
    assert sender.get_market_offers(7) == []
    assert sender.get_category_subcategories(7)[0].subcategory_type is SubcategoryType.CHIPS
    assert sender.get_category_filters(7)[0].filter_type is CategoryFilterType.RANGE
    assert gw.queries == [
        ("chat", "1"),
        ("order", "ABC"),
        ("secrets", "ABC"),
        ("market", 7),
        ("subcategories", 7),
        ("filters", 7),
    ]
