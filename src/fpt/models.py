from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class OrderStatus(str, Enum):
    PAID = "paid"
    CLOSED = "closed"
    REFUNDED = "refunded"


@dataclass(frozen=True, slots=True)
class ChatShortcut:
    """
    聊天列表（chat bookmarks）中的一项。

    node_msg_id 是该聊天最后一条消息的 id，是判断“有新消息”的唯一依据；
    last_message_text / unread 只用于预览变化检测。
    """

    id: int
    name: str
    last_message_text: str | None
    node_msg_id: int
    user_msg_id: int
    unread: bool

    def to_json_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True, slots=True)
class OrderShortcut:
    id: str
    description: str
    price: float
    currency: str
    buyer_username: str
    buyer_id: int
    chat_id: str
    status: OrderStatus
    date_text: str = ""
    subcategory_id: int | None = None
    subcategory_name: str = ""
    amount: int = 1

    def to_json_dict(self) -> dict[str, Any]:
        d = dataclasses.asdict(self)
        d["status"] = self.status.value
        return d


@dataclass(frozen=True, slots=True)
class OrderCounters:
    purchases: int
    sales: int


@dataclass(frozen=True, slots=True)
class RawSnapshot:
    """
    网关一次拉取的原始结果（未经校验）。

    chats: 形如 [{"id": 1, "name": "...", "node_msg_id": 5, ...}, ...] 的列表
    orders: 形如 {"counters": {"buyer": 0, "seller": 2}, "orders": [...]} 的对象
    """

    chats: Any
    orders: Any


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    最近一次*完整成功*拉取的状态。

    - 只会被整体替换，从不原地修改
    - chats 的插入顺序即聊天列表的显示顺序
    - cycle 为已成功 diff 的轮次数，0 表示尚未有任何成功轮询
    """

    chats: Mapping[int, ChatShortcut] = field(default_factory=dict)
    orders: Mapping[str, OrderShortcut] = field(default_factory=dict)
    counters: OrderCounters | None = None
    cycle: int = 0

    @classmethod
    def empty(cls) -> Snapshot:
        return cls()


@dataclass(frozen=True, slots=True)
class Cursor:
    """
    需要持久化的最小进度标记：
    - chats: chat_id -> 最后已通告的消息 id
    - orders: order_id -> 最后已通告的状态
    """

    chats: Mapping[int, int] = field(default_factory=dict)
    orders: Mapping[str, OrderStatus] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.chats and not self.orders

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "chats": {str(k): v for k, v in self.chats.items()},
            "orders": {k: v.value for k, v in self.orders.items()},
        }

    @classmethod
    def from_json_dict(cls, data: Mapping[str, Any]) -> Cursor:
        """
        反序列化；兼容只有 chat_id -> message_id 的扁平旧格式。
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"cursor expected object, got {type(data)}")
        if "chats" not in data and "orders" not in data:
            data = {"chats": data, "orders": {}}

        chats_raw = data.get("chats") or {}
        orders_raw = data.get("orders") or {}
        if not isinstance(chats_raw, Mapping) or not isinstance(orders_raw, Mapping):
            raise ValueError("cursor chats/orders must be objects")
        chats = {int(k): int(v) for k, v in chats_raw.items()}
        orders = {str(k): OrderStatus(v) for k, v in orders_raw.items()}
        return cls(chats=chats, orders=orders)

    def dumps(self) -> str:
        return json.dumps(self.to_json_dict(), ensure_ascii=False, sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True, slots=True)
class Credential:
    """
    不透明、不可变的会话凭证，显式传给每一次网关调用。

    repr 中屏蔽 golden_key / csrf_token / phpsessid，避免进入日志。
    """

    golden_key: str
    user_agent: str
    csrf_token: str = ""
    phpsessid: str | None = None
    user_id: int | None = None
    username: str | None = None

    def __repr__(self) -> str:
        return f"Credential(user_id={self.user_id!r}, username={self.username!r}, golden_key=[redacted])"

    def cookie_header(self) -> str:
        parts = [f"golden_key={self.golden_key}", "cookie_prefs=1"]
        if self.phpsessid:
            parts.append(f"PHPSESSID={self.phpsessid}")
        return "; ".join(parts)


def chat_id_for_user(my_id: int, user_id: int) -> str:
    lo, hi = min(my_id, user_id), max(my_id, user_id)
    return f"users-{lo}-{hi}"


@dataclass(frozen=True, slots=True)
class Offer:
    id: int
    node_id: int
    description: str
    price: float
    currency: str
    active: bool


def _pick(new: str | None, current: str | None) -> str | None:
    return new if new else current


@dataclass(frozen=True, slots=True)
class OfferEditParams:
    """
    offerSave 表单中可编辑的字段。None 表示“不修改”。

    merge 语义：other 的非空字符串优先；空串与 None 回落到当前值；
    布尔值只要 other 给出（非 None）就覆盖。
    """

    quantity: str | None = None
    quantity2: str | None = None
    method: str | None = None
    offer_type: str | None = None
    server_id: str | None = None
    desc_ru: str | None = None
    desc_en: str | None = None
    payment_msg_ru: str | None = None
    payment_msg_en: str | None = None
    summary_ru: str | None = None
    summary_en: str | None = None
    game: str | None = None
    images: str | None = None
    price: str | None = None
    deactivate_after_sale: bool | None = None
    active: bool | None = None
    location: str | None = None
    deleted: bool | None = None

    def merge(self, other: OfferEditParams) -> OfferEditParams:
        values: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            mine = getattr(self, f.name)
            theirs = getattr(other, f.name)
            if f.name in ("deactivate_after_sale", "active", "deleted"):
                values[f.name] = theirs if theirs is not None else mine
            else:
                values[f.name] = _pick(theirs, mine)
        return OfferEditParams(**values)


class OfferFieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    CHECKBOX = "checkbox"
    HIDDEN = "hidden"


@dataclass(frozen=True, slots=True)
class OfferFieldOption:
    value: str
    label: str
    selected: bool


@dataclass(frozen=True, slots=True)
class OfferCustomField:
    name: str
    label: str
    field_type: OfferFieldType
    value: str
    options: tuple[OfferFieldOption, ...] = ()


@dataclass(frozen=True, slots=True)
class OfferFullParams:
    offer_id: int
    node_id: int
    params: OfferEditParams
    custom_fields: tuple[OfferCustomField, ...] = ()


@dataclass(frozen=True, slots=True)
class Message:
    """
    聊天历史中的一条消息。

    text 为纯文本（<br> 转为换行）；图片消息 text 为 None，image_url 为图片链接。
    """

    id: int
    chat_id: str
    chat_name: str | None
    text: str | None
    author_id: int
    image_url: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True, slots=True)
class Review:
    stars: int | None
    text: str | None


@dataclass(frozen=True, slots=True)
class Order:
    """订单详情页（/orders/{id}/）解析结果。"""

    id: str
    status: OrderStatus
    short_description: str | None
    full_description: str | None
    lot_params: tuple[tuple[str, str], ...]
    subcategory_id: int | None
    subcategory_name: str
    amount: int
    price: float
    currency: str
    buyer_id: int
    buyer_username: str
    chat_id: str
    order_secrets: tuple[str, ...] = ()
    review: Review | None = None


@dataclass(frozen=True, slots=True)
class MarketOffer:
    """公开商品列表（/lots/{node}/）中其他卖家的一条报价。"""

    id: int
    node_id: int
    description: str
    price: float
    currency: str
    seller_id: int
    seller_name: str
    seller_online: bool
    seller_rating: float | None
    seller_reviews: int
    is_promo: bool


class SubcategoryType(str, Enum):
    LOTS = "lots"
    CHIPS = "chips"


@dataclass(frozen=True, slots=True)
class CategorySubcategory:
    id: int
    name: str
    offer_count: int
    subcategory_type: SubcategoryType
    is_active: bool


class CategoryFilterType(str, Enum):
    SELECT = "select"
    RADIO_BOX = "radio_box"
    RANGE = "range"
    CHECKBOX = "checkbox"


@dataclass(frozen=True, slots=True)
class CategoryFilterOption:
    value: str
    label: str


@dataclass(frozen=True, slots=True)
class CategoryFilter:
    id: str
    name: str
    filter_type: CategoryFilterType
    options: tuple[CategoryFilterOption, ...] = ()
