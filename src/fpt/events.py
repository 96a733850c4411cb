from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Union

from .models import ChatShortcut, Message, OrderShortcut, OrderStatus


@dataclass(frozen=True, slots=True)
class InitialChat:
    """冷启动（cursor 中无记录）时第一次看到的聊天。"""

    kind: ClassVar[str] = "initial_chat"

    chat: ChatShortcut

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "chat": self.chat.to_json_dict()}


@dataclass(frozen=True, slots=True)
class ChatsListChanged:
    """聊天集合或顺序相对上一轮发生变化；每轮至多一次，且在所有单聊天事件之后。"""

    kind: ClassVar[str] = "chats_list_changed"

    chat_ids: tuple[int, ...]

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "chat_ids": list(self.chat_ids)}


@dataclass(frozen=True, slots=True)
class LastChatMessageChanged:
    kind: ClassVar[str] = "last_chat_message_changed"

    chat: ChatShortcut

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "chat": self.chat.to_json_dict()}


@dataclass(frozen=True, slots=True)
class NewMessage:
    """
    聊天的最后消息 id 严格增大。previous_message_id 为上一次已通告的 id。

    拉到聊天历史时每条新消息一个事件，message 携带消息内容；
    历史拉取失败时退化为仅含 bookmark 信息的单个事件（message=None）。
    """

    kind: ClassVar[str] = "new_message"

    chat: ChatShortcut
    message_id: int
    previous_message_id: int | None
    message: Message | None = None

    @property
    def chat_id(self) -> int:
        return self.chat.id

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "chat": self.chat.to_json_dict(),
            "message_id": self.message_id,
            "previous_message_id": self.previous_message_id,
            "message": self.message.to_json_dict() if self.message is not None else None,
        }


@dataclass(frozen=True, slots=True)
class InitialOrder:
    kind: ClassVar[str] = "initial_order"

    order: OrderShortcut

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "order": self.order.to_json_dict()}


@dataclass(frozen=True, slots=True)
class OrdersListChanged:
    kind: ClassVar[str] = "orders_list_changed"

    purchases: int
    sales: int

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "purchases": self.purchases, "sales": self.sales}


@dataclass(frozen=True, slots=True)
class NewOrder:
    kind: ClassVar[str] = "new_order"

    order: OrderShortcut

    def to_json_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "order": self.order.to_json_dict()}


@dataclass(frozen=True, slots=True)
class OrderStatusChanged:
    kind: ClassVar[str] = "order_status_changed"

    order: OrderShortcut
    previous_status: OrderStatus | None

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "order": self.order.to_json_dict(),
            "previous_status": self.previous_status.value if self.previous_status else None,
        }


Event = Union[
    InitialChat,
    ChatsListChanged,
    LastChatMessageChanged,
    NewMessage,
    InitialOrder,
    OrdersListChanged,
    NewOrder,
    OrderStatusChanged,
]


def format_event_text(event: Event) -> str:
    """
    单行文本渲染，供 CLI 日志消费者使用。
    """
    if isinstance(event, InitialChat):
        return f"[init] chat {event.chat.id} ({event.chat.name}) last_msg={event.chat.node_msg_id}"
    if isinstance(event, ChatsListChanged):
        return f"[chats] list changed: {len(event.chat_ids)} chats"
    if isinstance(event, LastChatMessageChanged):
        preview = (event.chat.last_message_text or "").strip()
        return f"[chat] {event.chat.id} ({event.chat.name}) preview changed: {preview!r}"
    if isinstance(event, NewMessage):
        if event.message is not None:
            body = event.message.text if event.message.text is not None else f"<image {event.message.image_url}>"
            return f"[msg] chat {event.chat.id} ({event.chat.name}) #{event.message_id} from {event.message.author_id}: {body.strip()!r}"
        preview = (event.chat.last_message_text or "").strip()
        return f"[msg] chat {event.chat.id} ({event.chat.name}) #{event.message_id}: {preview!r}"
    if isinstance(event, InitialOrder):
        return f"[init] order #{event.order.id} {event.order.status.value}: {event.order.description}"
    if isinstance(event, OrdersListChanged):
        return f"[orders] purchases={event.purchases} sales={event.sales}"
    if isinstance(event, NewOrder):
        o = event.order
        return f"[order] new #{o.id} {o.price:g} {o.currency} from {o.buyer_username}: {o.description}"
    if isinstance(event, OrderStatusChanged):
        prev = event.previous_status.value if event.previous_status else "-"
        return f"[order] #{event.order.id} status {prev} -> {event.order.status.value}"
    return f"[event] {event!r}"
