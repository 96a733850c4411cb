from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .errors import MalformedPayloadError
from .events import (
    ChatsListChanged,
    Event,
    InitialChat,
    InitialOrder,
    LastChatMessageChanged,
    NewMessage,
    NewOrder,
    OrdersListChanged,
    OrderStatusChanged,
)
from .models import ChatShortcut, Cursor, Message, OrderCounters, OrderShortcut, OrderStatus, RawSnapshot, Snapshot


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DiffResult:
    snapshot: Snapshot
    cursor: Cursor
    events: tuple[Event, ...]


def _as_int(value: Any, *, where: str, default: int | None = None) -> int:
    if value is None or value == "":
        if default is None:
            raise MalformedPayloadError(f"missing integer at {where}")
        return default
    if isinstance(value, bool):
        raise MalformedPayloadError(f"expected integer at {where}, got bool")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedPayloadError(f"expected integer at {where}, got {value!r}") from e


def _build_chat_map(raw: Any) -> dict[int, ChatShortcut]:
    if not isinstance(raw, (list, tuple)):
        raise MalformedPayloadError(f"chats payload expected list, got {type(raw).__name__}")

    chats: dict[int, ChatShortcut] = {}
    for i, item in enumerate(raw):
        if isinstance(item, ChatShortcut):
            chats[item.id] = item
            continue
        if not isinstance(item, Mapping):
            raise MalformedPayloadError(f"chats[{i}] expected object, got {type(item).__name__}")
        chat_id = _as_int(item.get("id"), where=f"chats[{i}].id")
        text = item.get("last_message_text")
        chats[chat_id] = ChatShortcut(
            id=chat_id,
            name=str(item.get("name") or ""),
            last_message_text=None if text is None else str(text),
            node_msg_id=_as_int(item.get("node_msg_id"), where=f"chats[{i}].node_msg_id", default=0),
            user_msg_id=_as_int(item.get("user_msg_id"), where=f"chats[{i}].user_msg_id", default=0),
            unread=bool(item.get("unread", False)),
        )
    return chats


def _parse_status(value: Any, *, where: str) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value))
    except ValueError as e:
        raise MalformedPayloadError(f"unknown order status at {where}: {value!r}") from e


def _build_orders(raw: Any) -> tuple[dict[str, OrderShortcut], OrderCounters | None]:
    if not isinstance(raw, Mapping):
        raise MalformedPayloadError(f"orders payload expected object, got {type(raw).__name__}")

    counters: OrderCounters | None = None
    counters_raw = raw.get("counters")
    if isinstance(counters_raw, OrderCounters):
        counters = counters_raw
    elif isinstance(counters_raw, Mapping):
        counters = OrderCounters(
            purchases=_as_int(counters_raw.get("buyer"), where="orders.counters.buyer", default=0),
            sales=_as_int(counters_raw.get("seller"), where="orders.counters.seller", default=0),
        )
    elif counters_raw is not None:
        raise MalformedPayloadError(f"orders.counters expected object, got {type(counters_raw).__name__}")

    items = raw.get("orders", [])
    if not isinstance(items, (list, tuple)):
        raise MalformedPayloadError(f"orders.orders expected list, got {type(items).__name__}")

    orders: dict[str, OrderShortcut] = {}
    for i, item in enumerate(items):
        if isinstance(item, OrderShortcut):
            orders[item.id] = item
            continue
        if not isinstance(item, Mapping):
            raise MalformedPayloadError(f"orders[{i}] expected object, got {type(item).__name__}")
        order_id = str(item.get("id") or "").strip().lstrip("#")
        if not order_id:
            raise MalformedPayloadError(f"missing order id at orders[{i}]")
        try:
            price = float(item.get("price") or 0.0)
        except (TypeError, ValueError) as e:
            raise MalformedPayloadError(f"invalid price at orders[{i}]: {item.get('price')!r}") from e
        subcategory_id = item.get("subcategory_id")
        orders[order_id] = OrderShortcut(
            id=order_id,
            description=str(item.get("description") or ""),
            price=price,
            currency=str(item.get("currency") or ""),
            buyer_username=str(item.get("buyer_username") or ""),
            buyer_id=_as_int(item.get("buyer_id"), where=f"orders[{i}].buyer_id", default=0),
            chat_id=str(item.get("chat_id") or ""),
            status=_parse_status(item.get("status"), where=f"orders[{i}].status"),
            date_text=str(item.get("date_text") or ""),
            subcategory_id=None
            if subcategory_id is None
            else _as_int(subcategory_id, where=f"orders[{i}].subcategory_id"),
            subcategory_name=str(item.get("subcategory_name") or ""),
            amount=_as_int(item.get("amount"), where=f"orders[{i}].amount", default=1),
        )
    return orders, counters


class Differ:
    """
    快照比对器：previous Snapshot + 新的 RawSnapshot -> (新 Snapshot, 新 Cursor, 有序事件)。

    没有任何隐藏状态；cursor 由调用方（Scheduler）持有并在每轮显式传入，
    相同输入永远得到相同输出，因此从持久化 cursor 恢复后重放是幂等的。

    单轮内的事件顺序是对订阅方的契约：
    - 单聊天事件（InitialChat / NewMessage / LastChatMessageChanged）
    - 至多一个 ChatsListChanged
    - 单订单事件（InitialOrder / NewOrder / OrderStatusChanged）
    - 至多一个 OrdersListChanged
    """

    def diff(self, previous: Snapshot, incoming: RawSnapshot, cursor: Cursor) -> DiffResult:
        """
        cursor 必须是调用方当前持有的最新 cursor（首轮即启动时加载的 cursor）。

        解析失败抛 MalformedPayloadError，此时不产生任何部分结果。
        """
        chats = _build_chat_map(incoming.chats)
        orders, counters = _build_orders(incoming.orders)

        first = previous.cycle == 0
        events: list[Event] = []

        chat_cursor = dict(cursor.chats)
        self._diff_chats(previous, chats, cursor, first, events, chat_cursor)
        if not first and tuple(chats) != tuple(previous.chats):
            events.append(ChatsListChanged(chat_ids=tuple(chats)))

        order_cursor = dict(cursor.orders)
        self._diff_orders(previous, orders, cursor, first, events, order_cursor)
        if not first and counters is not None and counters != previous.counters:
            events.append(OrdersListChanged(purchases=counters.purchases, sales=counters.sales))

        snapshot = Snapshot(chats=chats, orders=orders, counters=counters, cycle=previous.cycle + 1)
        return DiffResult(
            snapshot=snapshot,
            cursor=Cursor(chats=chat_cursor, orders=order_cursor),
            events=tuple(events),
        )

    def _diff_chats(
        self,
        previous: Snapshot,
        chats: Mapping[int, ChatShortcut],
        cursor: Cursor,
        first: bool,
        events: list[Event],
        chat_cursor: dict[int, int],
    ) -> None:
        for chat_id, chat in chats.items():
            prev = previous.chats.get(chat_id)
            marker = cursor.chats.get(chat_id)
            if marker is None and prev is not None:
                marker = prev.node_msg_id

            if marker is None:
                # 冷启动首轮才通告；运行中新出现的聊天静默并入历史
                if first:
                    events.append(InitialChat(chat=chat))
            elif chat.node_msg_id > marker:
                events.append(NewMessage(chat=chat, message_id=chat.node_msg_id, previous_message_id=marker))
            elif chat.node_msg_id < marker:
                logger.warning(
                    "cursor anomaly: chat_id=%d last_message_id=%d incoming_message_id=%d; rebaselined",
                    chat_id,
                    marker,
                    chat.node_msg_id,
                )
            elif prev is not None and (
                chat.last_message_text != prev.last_message_text or chat.unread != prev.unread
            ):
                events.append(LastChatMessageChanged(chat=chat))

            chat_cursor[chat_id] = chat.node_msg_id

    def _diff_orders(
        self,
        previous: Snapshot,
        orders: Mapping[str, OrderShortcut],
        cursor: Cursor,
        first: bool,
        events: list[Event],
        order_cursor: dict[str, OrderStatus],
    ) -> None:
        for order_id, order in orders.items():
            prev = previous.orders.get(order_id)
            known = cursor.orders.get(order_id)
            if known is None and prev is not None:
                known = prev.status

            if known is None:
                if first:
                    events.append(InitialOrder(order=order))
                else:
                    events.append(NewOrder(order=order))
                    # 两次轮询之间下单并完成的订单，同时通告一次状态变化
                    if order.status is OrderStatus.CLOSED:
                        events.append(OrderStatusChanged(order=order, previous_status=None))
            elif order.status is not known:
                events.append(OrderStatusChanged(order=order, previous_status=known))

            order_cursor[order_id] = order.status


def attach_messages(events: Iterable[Event], histories: Mapping[int, Iterable[Message]]) -> tuple[Event, ...]:
    """
    用聊天历史展开 NewMessage：每条 id 落在 (previous_message_id, message_id] 内的消息一个事件，按 id 升序。

    历史缺失或区间内没有消息时保留原事件（message=None）；其它事件原样透传，顺序不变。
    """
    out: list[Event] = []
    for event in events:
        if not isinstance(event, NewMessage):
            out.append(event)
            continue
        low = event.previous_message_id if event.previous_message_id is not None else -1
        fresh = sorted(
            (m for m in histories.get(event.chat.id, ()) if low < m.id <= event.message_id),
            key=lambda m: m.id,
        )
        if not fresh:
            out.append(event)
            continue
        prev_id = event.previous_message_id
        for message in fresh:
            out.append(NewMessage(chat=event.chat, message_id=message.id, previous_message_id=prev_id, message=message))
            prev_id = message.id
    return tuple(out)
