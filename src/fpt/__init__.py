"""
FunPay session tracker (fpt)

以轮询方式跟踪一个 FunPay 卖家会话的聊天与订单，把前后两次快照的差异
归一为类型化事件，经有界广播总线分发给多个订阅方；同时提供发消息、
编辑商品等出站操作。
"""

from .account import Account, Sender
from .bus import EventBus, Subscription
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
from .models import Message
from .scheduler import RunOutcome, Scheduler

__all__ = [
    "Account",
    "ChatsListChanged",
    "Event",
    "EventBus",
    "InitialChat",
    "InitialOrder",
    "LastChatMessageChanged",
    "Message",
    "NewMessage",
    "NewOrder",
    "OrderStatusChanged",
    "OrdersListChanged",
    "RunOutcome",
    "Scheduler",
    "Sender",
    "Subscription",
]
