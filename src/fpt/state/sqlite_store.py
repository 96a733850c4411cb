from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime

from ..errors import PersistenceError
from ..models import Cursor, OrderStatus


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class SqliteCursorStore:
    """
    SQLite Cursor 存储。

    表设计（最小可用）：
    - chat_cursors：chat_id -> 最后已通告的消息 id
    - order_cursors：order_id -> 最后已通告的订单状态

    save 在单个事务内整体 upsert；cursor 中不存在的旧行保留（cursor 只增不删）。
    """

    sqlite_path: str

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.sqlite_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    def ensure_schema(self) -> None:
        try:
            with self._connect() as conn:
                self._create_tables(conn)
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to create cursor schema in {self.sqlite_path}: {e}") from e

    def _create_tables(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS chat_cursors (
                chat_id INTEGER PRIMARY KEY,
                message_id INTEGER NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS order_cursors (
                order_id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

    def load(self) -> Cursor:
        try:
            with self._connect() as conn:
                self._create_tables(conn)
                chat_rows = conn.execute("SELECT chat_id, message_id FROM chat_cursors").fetchall()
                order_rows = conn.execute("SELECT order_id, status FROM order_cursors").fetchall()
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to load cursor from {self.sqlite_path}: {e}") from e

        try:
            return Cursor(
                chats={int(r["chat_id"]): int(r["message_id"]) for r in chat_rows},
                orders={str(r["order_id"]): OrderStatus(r["status"]) for r in order_rows},
            )
        except ValueError as e:
            raise PersistenceError(f"corrupt cursor row in {self.sqlite_path}: {e}") from e

    def save(self, cursor: Cursor) -> None:
        now = _utc_now_iso()
        try:
            with self._connect() as conn:
                self._create_tables(conn)
                conn.executemany(
                    """
                    INSERT INTO chat_cursors(chat_id, message_id, updated_at)
                    VALUES(?, ?, ?)
                    ON CONFLICT(chat_id) DO UPDATE SET
                        message_id=excluded.message_id,
                        updated_at=excluded.updated_at
                    """,
                    [(chat_id, message_id, now) for chat_id, message_id in cursor.chats.items()],
                )
                conn.executemany(
                    """
                    INSERT INTO order_cursors(order_id, status, updated_at)
                    VALUES(?, ?, ?)
                    ON CONFLICT(order_id) DO UPDATE SET
                        status=excluded.status,
                        updated_at=excluded.updated_at
                    """,
                    [(order_id, status.value, now) for order_id, status in cursor.orders.items()],
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"failed to save cursor to {self.sqlite_path}: {e}") from e
