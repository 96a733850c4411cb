from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass

from ..errors import PersistenceError
from ..models import Cursor


@dataclass(slots=True)
class JsonFileCursorStore:
    """
    JSON 文件存储：

    - 文件不存在视为空 Cursor
    - 写入先落临时文件再 os.replace，避免进程中断留下半截 JSON
    """

    path: str

    def load(self) -> Cursor:
        if not os.path.exists(self.path):
            return Cursor()
        try:
            with open(self.path, "rb") as f:
                raw = json.loads(f.read().decode("utf-8"))
            return Cursor.from_json_dict(raw)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"failed to load cursor from {self.path}: {e}") from e

    def save(self, cursor: Cursor) -> None:
        parent = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(parent, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".cursor-", suffix=".json", dir=parent)
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(cursor.dumps().encode("utf-8"))
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"failed to save cursor to {self.path}: {e}") from e
