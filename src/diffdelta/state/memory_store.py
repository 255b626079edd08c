from __future__ import annotations

import threading


class MemoryCursorStore:
    """
    纯内存 cursor 存储（无文件 I/O），适用于 serverless / CI 等没有可靠本地磁盘的环境。
    """

    def __init__(self) -> None:
        self._cursors: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._cursors.get(key)

    def set(self, key: str, cursor: str) -> None:
        with self._lock:
            self._cursors[key] = cursor

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._cursors.clear()
            else:
                self._cursors.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cursors)
