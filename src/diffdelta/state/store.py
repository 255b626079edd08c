from __future__ import annotations

from typing import Protocol


class CursorStore(Protocol):
    """
    cursor 存储接口：feed key（"global" / "source:<id>"）-> 不透明 cursor 字符串。

    约定：
    - set 在返回前完成持久化；持久化失败时退化为仅内存，绝不抛异常
    - clear(None) 清空所有条目
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, cursor: str) -> None: ...

    def clear(self, key: str | None = None) -> None: ...
