from .json_store import JsonCursorStore, resolve_cursor_path
from .memory_store import MemoryCursorStore
from .sqlite_store import SqliteCursorStore
from .store import CursorStore

__all__ = [
    "CursorStore",
    "JsonCursorStore",
    "MemoryCursorStore",
    "SqliteCursorStore",
    "resolve_cursor_path",
]
