"""
DiffDelta client (diffdelta)

通过 head.json -> latest.json 的三段式轮询，低成本地检测托管 change feed 的变化，
只在 cursor 变化时拉取完整 feed，并把 cursor 持久化以便进程重启后续跑。
"""

__version__ = "0.1.2"

from .client import DiffDelta  # noqa: E402
from .config import ClientConfig  # noqa: E402
from .http_utils import TransportError  # noqa: E402
from .models import Feed, FeedItem, Head, HealthCheck, Signals, SourceInfo  # noqa: E402
from .state import JsonCursorStore, MemoryCursorStore, SqliteCursorStore  # noqa: E402

__all__ = [
    "ClientConfig",
    "DiffDelta",
    "Feed",
    "FeedItem",
    "Head",
    "HealthCheck",
    "JsonCursorStore",
    "MemoryCursorStore",
    "Signals",
    "SourceInfo",
    "SqliteCursorStore",
    "TransportError",
    "__version__",
]
