from __future__ import annotations

import threading
from typing import Callable, Iterable

from . import __version__
from .config import ClientConfig, UNSET
from .decode import parse_feed, parse_head, parse_health_check, parse_sources, parse_stack_map
from .http_utils import HttpClient
from .models import Feed, FeedItem, Head, HealthCheck, SourceInfo
from .poller import FeedPoller, FeedTarget, JsonFetcher, PollFilters, PollOutcome, SourceTagCache, source_feed_key
from .state.json_store import JsonCursorStore
from .state.memory_store import MemoryCursorStore
from .state.store import CursorStore
from .watch import Watcher, WatchReport, resolve_interval


def build_cursor_store(config: ClientConfig) -> CursorStore:
    """
    按配置选择 cursor 存储；JSON 文件存储自身负责在路径不可用时退化为内存。
    """
    if config.in_memory_cursors:
        return MemoryCursorStore()
    path = None if config.cursor_path_is_default else config.cursor_path
    return JsonCursorStore(path)  # type: ignore[arg-type]


class DiffDelta:
    """
    DiffDelta 变更 feed 的轮询客户端。

    用法：
        dd = DiffDelta()
        for item in dd.poll(tags=["security"]):
            print(item.source, item.headline)

    轮询先拉 head.json（约 200 字节），cursor 未变化即返回空；
    变化时才拉取完整 latest.json，并自动保存新的 cursor。
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        cursor_path: object = UNSET,
        timeout_ms: int | None = None,
        config: ClientConfig | None = None,
        cursor_store: CursorStore | None = None,
        http: JsonFetcher | None = None,
    ) -> None:
        if config is None:
            config = ClientConfig(
                base_url=base_url or "",
                api_key=api_key,
                cursor_path=cursor_path,
                timeout_ms=timeout_ms or 0,
            )
        self.config = config
        self.http: JsonFetcher = http or HttpClient(
            timeout_seconds=config.timeout_seconds,
            user_agent=f"diffdelta-python/{__version__}",
            api_key=config.api_key,
        )
        self.cursors: CursorStore = cursor_store if cursor_store is not None else build_cursor_store(config)
        self._source_tags = SourceTagCache(self.sources)
        self._poller = FeedPoller(http=self.http, cursors=self.cursors, source_tags=self._source_tags)

    @property
    def base_url(self) -> str:
        return self.config.base_url

    @property
    def api_key(self) -> str | None:
        return self.config.api_key

    # 轮询

    def poll(
        self,
        *,
        tags: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        buckets: Iterable[str] | None = None,
    ) -> list[FeedItem]:
        """
        轮询全局 feed，返回上次轮询以来的新条目（默认不含 removed 桶）。
        """
        return self.poll_outcome(tags=tags, sources=sources, buckets=buckets).items

    def poll_outcome(
        self,
        *,
        tags: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        buckets: Iterable[str] | None = None,
    ) -> PollOutcome:
        filters = PollFilters.build(tags=tags, sources=sources, buckets=buckets)
        return self._poller.run(FeedTarget.global_feed(self.base_url), filters)

    def poll_source(
        self,
        source_id: str,
        *,
        tags: Iterable[str] | None = None,
        buckets: Iterable[str] | None = None,
    ) -> list[FeedItem]:
        """
        轮询单个 source 的 feed。只关心一个 source 时比 poll(sources=[...]) 更省流量，
        cursor 单独存放在 "source:<id>" 下。
        """
        filters = PollFilters.build(tags=tags, buckets=buckets)
        return self._poller.run(FeedTarget.for_source(self.base_url, source_id), filters).items

    # 底层拉取

    def head(self, url: str | None = None) -> Head:
        return parse_head(self.http.get_json(url or f"{self.base_url}/diff/head.json"))

    def fetch_feed(self, url: str | None = None) -> Feed:
        return parse_feed(self.http.get_json(url or f"{self.base_url}/diff/latest.json"))

    def sources(self) -> list[SourceInfo]:
        return parse_sources(self.http.get_json(f"{self.base_url}/diff/sources.json"))

    # 发现与健康检查

    def check_health(self) -> HealthCheck:
        """
        流水线健康检查。time 过旧意味着流水线已停止运行。
        """
        return parse_health_check(self.http.get_json(f"{self.base_url}/healthz.json"))

    def discover_sources(self, dependencies: Iterable[str]) -> set[str]:
        """
        根据依赖名（如 "openai"、"langchain"）返回应当监控的 source id 集合。

        每次调用都重新拉取 stacks.json；名字大小写不敏感，未知名字直接忽略。
        """
        stack_map = parse_stack_map(self.http.get_json(f"{self.base_url}/diff/stacks.json"))
        source_ids: set[str] = set()
        for dep in dependencies:
            source_ids.update(stack_map.lookup(dep))
        return source_ids

    # 持续监控

    def watch(
        self,
        callback: Callable[[FeedItem], object],
        *,
        tags: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        buckets: Iterable[str] | None = None,
        interval: float | None = None,
        stop_event: threading.Event | None = None,
    ) -> WatchReport:
        """
        持续轮询全局 feed，对每个新条目依次调用 callback，直到 stop_event 被 set。

        interval 未指定时使用 head.json 的 ttl_sec（不低于 60 秒）。
        """
        target = FeedTarget.global_feed(self.base_url)
        watcher = Watcher(
            poller=self._poller,
            target=target,
            filters=PollFilters.build(tags=tags, sources=sources, buckets=buckets),
            interval_seconds=resolve_interval(self.http, target, interval),
        )
        return watcher.run(callback, stop_event)

    # cursor 管理

    def reset_cursors(self, source_id: str | None = None) -> None:
        """
        清除已存 cursor，下一次轮询会返回当前全部条目。
        """
        if source_id:
            self.cursors.clear(source_feed_key(source_id))
        else:
            self.cursors.clear()

    def refresh_source_tags(self) -> None:
        """
        丢弃 source -> tags 缓存，下一次带 tags 过滤的轮询会重新拉取 sources.json。
        """
        self._source_tags.invalidate()

    def __repr__(self) -> str:
        return f"DiffDelta(base_url={self.base_url}, tier={self.config.tier})"
