from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Protocol

from .decode import parse_feed, parse_head
from .http_utils import TransportError
from .models import DEFAULT_BUCKETS, FeedItem, Head, SourceInfo
from .state.store import CursorStore


logger = logging.getLogger(__name__)

GLOBAL_FEED_KEY = "global"


class JsonFetcher(Protocol):
    def get_json(self, url: str) -> Any: ...


def source_feed_key(source_id: str) -> str:
    return f"source:{source_id}"


@dataclass(frozen=True, slots=True)
class FeedTarget:
    """
    一个可轮询的 feed：head/latest 两个 URL + 存 cursor 用的 feed key。

    全局 feed 与单 source feed 使用不同的 feed key，cursor 互不干扰。
    """

    feed_key: str
    head_url: str
    latest_url: str

    @classmethod
    def global_feed(cls, base_url: str) -> "FeedTarget":
        return cls(
            feed_key=GLOBAL_FEED_KEY,
            head_url=f"{base_url}/diff/head.json",
            latest_url=f"{base_url}/diff/latest.json",
        )

    @classmethod
    def for_source(cls, base_url: str, source_id: str) -> "FeedTarget":
        return cls(
            feed_key=source_feed_key(source_id),
            head_url=f"{base_url}/diff/{source_id}/head.json",
            latest_url=f"{base_url}/diff/{source_id}/latest.json",
        )


def _as_tuple(values: Iterable[str] | None) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


@dataclass(frozen=True, slots=True)
class PollFilters:
    """
    轮询过滤条件：

    buckets:
      - 需要返回的桶，默认 new/updated/flagged（不含 removed）
    sources / tags:
      - 为空表示不过滤；tags 通过 source -> tags 映射解析
    """

    tags: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    buckets: tuple[str, ...] = DEFAULT_BUCKETS

    @classmethod
    def build(
        cls,
        *,
        tags: Iterable[str] | None = None,
        sources: Iterable[str] | None = None,
        buckets: Iterable[str] | None = None,
    ) -> "PollFilters":
        return cls(
            tags=_as_tuple(tags),
            sources=_as_tuple(sources),
            buckets=DEFAULT_BUCKETS if buckets is None else _as_tuple(buckets),
        )


class SourceTagCache:
    """
    source_id -> tags 的进程内缓存，按 client 实例划分。

    - 第一次带 tags 过滤的轮询时才拉取 sources.json，之后只读
    - 拉取在锁外进行，并发的首次调用可能各拉一次，但只有第一份结果被写入缓存
    - 拉取失败时缓存为空映射（tag 过滤因此返回空结果而不是报错）
    - 不会自动刷新；需要时显式调用 invalidate()
    """

    def __init__(self, loader: Callable[[], list[SourceInfo]]) -> None:
        self._loader = loader
        self._tags: dict[str, tuple[str, ...]] | None = None
        self._generation = 0
        self._lock = threading.Lock()

    def get(self) -> Mapping[str, tuple[str, ...]]:
        with self._lock:
            if self._tags is not None:
                return self._tags
            generation = self._generation

        try:
            loaded = {s.source_id: s.tags for s in self._loader()}
        except TransportError as e:
            logger.warning("source list unavailable, tag filter will match nothing: %s", e)
            loaded = {}

        with self._lock:
            # invalidate() 之后才完成的旧拉取不写入缓存
            if self._tags is None and generation == self._generation:
                self._tags = loaded
            return self._tags if self._tags is not None else loaded

    def invalidate(self) -> None:
        with self._lock:
            self._tags = None
            self._generation += 1


@dataclass(slots=True)
class PollOutcome:
    feed_key: str
    head: Head
    cursor_before: str | None
    cursor_after: str | None
    feed_fetched: bool
    items_fetched: int
    items: list[FeedItem] = field(default_factory=list)
    duration_ms: int = 0


@dataclass(slots=True)
class FeedPoller:
    """
    三段式轮询协议的执行器：

    1. 拉取 head.json（每次都是完整往返，没有更低一层的条件请求）
    2. 已存 cursor 与 head.cursor 完全相等 -> 直接返回空（已验证无变化）
    3. 否则拉取 latest.json
    4. feed 自带的 cursor 非空时覆盖存储（以 feed 的 cursor 为准，而不是 head 的）
    5. 按桶 -> source -> tag 依次过滤

    cursor 在 feed 拉取完成后才写入；两者之间崩溃会导致下次重复投递（至少一次语义）。
    """

    http: JsonFetcher
    cursors: CursorStore
    source_tags: SourceTagCache

    def run(self, target: FeedTarget, filters: PollFilters | None = None) -> PollOutcome:
        filters = filters or PollFilters()
        start_t = time.monotonic()

        head = parse_head(self.http.get_json(target.head_url))

        cursor_before = self.cursors.get(target.feed_key)
        if cursor_before and cursor_before == head.cursor:
            logger.debug("feed unchanged: feed_key=%s cursor=%s", target.feed_key, cursor_before)
            return PollOutcome(
                feed_key=target.feed_key,
                head=head,
                cursor_before=cursor_before,
                cursor_after=cursor_before,
                feed_fetched=False,
                items_fetched=0,
                items=[],
                duration_ms=int((time.monotonic() - start_t) * 1000),
            )

        feed = parse_feed(self.http.get_json(target.latest_url))

        cursor_after = cursor_before
        if feed.cursor:
            self.cursors.set(target.feed_key, feed.cursor)
            cursor_after = feed.cursor
        logger.debug(
            "feed fetched: feed_key=%s cursor_before=%s head_cursor=%s cursor_after=%s items=%d",
            target.feed_key,
            cursor_before,
            head.cursor,
            cursor_after,
            len(feed.items),
        )

        return PollOutcome(
            feed_key=target.feed_key,
            head=head,
            cursor_before=cursor_before,
            cursor_after=cursor_after,
            feed_fetched=True,
            items_fetched=len(feed.items),
            items=self._filter(feed.items, filters),
            duration_ms=int((time.monotonic() - start_t) * 1000),
        )

    def _filter(self, items: Iterable[FeedItem], filters: PollFilters) -> list[FeedItem]:
        result = [i for i in items if i.bucket in filters.buckets]

        if filters.sources:
            wanted_sources = set(filters.sources)
            result = [i for i in result if i.source in wanted_sources]

        if filters.tags:
            tag_map = self.source_tags.get()
            wanted_tags = set(filters.tags)
            result = [i for i in result if wanted_tags.intersection(tag_map.get(i.source, ()))]

        return result
