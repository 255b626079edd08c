from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .decode import parse_head
from .http_utils import TransportError
from .models import FeedItem
from .poller import FeedPoller, FeedTarget, JsonFetcher, PollFilters


logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 60
DEFAULT_INTERVAL_SECONDS = 60


@dataclass(slots=True)
class WatchReport:
    started_at: float
    stopped_at: float
    interval_seconds: float
    cycles: int = 0
    cycle_errors: int = 0
    items_delivered: int = 0
    callback_errors: int = 0


def resolve_interval(http: JsonFetcher, target: FeedTarget, interval: float | None) -> float:
    """
    决定轮询间隔：

    - 调用方显式给出正数 interval 时直接使用；0 或负数视为未指定
    - 否则拉一次 head.json 读取服务端建议的 ttl_sec，且不低于 60 秒
    - head 拉取失败则使用默认 60 秒
    """
    if interval is not None and interval > 0:
        return float(interval)
    try:
        head = parse_head(http.get_json(target.head_url))
    except TransportError as e:
        logger.warning("could not read feed ttl, using default interval: %s", e)
        return float(DEFAULT_INTERVAL_SECONDS)
    return float(max(head.ttl_sec, MIN_INTERVAL_SECONDS))


@dataclass(slots=True)
class Watcher:
    """
    持续监控：按间隔反复执行 FeedPoller，并把每个条目按顺序交给回调。

    状态机：RUNNING <-> SLEEPING，只有 stop_event 被 set 才进入 STOPPED。
    - stop_event 在每个周期开始前检查，并用于睡眠等待（set 后立即醒来）
    - 周期进行中（拉取或回调）不会被打断
    - 单个周期的轮询失败或回调失败只记录日志，不会终止循环
    """

    poller: FeedPoller
    target: FeedTarget
    filters: PollFilters
    interval_seconds: float

    def run(
        self,
        callback: Callable[[FeedItem], object],
        stop_event: threading.Event | None = None,
    ) -> WatchReport:
        stop_event = stop_event or threading.Event()
        report = WatchReport(
            started_at=time.time(),
            stopped_at=0.0,
            interval_seconds=self.interval_seconds,
        )
        logger.info(
            "watching for changes every %ds: feed_key=%s",
            self.interval_seconds,
            self.target.feed_key,
        )

        while not stop_event.is_set():
            report.cycles += 1
            self._run_cycle(callback, report, stop_event)
            stop_event.wait(self.interval_seconds)

        report.stopped_at = time.time()
        logger.info(
            "watch stopped: cycles=%d cycle_errors=%d items_delivered=%d callback_errors=%d",
            report.cycles,
            report.cycle_errors,
            report.items_delivered,
            report.callback_errors,
        )
        return report

    def _run_cycle(
        self,
        callback: Callable[[FeedItem], object],
        report: WatchReport,
        stop_event: threading.Event,
    ) -> None:
        try:
            outcome = self.poller.run(self.target, self.filters)
        except Exception:  # noqa: BLE001
            report.cycle_errors += 1
            if stop_event.is_set():
                return
            logger.exception(
                "poll cycle failed: id=%d feed_key=%s retry_in=%ds",
                report.cycles,
                self.target.feed_key,
                self.interval_seconds,
            )
            return

        if not outcome.items:
            return
        logger.info("%d new item(s) found: feed_key=%s", len(outcome.items), self.target.feed_key)

        # cursor 已经前移，回调失败后本批剩余条目不会再投递
        for index, item in enumerate(outcome.items):
            try:
                callback(item)
            except Exception:  # noqa: BLE001
                report.callback_errors += 1
                logger.exception(
                    "callback failed: source=%s id=%s bucket=%s skipped_remaining=%d",
                    item.source,
                    item.id,
                    item.bucket,
                    len(outcome.items) - index - 1,
                )
                return
            report.items_delivered += 1
