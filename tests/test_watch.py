import logging
import threading
import time

from conftest import BASE_URL, FakeHttp
from diffdelta.http_utils import TransportError
from diffdelta.models import FeedItem
from diffdelta.poller import FeedPoller, FeedTarget, PollFilters, SourceTagCache
from diffdelta.state.memory_store import MemoryCursorStore
from diffdelta.watch import Watcher, resolve_interval


HEAD_URL = f"{BASE_URL}/diff/head.json"
LATEST_URL = f"{BASE_URL}/diff/latest.json"

FEED = {
    "cursor": "c2",
    "buckets": {
        "new": [{"source": "s", "id": "A"}],
        "updated": [{"source": "s", "id": "B"}],
        "flagged": [{"source": "s", "id": "C"}],
    },
}


def _watcher(http: FakeHttp, interval: float = 1.0) -> Watcher:
    poller = FeedPoller(http=http, cursors=MemoryCursorStore(), source_tags=SourceTagCache(list))
    return Watcher(
        poller=poller,
        target=FeedTarget.global_feed(BASE_URL),
        filters=PollFilters(),
        interval_seconds=interval,
    )


def test_callback_receives_items_in_order_and_stop_ends_sleep() -> None:
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c2"}, LATEST_URL: FEED})
    stop = threading.Event()
    seen: list[str] = []

    def on_item(item: FeedItem) -> None:
        seen.append(item.id)
        if item.id == "C":
            stop.set()

    start = time.monotonic()
    report = _watcher(http, interval=30).run(on_item, stop)
    assert time.monotonic() - start < 5
    assert seen == ["A", "B", "C"]
    assert report.cycles == 1
    assert report.items_delivered == 3


def test_preset_stop_event_runs_no_cycle() -> None:
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c2"}, LATEST_URL: FEED})
    stop = threading.Event()
    stop.set()
    report = _watcher(http).run(lambda item: None, stop)
    assert report.cycles == 0
    assert http.calls == []


def test_stop_from_another_thread_returns_promptly() -> None:
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c1"}, LATEST_URL: {"cursor": "c1"}})
    stop = threading.Event()
    result = {}

    def run() -> None:
        result["report"] = _watcher(http, interval=1).run(lambda item: None, stop)

    t = threading.Thread(target=run)
    t.start()
    stop.set()
    t.join(timeout=3)
    assert not t.is_alive()
    assert result["report"].cycles <= 1


def test_poll_failure_does_not_stop_loop(caplog) -> None:  # noqa: ANN001
    http = FakeHttp(responses={HEAD_URL: TransportError("HTTP 502: Bad Gateway", url=HEAD_URL, status=502)})
    stop = threading.Event()
    original = http.get_json

    def get_json(url: str):  # noqa: ANN202
        if len(http.calls) >= 2:
            stop.set()
        return original(url)

    http.get_json = get_json  # type: ignore[method-assign]
    caplog.set_level(logging.ERROR)
    report = _watcher(http, interval=0.01).run(lambda item: None, stop)
    assert report.cycles >= 2
    assert report.cycle_errors == report.cycles
    assert "poll cycle failed" in caplog.text


def test_callback_failure_is_reported_and_loop_continues(caplog) -> None:  # noqa: ANN001
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c2"}, LATEST_URL: FEED})
    stop = threading.Event()
    calls: list[str] = []

    def on_item(item: FeedItem) -> None:
        calls.append(item.id)
        if item.id == "A":
            raise RuntimeError("handler broke")

    original = http.get_json

    def get_json(url: str):  # noqa: ANN202
        if len(http.calls) >= 2:
            stop.set()
        return original(url)

    http.get_json = get_json  # type: ignore[method-assign]
    caplog.set_level(logging.ERROR)
    report = _watcher(http, interval=0.01).run(on_item, stop)
    assert calls == ["A"]
    assert report.callback_errors == 1
    assert report.cycles == 2
    assert "callback failed" in caplog.text


def test_resolve_interval() -> None:
    target = FeedTarget.global_feed(BASE_URL)
    assert resolve_interval(FakeHttp(responses={}), target, 5) == 5.0
    assert resolve_interval(FakeHttp(responses={HEAD_URL: {"ttl_sec": 300}}), target, None) == 300.0
    assert resolve_interval(FakeHttp(responses={HEAD_URL: {"ttl_sec": 10}}), target, None) == 60.0
    assert resolve_interval(FakeHttp(responses={}), target, None) == 60.0


def test_non_positive_interval_falls_back_to_feed_ttl() -> None:
    target = FeedTarget.global_feed(BASE_URL)
    http = FakeHttp(responses={HEAD_URL: {"ttl_sec": 120}})
    assert resolve_interval(http, target, -1) == 120.0
    assert resolve_interval(http, target, 0) == 120.0
    assert resolve_interval(FakeHttp(responses={}), target, -5) == 60.0
