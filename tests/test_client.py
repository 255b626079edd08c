import threading

import pytest

from conftest import BASE_URL, FakeHttp
from diffdelta import DiffDelta, TransportError
from diffdelta.state.memory_store import MemoryCursorStore


HEAD_URL = f"{BASE_URL}/diff/head.json"
LATEST_URL = f"{BASE_URL}/diff/latest.json"
STACKS_URL = f"{BASE_URL}/diff/stacks.json"
HEALTH_URL = f"{BASE_URL}/healthz.json"


def _client(http: FakeHttp, cursors: MemoryCursorStore | None = None) -> DiffDelta:
    return DiffDelta(base_url=BASE_URL + "/", http=http, cursor_store=cursors if cursors is not None else MemoryCursorStore())


def test_verified_silence() -> None:
    head = {
        "cursor": "c1",
        "changed": False,
        "all_clear": True,
        "sources_checked": 46,
        "sources_ok": 46,
        "all_clear_confidence": 0.95,
        "ttl_sec": 60,
    }
    http = FakeHttp(responses={HEAD_URL: head})
    cursors = MemoryCursorStore()
    cursors.set("global", "c1")
    dd = _client(http, cursors)

    assert dd.poll() == []
    assert LATEST_URL not in http.calls

    h = dd.head()
    assert h.all_clear is True
    assert h.all_clear_confidence == 0.95
    assert h.sources_checked == 46


def test_first_poll_returns_items_then_nothing() -> None:
    feed = {"cursor": "c1", "buckets": {"new": [{"source": "s1", "id": "1"}]}}
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c1"}, LATEST_URL: feed})
    dd = _client(http)

    assert [i.id for i in dd.poll()] == ["1"]
    assert dd.poll() == []
    assert http.calls == [HEAD_URL, LATEST_URL, HEAD_URL]


def test_reset_cursors_redelivers() -> None:
    feed = {"cursor": "c1", "buckets": {"new": [{"source": "s1", "id": "1"}]}}
    src_head = f"{BASE_URL}/diff/s1/head.json"
    src_latest = f"{BASE_URL}/diff/s1/latest.json"
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c1"}, LATEST_URL: feed, src_head: {"cursor": "c1"}, src_latest: feed})
    cursors = MemoryCursorStore()
    dd = _client(http, cursors)

    dd.poll()
    dd.poll_source("s1")
    assert cursors.get("global") == "c1"
    assert cursors.get("source:s1") == "c1"

    dd.reset_cursors("s1")
    assert cursors.get("source:s1") is None
    assert cursors.get("global") == "c1"
    assert len(dd.poll_source("s1")) == 1

    dd.reset_cursors()
    assert len(cursors) == 0


def test_discover_sources_union() -> None:
    stacks = {
        "dependencies": {
            "openai": {"sources": ["s1", "s2"]},
            "langchain": {"sources": ["s2", "s3"]},
        }
    }
    http = FakeHttp(responses={STACKS_URL: stacks})
    dd = _client(http)
    assert dd.discover_sources(["openai", "LangChain", "unknownlib"]) == {"s1", "s2", "s3"}

    dd.discover_sources(["openai"])
    assert http.calls.count(STACKS_URL) == 2


def test_discover_sources_legacy_shape() -> None:
    http = FakeHttp(responses={STACKS_URL: {"dependency_map": {"pinecone": ["pinecone_status"]}}})
    assert _client(http).discover_sources(["pinecone"]) == {"pinecone_status"}


def test_check_health() -> None:
    http = FakeHttp(
        responses={
            HEALTH_URL: {
                "ok": True,
                "service": "diffdelta",
                "time": "2026-02-10T00:00:00Z",
                "sources_checked": 46,
                "sources_ok": 45,
                "engine_version": "2.3.0",
            }
        }
    )
    health = _client(http).check_health()
    assert health.ok is True
    assert health.sources_ok == 45
    assert health.engine_version == "2.3.0"
    assert health.time is not None


def test_direct_calls_propagate_transport_errors() -> None:
    dd = _client(FakeHttp(responses={}))
    with pytest.raises(TransportError) as exc_info:
        dd.check_health()
    assert exc_info.value.status == 404
    assert exc_info.value.url == HEALTH_URL
    with pytest.raises(TransportError):
        dd.poll()
    with pytest.raises(TransportError):
        dd.discover_sources(["openai"])


def test_refresh_source_tags_refetches() -> None:
    sources_url = f"{BASE_URL}/diff/sources.json"
    feed = {"cursor": "c1", "buckets": {"new": [{"source": "s1", "id": "1"}]}}
    http = FakeHttp(
        responses={
            HEAD_URL: {"cursor": "c1"},
            LATEST_URL: feed,
            sources_url: {"sources": [{"source_id": "s1", "tags": ["security"]}]},
        }
    )
    dd = _client(http)
    assert len(dd.poll(tags=["security"])) == 1

    dd.reset_cursors()
    dd.refresh_source_tags()
    http.responses[sources_url] = {"sources": [{"source_id": "s1", "tags": ["status"]}]}
    assert dd.poll(tags=["security"]) == []
    assert http.calls.count(sources_url) == 2


def test_watch_uses_interval_and_stops() -> None:
    feed = {"cursor": "c1", "buckets": {"new": [{"source": "s1", "id": "1"}]}}
    http = FakeHttp(responses={HEAD_URL: {"cursor": "c1"}, LATEST_URL: feed})
    dd = _client(http)
    stop = threading.Event()
    seen = []

    def on_item(item) -> None:  # noqa: ANN001
        seen.append(item.id)
        stop.set()

    report = dd.watch(on_item, interval=1, stop_event=stop)
    assert seen == ["1"]
    assert report.cycles == 1
    assert report.interval_seconds == 1.0


def test_repr_and_memory_mode(tmp_path) -> None:  # noqa: ANN001
    assert repr(DiffDelta(cursor_path=None)) == "DiffDelta(base_url=https://diffdelta.io, tier=free)"
    pro = DiffDelta(api_key="dd_live_x", cursor_path="memory", base_url="https://example.com//")
    assert repr(pro) == "DiffDelta(base_url=https://example.com, tier=pro)"
    assert isinstance(pro.cursors, MemoryCursorStore)

    path = tmp_path / "c.json"
    dd = DiffDelta(cursor_path=str(path))
    dd.cursors.set("global", "c9")
    assert path.exists()


def test_low_level_fetches_and_poll_outcome() -> None:
    feed = {"cursor": "c2", "source_id": "global", "buckets": {"removed": [{"source": "s1", "id": "9"}]}}
    sources_url = f"{BASE_URL}/diff/sources.json"
    http = FakeHttp(
        responses={
            HEAD_URL: {"cursor": "c2", "latest_url": LATEST_URL},
            LATEST_URL: feed,
            sources_url: {"sources": [{"source_id": "s1", "name": "Source One"}]},
        }
    )
    dd = _client(http)

    fetched = dd.fetch_feed()
    assert fetched.source_id == "global"
    assert [i.bucket for i in fetched.items] == ["removed"]
    assert [s.name for s in dd.sources()] == ["Source One"]

    outcome = dd.poll_outcome()
    assert outcome.feed_fetched is True
    assert outcome.items_fetched == 1
    assert outcome.items == []
    assert outcome.head.latest_url == LATEST_URL
    assert outcome.cursor_after == "c2"
