from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Mapping


BUCKET_NEW = "new"
BUCKET_UPDATED = "updated"
BUCKET_REMOVED = "removed"
BUCKET_FLAGGED = "flagged"

# 合并序列的固定顺序
BUCKETS: tuple[str, ...] = (BUCKET_NEW, BUCKET_UPDATED, BUCKET_REMOVED, BUCKET_FLAGGED)
DEFAULT_BUCKETS: tuple[str, ...] = (BUCKET_NEW, BUCKET_UPDATED, BUCKET_FLAGGED)

# signals.suggested_action 的已知取值；未知取值原样透传
PATCH_IMMEDIATELY = "PATCH_IMMEDIATELY"
PATCH_SOON = "PATCH_SOON"
VERSION_PIN = "VERSION_PIN"
REVIEW_CHANGELOG = "REVIEW_CHANGELOG"
MONITOR_STATUS = "MONITOR_STATUS"
ACKNOWLEDGE = "ACKNOWLEDGE"
NO_ACTION = "NO_ACTION"


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析常见的 RFC3339/ISO8601 时间串为带 tzinfo 的 datetime。

    兼容：
    - 2026-02-10T12:34:56Z
    - 2026-02-10T12:34:56+00:00
    - 2026-02-10T12:34:56.123Z
    """
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


@dataclass(frozen=True, slots=True)
class SignalProvenance:
    """
    信号溯源：把一条信号追溯到权威来源。
    """

    method: str
    authority: str
    authority_url: str
    evidence_url: str


@dataclass(frozen=True, slots=True)
class SeveritySignal:
    level: str
    source: str = ""
    cvss: float | None = None
    cwes: tuple[str, ...] = ()
    packages: tuple[str, ...] = ()
    exploited: bool | None = None
    provenance: SignalProvenance | None = None


@dataclass(frozen=True, slots=True)
class ReleaseSignal:
    version: str
    prerelease: bool | None = None
    security_patch: bool | None = None
    provenance: SignalProvenance | None = None


@dataclass(frozen=True, slots=True)
class IncidentSignal:
    status: str
    impact: str | None = None
    provenance: SignalProvenance | None = None


@dataclass(frozen=True, slots=True)
class DeprecationSignal:
    type: str
    confidence: str
    source: str
    affects: tuple[str, ...] = ()
    provenance: SignalProvenance | None = None


@dataclass(frozen=True, slots=True)
class Signals:
    """
    条目的结构化信号集合（开放结构）。

    - 已知的四类信号各自作为可选字段暴露
    - 服务端新增的未知信号原样保留在 extra 中，不做类型化
    """

    severity: SeveritySignal | None = None
    release: ReleaseSignal | None = None
    incident: IncidentSignal | None = None
    deprecation: DeprecationSignal | None = None
    suggested_action: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class FeedItem:
    """
    Feed 中的单个变更条目。

    suggested_action 只是 signals.suggested_action 的投影，客户端从不独立计算。
    """

    source: str
    id: str
    headline: str
    url: str
    excerpt: str
    published_at: datetime | None
    updated_at: datetime | None
    bucket: str
    signals: Signals
    risk_score: float | None
    provenance: Mapping[str, Any]
    raw: Mapping[str, Any]

    @property
    def suggested_action(self) -> str | None:
        return self.signals.suggested_action

    def __repr__(self) -> str:
        return (
            f"FeedItem(source={self.source!r}, id={self.id!r}, "
            f"headline={self.headline!r}, bucket={self.bucket!r})"
        )


@dataclass(frozen=True, slots=True)
class Counts:
    new: int = 0
    updated: int = 0
    removed: int = 0
    flagged: int = 0

    def total(self) -> int:
        return self.new + self.updated + self.removed + self.flagged


@dataclass(frozen=True, slots=True)
class Freshness:
    oldest_data_age_sec: float
    mean_data_age_sec: float
    stale_count: int
    all_fresh: bool


@dataclass(frozen=True, slots=True)
class Head:
    """
    head.json：轻量指针文档，每个轮询周期都会重新拉取。

    all_clear 只由服务端声明（本周期无变更且所有 source 健康），
    客户端不得从 changed / sources_ok 自行推断。
    """

    cursor: str
    changed: bool
    generated_at: datetime | None
    ttl_sec: int
    latest_url: str
    digest_url: str | None
    counts: Counts
    sources_checked: int
    sources_ok: int
    all_clear: bool
    all_clear_confidence: float | None
    freshness: Freshness | None
    raw: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class Feed:
    """
    latest.json：完整 feed。

    items 为四个桶按 new -> updated -> removed -> flagged 顺序拼接的结果。
    """

    cursor: str
    prev_cursor: str
    source_id: str
    generated_at: datetime | None
    items: tuple[FeedItem, ...]
    new: tuple[FeedItem, ...]
    updated: tuple[FeedItem, ...]
    removed: tuple[FeedItem, ...]
    flagged: tuple[FeedItem, ...]
    narrative: str
    raw: Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class SourceInfo:
    source_id: str
    name: str
    tags: tuple[str, ...]
    description: str
    homepage: str
    enabled: bool
    status: str
    head_url: str
    latest_url: str


@dataclass(frozen=True, slots=True)
class HealthCheck:
    ok: bool
    service: str
    time: datetime | None
    sources_checked: int
    sources_ok: int
    engine_version: str


@dataclass(frozen=True, slots=True)
class StackMap:
    """
    stacks.json 归一化后的内部表示：依赖名（小写） -> source id 列表。

    新旧两种文档形态都在 decode 层被归一为该结构，上层不再区分形态。
    """

    dependencies: Mapping[str, tuple[str, ...]]

    def lookup(self, name: str) -> tuple[str, ...]:
        return self.dependencies.get(name.lower(), ())
