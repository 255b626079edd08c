from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from .models import (
    BUCKET_NEW,
    BUCKETS,
    Counts,
    DeprecationSignal,
    Feed,
    FeedItem,
    Freshness,
    Head,
    HealthCheck,
    IncidentSignal,
    ReleaseSignal,
    SeveritySignal,
    SignalProvenance,
    Signals,
    SourceInfo,
    StackMap,
    parse_rfc3339_datetime,
)


DEFAULT_TTL_SEC = 60

_KNOWN_SIGNAL_KEYS = ("severity", "release", "incident", "deprecation", "suggested_action")


def _as_dict(value: Any) -> Mapping[str, Any]:
    if isinstance(value, dict):
        return value
    return {}


def _get_str(d: Mapping[str, Any], key: str, default: str = "") -> str:
    v = d.get(key)
    if isinstance(v, str) and v:
        return v
    return default


def _get_opt_str(d: Mapping[str, Any], key: str) -> str | None:
    v = d.get(key)
    if isinstance(v, str) and v:
        return v
    return None


def _get_bool(d: Mapping[str, Any], key: str, default: bool) -> bool:
    v = d.get(key)
    if isinstance(v, bool):
        return v
    return default


def _get_opt_bool(d: Mapping[str, Any], key: str) -> bool | None:
    v = d.get(key)
    if isinstance(v, bool):
        return v
    return None


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    if not isinstance(v, (int, float)):
        return default
    try:
        return int(v)
    except (ValueError, OverflowError):
        return default


def _get_opt_float(d: Mapping[str, Any], key: str) -> float | None:
    v = d.get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    try:
        return float(v)
    except OverflowError:
        return None


def _get_str_tuple(d: Mapping[str, Any], key: str) -> tuple[str, ...]:
    v = d.get(key)
    if not isinstance(v, list):
        return ()
    return tuple(x for x in v if isinstance(x, str))


def _get_datetime(d: Mapping[str, Any], key: str) -> datetime | None:
    v = d.get(key)
    if not isinstance(v, str) or not v:
        return None
    try:
        return parse_rfc3339_datetime(v)
    except ValueError:
        return None


def _parse_provenance(value: Any) -> SignalProvenance | None:
    if not isinstance(value, dict):
        return None
    return SignalProvenance(
        method=_get_str(value, "method"),
        authority=_get_str(value, "authority"),
        authority_url=_get_str(value, "authority_url"),
        evidence_url=_get_str(value, "evidence_url"),
    )


def parse_signals(data: Any) -> Signals:
    """
    解析条目的 signals 字段。

    已知信号类型化；未知键（以及形态不对、无法类型化的已知键）原样放入 extra，
    保证服务端新增信号时客户端不丢数据。
    """
    raw = _as_dict(data)
    extra: dict[str, Any] = {k: v for k, v in raw.items() if k not in _KNOWN_SIGNAL_KEYS}

    severity: SeveritySignal | None = None
    sev = raw.get("severity")
    if isinstance(sev, dict):
        severity = SeveritySignal(
            level=_get_str(sev, "level"),
            source=_get_str(sev, "source"),
            cvss=_get_opt_float(sev, "cvss"),
            cwes=_get_str_tuple(sev, "cwes"),
            packages=_get_str_tuple(sev, "packages"),
            exploited=_get_opt_bool(sev, "exploited"),
            provenance=_parse_provenance(sev.get("provenance")),
        )
    elif sev is not None:
        extra["severity"] = sev

    release: ReleaseSignal | None = None
    rel = raw.get("release")
    if isinstance(rel, dict):
        release = ReleaseSignal(
            version=_get_str(rel, "version"),
            prerelease=_get_opt_bool(rel, "prerelease"),
            security_patch=_get_opt_bool(rel, "security_patch"),
            provenance=_parse_provenance(rel.get("provenance")),
        )
    elif rel is not None:
        extra["release"] = rel

    incident: IncidentSignal | None = None
    inc = raw.get("incident")
    if isinstance(inc, dict):
        incident = IncidentSignal(
            status=_get_str(inc, "status"),
            impact=_get_opt_str(inc, "impact"),
            provenance=_parse_provenance(inc.get("provenance")),
        )
    elif inc is not None:
        extra["incident"] = inc

    deprecation: DeprecationSignal | None = None
    dep = raw.get("deprecation")
    if isinstance(dep, dict):
        deprecation = DeprecationSignal(
            type=_get_str(dep, "type"),
            confidence=_get_str(dep, "confidence"),
            source=_get_str(dep, "source"),
            affects=_get_str_tuple(dep, "affects"),
            provenance=_parse_provenance(dep.get("provenance")),
        )
    elif dep is not None:
        extra["deprecation"] = dep

    return Signals(
        severity=severity,
        release=release,
        incident=incident,
        deprecation=deprecation,
        suggested_action=_get_opt_str(raw, "suggested_action"),
        extra=extra,
    )


def _parse_excerpt(content: Any) -> str:
    if isinstance(content, dict):
        return _get_str(content, "excerpt_text") or _get_str(content, "summary")
    if isinstance(content, str):
        return content
    return ""


def _parse_risk_score(data: Mapping[str, Any]) -> float | None:
    score = _get_opt_float(_as_dict(data.get("risk")), "score")
    if score is None:
        # 旧格式：顶层 risk_score
        score = _get_opt_float(data, "risk_score")
    return score


def parse_feed_item(data: Any, bucket: str = BUCKET_NEW) -> FeedItem:
    raw = _as_dict(data)
    return FeedItem(
        source=_get_str(raw, "source"),
        id=_get_str(raw, "id"),
        headline=_get_str(raw, "headline"),
        url=_get_str(raw, "url"),
        excerpt=_parse_excerpt(raw.get("content")),
        published_at=_get_datetime(raw, "published_at"),
        updated_at=_get_datetime(raw, "updated_at"),
        bucket=bucket,
        signals=parse_signals(raw.get("signals")),
        risk_score=_parse_risk_score(raw),
        provenance=_as_dict(raw.get("provenance")),
        raw=raw,
    )


def _parse_freshness(value: Any) -> Freshness | None:
    if not isinstance(value, dict):
        return None
    return Freshness(
        oldest_data_age_sec=_get_opt_float(value, "oldest_data_age_sec") or 0.0,
        mean_data_age_sec=_get_opt_float(value, "mean_data_age_sec") or 0.0,
        stale_count=_get_int(value, "stale_count", 0),
        all_fresh=_get_bool(value, "all_fresh", False),
    )


def parse_head(data: Any) -> Head:
    """
    解析 head.json。

    缺省规则：
    - ttl_sec 缺失或非正数 -> 60
    - counts 缺失 -> 全 0
    - all_clear_confidence 缺失时回退到旧字段 confidence，再缺失则为 None
    """
    raw = _as_dict(data)
    counts = _as_dict(raw.get("counts"))

    ttl_sec = _get_int(raw, "ttl_sec", DEFAULT_TTL_SEC)
    if ttl_sec <= 0:
        ttl_sec = DEFAULT_TTL_SEC

    confidence = _get_opt_float(raw, "all_clear_confidence")
    if confidence is None:
        confidence = _get_opt_float(raw, "confidence")

    return Head(
        cursor=_get_str(raw, "cursor"),
        changed=_get_bool(raw, "changed", False),
        generated_at=_get_datetime(raw, "generated_at"),
        ttl_sec=ttl_sec,
        latest_url=_get_str(raw, "latest_url"),
        digest_url=_get_opt_str(raw, "digest_url"),
        counts=Counts(
            new=_get_int(counts, "new", 0),
            updated=_get_int(counts, "updated", 0),
            removed=_get_int(counts, "removed", 0),
            flagged=_get_int(counts, "flagged", 0),
        ),
        sources_checked=_get_int(raw, "sources_checked", 0),
        sources_ok=_get_int(raw, "sources_ok", 0),
        all_clear=_get_bool(raw, "all_clear", False),
        all_clear_confidence=confidence,
        freshness=_parse_freshness(raw.get("freshness")),
        raw=raw,
    )


def parse_feed(data: Any) -> Feed:
    raw = _as_dict(data)
    buckets = _as_dict(raw.get("buckets"))

    parsed: dict[str, tuple[FeedItem, ...]] = {}
    for bucket in BUCKETS:
        entries = buckets.get(bucket)
        if not isinstance(entries, list):
            entries = []
        parsed[bucket] = tuple(parse_feed_item(e, bucket) for e in entries if isinstance(e, dict))

    items: list[FeedItem] = []
    for bucket in BUCKETS:
        items.extend(parsed[bucket])

    return Feed(
        cursor=_get_str(raw, "cursor"),
        prev_cursor=_get_str(raw, "prev_cursor"),
        source_id=_get_str(raw, "source_id"),
        generated_at=_get_datetime(raw, "generated_at"),
        items=tuple(items),
        new=parsed["new"],
        updated=parsed["updated"],
        removed=parsed["removed"],
        flagged=parsed["flagged"],
        narrative=_get_str(raw, "batch_narrative"),
        raw=raw,
    )


def parse_source_info(data: Any) -> SourceInfo:
    raw = _as_dict(data)
    return SourceInfo(
        source_id=_get_str(raw, "source_id"),
        name=_get_str(raw, "name"),
        tags=_get_str_tuple(raw, "tags"),
        description=_get_str(raw, "description"),
        homepage=_get_str(raw, "homepage"),
        enabled=_get_bool(raw, "enabled", True),
        status=_get_str(raw, "status", "ok"),
        head_url=_get_str(raw, "head_url"),
        latest_url=_get_str(raw, "latest_url"),
    )


def parse_sources(data: Any) -> list[SourceInfo]:
    entries = _as_dict(data).get("sources")
    if not isinstance(entries, list):
        return []
    return [parse_source_info(e) for e in entries if isinstance(e, dict)]


def parse_health_check(data: Any) -> HealthCheck:
    raw = _as_dict(data)
    return HealthCheck(
        ok=_get_bool(raw, "ok", False),
        service=_get_str(raw, "service"),
        time=_get_datetime(raw, "time"),
        sources_checked=_get_int(raw, "sources_checked", 0),
        sources_ok=_get_int(raw, "sources_ok", 0),
        engine_version=_get_str(raw, "engine_version"),
    )


def parse_stack_map(data: Any) -> StackMap:
    """
    解析 stacks.json，兼容两种形态：

    - 新格式：{"dependencies": {"openai": {"sources": ["s1", "s2"]}}}
    - 旧格式：{"dependency_map": {"openai": ["s1", "s2"]}}

    以字段名判断形态（dependencies 优先），统一归一为 StackMap。
    """
    raw = _as_dict(data)
    if isinstance(raw.get("dependencies"), dict):
        deps = raw["dependencies"]
    else:
        deps = _as_dict(raw.get("dependency_map"))

    normalized: dict[str, tuple[str, ...]] = {}
    for name, entry in deps.items():
        if not isinstance(name, str):
            continue
        if isinstance(entry, dict):
            sources = _get_str_tuple(entry, "sources")
        elif isinstance(entry, list):
            sources = tuple(x for x in entry if isinstance(x, str))
        else:
            continue
        key = name.lower()
        normalized[key] = normalized.get(key, ()) + sources
    return StackMap(dependencies=normalized)
