"""Aggregation of analyses that crossed the risk line, for the public /flagged list."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable

import redis
from pydantic import ValidationError

from .cache import now_ms, parse_iso_ms
from .models import AnalysisResult, FlaggedEvidence, FlaggedFinding, FlaggedSiteRecord, FlaggedSitesPage
from .scoring import HIGH_RISK_STATUS, clamp_score
from .storage import KEY_PREFIX
from .urls import hostname_of

logger = logging.getLogger(__name__)

FLAG_SCORE_THRESHOLD = 45
FLAGGED_AI_VERDICTS = frozenset({"suspicious", "likely_deceptive"})
MAX_ISSUES = 10
MAX_FINDINGS = 8
DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def is_flagged(result: AnalysisResult) -> bool:
    judgment = result.agent_signals.ai_judgment if result.agent_signals else None
    return (
        result.score < FLAG_SCORE_THRESHOLD
        or result.status == HIGH_RISK_STATUS
        or (judgment is not None and judgment.verdict in FLAGGED_AI_VERDICTS)
    )


def _compact(values: list[str] | None, limit: int) -> list[str]:
    out: list[str] = []
    for v in values or []:
        s = str(v).strip()
        if s:
            out.append(s)
        if len(out) >= limit:
            break
    return out


def build_record(result: AnalysisResult, observed_at_ms: int) -> FlaggedSiteRecord | None:
    hostname = hostname_of(result.normalized_url)
    if not hostname:
        return None

    signals = result.agent_signals
    judgment = signals.ai_judgment if signals else None
    ai = result.ai_analysis

    if judgment and judgment.detected_issues:
        issues = _compact(judgment.detected_issues, MAX_ISSUES)
    elif ai and ai.risk_factors:
        issues = _compact(ai.risk_factors, MAX_ISSUES)
    elif ai and ai.trust_signals.negative:
        issues = _compact(ai.trust_signals.negative, MAX_ISSUES)
    else:
        issues = []

    findings = [
        FlaggedFinding(label=item.label, verdict=item.verdict, detail=item.detail)
        for item in result.explainability
        if item.verdict in ("bad", "warn")
    ][:MAX_FINDINGS]

    if judgment is not None:
        summary = judgment.summary
    elif ai is not None:
        summary = ai.summary or ai.overall_assessment
    else:
        summary = None

    evidence = FlaggedEvidence()
    if signals is not None:
        evidence = FlaggedEvidence(
            domain_age_days=signals.domain_age_days,
            tls_supported=signals.tls.supported if signals.tls else None,
            tls_issuer=signals.tls.issuer if signals.tls else None,
            redirect_chain=list(signals.fetch.redirect_chain) if signals.fetch else [],
            pages_fetched=signals.crawl.pages_fetched if signals.crawl else None,
            warnings=list(signals.warnings),
        )

    return FlaggedSiteRecord(
        hostname=hostname,
        normalized_url=result.normalized_url,
        first_observed_at_ms=observed_at_ms,
        last_observed_at_ms=observed_at_ms,
        last_analysis_at_ms=parse_iso_ms(result.analyzed_at, observed_at_ms),
        score=clamp_score(result.score),
        status=result.status,
        ai_verdict=judgment.verdict if judgment else None,
        ai_confidence=judgment.confidence if judgment else (ai.confidence_level if ai else None),
        summary=summary,
        issues=issues,
        findings=findings,
        evidence=evidence,
        times_observed=1,
    )


def merge_observation(previous: FlaggedSiteRecord | None, fresh: FlaggedSiteRecord) -> FlaggedSiteRecord:
    if previous is None:
        return fresh
    return fresh.model_copy(update={
        "first_observed_at_ms": previous.first_observed_at_ms,
        "times_observed": previous.times_observed + 1,
    })


def matches(record: FlaggedSiteRecord, q: str) -> bool:
    if not q:
        return True
    haystack = " ".join([record.hostname, record.normalized_url, record.summary or "", *record.issues])
    return q.lower() in haystack.lower()


class FlaggedStore(ABC):
    @abstractmethod
    def upsert(self, record: FlaggedSiteRecord) -> FlaggedSiteRecord:
        """Insert or merge ``record``; returns the stored version."""

    @abstractmethod
    def all(self) -> list[FlaggedSiteRecord]:
        """Every record, most recently observed first."""


class MemoryFlaggedStore(FlaggedStore):
    def __init__(self):
        self._records: dict[str, FlaggedSiteRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, record: FlaggedSiteRecord) -> FlaggedSiteRecord:
        with self._lock:
            stored = merge_observation(self._records.get(record.hostname), record)
            self._records[record.hostname] = stored
            return stored

    def get(self, hostname: str) -> FlaggedSiteRecord | None:
        with self._lock:
            return self._records.get(hostname)

    def all(self) -> list[FlaggedSiteRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.last_observed_at_ms, reverse=True)


class RedisFlaggedStore(FlaggedStore):
    """One JSON record per hostname plus a sorted index by last observation."""

    def __init__(self, client: redis.Redis, prefix: str = f"{KEY_PREFIX}:flagged"):
        self.client = client
        self.prefix = prefix
        self.index_key = f"{prefix}:index"

    def _key(self, hostname: str) -> str:
        return f"{self.prefix}:{hostname}"

    def _load(self, raw: Any) -> FlaggedSiteRecord | None:
        if not raw:
            return None
        try:
            return FlaggedSiteRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Skipping unreadable flagged record")
            return None

    def upsert(self, record: FlaggedSiteRecord) -> FlaggedSiteRecord:
        key = self._key(record.hostname)

        def apply(pipe: redis.client.Pipeline) -> FlaggedSiteRecord:
            stored = merge_observation(self._load(pipe.get(key)), record)
            pipe.multi()
            pipe.set(key, stored.model_dump_json(by_alias=True))
            pipe.zadd(self.index_key, {record.hostname: stored.last_observed_at_ms})
            return stored

        return self.client.transaction(apply, key, value_from_callable=True)

    def all(self) -> list[FlaggedSiteRecord]:
        hostnames = self.client.zrevrange(self.index_key, 0, -1)
        if not hostnames:
            return []
        raws = self.client.mget([self._key(h) for h in hostnames])
        return [r for r in (self._load(raw) for raw in raws) if r is not None]


class FlaggedSitesAggregator:
    def __init__(
        self,
        store: FlaggedStore | None = None,
        *,
        clock: Callable[[], int] = now_ms,
    ):
        self.memory = MemoryFlaggedStore()
        self.store = store
        self.clock = clock

    def observe(self, result: AnalysisResult, observed_at_ms: int | None = None) -> FlaggedSiteRecord | None:
        if not is_flagged(result):
            return None
        record = build_record(result, observed_at_ms if observed_at_ms is not None else self.clock())
        if record is None:
            return None

        if self.store is None:
            return self.memory.upsert(record)
        try:
            return self.store.upsert(record)
        except redis.RedisError as e:
            logger.warning("Flagged upsert failed for %s, keeping in memory: %s", record.hostname, e)
            return self.memory.upsert(record)

    def query(self, q: str | None = None, limit: int = DEFAULT_LIMIT, offset: int = 0) -> FlaggedSitesPage:
        limit = max(1, min(MAX_LIMIT, limit))
        offset = max(0, offset)
        needle = (q or "").strip()

        # Memory holds records written during durable outages; the newer copy of a host wins.
        merged = {r.hostname: r for r in self.memory.all()}
        if self.store is not None:
            try:
                durable = self.store.all()
            except redis.RedisError as e:
                logger.warning("Flagged query failed, serving in-memory records: %s", e)
                durable = []
            for r in durable:
                kept = merged.get(r.hostname)
                if kept is None or r.last_observed_at_ms >= kept.last_observed_at_ms:
                    merged[r.hostname] = r
        records = sorted(merged.values(), key=lambda r: r.last_observed_at_ms, reverse=True)

        hits = [r for r in records if matches(r, needle)]
        return FlaggedSitesPage(items=hits[offset:offset + limit], total=len(hits), limit=limit, offset=offset)
