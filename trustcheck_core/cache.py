"""Two-tier analysis cache keyed by hostname and evidence-schema version."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable

import redis
from pydantic import ValidationError

from .models import AnalysisResult, CacheRecord
from .storage import KEY_PREFIX

logger = logging.getLogger(__name__)

# Bump whenever scoring or evidence shape changes so stale entries are ignored.
CACHE_VERSION = "v4"
CACHE_TTL_SECONDS = 60 * 60 * 24


def now_ms() -> int:
    return int(time.time() * 1000)


def make_cache_key(hostname: str) -> str:
    return f"{hostname.lower()}::{CACHE_VERSION}"


def parse_iso_ms(value: str, default: int) -> int:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return default
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def _without_screenshot(result: AnalysisResult) -> AnalysisResult:
    signals = result.agent_signals
    if signals is None or signals.screenshot is None:
        return result
    return result.model_copy(update={"agent_signals": signals.model_copy(update={"screenshot": None})})


class CacheBackend(ABC):
    @abstractmethod
    def get(self, cache_key: str, now: int) -> CacheRecord | None:
        """Return the live record for ``cache_key`` or None."""

    @abstractmethod
    def put(self, record: CacheRecord, now: int) -> None:
        ...


class MemoryCacheBackend(CacheBackend):
    def __init__(self):
        self._records: dict[str, CacheRecord] = {}
        self._lock = threading.Lock()

    def get(self, cache_key: str, now: int) -> CacheRecord | None:
        with self._lock:
            record = self._records.get(cache_key)
            if record is None:
                return None
            if record.expire_at_ms <= now:
                del self._records[cache_key]
                return None
            return record

    def put(self, record: CacheRecord, now: int) -> None:
        with self._lock:
            self._records[record.cache_key] = record
            if len(self._records) > 5000:
                self._records = {k: r for k, r in self._records.items() if r.expire_at_ms > now}

    def __len__(self) -> int:
        return len(self._records)


class RedisCacheBackend(CacheBackend):
    def __init__(self, client: redis.Redis, prefix: str = f"{KEY_PREFIX}:cache"):
        self.client = client
        self.prefix = prefix

    def _key(self, cache_key: str) -> str:
        return f"{self.prefix}:{cache_key}"

    def get(self, cache_key: str, now: int) -> CacheRecord | None:
        raw = self.client.get(self._key(cache_key))
        if not raw:
            return None
        try:
            record = CacheRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache record %s", cache_key)
            return None
        return record if record.expire_at_ms > now else None

    def put(self, record: CacheRecord, now: int) -> None:
        ttl_s = max(1, (record.expire_at_ms - now) // 1000)
        self.client.setex(self._key(record.cache_key), ttl_s, record.model_dump_json(by_alias=True))


class AnalysisCache:
    """Memory tier always, durable tier when configured.

    The cache is advisory: durable-tier errors are logged and never reach the
    caller.
    """

    def __init__(
        self,
        durable: CacheBackend | None = None,
        *,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        clock: Callable[[], int] = now_ms,
    ):
        self.memory = MemoryCacheBackend()
        self.durable = durable
        self.ttl_ms = ttl_seconds * 1000
        self.clock = clock

    def lookup(self, hostname: str) -> AnalysisResult | None:
        key = make_cache_key(hostname)
        now = self.clock()

        record = self.memory.get(key, now)
        if record is None and self.durable is not None:
            try:
                record = self.durable.get(key, now)
            except redis.RedisError as e:
                logger.warning("Durable cache read failed for %s: %s", key, e)
                record = None
            if record is not None:
                self.memory.put(record, now)
        if record is None:
            return None

        return self.hydrate(record)

    @staticmethod
    def hydrate(record: CacheRecord) -> AnalysisResult:
        data = record.model_dump(exclude={"cache_key", "analyzed_at_ms", "expire_at_ms"})
        data["cached"] = True
        data["analyzed_at"] = datetime.fromtimestamp(record.analyzed_at_ms / 1000, tz=timezone.utc).isoformat()
        return _without_screenshot(AnalysisResult.model_validate(data))

    def store(self, hostname: str, result: AnalysisResult) -> CacheRecord:
        now = self.clock()
        analyzed_at_ms = parse_iso_ms(result.analyzed_at, now)
        clean = _without_screenshot(result)
        record = CacheRecord(
            **clean.model_dump(exclude={"cached"}),
            cached=False,
            cache_key=make_cache_key(hostname),
            analyzed_at_ms=analyzed_at_ms,
            expire_at_ms=analyzed_at_ms + self.ttl_ms,
        )

        self.memory.put(record, now)
        if self.durable is not None:
            try:
                self.durable.put(record, now)
            except redis.RedisError as e:
                logger.warning("Durable cache write failed for %s: %s", record.cache_key, e)
        return record
