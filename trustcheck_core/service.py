from __future__ import annotations

import logging
import time

from .agent_client import AgentClient
from .analyzer import TrustAnalyzer
from .cache import AnalysisCache
from .config import Settings
from .flagged import FlaggedSitesAggregator
from .models import AnalysisResult, AnalyzeRequest
from .urls import hostname_of, normalize_url

logger = logging.getLogger(__name__)

# Floor for the local pipeline after a failed delegation.
MIN_LOCAL_BUDGET_MS = 1000


class AnalysisService:
    """cache -> remote agent -> local pipeline -> cache write -> flag."""

    def __init__(
        self,
        analyzer: TrustAnalyzer,
        cache: AnalysisCache,
        flagged: FlaggedSitesAggregator,
        *,
        agent: AgentClient | None = None,
        settings: Settings | None = None,
    ):
        self.analyzer = analyzer
        self.cache = cache
        self.flagged = flagged
        self.agent = agent
        self.settings = settings if settings is not None else Settings()

    def analyze(self, request: AnalyzeRequest) -> AnalysisResult:
        # InvalidUrl propagates; the HTTP layer maps it to a 400.
        normalized = normalize_url(request.url)
        hostname = hostname_of(normalized) or ""
        timeout_ms = request.timeout_ms or self.settings.default_timeout_ms
        check_reviews = True if request.check_external_reviews is None else request.check_external_reviews

        if self.settings.enable_cache and not request.force:
            hit = self.cache.lookup(hostname)
            if hit is not None:
                logger.info("Cache hit for %s", hostname)
                self.flagged.observe(hit)
                return hit

        t0 = time.perf_counter()
        deadline = time.monotonic() + timeout_ms / 1000
        result = None
        local_budget_ms = timeout_ms
        if self.agent is not None:
            result = self.agent.analyze(normalized, timeout_ms=timeout_ms, check_external_reviews=check_reviews)
            # One deadline per request: a failed delegation eats into the local budget.
            remaining_ms = int((deadline - time.monotonic()) * 1000)
            local_budget_ms = max(MIN_LOCAL_BUDGET_MS, min(timeout_ms, remaining_ms))
        if result is None:
            result = self.analyzer.analyze(
                normalized,
                timeout_ms=local_budget_ms,
                check_external_reviews=check_reviews,
            )
        logger.info(
            "Analyzed %s in %dms: score=%d (%s) via %s",
            hostname,
            int((time.perf_counter() - t0) * 1000),
            result.score,
            result.status,
            result.agent_signals.agent if result.agent_signals else "local",
        )

        if self.settings.enable_cache:
            self.cache.store(hostname, result)
        self.flagged.observe(result)
        return result
