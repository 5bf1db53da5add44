from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlsplit

from .ai_judge import GeminiJudge, WebsiteEvidence
from .fetcher import HomepageFetch, fetch_homepage, probe_tls
from .heuristics import extract_signals
from .models import AgentSignals, AnalysisResult, ExplainabilityItem, TLSInfo, Verdict
from .rdap import fetch_domain_age_days
from .reviews import fetch_external_reviews
from .scoring import ai_item_verdict, domain_age_verdict, heuristic_score, merge_scores, status_for
from .urls import InvalidUrl, normalize_url, registrable_domain

logger = logging.getLogger(__name__)

DOMAIN_AGE_TIMEOUT_S = 5.0
HOMEPAGE_TIMEOUT_S = 8.0
TLS_TIMEOUT_S = 5.0
REVIEWS_TIMEOUT_S = 5.0
# Below this, an AI call can't realistically finish.
MIN_AI_BUDGET_S = 1.0

_stage_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="evidence")


def _https_item(scheme: str, redirected: bool) -> ExplainabilityItem:
    verdict: Verdict = "good" if scheme == "https" else "warn"
    if redirected:
        detail = (
            "Redirected to an encrypted (HTTPS) connection."
            if verdict == "good"
            else "Redirected to an unencrypted (HTTP) connection."
        )
    else:
        detail = (
            "Connection is encrypted (HTTPS)."
            if verdict == "good"
            else "Website is using HTTP; encryption may be missing."
        )
    return ExplainabilityItem(key="https", label="HTTPS status", verdict=verdict, detail=detail)


def _domain_age_item(age_days: int | None) -> ExplainabilityItem:
    verdict = domain_age_verdict(age_days)
    if age_days is None:
        detail = "Domain age couldn't be determined from public registry data."
    else:
        precision = 1 if age_days >= 365 else 2
        detail = f"Estimated domain age: about {age_days / 365:.{precision}f} years."
    return ExplainabilityItem(key="domainAge", label="Domain age", verdict=verdict, detail=detail)


def _tls_item(tls: TLSInfo) -> ExplainabilityItem:
    if not tls.supported:
        return ExplainabilityItem(
            key="tlsCert", label="TLS certificate", verdict="unknown",
            detail="TLS certificate could not be checked (site may not support HTTPS on 443).",
        )
    if tls.days_to_expiry is not None and tls.days_to_expiry < 7:
        return ExplainabilityItem(
            key="tlsCert", label="TLS certificate", verdict="warn",
            detail="TLS certificate is close to expiry; this is usually a maintenance issue.",
        )
    return ExplainabilityItem(
        key="tlsCert", label="TLS certificate", verdict="good",
        detail="TLS certificate was observed and appears valid.",
    )


def _redirect_item(requested_host: str, fetch: HomepageFetch) -> ExplainabilityItem | None:
    chain = fetch.redirect_chain
    if not chain:
        return None
    final_host = (urlsplit(fetch.final_url).hostname or "").lower()
    if final_host and registrable_domain(final_host) != registrable_domain(requested_host):
        return ExplainabilityItem(
            key="redirects", label="Redirect behavior", verdict="bad",
            detail=(
                f"Homepage redirected {len(chain)} time(s) and ended on a different domain ({final_host}). "
                "Verify this is the site you intended to visit."
            ),
        )
    return ExplainabilityItem(
        key="redirects", label="Redirect behavior", verdict="warn",
        detail=(
            f"Homepage redirected {len(chain)} time(s) before loading. "
            "This can be normal, but increases risk if the destination is unexpected."
        ),
    )


class TrustAnalyzer:
    """Local evidence-gathering and scoring pipeline.

    Every enrichment stage is best-effort: a failed or timed-out stage yields
    its empty value and an ``unknown`` verdict, never an exception.
    """

    def __init__(
        self,
        judge: GeminiJudge | None = None,
        *,
        domain_age: Callable[[str, float], int | None] = fetch_domain_age_days,
        homepage: Callable[[str, float], HomepageFetch] = fetch_homepage,
        tls: Callable[[str, float], TLSInfo] = probe_tls,
        reviews: Callable[[str, float], str] = fetch_external_reviews,
    ):
        self.judge = judge
        self.domain_age = domain_age
        self.homepage = homepage
        self.tls = tls
        self.reviews = reviews

    def _gather(
        self,
        normalized_url: str,
        hostname: str,
        deadline: float,
        check_external_reviews: bool,
        timings: dict[str, int],
        warnings: list[str],
    ) -> dict[str, Any]:
        def timed(fn: Callable[..., Any], *args: Any) -> tuple[Any, int]:
            start = time.perf_counter()
            value = fn(*args)
            return value, int((time.perf_counter() - start) * 1000)

        def budget(stage_timeout: float) -> float:
            return max(0.1, min(stage_timeout, deadline - time.monotonic()))

        stages: dict[str, tuple[Callable[..., Any], tuple[Any, ...], Any]] = {
            "rdap": (self.domain_age, (hostname, budget(DOMAIN_AGE_TIMEOUT_S)), None),
            "fetch": (
                self.homepage,
                (normalized_url, budget(HOMEPAGE_TIMEOUT_S)),
                HomepageFetch(final_url=normalized_url, note="Unable to fetch homepage content."),
            ),
            "tls": (self.tls, (hostname, budget(TLS_TIMEOUT_S)), TLSInfo(supported=False)),
        }
        if check_external_reviews:
            stages["reviews"] = (self.reviews, (hostname, budget(REVIEWS_TIMEOUT_S)), None)

        futures = {
            name: _stage_executor.submit(timed, fn, *args)
            for name, (fn, args, _) in stages.items()
        }

        started = time.perf_counter()
        results: dict[str, Any] = {}
        for name, fut in futures.items():
            fallback = stages[name][2]
            try:
                results[name], timings[name] = fut.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeout:
                fut.cancel()
                timings[name] = int((time.perf_counter() - started) * 1000)
                warnings.append(f"{name}: timed out")
                results[name] = fallback
            except Exception:
                # Stages never raise by contract; a bug stays confined to its stage.
                logger.exception("Evidence stage %s failed", name)
                warnings.append(f"{name}: unavailable")
                results[name] = fallback
        return results

    def analyze(
        self,
        normalized_url: str,
        *,
        timeout_ms: int = 20000,
        check_external_reviews: bool = False,
    ) -> AnalysisResult:
        t0 = time.perf_counter()
        deadline = time.monotonic() + timeout_ms / 1000

        parsed = urlsplit(normalized_url)
        hostname = (parsed.hostname or "").lower()
        timings: dict[str, int] = {}
        warnings: list[str] = []

        gathered = self._gather(normalized_url, hostname, deadline, check_external_reviews, timings, warnings)
        domain_age_days: int | None = gathered["rdap"]
        fetch: HomepageFetch = gathered["fetch"]
        tls: TLSInfo = gathered["tls"]
        external_reviews: str | None = gathered.get("reviews")

        final_scheme = (urlsplit(fetch.final_url).scheme or parsed.scheme).lower()
        https = _https_item(final_scheme, redirected=final_scheme != parsed.scheme)
        domain = _domain_age_item(domain_age_days)
        signals = extract_signals(fetch.html, hostname)

        explainability: list[ExplainabilityItem] = [https, domain, *signals.items, _tls_item(tls)]
        redirect = _redirect_item(hostname, fetch)
        if redirect is not None:
            explainability.append(redirect)
        if not fetch.html_available and fetch.note:
            warnings.append(f"fetch: {fetch.note}")

        ai_analysis = None
        if self.judge is not None and self.judge.enabled:
            remaining = deadline - time.monotonic()
            if remaining < MIN_AI_BUDGET_S:
                warnings.append("ai: skipped, analysis deadline reached")
            else:
                evidence = WebsiteEvidence(
                    url=normalized_url,
                    hostname=hostname,
                    protocol=f"{parsed.scheme}:",
                    html=fetch.html,
                    domain_age_days=domain_age_days,
                    is_well_known=signals.well_known,
                    http_status=fetch.http_status,
                    content_type=fetch.content_type,
                    redirect_chain=fetch.redirect_chain,
                    headers=fetch.headers,
                    external_reviews=external_reviews,
                )
                start = time.perf_counter()
                ai_analysis = self.judge.judge(evidence, remaining)
                timings["ai"] = int((time.perf_counter() - start) * 1000)
                if ai_analysis is None:
                    warnings.append("ai: unavailable, heuristic-only score")

        if ai_analysis is not None:
            explainability.append(ExplainabilityItem(
                key="aiAnalysis", label="AI Analysis", verdict=ai_item_verdict(ai_analysis),
                detail=ai_analysis.summary or ai_analysis.overall_assessment,
            ))

        heuristic = heuristic_score(
            https=https.verdict,
            domain_age=domain.verdict,
            business=signals.business,
            medical=signals.medical,
            support=signals.support,
            well_known=signals.well_known,
            headers=fetch.headers,
        )
        final_score = merge_scores(heuristic, ai_analysis)
        timings["total"] = int((time.perf_counter() - t0) * 1000)

        try:
            result_url = normalize_url(fetch.final_url)
        except InvalidUrl:
            result_url = normalized_url

        return AnalysisResult(
            normalized_url=result_url,
            score=final_score,
            status=status_for(final_score),
            explainability=explainability,
            cached=False,
            analyzed_at=datetime.now(timezone.utc).isoformat(),
            ai_analysis=ai_analysis,
            agent_signals=AgentSignals(
                agent="local",
                domain_age_days=domain_age_days,
                external_reviews=external_reviews,
                warnings=warnings,
                timings_ms=timings,
                tls=tls,
                fetch=fetch.to_fetch_info(),
            ),
        )
