"""Delegation to a remote TrustCheck analysis agent.

The agent speaks snake_case JSON; responses are validated here and mapped into
the public camelCase models before anything else sees them.
"""
from __future__ import annotations

import logging
from typing import Literal

import httpx
from pydantic import BaseModel, Field, ValidationError

from .models import (
    AgentSignals,
    AIAnalysis,
    AIJudgment,
    AnalysisResult,
    CrawlInfo,
    CrawlPage,
    EphemeralScreenshot,
    ExplainabilityItem,
    FetchInfo,
    Status,
    TLSInfo,
    TrustSignals,
)

logger = logging.getLogger(__name__)

# Headroom over the agent's own deadline for transfer and serialization.
TRANSPORT_GRACE_MS = 7000


class AgentTLS(BaseModel):
    supported: bool
    issuer: str | None = None
    subject: str | None = None
    not_after: str | None = None
    days_to_expiry: int | None = None


class AgentFetch(BaseModel):
    final_url: str
    http_status: int | None = None
    content_type: str | None = None
    redirect_chain: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    html_available: bool = False
    html_snippet: str | None = None
    fetch_note: str | None = None


class AgentCrawlPage(BaseModel):
    url: str
    final_url: str | None = None
    http_status: int | None = None
    content_type: str | None = None
    html_snippet: str | None = None
    fetch_note: str | None = None


class AgentCrawl(BaseModel):
    pages_requested: int
    pages_fetched: int
    pages: list[AgentCrawlPage] = Field(default_factory=list)


class AgentAIJudgment(BaseModel):
    legitimacy_score: int = Field(..., ge=0, le=100)
    confidence: Literal["high", "medium", "low"]
    verdict: Literal["legitimate", "caution", "suspicious", "likely_deceptive"]
    category: str
    detected_issues: list[str]
    positive_signals: list[str]
    platform: str
    product_legitimacy: str
    business_identity: str
    summary: str
    recommendation: str


class AgentScreenshot(BaseModel):
    mime: str = "image/png"
    data_base64: str | None = None


class AgentAnalyzeResponse(BaseModel):
    normalized_url: str
    hostname: str | None = None
    score: int = Field(..., ge=0, le=100)
    status: Status
    explainability: list[ExplainabilityItem]
    analyzed_at: str

    domain_age_days: int | None = None
    tls: AgentTLS | None = None
    fetch: AgentFetch | None = None
    crawl: AgentCrawl | None = None

    ai_judgment: AgentAIJudgment | None = None
    external_reviews: str | None = None

    timings_ms: dict[str, int] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    screenshot: AgentScreenshot | None = None


def to_agent_signals(data: AgentAnalyzeResponse) -> AgentSignals:
    screenshot = None
    if data.screenshot is not None and data.screenshot.data_base64:
        mime = data.screenshot.mime.strip() or "image/png"
        screenshot = EphemeralScreenshot(url=f"data:{mime};base64,{data.screenshot.data_base64}", mime=mime)

    return AgentSignals(
        agent="python",
        domain_age_days=data.domain_age_days,
        external_reviews=data.external_reviews,
        warnings=list(data.warnings),
        timings_ms=dict(data.timings_ms),
        tls=TLSInfo(**data.tls.model_dump()) if data.tls else None,
        fetch=FetchInfo(**data.fetch.model_dump(exclude={"html_snippet"})) if data.fetch else None,
        crawl=CrawlInfo(
            pages_requested=data.crawl.pages_requested,
            pages_fetched=data.crawl.pages_fetched,
            pages=[CrawlPage(**p.model_dump(exclude={"html_snippet"})) for p in data.crawl.pages],
        ) if data.crawl else None,
        ai_judgment=AIJudgment(**data.ai_judgment.model_dump()) if data.ai_judgment else None,
        screenshot=screenshot,
    )


def to_ai_analysis(judgment: AgentAIJudgment) -> AIAnalysis:
    return AIAnalysis(
        overall_assessment=judgment.summary,
        trust_signals=TrustSignals(
            positive=list(judgment.positive_signals),
            negative=list(judgment.detected_issues),
            neutral=[],
        ),
        risk_factors=list(judgment.detected_issues),
        recommendations=[judgment.recommendation],
        confidence_level=judgment.confidence,
        category=judgment.category,
        summary=judgment.summary,
        ai_score=judgment.legitimacy_score,
    )


def to_analysis_result(data: AgentAnalyzeResponse) -> AnalysisResult:
    return AnalysisResult(
        normalized_url=data.normalized_url,
        score=data.score,
        status=data.status,
        explainability=data.explainability,
        cached=False,
        analyzed_at=data.analyzed_at,
        ai_analysis=to_ai_analysis(data.ai_judgment) if data.ai_judgment else None,
        agent_signals=to_agent_signals(data),
    )


class AgentClient:
    def __init__(self, base_url: str, *, client: httpx.Client | None = None):
        self.base_url = base_url.strip().rstrip("/")
        self.client = client

    def analyze(
        self,
        url: str,
        *,
        timeout_ms: int = 20000,
        check_external_reviews: bool = True,
    ) -> AnalysisResult | None:
        """POST to the agent; None means "run the local pipeline instead"."""
        timeout_ms = max(1000, min(60000, timeout_ms))
        payload = {"url": url, "timeout_ms": timeout_ms, "check_external_reviews": check_external_reviews}
        timeout_s = (timeout_ms + TRANSPORT_GRACE_MS) / 1000

        try:
            if self.client is None:
                with httpx.Client(timeout=timeout_s) as own_client:
                    res = own_client.post(f"{self.base_url}/analyze", json=payload)
            else:
                res = self.client.post(f"{self.base_url}/analyze", json=payload, timeout=timeout_s)
        except httpx.HTTPError as e:
            logger.warning("Analysis agent unreachable: %s", e)
            return None

        if not res.is_success:
            logger.warning("Analysis agent returned HTTP %s", res.status_code)
            return None

        try:
            data = AgentAnalyzeResponse.model_validate_json(res.content)
        except ValidationError as e:
            logger.warning("Analysis agent response rejected (%d errors)", e.error_count())
            return None
        return to_analysis_result(data)
