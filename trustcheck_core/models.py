from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Verdict = Literal["good", "warn", "bad", "unknown"]
Confidence = Literal["high", "medium", "low"]
AIVerdict = Literal["legitimate", "caution", "suspicious", "likely_deceptive"]
Status = Literal["Low Risk", "Proceed with Caution", "High Risk Indicators Detected"]


class CamelModel(BaseModel):
    """Public JSON shape: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class AnalyzeRequest(CamelModel):
    url: str = Field(..., min_length=1)
    force: bool = False
    # Deep analysis callers raise this up to 60s.
    timeout_ms: int | None = Field(None, ge=1000, le=60000)
    check_external_reviews: bool | None = None


class ExplainabilityItem(CamelModel):
    key: str
    label: str
    verdict: Verdict
    detail: str


class TLSInfo(CamelModel):
    supported: bool
    issuer: str | None = None
    subject: str | None = None
    not_after: str | None = None
    days_to_expiry: int | None = None


class FetchInfo(CamelModel):
    final_url: str
    http_status: int | None = None
    content_type: str | None = None
    redirect_chain: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    html_available: bool = False
    fetch_note: str | None = None


class CrawlPage(CamelModel):
    url: str
    final_url: str | None = None
    http_status: int | None = None
    content_type: str | None = None
    fetch_note: str | None = None


class CrawlInfo(CamelModel):
    pages_requested: int
    pages_fetched: int
    pages: list[CrawlPage] = Field(default_factory=list)


class AIJudgment(CamelModel):
    legitimacy_score: int = Field(..., ge=0, le=100)
    confidence: Confidence
    verdict: AIVerdict
    category: str
    detected_issues: list[str]
    positive_signals: list[str]
    platform: str
    product_legitimacy: str
    business_identity: str
    summary: str
    recommendation: str


class TrustSignals(CamelModel):
    positive: list[str]
    negative: list[str] = Field(default_factory=list)
    neutral: list[str] = Field(default_factory=list)


class AIAnalysis(CamelModel):
    overall_assessment: str
    trust_signals: TrustSignals
    risk_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence_level: Confidence = "low"
    category: str = "unknown"
    summary: str = ""
    ai_score: int = Field(..., ge=0, le=100)


class EphemeralScreenshot(CamelModel):
    url: str
    mime: str = "image/png"
    expires_in_seconds: int | None = None


class AgentSignals(CamelModel):
    agent: Literal["python", "local"] = "local"
    domain_age_days: int | None = None
    external_reviews: str | None = None
    warnings: list[str] = Field(default_factory=list)
    timings_ms: dict[str, int] = Field(default_factory=dict)
    tls: TLSInfo | None = None
    fetch: FetchInfo | None = None
    crawl: CrawlInfo | None = None
    ai_judgment: AIJudgment | None = None
    # Never cached; only ever attached to a single response.
    screenshot: EphemeralScreenshot | None = None


class AnalysisResult(CamelModel):
    normalized_url: str
    score: int = Field(..., ge=0, le=100)
    status: Status
    explainability: list[ExplainabilityItem]
    cached: bool = False
    analyzed_at: str
    ai_analysis: AIAnalysis | None = None
    agent_signals: AgentSignals | None = None


class CacheRecord(AnalysisResult):
    cache_key: str
    analyzed_at_ms: int
    expire_at_ms: int


class FlaggedFinding(CamelModel):
    label: str
    verdict: Verdict
    detail: str


class FlaggedEvidence(CamelModel):
    domain_age_days: int | None = None
    tls_supported: bool | None = None
    tls_issuer: str | None = None
    redirect_chain: list[str] = Field(default_factory=list)
    pages_fetched: int | None = None
    warnings: list[str] = Field(default_factory=list)


class FlaggedSiteRecord(CamelModel):
    hostname: str
    normalized_url: str
    first_observed_at_ms: int
    last_observed_at_ms: int
    last_analysis_at_ms: int
    score: int
    status: Status
    ai_verdict: AIVerdict | None = None
    ai_confidence: Confidence | None = None
    summary: str | None = None
    issues: list[str] = Field(default_factory=list)
    findings: list[FlaggedFinding] = Field(default_factory=list)
    evidence: FlaggedEvidence = Field(default_factory=FlaggedEvidence)
    times_observed: int = 1


class FlaggedSitesPage(CamelModel):
    items: list[FlaggedSiteRecord]
    total: int
    limit: int
    offset: int
