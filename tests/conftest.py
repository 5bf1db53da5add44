from __future__ import annotations

import pytest

from trustcheck_core.cache import parse_iso_ms
from trustcheck_core.models import (
    AgentSignals,
    AIAnalysis,
    AIJudgment,
    AnalysisResult,
    ExplainabilityItem,
    FetchInfo,
    TLSInfo,
    TrustSignals,
)
from trustcheck_core.scoring import status_for

ANALYZED_AT = "2026-01-01T00:00:00+00:00"
ANALYZED_AT_MS = parse_iso_ms(ANALYZED_AT, 0)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: float) -> None:
        self.now += delta


class FakePipeline:
    def __init__(self, server: "FakeRedis"):
        self.server = server

    def multi(self) -> None:
        pass

    def __getattr__(self, name):
        return getattr(self.server, name)


class FakeRedis:
    """Just enough of redis.Redis for the store and cache backends."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.zsets: dict[str, dict[str, float]] = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value):
        self.values[key] = value

    def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl

    def mget(self, keys):
        return [self.values.get(k) for k in keys]

    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)

    def zrevrange(self, key, start, end):
        members = sorted(self.zsets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        names = [m for m, _ in members]
        return names[start:] if end == -1 else names[start:end + 1]

    def transaction(self, func, *watches, value_from_callable=False):
        value = func(FakePipeline(self))
        return value if value_from_callable else []


def make_result(
    url: str = "https://shady-deals.example/",
    score: int = 30,
    *,
    verdict: str | None = None,
    ai: AIAnalysis | None = None,
    analyzed_at: str = ANALYZED_AT,
    explainability: list[ExplainabilityItem] | None = None,
    signals: AgentSignals | None = None,
) -> AnalysisResult:
    if signals is None:
        signals = AgentSignals(
            agent="local",
            domain_age_days=12,
            warnings=["fetch: Unable to fetch homepage content."],
            tls=TLSInfo(supported=True, issuer="O=Let's Encrypt"),
            fetch=FetchInfo(final_url=url, redirect_chain=["http://shady-deals.example/"]),
        )
    if verdict is not None:
        signals = signals.model_copy(update={"ai_judgment": AIJudgment(
            legitimacy_score=score,
            confidence="medium",
            verdict=verdict,
            category="e-commerce",
            detected_issues=["  Prices far below market  ", "", "No company address"],
            positive_signals=[],
            platform="shopify",
            product_legitimacy="unclear",
            business_identity="unverified",
            summary="Several caution indicators were observed.",
            recommendation="Verify the seller before paying.",
        )})
    if explainability is None:
        explainability = [
            ExplainabilityItem(key="https", label="HTTPS status", verdict="good", detail="Encrypted."),
            ExplainabilityItem(key="domainAge", label="Domain age", verdict="bad", detail="Very new."),
            ExplainabilityItem(key="businessInfo", label="Business information", verdict="warn", detail="Limited."),
        ]
    return AnalysisResult(
        normalized_url=url,
        score=score,
        status=status_for(score),
        explainability=explainability,
        cached=False,
        analyzed_at=analyzed_at,
        ai_analysis=ai,
        agent_signals=signals,
    )


def make_ai(score: int = 80, confidence: str = "high", **overrides) -> AIAnalysis:
    data = dict(
        overall_assessment="The site shows common trust indicators.",
        trust_signals=TrustSignals(positive=["Contact page"], negative=["Young domain"], neutral=[]),
        risk_factors=["Limited history"],
        recommendations=["Compare prices elsewhere."],
        confidence_level=confidence,
        category="e-commerce",
        summary="Moderate trust indicators.",
        ai_score=score,
    )
    data.update(overrides)
    return AIAnalysis(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()
