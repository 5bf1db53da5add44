import pytest
from fastapi.testclient import TestClient

from conftest import ANALYZED_AT_MS, FakeClock, make_result
from trustcheck_core.cache import AnalysisCache
from trustcheck_core.config import Settings
from trustcheck_core.flagged import FlaggedSitesAggregator
from trustcheck_core.main import create_app
from trustcheck_core.ratelimit import RateLimiter, RateLimitPolicy
from trustcheck_core.service import AnalysisService


class StubAnalyzer:
    def analyze(self, url, *, timeout_ms, check_external_reviews):
        return make_result(url=url, score=30)


@pytest.fixture
def limiter():
    return RateLimiter(
        {"analyze": RateLimitPolicy(2, 0.1), "flagged": RateLimitPolicy(5, 1.0)},
        clock=FakeClock(0.0),
    )


@pytest.fixture
def client(limiter):
    service = AnalysisService(
        StubAnalyzer(),
        AnalysisCache(clock=FakeClock(ANALYZED_AT_MS)),
        FlaggedSitesAggregator(),
        settings=Settings(),
    )
    app = create_app(Settings(), service=service, limiter=limiter)
    return TestClient(app)


def test_analyze_returns_camel_case_result(client):
    res = client.post("/analyze", json={"url": "shady-deals.example"})
    assert res.status_code == 200
    body = res.json()
    assert body["normalizedUrl"] == "https://shady-deals.example/"
    assert body["status"] == "High Risk Indicators Detected"
    assert body["cached"] is False
    assert body["agentSignals"]["domainAgeDays"] == 12
    assert res.headers["x-ratelimit-limit"] == "2"
    assert res.headers["x-ratelimit-remaining"] == "1"


def test_invalid_url_is_400(client):
    res = client.post("/analyze", json={"url": "localhost"})
    assert res.status_code == 400
    assert res.json() == {"error": "Please enter a valid website domain."}


def test_malformed_body_is_422(client):
    res = client.post("/analyze", json={"url": "example.com", "timeoutMs": 5})
    assert res.status_code == 422
    assert "error" in res.json()


def test_rate_limited_is_429_with_retry_after(client):
    headers = {"x-forwarded-for": "203.0.113.9"}
    assert client.post("/analyze", json={"url": "a.example"}, headers=headers).status_code == 200
    assert client.post("/analyze", json={"url": "b.example"}, headers=headers).status_code == 200
    res = client.post("/analyze", json={"url": "c.example"}, headers=headers)
    assert res.status_code == 429
    assert res.headers["retry-after"] == "10"
    assert "error" in res.json()

    other = client.post("/analyze", json={"url": "c.example"}, headers={"x-forwarded-for": "198.51.100.1"})
    assert other.status_code == 200


def test_flagged_lists_observed_sites(client):
    client.post("/analyze", json={"url": "shady-deals.example"})
    res = client.get("/flagged", params={"q": "shady", "limit": 10})
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 1
    assert body["limit"] == 10
    assert body["items"][0]["hostname"] == "shady-deals.example"
    assert body["items"][0]["timesObserved"] == 1


def test_healthz(client):
    res = client.get("/healthz")
    assert res.json() == {"ok": True, "durableStorage": False, "aiConfigured": False}


def test_injected_limiter_is_used_even_when_empty(limiter):
    assert len(limiter) == 0
    app = create_app(Settings(), service=AnalysisService(
        StubAnalyzer(), AnalysisCache(), FlaggedSitesAggregator(), settings=Settings(),
    ), limiter=limiter)
    assert app.state.limiter is limiter
