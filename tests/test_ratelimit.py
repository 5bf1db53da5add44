from conftest import FakeClock
from trustcheck_core.ratelimit import (
    PRUNE_THRESHOLD,
    RateLimiter,
    RateLimitPolicy,
    client_ip,
    rate_limit_headers,
)


def _limiter(clock, capacity=4, refill=0.1):
    return RateLimiter({"analyze": RateLimitPolicy(capacity=capacity, refill_per_second=refill)}, clock=clock)


def test_burst_then_reject_with_retry_after():
    clock = FakeClock(100.0)
    limiter = _limiter(clock)

    results = [limiter.check("analyze", "1.2.3.4") for _ in range(5)]

    assert [r.ok for r in results] == [True, True, True, True, False]
    assert [r.remaining for r in results[:4]] == [3, 2, 1, 0]
    rejected = results[-1]
    assert rejected.remaining == 0
    assert rejected.retry_after_seconds == 10


def test_tokens_refill_over_time():
    clock = FakeClock(0.0)
    limiter = _limiter(clock, capacity=1, refill=0.5)
    assert limiter.check("analyze", "a").ok
    assert not limiter.check("analyze", "a").ok
    clock.advance(2.0)
    assert limiter.check("analyze", "a").ok


def test_retry_after_is_at_least_one_second():
    clock = FakeClock(0.0)
    limiter = _limiter(clock, capacity=1, refill=10.0)
    limiter.check("analyze", "a")
    clock.advance(0.09)
    result = limiter.check("analyze", "a")
    assert not result.ok
    assert result.retry_after_seconds == 1


def test_clients_and_scopes_are_isolated():
    clock = FakeClock(0.0)
    limiter = RateLimiter(
        {"analyze": RateLimitPolicy(1, 0.01), "flagged": RateLimitPolicy(1, 0.01)}, clock=clock
    )
    assert limiter.check("analyze", "a").ok
    assert limiter.check("analyze", "b").ok
    assert limiter.check("flagged", "a").ok
    assert not limiter.check("analyze", "a").ok


def test_idle_buckets_are_pruned_when_table_is_large():
    clock = FakeClock(0.0)
    limiter = _limiter(clock)
    for i in range(PRUNE_THRESHOLD):
        limiter.check("analyze", f"10.0.{i // 256}.{i % 256}")
    assert len(limiter) == PRUNE_THRESHOLD

    clock.advance(31 * 60)
    limiter.check("analyze", "192.0.2.1")
    assert len(limiter) == 1


def test_client_ip_header_priority():
    headers = {
        "x-forwarded-for": "203.0.113.9, 10.0.0.1",
        "x-real-ip": "198.51.100.7",
        "cf-connecting-ip": "192.0.2.44",
    }
    assert client_ip(headers) == "192.0.2.44"
    del headers["cf-connecting-ip"]
    assert client_ip(headers) == "198.51.100.7"
    del headers["x-real-ip"]
    assert client_ip(headers) == "203.0.113.9"
    assert client_ip({"x-vercel-forwarded-for": "203.0.113.5:4431"}) == "203.0.113.5"
    assert client_ip({"x-forwarded-for": "2001:db8::1"}) == "2001:db8::1"
    assert client_ip({}, peer="127.0.0.1") == "127.0.0.1"
    assert client_ip({}) is None


def test_unknown_clients_share_a_bucket():
    limiter = _limiter(FakeClock(0.0), capacity=1)
    assert limiter.check("analyze", None).ok
    assert not limiter.check("analyze", None).ok


def test_rate_limit_headers():
    limiter = _limiter(FakeClock(0.0), capacity=1)
    ok = rate_limit_headers(limiter.check("analyze", "a"))
    assert ok["x-ratelimit-limit"] == "1"
    assert ok["x-ratelimit-remaining"] == "0"
    assert "retry-after" not in ok
    rejected = rate_limit_headers(limiter.check("analyze", "a"))
    assert rejected["retry-after"] == "10"
