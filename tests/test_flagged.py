import redis

from conftest import FakeClock, make_ai, make_result
from trustcheck_core.flagged import (
    FlaggedSitesAggregator,
    FlaggedStore,
    MemoryFlaggedStore,
    RedisFlaggedStore,
    build_record,
    is_flagged,
)
from trustcheck_core.models import ExplainabilityItem


class BrokenStore(FlaggedStore):
    def upsert(self, record):
        raise redis.ConnectionError("down")

    def all(self):
        raise redis.ConnectionError("down")


def test_flag_predicate():
    assert is_flagged(make_result(score=44))
    assert not is_flagged(make_result(score=80))
    assert is_flagged(make_result(score=80, verdict="suspicious"))
    assert is_flagged(make_result(score=80, verdict="likely_deceptive"))
    assert not is_flagged(make_result(score=80, verdict="caution"))


def test_build_record_prefers_agent_issues():
    record = build_record(make_result(verdict="suspicious", ai=make_ai()), 5000)
    assert record.hostname == "shady-deals.example"
    assert record.issues == ["Prices far below market", "No company address"]
    assert record.summary == "Several caution indicators were observed."
    assert record.ai_verdict == "suspicious"
    assert record.ai_confidence == "medium"
    assert record.evidence.domain_age_days == 12
    assert record.evidence.tls_issuer == "O=Let's Encrypt"
    assert record.evidence.redirect_chain == ["http://shady-deals.example/"]
    assert [f.verdict for f in record.findings] == ["bad", "warn"]


def test_build_record_falls_back_to_local_ai():
    record = build_record(make_result(ai=make_ai(score=30, confidence="low")), 5000)
    assert record.issues == ["Limited history"]
    assert record.summary == "Moderate trust indicators."
    assert record.ai_verdict is None
    assert record.ai_confidence == "low"

    negatives_only = make_ai(risk_factors=[])
    assert build_record(make_result(ai=negatives_only), 5000).issues == ["Young domain"]


def test_build_record_caps_lists():
    items = [
        ExplainabilityItem(key=f"k{i}", label=f"Item {i}", verdict="warn", detail="x") for i in range(12)
    ]
    ai = make_ai(risk_factors=[f"risk {i}" for i in range(15)])
    record = build_record(make_result(ai=ai, explainability=items), 5000)
    assert len(record.findings) == 8
    assert len(record.issues) == 10


def test_repeat_sightings_accumulate():
    agg = FlaggedSitesAggregator()
    agg.observe(make_result(score=40), observed_at_ms=1000)
    second = agg.observe(make_result(score=20), observed_at_ms=2000)

    assert second.times_observed == 2
    assert second.first_observed_at_ms == 1000
    assert second.last_observed_at_ms == 2000
    assert second.score == 20


def test_unflagged_results_are_ignored():
    agg = FlaggedSitesAggregator()
    assert agg.observe(make_result(score=90)) is None
    assert agg.query().total == 0


def test_query_filters_sorts_and_paginates():
    clock = FakeClock(0)
    agg = FlaggedSitesAggregator(clock=clock)
    for i, host in enumerate(["alpha-pills.example", "beta-shop.example", "gamma-pills.example"]):
        clock.now = 1000 * (i + 1)
        agg.observe(make_result(url=f"https://{host}/"))

    page = agg.query("PILLS")
    assert page.total == 2
    assert [r.hostname for r in page.items] == ["gamma-pills.example", "alpha-pills.example"]

    page = agg.query(limit=1, offset=1)
    assert page.total == 3
    assert [r.hostname for r in page.items] == ["beta-shop.example"]

    assert agg.query(limit=0).limit == 1
    assert agg.query(limit=5000).limit == 200


def test_query_matches_issues_text():
    agg = FlaggedSitesAggregator()
    agg.observe(make_result(verdict="suspicious"), observed_at_ms=1)
    assert agg.query("company address").total == 1
    assert agg.query("nothing like this").total == 0


def test_redis_store_upsert_and_query(fake_redis):
    store = RedisFlaggedStore(fake_redis)
    agg = FlaggedSitesAggregator(store)
    agg.observe(make_result(url="https://one.example/"), observed_at_ms=1000)
    agg.observe(make_result(url="https://two.example/"), observed_at_ms=2000)
    again = agg.observe(make_result(url="https://one.example/"), observed_at_ms=3000)

    assert again.times_observed == 2
    assert again.first_observed_at_ms == 1000
    assert "trustcheck:flagged:one.example" in fake_redis.values
    assert [r.hostname for r in agg.query().items] == ["one.example", "two.example"]


def test_durable_failures_fall_back_to_memory():
    agg = FlaggedSitesAggregator(BrokenStore())
    record = agg.observe(make_result(), observed_at_ms=1000)
    assert record is not None
    assert isinstance(agg.memory, MemoryFlaggedStore)
    page = agg.query()
    assert [r.hostname for r in page.items] == ["shady-deals.example"]


class FlakyStore(RedisFlaggedStore):
    def __init__(self, client):
        super().__init__(client)
        self.down = True

    def upsert(self, record):
        if self.down:
            raise redis.ConnectionError("down")
        return super().upsert(record)


def test_outage_records_stay_listed_after_recovery(fake_redis):
    store = FlakyStore(fake_redis)
    agg = FlaggedSitesAggregator(store)
    agg.observe(make_result(url="https://during-outage.example/"), observed_at_ms=1000)

    store.down = False
    agg.observe(make_result(url="https://after-outage.example/"), observed_at_ms=2000)

    page = agg.query()
    assert [r.hostname for r in page.items] == ["after-outage.example", "during-outage.example"]
    assert page.total == 2
