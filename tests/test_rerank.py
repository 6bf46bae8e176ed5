"""
Tests for memrecall.rerank — intent-aware boosts and two-tier ordering.
"""

from datetime import datetime, timedelta, timezone

import pytest

from memrecall.config import RerankConfig
from memrecall.rerank import NoOpReranker, RuleBasedReranker, build_reranker
from memrecall.types import MemoryItem, SalienceScore


def _r(summary, score, hours_ago=1.0):
    when = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    item = MemoryItem(user_scope="u1", summary=summary, happened_at=when)
    return SalienceScore(item=item, score=score)


@pytest.fixture
def reranker():
    return RuleBasedReranker()


# ── Intent boosts ──────────────────────────────────────────────────────────


class TestBoosts:
    def test_where_prefers_location(self, reranker):
        results = [
            _r("User: 我喜欢咖啡", 0.55),
            _r("User: 我住西城", 0.50),
        ]
        ranked = reranker.rerank(results, "我住哪")
        assert "住西城" in ranked[0].item.summary

    def test_what_kind_profile_over_question(self, reranker):
        results = [
            _r("User: 我是什么类型的用户?", 0.9),
            _r("User: 我是高级用户", 0.5),
        ]
        ranked = reranker.rerank(results, "我是什么用户")
        assert ranked[0].item.summary == "User: 我是高级用户"

    def test_profile_boost_value(self, reranker):
        r = _r("User: 我是高级用户", 0.5)
        assert reranker.boost_for(r, "what_kind", "") == pytest.approx(0.25)

    def test_profession_adds(self, reranker):
        r = _r("User: 我是开发用户", 0.5)
        assert reranker.boost_for(r, "what_kind", "") == pytest.approx(0.25 + 0.24)

    def test_location_counts_matches(self, reranker):
        r = _r("User: 我居住的城市是北京", 0.5)
        # 住, 居住, 城市
        assert reranker.boost_for(r, "where", "") == pytest.approx(0.6)

    def test_preference(self, reranker):
        assert reranker.boost_for(_r("I like tea", 1.0), "preference", "") == pytest.approx(0.3)

    def test_count_digits(self, reranker):
        assert reranker.boost_for(_r("I own 3 bikes", 1.0), "how_many", "") == pytest.approx(0.2)
        assert reranker.boost_for(_r("I own bikes", 1.0), "how_many", "") == 0.0

    def test_recency_decays(self, reranker):
        fresh = reranker.boost_for(_r("x", 1.0, hours_ago=0.0), "recency", "")
        old = reranker.boost_for(_r("x", 1.0, hours_ago=240.0), "recency", "")
        assert fresh == pytest.approx(0.15, rel=1e-3)
        assert old < fresh

    def test_generic_keyword_overlap(self, reranker):
        r = _r("paris weather report", 1.0)
        assert reranker.boost_for(r, "generic", "paris weather report") == pytest.approx(0.2)
        assert reranker.boost_for(r, "generic", "zzz") == 0.0

    def test_score_multiplied(self, reranker):
        results = reranker.rerank([_r("User: 我住西城", 0.5)], "我住哪")
        assert results[0].score == pytest.approx(0.5 * 1.2)


# ── Ordering ───────────────────────────────────────────────────────────────


class TestOrdering:
    def test_facts_before_questions(self, reranker):
        results = [
            _r("where is it?", 0.99),
            _r("it is here", 0.10),
        ]
        ranked = reranker.rerank(results, "hello", "generic")
        assert ranked[0].item.summary == "it is here"

    def test_recency_breaks_ties(self, reranker):
        results = [_r("older fact", 0.5, hours_ago=10), _r("newer fact", 0.5, hours_ago=1)]
        ranked = reranker.rerank(results, "zzz", "generic")
        assert ranked[0].item.summary == "newer fact"

    def test_disabled_keeps_order(self):
        reranker = RuleBasedReranker(RerankConfig(enabled=False))
        results = [_r("where?", 0.9), _r("fact", 0.1)]
        assert [r.item.summary for r in reranker.rerank(results, "x")] == ["where?", "fact"]


class TestFactory:
    def test_rules(self):
        assert isinstance(build_reranker(RerankConfig()), RuleBasedReranker)

    def test_none(self):
        reranker = build_reranker(RerankConfig(kind="none"))
        assert isinstance(reranker, NoOpReranker)
        results = [_r("a", 0.1), _r("b", 0.9)]
        assert reranker.rerank(results, "q") == results
