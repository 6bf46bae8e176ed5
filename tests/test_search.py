"""
Tests for memrecall.search — candidate scoring and the enhanced pipeline.
"""

from datetime import datetime, timedelta, timezone

import pytest

from memrecall import search
from memrecall.config import MemoryConfig, ScoringConfig
from memrecall.search import SearchEngine, rank, score_candidates, score_item, ScoringParams
from memrecall.store import SQLiteStore
from memrecall.types import MemoryCard, MemoryItem

QUERY = [1.0, 0.0, 0.0]
NOW = datetime.now(timezone.utc)


@pytest.fixture
def store():
    s = SQLiteStore(":memory:")
    yield s
    s.close()


def _add(store, text, embedding=None, scope="u1", **kw):
    item = MemoryItem.episodic(scope, text, embedding=embedding, **kw)
    store.insert_item(item)
    return item


@pytest.fixture
def seeded(store):
    """Three memories, all below the self-match similarity to QUERY."""
    _add(store, "我住西城", [1.0, 0.5, 0.0])
    _add(store, "我喜欢咖啡", [1.0, 0.4, 0.1])
    _add(store, "我住哪里？", [1.0, 0.45, 0.0])
    return store


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class TestScoring:
    def test_item_without_embedding(self):
        item = MemoryItem("u1", "x")
        params = ScoringParams.from_config(ScoringConfig())
        assert score_item(item, QUERY, "q", params, NOW) is None

    def test_similarity_is_raw_cosine(self):
        item = MemoryItem("u1", "x", embedding=[1.0, 1.0, 0.0])
        params = ScoringParams.from_config(ScoringConfig())
        scored = score_item(item, QUERY, "q", params, NOW)
        assert scored.similarity == pytest.approx(2 ** -0.5)

    def test_question_penalized(self):
        params = ScoringParams.from_config(ScoringConfig())
        emb = [1.0, 0.5, 0.0]
        fact = score_item(MemoryItem("u1", "I live here", embedding=emb), QUERY, "where?", params, NOW)
        question = score_item(MemoryItem("u1", "where is it?", embedding=emb), QUERY, "where?", params, NOW)
        assert question.score < fact.score

    def test_reinforcement_raises_score(self):
        params = ScoringParams.from_config(ScoringConfig())
        emb = [1.0, 0.5, 0.0]
        plain = score_item(MemoryItem("u1", "a", embedding=emb), QUERY, "q", params, NOW)
        strong = score_item(
            MemoryItem("u1", "a", embedding=emb, reinforcement_count=3), QUERY, "q", params, NOW,
        )
        assert strong.score > plain.score

    def test_parallel_matches_sequential(self):
        items = [
            MemoryItem("u1", f"m{i}", embedding=[1.0, i / 10, 0.0],
                       happened_at=NOW - timedelta(hours=i))
            for i in range(6)
        ]
        items.append(MemoryItem("u1", "no vector"))
        sequential = score_candidates(items, QUERY, "q", ScoringConfig(), NOW)
        parallel = score_candidates(
            items, QUERY, "q", ScoringConfig(parallel_threshold=2, max_workers=2), NOW,
        )
        assert len(sequential) == 6
        seq = {r.item.id: r.score for r in sequential}
        par = {r.item.id: r.score for r in parallel}
        assert seq.keys() == par.keys()
        for key in seq:
            assert par[key] == pytest.approx(seq[key])

    def test_rank_descending(self):
        items = score_candidates(
            [MemoryItem("u1", "a", embedding=[1.0, 0.9, 0.0]),
             MemoryItem("u1", "b", embedding=[1.0, 0.1, 0.0])],
            QUERY, "q",
        )
        assert [r.item.summary for r in rank(items)] == ["b", "a"]


# ---------------------------------------------------------------------------
# Vector search
# ---------------------------------------------------------------------------


class TestSearchByEmbedding:
    def test_top_k(self, seeded):
        engine = SearchEngine(seeded)
        assert len(engine.search_by_embedding("u1", QUERY, "q", 2)) == 2

    def test_self_match_dropped(self, seeded):
        _add(seeded, "我住哪", list(QUERY))
        engine = SearchEngine(seeded)
        results = engine.search_by_embedding("u1", QUERY, "我住哪", 10)
        assert all(r.item.summary != "User: 我住哪" for r in results)
        assert len(results) == 3

    def test_scope_isolation(self, seeded):
        _add(seeded, "other scope", [1.0, 0.5, 0.0], scope="u2")
        engine = SearchEngine(seeded)
        results = engine.search_by_embedding("u2", QUERY, "q", 10)
        assert [r.item.summary for r in results] == ["User: other scope"]

    def test_items_without_embedding_skipped(self, seeded):
        _add(seeded, "没有向量")
        engine = SearchEngine(seeded)
        assert len(engine.search_by_embedding("u1", QUERY, "q", 10)) == 3


# ---------------------------------------------------------------------------
# Enhanced search
# ---------------------------------------------------------------------------


class TestSearchEnhanced:
    def test_where_location_first(self, seeded):
        engine = SearchEngine(seeded)
        results = engine.search_enhanced("u1", QUERY, "我住哪")
        assert "住西城" in results[0].item.summary
        # the question-form memory sinks to the end
        assert results[-1].item.summary == "User: 我住哪里？"

    def test_card_memory_pinned(self, seeded):
        _add(seeded, "我的地址是海淀")
        seeded.insert_card(MemoryCard(
            "u1", "user", "location", "海淀",
        ).with_event_date(NOW - timedelta(days=1)))
        engine = SearchEngine(seeded)
        results = engine.search_enhanced("u1", QUERY, "我住哪")
        assert results[0].item.summary == "User: 我的地址是海淀"

    def test_card_uses_current_value(self, seeded):
        _add(seeded, "我以前住朝阳")
        seeded.insert_card(MemoryCard("u1", "user", "location", "朝阳").with_event_date(
            NOW - timedelta(days=30)))
        seeded.insert_card(MemoryCard(
            "u1", "user", "location", "西城", version_relation="updates",
        ).with_event_date(NOW - timedelta(days=2)))
        engine = SearchEngine(seeded)
        results = engine.search_enhanced("u1", QUERY, "我住哪")
        assert results[0].item.summary == "User: 我住西城"
        assert all("朝阳" not in r.item.summary for r in results)

    def test_generic_query_has_no_card(self, seeded):
        engine = SearchEngine(seeded)
        assert engine.lookup_card("u1", "generic") is None

    def test_top_k_respected(self, seeded):
        engine = SearchEngine(seeded)
        assert len(engine.search_enhanced("u1", QUERY, "咖啡", top_k=1)) == 1

    def test_stats_recorded(self, seeded):
        engine = SearchEngine(seeded)
        engine.search_enhanced("u1", QUERY, "咖啡")
        assert engine.last_stats is not None
        assert engine.last_stats.total_considered == 3

    def test_adaptive_disabled(self, seeded):
        config = MemoryConfig()
        config.search.use_adaptive_cutoff = False
        engine = SearchEngine(seeded, config)
        engine.search_enhanced("u1", QUERY, "咖啡")
        assert engine.last_stats is None

    def test_cutoff_sees_descending_scores(self, seeded, monkeypatch):
        seen = []
        real = search.apply_adaptive_cutoff

        def recording(results, config):
            seen.append([r.score for r in results])
            return real(results, config)

        monkeypatch.setattr(search, "apply_adaptive_cutoff", recording)
        results = SearchEngine(seeded).search_enhanced("u1", QUERY, "我住哪")
        assert seen[0] == sorted(seen[0], reverse=True)
        # the reranked output puts the question-form memory last
        assert results[-1].item.summary == "User: 我住哪里？"

    def test_expansion_boost_on_sparse_results(self, seeded):
        query = "我 住 哪"
        engine = SearchEngine(seeded)
        plain = {r.item.summary: r.score for r in engine.search_by_embedding("u1", QUERY, query, 10)}
        config = MemoryConfig()
        config.rerank.kind = "none"
        engine = SearchEngine(seeded, config)
        boosted = {r.item.summary: r.score for r in engine.search_enhanced("u1", QUERY, query)}
        assert boosted["User: 我住西城"] == pytest.approx(plain["User: 我住西城"] * 1.2, rel=1e-3)
        assert boosted["User: 我喜欢咖啡"] == pytest.approx(plain["User: 我喜欢咖啡"], rel=1e-3)

    def test_empty_scope(self, store):
        assert SearchEngine(store).search_enhanced("u1", QUERY, "我住哪") == []
