"""
Retrieval pipeline: parallel candidate scoring and enhanced search.

Scoring is a pure map over the candidate pool: each item's salience depends
only on the item and the query.  Small pools are scored inline; pools of at
least ``scoring.parallel_threshold`` items are split into chunks and fanned
out to a process pool, then merged by one sequential sort.

``search_enhanced`` pipeline:

    1. detect the question intent
    2. intent -> (entity, slot) card lookup via time travel (current value)
    3. vector search (hybrid similarity x question penalty -> salience)
    4. intent-aware rerank
    5. adaptive cutoff
    6. sparse results: boost items matching query expansion terms
    7. a memory backing the card answer is pinned to the front
    8. truncate to top_k
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from memrecall.adaptive import AdaptiveStats, apply_adaptive_cutoff
from memrecall.config import MemoryConfig, ScoringConfig
from memrecall.query import QueryExpander, QuestionType, QuestionTypeDetector
from memrecall.rerank import Reranker, build_reranker
from memrecall.scoring import (
    compute_salience,
    cosine_similarity,
    hybrid_similarity,
    keyword_overlap,
    question_penalty,
)
from memrecall.store import SQLiteStore
from memrecall.temporal import TemporalQuery
from memrecall.types import MemoryCard, MemoryItem, SalienceScore, _now

logger = logging.getLogger(__name__)

# Intent -> card answering it directly
CARD_SLOTS: Dict[str, Tuple[str, str]] = {
    "where": ("user", "location"),
    "preference": ("user", "preference"),
    "what_kind": ("user", "user_type"),
    "recency": ("user", "user_type"),
}


# ---------------------------------------------------------------------------
# Scoring fan-out (module level so worker processes can unpickle it)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoringParams:
    vector_weight: float
    keyword_weight: float
    question_penalty: float

    @classmethod
    def from_config(cls, config: ScoringConfig) -> ScoringParams:
        return cls(config.vector_weight, config.keyword_weight, config.question_penalty)


def score_item(
    item: MemoryItem,
    query_embedding: Sequence[float],
    query_text: str,
    params: ScoringParams,
    now: datetime,
) -> Optional[SalienceScore]:
    """Salience of one candidate, or None when it has no embedding."""
    if not item.embedding:
        return None
    vector_sim = cosine_similarity(query_embedding, item.embedding)
    hybrid = hybrid_similarity(
        vector_sim,
        keyword_overlap(query_text, item.summary),
        vector_weight=params.vector_weight,
        keyword_weight=params.keyword_weight,
    )
    hybrid *= question_penalty(query_text, item.summary, params.question_penalty)
    score = compute_salience(hybrid, item.reinforcement_count, item.happened_at, now)
    return SalienceScore(item=item, score=score, similarity=vector_sim)


def _score_chunk(
    args: Tuple[List[MemoryItem], List[float], str, ScoringParams, datetime],
) -> List[SalienceScore]:
    items, query_embedding, query_text, params, now = args
    out: List[SalienceScore] = []
    for item in items:
        scored = score_item(item, query_embedding, query_text, params, now)
        if scored is not None:
            out.append(scored)
    return out


def _chunks(items: List[MemoryItem], n: int) -> List[List[MemoryItem]]:
    size = max(1, -(-len(items) // n))
    return [items[i:i + size] for i in range(0, len(items), size)]


def score_candidates(
    items: List[MemoryItem],
    query_embedding: Sequence[float],
    query_text: str,
    config: Optional[ScoringConfig] = None,
    now: Optional[datetime] = None,
) -> List[SalienceScore]:
    """Score every candidate (unsorted); items without embedding are skipped."""
    config = config or ScoringConfig()
    params = ScoringParams.from_config(config)
    now = now or _now()
    query = list(query_embedding)
    if len(items) < config.parallel_threshold:
        return _score_chunk((items, query, query_text, params, now))

    workers = config.max_workers or os.cpu_count() or 1
    jobs = [(chunk, query, query_text, params, now) for chunk in _chunks(items, workers)]
    logger.debug(f"Scoring {len(items)} candidates on {workers} worker processes")
    merged: List[SalienceScore] = []
    with ProcessPoolExecutor(max_workers=workers) as pool:
        for part in pool.map(_score_chunk, jobs):
            merged.extend(part)
    return merged


def rank(results: List[SalienceScore]) -> List[SalienceScore]:
    """Descending by score (stable)."""
    return sorted(results, key=lambda r: r.score, reverse=True)


# ---------------------------------------------------------------------------
# Search engine
# ---------------------------------------------------------------------------

class SearchEngine:
    """Vector search plus the intent-aware enhanced pipeline."""

    def __init__(
        self,
        store: SQLiteStore,
        config: Optional[MemoryConfig] = None,
        *,
        detector: Optional[QuestionTypeDetector] = None,
        expander: Optional[QueryExpander] = None,
        reranker: Optional[Reranker] = None,
    ):
        self.store = store
        self.config = config or MemoryConfig()
        qcfg = self.config.query
        self.detector = detector or QuestionTypeDetector(enabled=qcfg.detection_enabled)
        if expander is None:
            expander = QueryExpander(enabled=qcfg.expansion_enabled)
            for word in qcfg.extra_stopwords:
                expander.add_stopword(word)
        self.expander = expander
        self.reranker = reranker or build_reranker(self.config.rerank)
        self.temporal = TemporalQuery(store)
        self.last_stats: Optional[AdaptiveStats] = None

    def search_by_embedding(
        self,
        user_scope: str,
        query_embedding: Sequence[float],
        query_text: str,
        top_k: int,
    ) -> List[SalienceScore]:
        """Top-k items of a scope by salience.

        Candidates whose cosine similarity reaches ``self_match_threshold``
        are treated as the query itself and dropped.
        """
        items = self.store.list_by_scope(user_scope, with_embedding=True)
        scored = score_candidates(items, query_embedding, query_text, self.config.scoring)
        limit = self.config.scoring.self_match_threshold
        kept = [r for r in scored if r.similarity < limit]
        ranked = rank(kept)[:top_k]
        logger.debug(
            f"Vector search: {len(items)} candidates, {len(scored) - len(kept)} "
            f"self-matches dropped, {len(ranked)} returned"
        )
        return ranked

    def lookup_card(self, user_scope: str, question_type: QuestionType) -> Optional[MemoryCard]:
        """Current card answering *question_type*, if that intent maps to one."""
        slot = CARD_SLOTS.get(question_type)
        if slot is None:
            return None
        return self.temporal.get_current(user_scope, *slot)

    def _card_memory(
        self, user_scope: str, value: str, query_embedding: Sequence[float],
    ) -> Optional[SalienceScore]:
        for item in self.store.list_by_scope(user_scope):
            if value and value in item.summary:
                similarity = (
                    cosine_similarity(query_embedding, item.embedding)
                    if item.embedding else 0.0
                )
                return SalienceScore(item=item, score=1.0, similarity=similarity)
        return None

    def _expansion_boost(
        self, results: List[SalienceScore], query_text: str,
    ) -> List[SalienceScore]:
        terms = [t.lower() for t in self.expander.expansion_terms(query_text)]
        if not terms:
            return results
        boost = self.config.query.expansion_boost
        for r in results:
            summary = r.item.summary.lower()
            if any(t in summary for t in terms):
                r.score *= boost
        logger.debug(f"Expansion boost with terms {terms}")
        return results

    def search_enhanced(
        self,
        user_scope: str,
        query_embedding: Sequence[float],
        query_text: str,
        top_k: Optional[int] = None,
    ) -> List[SalienceScore]:
        """Intent-aware retrieval; at most *top_k* results, best first."""
        top_k = top_k or self.config.search.default_top_k

        question_type = self.detector.detect(query_text)
        logger.info(f"Detected question type {question_type} for query {query_text!r}")

        pinned: Optional[SalienceScore] = None
        card = self.lookup_card(user_scope, question_type)
        if card is not None:
            logger.info(f"Card answer {card.entity}:{card.slot}={card.value!r}")
            pinned = self._card_memory(user_scope, card.value, query_embedding)

        results = self.search_by_embedding(user_scope, query_embedding, query_text, top_k)

        # cutoff expects descending scores, i.e. the order before reranking
        self.last_stats = None
        if self.config.search.use_adaptive_cutoff:
            cut = apply_adaptive_cutoff(results, self.config.adaptive)
            results = cut.results
            self.last_stats = cut.stats

        results = self.reranker.rerank(results, query_text, question_type)

        if len(results) < top_k // 2:
            results = self._expansion_boost(results, query_text)

        if pinned is not None and all(r.item.id != pinned.item.id for r in results):
            results.insert(0, pinned)

        return results[:top_k]
