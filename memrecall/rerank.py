"""
Result reranking after vector search.

The rule-based reranker detects the question intent and multiplies each
result's score by ``1 + boost``, where the boost comes from keyword
categories (profile, location, preference, count, profession) or a recency
decay.  Results are then re-sorted in two tiers: fact-like summaries
always precede question-like summaries, and within a tier by boosted score
(ties broken by recency).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from memrecall.config import RerankConfig
from memrecall.query import QuestionType, QuestionTypeDetector
from memrecall.scoring import keyword_overlap, looks_like_question
from memrecall.types import SalienceScore, _ensure_utc, _now

logger = logging.getLogger(__name__)

# ── Keyword categories ──────────────────────────────────────────────────

PROFILE_KEYWORDS = ("用户", "user", "类型", "type", "角色", "role", "身份", "identity")

PROFESSION_KEYWORDS = (
    "工作", "就职", "公司", "company", "work", "job", "职业", "profession",
    "工程师", "engineer", "开发", "developer",
)

LOCATION_KEYWORDS = (
    "住", "居住", "位置", "location", "地点", "place", "城市", "city",
    "地址", "address",
)

PREFERENCE_KEYWORDS = (
    "喜欢", "爱", "偏好", "prefer", "like", "love", "爱好", "hobby",
    "感兴趣", "interest",
)

COUNT_KEYWORDS = ("个", "只", "次", "数量", "count", "number", "total", "一共")

# Generic intents get a keyword boost above this overlap
_OVERLAP_THRESHOLD = 0.3


class Reranker(ABC):
    """Interface for result rerankers (selected at runtime from config)."""

    @abstractmethod
    def rerank(
        self, results: List[SalienceScore], query: str,
        question_type: Optional[QuestionType] = None,
    ) -> List[SalienceScore]:
        """Return *results* re-scored and re-ordered for *query*."""


class NoOpReranker(Reranker):
    """Leaves results untouched."""

    def rerank(self, results, query, question_type=None):
        return list(results)


class RuleBasedReranker(Reranker):
    """Question-intent-aware boosts with a fact-before-question ordering."""

    def __init__(
        self,
        config: Optional[RerankConfig] = None,
        detector: Optional[QuestionTypeDetector] = None,
    ):
        self.config = config or RerankConfig()
        self.detector = detector or QuestionTypeDetector()

    # -- Boost terms -------------------------------------------------------

    def _profile_boost(self, summary: str) -> float:
        if any(k in summary for k in PROFILE_KEYWORDS):
            return self.config.profile_weight
        return 0.0

    def _profession_boost(self, summary: str) -> float:
        if any(k in summary for k in PROFESSION_KEYWORDS):
            return self.config.keyword_weight * 1.2
        return 0.0

    def _location_boost(self, summary: str) -> float:
        matches = sum(1 for k in LOCATION_KEYWORDS if k in summary)
        return matches * self.config.keyword_weight

    def _preference_boost(self, summary: str) -> float:
        if any(k in summary for k in PREFERENCE_KEYWORDS):
            return self.config.keyword_weight * 1.5
        return 0.0

    def _count_boost(self, summary: str) -> float:
        has_digits = any(ch.isascii() and ch.isdigit() for ch in summary)
        if has_digits or any(k in summary for k in COUNT_KEYWORDS):
            return self.config.keyword_weight
        return 0.0

    def _recency_boost(self, happened_at: datetime, now: datetime) -> float:
        hours = max((now - _ensure_utc(happened_at)).total_seconds() / 3600.0, 0.0)
        return 24.0 / (hours + 24.0) * self.config.recency_weight

    def boost_for(
        self, result: SalienceScore, question_type: QuestionType, query: str,
        now: Optional[datetime] = None,
    ) -> float:
        """Non-negative boost for one result under *question_type*."""
        summary = result.item.summary.lower()
        if question_type == "what_kind":
            return self._profile_boost(summary) + self._profession_boost(summary)
        if question_type == "where":
            return self._location_boost(summary)
        if question_type == "preference":
            return self._preference_boost(summary)
        if question_type == "how_many":
            return self._count_boost(summary)
        if question_type == "recency":
            return self._recency_boost(result.item.happened_at, now or _now())
        if keyword_overlap(query, result.item.summary) > _OVERLAP_THRESHOLD:
            return self.config.keyword_weight
        return 0.0

    # -- Reranking ---------------------------------------------------------

    def rerank(
        self, results: List[SalienceScore], query: str,
        question_type: Optional[QuestionType] = None,
    ) -> List[SalienceScore]:
        if not self.config.enabled:
            return list(results)
        qt = question_type or self.detector.detect(query)
        now = _now()
        for r in results:
            boost = self.boost_for(r, qt, query, now)
            if boost > 0:
                r.score *= 1.0 + boost

        def sort_key(r: SalienceScore):
            return (
                looks_like_question(r.item.summary),
                -r.score,
                -r.item.happened_at.timestamp(),
            )

        ranked = sorted(results, key=sort_key)
        logger.debug(f"Reranked {len(ranked)} results for intent {qt}")
        return ranked


def build_reranker(config: RerankConfig) -> Reranker:
    """Reranker selected by configuration."""
    if config.kind == "none":
        return NoOpReranker()
    return RuleBasedReranker(config)
