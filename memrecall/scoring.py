"""
Scoring kernel for memory retrieval.

Pure numeric functions, no I/O and no state:
- **cosine_similarity**: embedding similarity.
- **keyword_overlap**: Jaccard similarity of character-bigram sets
  (works for unsegmented CJK text as well as for Latin scripts).
- **hybrid_similarity**: weighted blend of the two.
- **question_penalty**: damps a question matching another question.
- **compute_salience**: similarity x reinforcement x recency decay.
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Optional, Sequence, Set

from memrecall.types import _ensure_utc, _now

EPSILON = 1e-9

VECTOR_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3
DEFAULT_QUESTION_PENALTY = 0.5

# Collapse runs of whitespace
_WS_RE = re.compile(r"\s+")

# ---------------------------------------------------------------------------
# Vector similarity
# ---------------------------------------------------------------------------


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when lengths differ, either vector is empty, or either
    magnitude is (numerically) zero.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denom = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denom < EPSILON:
        return 0.0
    return dot / denom


# ---------------------------------------------------------------------------
# Keyword similarity
# ---------------------------------------------------------------------------


def _bigrams(text: str) -> Set[str]:
    """Character bigrams of lowercased, whitespace-collapsed text.

    A one-character string yields itself as the only gram.
    """
    norm = _WS_RE.sub(" ", text.lower()).strip()
    if not norm:
        return set()
    if len(norm) == 1:
        return {norm}
    return {norm[i:i + 2] for i in range(len(norm) - 1)}


def keyword_overlap(a: str, b: str) -> float:
    """Jaccard similarity of character-bigram sets, in [0, 1].

    J(A, B) = |A ∩ B| / |A ∪ B|; 0.0 if either string is empty.
    """
    grams_a = _bigrams(a)
    grams_b = _bigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    return len(grams_a & grams_b) / len(grams_a | grams_b)


def hybrid_similarity(
    vector_sim: float,
    keyword_sim: float,
    *,
    vector_weight: float = VECTOR_WEIGHT,
    keyword_weight: float = KEYWORD_WEIGHT,
) -> float:
    """Weighted blend: ``0.7 * vector + 0.3 * keyword`` by default."""
    return vector_weight * vector_sim + keyword_weight * keyword_sim


# ---------------------------------------------------------------------------
# Question heuristics
# ---------------------------------------------------------------------------

# Markers matched by substring (punctuation and CJK particles/question words)
QUESTION_MARKERS = (
    "?", "？", "吗", "呢", "什么", "怎么", "哪", "谁", "多少", "为什么", "几",
)

_QUESTION_WORD_RE = re.compile(
    r"\b(?:what|how|where|who|whom|whose|when|why|which)\b", re.IGNORECASE,
)


def count_question_keywords(text: str) -> int:
    """Number of question markers present in *text*.

    Each CJK/punctuation marker counts once if present; English question
    words count per whole-word occurrence.
    """
    if not text:
        return 0
    count = sum(1 for marker in QUESTION_MARKERS if marker in text)
    count += len(_QUESTION_WORD_RE.findall(text))
    return count


def looks_like_question(text: str) -> bool:
    return count_question_keywords(text) > 0


def question_penalty(
    query: str, summary: str, penalty: float = DEFAULT_QUESTION_PENALTY,
) -> float:
    """Multiplier applied to hybrid similarity.

    Returns *penalty* when both the query and the candidate look like
    questions, else 1.0.
    """
    if looks_like_question(query) and looks_like_question(summary):
        return penalty
    return 1.0


# ---------------------------------------------------------------------------
# Salience
# ---------------------------------------------------------------------------


def hours_since(then: datetime, now: Optional[datetime] = None) -> float:
    """Elapsed hours from *then* to *now*, floored at one second."""
    now = _ensure_utc(now) if now is not None else _now()
    seconds = (now - _ensure_utc(then)).total_seconds()
    return max(seconds, 1.0) / 3600.0


def compute_salience(
    similarity: float,
    reinforcement_count: int,
    happened_at: datetime,
    now: Optional[datetime] = None,
) -> float:
    """Composite relevance score.

        salience = sim * (1 + ln(1 + rc)) * 1 / ln(2 + hours)

    Monotone-increasing in reinforcement count, monotone-decreasing in
    elapsed time.
    """
    hours = hours_since(happened_at, now)
    reinforcement = 1.0 + math.log1p(max(reinforcement_count, 0))
    recency = 1.0 / math.log(2.0 + hours)
    return similarity * reinforcement * recency
