"""
Adaptive result cutoff.

Instead of a fixed top-k, the number of results kept is chosen from the
shape of the score distribution.  Strategies:

    absolute  - first index whose score falls below a fixed threshold
    relative  - same, threshold = top score x ratio
    cliff     - first large drop between consecutive scores
    elbow     - Kneedle knee point (max distance from the first-last chord)
    combined  - absolute-min, relative, and cliff checked per index

Scores are min-max normalized before every strategy unless disabled; the
returned index always lies in ``[min(min_results, n), n]``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Sequence

from memrecall.types import SalienceScore

logger = logging.getLogger(__name__)

EPSILON = 1.1920929e-07  # float32 machine epsilon

StrategyName = Literal["absolute", "relative", "cliff", "elbow", "combined"]
VALID_STRATEGIES: set = {"absolute", "relative", "cliff", "elbow", "combined"}

# Knee must rise above this fraction (x sensitivity) of the chord distance
ELBOW_SIGNIFICANCE = 0.05


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class CutoffStrategy:
    """A cutoff strategy and its parameters.

    ``threshold`` is the absolute minimum (absolute, combined), ``ratio``
    the fraction of the top score (relative, combined), ``max_drop_ratio``
    the cliff size (cliff, combined), ``sensitivity`` the elbow bias.
    """

    name: StrategyName = "combined"
    threshold: float = 0.05
    ratio: float = 0.3
    max_drop_ratio: float = 0.8
    sensitivity: float = 1.0

    def __post_init__(self):
        if self.name not in VALID_STRATEGIES:
            raise ValueError(f"Invalid cutoff strategy: {self.name!r}")

    @classmethod
    def absolute(cls, min_score: float) -> CutoffStrategy:
        return cls(name="absolute", threshold=min_score)

    @classmethod
    def relative(cls, min_ratio: float) -> CutoffStrategy:
        return cls(name="relative", ratio=min_ratio)

    @classmethod
    def score_cliff(cls, max_drop_ratio: float) -> CutoffStrategy:
        return cls(name="cliff", max_drop_ratio=max_drop_ratio)

    @classmethod
    def elbow(cls, sensitivity: float = 1.0) -> CutoffStrategy:
        return cls(name="elbow", sensitivity=sensitivity)

    @classmethod
    def combined(
        cls, min_ratio: float, max_drop: float, min_score: float,
    ) -> CutoffStrategy:
        return cls(
            name="combined", ratio=min_ratio,
            max_drop_ratio=max_drop, threshold=min_score,
        )


@dataclass
class AdaptiveConfig:
    """Adaptive retrieval configuration."""
    enabled: bool = True
    strategy: CutoffStrategy = field(default_factory=CutoffStrategy)
    min_results: int = 5
    max_results: int = 100_000
    normalize_scores: bool = True

    def __post_init__(self):
        if isinstance(self.strategy, dict):
            self.strategy = CutoffStrategy(**self.strategy)

    @classmethod
    def with_absolute_threshold(cls, min_score: float) -> AdaptiveConfig:
        return cls(strategy=CutoffStrategy.absolute(min_score))

    @classmethod
    def with_relative_threshold(cls, min_ratio: float) -> AdaptiveConfig:
        return cls(strategy=CutoffStrategy.relative(min_ratio))

    @classmethod
    def with_score_cliff(cls, max_drop_ratio: float) -> AdaptiveConfig:
        return cls(strategy=CutoffStrategy.score_cliff(max_drop_ratio))

    @classmethod
    def with_elbow_detection(cls, sensitivity: float = 1.0) -> AdaptiveConfig:
        return cls(strategy=CutoffStrategy.elbow(sensitivity))

    @classmethod
    def combined(
        cls, min_ratio: float, max_drop: float, min_score: float,
    ) -> AdaptiveConfig:
        return cls(strategy=CutoffStrategy.combined(min_ratio, max_drop, min_score))

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        from memrecall.config import _check_range

        errors: List[str] = []
        _check_range(errors, "adaptive.min_results",
                     self.min_results, 0, 10_000, int)
        _check_range(errors, "adaptive.max_results",
                     self.max_results, 1, 10_000_000, int)
        if not errors and self.max_results < self.min_results:
            errors.append("adaptive.max_results: must be >= min_results")
        s = self.strategy
        _check_range(errors, "adaptive.strategy.threshold", s.threshold, 0.0, 1.0)
        _check_range(errors, "adaptive.strategy.ratio", s.ratio, 0.0, 1.0)
        _check_range(errors, "adaptive.strategy.max_drop_ratio",
                     s.max_drop_ratio, 0.0, 1.0)
        _check_range(errors, "adaptive.strategy.sensitivity",
                     s.sensitivity, 0.0, 10.0)
        return errors


# ---------------------------------------------------------------------------
# Result statistics
# ---------------------------------------------------------------------------


@dataclass
class AdaptiveStats:
    """Statistics from one adaptive cutoff."""
    total_considered: int = 0
    returned: int = 0
    cutoff_index: int = 0
    cutoff_score: Optional[float] = None
    top_score: Optional[float] = None
    cutoff_ratio: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class AdaptiveResult:
    """Results kept by the cutoff, with statistics."""
    results: List[SalienceScore] = field(default_factory=list)
    stats: AdaptiveStats = field(default_factory=AdaptiveStats)


# ---------------------------------------------------------------------------
# Core algorithm
# ---------------------------------------------------------------------------


def normalize_scores(scores: Sequence[float]) -> List[float]:
    """Min-max normalize to [0, 1]; a constant sequence becomes all ones."""
    if not scores:
        return []
    hi = max(scores)
    lo = min(scores)
    span = hi - lo
    if span < EPSILON:
        return [1.0] * len(scores)
    return [(s - lo) / span for s in scores]


def _absolute_cutoff(scores: List[float], min_score: float, min_results: int) -> int:
    for i, score in enumerate(scores):
        if i >= min_results and score < min_score:
            return i
    return len(scores)


def _drop_exceeds(prev: float, curr: float, max_drop_ratio: float) -> bool:
    if prev <= EPSILON:
        return False
    return (prev - curr) / prev > max_drop_ratio


def _cliff_cutoff(scores: List[float], max_drop_ratio: float, min_results: int) -> int:
    for i in range(max(1, min_results), len(scores)):
        if _drop_exceeds(scores[i - 1], scores[i], max_drop_ratio):
            return i
    return len(scores)


def _elbow_cutoff(scores: List[float], sensitivity: float, min_results: int) -> int:
    """Kneedle: point of maximum (weighted) distance from the chord."""
    n = len(scores)
    if n < 3:
        return n

    xs = [i / (n - 1) for i in range(n)]
    x1, y1 = xs[0], scores[0]
    x2, y2 = xs[-1], scores[-1]
    chord = math.hypot(x2 - x1, y2 - y1)
    if chord < EPSILON:
        return n

    max_distance = 0.0
    elbow_index = min_results
    for i in range(min_results, n - 1):
        x0, y0 = xs[i], scores[i]
        distance = abs((y2 - y1) * x0 - (x2 - x1) * y0 + x2 * y1 - y2 * x1) / chord
        # earlier points weigh more as sensitivity grows
        adjusted = distance * (sensitivity * (1.0 - x0) + 1.0)
        if adjusted > max_distance:
            max_distance = adjusted
            elbow_index = i

    if max_distance > ELBOW_SIGNIFICANCE * sensitivity:
        return elbow_index + 1
    return n


def _combined_cutoff(
    scores: List[float],
    relative_threshold: float,
    max_drop_ratio: float,
    absolute_min: float,
    min_results: int,
) -> int:
    relative_min = scores[0] * relative_threshold
    for i in range(min_results, len(scores)):
        score = scores[i]
        if score < absolute_min or score < relative_min:
            return i
        if i > 0 and _drop_exceeds(scores[i - 1], score, max_drop_ratio):
            return i
    return len(scores)


def find_adaptive_cutoff(scores: Sequence[float], config: AdaptiveConfig) -> int:
    """Return how many leading results to keep.

    Args:
        scores: Scores ordered descending.
        config: Strategy and bounds.

    Returns:
        Index in ``[min(min_results, n), n]``; results ``[0, index)`` are kept.
    """
    n = len(scores)
    if n == 0:
        return 0
    if n <= config.min_results:
        return n

    values = normalize_scores(scores) if config.normalize_scores else list(scores)
    s = config.strategy
    if s.name == "absolute":
        cutoff = _absolute_cutoff(values, s.threshold, config.min_results)
    elif s.name == "relative":
        cutoff = _absolute_cutoff(values, values[0] * s.ratio, config.min_results)
    elif s.name == "cliff":
        cutoff = _cliff_cutoff(values, s.max_drop_ratio, config.min_results)
    elif s.name == "elbow":
        cutoff = _elbow_cutoff(values, s.sensitivity, config.min_results)
    else:
        cutoff = _combined_cutoff(
            values, s.ratio, s.max_drop_ratio, s.threshold, config.min_results,
        )

    cutoff = min(cutoff, config.max_results, n)
    return max(cutoff, min(config.min_results, n))


def apply_adaptive_cutoff(
    results: List[SalienceScore], config: AdaptiveConfig,
) -> AdaptiveResult:
    """Truncate ranked *results* at the adaptive cutoff and report stats.

    When the config is disabled the list is only capped at ``max_results``.
    """
    total = len(results)
    if total == 0:
        return AdaptiveResult()

    if config.enabled:
        cutoff = find_adaptive_cutoff([r.score for r in results], config)
    else:
        cutoff = min(total, config.max_results)

    kept = results[:cutoff]
    top = results[0].score
    last = kept[-1].score if kept else None
    ratio: Optional[float] = None
    if last is not None and abs(top) > EPSILON:
        ratio = last / top
    stats = AdaptiveStats(
        total_considered=total,
        returned=len(kept),
        cutoff_index=cutoff,
        cutoff_score=last,
        top_score=top,
        cutoff_ratio=ratio,
    )
    logger.debug(
        f"Adaptive cutoff ({config.strategy.name}): kept {len(kept)}/{total}"
    )
    return AdaptiveResult(results=kept, stats=stats)
