"""
Tests for memrecall.adaptive — distribution-aware result cutoff.
"""

import pytest

from memrecall.adaptive import (
    AdaptiveConfig,
    CutoffStrategy,
    apply_adaptive_cutoff,
    find_adaptive_cutoff,
    normalize_scores,
)
from memrecall.types import MemoryItem, SalienceScore

EXAMPLE = [0.95, 0.90, 0.85, 0.80, 0.75, 0.40, 0.35, 0.30]


def _results(scores):
    return [
        SalienceScore(item=MemoryItem(user_scope="u1", summary=f"m{i}"), score=s)
        for i, s in enumerate(scores)
    ]


# ── Normalization ──────────────────────────────────────────────────────────


class TestNormalize:
    def test_range(self):
        out = normalize_scores([0.2, 0.6, 1.0])
        assert out[0] == pytest.approx(0.0)
        assert out[1] == pytest.approx(0.5)
        assert out[2] == pytest.approx(1.0)

    def test_constant(self):
        assert normalize_scores([0.4, 0.4, 0.4]) == [1.0, 1.0, 1.0]

    def test_empty(self):
        assert normalize_scores([]) == []


# ── Strategies ─────────────────────────────────────────────────────────────


class TestStrategies:
    def test_combined_worked_example(self):
        config = AdaptiveConfig.combined(0.5, 0.3, 0.3)
        assert find_adaptive_cutoff(EXAMPLE, config) == 5

    def test_combined_without_normalization(self):
        config = AdaptiveConfig.combined(0.5, 0.3, 0.3)
        config.normalize_scores = False
        assert find_adaptive_cutoff(EXAMPLE, config) == 5

    def test_absolute(self):
        config = AdaptiveConfig.with_absolute_threshold(0.5)
        config.normalize_scores = False
        config.min_results = 2
        assert find_adaptive_cutoff([0.9, 0.8, 0.6, 0.4, 0.3], config) == 3

    def test_relative(self):
        config = AdaptiveConfig.with_relative_threshold(0.5)
        config.normalize_scores = False
        config.min_results = 1
        assert find_adaptive_cutoff([1.0, 0.8, 0.6, 0.4], config) == 3

    def test_cliff(self):
        config = AdaptiveConfig.with_score_cliff(0.5)
        config.normalize_scores = False
        config.min_results = 1
        assert find_adaptive_cutoff([1.0, 0.9, 0.2, 0.19, 0.18], config) == 2

    def test_elbow_knee(self):
        config = AdaptiveConfig.with_elbow_detection()
        config.min_results = 1
        scores = [1.0, 0.98, 0.96, 0.2, 0.18, 0.16, 0.15]
        assert find_adaptive_cutoff(scores, config) == 4

    def test_elbow_linear_keeps_all(self):
        config = AdaptiveConfig.with_elbow_detection()
        config.min_results = 1
        scores = [1.0, 0.8, 0.6, 0.4, 0.2, 0.0]
        assert find_adaptive_cutoff(scores, config) == len(scores)

    def test_invalid_strategy_name(self):
        with pytest.raises(ValueError):
            CutoffStrategy(name="magic")


# ── Bounds ─────────────────────────────────────────────────────────────────


class TestBounds:
    def test_empty(self):
        assert find_adaptive_cutoff([], AdaptiveConfig()) == 0

    def test_fewer_than_min_results(self):
        assert find_adaptive_cutoff([0.9, 0.1, 0.01], AdaptiveConfig()) == 3

    def test_min_results_respected(self):
        config = AdaptiveConfig.with_absolute_threshold(0.5)
        config.normalize_scores = False
        config.min_results = 2
        assert find_adaptive_cutoff([0.9, 0.1, 0.1], config) == 2

    def test_max_results_caps(self):
        config = AdaptiveConfig(min_results=1, max_results=3)
        assert find_adaptive_cutoff([0.9] * 10, config) == 3

    @pytest.mark.parametrize("strategy", [
        CutoffStrategy.absolute(0.5),
        CutoffStrategy.relative(0.7),
        CutoffStrategy.score_cliff(0.2),
        CutoffStrategy.elbow(2.0),
        CutoffStrategy.combined(0.5, 0.3, 0.3),
    ])
    @pytest.mark.parametrize("scores", [
        EXAMPLE,
        [0.5] * 12,
        [1.0, 0.01, 0.009, 0.008, 0.007, 0.006, 0.005],
        [0.9, 0.85, 0.8],
    ])
    def test_index_within_range(self, strategy, scores):
        config = AdaptiveConfig(strategy=strategy, min_results=2)
        cutoff = find_adaptive_cutoff(scores, config)
        assert min(2, len(scores)) <= cutoff <= len(scores)


# ── Config ─────────────────────────────────────────────────────────────────


class TestConfig:
    def test_strategy_from_dict(self):
        config = AdaptiveConfig(strategy={"name": "cliff", "max_drop_ratio": 0.4})
        assert config.strategy.name == "cliff"
        assert config.strategy.max_drop_ratio == 0.4

    def test_validate_ok(self):
        assert AdaptiveConfig().validate() == []

    def test_validate_errors(self):
        config = AdaptiveConfig(min_results=10, max_results=5)
        config.strategy.ratio = 2.0
        errors = config.validate()
        assert any("max_results" in e for e in errors)
        assert any("ratio" in e for e in errors)


# ── Apply ──────────────────────────────────────────────────────────────────


class TestApply:
    def test_truncates_and_reports(self):
        out = apply_adaptive_cutoff(_results(EXAMPLE), AdaptiveConfig.combined(0.5, 0.3, 0.3))
        assert len(out.results) == 5
        assert out.stats.total_considered == 8
        assert out.stats.returned == 5
        assert out.stats.top_score == pytest.approx(0.95)
        assert out.stats.cutoff_score == pytest.approx(0.75)
        assert out.stats.cutoff_ratio == pytest.approx(0.75 / 0.95)

    def test_disabled_only_caps(self):
        config = AdaptiveConfig(enabled=False, max_results=6)
        out = apply_adaptive_cutoff(_results(EXAMPLE), config)
        assert len(out.results) == 6

    def test_empty(self):
        out = apply_adaptive_cutoff([], AdaptiveConfig())
        assert out.results == []
        assert out.stats.returned == 0
