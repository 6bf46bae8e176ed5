"""
Tests for memrecall.config — defaults, JSON loading, validation.
"""

import json

import pytest

from memrecall.config import (
    DedupConfig,
    MemoryConfig,
    ScoringConfig,
    load_config,
)
from memrecall.errors import ValidationError


# ── Defaults ───────────────────────────────────────────────────────────────


class TestDefaults:
    def test_scoring(self):
        cfg = ScoringConfig()
        assert cfg.vector_weight == 0.7
        assert cfg.keyword_weight == 0.3
        assert cfg.question_penalty == 0.5
        assert cfg.self_match_threshold == 0.95

    def test_dedup(self):
        cfg = DedupConfig()
        assert cfg.near_duplicate_threshold == 0.97
        assert cfg.version_threshold == 0.85

    def test_all_sections_valid(self):
        assert MemoryConfig().validate() == []


# ── Loading ────────────────────────────────────────────────────────────────


class TestLoadConfig:
    def test_none_gives_defaults(self):
        assert load_config(None) == MemoryConfig()

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(str(tmp_path / "nope.json")) == MemoryConfig()

    def test_malformed_json_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_config(str(path)) == MemoryConfig()

    def test_unknown_key_gives_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scoring": {"bogus": 1}}), encoding="utf-8")
        assert load_config(str(path)) == MemoryConfig()

    def test_partial_override(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "scoring": {"question_penalty": 0.25},
            "adaptive": {"min_results": 3, "strategy": {"name": "elbow"}},
            "query": {"extra_stopwords": ["please"]},
        }), encoding="utf-8")
        cfg = load_config(str(path))
        assert cfg.scoring.question_penalty == 0.25
        assert cfg.scoring.vector_weight == 0.7
        assert cfg.adaptive.min_results == 3
        assert cfg.adaptive.strategy.name == "elbow"
        assert cfg.query.extra_stopwords == ["please"]
        assert cfg.dedup == DedupConfig()


# ── Validation ─────────────────────────────────────────────────────────────


class TestValidation:
    def test_out_of_range(self):
        cfg = MemoryConfig()
        cfg.scoring.vector_weight = 1.5
        errors = cfg.validate()
        assert len(errors) == 1
        assert "scoring.vector_weight" in errors[0]

    def test_wrong_type(self):
        cfg = MemoryConfig()
        cfg.search.default_top_k = "ten"
        assert any("expected int" in e for e in cfg.validate())

    def test_threshold_ordering(self):
        cfg = DedupConfig(near_duplicate_threshold=0.8, version_threshold=0.9)
        assert any("version_threshold" in e for e in cfg.validate())

    def test_unknown_reranker(self):
        cfg = MemoryConfig()
        cfg.rerank.kind = "neural"
        assert any("rerank.kind" in e for e in cfg.validate())

    def test_strict_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"extraction": {"min_confidence": 2.0}}), encoding="utf-8")
        with pytest.raises(ValidationError, match="extraction.min_confidence"):
            load_config(str(path), strict=True)

    def test_strict_ok(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"search": {"default_top_k": 20}}), encoding="utf-8")
        assert load_config(str(path), strict=True).search.default_top_k == 20

    def test_validation_error_is_value_error(self):
        assert issubclass(ValidationError, ValueError)
