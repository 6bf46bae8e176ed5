"""
Memory Engine Configuration

Configuration dataclasses for memrecall: store, scoring, deduplication,
adaptive cutoff, reranking, query handling, extraction, schema and search.
Includes load_config() for reading a JSON config file with silent fallback
to compiled defaults.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from memrecall.adaptive import AdaptiveConfig
from memrecall.errors import ValidationError


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and not isinstance(value, typ):
        errors.append(f"{name}: expected {typ.__name__}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


@dataclass
class StoreConfig:
    """SQLite store configuration."""
    db_path: str = ".memory/memrecall.db"
    wal_mode: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        return [] if self.db_path else ["store.db_path: must not be empty"]


@dataclass
class ScoringConfig:
    """Hybrid similarity and parallel scoring configuration."""
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    question_penalty: float = 0.5
    self_match_threshold: float = 0.95
    parallel_threshold: int = 2000
    max_workers: Optional[int] = None

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "scoring.vector_weight",
                     self.vector_weight, 0.0, 1.0, float)
        _check_range(errors, "scoring.keyword_weight",
                     self.keyword_weight, 0.0, 1.0, float)
        _check_range(errors, "scoring.question_penalty",
                     self.question_penalty, 0.0, 1.0, float)
        _check_range(errors, "scoring.self_match_threshold",
                     self.self_match_threshold, 0.0, 1.0, float)
        _check_range(errors, "scoring.parallel_threshold",
                     self.parallel_threshold, 1, 10_000_000, int)
        if self.max_workers is not None:
            _check_range(errors, "scoring.max_workers",
                         self.max_workers, 1, 1024, int)
        return errors


@dataclass
class DedupConfig:
    """Exact and semantic deduplication configuration."""
    near_duplicate_threshold: float = 0.97
    version_threshold: float = 0.85
    candidate_pool: int = 20
    user_prefix: str = "User:"

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "dedup.near_duplicate_threshold",
                     self.near_duplicate_threshold, 0.0, 1.0, float)
        _check_range(errors, "dedup.version_threshold",
                     self.version_threshold, 0.0, 1.0, float)
        _check_range(errors, "dedup.candidate_pool",
                     self.candidate_pool, 1, 1000, int)
        if not errors and self.version_threshold > self.near_duplicate_threshold:
            errors.append(
                "dedup.version_threshold: must be <= near_duplicate_threshold"
            )
        return errors


@dataclass
class RerankConfig:
    """Rule-based reranker weights."""
    kind: Literal["rules", "none"] = "rules"
    enabled: bool = True
    keyword_weight: float = 0.2
    recency_weight: float = 0.15
    profile_weight: float = 0.25

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.kind not in ("rules", "none"):
            errors.append(f"rerank.kind: unknown reranker {self.kind!r}")
        _check_range(errors, "rerank.keyword_weight",
                     self.keyword_weight, 0.0, 1.0, float)
        _check_range(errors, "rerank.recency_weight",
                     self.recency_weight, 0.0, 1.0, float)
        _check_range(errors, "rerank.profile_weight",
                     self.profile_weight, 0.0, 1.0, float)
        return errors


@dataclass
class QueryConfig:
    """Intent detection and query expansion configuration."""
    detection_enabled: bool = True
    expansion_enabled: bool = True
    extra_stopwords: List[str] = field(default_factory=list)
    expansion_boost: float = 1.2
    intent_patterns_path: Optional[str] = None

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "query.expansion_boost",
                     self.expansion_boost, 1.0, 10.0, float)
        return errors


@dataclass
class ExtractionConfig:
    """Structured card extraction configuration."""
    min_confidence: float = 0.3
    extract_on_store: bool = True
    patterns_path: Optional[str] = None
    engine_kind: str = "rules"
    engine_version: Optional[str] = None

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "extraction.min_confidence",
                     self.min_confidence, 0.0, 1.0, float)
        if not self.engine_kind:
            errors.append("extraction.engine_kind: must not be empty")
        if self.engine_version is not None and not self.engine_version:
            errors.append("extraction.engine_version: must not be empty")
        return errors


@dataclass
class SchemaConfig:
    """Predicate schema registry configuration."""
    strict: bool = False
    schemas_path: Optional[str] = None

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        return []


@dataclass
class SearchConfig:
    """Enhanced search configuration."""
    default_top_k: int = 10
    use_adaptive_cutoff: bool = True

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "search.default_top_k",
                     self.default_top_k, 1, 10_000, int)
        return errors


@dataclass
class MemoryConfig:
    """Top-level memrecall configuration."""
    store: StoreConfig = field(default_factory=StoreConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    rerank: RerankConfig = field(default_factory=RerankConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    schema: SchemaConfig = field(default_factory=SchemaConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    _SECTIONS = {
        "store": StoreConfig,
        "scoring": ScoringConfig,
        "dedup": DedupConfig,
        "adaptive": AdaptiveConfig,
        "rerank": RerankConfig,
        "query": QueryConfig,
        "extraction": ExtractionConfig,
        "schema": SchemaConfig,
        "search": SearchConfig,
    }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        for name, section in cls._SECTIONS.items():
            if name in d:
                kwargs[name] = section(**d[name])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        for name in self._SECTIONS:
            errors.extend(getattr(self, name).validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> MemoryConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        MemoryConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = MemoryConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = MemoryConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError, ValueError):
            cfg = MemoryConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
