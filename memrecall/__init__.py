"""
memrecall — structured memory and adaptive retrieval for conversational agents.

Deduplicated, versioned text memories in SQLite; hybrid similarity scoring
with recency and reinforcement decay; adaptive result cutoff; intent-aware
reranking; rule-based entity/slot/value card extraction with time travel.
"""

__version__ = "0.1.0"

from memrecall.types import (
    MemoryItem,
    MemoryCard,
    MemoryEvent,
    SalienceScore,
    EngineStamp,
    TimelineEntry,
    content_hash,
)
from memrecall.errors import (
    MemrecallError,
    ValidationError,
    SchemaError,
    InvalidRange,
    UnknownPredicate,
    BuildError,
    EnrichmentError,
    NotFoundError,
)
from memrecall.config import MemoryConfig, load_config
from memrecall.adaptive import AdaptiveConfig, CutoffStrategy, find_adaptive_cutoff
from memrecall.store import SQLiteStore, SCHEMA_VERSION
from memrecall.manager import MemoryManager
from memrecall.aio import AsyncMemoryManager

__all__ = [
    "__version__",
    "MemoryItem",
    "MemoryCard",
    "MemoryEvent",
    "SalienceScore",
    "EngineStamp",
    "TimelineEntry",
    "content_hash",
    "MemrecallError",
    "ValidationError",
    "SchemaError",
    "InvalidRange",
    "UnknownPredicate",
    "BuildError",
    "EnrichmentError",
    "NotFoundError",
    "MemoryConfig",
    "load_config",
    "AdaptiveConfig",
    "CutoffStrategy",
    "find_adaptive_cutoff",
    "SQLiteStore",
    "SCHEMA_VERSION",
    "MemoryManager",
    "AsyncMemoryManager",
]
