"""
Deduplication & Semantic Versioning

Decides, for an incoming memory item, between three store actions:

- **reinforce**: an equal content hash already exists in the scope, or a
  candidate is a near-identical paraphrase (cosine > near-duplicate
  threshold).  The existing row's reinforcement count goes up.
- **version**: the best candidate is close (cosine > version threshold) but
  not identical.  Its current state is archived as a revision, then its
  summary, embedding, event time and extra payload are overwritten,
  ``version`` is bumped, ``parent_version_id`` points at the revision, and
  the first version's ``content_hash`` is kept.
- **insert**: nothing close enough; the item is stored fresh.

Every call performs exactly one store mutation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple

from memrecall.config import DedupConfig
from memrecall.scoring import cosine_similarity
from memrecall.store import SQLiteStore
from memrecall.types import MemoryItem

logger = logging.getLogger(__name__)

UpsertAction = Literal["reinforce", "version", "insert"]


@dataclass
class UpsertOutcome:
    """Which action an upsert took and on which row."""
    action: UpsertAction
    item_id: str
    similarity: Optional[float] = None


class Deduplicator:
    """Exact and semantic upsert against a SQLiteStore.

    Both upserts return the UpsertOutcome of the single mutation they made.
    """

    def __init__(self, store: SQLiteStore, config: Optional[DedupConfig] = None):
        self.store = store
        self.config = config or DedupConfig()

    def _same_speaker(self, a: MemoryItem, b: MemoryItem) -> bool:
        prefix = self.config.user_prefix
        return a.summary.startswith(prefix) == b.summary.startswith(prefix)

    def _reinforce_exact(self, item: MemoryItem) -> Optional[UpsertOutcome]:
        existing = self.store.find_by_content_hash(item.user_scope, item.content_hash)
        if existing is None:
            return None
        self.store.reinforce_item(existing.id)
        logger.info(f"Exact duplicate of {existing.id}, reinforced")
        return UpsertOutcome("reinforce", existing.id, 1.0)

    def upsert(self, item: MemoryItem) -> UpsertOutcome:
        """Reinforce an equal-hash item in scope, else insert."""
        reinforced = self._reinforce_exact(item)
        if reinforced is not None:
            return reinforced
        self.store.insert_item(item)
        logger.info(f"Inserted {item.id} in scope {item.user_scope}")
        return UpsertOutcome("insert", item.id)

    def candidates(self, item: MemoryItem) -> List[Tuple[float, MemoryItem]]:
        """Nearest same-speaker items in scope, best first (up to candidate_pool)."""
        if not item.embedding:
            return []
        scored = [
            (cosine_similarity(item.embedding, other.embedding), other)
            for other in self.store.list_by_scope(item.user_scope, with_embedding=True)
            if other.id != item.id and self._same_speaker(item, other)
        ]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return scored[: self.config.candidate_pool]

    def semantic_upsert(
        self, item: MemoryItem, threshold: Optional[float] = None,
    ) -> UpsertOutcome:
        """Exact, then embedding-based, deduplication.

        Args:
            item: Incoming memory.
            threshold: Version threshold; defaults to
                ``config.version_threshold``.
        """
        reinforced = self._reinforce_exact(item)
        if reinforced is not None:
            return reinforced

        threshold = self.config.version_threshold if threshold is None else threshold
        pool = self.candidates(item)
        if pool:
            similarity, best = pool[0]
            if similarity > self.config.near_duplicate_threshold:
                self.store.reinforce_item(best.id)
                logger.info(
                    f"Near-duplicate of {best.id} (sim={similarity:.3f}), reinforced"
                )
                return UpsertOutcome("reinforce", best.id, similarity)
            if similarity > threshold:
                self._new_version(best, item)
                logger.info(
                    f"New version v{best.version} of {best.id} (sim={similarity:.3f})"
                )
                return UpsertOutcome("version", best.id, similarity)

        self.store.insert_item(item)
        logger.info(f"Inserted {item.id} in scope {item.user_scope}")
        return UpsertOutcome("insert", item.id)

    def _new_version(self, existing: MemoryItem, incoming: MemoryItem) -> None:
        previous = MemoryItem.from_dict(existing.to_dict())
        # content_hash keeps the first version's digest
        existing.summary = incoming.summary
        existing.embedding = incoming.embedding
        existing.happened_at = incoming.happened_at
        existing.extra = incoming.extra
        existing.version += 1
        existing.version_relation = "updates"
        self.store.version_item(existing, previous)
