"""
Asynchronous facade over MemoryManager.

Store I/O and CPU-bound scoring run in worker threads via
``asyncio.to_thread`` so that an event loop is never blocked.  Search calls
have no side effects and can be cancelled at any await point.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from memrecall.manager import MemoryManager
from memrecall.sufficiency import SufficiencyResult
from memrecall.types import MemoryCard, MemoryItem, SalienceScore, TimelineEntry


class AsyncMemoryManager:
    """Coroutine versions of the MemoryManager operations."""

    def __init__(self, manager: MemoryManager):
        self.manager = manager

    async def upsert(self, item: MemoryItem) -> str:
        return await asyncio.to_thread(self.manager.upsert, item)

    async def semantic_upsert(self, item: MemoryItem, threshold: Optional[float] = None) -> str:
        return await asyncio.to_thread(self.manager.semantic_upsert, item, threshold)

    async def remember(self, user_scope: str, text: str, **kwargs) -> str:
        return await asyncio.to_thread(self.manager.remember, user_scope, text, **kwargs)

    async def search(
        self, user_scope: str, query: str, top_k: Optional[int] = None,
        *, query_embedding: Optional[Sequence[float]] = None,
    ) -> List[SalienceScore]:
        return await asyncio.to_thread(
            self.manager.search, user_scope, query, top_k,
            query_embedding=query_embedding,
        )

    async def search_enhanced(
        self, user_scope: str, query_embedding: Sequence[float],
        query_text: str, top_k: Optional[int] = None,
    ) -> List[SalienceScore]:
        return await asyncio.to_thread(
            self.manager.search_enhanced, user_scope, query_embedding, query_text, top_k,
        )

    async def check_sufficiency(
        self, query: str, results: Sequence[SalienceScore], model: Optional[str] = None,
    ) -> SufficiencyResult:
        return await asyncio.to_thread(self.manager.check_sufficiency, query, results, model)

    async def insert_card(self, card: MemoryCard) -> str:
        return await asyncio.to_thread(self.manager.insert_card, card)

    async def upsert_card(self, card: MemoryCard) -> str:
        return await asyncio.to_thread(self.manager.upsert_card, card)

    async def get_at_time(
        self, user_scope: str, entity: str, slot: str, when: datetime,
    ) -> Optional[MemoryCard]:
        return await asyncio.to_thread(self.manager.get_at_time, user_scope, entity, slot, when)

    async def get_current(self, user_scope: str, entity: str, slot: str) -> Optional[MemoryCard]:
        return await asyncio.to_thread(self.manager.get_current, user_scope, entity, slot)

    async def get_timeline(self, user_scope: str, entity: str, slot: str) -> List[TimelineEntry]:
        return await asyncio.to_thread(self.manager.get_timeline, user_scope, entity, slot)

    async def enrich_memory(self, item: MemoryItem, *, force: bool = False) -> List[str]:
        return await asyncio.to_thread(self.manager.enrich_memory, item, force=force)

    async def enrich_pending(self, user_scope: str) -> Dict[str, List[str]]:
        return await asyncio.to_thread(self.manager.enrich_pending, user_scope)

    async def backfill_embeddings(self, user_scope: str, embed=None) -> int:
        return await asyncio.to_thread(self.manager.backfill_embeddings, user_scope, embed)

    async def load_manifest(self, user_scope: str) -> int:
        return await asyncio.to_thread(self.manager.load_manifest, user_scope)

    async def close(self) -> None:
        await asyncio.to_thread(self.manager.close)
