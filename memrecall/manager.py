"""
Memory Manager — orchestrates storage, extraction and retrieval

Composes the store, deduplicator, extraction engine, schema registry,
enrichment manifest, temporal queries and search engine behind a single
synchronous API.  Embeddings and chat completions come from an optional
``LLMClient``; when none is given, callers pass embeddings explicitly.

Card writes always go through the schema registry: a card whose value fails
validation is rejected before anything is persisted.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Union

from memrecall.config import MemoryConfig, load_config
from memrecall.dedup import Deduplicator, UpsertOutcome
from memrecall.enrichment import EnrichmentManifest, EnrichmentParams
from memrecall.errors import SchemaError
from memrecall.extract import ExtractionEngine
from memrecall.llm import EmbedFn, LLMClient
from memrecall.query import QuestionTypeDetector, load_intent_patterns
from memrecall.schema import SchemaRegistry, load_schemas
from memrecall.search import SearchEngine
from memrecall.store import SQLiteStore
from memrecall.sufficiency import SufficiencyChecker, SufficiencyResult
from memrecall.temporal import TemporalQuery
from memrecall.types import MemoryCard, MemoryItem, SalienceScore, TimelineEntry

logger = logging.getLogger(__name__)


class MemoryManager:
    """Single entry point for storing and recalling memories."""

    def __init__(
        self,
        store: SQLiteStore,
        config: Optional[MemoryConfig] = None,
        llm: Optional[LLMClient] = None,
        *,
        schema: Optional[SchemaRegistry] = None,
        extractor: Optional[ExtractionEngine] = None,
        manifest: Optional[EnrichmentManifest] = None,
    ):
        self.store = store
        self.config = config or MemoryConfig()
        self.llm = llm
        if schema is None:
            scfg = self.config.schema
            extra = load_schemas(scfg.schemas_path) if scfg.schemas_path else None
            schema = SchemaRegistry(extra, strict=scfg.strict)
        self.schema = schema
        self.extractor = extractor or ExtractionEngine.from_config(self.config.extraction)
        self.manifest = manifest or EnrichmentManifest(store)
        self.dedup = Deduplicator(store, self.config.dedup)
        self.temporal = TemporalQuery(store)
        detector = None
        qcfg = self.config.query
        if qcfg.intent_patterns_path:
            detector = QuestionTypeDetector(
                load_intent_patterns(qcfg.intent_patterns_path),
                enabled=qcfg.detection_enabled,
            )
        self.search_engine = SearchEngine(store, self.config, detector=detector)

    @classmethod
    def from_config(
        cls,
        config: Union[MemoryConfig, str, None] = None,
        llm: Optional[LLMClient] = None,
    ) -> MemoryManager:
        """Open the configured store and build a manager around it.

        *config* may be a MemoryConfig, a path to a JSON config file, or
        None for defaults.
        """
        if not isinstance(config, MemoryConfig):
            config = load_config(config)
        return cls(SQLiteStore.from_config(config.store), config, llm)

    def close(self) -> None:
        self.store.close()

    # -- Embeddings ----------------------------------------------------------

    def _embed(self, text: str) -> List[float]:
        if self.llm is None:
            raise ValueError("No LLM client configured: pass an embedding explicitly")
        return self.llm.embed(text)

    def backfill_embeddings(self, user_scope: str, embed: Optional[EmbedFn] = None) -> int:
        """Compute embeddings for items stored without one. Returns the count."""
        fn = embed or self._embed
        filled = 0
        for item in self.store.list_by_scope(user_scope):
            if item.embedding:
                continue
            item.embedding = list(fn(item.summary))
            self.store.update_item(item)
            filled += 1
        logger.info(f"Backfilled {filled} embeddings in scope {user_scope}")
        return filled

    # -- Storing -------------------------------------------------------------

    def _after_store(self, item: MemoryItem, outcome: UpsertOutcome) -> str:
        if self.config.extraction.extract_on_store and outcome.action == "insert":
            self.enrich_memory(item)
        return outcome.item_id

    def upsert(self, item: MemoryItem) -> str:
        """Exact-dedup upsert. Returns the stored (or reinforced) id."""
        return self._after_store(item, self.dedup.upsert(item))

    def semantic_upsert(self, item: MemoryItem, threshold: Optional[float] = None) -> str:
        """Exact, near-duplicate, then version-aware upsert."""
        return self._after_store(item, self.dedup.semantic_upsert(item, threshold))

    def remember(
        self,
        user_scope: str,
        text: str,
        *,
        assistant: bool = False,
        embedding: Optional[Sequence[float]] = None,
        happened_at: Optional[datetime] = None,
    ) -> str:
        """Store a conversation turn as an episodic memory.

        Embeds through the LLM client unless *embedding* is given.
        """
        kwargs = {}
        if happened_at is not None:
            kwargs["happened_at"] = happened_at
        item = MemoryItem.episodic(user_scope, text, assistant=assistant, **kwargs)
        item.embedding = list(embedding) if embedding is not None else self._embed(item.summary)
        return self.semantic_upsert(item)

    def get_item(self, item_id: str) -> Optional[MemoryItem]:
        return self.store.get_item(item_id)

    def delete_item(self, item_id: str) -> bool:
        return self.store.delete_item(item_id)

    # -- Retrieval -----------------------------------------------------------

    def search(
        self,
        user_scope: str,
        query: str,
        top_k: Optional[int] = None,
        *,
        query_embedding: Optional[Sequence[float]] = None,
    ) -> List[SalienceScore]:
        """Enhanced search; the query is embedded unless a vector is given."""
        vector = list(query_embedding) if query_embedding is not None else self._embed(query)
        return self.search_engine.search_enhanced(user_scope, vector, query, top_k)

    def search_enhanced(
        self,
        user_scope: str,
        query_embedding: Sequence[float],
        query_text: str,
        top_k: Optional[int] = None,
    ) -> List[SalienceScore]:
        return self.search_engine.search_enhanced(user_scope, query_embedding, query_text, top_k)

    def search_by_embedding(
        self,
        user_scope: str,
        query_embedding: Sequence[float],
        query_text: str,
        top_k: Optional[int] = None,
    ) -> List[SalienceScore]:
        top_k = top_k or self.config.search.default_top_k
        return self.search_engine.search_by_embedding(
            user_scope, query_embedding, query_text, top_k,
        )

    def check_sufficiency(
        self, query: str, results: Sequence[SalienceScore], model: Optional[str] = None,
    ) -> SufficiencyResult:
        """Ask the chat model whether *results* answer *query*."""
        if self.llm is None:
            raise ValueError("No LLM client configured for sufficiency checks")
        content = "\n".join(r.item.summary for r in results)
        return SufficiencyChecker(self.llm, model).check(query, content)

    # -- Cards ---------------------------------------------------------------

    def insert_card(self, card: MemoryCard) -> str:
        """Validate against the schema, then insert.

        Raises:
            InvalidRange / UnknownPredicate: validation failed (nothing written).
        """
        self.schema.validate_card(card)
        return self.store.insert_card(card)

    def upsert_card(self, card: MemoryCard) -> str:
        """Validate, then update the card sharing its version key or insert."""
        self.schema.validate_card(card)
        return self.store.upsert_card(card)

    def get_current_value(self, user_scope: str, entity: str, slot: str) -> Optional[str]:
        return self.store.get_current_value(user_scope, entity, slot)

    def get_at_time(
        self, user_scope: str, entity: str, slot: str, when: datetime,
    ) -> Optional[MemoryCard]:
        return self.temporal.get_at_time(user_scope, entity, slot, when)

    def get_current(self, user_scope: str, entity: str, slot: str) -> Optional[MemoryCard]:
        return self.temporal.get_current(user_scope, entity, slot)

    def get_timeline(self, user_scope: str, entity: str, slot: str) -> List[TimelineEntry]:
        return self.temporal.get_timeline(user_scope, entity, slot)

    # -- Enrichment ----------------------------------------------------------

    def load_manifest(self, user_scope: str) -> int:
        """Rebuild the manifest cache of a scope from the store."""
        return self.manifest.load_from_store(user_scope)

    def enrich_memory(self, item: MemoryItem, *, force: bool = False) -> List[str]:
        """Extract, validate and persist cards for one memory.

        Skipped (returns []) when the current engine version already
        processed the item, unless *force*.  Cards rejected by the schema
        are dropped with a warning.  A store failure is stamped as a failed
        run and re-raised.
        """
        kind = self.extractor.engine_kind
        version = self.extractor.engine_version
        if not force and not self.manifest.needs_enrichment(
                item.user_scope, item.id, kind, version):
            return []

        params = EnrichmentParams(item.user_scope, item.id, kind, version)
        try:
            for card in self.extractor.extract_from_summary(
                    item.summary, item.user_scope, item.id):
                try:
                    self.schema.validate_card(card)
                except SchemaError as exc:
                    logger.warning(f"Dropped card {card.version_key} from {item.id}: {exc}")
                    continue
                params.card_ids.append(self.store.insert_card(card))
        except sqlite3.Error as exc:
            params.success = False
            params.error_message = str(exc)
            self.manifest.record_enrichment(params)
            raise
        self.manifest.record_enrichment(params)
        logger.info(
            f"Enriched {item.id} with {kind}@{version}: {len(params.card_ids)} cards"
        )
        return params.card_ids

    def enrich_pending(self, user_scope: str) -> Dict[str, List[str]]:
        """Enrich every memory of a scope the current engine has not seen."""
        items = {i.id: i for i in self.store.list_by_scope(user_scope)}
        pending = self.manifest.get_unenriched_memories(
            user_scope, list(items),
            self.extractor.engine_kind, self.extractor.engine_version,
        )
        logger.info(f"Enrichment batch: {len(pending)}/{len(items)} pending in {user_scope}")
        return {mid: self.enrich_memory(items[mid]) for mid in pending}
