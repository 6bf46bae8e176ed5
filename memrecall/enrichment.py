"""
Enrichment Manifest — incremental, idempotent extraction bookkeeping

Tracks which (memory, engine kind, engine version) combinations have been
processed.  A stamp counts whether the run succeeded or failed, so a rule
set that keeps failing on a memory is not retried until its version changes.

The in-memory cache (scope -> memory id -> stamps) is a read-through,
write-through mirror of the ``enrichment_records`` table: the first access to
a scope loads its persisted stamps, and ``load_from_store`` rebuilds a scope
at any time.  It is guarded by a reader/writer lock: any number of
concurrent readers, one exclusive writer.

If a writer fails while holding the lock, the cache is marked *poisoned*:
readers then answer conservatively (``needs_enrichment`` -> True, no stamps)
and writers raise EnrichmentError until the cache is reloaded.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Protocol, Sequence

from memrecall.errors import EnrichmentError
from memrecall.types import EngineStamp, _now

logger = logging.getLogger(__name__)

EnrichmentCache = Dict[str, Dict[str, List[EngineStamp]]]


class ReadWriteLock:
    """Many readers or one writer; readers never block each other."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class EnrichmentParams:
    """Everything needed to record one enrichment run."""

    user_scope: str
    memory_id: str
    engine_kind: str
    engine_version: str
    card_ids: List[str] = field(default_factory=list)
    success: bool = True
    error_message: Optional[str] = None

    def to_stamp(self) -> EngineStamp:
        return EngineStamp(
            engine_kind=self.engine_kind,
            engine_version=self.engine_version,
            enriched_at=_now(),
            card_ids=list(self.card_ids),
            success=self.success,
            error_message=self.error_message,
        )


class EnrichmentStore(Protocol):
    """Persistence used by the manifest (implemented by SQLiteStore)."""

    def save_enrichment_record(
        self, user_scope: str, memory_id: str, stamp: EngineStamp,
    ) -> None: ...

    def list_enrichment_records(
        self, user_scope: str,
    ) -> List[tuple]: ...


class EnrichmentManifest:
    """Shared (engine, version) stamp cache backed by an optional store."""

    def __init__(self, store: Optional[EnrichmentStore] = None):
        self.store = store
        self._lock = ReadWriteLock()
        self._cache: EnrichmentCache = {}
        self._poisoned = False

    @contextmanager
    def _writing(self) -> Iterator[EnrichmentCache]:
        """Exclusive cache access; a failure inside poisons the cache."""
        with self._lock.write():
            if self._poisoned:
                raise EnrichmentError("enrichment cache lock is poisoned")
            try:
                yield self._cache
            except BaseException:
                self._poisoned = True
                logger.warning("Enrichment cache poisoned by a failed writer")
                raise

    # -- Readers -------------------------------------------------------------

    def _ensure_scope(self, user_scope: str) -> None:
        if self.store is None:
            return
        with self._lock.read():
            if self._poisoned or user_scope in self._cache:
                return
        self._load_scope(user_scope, replace=False)

    def is_poisoned(self) -> bool:
        with self._lock.read():
            return self._poisoned

    def needs_enrichment(
        self, user_scope: str, memory_id: str,
        engine_kind: str, engine_version: str,
    ) -> bool:
        """True unless a stamp for exactly (engine_kind, engine_version) exists.

        Failed runs count as attempted.  A poisoned cache always answers True.
        """
        self._ensure_scope(user_scope)
        with self._lock.read():
            if self._poisoned:
                logger.warning(
                    f"Manifest poisoned, assuming {memory_id} needs enrichment"
                )
                return True
            stamps = self._cache.get(user_scope, {}).get(memory_id, ())
            return not any(s.matches(engine_kind, engine_version) for s in stamps)

    def get_unenriched_memories(
        self, user_scope: str, memory_ids: Sequence[str],
        engine_kind: str, engine_version: str,
    ) -> List[str]:
        return [
            mid for mid in memory_ids
            if self.needs_enrichment(user_scope, mid, engine_kind, engine_version)
        ]

    def get_stamps(self, user_scope: str, memory_id: str) -> Optional[List[EngineStamp]]:
        """Stamps recorded for a memory, or None (also when poisoned)."""
        self._ensure_scope(user_scope)
        with self._lock.read():
            if self._poisoned:
                return None
            stamps = self._cache.get(user_scope, {}).get(memory_id)
            return list(stamps) if stamps is not None else None

    # -- Writers -------------------------------------------------------------

    def record_enrichment(self, params: EnrichmentParams) -> EngineStamp:
        """Write the stamp to the cache, then persist it.

        The two steps are not atomic; ``load_from_store`` resynchronises.

        Raises:
            EnrichmentError: the cache is poisoned.
        """
        self._ensure_scope(params.user_scope)
        stamp = params.to_stamp()
        with self._writing() as cache:
            stamps = cache.setdefault(params.user_scope, {}).setdefault(params.memory_id, [])
            # One row per (engine, version), mirroring the table's unique key
            stamps[:] = [
                s for s in stamps
                if not s.matches(stamp.engine_kind, stamp.engine_version)
            ]
            stamps.append(stamp)
        if self.store is not None:
            self.store.save_enrichment_record(params.user_scope, params.memory_id, stamp)
        logger.debug(
            f"Recorded {stamp.engine_kind}@{stamp.engine_version} for "
            f"{params.memory_id} (success={stamp.success})"
        )
        return stamp

    def clear_cache(self) -> None:
        """Drop every cached stamp; the next access to a scope reloads it.

        Raises:
            EnrichmentError: the cache is poisoned.
        """
        with self._writing() as cache:
            cache.clear()

    def load_from_store(self, user_scope: str) -> int:
        """Replace the cached stamps of *user_scope* with the persisted ones.

        Clears a poisoned state.  Returns the number of records loaded.
        """
        return self._load_scope(user_scope, replace=True)

    def _load_scope(self, user_scope: str, replace: bool) -> int:
        if self.store is None:
            return 0
        records = self.store.list_enrichment_records(user_scope)
        by_memory: Dict[str, List[EngineStamp]] = {}
        for memory_id, stamp in records:
            by_memory.setdefault(memory_id, []).append(stamp)
        with self._lock.write():
            if self._poisoned:
                if not replace:
                    return 0
                # Other scopes may be inconsistent; start from the store only
                self._cache = {}
                self._poisoned = False
            if replace or user_scope not in self._cache:
                self._cache[user_scope] = by_memory
        logger.info(f"Loaded {len(records)} enrichment records for scope {user_scope}")
        return len(records)
