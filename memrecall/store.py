"""
Memory Store — SQLite Persistent Backend

Tables:
    memory_items        - Memory items (current state of each version chain head)
    memory_revisions    - Snapshots of superseded item versions (append-only)
    memory_cards        - Structured cards, every version kept for time travel
    enrichment_records  - Enrichment stamps, one row per (scope, memory, engine, version)
    memory_events       - Audit log (append-only)
    schema_meta         - Schema metadata

Thread safety: uses sqlite3 check_same_thread=False with explicit serialization.
All writes create audit events automatically.  The store never validates card
values against predicate schemas; callers do that before writing.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import struct
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from memrecall.errors import NotFoundError
from memrecall.types import (
    EngineStamp,
    MemoryCard,
    MemoryEvent,
    MemoryItem,
    _generate_id,
    _now,
    _now_iso,
    _parse_dt,
    _to_iso,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# ---------------------------------------------------------------------------
# Schema DDL
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS memory_items (
    id                  TEXT PRIMARY KEY,
    user_scope          TEXT NOT NULL,
    resource_id         TEXT,
    memory_type         TEXT NOT NULL
                        CHECK(memory_type IN ('episodic','semantic','procedural')),
    summary             TEXT NOT NULL DEFAULT '',
    embedding           BLOB,               -- float32 packed bytes
    embedding_dim       INTEGER,
    happened_at         TEXT NOT NULL,
    extra_json          TEXT,               -- JSON object or NULL
    content_hash        TEXT NOT NULL,
    reinforcement_count INTEGER NOT NULL DEFAULT 0,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    version             INTEGER NOT NULL DEFAULT 1,
    parent_version_id   TEXT,               -- id of the revision holding the prior version
    version_relation    TEXT
);

CREATE TABLE IF NOT EXISTS memory_revisions (
    revision_id TEXT PRIMARY KEY,
    item_id     TEXT NOT NULL,
    version     INTEGER NOT NULL,
    snapshot    TEXT NOT NULL,      -- full JSON of the item before the change
    changed_at  TEXT NOT NULL,
    reason      TEXT NOT NULL DEFAULT 'version'
);

CREATE TABLE IF NOT EXISTS memory_cards (
    id               TEXT PRIMARY KEY,
    user_scope       TEXT NOT NULL,
    kind             TEXT NOT NULL,
    entity           TEXT NOT NULL,
    slot             TEXT NOT NULL,
    value            TEXT NOT NULL,
    polarity         TEXT,
    event_date       TEXT,
    document_date    TEXT,
    version_key      TEXT NOT NULL,
    version_relation TEXT NOT NULL DEFAULT 'sets',
    source_memory_id TEXT,
    source_uri       TEXT,
    engine           TEXT NOT NULL,
    engine_version   TEXT NOT NULL,
    confidence       REAL,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS enrichment_records (
    id             TEXT PRIMARY KEY,
    user_scope     TEXT NOT NULL,
    memory_id      TEXT NOT NULL,
    engine_kind    TEXT NOT NULL,
    engine_version TEXT NOT NULL,
    enriched_at    TEXT NOT NULL,
    card_ids       TEXT NOT NULL DEFAULT '[]',  -- JSON array
    success        INTEGER NOT NULL DEFAULT 1,
    error_message  TEXT,
    created_at     TEXT NOT NULL,
    UNIQUE (user_scope, memory_id, engine_kind, engine_version)
);

CREATE TABLE IF NOT EXISTS memory_events (
    id            TEXT PRIMARY KEY,
    action        TEXT NOT NULL,
    item_id       TEXT,
    details_json  TEXT NOT NULL DEFAULT '{}',
    content_hash  TEXT NOT NULL DEFAULT '',
    timestamp     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS schema_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_scope ON memory_items(user_scope);
CREATE INDEX IF NOT EXISTS idx_items_hash ON memory_items(user_scope, content_hash);
CREATE INDEX IF NOT EXISTS idx_revisions_item ON memory_revisions(item_id);
CREATE INDEX IF NOT EXISTS idx_cards_slot ON memory_cards(user_scope, entity, slot);
CREATE INDEX IF NOT EXISTS idx_cards_vkey ON memory_cards(user_scope, version_key);
CREATE INDEX IF NOT EXISTS idx_cards_source ON memory_cards(source_memory_id);
CREATE INDEX IF NOT EXISTS idx_enrich_scope ON enrichment_records(user_scope);
CREATE INDEX IF NOT EXISTS idx_events_action ON memory_events(action);
CREATE INDEX IF NOT EXISTS idx_events_item ON memory_events(item_id);
"""


# ---------------------------------------------------------------------------
# Vector packing helpers
# ---------------------------------------------------------------------------

def _pack_vector(vec: List[float]) -> bytes:
    """Pack float list to bytes (float32)."""
    return struct.pack(f"{len(vec)}f", *vec)


def _unpack_vector(data: bytes, dim: int) -> List[float]:
    """Unpack bytes to float list (float32)."""
    return list(struct.unpack(f"{dim}f", data))


def _row_dt(value: Any, column: str) -> datetime:
    """Parse a stored timestamp; unreadable values fall back to now."""
    try:
        parsed = _parse_dt(value)
    except ValueError:
        parsed = None
    if parsed is None:
        logger.warning(f"Unparseable timestamp in {column}: {value!r}, using now")
        return _now()
    return parsed


def _opt_dt(value: Any, column: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return _row_dt(value, column)


# ---------------------------------------------------------------------------
# SQLiteStore
# ---------------------------------------------------------------------------

class SQLiteStore:
    """
    SQLite-backed persistent store for memory items, cards and enrichment
    records.

    Thread-safe via explicit lock. All mutations create audit events.
    """

    def __init__(self, db_path: str = ":memory:", wal_mode: bool = True):
        """Open (or create) the database and apply the schema.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            wal_mode: Enable WAL journal mode for concurrent readers.
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if wal_mode and db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_by', 'memrecall')",
        )
        self._conn.execute(
            "INSERT OR IGNORE INTO schema_meta (key, value) VALUES ('created_at', datetime('now'))",
        )
        self._conn.commit()
        logger.info(f"SQLiteStore initialized: {db_path}")

    @classmethod
    def from_config(cls, config) -> SQLiteStore:
        """Open the store described by a StoreConfig."""
        return cls(config.db_path, wal_mode=config.wal_mode)

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()

    def schema_meta(self) -> Dict[str, str]:
        with self._lock:
            rows = self._conn.execute("SELECT key, value FROM schema_meta").fetchall()
            return {r["key"]: r["value"] for r in rows}

    # -- Memory items ------------------------------------------------------

    def insert_item(self, item: MemoryItem) -> MemoryItem:
        """Insert a new memory item. Raises sqlite3.IntegrityError on duplicate id."""
        with self._lock:
            self._conn.execute(
                """INSERT INTO memory_items
                   (id, user_scope, resource_id, memory_type, summary,
                    embedding, embedding_dim, happened_at, extra_json,
                    content_hash, reinforcement_count, created_at, updated_at,
                    version, parent_version_id, version_relation)
                   VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                self._item_params(item),
            )
            self._log_event("insert", item.id, {"scope": item.user_scope}, item.content_hash)
            self._conn.commit()
        return item

    def get_item(self, item_id: str) -> Optional[MemoryItem]:
        """Read a single item by ID."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM memory_items WHERE id=?", (item_id,)
            ).fetchone()
            return self._row_to_item(row) if row is not None else None

    def find_by_content_hash(self, user_scope: str, chash: str) -> Optional[MemoryItem]:
        """Oldest item in *user_scope* carrying *chash*, if any."""
        with self._lock:
            row = self._conn.execute(
                """SELECT * FROM memory_items
                   WHERE user_scope=? AND content_hash=?
                   ORDER BY created_at ASC, rowid ASC LIMIT 1""",
                (user_scope, chash),
            ).fetchone()
            return self._row_to_item(row) if row is not None else None

    def update_item(self, item: MemoryItem) -> MemoryItem:
        """Overwrite every mutable column of an existing item.

        ``updated_at`` is refreshed; ``id`` and ``created_at`` never change.

        Raises:
            NotFoundError: no item with ``item.id``.
        """
        with self._lock:
            self._update_row(item)
            self._log_event(
                "update", item.id,
                {"version": item.version, "relation": item.version_relation},
                item.content_hash,
            )
            self._conn.commit()
        return item

    def version_item(self, item: MemoryItem, previous: MemoryItem) -> str:
        """Archive *previous* as a revision, then overwrite the row with *item*.

        ``item.parent_version_id`` is pointed at the new revision, so the
        prior summary and embedding stay readable through ``get_revision``.
        Both writes share one transaction.  Returns the revision id.

        Raises:
            NotFoundError: no item with ``item.id``.
        """
        revision_id = _generate_id("REV")
        with self._lock:
            try:
                self._conn.execute(
                    """INSERT INTO memory_revisions
                       (revision_id, item_id, version, snapshot, changed_at, reason)
                       VALUES (?,?,?,?,?,?)""",
                    (
                        revision_id, previous.id, previous.version,
                        json.dumps(previous.to_dict(), ensure_ascii=False),
                        _now_iso(), "version",
                    ),
                )
                item.parent_version_id = revision_id
                self._update_row(item)
            except (NotFoundError, sqlite3.Error):
                self._conn.rollback()
                raise
            self._log_event(
                "update", item.id,
                {"version": item.version, "relation": item.version_relation,
                 "revision": revision_id},
                item.content_hash,
            )
            self._conn.commit()
        return revision_id

    def get_revision(self, revision_id: str) -> Optional[MemoryItem]:
        """The archived item state stored under *revision_id*, if any."""
        with self._lock:
            row = self._conn.execute(
                "SELECT snapshot FROM memory_revisions WHERE revision_id=?",
                (revision_id,),
            ).fetchone()
            return MemoryItem.from_dict(json.loads(row["snapshot"])) if row else None

    def list_revisions(self, item_id: str) -> List[MemoryItem]:
        """Archived versions of an item, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT snapshot FROM memory_revisions
                   WHERE item_id=? ORDER BY version ASC, rowid ASC""",
                (item_id,),
            ).fetchall()
            return [MemoryItem.from_dict(json.loads(r["snapshot"])) for r in rows]

    def reinforce_item(self, item_id: str) -> MemoryItem:
        """Increment ``reinforcement_count`` and touch ``updated_at``.

        Raises:
            NotFoundError: no item with *item_id*.
        """
        with self._lock:
            cur = self._conn.execute(
                """UPDATE memory_items
                   SET reinforcement_count=reinforcement_count+1, updated_at=?
                   WHERE id=?""",
                (_now_iso(), item_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("memory_items", item_id)
            row = self._conn.execute(
                "SELECT * FROM memory_items WHERE id=?", (item_id,)
            ).fetchone()
            item = self._row_to_item(row)
            self._log_event(
                "reinforce", item_id,
                {"count": item.reinforcement_count}, item.content_hash,
            )
            self._conn.commit()
            return item

    def delete_item(self, item_id: str) -> bool:
        """Physically remove an item. Returns False if it did not exist."""
        with self._lock:
            cur = self._conn.execute("DELETE FROM memory_items WHERE id=?", (item_id,))
            if cur.rowcount:
                self._log_event("delete", item_id, {}, "")
            self._conn.commit()
            return cur.rowcount > 0

    def list_by_scope(
        self, user_scope: str, limit: Optional[int] = None,
        with_embedding: bool = False,
    ) -> List[MemoryItem]:
        """Items of one scope, oldest first."""
        with self._lock:
            sql = "SELECT * FROM memory_items WHERE user_scope=?"
            if with_embedding:
                sql += " AND embedding IS NOT NULL"
            sql += " ORDER BY created_at ASC, rowid ASC"
            params: list = [user_scope]
            if limit is not None:
                sql += " LIMIT ?"
                params.append(limit)
            rows = self._conn.execute(sql, params).fetchall()
            return [self._row_to_item(r) for r in rows]

    def list_all(self) -> List[MemoryItem]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM memory_items ORDER BY created_at ASC, rowid ASC"
            ).fetchall()
            return [self._row_to_item(r) for r in rows]

    def count_items(self, user_scope: Optional[str] = None) -> int:
        """Count items, optionally in one scope."""
        with self._lock:
            if user_scope is None:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS cnt FROM memory_items"
                ).fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS cnt FROM memory_items WHERE user_scope=?",
                    (user_scope,),
                ).fetchone()
            return row["cnt"]

    # -- Memory cards ------------------------------------------------------

    def insert_card(self, card: MemoryCard) -> str:
        """Insert a card row and return its id."""
        with self._lock:
            self._conn.execute(
                """INSERT INTO memory_cards
                   (id, user_scope, kind, entity, slot, value, polarity,
                    event_date, document_date, version_key, version_relation,
                    source_memory_id, source_uri, engine, engine_version,
                    confidence, created_at, updated_at)
                   VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                (
                    card.id, card.user_scope, card.kind, card.entity, card.slot,
                    card.value, card.polarity,
                    _to_iso(card.event_date), _to_iso(card.document_date),
                    card.version_key, card.version_relation,
                    card.source_memory_id, card.source_uri,
                    card.engine, card.engine_version, card.confidence,
                    _to_iso(card.created_at), _to_iso(card.updated_at),
                ),
            )
            self._log_event(
                "card_insert", card.id,
                {"key": card.version_key, "relation": card.version_relation}, "",
            )
            self._conn.commit()
        return card.id

    def get_card(self, card_id: str) -> Optional[MemoryCard]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM memory_cards WHERE id=?", (card_id,)
            ).fetchone()
            return self._row_to_card(row) if row is not None else None

    def find_by_entity_slot(
        self, user_scope: str, entity: str, slot: str,
    ) -> List[MemoryCard]:
        """Every card (all versions) of entity:slot, oldest first."""
        return self._select_cards(
            "user_scope=? AND entity=? AND slot=?", (user_scope, entity, slot),
        )

    def find_versions(self, user_scope: str, version_key: str) -> List[MemoryCard]:
        """Every card competing under *version_key*, oldest first."""
        return self._select_cards(
            "user_scope=? AND version_key=?", (user_scope, version_key),
        )

    def find_by_scope(self, user_scope: str) -> List[MemoryCard]:
        return self._select_cards("user_scope=?", (user_scope,))

    def find_by_source_memory(self, source_memory_id: str) -> List[MemoryCard]:
        return self._select_cards("source_memory_id=?", (source_memory_id,))

    def upsert_card(self, card: MemoryCard) -> str:
        """Update the latest card sharing ``card.version_key``, else insert.

        On update, value, relation and ``updated_at`` are replaced and the
        polarity too when the incoming card carries one.  Returns the id of
        the written row.
        """
        with self._lock:
            row = self._conn.execute(
                """SELECT id FROM memory_cards
                   WHERE user_scope=? AND version_key=?
                   ORDER BY updated_at DESC, rowid DESC LIMIT 1""",
                (card.user_scope, card.version_key),
            ).fetchone()
            if row is not None:
                card_id = row["id"]
                sets = "value=?, version_relation=?, updated_at=?"
                params: list = [card.value, card.version_relation, _now_iso()]
                if card.polarity is not None:
                    sets += ", polarity=?"
                    params.append(card.polarity)
                self._conn.execute(
                    f"UPDATE memory_cards SET {sets} WHERE id=?", params + [card_id],
                )
                self._log_event("card_update", card_id, {"key": card.version_key}, "")
                self._conn.commit()
                return card_id
        return self.insert_card(card)

    def get_current_value(
        self, user_scope: str, entity: str, slot: str,
    ) -> Optional[str]:
        """Value of the most recently updated card for entity:slot."""
        with self._lock:
            row = self._conn.execute(
                """SELECT value FROM memory_cards
                   WHERE user_scope=? AND entity=? AND slot=?
                   ORDER BY updated_at DESC, rowid DESC LIMIT 1""",
                (user_scope, entity, slot),
            ).fetchone()
            return row["value"] if row is not None else None

    def _select_cards(self, where: str, params: Tuple) -> List[MemoryCard]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM memory_cards WHERE {where} ORDER BY created_at ASC, rowid ASC",
                params,
            ).fetchall()
            return [self._row_to_card(r) for r in rows]

    # -- Enrichment records ------------------------------------------------

    def save_enrichment_record(
        self, user_scope: str, memory_id: str, stamp: EngineStamp,
    ) -> None:
        """Persist a stamp; a rerun of the same engine version replaces it."""
        with self._lock:
            self._conn.execute(
                """INSERT INTO enrichment_records
                   (id, user_scope, memory_id, engine_kind, engine_version,
                    enriched_at, card_ids, success, error_message, created_at)
                   VALUES (?,?,?,?,?,?,?,?,?,?)
                   ON CONFLICT (user_scope, memory_id, engine_kind, engine_version)
                   DO UPDATE SET enriched_at=excluded.enriched_at,
                                 card_ids=excluded.card_ids,
                                 success=excluded.success,
                                 error_message=excluded.error_message""",
                (
                    _generate_id("ENR"), user_scope, memory_id,
                    stamp.engine_kind, stamp.engine_version,
                    _to_iso(stamp.enriched_at), json.dumps(stamp.card_ids),
                    int(stamp.success), stamp.error_message, _now_iso(),
                ),
            )
            self._log_event(
                "enrich", memory_id,
                {"engine": stamp.engine_kind, "version": stamp.engine_version,
                 "success": stamp.success},
                "",
            )
            self._conn.commit()

    def list_enrichment_records(self, user_scope: str) -> List[Tuple[str, EngineStamp]]:
        """All (memory_id, stamp) pairs of a scope, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                """SELECT * FROM enrichment_records
                   WHERE user_scope=? ORDER BY enriched_at ASC""",
                (user_scope,),
            ).fetchall()
            return [
                (
                    r["memory_id"],
                    EngineStamp(
                        engine_kind=r["engine_kind"],
                        engine_version=r["engine_version"],
                        enriched_at=_row_dt(r["enriched_at"], "enriched_at"),
                        card_ids=json.loads(r["card_ids"]),
                        success=bool(r["success"]),
                        error_message=r["error_message"],
                    ),
                )
                for r in rows
            ]

    # -- Audit -------------------------------------------------------------

    def read_events(
        self,
        item_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[MemoryEvent]:
        """Query audit events, newest first."""
        with self._lock:
            conditions = []
            params: list = []
            if item_id:
                conditions.append("item_id=?")
                params.append(item_id)
            if action:
                conditions.append("action=?")
                params.append(action)
            where = " AND ".join(conditions) if conditions else "1=1"
            rows = self._conn.execute(
                f"SELECT * FROM memory_events WHERE {where} "
                f"ORDER BY timestamp DESC, rowid DESC LIMIT ?",
                params + [limit],
            ).fetchall()
            return [
                MemoryEvent(
                    id=r["id"], action=r["action"], item_id=r["item_id"],
                    details=json.loads(r["details_json"]),
                    content_hash=r["content_hash"], timestamp=r["timestamp"],
                )
                for r in rows
            ]

    def stats(self) -> Dict[str, Any]:
        """Row counts per table."""
        with self._lock:
            out: Dict[str, Any] = {}
            for table in ("memory_items", "memory_revisions", "memory_cards",
                          "enrichment_records", "memory_events"):
                out[table] = self._conn.execute(
                    f"SELECT COUNT(*) AS cnt FROM {table}"
                ).fetchone()["cnt"]
            out["db_path"] = self._db_path
            return out

    # -- Internal helpers --------------------------------------------------

    @staticmethod
    def _embedding_params(vec: Optional[List[float]]) -> Tuple[Optional[bytes], Optional[int]]:
        if vec is None:
            return None, None
        return _pack_vector(vec), len(vec)

    def _item_params(self, item: MemoryItem) -> Tuple:
        emb, dim = self._embedding_params(item.embedding)
        return (
            item.id, item.user_scope, item.resource_id, item.memory_type,
            item.summary, emb, dim, _to_iso(item.happened_at),
            json.dumps(item.extra) if item.extra is not None else None,
            item.content_hash, item.reinforcement_count,
            _to_iso(item.created_at), _to_iso(item.updated_at),
            item.version, item.parent_version_id, item.version_relation,
        )

    def _update_row(self, item: MemoryItem) -> None:
        """Overwrite the mutable columns of *item* (must be called within lock)."""
        item.updated_at = _now()
        emb, dim = self._embedding_params(item.embedding)
        cur = self._conn.execute(
            """UPDATE memory_items SET
                   user_scope=?, resource_id=?, memory_type=?, summary=?,
                   embedding=?, embedding_dim=?, happened_at=?, extra_json=?,
                   content_hash=?, reinforcement_count=?, updated_at=?,
                   version=?, parent_version_id=?, version_relation=?
               WHERE id=?""",
            (
                item.user_scope, item.resource_id, item.memory_type, item.summary,
                emb, dim, _to_iso(item.happened_at),
                json.dumps(item.extra) if item.extra is not None else None,
                item.content_hash, item.reinforcement_count,
                _to_iso(item.updated_at), item.version,
                item.parent_version_id, item.version_relation, item.id,
            ),
        )
        if cur.rowcount == 0:
            raise NotFoundError("memory_items", item.id)

    def _row_to_item(self, row: sqlite3.Row) -> MemoryItem:
        """Convert a SQLite Row to MemoryItem."""
        embedding = None
        if row["embedding"] is not None:
            embedding = _unpack_vector(row["embedding"], row["embedding_dim"])
        return MemoryItem(
            id=row["id"],
            user_scope=row["user_scope"],
            resource_id=row["resource_id"],
            memory_type=row["memory_type"],
            summary=row["summary"],
            embedding=embedding,
            happened_at=_row_dt(row["happened_at"], "happened_at"),
            extra=json.loads(row["extra_json"]) if row["extra_json"] else None,
            content_hash=row["content_hash"],
            reinforcement_count=row["reinforcement_count"],
            created_at=_row_dt(row["created_at"], "created_at"),
            updated_at=_row_dt(row["updated_at"], "updated_at"),
            version=row["version"],
            parent_version_id=row["parent_version_id"],
            version_relation=row["version_relation"],
        )

    def _row_to_card(self, row: sqlite3.Row) -> MemoryCard:
        """Convert a SQLite Row to MemoryCard."""
        return MemoryCard(
            id=row["id"],
            user_scope=row["user_scope"],
            kind=row["kind"],
            entity=row["entity"],
            slot=row["slot"],
            value=row["value"],
            polarity=row["polarity"],
            event_date=_opt_dt(row["event_date"], "event_date"),
            document_date=_opt_dt(row["document_date"], "document_date"),
            version_key=row["version_key"],
            version_relation=row["version_relation"],
            source_memory_id=row["source_memory_id"],
            source_uri=row["source_uri"],
            engine=row["engine"],
            engine_version=row["engine_version"],
            confidence=row["confidence"],
            created_at=_row_dt(row["created_at"], "created_at"),
            updated_at=_row_dt(row["updated_at"], "updated_at"),
        )

    def _log_event(
        self, action: str, item_id: Optional[str],
        details: Dict[str, Any], ch: str,
    ) -> None:
        """Write an audit event (must be called within lock)."""
        self._conn.execute(
            """INSERT INTO memory_events
               (id, action, item_id, details_json, content_hash, timestamp)
               VALUES (?,?,?,?,?,?)""",
            (
                _generate_id("EVT"), action, item_id,
                json.dumps(details), ch, _now_iso(),
            ),
        )
