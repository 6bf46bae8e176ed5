"""
Memory Data Model — Items, Cards, Scores, Stamps

Defines the canonical memory item (free text + optional embedding), the
structured memory card (entity/slot/value triple with temporal versioning),
scored search results, and enrichment stamps.

Memory items are versioned in place: a semantic update bumps ``version`` and
points ``parent_version_id`` at the record it replaced.  Cards are never
overwritten by newer facts; later cards *supersede* earlier ones under the
same version key.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

# ---------------------------------------------------------------------------
# Type aliases (Literal unions for validation)
# ---------------------------------------------------------------------------

MemoryKind = Literal["episodic", "semantic", "procedural"]
CardKind = Literal["fact", "preference", "event", "profile", "relationship", "goal"]
VersionRelation = Literal["sets", "updates", "extends", "retracts"]
Polarity = Literal["positive", "negative", "neutral"]

# Valid values for runtime checks
VALID_MEMORY_KINDS: set = {"episodic", "semantic", "procedural"}
VALID_CARD_KINDS: set = {
    "fact", "preference", "event", "profile", "relationship", "goal",
}
VALID_RELATIONS: set = {"sets", "updates", "extends", "retracts"}
VALID_POLARITIES: set = {"positive", "negative", "neutral"}

# Relations allowed to replace an earlier card under the same version key
SUPERSEDING_RELATIONS: frozenset = frozenset({"updates", "retracts"})

# Speaker-class convention for conversational memories
USER_PREFIX = "User:"
ASSISTANT_PREFIX = "Assistant:"


def _now() -> datetime:
    """Current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    """Current UTC time as ISO-8601 string."""
    return _now().isoformat()


def _to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return _ensure_utc(dt).isoformat()


def _ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; leave aware ones untouched."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_dt(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _ensure_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _ensure_utc(datetime.fromisoformat(text))


def _generate_id(prefix: str = "MEM") -> str:
    """Generate a unique ID with prefix."""
    short = uuid.uuid4().hex[:12]
    return f"{prefix}-{short}"


def content_hash(kind: str, summary: str) -> str:
    """SHA-256 hex digest of ``kind:summary``.

    Two items of the same kind with the same summary hash identically;
    this is the exact-dedup key within a user scope.
    """
    h = hashlib.sha256()
    h.update(kind.encode("utf-8"))
    h.update(b":")
    h.update(summary.encode("utf-8"))
    return h.hexdigest()


# ---------------------------------------------------------------------------
# Memory Item
# ---------------------------------------------------------------------------

@dataclass
class MemoryItem:
    """
    A stored text memory, isolated by ``user_scope``.

    Rules:
    - ``content_hash`` is derived from (memory_type, summary) when not given.
    - A semantic update keeps the original ``content_hash`` so the lineage
      stays reachable from the first version.
    - ``parent_version_id`` is a foreign key into the store, never an object.
    """

    user_scope: str = "default"
    summary: str = ""
    memory_type: MemoryKind = "episodic"
    id: str = field(default_factory=lambda: _generate_id("MEM"))
    resource_id: Optional[str] = None
    embedding: Optional[List[float]] = None
    happened_at: datetime = field(default_factory=_now)
    extra: Optional[Dict[str, Any]] = None
    content_hash: str = ""
    reinforcement_count: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    version: int = 1
    parent_version_id: Optional[str] = None
    version_relation: Optional[VersionRelation] = None

    def __post_init__(self):
        """Validate kind and relation; derive the content hash."""
        if self.memory_type not in VALID_MEMORY_KINDS:
            raise ValueError(f"Invalid memory type: {self.memory_type!r}")
        if (self.version_relation is not None
                and self.version_relation not in VALID_RELATIONS):
            raise ValueError(f"Invalid version relation: {self.version_relation!r}")
        if self.reinforcement_count < 0:
            raise ValueError("reinforcement_count must be >= 0")
        self.happened_at = _ensure_utc(self.happened_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if not self.content_hash:
            self.content_hash = content_hash(self.memory_type, self.summary)

    @classmethod
    def episodic(
        cls,
        user_scope: str,
        text: str,
        *,
        assistant: bool = False,
        **kwargs: Any,
    ) -> MemoryItem:
        """Build an episodic memory from a conversation turn.

        The summary is prefixed with the speaker class (``User: `` or
        ``Assistant: ``); semantic upsert only compares memories that share
        the same prefix.
        """
        prefix = ASSISTANT_PREFIX if assistant else USER_PREFIX
        return cls(
            user_scope=user_scope,
            summary=f"{prefix} {text}",
            memory_type="episodic",
            **kwargs,
        )

    @property
    def is_user_utterance(self) -> bool:
        """True if the summary carries the user speaker prefix."""
        return self.summary.startswith(USER_PREFIX)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        d = asdict(self)
        for key in ("happened_at", "created_at", "updated_at"):
            d[key] = _to_iso(d[key])
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryItem:
        """Deserialize from a dictionary (unknown keys are ignored)."""
        kwargs = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        for key in ("happened_at", "created_at", "updated_at"):
            if key in kwargs:
                kwargs[key] = _parse_dt(kwargs[key]) or _now()
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Search result
# ---------------------------------------------------------------------------

@dataclass
class SalienceScore:
    """A memory item with its final ranking score and raw similarity."""

    item: MemoryItem
    score: float
    similarity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item": self.item.to_dict(),
            "score": self.score,
            "similarity": self.similarity,
        }


# ---------------------------------------------------------------------------
# Memory Card (structured fact)
# ---------------------------------------------------------------------------

@dataclass
class MemoryCard:
    """
    Structured entity/slot/value fact extracted from a memory.

    Temporal ordering uses the *effective timestamp*: event date, else
    document date, else creation time.  Cards compete for "current value"
    under ``version_key`` (``entity:slot`` unless set explicitly).
    """

    user_scope: str
    entity: str
    slot: str
    value: str
    kind: CardKind = "fact"
    id: str = field(default_factory=lambda: _generate_id("CARD"))
    polarity: Optional[Polarity] = None
    event_date: Optional[datetime] = None
    document_date: Optional[datetime] = None
    version_key: str = ""
    version_relation: VersionRelation = "sets"
    source_memory_id: Optional[str] = None
    source_uri: Optional[str] = None
    engine: str = "rules"
    engine_version: str = "1.0.0"
    confidence: Optional[float] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def __post_init__(self):
        """Validate enumerations and confidence; default the version key."""
        if self.kind not in VALID_CARD_KINDS:
            raise ValueError(f"Invalid card kind: {self.kind!r}")
        if self.version_relation not in VALID_RELATIONS:
            raise ValueError(f"Invalid version relation: {self.version_relation!r}")
        if self.polarity is not None and self.polarity not in VALID_POLARITIES:
            raise ValueError(f"Invalid polarity: {self.polarity!r}")
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence {self.confidence} not in [0, 1]")
        if not self.version_key:
            self.version_key = f"{self.entity}:{self.slot}"
        self.event_date = _parse_dt(self.event_date)
        self.document_date = _parse_dt(self.document_date)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    # -- Builders (chainable) ------------------------------------------------

    def with_event_date(self, when: datetime) -> MemoryCard:
        self.event_date = _ensure_utc(when)
        return self

    def with_document_date(self, when: datetime) -> MemoryCard:
        self.document_date = _ensure_utc(when)
        return self

    def with_version_relation(self, relation: VersionRelation) -> MemoryCard:
        if relation not in VALID_RELATIONS:
            raise ValueError(f"Invalid version relation: {relation!r}")
        self.version_relation = relation
        return self

    # -- Temporal semantics ----------------------------------------------------

    @property
    def effective_timestamp(self) -> datetime:
        """Event date > document date > creation time."""
        if self.event_date is not None:
            return self.event_date
        if self.document_date is not None:
            return self.document_date
        return self.created_at

    def supersedes(self, other: MemoryCard) -> bool:
        """True if this card replaces *other* as the current value.

        Requires the same version key, an ``updates``/``retracts`` relation,
        and a strictly later effective timestamp (ties never supersede).
        """
        if self.version_key != other.version_key:
            return False
        if self.version_relation not in SUPERSEDING_RELATIONS:
            return False
        return self.effective_timestamp > other.effective_timestamp

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        d = asdict(self)
        for key in ("event_date", "document_date", "created_at", "updated_at"):
            d[key] = _to_iso(d[key])
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> MemoryCard:
        """Deserialize from a dictionary (unknown keys are ignored)."""
        kwargs = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        for key in ("created_at", "updated_at"):
            if key in kwargs:
                kwargs[key] = _parse_dt(kwargs[key]) or _now()
        return cls(**kwargs)


# ---------------------------------------------------------------------------
# Enrichment stamp
# ---------------------------------------------------------------------------

@dataclass
class EngineStamp:
    """Record that an extraction engine (at a version) processed a memory."""

    engine_kind: str
    engine_version: str
    enriched_at: datetime = field(default_factory=_now)
    card_ids: List[str] = field(default_factory=list)
    success: bool = True
    error_message: Optional[str] = None

    def matches(self, engine_kind: str, engine_version: str) -> bool:
        return (self.engine_kind == engine_kind
                and self.engine_version == engine_version)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["enriched_at"] = _to_iso(self.enriched_at)
        return d


# ---------------------------------------------------------------------------
# Timeline entry (card history)
# ---------------------------------------------------------------------------

@dataclass
class TimelineEntry:
    """One value change of an entity:slot, for history display."""

    timestamp: datetime
    value: str
    version_relation: VersionRelation
    created_at: datetime
    card_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _to_iso(self.timestamp),
            "value": self.value,
            "version_relation": self.version_relation,
            "created_at": _to_iso(self.created_at),
            "card_id": self.card_id,
        }


# ---------------------------------------------------------------------------
# Memory Event (audit trail)
# ---------------------------------------------------------------------------

@dataclass
class MemoryEvent:
    """Audit log entry for a store mutation."""

    id: str = field(default_factory=lambda: _generate_id("EVT"))
    action: str = ""  # e.g. "insert", "reinforce", "update", "card_insert"
    item_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    content_hash: str = ""
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
