"""
Temporal (time-travel) queries over memory cards.

Cards for an entity:slot are never overwritten; each new fact is a new card.
The value "as of" time T is the newest card whose effective timestamp
(event date > document date > created_at) is at or before T, skipping
retraction records.  The timeline is the unmasked ascending history.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Protocol

from memrecall.types import MemoryCard, TimelineEntry, _ensure_utc, _now

logger = logging.getLogger(__name__)


class CardHistorySource(Protocol):
    """Anything that can return every card (all versions) of an entity:slot."""

    def find_by_entity_slot(
        self, user_scope: str, entity: str, slot: str,
    ) -> List[MemoryCard]: ...


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def value_at(cards: Iterable[MemoryCard], when: datetime) -> Optional[MemoryCard]:
    """Card in effect at *when*, or None.

    Keeps cards effective at or before *when*, orders them newest first and
    returns the first one that is not a retraction.
    """
    when = _ensure_utc(when)
    visible = [c for c in cards if c.effective_timestamp <= when]
    visible.sort(key=lambda c: c.effective_timestamp, reverse=True)
    for card in visible:
        if card.version_relation != "retracts":
            return card
    return None


def build_timeline(cards: Iterable[MemoryCard]) -> List[TimelineEntry]:
    """Chronological (ascending) history entries, retractions included."""
    entries = [
        TimelineEntry(
            timestamp=c.effective_timestamp,
            value=c.value,
            version_relation=c.version_relation,
            created_at=c.created_at,
            card_id=c.id,
        )
        for c in cards
    ]
    entries.sort(key=lambda e: e.timestamp)
    return entries


# ---------------------------------------------------------------------------
# Store-backed query engine
# ---------------------------------------------------------------------------

class TemporalQuery:
    """Time-travel lookups against a card store."""

    def __init__(self, store: CardHistorySource):
        self.store = store

    def get_at_time(
        self, user_scope: str, entity: str, slot: str, when: datetime,
    ) -> Optional[MemoryCard]:
        cards = self.store.find_by_entity_slot(user_scope, entity, slot)
        card = value_at(cards, when)
        logger.debug(
            f"get_at_time {user_scope}/{entity}:{slot}@{when.isoformat()} -> "
            f"{card.value if card else None!r} ({len(cards)} versions)"
        )
        return card

    def get_current(
        self, user_scope: str, entity: str, slot: str,
    ) -> Optional[MemoryCard]:
        return self.get_at_time(user_scope, entity, slot, _now())

    def get_timeline(
        self, user_scope: str, entity: str, slot: str,
    ) -> List[TimelineEntry]:
        return build_timeline(self.store.find_by_entity_slot(user_scope, entity, slot))
