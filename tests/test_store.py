"""
Tests for memrecall.store — SQLite persistence for items, cards and stamps.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from memrecall.errors import NotFoundError
from memrecall.store import SQLiteStore, _pack_vector, _unpack_vector
from memrecall.types import EngineStamp, MemoryCard, MemoryItem

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def store():
    s = SQLiteStore(":memory:")
    yield s
    s.close()


def _item(summary="User: hello", scope="u1", **kw):
    return MemoryItem(user_scope=scope, summary=summary, **kw)


# ---------------------------------------------------------------------------
# Schema and helpers
# ---------------------------------------------------------------------------


class TestSchema:
    def test_meta(self, store):
        meta = store.schema_meta()
        assert meta["schema_version"] == "1"
        assert meta["created_by"] == "memrecall"

    def test_file_db(self, tmp_path):
        path = tmp_path / "sub" / "mem.db"
        s = SQLiteStore(str(path))
        s.insert_item(_item())
        s.close()
        reopened = SQLiteStore(str(path))
        assert reopened.count_items() == 1
        reopened.close()

    def test_vector_packing(self):
        vec = [0.5, -1.25, 3.0]
        assert _unpack_vector(_pack_vector(vec), 3) == vec


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class TestItems:
    def test_insert_get(self, store):
        item = _item(embedding=[0.1, 0.2, 0.3], extra={"lang": "zh"}, happened_at=T0)
        store.insert_item(item)
        got = store.get_item(item.id)
        assert got.summary == item.summary
        assert got.embedding == pytest.approx([0.1, 0.2, 0.3], abs=1e-6)
        assert got.extra == {"lang": "zh"}
        assert got.happened_at == T0
        assert got.content_hash == item.content_hash

    def test_get_missing(self, store):
        assert store.get_item("MEM-nope") is None

    def test_duplicate_id(self, store):
        item = _item()
        store.insert_item(item)
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_item(item)

    def test_find_by_content_hash(self, store):
        item = _item()
        store.insert_item(item)
        assert store.find_by_content_hash("u1", item.content_hash).id == item.id
        assert store.find_by_content_hash("u2", item.content_hash) is None

    def test_update(self, store):
        item = store.insert_item(_item())
        item.summary = "User: changed"
        item.version = 2
        store.update_item(item)
        got = store.get_item(item.id)
        assert got.summary == "User: changed"
        assert got.version == 2

    def test_update_missing(self, store):
        with pytest.raises(NotFoundError):
            store.update_item(_item())

    def test_reinforce(self, store):
        item = store.insert_item(_item())
        assert store.reinforce_item(item.id).reinforcement_count == 1
        assert store.reinforce_item(item.id).reinforcement_count == 2

    def test_reinforce_missing(self, store):
        with pytest.raises(NotFoundError):
            store.reinforce_item("MEM-nope")

    def test_delete(self, store):
        item = store.insert_item(_item())
        assert store.delete_item(item.id)
        assert store.get_item(item.id) is None
        assert not store.delete_item(item.id)

    def test_scope_isolation(self, store):
        store.insert_item(_item("a", scope="u1"))
        store.insert_item(_item("b", scope="u2"))
        assert [i.summary for i in store.list_by_scope("u1")] == ["a"]
        assert store.count_items("u2") == 1
        assert store.count_items() == 2

    def test_list_with_embedding(self, store):
        store.insert_item(_item("a", embedding=[1.0, 0.0]))
        store.insert_item(_item("b"))
        assert [i.summary for i in store.list_by_scope("u1", with_embedding=True)] == ["a"]

    def test_list_limit_and_order(self, store):
        for i in range(5):
            store.insert_item(_item(f"m{i}"))
        assert [i.summary for i in store.list_by_scope("u1", limit=2)] == ["m0", "m1"]
        assert len(store.list_all()) == 5


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


def _card(value, relation="sets", when=None, slot="location", scope="u1"):
    card = MemoryCard(scope, "user", slot, value, version_relation=relation)
    if when is not None:
        card.with_event_date(when)
    return card


class TestCards:
    def test_insert_get(self, store):
        card = _card("Beijing", when=T0)
        card.confidence = 0.9
        store.insert_card(card)
        got = store.get_card(card.id)
        assert got.value == "Beijing"
        assert got.event_date == T0
        assert got.confidence == pytest.approx(0.9)
        assert got.version_key == "user:location"

    def test_all_versions_kept(self, store):
        store.insert_card(_card("Beijing", when=T0))
        store.insert_card(_card("Shanghai", "updates", T0 + timedelta(days=1)))
        values = [c.value for c in store.find_by_entity_slot("u1", "user", "location")]
        assert values == ["Beijing", "Shanghai"]
        assert len(store.find_versions("u1", "user:location")) == 2

    def test_find_by_scope_and_source(self, store):
        card = _card("Beijing")
        card.source_memory_id = "MEM-1"
        store.insert_card(card)
        store.insert_card(_card("Paris", scope="u2"))
        assert len(store.find_by_scope("u1")) == 1
        assert store.find_by_source_memory("MEM-1")[0].id == card.id

    def test_upsert_inserts_then_updates(self, store):
        first = store.upsert_card(_card("Beijing"))
        second = store.upsert_card(_card("Shanghai", "updates"))
        assert first == second
        assert len(store.find_versions("u1", "user:location")) == 1
        assert store.get_card(first).value == "Shanghai"
        assert store.get_card(first).version_relation == "updates"

    def test_upsert_polarity_only_when_given(self, store):
        card = _card("tea", slot="preference")
        card.polarity = "positive"
        card_id = store.upsert_card(card)
        store.upsert_card(_card("coffee", slot="preference"))
        assert store.get_card(card_id).polarity == "positive"

    def test_get_current_value(self, store):
        assert store.get_current_value("u1", "user", "location") is None
        store.insert_card(_card("Beijing"))
        store.insert_card(_card("Shanghai"))
        assert store.get_current_value("u1", "user", "location") == "Shanghai"


# ---------------------------------------------------------------------------
# Enrichment records and audit
# ---------------------------------------------------------------------------


class TestEnrichmentRecords:
    def test_save_and_list(self, store):
        store.save_enrichment_record("u1", "MEM-1", EngineStamp("rules", "1.0.0", card_ids=["C1"]))
        records = store.list_enrichment_records("u1")
        assert len(records) == 1
        memory_id, stamp = records[0]
        assert memory_id == "MEM-1"
        assert stamp.card_ids == ["C1"]
        assert stamp.success

    def test_same_version_replaces(self, store):
        store.save_enrichment_record("u1", "MEM-1", EngineStamp("rules", "1.0.0"))
        store.save_enrichment_record(
            "u1", "MEM-1", EngineStamp("rules", "1.0.0", success=False, error_message="boom"),
        )
        records = store.list_enrichment_records("u1")
        assert len(records) == 1
        assert not records[0][1].success
        assert records[0][1].error_message == "boom"

    def test_versions_accumulate(self, store):
        store.save_enrichment_record("u1", "MEM-1", EngineStamp("rules", "1.0.0"))
        store.save_enrichment_record("u1", "MEM-1", EngineStamp("rules", "2.0.0"))
        assert len(store.list_enrichment_records("u1")) == 2
        assert store.list_enrichment_records("u2") == []


class TestAudit:
    def test_events_recorded(self, store):
        item = store.insert_item(_item())
        store.reinforce_item(item.id)
        actions = [e.action for e in store.read_events(item_id=item.id)]
        assert actions == ["reinforce", "insert"]

    def test_filter_by_action(self, store):
        store.insert_card(_card("Beijing"))
        events = store.read_events(action="card_insert")
        assert len(events) == 1
        assert events[0].details["key"] == "user:location"

    def test_stats(self, store):
        store.insert_item(_item())
        stats = store.stats()
        assert stats["memory_items"] == 1
        assert stats["memory_events"] == 1
        assert stats["db_path"] == ":memory:"
