"""
SQLite persistence of collections, resolved conflicts and tags.
"""

import pytest

from sop_engine.errors import SOPNotFoundError
from sop_engine.rules import ConflictDetector, RuleStatus


class TestSOPs:

    def test_create_and_list(self, store):
        collection = store.create_sop("Urology 2024", "URO")
        assert collection.sop_id.startswith("sop-")

        sops = store.list_sops()
        assert len(sops) == 1
        assert sops[0]["name"] == "Urology 2024"
        assert sops[0]["client_prefix"] == "URO"
        assert sops[0]["rule_count"] == 0

    def test_delete(self, store):
        collection = store.create_sop("Urology 2024", "URO")
        store.delete_sop(collection.sop_id)
        assert store.get_sop(collection.sop_id) is None

    def test_missing_sop(self, store):
        with pytest.raises(SOPNotFoundError):
            store.load_collection("sop-missing")
        with pytest.raises(SOPNotFoundError):
            store.delete_sop("sop-missing")


class TestCollections:

    def test_round_trip_keeps_order_and_fields(self, store, make_rule):
        collection = store.create_sop("Urology 2024", "URO")
        collection.add(make_rule("URO-MOD-0002", modifiers=["25"], effective_date="2024-01-01"))
        collection.add(make_rule("URO-MOD-0001", code="99214,99215", status=RuleStatus.ACTIVE))
        store.save_collection(collection)

        loaded = store.load_collection(collection.sop_id)
        assert [r.rule_id for r in loaded.rules] == ["URO-MOD-0002", "URO-MOD-0001"]
        assert loaded.get("URO-MOD-0002").modifiers == ["25"]
        assert loaded.get("URO-MOD-0002").effective_date == "2024-01-01"
        assert loaded.get("URO-MOD-0001").status == RuleStatus.ACTIVE
        assert loaded.get("URO-MOD-0001").codes == ["99214", "99215"]
        assert loaded.client_prefix == "URO"
        assert store.list_sops()[0]["rule_count"] == 2

    def test_conflicts_are_not_stored(self, store, make_rule):
        collection = store.create_sop("Urology 2024", "URO")
        collection.add(make_rule("URO-MOD-0001", action="@ADD(@25)"))
        collection.add(make_rule("URO-MOD-0002", action="@REMOVE(@25)"))
        ConflictDetector().scan(collection)
        store.save_collection(collection)

        loaded = store.load_collection(collection.sop_id)
        assert all(r.conflicts == [] for r in loaded.rules)
        assert len(ConflictDetector().scan(loaded)) == 2

    def test_resolved_ids_survive_reload(self, store, make_rule):
        collection = store.create_sop("Urology 2024", "URO")
        collection.add(make_rule("URO-MOD-0001", action="@ADD(@25)"))
        collection.add(make_rule("URO-MOD-0002", action="@REMOVE(@25)"))
        collection.resolved_conflict_ids.add("conflict-URO-MOD-0001-URO-MOD-0002")
        store.save_collection(collection)
        store.record_resolution(collection.sop_id, "conflict-URO-MOD-0001-URO-MOD-0002",
                                "keep_both", "2024-05-01T10:00:00")

        loaded = store.load_collection(collection.sop_id)
        assert loaded.resolved_conflict_ids == {"conflict-URO-MOD-0001-URO-MOD-0002"}
        assert ConflictDetector().scan(loaded) == []
        assert store.resolved_conflicts(collection.sop_id)[0]["action"] == "keep_both"

    def test_removed_rules_disappear(self, store, make_rule):
        collection = store.create_sop("Urology 2024", "URO")
        collection.add(make_rule("URO-MOD-0001"))
        collection.add(make_rule("URO-MOD-0002", status=RuleStatus.REJECTED))
        store.save_collection(collection)

        collection.remove_rejected()
        store.save_collection(collection)
        assert [r.rule_id for r in store.load_collection(collection.sop_id).rules] == ["URO-MOD-0001"]

    def test_save_unknown_sop(self, store, collection):
        with pytest.raises(SOPNotFoundError):
            store.save_collection(collection)
