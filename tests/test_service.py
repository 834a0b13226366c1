"""
SOPService: rule lifecycle with rescans and persistence.
"""

import pytest

from sop_engine.errors import DuplicateRuleIdError, RuleNotFoundError
from sop_engine.rules import ConflictResolution, RuleSource, RuleStatus, SOPService
from sop_engine.tags import TagDiscovery, TagStatus, TagType


@pytest.fixture
def service(collection, registry):
    return SOPService(collection, registry)


class TestRuleLifecycle:

    def test_add_rule_is_manual(self, service, make_rule):
        rule = service.add_rule(make_rule("ACME-MOD-0001"))
        assert rule.source == RuleSource.MANUAL
        assert service.summary()["pending"] == 1

    def test_add_duplicate_id(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001"))
        with pytest.raises(DuplicateRuleIdError):
            service.add_rule(make_rule("ACME-MOD-0001", code="99215"))

    def test_add_rule_detects_conflicts(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001", action="@ADD(@25)"))
        service.add_rule(make_rule("ACME-MOD-0002", action="@REMOVE(@25)"))
        assert len(service.conflicts_for("ACME-MOD-0001")) == 2

    def test_reject_and_restore(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001", action="@ADD(@25)"))
        service.add_rule(make_rule("ACME-MOD-0002", action="@REMOVE(@25)"))

        rule = service.reject_rule("ACME-MOD-0002", "payer confirmed modifier 25 is required")
        assert rule.status == RuleStatus.REJECTED
        assert rule.rejection_reason == "payer confirmed modifier 25 is required"
        assert service.conflicts_for("ACME-MOD-0001") == []

        rule = service.restore_rule("ACME-MOD-0002")
        assert rule.status == RuleStatus.PENDING
        assert rule.rejection_reason is None
        assert len(service.conflicts_for("ACME-MOD-0001")) == 2

    def test_edit_rule(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001", action="@ADD(@25)"))
        service.add_rule(make_rule("ACME-MOD-0002", action="@ADD(@59)"))

        rule = service.edit_rule("ACME-MOD-0002", {"action": "@REMOVE(@25)", "created_by": "someone"})
        assert rule.version == 2
        assert rule.action == "@REMOVE(@25)"
        assert rule.created_by == "AI Extraction"
        assert "contradictory" in [c.type.value for c in service.conflicts_for("ACME-MOD-0002")]

    def test_rule_id_is_immutable(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001"))
        with pytest.raises(ValueError):
            service.edit_rule("ACME-MOD-0001", {"rule_id": "ACME-MOD-0009"})

    def test_status_is_not_editable(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001"))
        service.reject_rule("ACME-MOD-0001", "wrong payer")

        with pytest.raises(ValueError):
            service.edit_rule("ACME-MOD-0001", {"status": "active"})
        assert service.collection.get("ACME-MOD-0001").status == RuleStatus.REJECTED

    def test_unchanged_status_is_accepted(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001"))
        rule = service.edit_rule("ACME-MOD-0001", {"status": "pending", "code": "99214"})
        assert rule.code == "99214"

    @pytest.mark.parametrize("changes", [
        {"description": "changed", "status": "bogus"},
        {"description": "changed", "confidence": "high"},
        {"description": "changed", "modifiers": {"25": True}},
    ])
    def test_failed_edit_changes_nothing(self, service, make_rule, changes):
        rule = service.add_rule(make_rule("ACME-MOD-0001"))
        original = rule.description

        with pytest.raises(ValueError):
            service.edit_rule("ACME-MOD-0001", changes)
        assert rule.description == original
        assert rule.status == RuleStatus.PENDING
        assert rule.version == 1

    def test_lifecycle_fields_are_ignored(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001"))
        rule = service.edit_rule("ACME-MOD-0001", {
            "code": "99214", "source": "ai", "version": 9, "new_tags": [{"tag": "@X"}],
        })
        assert rule.source == RuleSource.MANUAL
        assert rule.version == 2
        assert rule.new_tags == []

    def test_unknown_rule(self, service):
        with pytest.raises(RuleNotFoundError):
            service.approve_rule("ACME-MOD-0404")

    def test_delete_rejected(self, service, make_rule):
        service.add_rule(make_rule("ACME-MOD-0001"))
        service.add_rule(make_rule("ACME-MOD-0002", code="99215"))
        service.reject_rule("ACME-MOD-0002")

        assert service.delete_rejected() == ["ACME-MOD-0002"]
        assert service.summary()["total_rules"] == 1


class TestApproval:

    def test_approve_activates_new_tags(self, service, registry, make_rule):
        discovery = TagDiscovery(tag="@TRICARE", type=TagType.PAYER_GROUP)
        registry.ingest(discovery)
        rule = make_rule("ACME-MOD-0001", payer_group="@TRICARE", new_tags=[
            discovery.to_dict(),
            {"tag": "@WORKERS_COMP", "type": "payer_group", "description": "Workers compensation"},
        ])
        service.add_rule(rule)

        approved = service.approve_rule("ACME-MOD-0001")
        assert approved.status == RuleStatus.ACTIVE
        assert registry.find("@TRICARE", TagType.PAYER_GROUP).status == TagStatus.APPROVED
        assert registry.find("@WORKERS_COMP", TagType.PAYER_GROUP).status == TagStatus.ACTIVE

    def test_rejected_tag_stays_rejected(self, service, registry, make_rule):
        entry = registry.ingest(TagDiscovery(tag="@TRICARE", type=TagType.PAYER_GROUP))
        registry.reject(entry.tag_id)
        service.add_rule(make_rule("ACME-MOD-0001", new_tags=[{"tag": "@TRICARE", "type": "payer_group"}]))

        service.approve_rule("ACME-MOD-0001")
        assert entry.status == TagStatus.REJECTED


class TestPersistence:

    def test_mutations_are_saved(self, store, registry, make_rule):
        collection = store.create_sop("Cardiology", "CARD")
        service = SOPService(collection, registry, store)
        service.add_rule(make_rule("CARD-MOD-0001", action="@ADD(@25)"))
        service.add_rule(make_rule("CARD-MOD-0002", action="@REMOVE(@25)"))

        outcome = service.resolve_conflict(
            ConflictResolution("conflict-CARD-MOD-0001-CARD-MOD-0002", "keep_second")
        )
        assert outcome.newly_resolved == 1

        loaded = store.load_collection(collection.sop_id)
        assert loaded.get("CARD-MOD-0001").status == RuleStatus.REJECTED
        assert "conflict-CARD-MOD-0001-CARD-MOD-0002" in loaded.resolved_conflict_ids
        assert store.resolved_conflicts(collection.sop_id)[0]["action"] == "keep_second"

    def test_summary(self, store, registry, make_rule):
        collection = store.create_sop("Cardiology", "CARD")
        service = SOPService(collection, registry, store)
        service.add_rule(make_rule("CARD-MOD-0001", action="@ADD(@25)"))
        service.add_rule(make_rule("CARD-MOD-0002", action="@REMOVE(@25)"))
        service.approve_rule("CARD-MOD-0001")

        summary = service.summary()
        assert summary["client_prefix"] == "CARD"
        assert summary["active"] == 1
        assert summary["pending"] == 1
        assert summary["conflicts"] == 2
