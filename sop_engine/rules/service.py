"""
SOP Service - single-writer facade over one rule collection.

Every mutation is followed by a full conflict rescan and, when a store
is attached, by a save of the collection.
"""
from typing import Dict, List, Optional

from sop_engine.rules.collection import RuleCollection
from sop_engine.rules.conflicts import ConflictDetector
from sop_engine.rules.models import Conflict, ConflictResolution, Rule, RuleSource, RuleStatus
from sop_engine.rules.resolver import ConflictResolver, ResolutionOutcome
from sop_engine.tags import TagRegistry, TagType
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)


class SOPService:

    def __init__(self, collection: RuleCollection, registry: TagRegistry,
                 store=None, detector: ConflictDetector = None):
        self.collection = collection
        self.registry = registry
        self.store = store
        self.detector = detector or ConflictDetector()
        self.resolver = ConflictResolver(self.detector)

    def _commit(self) -> List[Conflict]:
        conflicts = self.detector.scan(self.collection)
        if self.store is not None:
            self.store.save_collection(self.collection)
        return conflicts

    # === Conflicts ===

    def detect_conflicts(self) -> List[Conflict]:
        return self._commit()

    def conflicts_for(self, rule_id: str) -> List[Conflict]:
        return list(self.collection.get(rule_id).conflicts)

    def resolve_conflict(self, resolution: ConflictResolution) -> ResolutionOutcome:
        outcome = self.resolver.apply(self.collection, resolution)
        if outcome.newly_resolved and self.store is not None:
            self.store.save_collection(self.collection)
            self.store.record_resolution(self.collection.sop_id, outcome.conflict_id,
                                         outcome.action.value, resolution.timestamp)
        return outcome

    # === Rules ===

    def add_rule(self, rule: Rule) -> Rule:
        """Manually authored rule."""
        rule.source = RuleSource.MANUAL
        self.collection.add(rule)
        self._commit()
        return rule

    def approve_rule(self, rule_id: str) -> Rule:
        """
        Activate a rule and make the tags it introduced authoritative.

        Tags that were already rejected stay rejected.
        """
        rule = self.collection.approve(rule_id)
        for item in rule.new_tags:
            try:
                tag_type = TagType(item.get("type"))
            except ValueError:
                logger.warning(f"{rule_id}: skipping new tag {item.get('tag')} with unknown type")
                continue
            self.registry.activate(item["tag"], tag_type, description=item.get("description", ""))
        self._commit()
        return rule

    def reject_rule(self, rule_id: str, reason: Optional[str] = None) -> Rule:
        rule = self.collection.reject(rule_id, reason)
        self._commit()
        return rule

    def restore_rule(self, rule_id: str) -> Rule:
        rule = self.collection.restore(rule_id)
        self._commit()
        return rule

    def edit_rule(self, rule_id: str, changes: Dict) -> Rule:
        rule = self.collection.edit(rule_id, changes)
        self._commit()
        return rule

    def delete_rejected(self) -> List[str]:
        removed = self.collection.remove_rejected()
        if removed:
            logger.info(f"[{self.collection.sop_id}] deleted {len(removed)} rejected rule(s)")
        self._commit()
        return removed

    def summary(self) -> Dict:
        rules = self.collection.rules
        return {
            "sop_id": self.collection.sop_id,
            "name": self.collection.name,
            "client_prefix": self.collection.client_prefix,
            "total_rules": len(rules),
            "pending": sum(1 for r in rules if r.status == RuleStatus.PENDING),
            "active": sum(1 for r in rules if r.status == RuleStatus.ACTIVE),
            "rejected": sum(1 for r in rules if r.status == RuleStatus.REJECTED),
            "conflicts": len(self.collection.all_conflicts()),
            "resolved_conflicts": len(self.collection.resolved_conflict_ids),
        }
