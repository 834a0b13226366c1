"""
Conflict Resolver

Applies an operator decision to one conflict:

    keep_first    reject the second rule
    keep_second   reject the first rule
    keep_both     no rule change
    merge         reject both, insert the supplied merged rule
    delete_both   reject both

The conflict id joins the collection's resolved set before any rule is
touched, is stripped from every rule, and the collection is rescanned.
Everything that can fail is checked first, so a failed resolution leaves
the collection unchanged.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sop_engine.errors import ConflictNotFoundError, DuplicateRuleIdError, InvalidActionError
from sop_engine.rules.collection import RuleCollection
from sop_engine.rules.conflicts import ConflictDetector, pair_ids
from sop_engine.rules.models import (
    Conflict,
    ConflictResolution,
    ResolutionAction,
    RuleStatus,
    parse_action,
)
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ResolutionOutcome:
    conflict_id: str
    action: ResolutionAction
    newly_resolved: int = 0
    rejected_rule_ids: List[str] = field(default_factory=list)
    added_rule_id: Optional[str] = None
    remaining: List[Conflict] = field(default_factory=list)

    @property
    def already_resolved(self) -> bool:
        return self.newly_resolved == 0

    def to_dict(self) -> Dict:
        return {
            "conflict_id": self.conflict_id,
            "action": self.action.value,
            "newly_resolved": self.newly_resolved,
            "rejected_rule_ids": list(self.rejected_rule_ids),
            "added_rule_id": self.added_rule_id,
            "remaining": [c.to_dict() for c in self.remaining],
        }


class ConflictResolver:

    def __init__(self, detector: ConflictDetector = None):
        self.detector = detector or ConflictDetector()

    @staticmethod
    def _locate(collection: RuleCollection, conflict_id: str) -> Optional[Conflict]:
        for rule in collection.rules:
            for conflict in rule.conflicts:
                if conflict.id == conflict_id:
                    return conflict
        return None

    def apply(self, collection: RuleCollection, resolution: ConflictResolution) -> ResolutionOutcome:
        action = parse_action(resolution.action)
        cid = resolution.conflict_id

        if cid in collection.resolved_conflict_ids:
            logger.info(f"[{collection.sop_id}] {cid} already resolved, nothing to do")
            return ResolutionOutcome(
                conflict_id=cid,
                action=action,
                remaining=collection.all_conflicts(),
            )

        conflict = self._locate(collection, cid)
        if conflict is None:
            raise ConflictNotFoundError(cid)

        first_id, second_id = pair_ids(conflict)
        collection.get(first_id)
        collection.get(second_id)
        merged = resolution.merged_rule
        if action == ResolutionAction.MERGE:
            if merged is None:
                raise InvalidActionError("merge requires a merged rule")
            if collection.find(merged.rule_id) is not None:
                raise DuplicateRuleIdError(merged.rule_id)

        # Record the decision first so the rescan below cannot resurrect it
        collection.resolved_conflict_ids.add(cid)

        if action == ResolutionAction.KEEP_FIRST:
            rejected = [second_id]
            reason = f"Conflict resolution: kept first rule {first_id}"
        elif action == ResolutionAction.KEEP_SECOND:
            rejected = [first_id]
            reason = f"Conflict resolution: kept second rule {second_id}"
        elif action == ResolutionAction.MERGE:
            rejected = [first_id, second_id]
            reason = "Conflict resolution: merged"
        elif action == ResolutionAction.DELETE_BOTH:
            rejected = [first_id, second_id]
            reason = "Conflict resolution: deleted both"
        else:
            rejected = []
            reason = None

        for rule_id in rejected:
            if collection.get(rule_id).status != RuleStatus.REJECTED:
                collection.reject(rule_id, reason)

        added_rule_id = None
        if action == ResolutionAction.MERGE:
            collection.add(merged)
            added_rule_id = merged.rule_id

        for rule in collection.rules:
            rule.conflicts = [c for c in rule.conflicts if c.id != cid]

        remaining = self.detector.scan(collection)
        logger.info(
            f"[{collection.sop_id}] {cid} resolved with {action.value}; "
            f"{len(remaining)} conflict(s) remaining"
        )

        return ResolutionOutcome(
            conflict_id=cid,
            action=action,
            newly_resolved=1,
            rejected_rule_ids=rejected,
            added_rule_id=added_rule_id,
            remaining=remaining,
        )
