"""
Conflict Detector

Full pairwise scan of the active + pending rules of one collection.

    overlapping    (high)    shared code, same payers, different action
    duplicate      (medium)  same code, action, payers and description
    contradictory  (high)    shared code, same payers, add-class vs remove-class action

Both rules of a pair share one conflict id, so an overlapping and a
contradictory finding on the same pair are closed by one resolution.
Ids already in the collection's resolved set are never reported again.
"""
import re
from typing import Iterable, List, Set, Tuple

import config
from sop_engine.grammar import first_tag
from sop_engine.rules.collection import RuleCollection
from sop_engine.rules.models import Conflict, ConflictType, Rule, Severity, canonical_group
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)

CONFLICT_ID_CANONICAL = "canonical"
CONFLICT_ID_SCAN_ORDER = "scan_order"

_WORD_RE = re.compile(r"[A-Z0-9]+")


def conflict_id(first_rule_id: str, second_rule_id: str, mode: str = CONFLICT_ID_CANONICAL) -> str:
    if mode == CONFLICT_ID_CANONICAL:
        first_rule_id, second_rule_id = sorted((first_rule_id, second_rule_id))
    return f"conflict-{first_rule_id}-{second_rule_id}"


def action_tokens(action: str) -> Set[str]:
    """Words of the top-level action tag, e.g. {'COND', 'ADD'} for '@COND_ADD(@25)'."""
    tag = first_tag(action or "")
    if tag is not None:
        return set(tag.name.split("_"))
    return set(_WORD_RE.findall((action or "").upper()))


def action_class(action: str) -> str:
    """'add', 'remove' or '' for anything else."""
    tokens = action_tokens(action)
    if "ADD" in tokens and "REMOVE" not in tokens:
        return "add"
    if "REMOVE" in tokens and "ADD" not in tokens:
        return "remove"
    return ""


class ConflictDetector:
    """
    Stateless scanner; the resolved-id set lives on the collection.

    Args:
        id_mode: "canonical" sorts the two rule ids before building the
            conflict id, "scan_order" keeps collection order.
    """

    def __init__(self, id_mode: str = None):
        self.id_mode = (id_mode or config.CONFLICT_ID_MODE).lower()
        if self.id_mode not in (CONFLICT_ID_CANONICAL, CONFLICT_ID_SCAN_ORDER):
            raise ValueError(f"Unknown conflict id mode: {self.id_mode}")

    def _is_resolved(self, first: Rule, second: Rule, resolved: Set[str]) -> bool:
        # Either ordering counts, so records written under one id mode
        # keep suppressing the pair under the other.
        return (
            conflict_id(first.rule_id, second.rule_id, CONFLICT_ID_SCAN_ORDER) in resolved
            or conflict_id(second.rule_id, first.rule_id, CONFLICT_ID_SCAN_ORDER) in resolved
        )

    def compare(self, first: Rule, second: Rule) -> List[Conflict]:
        """All findings for one ordered pair, ignoring the resolved set."""
        cid = conflict_id(first.rule_id, second.rule_id, self.id_mode)
        pair = [first.rule_id, second.rule_id]
        found = []

        first_codes = first.codes
        second_codes = set(second.codes)
        overlap = [c for c in first_codes if c in second_codes]
        same_payer = canonical_group(first.payer_group) == canonical_group(second.payer_group)
        same_action = first.action.strip() == second.action.strip()

        if overlap and same_payer and not same_action:
            found.append(Conflict(
                id=cid,
                type=ConflictType.OVERLAPPING,
                severity=Severity.HIGH,
                affected_rule_ids=pair,
                description=f"Overlapping rules for code(s) {', '.join(overlap)} with different actions",
                suggestion=(f"Review rules {first.rule_id} and {second.rule_id} - they have "
                            f"conflicting actions for the same code and payer"),
            ))

        if (
            first_codes == second.codes
            and same_action
            and same_payer
            and first.description.strip() == second.description.strip()
        ):
            found.append(Conflict(
                id=cid,
                type=ConflictType.DUPLICATE,
                severity=Severity.MEDIUM,
                affected_rule_ids=pair,
                description="Duplicate rules detected",
                suggestion=(f"Rules {first.rule_id} and {second.rule_id} are identical - "
                            f"consider keeping only one"),
            ))

        if overlap and same_payer and {action_class(first.action), action_class(second.action)} == {"add", "remove"}:
            found.append(Conflict(
                id=cid,
                type=ConflictType.CONTRADICTORY,
                severity=Severity.HIGH,
                affected_rule_ids=pair,
                description=f"Contradictory actions (ADD vs REMOVE) for code(s) {', '.join(overlap)}",
                suggestion=(f"Review rules {first.rule_id} and {second.rule_id} - they have "
                            f"contradictory actions"),
            ))

        return found

    def find(self, rules: Iterable[Rule], resolved: Set[str] = None) -> List[Conflict]:
        """Pairwise scan over rules in the given order; does not touch the rules."""
        resolved = resolved or set()
        rules = list(rules)
        conflicts = []
        for i in range(len(rules)):
            for j in range(i + 1, len(rules)):
                first, second = rules[i], rules[j]
                if self._is_resolved(first, second, resolved):
                    continue
                conflicts.extend(self.compare(first, second))
        return conflicts

    def scan(self, collection: RuleCollection) -> List[Conflict]:
        """
        Recompute conflicts for a collection and attach them to the rules.

        Rejected rules are skipped and end up with an empty conflict list.
        """
        conflicts = self.find(collection.participating(), collection.resolved_conflict_ids)

        by_rule = {}
        for conflict in conflicts:
            for rule_id in conflict.affected_rule_ids:
                by_rule.setdefault(rule_id, []).append(conflict)
        for rule in collection.rules:
            rule.conflicts = by_rule.get(rule.rule_id, [])

        if conflicts:
            logger.info(f"[{collection.sop_id}] {len(conflicts)} conflict(s) detected")
        return conflicts


def pair_ids(conflict: Conflict) -> Tuple[str, str]:
    first, second = conflict.affected_rule_ids
    return first, second
