"""
Rule Collection - the ordered, mutable set of rules owned by one SOP.
"""
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, ValidationError

from sop_engine.errors import DuplicateRuleIdError, RuleNotFoundError
from sop_engine.rules.models import Rule, RuleSource, RuleStatus, now_iso

_SEQUENCE_RE = re.compile(r"-(\d+)$")


class RuleChanges(BaseModel):
    """Fields an edit may change; other keys (source, version, new_tags, audit stamps) are ignored."""
    code: str = ""
    code_group: Optional[str] = None
    codes_selected: List[str] = []
    action: str = ""
    payer_group: str = ""
    provider_group: str = ""
    description: str = ""
    documentation_trigger: str = ""
    chart_section: str = ""
    modifiers: List[str] = []
    effective_date: Optional[str] = None
    end_date: Optional[str] = None
    reference: Optional[str] = None
    confidence: int = 85


def new_sop_id() -> str:
    return f"sop-{uuid.uuid4().hex[:12]}"


@dataclass
class RuleCollection:
    sop_id: str
    name: str = ""
    client_prefix: str = "SOP"
    rules: List[Rule] = field(default_factory=list)
    resolved_conflict_ids: Set[str] = field(default_factory=set)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def __len__(self):
        return len(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def find(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    def get(self, rule_id: str) -> Rule:
        rule = self.find(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def add(self, rule: Rule) -> Rule:
        if self.find(rule.rule_id) is not None:
            raise DuplicateRuleIdError(rule.rule_id)
        self.rules.append(rule)
        self.updated_at = now_iso()
        return rule

    def participating(self) -> List[Rule]:
        """Rules that take part in conflict scanning (active + pending), in order."""
        return [r for r in self.rules if r.status in (RuleStatus.ACTIVE, RuleStatus.PENDING)]

    def next_sequence(self) -> int:
        """Next free numeric rule-id suffix (1-based)."""
        highest = 0
        for rule in self.rules:
            match = _SEQUENCE_RE.search(rule.rule_id)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1

    # === Status changes ===

    def _set_status(self, rule_id: str, status: RuleStatus, reason: str = None) -> Rule:
        rule = self.get(rule_id)
        rule.status = status
        rule.rejection_reason = reason if status == RuleStatus.REJECTED else None
        rule.touch()
        self.updated_at = now_iso()
        return rule

    def approve(self, rule_id: str) -> Rule:
        return self._set_status(rule_id, RuleStatus.ACTIVE)

    def reject(self, rule_id: str, reason: str = None) -> Rule:
        return self._set_status(rule_id, RuleStatus.REJECTED, reason)

    def restore(self, rule_id: str) -> Rule:
        """Bring a rejected rule back for review."""
        return self._set_status(rule_id, RuleStatus.PENDING)

    def edit(self, rule_id: str, changes: Dict) -> Rule:
        """
        Apply content changes to a rule. Changes are validated as a whole
        before anything is written, so a rejected edit leaves the rule as it was.
        """
        rule = self.get(rule_id)
        if changes.get("rule_id", rule_id) != rule_id:
            raise ValueError(f"rule_id of {rule_id} is immutable")
        status = changes.get("status", rule.status)
        if getattr(status, "value", status) != rule.status.value:
            raise ValueError(f"status of {rule_id} changes only through approve, reject or restore")

        try:
            accepted = RuleChanges.model_validate(changes).model_dump(exclude_unset=True)
        except ValidationError as e:
            error = e.errors()[0]
            field_name = ".".join(str(p) for p in error["loc"])
            raise ValueError(f"invalid change to {field_name} of {rule_id}: {error['msg']}")

        for key, value in accepted.items():
            setattr(rule, key, value)
        rule.source = RuleSource.MANUAL
        rule.version += 1
        rule.touch()
        self.updated_at = now_iso()
        return rule

    def remove_rejected(self) -> List[str]:
        """Drop rejected rules for good; returns the removed ids."""
        removed = [r.rule_id for r in self.rules if r.status == RuleStatus.REJECTED]
        self.rules = [r for r in self.rules if r.status != RuleStatus.REJECTED]
        if removed:
            self.updated_at = now_iso()
        return removed

    def all_conflicts(self):
        """Conflicts currently attached to rules, de-duplicated, in rule order."""
        seen = {}
        for rule in self.rules:
            for conflict in rule.conflicts:
                seen.setdefault((conflict.id, conflict.type), conflict)
        return list(seen.values())
