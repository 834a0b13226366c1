"""
Rule, Conflict and ConflictResolution records.
"""
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from sop_engine.errors import InvalidActionError


def now_iso() -> str:
    return datetime.now().isoformat()


def canonical_group(value: Union[str, List[str], None]) -> str:
    """
    Serialized form of a payer/provider group: unique members, sorted,
    pipe-joined. '@MEDICAID|@MEDICARE' == canonical('@MEDICARE, @MEDICAID').
    """
    if value is None:
        return ""
    if isinstance(value, str):
        members = value.replace(",", "|").split("|")
    else:
        members = list(value)
    return "|".join(sorted({m.strip() for m in members if m and m.strip()}))


def split_codes(code: Optional[str]) -> List[str]:
    """Comma-separated code field as an ordered list, blanks dropped."""
    result = []
    for part in (code or "").split(","):
        part = part.strip()
        if part and part not in result:
            result.append(part)
    return result


# ============================================================
# ENUMS
# ============================================================

class RuleStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"


class RuleSource(str, Enum):
    AI = "ai"
    MANUAL = "manual"
    TEMPLATE = "template"
    CSV = "csv"


class ConflictType(str, Enum):
    OVERLAPPING = "overlapping"
    DUPLICATE = "duplicate"
    CONTRADICTORY = "contradictory"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ResolutionAction(str, Enum):
    KEEP_FIRST = "keep_first"
    KEEP_SECOND = "keep_second"
    KEEP_BOTH = "keep_both"
    MERGE = "merge"
    DELETE_BOTH = "delete_both"


def parse_action(action: Union[str, ResolutionAction]) -> ResolutionAction:
    try:
        return ResolutionAction(action)
    except ValueError:
        valid = ", ".join(a.value for a in ResolutionAction)
        raise InvalidActionError(f"Unknown resolution action '{action}' (expected one of: {valid})")


# ============================================================
# CONFLICT
# ============================================================

@dataclass
class Conflict:
    id: str
    type: ConflictType
    severity: Severity
    affected_rule_ids: List[str]
    description: str = ""
    suggestion: str = ""

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "affected_rule_ids": list(self.affected_rule_ids),
            "description": self.description,
            "suggestion": self.suggestion,
        }


# ============================================================
# RULE
# ============================================================

@dataclass
class Rule:
    rule_id: str
    code: str = ""
    code_group: Optional[str] = None
    codes_selected: List[str] = field(default_factory=list)
    action: str = ""
    payer_group: str = ""
    provider_group: str = ""
    description: str = ""
    documentation_trigger: str = ""
    chart_section: str = ""
    modifiers: List[str] = field(default_factory=list)
    effective_date: Optional[str] = None
    end_date: Optional[str] = None
    reference: Optional[str] = None
    status: RuleStatus = RuleStatus.PENDING
    conflicts: List[Conflict] = field(default_factory=list)
    new_tags: List[Dict] = field(default_factory=list)
    source: RuleSource = RuleSource.AI
    confidence: int = 85
    validation_status: str = "valid"
    rejection_reason: Optional[str] = None
    version: int = 1
    created_by: str = "AI Extraction"
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def __post_init__(self):
        self.status = RuleStatus(self.status)
        self.source = RuleSource(self.source)

    @property
    def codes(self) -> List[str]:
        return split_codes(self.code)

    def touch(self):
        self.updated_at = now_iso()

    def to_dict(self, include_conflicts: bool = True) -> Dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["source"] = self.source.value
        if include_conflicts:
            data["conflicts"] = [c.to_dict() for c in self.conflicts]
        else:
            data.pop("conflicts")
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Rule":
        """Build a rule from a flat record; unknown keys and conflicts are ignored."""
        known = {f.name for f in fields(cls)} - {"conflicts"}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        return cls(**kwargs)


# ============================================================
# RESOLUTION
# ============================================================

@dataclass
class ConflictResolution:
    conflict_id: str
    action: ResolutionAction
    merged_rule: Optional[Rule] = None
    timestamp: str = field(default_factory=now_iso)

    def __post_init__(self):
        self.action = parse_action(self.action)
        if isinstance(self.merged_rule, dict):
            self.merged_rule = Rule.from_dict(self.merged_rule)
