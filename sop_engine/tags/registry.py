"""
Tag Registry

Shared vocabulary of symbolic tags (code groups, payer groups, provider
groups, actions, chart sections). A tag is identified by its string and
its type; the registry owns existence checks, category resolution, the
pending-review queue and approve/reject transitions.

Review workflow:
    PENDING_REVIEW -> APPROVED   (terminal)
    PENDING_REVIEW -> REJECTED   (terminal)
Seeded vocabulary is ACTIVE from the start.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from sop_engine.errors import InvalidTransitionError, TagNotFoundError
from sop_engine.tags.seed import default_entries
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)


class TagType(str, Enum):
    CODE_GROUP = "code_group"
    PAYER_GROUP = "payer_group"
    PROVIDER_GROUP = "provider_group"
    ACTION = "action"
    CHART_SECTION = "chart_section"


CATEGORY_OTHER = "other"


class TagStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_DEFINITION = "NEEDS_DEFINITION"
    DEPRECATED = "DEPRECATED"


# Statuses visible to lookups and category resolution
AUTHORITATIVE_STATUSES = {
    TagStatus.ACTIVE,
    TagStatus.APPROVED,
    TagStatus.NEEDS_DEFINITION,
    TagStatus.DEPRECATED,
}


class IngestionPolicy(str, Enum):
    REVIEW = "review"
    AUTO_APPROVE = "auto_approve"


# Keyword heuristics for tags found in free text with no registry entry
_PAYER_WORDS = ("BCBS", "AETNA", "CIGNA", "UHC", "HUMANA", "MEDICARE", "MEDICAID", "COMMERCIAL")
_PROVIDER_WORDS = ("PHYSICIAN", "PROVIDER", "NP", "PA", "MD", "DO")
_ACTION_PREFIXES = ("ADD", "REMOVE", "SWAP", "LINK", "COND", "ALWAYS", "NEVER")
_CHART_WORDS = ("SECTION", "HPI", "ASSESSMENT", "PLAN", "PROCEDURE", "DIAGNOSIS")


def normalize_tag(tag: str, tag_type: TagType) -> str:
    """Registry form of a tag: no parameter, '@' prefix except for chart sections."""
    tag = (tag or "").strip()
    if "(" in tag:
        tag = tag[:tag.index("(")]
    name = tag.lstrip("@").upper()
    if TagType(tag_type) == TagType.CHART_SECTION:
        return name
    return f"@{name}"


def make_tag_id(tag: str, tag_type: TagType) -> str:
    return f"{TagType(tag_type).value}:{normalize_tag(tag, tag_type)}"


def _now() -> str:
    return datetime.now().isoformat()


# ============================================================
# RECORDS
# ============================================================

@dataclass
class TagEntry:
    tag: str
    type: TagType
    description: str = ""
    status: TagStatus = TagStatus.PENDING_REVIEW
    usage_count: int = 0
    created_by: str = "AI"
    origin_rule_id: Optional[str] = None
    origin_sop_id: Optional[str] = None
    expands_to: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def tag_id(self) -> str:
        return f"{self.type.value}:{self.tag}"

    @property
    def authoritative(self) -> bool:
        return self.status in AUTHORITATIVE_STATUSES

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        data["tag_id"] = self.tag_id
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "TagEntry":
        return cls(
            tag=data["tag"],
            type=TagType(data["type"]),
            description=data.get("description") or "",
            status=TagStatus(data.get("status") or TagStatus.PENDING_REVIEW),
            usage_count=int(data.get("usage_count") or 0),
            created_by=data.get("created_by") or "AI",
            origin_rule_id=data.get("origin_rule_id"),
            origin_sop_id=data.get("origin_sop_id"),
            expands_to=list(data.get("expands_to") or []),
            created_at=data.get("created_at") or _now(),
            updated_at=data.get("updated_at") or _now(),
        )


@dataclass
class TagDiscovery:
    """A tag referenced by a new rule that the registry does not know yet."""
    tag: str
    type: TagType
    description: str = ""
    origin_rule_id: Optional[str] = None
    origin_sop_id: Optional[str] = None
    created_at: str = field(default_factory=_now)
    status: TagStatus = TagStatus.PENDING_REVIEW

    def to_dict(self) -> Dict:
        return {
            "tag": self.tag,
            "type": TagType(self.type).value,
            "description": self.description,
            "origin_rule_id": self.origin_rule_id,
            "origin_sop_id": self.origin_sop_id,
            "created_at": self.created_at,
            "status": TagStatus(self.status).value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TagDiscovery":
        return cls(
            tag=data["tag"],
            type=TagType(data["type"]),
            description=data.get("description") or "",
            origin_rule_id=data.get("origin_rule_id"),
            origin_sop_id=data.get("origin_sop_id"),
            created_at=data.get("created_at") or _now(),
            status=TagStatus(data.get("status") or TagStatus.PENDING_REVIEW),
        )


# ============================================================
# REGISTRY
# ============================================================

class TagRegistry:
    """
    In-memory tag vocabulary, optionally backed by an SOPStore.

    Every state change is written through to the store so tag
    decisions survive a restart.
    """

    def __init__(self, entries: Optional[List[TagEntry]] = None, store=None):
        self.store = store
        self._entries: Dict[str, TagEntry] = {}
        for entry in entries or []:
            self._entries[entry.tag_id] = entry

    @classmethod
    def with_defaults(cls, store=None) -> "TagRegistry":
        registry = cls(store=store)
        registry.seed_defaults()
        return registry

    @classmethod
    def from_store(cls, store) -> "TagRegistry":
        entries = [TagEntry.from_dict(row) for row in store.load_tags()]
        registry = cls(entries, store=store)
        if not entries:
            registry.seed_defaults()
        return registry

    def seed_defaults(self):
        for type_value, items in default_entries().items():
            for item in items:
                self.register(
                    item["tag"], TagType(type_value),
                    description=item.get("description", ""),
                    expands_to=item.get("expands_to"),
                )

    def _save(self, entry: TagEntry):
        entry.updated_at = _now()
        if self.store is not None:
            self.store.save_tag(entry)

    # === Lookups ===

    def find(self, tag: str, tag_type: TagType) -> Optional[TagEntry]:
        return self._entries.get(make_tag_id(tag, tag_type))

    def get(self, tag_id: str) -> TagEntry:
        entry = self._entries.get(tag_id)
        if entry is None:
            raise TagNotFoundError(tag_id)
        return entry

    def exists(self, tag: str, tag_type: TagType) -> bool:
        """True when the tag is known and authoritative for this type."""
        entry = self.find(tag, tag_type)
        return entry is not None and entry.authoritative

    def all(self, tag_type: Optional[TagType] = None,
            status: Optional[TagStatus] = None) -> List[TagEntry]:
        entries = list(self._entries.values())
        if tag_type is not None:
            entries = [e for e in entries if e.type == TagType(tag_type)]
        if status is not None:
            entries = [e for e in entries if e.status == TagStatus(status)]
        return entries

    def pending(self) -> List[TagEntry]:
        return self.all(status=TagStatus.PENDING_REVIEW)

    def _names(self, tag_type: TagType) -> List[str]:
        """Authoritative tag names of a type, without the '@' prefix."""
        return [e.tag.lstrip("@") for e in self._entries.values()
                if e.type == tag_type and e.authoritative]

    def expand_code_group(self, tag: str) -> List[str]:
        entry = self.find(tag, TagType.CODE_GROUP)
        if entry is None or not entry.authoritative:
            return []
        return list(entry.expands_to)

    def lookup_tables(self) -> Dict[str, List[Dict]]:
        """Authoritative vocabulary grouped by type, for prompts and clients."""
        tables = {t.value: [] for t in TagType}
        for entry in self._entries.values():
            if entry.authoritative:
                row = {"tag": entry.tag, "description": entry.description}
                if entry.expands_to:
                    row["expands_to"] = entry.expands_to
                tables[entry.type.value].append(row)
        return tables

    # === Category resolution ===

    def category_of(self, tag: str) -> str:
        """
        Resolve the category of a bare tag.

        Order: payer (exact) -> action (prefix) -> code group (exact)
        -> provider (fuzzy) -> chart section (exact) -> "other".
        """
        clean = (tag or "").strip()
        if "(" in clean:
            clean = clean[:clean.index("(")]
        clean = clean.lstrip("@")
        if not clean:
            return CATEGORY_OTHER

        if clean in self._names(TagType.PAYER_GROUP):
            return TagType.PAYER_GROUP.value

        if any(clean.startswith(a) for a in self._names(TagType.ACTION)):
            return TagType.ACTION.value

        if clean in self._names(TagType.CODE_GROUP):
            return TagType.CODE_GROUP.value

        head = clean.split("_")[0]
        for provider in self._names(TagType.PROVIDER_GROUP):
            if clean == provider or provider in clean or head in provider:
                return TagType.PROVIDER_GROUP.value

        if clean in self._names(TagType.CHART_SECTION):
            return TagType.CHART_SECTION.value

        return CATEGORY_OTHER

    @staticmethod
    def suggest_type(tag: str) -> TagType:
        """Guess a type for an unknown tag from its name."""
        name = normalize_tag(tag, TagType.CODE_GROUP).lstrip("@")
        words = name.split("_")
        if any(w in name for w in _PAYER_WORDS):
            return TagType.PAYER_GROUP
        if any(w in words for w in _PROVIDER_WORDS) or "PHYSICIAN" in name or "PROVIDER" in name:
            return TagType.PROVIDER_GROUP
        if name.startswith(_ACTION_PREFIXES):
            return TagType.ACTION
        if any(w in name for w in _CHART_WORDS):
            return TagType.CHART_SECTION
        return TagType.CODE_GROUP

    # === Mutations ===

    def register(self, tag: str, tag_type: TagType, description: str = "",
                 status: TagStatus = TagStatus.ACTIVE, created_by: str = "SYSTEM",
                 expands_to: Optional[List[str]] = None) -> TagEntry:
        """Add a vocabulary entry directly; an existing entry is returned unchanged."""
        tag_type = TagType(tag_type)
        existing = self.find(tag, tag_type)
        if existing is not None:
            return existing

        entry = TagEntry(
            tag=normalize_tag(tag, tag_type),
            type=tag_type,
            description=description,
            status=TagStatus(status),
            created_by=created_by,
            expands_to=list(expands_to or []),
        )
        self._entries[entry.tag_id] = entry
        self._save(entry)
        return entry

    def ingest(self, discovery: TagDiscovery,
               policy: IngestionPolicy = IngestionPolicy.REVIEW) -> TagEntry:
        """
        Record a discovered tag.

        A known (tag, type) pair only gets its usage count incremented.
        New tags start with usage_count=1, PENDING_REVIEW under the REVIEW
        policy and APPROVED under AUTO_APPROVE. AUTO_APPROVE also promotes
        a known tag that is still waiting for review.
        """
        tag_type = TagType(discovery.type)
        policy = IngestionPolicy(policy)
        entry = self.find(discovery.tag, tag_type)

        if entry is not None:
            entry.usage_count += 1
            if policy == IngestionPolicy.AUTO_APPROVE and entry.status == TagStatus.PENDING_REVIEW:
                entry.status = TagStatus.APPROVED
            self._save(entry)
            return entry

        status = TagStatus.APPROVED if policy == IngestionPolicy.AUTO_APPROVE else TagStatus.PENDING_REVIEW
        entry = TagEntry(
            tag=normalize_tag(discovery.tag, tag_type),
            type=tag_type,
            description=discovery.description,
            status=status,
            usage_count=1,
            created_by="AI",
            origin_rule_id=discovery.origin_rule_id,
            origin_sop_id=discovery.origin_sop_id,
            created_at=discovery.created_at,
        )
        self._entries[entry.tag_id] = entry
        self._save(entry)
        logger.info(f"New tag {entry.tag} ({tag_type.value}) -> {status.value}")
        return entry

    def approve(self, tag_id: str) -> TagEntry:
        entry = self.get(tag_id)
        if entry.status == TagStatus.REJECTED:
            raise InvalidTransitionError(f"Tag {tag_id} was rejected and cannot be approved")
        if entry.status in (TagStatus.PENDING_REVIEW, TagStatus.NEEDS_DEFINITION):
            entry.status = TagStatus.APPROVED
            self._save(entry)
            logger.info(f"Tag {tag_id} approved")
        return entry

    def reject(self, tag_id: str) -> TagEntry:
        """Mark a tag non-authoritative. Rules that reference it are left alone."""
        entry = self.get(tag_id)
        if entry.status == TagStatus.REJECTED:
            return entry
        if entry.status not in (TagStatus.PENDING_REVIEW, TagStatus.NEEDS_DEFINITION):
            raise InvalidTransitionError(
                f"Tag {tag_id} is {entry.status.value} and cannot be rejected"
            )
        entry.status = TagStatus.REJECTED
        self._save(entry)
        logger.info(f"Tag {tag_id} rejected")
        return entry

    def activate(self, tag: str, tag_type: TagType, description: str = "",
                 created_by: str = "RULE_APPROVAL") -> TagEntry:
        """Make a tag authoritative because a rule using it was approved."""
        entry = self.find(tag, tag_type)
        if entry is None:
            return self.register(tag, tag_type, description=description, created_by=created_by)
        if entry.status in (TagStatus.PENDING_REVIEW, TagStatus.NEEDS_DEFINITION):
            return self.approve(entry.tag_id)
        return entry
