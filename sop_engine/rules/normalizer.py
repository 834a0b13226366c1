"""
Candidate Normalizer

Maps one extraction candidate to a canonical Rule plus the tags it
references that the registry does not know yet.

Two candidate shapes are accepted:

    RawCandidate     {codes, payers, providers, action_description, conditions,
                      effective_date, end_date, reference, documentation_trigger}
    ShapedCandidate  {"rule": {...canonical fields...}, "new_tags": {...}}

Rule ids follow {client_prefix}-{CATEGORY}-{index+1:04d}, where CATEGORY
comes from the action text (MOD, EM, PROC, DX, TELE, RULE).
"""
import json
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError, field_validator

import config
from sop_engine.errors import MalformedCandidateError
from sop_engine.grammar import (
    TextRun,
    first_tag,
    format_description,
    tokenize,
    top_level_tags,
    validate_description,
)
from sop_engine.rules.models import Rule, RuleSource, RuleStatus, now_iso, split_codes
from sop_engine.tags import CATEGORY_OTHER, TagDiscovery, TagRegistry, TagType, normalize_tag
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)


# ============================================================
# CANDIDATE MODELS
# ============================================================

class RawCandidate(BaseModel):
    codes: Optional[str] = None
    payers: Optional[str] = None
    providers: Optional[str] = None
    action_description: Optional[str] = None
    conditions: Optional[str] = None
    effective_date: Optional[str] = None
    end_date: Optional[str] = None
    reference: Optional[str] = None
    documentation_trigger: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _flatten(cls, value):
        # Models sometimes answer with lists or numbers instead of strings
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value if v is not None)
        if isinstance(value, (int, float)):
            return str(value)
        return value


class ShapedRule(BaseModel):
    """Canonical rule fields a model may send; lifecycle fields are dropped."""
    rule_id: Optional[str] = None
    code: Optional[str] = None
    code_group: Optional[str] = None
    codes_selected: Optional[List[str]] = None
    action: Optional[str] = None
    action_description: Optional[str] = None
    payer_group: Optional[str] = None
    provider_group: Optional[str] = None
    description: Optional[str] = None
    documentation_trigger: Optional[str] = None
    chart_section: Optional[str] = None
    modifiers: Optional[List[str]] = None
    effective_date: Optional[str] = None
    end_date: Optional[str] = None
    reference: Optional[str] = None

    @field_validator("code", mode="before")
    @classmethod
    def _join_codes(cls, value):
        if isinstance(value, (list, tuple)):
            return ",".join(str(v) for v in value if v is not None)
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("payer_group", "provider_group", mode="before")
    @classmethod
    def _join_group(cls, value):
        if isinstance(value, (list, tuple)):
            return "|".join(str(v) for v in value if v is not None)
        return value

    @field_validator("codes_selected", "modifiers", mode="before")
    @classmethod
    def _split_list(cls, value):
        if isinstance(value, str):
            return split_codes(value)
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value if v is not None]
        return value


class ShapedCandidate(BaseModel):
    rule: ShapedRule
    new_tags: Optional[Any] = None


Candidate = Union[RawCandidate, ShapedCandidate]

RAW_FIELDS = set(RawCandidate.model_fields)


def strip_json_fences(text: str) -> str:
    """Strip markdown code fences from model output."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_candidate(payload: Any) -> Candidate:
    """Validate a payload once at the boundary; raises MalformedCandidateError."""
    if isinstance(payload, (RawCandidate, ShapedCandidate)):
        return payload

    if isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
        try:
            payload = json.loads(strip_json_fences(text))
        except json.JSONDecodeError as e:
            raise MalformedCandidateError(f"candidate is not valid JSON: {e}")

    if not isinstance(payload, dict):
        raise MalformedCandidateError(f"candidate must be an object, got {type(payload).__name__}")

    try:
        if "rule" in payload:
            if not isinstance(payload["rule"], dict):
                raise MalformedCandidateError("'rule' must be an object")
            return ShapedCandidate.model_validate(payload)
        if not RAW_FIELDS.intersection(payload):
            raise MalformedCandidateError("candidate has none of the expected fields")
        return RawCandidate.model_validate(payload)
    except ValidationError as e:
        raise MalformedCandidateError(f"candidate failed validation: {e.errors()[0]['msg']}")


# ============================================================
# FIELD MAPPING
# ============================================================

_SPLIT_RE = re.compile(r"\s*(?:[,;|]|\band\b|\bor\b)\s*", re.IGNORECASE)
_CODE_SPLIT_RE = re.compile(r"[,;\s]+")
_NAME_RE = re.compile(r"[^A-Z0-9&]+")
_MODIFIER_RE = re.compile(r"\b(?i:modifiers?)\s*-?\s*((?:[0-9A-Z]{2}\b(?:\s*(?:,|/|and|or)\s*)?)+)")
_MODIFIER_CODE_RE = re.compile(r"[0-9A-Z]{2}")
_CODE_RE = re.compile(r"\b(\d{5}|[A-Z]\d{4})\b")

# Checked in order; first hit wins
_ACTION_VERBS = [
    (("never link",), "NEVER_LINK"),
    (("link",), "LINK_IF_MODIFIER"),
    (("swap", "replace"), "SWAP"),
    (("remove", "delete", "drop", "strip"), "REMOVE"),
    (("add", "append", "attach", "bill"), "ADD"),
]

_CHART_KEYWORDS = [
    ("telehealth", "TELEHEALTH"),
    ("time", "TIME_ATTEST_SECTION"),
    ("procedure", "PROCEDURE_SECTION"),
    ("surg", "SURGICAL_NOTES"),
    ("diagnos", "DIAGNOSIS"),
    ("history", "HPI"),
    ("exam", "PHYSICAL_EXAM"),
    ("medication", "MEDICATION_MANAGEMENT"),
    ("preventive", "PREVENTIVE_CARE"),
]

_ALL_WORDS = {"ALL", "ALL_PAYERS", "ANY", "ALL_PAYER"}


def tag_name(text: str) -> str:
    return _NAME_RE.sub("_", (text or "").upper()).strip("_")


def generate_category(action_description: Optional[str]) -> str:
    text = (action_description or "").lower()
    if "modifier" in text:
        return "MOD"
    if "e&m" in text or "e/m" in text:
        return "EM"
    if "procedure" in text:
        return "PROC"
    if "diagnosis" in text:
        return "DX"
    if "telehealth" in text:
        return "TELE"
    return "RULE"


def make_rule_id(client_prefix: str, category: str, index: int) -> str:
    return f"{client_prefix}-{category}-{index + 1:04d}"


def _contains_word(text: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", text) is not None


def rule_problems(rule: Rule) -> List[str]:
    """Warning-level findings for a rule: description grammar and code selection."""
    problems = list(validate_description(rule.description))
    tag = first_tag(rule.action)
    if tag is not None and (tag.name == "SWAP" or tag.name.startswith("COND_")):
        if not rule.codes_selected:
            problems.append(f"{tag.bare} actions need codes_selected")
    return problems


@dataclass
class NormalizationContext:
    """Where a candidate came from."""
    sop_id: Optional[str] = None
    client_prefix: str = config.DEFAULT_CLIENT_PREFIX
    upload_date: Optional[str] = None
    file_name: Optional[str] = None
    source: RuleSource = RuleSource.AI
    created_by: str = "AI Extraction"


@dataclass
class NormalizedCandidate:
    rule: Rule
    discoveries: List[TagDiscovery] = field(default_factory=list)


# ============================================================
# NORMALIZER
# ============================================================

class CandidateNormalizer:

    def __init__(self, registry: TagRegistry):
        self.registry = registry

    # === Tag mapping ===

    def _group(self, text: Optional[str], tag_type: TagType, default: str) -> str:
        """Free-text names ('Medicare, Medicaid') as a pipe group ('@MEDICARE|@MEDICAID')."""
        if not text or not text.strip():
            return default
        if text.strip().startswith("@"):
            tags = [t.bare for t in top_level_tags(text)]
            return "|".join(dict.fromkeys(tags)) or default

        by_description = {e.description.lower(): e.tag for e in self.registry.all(tag_type)
                          if e.description and e.authoritative}
        tags = []
        for part in _SPLIT_RE.split(text):
            part = part.strip()
            if not part:
                continue
            if part.lower() in by_description:
                tag = by_description[part.lower()]
            else:
                name = tag_name(part.lstrip("@"))
                if not name:
                    continue
                if tag_type == TagType.PAYER_GROUP and name in _ALL_WORDS:
                    name = "ALL"
                tag = f"@{name}"
            if tag not in tags:
                tags.append(tag)
        return "|".join(tags) or default

    def _codes(self, text: str) -> Tuple[List[str], Optional[str]]:
        """Code list and the code-group tag it came from, if any."""
        codes = []
        code_group = None
        for token in _CODE_SPLIT_RE.split(text.strip()):
            token = token.strip()
            # Skip labels such as 'CPT' or 'codes'; real codes carry a digit
            if not token or not (token.startswith("@") or any(ch.isdigit() for ch in token)):
                continue
            if token.startswith("@"):
                code_group = code_group or normalize_tag(token, TagType.CODE_GROUP)
                expanded = self.registry.expand_code_group(token)
                members = expanded or [normalize_tag(token, TagType.CODE_GROUP)]
            else:
                members = [token.upper()]
            for code in members:
                if code not in codes:
                    codes.append(code)
        return codes, code_group

    def _action(self, action_description: str, conditions: Optional[str],
                codes: List[str]) -> Tuple[str, List[str]]:
        """Action tag (with parameters) and the modifiers it names."""
        text = action_description.strip()
        tokens = tokenize(text)
        if tokens and not isinstance(tokens[0], TextRun):
            return tokens[0].raw, []

        lower = text.lower()
        base = None
        for verbs, tag in _ACTION_VERBS:
            if any(_contains_word(lower, v) for v in verbs):
                base = tag
                break
        if base is None:
            base = tag_name(text.split()[0]) if text.split() else ""
            if not base:
                raise MalformedCandidateError("action_description has no usable verb")

        if conditions and conditions.strip() and base in ("ADD", "REMOVE"):
            base = f"COND_{base}"

        modifiers = []
        match = _MODIFIER_RE.search(text)
        if match:
            modifiers = list(dict.fromkeys(_MODIFIER_CODE_RE.findall(match.group(1))))
        params = modifiers or [c for c in _CODE_RE.findall(text) if c not in codes]

        if params:
            joined = "|".join(f"@{p}" for p in dict.fromkeys(params))
            return f"@{base}({joined})", modifiers
        return f"@{base}", modifiers

    @staticmethod
    def _chart_section(*texts: Optional[str]) -> str:
        blob = " ".join(t for t in texts if t).lower()
        for keyword, section in _CHART_KEYWORDS:
            if keyword in blob:
                return section
        return "ASSESSMENT_PLAN"

    @staticmethod
    def _trigger_list(text: Optional[str]) -> str:
        parts = [p.strip() for p in re.split(r"[;,]", text or "") if p.strip()]
        return "; ".join(parts)

    # === Discovery ===

    def discover(self, rule: Rule, context: NormalizationContext,
                 declared: Optional[Any] = None) -> List[TagDiscovery]:
        """Tags the rule references that are not authoritative in the registry."""
        wanted: List[Tuple[str, TagType]] = []

        def want(tag: str, tag_type: TagType):
            key = (normalize_tag(tag, tag_type), tag_type)
            if key[0].lstrip("@") and key not in wanted:
                wanted.append(key)

        for tag in top_level_tags(rule.payer_group):
            want(tag.bare, TagType.PAYER_GROUP)
        for tag in top_level_tags(rule.provider_group):
            want(tag.bare, TagType.PROVIDER_GROUP)
        for tag in top_level_tags(rule.action):
            want(tag.bare, TagType.ACTION)
        if rule.code_group:
            want(rule.code_group, TagType.CODE_GROUP)
        if rule.chart_section:
            want(rule.chart_section, TagType.CHART_SECTION)

        covered = {tag for tag, _ in wanted}
        for tag in top_level_tags(rule.description):
            if tag.bare in covered:
                continue
            category = self.registry.category_of(tag.bare)
            tag_type = TagType(category) if category != CATEGORY_OTHER else self.registry.suggest_type(tag.bare)
            want(tag.bare, tag_type)

        for tag, tag_type in _declared_tags(declared):
            want(tag, tag_type)

        discoveries = []
        for tag, tag_type in wanted:
            if self.registry.exists(tag, tag_type):
                continue
            discoveries.append(TagDiscovery(
                tag=tag,
                type=tag_type,
                description=f"Discovered in rule {rule.rule_id}",
                origin_rule_id=rule.rule_id,
                origin_sop_id=context.sop_id,
            ))
        return discoveries

    # === Normalization ===

    def _stamp(self, rule: Rule, context: NormalizationContext):
        timestamp = now_iso()
        rule.status = RuleStatus.PENDING
        rule.confidence = config.DEFAULT_CONFIDENCE
        rule.source = RuleSource(context.source)
        rule.version = 1
        rule.created_by = context.created_by
        rule.created_at = timestamp
        rule.updated_at = timestamp
        problems = rule_problems(rule)
        rule.validation_status = "valid" if not problems else "warning"
        if problems:
            logger.warning(f"{rule.rule_id}: {'; '.join(problems)}")

    def _from_raw(self, candidate: RawCandidate, index: int, context: NormalizationContext) -> Rule:
        if not candidate.codes or not candidate.codes.strip():
            raise MalformedCandidateError("candidate has no codes", index)
        if not candidate.action_description or not candidate.action_description.strip():
            raise MalformedCandidateError("candidate has no action_description", index)

        codes, code_group = self._codes(candidate.codes)
        if not codes:
            raise MalformedCandidateError("candidate has no codes", index)

        action, modifiers = self._action(candidate.action_description, candidate.conditions, codes)
        payer_group = self._group(candidate.payers, TagType.PAYER_GROUP, "@ALL")
        provider_group = self._group(candidate.providers, TagType.PROVIDER_GROUP, "@ALL_PROVIDERS")
        trigger_list = self._trigger_list(candidate.documentation_trigger)
        chart_section = self._chart_section(candidate.documentation_trigger, candidate.conditions,
                                            candidate.action_description)

        trigger_text = (candidate.conditions or "").strip() or "documented"
        phrase = trigger_list.split("; ")[0] if trigger_list else "medical necessity"
        description = format_description(payer_group, action, trigger_text, chart_section, phrase)

        return Rule(
            rule_id=make_rule_id(context.client_prefix, generate_category(candidate.action_description), index),
            code=",".join(codes),
            code_group=code_group,
            codes_selected=codes,
            action=action,
            payer_group=payer_group,
            provider_group=provider_group,
            description=description,
            documentation_trigger=trigger_list,
            chart_section=chart_section,
            modifiers=modifiers,
            effective_date=candidate.effective_date or context.upload_date or date.today().isoformat(),
            end_date=candidate.end_date,
            reference=candidate.reference or context.file_name or "Uploaded document",
        )

    def _from_shaped(self, candidate: ShapedCandidate, index: int, context: NormalizationContext) -> Rule:
        data = candidate.rule.model_dump(exclude_none=True)
        if not data.get("code", "").strip():
            raise MalformedCandidateError("rule has no code", index)
        if not data.get("description", "").strip():
            raise MalformedCandidateError("rule has no description", index)

        data["code"] = ",".join(split_codes(data["code"]))
        data["codes_selected"] = data.get("codes_selected") or split_codes(data["code"])
        data["rule_id"] = data.get("rule_id") or make_rule_id(
            context.client_prefix,
            generate_category(data.get("action_description") or data.get("action")),
            index,
        )
        data["effective_date"] = data.get("effective_date") or context.upload_date or date.today().isoformat()
        data["reference"] = data.get("reference") or context.file_name or "Uploaded document"
        return Rule.from_dict(data)

    def normalize(self, payload: Any, index: int,
                  context: Optional[NormalizationContext] = None) -> NormalizedCandidate:
        """
        Normalize one candidate.

        Raises MalformedCandidateError; callers isolate it per candidate.
        """
        context = context or NormalizationContext()
        candidate = parse_candidate(payload)

        if isinstance(candidate, ShapedCandidate):
            rule = self._from_shaped(candidate, index, context)
            declared = candidate.new_tags
        else:
            rule = self._from_raw(candidate, index, context)
            declared = None

        self._stamp(rule, context)
        discoveries = self.discover(rule, context, declared)
        rule.new_tags = [d.to_dict() for d in discoveries]
        return NormalizedCandidate(rule=rule, discoveries=discoveries)


_DECLARED_KEYS = {
    "code_groups": TagType.CODE_GROUP,
    "payer_groups": TagType.PAYER_GROUP,
    "provider_groups": TagType.PROVIDER_GROUP,
    "actions": TagType.ACTION,
    "chart_sections": TagType.CHART_SECTION,
}


def _declared_tags(declared: Optional[Any]) -> List[Tuple[str, TagType]]:
    """
    Tags a model listed itself, either {"payer_groups": ["@X", ...], ...}
    or [{"tag": "@X", "type": "payer_group"}, ...].
    """
    found = []
    if isinstance(declared, dict):
        for key, tag_type in _DECLARED_KEYS.items():
            for item in declared.get(key) or []:
                tag = item.get("tag") if isinstance(item, dict) else item
                if isinstance(tag, str) and tag.strip():
                    found.append((tag, tag_type))
    elif isinstance(declared, list):
        for item in declared:
            if not isinstance(item, dict) or not item.get("tag"):
                continue
            try:
                found.append((item["tag"], TagType(item.get("type"))))
            except ValueError:
                logger.warning(f"Ignoring declared tag {item['tag']} with unknown type {item.get('type')}")
    return found
