"""
Deduplicator for incremental ("update") ingestion.

A candidate duplicates an existing rule when code, action, payer group,
provider group, description, chart section and documentation trigger
all match. Payer and provider groups are compared in canonical form.
"""
from typing import Iterable, Set, Tuple

from sop_engine.rules.models import Rule, canonical_group

DedupKey = Tuple[str, str, str, str, str, str, str]


def dedup_key(rule: Rule) -> DedupKey:
    return (
        (rule.code or "").strip(),
        (rule.action or "").strip(),
        canonical_group(rule.payer_group),
        canonical_group(rule.provider_group),
        (rule.description or "").strip(),
        (rule.chart_section or "").strip(),
        (rule.documentation_trigger or "").strip(),
    )


class Deduplicator:
    """Remembers the keys of the existing rules and every rule it lets through."""

    def __init__(self, existing: Iterable[Rule] = ()):
        self._keys: Set[DedupKey] = {dedup_key(r) for r in existing}

    def accept(self, rule: Rule) -> bool:
        """True and remembered when new, False when a duplicate."""
        key = dedup_key(rule)
        if key in self._keys:
            return False
        self._keys.add(key)
        return True
