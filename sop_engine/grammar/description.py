"""
Controlled-language description sentences.

Every rule description has the shape

    For <payers> payers <action> when <trigger>; the <section> must include "<phrase>".

The trigger text is lowercase except for quoted exact phrases.
"""
import re
from dataclasses import dataclass
from typing import List, Optional

_SENTENCE_RE = re.compile(
    r'^For (?P<payers>\S+) payers (?P<action>.+?) when (?P<trigger>.+?); '
    r'the (?P<section>\S+) must include "(?P<phrase>[^"]*)"\.$'
)
_QUOTED_RE = re.compile(r'("[^"]*")')
_IF_THEN_RE = re.compile(r'\bif\b.*\bthen\b', re.IGNORECASE)


@dataclass
class DescriptionParts:
    payers: str
    action: str
    trigger: str
    section: str
    phrase: str


def lowercase_outside_quotes(text: str) -> str:
    parts = _QUOTED_RE.split(text)
    return "".join(p if p.startswith('"') and p.endswith('"') and len(p) > 1 else p.lower()
                   for p in parts)


def format_description(payers: str, action: str, trigger: str, section: str, phrase: str) -> str:
    trigger = lowercase_outside_quotes(" ".join((trigger or "documented").split())).rstrip(".;")
    phrase = (phrase or "").replace('"', "'").strip()
    return f'For {payers} payers {action} when {trigger}; the {section} must include "{phrase}".'


def parse_description(text: str) -> Optional[DescriptionParts]:
    """Split a well-formed description into its slots, or None."""
    match = _SENTENCE_RE.match((text or "").strip())
    if not match:
        return None
    return DescriptionParts(**match.groupdict())


def validate_description(text: str) -> List[str]:
    """Return human-readable problems with a description; empty when valid."""
    text = (text or "").strip()
    if not text:
        return ["description is empty"]

    problems = []
    if not text.startswith("For "):
        problems.append("description must start with 'For'")
    for connective in (" payers ", " when ", " must include "):
        if connective not in text:
            problems.append(f"missing connective '{connective.strip()}'")
    if ' must include "' not in text:
        problems.append("'must include' must be followed by a quoted phrase")
    if not text.endswith("."):
        problems.append("description must end with a period")
    if _IF_THEN_RE.search(_QUOTED_RE.sub("", text)):
        problems.append("use 'when' instead of 'if ... then'")

    parts = parse_description(text)
    if parts is None:
        if not problems:
            problems.append("description does not match the sentence format")
    elif parts.trigger != lowercase_outside_quotes(parts.trigger):
        problems.append("trigger text must be lowercase outside quoted phrases")
    return problems
