"""
prompts.py - Rule candidate extraction prompt

One prompt per document segment; the model answers with a JSON array of
raw candidates that the CandidateNormalizer turns into rules.
"""

import json
from string import Template
from typing import Dict, List, Optional

PROMPT_EXTRACT_CANDIDATES = Template('''
You are a medical billing analyst. Extract every claim-editing rule candidate
from the policy text segment below.

=== DOCUMENT ===
File: $file_name
Uploaded: $upload_date
Segment: $segment_number

```
$segment
```

=== KNOWN VOCABULARY ===
Prefer these tags when the text refers to the same group, payer, provider,
action or chart section. Invent a new UPPER_SNAKE_CASE tag only when none fits.

Code groups:
$code_groups

Payer groups:
$payer_groups

Provider groups:
$provider_groups

Actions:
$actions

Chart sections:
$chart_sections

=== OUTPUT ===
Return a JSON array. Each element describes ONE rule:
[
  {
    "codes": "procedure/diagnosis codes or a code group tag, comma-separated",
    "payers": "insurance companies or payer group tags",
    "providers": "provider types or provider group tags",
    "action_description": "what to do (add modifier 25, remove code, swap codes, link diagnosis...)",
    "conditions": "when this rule applies, lowercase",
    "effective_date": "YYYY-MM-DD or null",
    "end_date": "YYYY-MM-DD or null",
    "reference": "section or page reference from the document, or null",
    "documentation_trigger": "keyword1;keyword2 that must appear in the chart"
  }
]

Rules:
- Use null for anything the text does not state. Do not guess dates.
- One element per distinct code/payer/action combination.
- If the segment contains no billing rule, return [].
- Return ONLY the JSON array. No markdown, no explanations.
''')


def _as_list(rows: Optional[List[Dict]]) -> str:
    if not rows:
        return "[]"
    return json.dumps(rows, indent=2)


def build_extraction_prompt(
    segment: str,
    index: int,
    upload_date: str,
    file_name: str,
    lookup_tables: Optional[Dict[str, List[Dict]]] = None,
) -> str:
    """Fill the extraction template for one segment (index is 0-based)."""
    tables = lookup_tables or {}
    return PROMPT_EXTRACT_CANDIDATES.substitute(
        file_name=file_name or "Uploaded document",
        upload_date=upload_date,
        segment_number=f"{index + 1:04d}",
        segment=segment,
        code_groups=_as_list(tables.get("code_group")),
        payer_groups=_as_list(tables.get("payer_group")),
        provider_groups=_as_list(tables.get("provider_group")),
        actions=_as_list(tables.get("action")),
        chart_sections=_as_list(tables.get("chart_section")),
    )
