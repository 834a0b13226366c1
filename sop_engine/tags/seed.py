"""
Default Lookup Tables

Vocabulary every registry starts with: code groups, payer groups,
provider groups, action tags and chart sections.
"""

from typing import Dict, List


# =============================================================================
# CODE GROUPS
# =============================================================================

CODE_GROUPS: List[Dict] = [
    # Procedure groups (CPT/HCPCS)
    {"tag": "@E&M_MINOR_PROC", "kind": "procedure",
     "expands_to": ["99202", "99203", "99204", "99205", "99212", "99213", "99214", "99215"],
     "purpose": "Office E&M visits with minor procedures"},
    {"tag": "@E&M_OFFICE_VISITS", "kind": "procedure",
     "expands_to": ["99202", "99203", "99204", "99205", "99211", "99212", "99213", "99214", "99215"],
     "purpose": "All office E&M visit codes"},
    {"tag": "@URODYNAMICS_PANEL", "kind": "procedure",
     "expands_to": ["51728", "51729", "51741", "51797", "51798"],
     "purpose": "Urodynamic testing procedures"},
    {"tag": "@BOTOX_BLADDER", "kind": "procedure",
     "expands_to": ["52287", "J0585"],
     "purpose": "Botox injection for bladder dysfunction"},
    {"tag": "@HYDRODISTENSION", "kind": "procedure",
     "expands_to": ["52260", "52265"],
     "purpose": "Bladder hydrodistension procedures"},
    {"tag": "@PROVENGE_INFUSION", "kind": "procedure",
     "expands_to": ["Q2043", "96365", "96366"],
     "purpose": "Provenge immunotherapy infusion"},
    {"tag": "@CRIT_CARE", "kind": "procedure",
     "expands_to": ["99291", "99292"],
     "purpose": "Critical care services"},
    {"tag": "@BPH_PROCEDURES", "kind": "procedure",
     "expands_to": ["52450", "52500", "52601", "52630", "52647", "52648", "52649",
                    "53850", "53852", "53854", "53855"],
     "purpose": "Benign prostatic hyperplasia treatment procedures"},
    {"tag": "@COLONOSCOPY_SCREENING", "kind": "procedure",
     "expands_to": ["G0105", "G0121", "45378", "45380", "45381", "45384", "45385"],
     "purpose": "Screening colonoscopy procedures"},
    {"tag": "@PREVENTIVE_CARE", "kind": "procedure",
     "expands_to": ["99381", "99382", "99383", "99384", "99385", "99386", "99387",
                    "99391", "99392", "99393", "99394", "99395", "99396", "99397"],
     "purpose": "Preventive medicine services"},
    {"tag": "@DRUG_ADMIN", "kind": "procedure",
     "expands_to": ["96365", "96366", "96367", "96368", "96369", "96370", "96371",
                    "96372", "96373", "96374", "96375", "96376", "96377"],
     "purpose": "Drug administration and infusion codes"},
    {"tag": "@NCCI_CLASH_GROUP", "kind": "procedure",
     "expands_to": ["52000", "52005", "52204", "52214", "52224", "52234", "52235", "52240"],
     "purpose": "Codes with known NCCI edits"},

    # Diagnosis groups (ICD-10)
    {"tag": "@DX_SECONDARY", "kind": "diagnosis",
     "expands_to": ["Z85.46", "Z85.47", "Z85.50", "Z85.51", "Z85.52", "Z85.53", "Z85.54",
                    "Z86.010", "Z86.011", "Z86.016", "Z87.440", "Z87.441", "Z87.442"],
     "purpose": "Secondary diagnosis codes - history/status Z-codes"},
    {"tag": "@DX_PRIMARY_ENCOUNTER", "kind": "diagnosis",
     "expands_to": ["Z46.6", "Z12.5", "Z30.09", "Z30.2", "Z30.430", "Z30.431", "Z30.432", "Z30.433"],
     "purpose": "Primary encounter diagnosis codes"},
    {"tag": "@DX_TRIAD_PROLIA", "kind": "diagnosis",
     "expands_to": ["C61", "M81.0", "Z79.83"],
     "purpose": "Prolia therapy diagnosis triad"},
    {"tag": "@BPH_DIAGNOSES", "kind": "diagnosis",
     "expands_to": ["N40.0", "N40.1", "N40.2", "N40.3"],
     "purpose": "Benign prostatic hyperplasia diagnoses"},

    # Modifier groups
    {"tag": "@MODIFIER_25", "kind": "modifier", "expands_to": ["25"],
     "purpose": "Significant, separately identifiable E&M service"},
    {"tag": "@MODIFIER_50", "kind": "modifier", "expands_to": ["50"],
     "purpose": "Bilateral procedure"},
    {"tag": "@MODIFIER_59", "kind": "modifier", "expands_to": ["59"],
     "purpose": "Distinct procedural service"},
    {"tag": "@MODIFIER_XU", "kind": "modifier", "expands_to": ["XU"],
     "purpose": "Unusual non-overlapping service"},
    {"tag": "@MODIFIER_JW_JZ", "kind": "modifier", "expands_to": ["JW", "JZ"],
     "purpose": "Drug wastage modifiers"},
]


# =============================================================================
# PAYER / PROVIDER GROUPS
# =============================================================================

PAYER_GROUPS: List[Dict] = [
    {"tag": "@ALL", "name": "All Payers"},
    {"tag": "@BCBS", "name": "Blue Cross Blue Shield"},
    {"tag": "@ANTHEM", "name": "Anthem"},
    {"tag": "@AETNA", "name": "Aetna"},
    {"tag": "@CIGNA", "name": "Cigna"},
    {"tag": "@UHC", "name": "UnitedHealthcare"},
    {"tag": "@UHC_COMMERCIAL", "name": "UnitedHealthcare Commercial"},
    {"tag": "@HUMANA", "name": "Humana"},
    {"tag": "@COMMERCIAL_PPO", "name": "Commercial PPO Plans"},
    {"tag": "@MEDICARE", "name": "Medicare"},
    {"tag": "@MEDICARE_ADVANTAGE", "name": "Medicare Advantage"},
    {"tag": "@MEDICAID", "name": "Medicaid"},
    {"tag": "@KAISER", "name": "Kaiser Permanente"},
]

PROVIDER_GROUPS: List[Dict] = [
    {"tag": "@PHYSICIAN_MD_DO", "name": "Physicians (MD/DO)"},
    {"tag": "@SPLIT_SHARED_FS", "name": "Split/Shared Facility Services"},
    {"tag": "@NP_PA", "name": "Nurse Practitioners / Physician Assistants"},
    {"tag": "@ALL_PROVIDERS", "name": "All Providers"},
]


# =============================================================================
# ACTIONS / CHART SECTIONS
# =============================================================================

ACTION_TAGS: List[Dict] = [
    {"tag": "@ADD", "name": "Add a code, modifier, or diagnosis to the claim"},
    {"tag": "@REMOVE", "name": "Remove a code, modifier, or diagnosis from the claim"},
    {"tag": "@COND_ADD", "name": "Conditionally add a code if specific criteria are met"},
    {"tag": "@COND_REMOVE", "name": "Conditionally remove a code if specific criteria are met"},
    {"tag": "@SWAP", "name": "Replace one code with another"},
    {"tag": "@LINK_IF_MODIFIER", "name": "Link diagnosis if specific modifier is present"},
    {"tag": "@ALWAYS_LINK_PRIMARY", "name": "Always link diagnosis as primary"},
    {"tag": "@ALWAYS_LINK_SECONDARY", "name": "Always link diagnosis as secondary"},
    {"tag": "@ALWAYS_LINK_TERTIARY", "name": "Always link diagnosis as tertiary"},
    {"tag": "@NEVER_LINK", "name": "Never link this diagnosis to the procedure"},
]

# Chart sections are referenced by bare name inside descriptions
CHART_SECTIONS: List[Dict] = [
    {"tag": "ASSESSMENT_PLAN", "name": "Assessment & Plan"},
    {"tag": "PROCEDURE_SECTION", "name": "Procedure Notes"},
    {"tag": "TIME_ATTEST_SECTION", "name": "Time Attestation"},
    {"tag": "DIAGNOSIS", "name": "Diagnosis Section"},
    {"tag": "TELEHEALTH", "name": "Telehealth Documentation"},
    {"tag": "PREVENTIVE_CARE", "name": "Preventive Care"},
    {"tag": "SURGICAL_NOTES", "name": "Surgical Notes"},
    {"tag": "HPI", "name": "History of Present Illness"},
    {"tag": "ROS", "name": "Review of Systems"},
    {"tag": "PHYSICAL_EXAM", "name": "Physical Examination"},
    {"tag": "MEDICATION_MANAGEMENT", "name": "Medication Management"},
]


def default_entries() -> Dict[str, List[Dict]]:
    """Seed entries keyed by tag type value."""
    return {
        "code_group": [
            {"tag": e["tag"], "description": e["purpose"], "expands_to": e["expands_to"]}
            for e in CODE_GROUPS
        ],
        "payer_group": [{"tag": e["tag"], "description": e["name"]} for e in PAYER_GROUPS],
        "provider_group": [{"tag": e["tag"], "description": e["name"]} for e in PROVIDER_GROUPS],
        "action": [{"tag": e["tag"], "description": e["name"]} for e in ACTION_TAGS],
        "chart_section": [{"tag": e["tag"], "description": e["name"]} for e in CHART_SECTIONS],
    }
