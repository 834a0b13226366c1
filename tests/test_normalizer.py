"""
Candidate normalization: extraction output to canonical rules.
"""

import json

import pytest

from sop_engine.errors import MalformedCandidateError
from sop_engine.rules import (
    CandidateNormalizer,
    NormalizationContext,
    RawCandidate,
    RuleSource,
    RuleStatus,
    ShapedCandidate,
    generate_category,
    parse_candidate,
    rule_problems,
    strip_json_fences,
)
from sop_engine.tags import TagType


@pytest.fixture
def normalizer(registry):
    return CandidateNormalizer(registry)


@pytest.fixture
def context():
    return NormalizationContext(sop_id="sop-test", client_prefix="ACME",
                                upload_date="2024-05-01", file_name="payer_policies.pdf")


def _candidate(**overrides):
    data = {
        "codes": "99213, 99214",
        "payers": "Medicare",
        "providers": "",
        "action_description": "Add modifier 25 to the E&M code",
        "conditions": "",
        "effective_date": "2024-01-01",
        "documentation_trigger": "significant separately identifiable service",
    }
    data.update(overrides)
    return data


class TestParseCandidate:

    def test_json_with_fences(self):
        text = "```json\n" + json.dumps(_candidate()) + "\n```"
        assert isinstance(parse_candidate(text), RawCandidate)

    def test_shaped_candidate(self):
        assert isinstance(parse_candidate({"rule": {"code": "99213"}}), ShapedCandidate)

    def test_lists_and_numbers_are_flattened(self):
        candidate = parse_candidate(_candidate(codes=["99213", 99214]))
        assert candidate.codes == "99213, 99214"

    @pytest.mark.parametrize("payload", [
        "not json at all",
        "[1, 2, 3]",
        {"foo": "bar"},
        {"rule": "99213"},
        42,
    ])
    def test_malformed(self, payload):
        with pytest.raises(MalformedCandidateError):
            parse_candidate(payload)

    def test_strip_json_fences(self):
        assert strip_json_fences("```\n[]\n```") == "[]"


class TestRawCandidate:

    def test_modifier_rule(self, normalizer, context):
        rule = normalizer.normalize(_candidate(), 0, context).rule

        assert rule.rule_id == "ACME-MOD-0001"
        assert rule.code == "99213,99214"
        assert rule.codes_selected == ["99213", "99214"]
        assert rule.action == "@ADD(@25)"
        assert rule.modifiers == ["25"]
        assert rule.payer_group == "@MEDICARE"
        assert rule.provider_group == "@ALL_PROVIDERS"
        assert rule.chart_section == "ASSESSMENT_PLAN"
        assert rule.description == (
            'For @MEDICARE payers @ADD(@25) when documented; '
            'the ASSESSMENT_PLAN must include "significant separately identifiable service".'
        )
        assert rule.validation_status == "valid"

    def test_stamped_fields(self, normalizer, context):
        rule = normalizer.normalize(_candidate(), 0, context).rule
        assert rule.status == RuleStatus.PENDING
        assert rule.source == RuleSource.AI
        assert rule.confidence == 85
        assert rule.version == 1
        assert rule.conflicts == []

    def test_index_sets_sequence(self, normalizer, context):
        assert normalizer.normalize(_candidate(), 41, context).rule.rule_id == "ACME-MOD-0042"

    def test_defaults(self, normalizer, context):
        rule = normalizer.normalize(
            _candidate(payers=None, effective_date=None, documentation_trigger=None), 0, context
        ).rule
        assert rule.payer_group == "@ALL"
        assert rule.effective_date == "2024-05-01"
        assert rule.reference == "payer_policies.pdf"
        assert 'must include "medical necessity"' in rule.description

    def test_multiple_payers(self, normalizer, context):
        rule = normalizer.normalize(_candidate(payers="Medicare, Medicaid"), 0, context).rule
        assert rule.payer_group == "@MEDICARE|@MEDICAID"

    def test_conditions_make_action_conditional(self, normalizer, context):
        rule = normalizer.normalize(_candidate(
            action_description="Add modifier 59",
            conditions="performed on the same day as a procedure",
        ), 0, context).rule
        assert rule.action == "@COND_ADD(@59)"
        assert rule.chart_section == "PROCEDURE_SECTION"
        assert "when performed on the same day as a procedure;" in rule.description

    def test_remove_modifier(self, normalizer, context):
        rule = normalizer.normalize(_candidate(
            action_description="Remove modifier GT from telehealth claims",
            documentation_trigger="",
        ), 0, context).rule
        assert rule.action == "@REMOVE(@GT)"
        assert rule.chart_section == "TELEHEALTH"

    def test_code_parameter(self, normalizer, context):
        rule = normalizer.normalize(_candidate(
            codes="99214", action_description="Swap 99214 for 99215",
        ), 0, context).rule
        assert rule.action == "@SWAP(@99215)"
        assert rule.rule_id == "ACME-RULE-0001"

    def test_tagged_action_is_kept(self, normalizer, context):
        rule = normalizer.normalize(_candidate(action_description="@LINK_IF_MODIFIER(@25)"), 0, context).rule
        assert rule.action == "@LINK_IF_MODIFIER(@25)"

    def test_code_group_is_expanded(self, normalizer, context):
        rule = normalizer.normalize(_candidate(codes="@CRIT_CARE"), 0, context).rule
        assert rule.code == "99291,99292"
        assert rule.code_group == "@CRIT_CARE"

    def test_known_tags_are_not_discovered(self, normalizer, context):
        assert normalizer.normalize(_candidate(), 0, context).discoveries == []

    def test_unknown_payer_is_discovered(self, normalizer, context):
        result = normalizer.normalize(_candidate(payers="Tricare"), 0, context)
        assert result.rule.payer_group == "@TRICARE"
        assert [(d.tag, d.type) for d in result.discoveries] == [("@TRICARE", TagType.PAYER_GROUP)]
        assert result.discoveries[0].origin_rule_id == "ACME-MOD-0001"
        assert result.rule.new_tags[0]["tag"] == "@TRICARE"

    @pytest.mark.parametrize("overrides", [
        {"codes": None},
        {"codes": "CPT codes"},
        {"action_description": "  "},
    ])
    def test_missing_required_fields(self, normalizer, context, overrides):
        with pytest.raises(MalformedCandidateError):
            normalizer.normalize(_candidate(**overrides), 3, context)


class TestShapedCandidate:

    def _payload(self, **rule):
        data = {
            "code": "99213",
            "action": "@ADD(@25)",
            "payer_group": "@AETNA",
            "provider_group": "@ALL_PROVIDERS",
            "description": ('For @AETNA payers @ADD(@25) when documented; '
                            'the ASSESSMENT_PLAN must include "medical necessity".'),
            "chart_section": "ASSESSMENT_PLAN",
            "status": "active",
        }
        data.update(rule)
        return {"rule": data, "new_tags": {"payer_groups": ["@OSCAR"]}}

    def test_shaped_rule(self, normalizer, context):
        result = normalizer.normalize(self._payload(), 0, context)
        rule = result.rule
        assert rule.rule_id == "ACME-RULE-0001"
        assert rule.codes_selected == ["99213"]
        assert rule.status == RuleStatus.PENDING
        assert rule.effective_date == "2024-05-01"

    def test_declared_tags_are_discovered(self, normalizer, context):
        result = normalizer.normalize(self._payload(), 0, context)
        assert ("@OSCAR", TagType.PAYER_GROUP) in [(d.tag, d.type) for d in result.discoveries]

    def test_explicit_rule_id(self, normalizer, context):
        rule = normalizer.normalize(self._payload(rule_id="ACME-MOD-0100"), 0, context).rule
        assert rule.rule_id == "ACME-MOD-0100"

    def test_missing_description(self, normalizer, context):
        with pytest.raises(MalformedCandidateError):
            normalizer.normalize(self._payload(description=""), 0, context)

    def test_numeric_code_list(self, normalizer, context):
        rule = normalizer.normalize(self._payload(code=[99213, 99214], payer_group=["@AETNA", "@CIGNA"]),
                                    0, context).rule
        assert rule.code == "99213,99214"
        assert rule.codes_selected == ["99213", "99214"]
        assert rule.payer_group == "@AETNA|@CIGNA"

    @pytest.mark.parametrize("overrides", [
        {"description": 5},
        {"action": {"tag": "@ADD"}},
        {"modifiers": {"25": True}},
    ])
    def test_wrong_field_types(self, normalizer, context, overrides):
        with pytest.raises(MalformedCandidateError):
            normalizer.normalize(self._payload(**overrides), 0, context)

    def test_lifecycle_fields_are_dropped(self, normalizer, context):
        rule = normalizer.normalize(self._payload(source="bogus", version="x", confidence=3), 0, context).rule
        assert rule.source == RuleSource.AI
        assert rule.version == 1


class TestRuleProblems:

    def test_swap_without_code_selection(self, make_rule):
        rule = make_rule("ACME-RULE-0001", action="@SWAP(@99214)", codes_selected=[])
        assert "@SWAP actions need codes_selected" in rule_problems(rule)

    def test_conditional_without_code_selection(self, make_rule):
        rule = make_rule("ACME-MOD-0001", action="@COND_ADD(@59)", codes_selected=[])
        assert "@COND_ADD actions need codes_selected" in rule_problems(rule)

    def test_selection_present(self, make_rule):
        rule = make_rule("ACME-RULE-0001", action="@SWAP(@99214)", codes_selected=["99213"])
        assert not any("codes_selected" in p for p in rule_problems(rule))

    def test_other_actions_do_not_need_selection(self, make_rule):
        assert rule_problems(make_rule("ACME-MOD-0001", codes_selected=[])) == []


@pytest.mark.parametrize("text,category", [
    ("Append modifier 25", "MOD"),
    ("Bill E/M separately", "EM"),
    ("Procedure bundled", "PROC"),
    ("Link diagnosis code", "DX"),
    ("Telehealth visits", "TELE"),
    ("Swap codes", "RULE"),
])
def test_generate_category(text, category):
    assert generate_category(text) == category
