"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from sop_engine.db.queries import SOPStore
from sop_engine.rules import Rule, RuleCollection, RuleStatus
from sop_engine.tags import TagRegistry


# ==================== FIXTURES ====================

@pytest.fixture
def registry():
    """Registry seeded with the default lookup tables, no persistence."""
    return TagRegistry.with_defaults()


@pytest.fixture
def store(tmp_path):
    """SQLite store in a temporary directory."""
    db = SOPStore(tmp_path / "sop_engine_test.db")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture
def make_rule():
    """Factory for rules with sensible defaults."""
    def _make(rule_id, code="99213", action="@ADD(@25)", payer_group="@MEDICARE",
              status=RuleStatus.PENDING, **overrides):
        fields = {
            "provider_group": "@ALL_PROVIDERS",
            "description": (f'For {payer_group} payers {action} when documented; '
                            f'the ASSESSMENT_PLAN must include "medical necessity".'),
            "chart_section": "ASSESSMENT_PLAN",
            "documentation_trigger": "medical necessity",
        }
        fields.update(overrides)
        return Rule(rule_id=rule_id, code=code, action=action, payer_group=payer_group,
                    status=status, **fields)
    return _make


@pytest.fixture
def collection():
    return RuleCollection(sop_id="sop-test", name="Test SOP", client_prefix="ACME")
