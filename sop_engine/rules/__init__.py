# Rule Lifecycle & Consistency Engine
#
# Modules:
#   - models.py: Rule, Conflict, ConflictResolution records
#   - collection.py: RuleCollection (ordered rules + resolved conflict ids)
#   - normalizer.py: extraction candidate -> canonical Rule + tag discoveries
#   - deduplicator.py: multi-field duplicate filter for update ingestion
#   - conflicts.py: pairwise conflict detection
#   - resolver.py: conflict resolution actions
#   - service.py: SOPService facade (mutate -> rescan -> persist)

from .models import (
    Rule,
    RuleStatus,
    RuleSource,
    Conflict,
    ConflictType,
    Severity,
    ConflictResolution,
    ResolutionAction,
    canonical_group,
    split_codes,
)
from .collection import RuleCollection, new_sop_id
from .normalizer import (
    CandidateNormalizer,
    NormalizationContext,
    NormalizedCandidate,
    RawCandidate,
    ShapedCandidate,
    ShapedRule,
    parse_candidate,
    rule_problems,
    generate_category,
    make_rule_id,
    strip_json_fences,
)
from .deduplicator import Deduplicator, dedup_key
from .conflicts import ConflictDetector, conflict_id, action_class
from .resolver import ConflictResolver, ResolutionOutcome
from .service import SOPService

__all__ = [
    # Models
    'Rule',
    'RuleStatus',
    'RuleSource',
    'Conflict',
    'ConflictType',
    'Severity',
    'ConflictResolution',
    'ResolutionAction',
    'canonical_group',
    'split_codes',

    # Collection
    'RuleCollection',
    'new_sop_id',

    # Normalizer
    'CandidateNormalizer',
    'NormalizationContext',
    'NormalizedCandidate',
    'RawCandidate',
    'ShapedCandidate',
    'ShapedRule',
    'parse_candidate',
    'rule_problems',
    'generate_category',
    'make_rule_id',
    'strip_json_fences',

    # Deduplicator
    'Deduplicator',
    'dedup_key',

    # Conflicts
    'ConflictDetector',
    'conflict_id',
    'action_class',
    'ConflictResolver',
    'ResolutionOutcome',

    # Service
    'SOPService',
]
