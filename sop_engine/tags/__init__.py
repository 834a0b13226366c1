# Tag Vocabulary
#
# Modules:
#   - registry.py: TagRegistry (existence, category resolution, review workflow)
#   - seed.py: default lookup tables

from .registry import (
    TagType,
    TagStatus,
    IngestionPolicy,
    TagEntry,
    TagDiscovery,
    TagRegistry,
    CATEGORY_OTHER,
    AUTHORITATIVE_STATUSES,
    normalize_tag,
    make_tag_id,
)
from .seed import default_entries

__all__ = [
    'TagType',
    'TagStatus',
    'IngestionPolicy',
    'TagEntry',
    'TagDiscovery',
    'TagRegistry',
    'CATEGORY_OTHER',
    'AUTHORITATIVE_STATUSES',
    'normalize_tag',
    'make_tag_id',
    'default_entries',
]
