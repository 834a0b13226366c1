# Inline Tag Grammar
#
# Modules:
#   - tokenizer.py: TextRun / Tag / TagGroup scanner for rule text
#   - description.py: "For ... payers ... when ...; the ... must include" sentences

from .tokenizer import (
    REMAP_ARROW,
    TextRun,
    Tag,
    TagGroup,
    Token,
    tokenize,
    iter_tags,
    extract_tags,
    top_level_tags,
    first_tag,
    text_runs,
)
from .description import (
    DescriptionParts,
    format_description,
    parse_description,
    validate_description,
    lowercase_outside_quotes,
)

__all__ = [
    # Tokenizer
    'REMAP_ARROW',
    'TextRun',
    'Tag',
    'TagGroup',
    'Token',
    'tokenize',
    'iter_tags',
    'extract_tags',
    'top_level_tags',
    'first_tag',
    'text_runs',

    # Description sentences
    'DescriptionParts',
    'format_description',
    'parse_description',
    'validate_description',
    'lowercase_outside_quotes',
]
