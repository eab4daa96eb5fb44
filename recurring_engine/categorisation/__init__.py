"""
Categorisation module for the Recurring Event & Matching Engine.

Provides:
- Preprocessing (normalization, transfer keyword detection)
- Text similarity between transactions and occurrence names
- The user rule engine and its per-user cache
"""

from .preprocess import (
    normalize_text,
    normalize_upper,
    combine_description_merchant,
    has_transfer_keyword,
)
from .text_similarity import text_similarity
from .rule_engine import (
    Rule,
    RuleField,
    RuleOperator,
    RuleCache,
    CategorizationRuleEngine,
    evaluate,
    rule_matches,
    sort_rules,
    validate_rule,
)

__all__ = [
    # Preprocessing utilities
    "normalize_text",
    "normalize_upper",
    "combine_description_merchant",
    "has_transfer_keyword",
    "text_similarity",
    # Rule engine
    "Rule",
    "RuleField",
    "RuleOperator",
    "RuleCache",
    "CategorizationRuleEngine",
    "evaluate",
    "rule_matches",
    "sort_rules",
    "validate_rule",
]
