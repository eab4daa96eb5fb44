"""
Categorization Rule Engine.

Evaluates a user's text-matching rules against a transaction. Rules are kept
sorted by priority (highest first, ties by creation order) and the first
enabled rule whose condition holds decides the category.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from ..errors import NotFoundError, ValidationError
from .preprocess import normalize_text

logger = logging.getLogger(__name__)


class RuleField(Enum):
    """Transaction field a rule inspects."""
    DESCRIPTION = "description"
    MERCHANT = "merchant"
    NOTES = "notes"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "RuleField":
        key = (value or "").strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown rule field: {value!r}")


class RuleOperator(Enum):
    """Comparison applied between the field and the rule value."""
    CONTAINS = "contains"
    EXACT = "exact"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "RuleOperator":
        # Accept "startsWith", "starts_with" and "STARTS-WITH" alike
        key = (value or "").strip().replace("_", "").replace("-", "").lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        raise ValueError(f"Unknown rule operator: {value!r}")


@dataclass
class Rule:
    """A user-defined categorization rule."""
    id: str
    owner_id: Optional[str]
    name: str
    category_id: str
    field: RuleField
    operator: RuleOperator
    value: str
    case_sensitive: bool = False
    priority: int = 0
    is_enabled: bool = True
    created_seq: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    match_count: int = 0
    last_matched: Optional[datetime] = None


def validate_rule(rule: Rule) -> None:
    """Reject rules that can never match or have no target."""
    if not isinstance(rule.field, RuleField):
        raise ValidationError(f"Rule {rule.id}: unknown field {rule.field!r}")
    if not isinstance(rule.operator, RuleOperator):
        raise ValidationError(f"Rule {rule.id}: unknown operator {rule.operator!r}")
    if not (rule.value or "").strip():
        raise ValidationError(f"Rule {rule.id}: value cannot be empty")
    if not rule.category_id:
        raise ValidationError(f"Rule {rule.id}: category is required")


def sort_rules(rules: Iterable[Rule]) -> List[Rule]:
    """Order rules by priority desc, then creation order asc."""
    return sorted(rules, key=lambda r: (-r.priority, r.created_seq, r.created_at))


def _field_text(transaction, rule_field: RuleField) -> Optional[str]:
    return getattr(transaction, rule_field.value, None)


def rule_matches(rule: Rule, transaction) -> bool:
    """
    Check a single rule's condition against a transaction.

    Both sides are trimmed; comparison is case-insensitive unless the rule
    is case-sensitive. Missing fields never match.
    """
    if not rule.is_enabled:
        return False

    raw = _field_text(transaction, rule.field)
    if raw is None:
        return False

    text = normalize_text(raw, rule.case_sensitive)
    value = normalize_text(rule.value, rule.case_sensitive)
    if not text or not value:
        return False

    if rule.operator == RuleOperator.CONTAINS:
        return value in text
    if rule.operator == RuleOperator.EXACT:
        return text == value
    if rule.operator == RuleOperator.STARTS_WITH:
        return text.startswith(value)
    if rule.operator == RuleOperator.ENDS_WITH:
        return text.endswith(value)
    return False


def find_matching_rule(transaction, rules: List[Rule]) -> Optional[Rule]:
    """Return the first rule (in the given order) that matches, or None."""
    for rule in rules:
        if rule_matches(rule, transaction):
            return rule
    return None


def evaluate(transaction, rules: List[Rule]) -> Optional[str]:
    """
    Evaluate pre-sorted rules against a transaction.

    Args:
        transaction: Object exposing description / merchant / notes
        rules: Rules sorted with sort_rules

    Returns:
        Category id of the first matching rule, or None

    Example:
        >>> rules = sort_rules([
        ...     Rule("a", "u1", "Costco", "groceries", RuleField.DESCRIPTION,
        ...          RuleOperator.CONTAINS, "Costco", priority=10),
        ...     Rule("b", "u1", "Costco shop", "shopping", RuleField.DESCRIPTION,
        ...          RuleOperator.CONTAINS, "Costco", priority=5),
        ... ])
        >>> evaluate(Transaction("t1", "u1", "acc1", date(2024, 3, 1), -82.4, "COSTCO WHOLESALE"), rules)
        'groceries'
    """
    rule = find_matching_rule(transaction, rules)
    return rule.category_id if rule else None


class RuleCache:
    """
    Per-user cache of sorted, enabled rules.

    Entries live until invalidate() is called for the user; there is no TTL.
    """

    def __init__(self):
        self._entries: Dict[str, List[Rule]] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str, loader: Callable[[str], Iterable[Rule]]) -> List[Rule]:
        """Return cached rules for user_id, loading them on a miss."""
        with self._lock:
            cached = self._entries.get(user_id)
            if cached is not None:
                return cached
            generation = self._generations.get(user_id, 0)

        rules = sort_rules(r for r in loader(user_id) if r.is_enabled)
        with self._lock:
            # Only cache the load if no invalidate happened while it ran
            if self._generations.get(user_id, 0) == generation:
                self._entries[user_id] = rules
        return rules

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
        logger.debug("Rule cache invalidated for user %s", user_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._entries


class CategorizationRuleEngine:
    """
    Store-backed rule engine.

    Every create / update / delete invalidates the owner's cache entry before
    returning, so the next evaluation sees the change.
    """

    def __init__(self, store, cache: Optional[RuleCache] = None):
        self.store = store
        self.cache = cache or RuleCache()

    def rules_for(self, user_id: str) -> List[Rule]:
        return self.cache.get(user_id, self.store.list_rules)

    def categorize(self, transaction, record_stats: bool = True) -> Optional[str]:
        """
        Categorize a transaction with its owner's rules.

        Args:
            transaction: Transaction to categorize
            record_stats: Update the winning rule's match_count / last_matched

        Returns:
            Category id or None
        """
        rule = find_matching_rule(transaction, self.rules_for(transaction.owner_id))
        if rule is None:
            return None

        if record_stats:
            self.store.record_rule_match(rule.id, datetime.now())
        logger.debug("Transaction %s matched rule %s -> %s", transaction.id, rule.id, rule.category_id)
        return rule.category_id

    def create_rule(self, rule: Rule) -> Rule:
        validate_rule(rule)
        if not rule.created_seq:
            rule = replace(rule, created_seq=self.store.next_rule_seq())
        self.store.add_rule(rule)
        self.cache.invalidate(rule.owner_id)
        logger.info("Created rule %s for user %s", rule.id, rule.owner_id)
        return rule

    def update_rule(self, rule_id: str, **changes) -> Rule:
        current = self.store.get_rule(rule_id)
        if current is None:
            raise NotFoundError(f"Rule not found: {rule_id}")

        updated = replace(current, **changes)
        validate_rule(updated)
        self.store.update_rule(updated)
        self.cache.invalidate(updated.owner_id)
        return updated

    def delete_rule(self, rule_id: str) -> None:
        current = self.store.get_rule(rule_id)
        if current is None:
            raise NotFoundError(f"Rule not found: {rule_id}")

        self.store.delete_rule(rule_id)
        self.cache.invalidate(current.owner_id)
        logger.info("Deleted rule %s", rule_id)

    def apply_to_uncategorized(self, user_id: str) -> int:
        """Categorize every uncategorized transaction of a user. Returns the count updated."""
        updated = 0
        for transaction in self.store.list_transactions(user_id):
            if transaction.category_id:
                continue
            category_id = self.categorize(transaction)
            if category_id:
                self.store.update_transaction(replace(transaction, category_id=category_id))
                updated += 1

        logger.info("Applied rules to %d uncategorized transactions for user %s", updated, user_id)
        return updated
