"""
In-memory EngineStore.

Reference implementation used by tests, the example script and
run_reconciliation. All mutations happen under one lock, which is what makes
insert_match_if_absent atomic across threads.
"""

import itertools
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from ..categorisation.rule_engine import Rule
from ..errors import ConflictError, NotFoundError
from ..models import MatchRecord, Transaction, TransferPair, TransferStatus
from ..schedule.models import Override, PlannedTransaction, RecurrenceTemplate
from .base import EngineStore


def _in_range(d: date, start: Optional[date], end: Optional[date]) -> bool:
    if start is not None and d < start:
        return False
    if end is not None and d > end:
        return False
    return True


class InMemoryStore(EngineStore):
    """Dictionary-backed store guarded by a single lock."""

    def __init__(self):
        self._lock = threading.RLock()
        self._transactions: Dict[str, Transaction] = {}
        self._templates: Dict[str, RecurrenceTemplate] = {}
        self._planned: Dict[str, PlannedTransaction] = {}
        self._overrides: Dict[Tuple[str, date], Override] = {}
        self._matches: Dict[str, MatchRecord] = {}
        self._dismissed: Dict[str, Set[str]] = {}
        self._pending: Dict[str, List[Any]] = {}
        self._transfers: Dict[str, TransferPair] = {}
        self._rules: Dict[str, Rule] = {}
        self._rule_seq = itertools.count(1)
        self._timezones: Dict[str, str] = {}

    # Transactions

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            return self._transactions.get(transaction_id)

    def list_transactions(self, owner_id, start=None, end=None, account_id=None) -> List[Transaction]:
        with self._lock:
            items = [
                t for t in self._transactions.values()
                if t.owner_id == owner_id
                and _in_range(t.date, start, end)
                and (account_id is None or t.account_id == account_id)
            ]
        return sorted(items, key=lambda t: (t.date, t.id))

    def add_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            self._transactions[transaction.id] = transaction

    def update_transaction(self, transaction: Transaction) -> None:
        with self._lock:
            if transaction.id not in self._transactions:
                raise NotFoundError(f"Transaction not found: {transaction.id}")
            self._transactions[transaction.id] = transaction

    # Templates and planned transactions

    def get_template(self, template_id: str) -> Optional[RecurrenceTemplate]:
        with self._lock:
            return self._templates.get(template_id)

    def list_templates(self, owner_id, kind=None, active_only=False) -> List[RecurrenceTemplate]:
        with self._lock:
            items = [
                t for t in self._templates.values()
                if t.owner_id == owner_id
                and (kind is None or t.kind == kind)
                and (not active_only or t.is_active)
            ]
        return sorted(items, key=lambda t: (t.created_at, t.id))

    def add_template(self, template: RecurrenceTemplate) -> None:
        with self._lock:
            if template.id in self._templates:
                raise ConflictError(f"Template already exists: {template.id}")
            self._templates[template.id] = template

    def update_template(self, template: RecurrenceTemplate) -> None:
        with self._lock:
            if template.id not in self._templates:
                raise NotFoundError(f"Template not found: {template.id}")
            self._templates[template.id] = template

    def delete_template(self, template_id: str) -> None:
        with self._lock:
            if self._templates.pop(template_id, None) is None:
                raise NotFoundError(f"Template not found: {template_id}")

    def get_planned(self, planned_id: str) -> Optional[PlannedTransaction]:
        with self._lock:
            return self._planned.get(planned_id)

    def list_planned(self, owner_id, start=None, end=None) -> List[PlannedTransaction]:
        with self._lock:
            items = [
                p for p in self._planned.values()
                if p.owner_id == owner_id and _in_range(p.expected_date, start, end)
            ]
        return sorted(items, key=lambda p: (p.expected_date, p.id))

    def add_planned(self, planned: PlannedTransaction) -> None:
        with self._lock:
            self._planned[planned.id] = planned

    # Overrides

    def get_override(self, template_id: str, original_date: date) -> Optional[Override]:
        with self._lock:
            return self._overrides.get((template_id, original_date))

    def list_overrides(self, template_id: str) -> List[Override]:
        with self._lock:
            items = [o for (tid, _), o in self._overrides.items() if tid == template_id]
        return sorted(items, key=lambda o: o.original_date)

    def upsert_override(self, override: Override) -> None:
        with self._lock:
            self._overrides[(override.template_id, override.original_date)] = override

    def delete_override(self, template_id: str, original_date: date) -> bool:
        with self._lock:
            return self._overrides.pop((template_id, original_date), None) is not None

    def delete_overrides(self, template_id: str) -> int:
        with self._lock:
            keys = [k for k in self._overrides if k[0] == template_id]
            for key in keys:
                del self._overrides[key]
        return len(keys)

    # Match records

    def get_match(self, transaction_id: str) -> Optional[MatchRecord]:
        with self._lock:
            return self._matches.get(transaction_id)

    def list_matches(self, template_id=None) -> List[MatchRecord]:
        with self._lock:
            items = list(self._matches.values())
        if template_id is not None:
            items = [m for m in items if m.occurrence_ref.template_id == template_id]
        return items

    def insert_match_if_absent(self, record: MatchRecord) -> None:
        with self._lock:
            if record.transaction_id in self._matches:
                raise ConflictError(f"Transaction already matched: {record.transaction_id}")
            self._matches[record.transaction_id] = record

    def replace_match(self, record: MatchRecord) -> None:
        with self._lock:
            self._matches[record.transaction_id] = record

    def delete_match(self, transaction_id: str) -> bool:
        with self._lock:
            return self._matches.pop(transaction_id, None) is not None

    def delete_matches_for_template(self, template_id: str) -> int:
        with self._lock:
            ids = [
                tx_id for tx_id, m in self._matches.items()
                if m.occurrence_ref.template_id == template_id
            ]
            for tx_id in ids:
                del self._matches[tx_id]
        return len(ids)

    # Dismissed pairs and pending reviews

    def add_dismissed(self, transaction_id: str, occurrence_key: str) -> None:
        with self._lock:
            self._dismissed.setdefault(transaction_id, set()).add(occurrence_key)

    def dismissed_for(self, transaction_id: str) -> Set[str]:
        with self._lock:
            return set(self._dismissed.get(transaction_id, ()))

    def set_pending_review(self, transaction_id: str, candidates: List[Any]) -> None:
        with self._lock:
            self._pending[transaction_id] = list(candidates)

    def get_pending_review(self, transaction_id: str) -> Optional[List[Any]]:
        with self._lock:
            pending = self._pending.get(transaction_id)
            return list(pending) if pending is not None else None

    def clear_pending_review(self, transaction_id: str) -> None:
        with self._lock:
            self._pending.pop(transaction_id, None)

    def list_pending_reviews(self) -> Dict[str, List[Any]]:
        with self._lock:
            return {tx_id: list(candidates) for tx_id, candidates in self._pending.items()}

    # Transfer pairs

    def get_transfer_pair(self, key: str) -> Optional[TransferPair]:
        with self._lock:
            return self._transfers.get(key)

    def upsert_transfer_pair(self, pair: TransferPair) -> None:
        with self._lock:
            self._transfers[pair.key] = pair

    def list_transfer_pairs(self, status: Optional[TransferStatus] = None) -> List[TransferPair]:
        with self._lock:
            items = list(self._transfers.values())
        if status is not None:
            items = [p for p in items if p.status == status]
        return items

    # Rules

    def list_rules(self, owner_id: str) -> List[Rule]:
        with self._lock:
            return [r for r in self._rules.values() if r.owner_id == owner_id]

    def get_rule(self, rule_id: str) -> Optional[Rule]:
        with self._lock:
            return self._rules.get(rule_id)

    def add_rule(self, rule: Rule) -> None:
        with self._lock:
            if rule.id in self._rules:
                raise ConflictError(f"Rule already exists: {rule.id}")
            self._rules[rule.id] = rule

    def update_rule(self, rule: Rule) -> None:
        with self._lock:
            if rule.id not in self._rules:
                raise NotFoundError(f"Rule not found: {rule.id}")
            self._rules[rule.id] = rule

    def delete_rule(self, rule_id: str) -> None:
        with self._lock:
            if self._rules.pop(rule_id, None) is None:
                raise NotFoundError(f"Rule not found: {rule_id}")

    def next_rule_seq(self) -> int:
        with self._lock:
            return next(self._rule_seq)

    def record_rule_match(self, rule_id: str, matched_at: datetime) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise NotFoundError(f"Rule not found: {rule_id}")
            self._rules[rule_id] = replace(
                rule, match_count=rule.match_count + 1, last_matched=matched_at
            )

    # Users

    def get_user_timezone(self, owner_id: str) -> Optional[str]:
        with self._lock:
            return self._timezones.get(owner_id)

    def set_user_timezone(self, owner_id: str, timezone: str) -> None:
        with self._lock:
            self._timezones[owner_id] = timezone
