"""
Store interface consumed by the engine.

The engine never talks to a database directly. Adapters implement this
interface; they raise StoreUnavailableError for infrastructure failures and
ConflictError when insert_match_if_absent finds an existing record.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Set

from ..categorisation.rule_engine import Rule
from ..models import MatchRecord, Transaction, TransferPair, TransferStatus
from ..schedule.models import OccurrenceRef, Override, PlannedTransaction, RecurrenceTemplate, TemplateKind


class EngineStore(ABC):
    """Persistence operations used by the engine services."""

    # Transactions

    @abstractmethod
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    def list_transactions(
        self,
        owner_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        account_id: Optional[str] = None,
    ) -> List[Transaction]:
        """Transactions of an owner, optionally bounded by an inclusive date range."""
        pass

    @abstractmethod
    def add_transaction(self, transaction: Transaction) -> None:
        pass

    @abstractmethod
    def update_transaction(self, transaction: Transaction) -> None:
        pass

    # Templates and planned transactions

    @abstractmethod
    def get_template(self, template_id: str) -> Optional[RecurrenceTemplate]:
        pass

    @abstractmethod
    def list_templates(
        self,
        owner_id: str,
        kind: Optional[TemplateKind] = None,
        active_only: bool = False,
    ) -> List[RecurrenceTemplate]:
        pass

    @abstractmethod
    def add_template(self, template: RecurrenceTemplate) -> None:
        pass

    @abstractmethod
    def update_template(self, template: RecurrenceTemplate) -> None:
        pass

    @abstractmethod
    def delete_template(self, template_id: str) -> None:
        pass

    @abstractmethod
    def get_planned(self, planned_id: str) -> Optional[PlannedTransaction]:
        pass

    @abstractmethod
    def list_planned(
        self,
        owner_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[PlannedTransaction]:
        pass

    @abstractmethod
    def add_planned(self, planned: PlannedTransaction) -> None:
        pass

    # Overrides, keyed by (template_id, original_date)

    @abstractmethod
    def get_override(self, template_id: str, original_date: date) -> Optional[Override]:
        pass

    @abstractmethod
    def list_overrides(self, template_id: str) -> List[Override]:
        pass

    @abstractmethod
    def upsert_override(self, override: Override) -> None:
        pass

    @abstractmethod
    def delete_override(self, template_id: str, original_date: date) -> bool:
        """Delete one override; returns False when none existed."""
        pass

    @abstractmethod
    def delete_overrides(self, template_id: str) -> int:
        """Delete every override of a template; returns the number removed."""
        pass

    # Match records, unique on transaction id

    @abstractmethod
    def get_match(self, transaction_id: str) -> Optional[MatchRecord]:
        pass

    @abstractmethod
    def list_matches(self, template_id: Optional[str] = None) -> List[MatchRecord]:
        pass

    @abstractmethod
    def insert_match_if_absent(self, record: MatchRecord) -> None:
        """Insert atomically; raise ConflictError if the transaction is already matched."""
        pass

    @abstractmethod
    def replace_match(self, record: MatchRecord) -> None:
        """Insert or overwrite the record for record.transaction_id."""
        pass

    @abstractmethod
    def delete_match(self, transaction_id: str) -> bool:
        pass

    @abstractmethod
    def delete_matches_for_template(self, template_id: str) -> int:
        pass

    # Dismissed pairs and pending reviews

    @abstractmethod
    def add_dismissed(self, transaction_id: str, occurrence_key: str) -> None:
        pass

    @abstractmethod
    def dismissed_for(self, transaction_id: str) -> Set[str]:
        """Occurrence keys the user dismissed for this transaction."""
        pass

    @abstractmethod
    def set_pending_review(self, transaction_id: str, candidates: List[Any]) -> None:
        pass

    @abstractmethod
    def get_pending_review(self, transaction_id: str) -> Optional[List[Any]]:
        pass

    @abstractmethod
    def clear_pending_review(self, transaction_id: str) -> None:
        pass

    @abstractmethod
    def list_pending_reviews(self) -> Dict[str, List[Any]]:
        """Pending candidates of every transaction awaiting review."""
        pass

    # Transfer pairs

    @abstractmethod
    def get_transfer_pair(self, key: str) -> Optional[TransferPair]:
        pass

    @abstractmethod
    def upsert_transfer_pair(self, pair: TransferPair) -> None:
        pass

    @abstractmethod
    def list_transfer_pairs(self, status: Optional[TransferStatus] = None) -> List[TransferPair]:
        pass

    # Rules

    @abstractmethod
    def list_rules(self, owner_id: str) -> List[Rule]:
        pass

    @abstractmethod
    def get_rule(self, rule_id: str) -> Optional[Rule]:
        pass

    @abstractmethod
    def add_rule(self, rule: Rule) -> None:
        pass

    @abstractmethod
    def update_rule(self, rule: Rule) -> None:
        pass

    @abstractmethod
    def delete_rule(self, rule_id: str) -> None:
        pass

    @abstractmethod
    def next_rule_seq(self) -> int:
        """Monotonic creation sequence used to break priority ties."""
        pass

    @abstractmethod
    def record_rule_match(self, rule_id: str, matched_at: datetime) -> None:
        pass

    # Users

    @abstractmethod
    def get_user_timezone(self, owner_id: str) -> Optional[str]:
        pass

    def overrides_by_date(self, template_id: str) -> Dict[date, Override]:
        """Overrides of a template keyed by original date."""
        return {o.original_date: o for o in self.list_overrides(template_id)}

    def withdraw_pending_candidates(
        self,
        predicate: Callable[[OccurrenceRef], bool],
        except_transaction_id: Optional[str] = None,
    ) -> int:
        """
        Remove pending-review candidates whose occurrence matches predicate.

        A review left with no candidates is cleared. Returns the number of
        candidates removed.
        """
        withdrawn = 0
        for transaction_id, candidates in self.list_pending_reviews().items():
            if transaction_id == except_transaction_id:
                continue
            remaining = [c for c in candidates if not predicate(c.occurrence_ref)]
            if len(remaining) == len(candidates):
                continue
            withdrawn += len(candidates) - len(remaining)
            if remaining:
                self.set_pending_review(transaction_id, remaining)
            else:
                self.clear_pending_review(transaction_id)
        return withdrawn
