"""
Matching service: the store-backed reconciliation state machine.

    Unmatched --auto--> Matched(AUTO)
    Unmatched --review--> PendingReview --confirm--> Matched(AUTO_REVIEWED)
                                        --dismiss--> (pair dismissed)
    Unmatched/Matched --manual link--> Matched(MANUAL)
    Matched --unmatch--> Unmatched
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import MatchMethod, MatchRecord, Transaction, TransactionMatchState
from ..schedule.expander import expand
from ..schedule.materializer import OccurrenceMaterializer
from ..schedule.models import Occurrence, OccurrenceRef, TemplateKind
from .matching_engine import MatchCandidate, MatchingEngine, MatchResult, MatchStatus

logger = logging.getLogger(__name__)


class MatchingService:
    """
    Reconciles stored transactions against stored templates.

    Args:
        store: EngineStore implementation
        engine: Optional MatchingEngine (built from config when omitted)
        config: Optional partial MATCHING_CONFIG override
    """

    def __init__(self, store, engine: Optional[MatchingEngine] = None, config: Optional[Dict] = None):
        self.store = store
        self.engine = engine or MatchingEngine(config)
        self.materializer = OccurrenceMaterializer(store)

    def _get_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    def _widest_window(self, templates: List, planned: List) -> int:
        """Largest match window among templates, their customized occurrences and planned items."""
        widest = self.engine.config["default_window_days"]
        for template in templates:
            widest = max(widest, template.match_policy.match_window_days)
            for override in self.store.list_overrides(template.id):
                if override.match_policy is not None:
                    widest = max(widest, override.match_policy.match_window_days)
        for item in planned:
            widest = max(widest, item.match_policy.match_window_days)
        return widest

    def candidate_occurrences(self, transaction: Transaction) -> List[Occurrence]:
        """Effective occurrences of the owner's templates near the transaction date."""
        owner_id = transaction.owner_id
        timezone = self.store.get_user_timezone(owner_id)
        templates = self.store.list_templates(
            owner_id, kind=TemplateKind.PLANNED_TRANSACTION, active_only=True
        )

        padding = (
            self._widest_window(templates, self.store.list_planned(owner_id))
            + self.engine.config["lookup_padding_days"]
        )
        start = transaction.date - timedelta(days=padding)
        end = transaction.date + timedelta(days=padding)
        planned = self.store.list_planned(owner_id, start, end)

        return self.materializer.occurrences_for_templates(
            templates, start, end, planned=planned, timezone=timezone
        )

    def _claimed_keys(self, transaction_id: str) -> Set[str]:
        return {
            record.occurrence_ref.key
            for record in self.store.list_matches()
            if record.transaction_id != transaction_id
        }

    def evaluate(self, transaction_id: str) -> MatchResult:
        """Score a transaction without changing any state."""
        transaction = self._get_transaction(transaction_id)
        return self.engine.match(
            transaction,
            self.candidate_occurrences(transaction),
            dismissed=self.store.dismissed_for(transaction_id),
            claimed=self._claimed_keys(transaction_id),
        )

    def auto_match(self, transaction_id: str) -> MatchResult:
        """
        Run matching for one transaction and apply the decision.

        AUTO writes a match record, NEEDS_REVIEW stores the ranked candidates
        for the user. A transaction that is already matched is left alone and
        reported with already_matched set.
        """
        if self.store.get_match(transaction_id) is not None:
            return MatchResult(transaction_id=transaction_id, already_matched=True, notes=["Already matched"])

        result = self.evaluate(transaction_id)

        if result.status == MatchStatus.AUTO:
            record = MatchRecord(
                transaction_id=transaction_id,
                occurrence_ref=result.occurrence_ref,
                confidence=result.confidence,
                method=MatchMethod.AUTO,
            )
            try:
                self.store.insert_match_if_absent(record)
            except ConflictError:
                logger.warning("Transaction %s was matched concurrently; keeping existing match", transaction_id)
                result.already_matched = True
                return result

            self.store.clear_pending_review(transaction_id)
            self._withdraw_claimed(transaction_id, result.occurrence_ref)
            logger.info(
                "Auto-matched transaction %s to %s (%.1f)",
                transaction_id, result.occurrence_ref.key, result.confidence,
            )
        elif result.status == MatchStatus.NEEDS_REVIEW:
            self.store.set_pending_review(transaction_id, result.candidates)
            logger.info(
                "Transaction %s needs review (%d candidates, best %.1f)",
                transaction_id, len(result.candidates), result.confidence,
            )
        else:
            self.store.clear_pending_review(transaction_id)

        return result

    def pending_review(self, transaction_id: str) -> List[MatchCandidate]:
        return self.store.get_pending_review(transaction_id) or []

    def confirm_review(self, transaction_id: str, occurrence_key: Optional[str] = None) -> MatchRecord:
        """
        Accept a reviewed candidate.

        Args:
            transaction_id: Transaction awaiting review
            occurrence_key: Chosen candidate (defaults to the best one)

        Returns:
            The AUTO_REVIEWED match record

        Raises:
            NotFoundError: no such candidate, or its template or planned item is gone
            ValidationError: the occurrence was skipped or no longer exists
            ConflictError: another transaction has claimed the occurrence
        """
        transaction = self._get_transaction(transaction_id)
        candidates = self.store.get_pending_review(transaction_id)
        if not candidates:
            raise NotFoundError(f"No pending review for transaction {transaction_id}")

        chosen = candidates[0]
        if occurrence_key is not None:
            chosen = next((c for c in candidates if c.occurrence_ref.key == occurrence_key), None)
            if chosen is None:
                raise NotFoundError(f"Candidate {occurrence_key} is not pending for {transaction_id}")

        self._validate_ref(chosen.occurrence_ref, transaction.owner_id)
        self._ensure_unclaimed(transaction_id, chosen.occurrence_ref)

        record = MatchRecord(
            transaction_id=transaction_id,
            occurrence_ref=chosen.occurrence_ref,
            confidence=chosen.confidence,
            method=MatchMethod.AUTO_REVIEWED,
        )
        self.store.insert_match_if_absent(record)
        self.store.clear_pending_review(transaction_id)
        self._withdraw_claimed(transaction_id, chosen.occurrence_ref)
        logger.info("Confirmed review of %s -> %s", transaction_id, chosen.occurrence_ref.key)
        return record

    def dismiss(self, transaction_id: str, occurrence_key: str) -> None:
        """Reject a candidate for this transaction; it is never proposed again."""
        self._get_transaction(transaction_id)
        self.store.add_dismissed(transaction_id, occurrence_key)

        candidates = self.store.get_pending_review(transaction_id)
        if candidates is not None:
            remaining = [c for c in candidates if c.occurrence_ref.key != occurrence_key]
            if remaining:
                self.store.set_pending_review(transaction_id, remaining)
            else:
                self.store.clear_pending_review(transaction_id)

        logger.info("Dismissed %s for transaction %s", occurrence_key, transaction_id)

    def _validate_ref(self, ref: OccurrenceRef, owner_id: str) -> None:
        if ref.template_id is None:
            planned = self.store.get_planned(ref.planned_id) if ref.planned_id is not None else None
            if planned is None or planned.owner_id != owner_id:
                raise NotFoundError(f"Planned transaction not found: {ref.planned_id}")
            return

        template = self.store.get_template(ref.template_id)
        if template is None or template.owner_id != owner_id:
            raise NotFoundError(f"Template not found: {ref.template_id}")
        if ref.expected_date not in expand(template, ref.expected_date, ref.expected_date):
            raise ValidationError(
                f"Template {ref.template_id} has no occurrence on {ref.expected_date.isoformat()}"
            )
        override = self.store.get_override(ref.template_id, ref.expected_date)
        if override is not None and override.is_skipped:
            raise ValidationError(f"Occurrence {ref.key} is skipped")

    def _ensure_unclaimed(self, transaction_id: str, ref: OccurrenceRef) -> None:
        for record in self.store.list_matches(ref.template_id):
            if record.occurrence_ref.key == ref.key and record.transaction_id != transaction_id:
                raise ConflictError(
                    f"Occurrence {ref.key} is already matched to {record.transaction_id}"
                )

    def _withdraw_claimed(self, transaction_id: str, ref: OccurrenceRef) -> None:
        """Drop candidates for a now-matched occurrence from other transactions' reviews."""
        withdrawn = self.store.withdraw_pending_candidates(
            lambda candidate_ref: candidate_ref.key == ref.key,
            except_transaction_id=transaction_id,
        )
        if withdrawn:
            logger.debug("Withdrew %d pending candidates for %s", withdrawn, ref.key)

    def manual_link(self, transaction_id: str, occurrence_ref: OccurrenceRef) -> MatchRecord:
        """Link a transaction to an occurrence by hand, replacing any existing match."""
        transaction = self._get_transaction(transaction_id)
        self._validate_ref(occurrence_ref, transaction.owner_id)
        self._ensure_unclaimed(transaction_id, occurrence_ref)

        record = MatchRecord(
            transaction_id=transaction_id,
            occurrence_ref=occurrence_ref,
            confidence=100.0,
            method=MatchMethod.MANUAL,
        )
        self.store.replace_match(record)
        self.store.clear_pending_review(transaction_id)
        self._withdraw_claimed(transaction_id, occurrence_ref)
        logger.info("Manually linked %s -> %s", transaction_id, occurrence_ref.key)
        return record

    def unmatch(self, transaction_id: str) -> None:
        """Delete the match record; the transaction itself is untouched."""
        if not self.store.delete_match(transaction_id):
            raise NotFoundError(f"Transaction {transaction_id} is not matched")
        logger.info("Unmatched transaction %s", transaction_id)

    def match_state(self, transaction_id: str) -> TransactionMatchState:
        if self.store.get_match(transaction_id) is not None:
            return TransactionMatchState.MATCHED
        if self.store.get_pending_review(transaction_id):
            return TransactionMatchState.PENDING_REVIEW
        return TransactionMatchState.UNMATCHED

    def match_history(
        self,
        owner_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[MatchRecord]:
        """Match records of an owner's transactions, newest first."""
        history = []
        for record in self.store.list_matches():
            transaction = self.store.get_transaction(record.transaction_id)
            if transaction is None or transaction.owner_id != owner_id:
                continue
            if start is not None and record.matched_at < start:
                continue
            if end is not None and record.matched_at > end:
                continue
            history.append(record)
        return sorted(history, key=lambda r: r.matched_at, reverse=True)

    def unmatched_transactions(
        self,
        owner_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Transaction]:
        """Owner's transactions without a match record."""
        return [
            t for t in self.store.list_transactions(owner_id, start, end)
            if self.store.get_match(t.id) is None
        ]
