"""
Matching Engine for reconciling real transactions against expected occurrences.

Scores every eligible occurrence on amount, date proximity and text
similarity, then decides between auto-matching, asking the user to review,
or leaving the transaction unmatched. Pure: no store access.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional

from ..categorisation.text_similarity import text_similarity
from ..config.engine_config import MATCHING_CONFIG, merge_config
from ..models import Transaction
from ..schedule.models import MatchPolicy, Occurrence, OccurrenceRef
from ..utils.dates import days_between

logger = logging.getLogger(__name__)


class MatchStatus(Enum):
    """Matching decision outcomes."""
    AUTO = "AUTO"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    NO_MATCH = "NO_MATCH"


@dataclass
class MatchCandidate:
    """One scored occurrence for a transaction."""
    occurrence: Occurrence
    confidence: float
    amount_score: Optional[float]  # None when the amount signal is ignored
    date_score: float
    text_score: float
    days_diff: int
    amount_diff: float

    @property
    def occurrence_ref(self) -> OccurrenceRef:
        return self.occurrence.ref


@dataclass
class MatchResult:
    """Complete matching result for one transaction."""
    transaction_id: str = ""
    status: MatchStatus = MatchStatus.NO_MATCH
    confidence: float = 0.0
    occurrence_ref: Optional[OccurrenceRef] = None
    candidates: List[MatchCandidate] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)
    already_matched: bool = False

    @property
    def best(self) -> Optional[MatchCandidate]:
        return self.candidates[0] if self.candidates else None


class MatchingEngine:
    """
    Confidence-scored matcher.

    Args:
        config: Optional partial config merged over MATCHING_CONFIG
    """

    def __init__(self, config: Optional[Dict] = None):
        self.config = merge_config(MATCHING_CONFIG, config)
        self.weights = self.config["weights"]
        self.auto_threshold = self.config["auto_confirm_threshold"]
        self.review_threshold = self.config["review_threshold"]
        self.date_floor = self.config["date_floor"]
        self.epsilon = self.config["amount_epsilon"]
        self.max_review = self.config["max_review_candidates"]

    def match(
        self,
        transaction: Transaction,
        occurrences: Iterable[Occurrence],
        dismissed: Iterable[str] = (),
        claimed: Iterable[str] = (),
    ) -> MatchResult:
        """
        Match a transaction against candidate occurrences.

        Args:
            transaction: Real transaction to reconcile
            occurrences: Effective occurrences near the transaction date
            dismissed: Occurrence keys the user dismissed for this transaction
            claimed: Occurrence keys already matched to other transactions

        Returns:
            MatchResult with the decision and ranked candidates
        """
        dismissed = set(dismissed)
        claimed = set(claimed)

        candidates = []
        for occurrence in occurrences:
            if occurrence.ref.key in dismissed or occurrence.ref.key in claimed:
                continue
            candidate = self.score(transaction, occurrence)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=self._rank_key)
        result = MatchResult(transaction_id=transaction.id)

        if not candidates:
            result.notes.append("No eligible occurrences")
            return result

        best = candidates[0]
        result.confidence = best.confidence

        if best.confidence >= self.auto_threshold and self._policy_allows_auto(best.occurrence.match_policy):
            result.status = MatchStatus.AUTO
            result.occurrence_ref = best.occurrence_ref
            result.candidates = [best]
        elif best.confidence >= self.review_threshold:
            result.status = MatchStatus.NEEDS_REVIEW
            result.occurrence_ref = best.occurrence_ref
            result.candidates = [
                c for c in candidates if c.confidence >= self.review_threshold
            ][:self.max_review]
            if best.confidence >= self.auto_threshold:
                result.notes.append("Auto-match disabled by policy")
        else:
            result.status = MatchStatus.NO_MATCH
            result.notes.append(
                f"Best confidence {best.confidence:.1f} below review threshold"
            )

        logger.debug(
            "Transaction %s -> %s (%.1f) from %d candidates",
            transaction.id, result.status.value, result.confidence, len(candidates),
        )
        return result

    def _policy_allows_auto(self, policy: MatchPolicy) -> bool:
        return policy.auto_match_enabled and not policy.skip_review

    @staticmethod
    def _rank_key(candidate: MatchCandidate):
        created = candidate.occurrence.origin_created_at or datetime.max
        return (-candidate.confidence, candidate.days_diff, created, candidate.occurrence.ref.key)

    def is_eligible(self, transaction: Transaction, occurrence: Occurrence) -> bool:
        """Hard filters applied before scoring."""
        if occurrence.is_materialized:
            return False
        if occurrence.owner_id is not None and occurrence.owner_id != transaction.owner_id:
            return False
        if occurrence.account_id is not None and occurrence.account_id != transaction.account_id:
            return False
        if (
            occurrence.category_id is not None
            and transaction.category_id is not None
            and occurrence.category_id != transaction.category_id
        ):
            return False

        policy = occurrence.match_policy
        if days_between(transaction.date, occurrence.expected_date) > policy.match_window_days:
            return False
        if policy.amount_tolerance is not None:
            diff = abs(transaction.amount - occurrence.amount)
            if diff > policy.amount_tolerance + self.epsilon:
                return False
        return True

    def score(self, transaction: Transaction, occurrence: Occurrence) -> Optional[MatchCandidate]:
        """
        Score one occurrence, or return None when it is not eligible.

        Confidence is the weighted mean of the available signals, 0-100.
        """
        if not self.is_eligible(transaction, occurrence):
            return None

        policy = occurrence.match_policy
        days_diff = days_between(transaction.date, occurrence.expected_date)
        amount_diff = abs(transaction.amount - occurrence.amount)

        amount_score = self._amount_score(amount_diff, policy.amount_tolerance)
        date_score = self._date_score(days_diff, policy.match_window_days)
        text_score = text_similarity(transaction.description, transaction.merchant, occurrence.name)

        signals = {"date": date_score, "text": text_score}
        if amount_score is not None:
            signals["amount"] = amount_score

        total_weight = sum(self.weights[name] for name in signals)
        confidence = 0.0
        if total_weight > 0:
            confidence = sum(self.weights[name] * value for name, value in signals.items()) / total_weight

        candidate = MatchCandidate(
            occurrence=occurrence,
            confidence=round(min(100.0, max(0.0, confidence)), 2),
            amount_score=amount_score,
            date_score=date_score,
            text_score=text_score,
            days_diff=days_diff,
            amount_diff=amount_diff,
        )
        logger.debug(
            "Scored %s vs %s: amount=%s date=%.1f text=%.1f -> %.2f",
            transaction.id, occurrence.ref.key, amount_score, date_score, text_score, candidate.confidence,
        )
        return candidate

    def _amount_score(self, diff: float, tolerance: Optional[float]) -> Optional[float]:
        if tolerance is None:
            return None
        if diff <= self.epsilon:
            return 100.0
        if tolerance <= 0:
            return 0.0
        return max(0.0, 100.0 * (1.0 - diff / tolerance))

    def _date_score(self, days_diff: int, window: int) -> float:
        if days_diff == 0:
            return 100.0
        if window <= 0:
            return self.date_floor
        return 100.0 - (100.0 - self.date_floor) * min(days_diff, window) / window
