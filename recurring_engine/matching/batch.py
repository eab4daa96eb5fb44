"""
Batch auto-matching for many transactions.

Each transaction is matched independently: a failure is logged and recorded
as a ProcessingError and the batch moves on. Only a store outage aborts the
run.
"""

import logging
import traceback
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from ..errors import ConflictError, NotFoundError, StoreUnavailableError, ValidationError
from .matching_engine import MatchResult, MatchStatus
from .matching_service import MatchingService

logger = logging.getLogger(__name__)


@dataclass
class ProcessingError:
    """Details of a per-transaction failure."""
    transaction_id: str
    error_type: str
    error_message: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class BatchStats:
    """Statistics for a batch run."""
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    # Outcome counts
    matched: int = 0
    needs_review: int = 0
    no_match: int = 0
    skipped: int = 0

    # Timing
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def processing_time(self) -> float:
        """Total processing time in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return 0.0

    @property
    def match_rate(self) -> float:
        """Matched transactions as a percentage of those processed successfully."""
        if self.succeeded == 0:
            return 0.0
        return (self.matched / self.succeeded) * 100


@dataclass
class BatchResult:
    """Complete result of a batch run."""
    stats: BatchStats
    results: List[MatchResult]
    errors: List[ProcessingError]
    error_summary: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict:
        """Structured summary: processed, succeeded, matched, needs_review, skipped, errors."""
        return {
            "processed": self.stats.processed,
            "succeeded": self.stats.succeeded,
            "matched": self.stats.matched,
            "needs_review": self.stats.needs_review,
            "skipped": self.stats.skipped,
            "errors": [
                {
                    "transaction_id": e.transaction_id,
                    "error_type": e.error_type,
                    "error_message": e.error_message,
                }
                for e in self.errors
            ],
        }


# Error types recorded per failing transaction
_ERROR_TYPES = (
    (NotFoundError, "NOT_FOUND"),
    (ValidationError, "VALIDATION_ERROR"),
    (ConflictError, "CONFLICT"),
)


class BatchAutoMatcher:
    """Runs MatchingService.auto_match over many transactions."""

    def __init__(self, service: MatchingService):
        self.service = service

    def process_batch(
        self,
        transaction_ids: List[str],
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> BatchResult:
        """
        Auto-match a list of transactions.

        Args:
            transaction_ids: Transactions to process, in order
            progress_callback: Optional callback(current, total, message)

        Returns:
            BatchResult with per-transaction results and errors

        Raises:
            StoreUnavailableError: the store failed; the batch is aborted
        """
        stats = BatchStats(total=len(transaction_ids), start_time=datetime.now())
        results = []
        errors = []
        error_types: Dict[str, int] = {}

        logger.info("Starting batch auto-match of %d transactions", len(transaction_ids))

        for idx, transaction_id in enumerate(transaction_ids):
            if progress_callback:
                progress_callback(idx + 1, len(transaction_ids), f"Matching: {transaction_id}")

            try:
                result = self.service.auto_match(transaction_id)
            except StoreUnavailableError:
                logger.error("Store unavailable; aborting batch at %s", transaction_id)
                raise
            except Exception as e:
                error_type = self._classify(e)
                message = str(e) if error_type != "PROCESSING_ERROR" else f"{type(e).__name__}: {e}"
                errors.append(ProcessingError(
                    transaction_id=transaction_id,
                    error_type=error_type,
                    error_message=message,
                ))
                error_types[error_type] = error_types.get(error_type, 0) + 1
                stats.processed += 1
                stats.failed += 1
                if error_type == "PROCESSING_ERROR":
                    logger.error("Processing error for %s: %s", transaction_id, traceback.format_exc())
                else:
                    logger.error("%s for %s: %s", error_type, transaction_id, e)
                continue

            results.append(result)
            stats.processed += 1
            stats.succeeded += 1

            if result.already_matched:
                stats.skipped += 1
            elif result.status == MatchStatus.AUTO:
                stats.matched += 1
            elif result.status == MatchStatus.NEEDS_REVIEW:
                stats.needs_review += 1
            else:
                stats.no_match += 1

        stats.end_time = datetime.now()
        logger.info(
            "Batch auto-match complete: %d/%d succeeded, %d matched, %d for review, %d skipped, time: %.1fs",
            stats.succeeded, stats.total, stats.matched, stats.needs_review, stats.skipped,
            stats.processing_time,
        )

        return BatchResult(stats=stats, results=results, errors=errors, error_summary=error_types)

    def process_owner(
        self,
        owner_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        progress_callback: Optional[Callable[[int, int, str], None]] = None,
    ) -> BatchResult:
        """Auto-match every unmatched transaction of an owner in a date range."""
        transactions = self.service.unmatched_transactions(owner_id, start, end)
        return self.process_batch([t.id for t in transactions], progress_callback)

    @staticmethod
    def _classify(error: Exception) -> str:
        for error_class, error_type in _ERROR_TYPES:
            if isinstance(error, error_class):
                return error_type
        return "PROCESSING_ERROR"

    def results_to_dataframe(self, results: List[MatchResult]):
        """
        Convert match results to a pandas DataFrame.

        Args:
            results: List of MatchResult objects

        Returns:
            pandas DataFrame
        """
        import pandas as pd

        rows = []
        for result in results:
            best = result.best
            rows.append({
                "Transaction ID": result.transaction_id,
                "Status": "ALREADY_MATCHED" if result.already_matched else result.status.value,
                "Confidence": round(result.confidence, 2),
                "Occurrence": result.occurrence_ref.key if result.occurrence_ref else "",
                "Expected Date": best.occurrence.expected_date.isoformat() if best else "",
                "Amount Score": best.amount_score if best else None,
                "Date Score": round(best.date_score, 2) if best else None,
                "Text Score": round(best.text_score, 2) if best else None,
                "Candidates": len(result.candidates),
                "Notes": "; ".join(result.notes) if result.notes else "",
            })

        return pd.DataFrame(rows)

    def errors_to_dataframe(self, errors: List[ProcessingError]):
        """
        Convert processing errors to a pandas DataFrame.

        Args:
            errors: List of ProcessingError objects

        Returns:
            pandas DataFrame
        """
        import pandas as pd

        rows = []
        for error in errors:
            rows.append({
                "Transaction ID": error.transaction_id,
                "Error Type": error.error_type,
                "Error Message": error.error_message,
                "Timestamp": error.timestamp,
            })

        return pd.DataFrame(rows)
