"""
Recurring Engine - Recurring Financial Event & Matching Engine.

Expands recurring budget and planned-transaction templates into dated
occurrences and reconciles real bank transactions against them with a
confidence-scored, reviewable matching algorithm.

Main Components:
    - schedule: Template expansion, overrides, budget periods and edit scopes
    - categorisation: User rules and text similarity
    - matching: Matching engine, match state machine, transfers and batches
    - store: Store interface and the in-memory implementation
    - config: Weights, thresholds and limits
"""

from datetime import date
from typing import Dict, Iterable, Optional, Union

from .errors import (
    EngineError,
    ValidationError,
    ConflictError,
    CascadeConfirmationRequired,
    NotFoundError,
    StoreUnavailableError,
)
from .models import (
    Transaction,
    MatchRecord,
    MatchMethod,
    TransactionMatchState,
    TransferPair,
    TransferStatus,
)
from .schedule import (
    PeriodKind,
    DayOfMonthType,
    DayOfMonthRule,
    TemplateKind,
    ImplicitSpendMode,
    OverrideStatus,
    EditScope,
    MatchPolicy,
    RecurrenceTemplate,
    OccurrenceRef,
    Override,
    PlannedTransaction,
    Occurrence,
    expand,
    validate_template,
    next_occurrence,
    future_occurrences,
    OccurrenceMaterializer,
    BudgetPeriod,
    budget_periods,
    period_for_date,
    calculate_budget_status,
    TemplateService,
)
from .categorisation import (
    Rule,
    RuleField,
    RuleOperator,
    RuleCache,
    CategorizationRuleEngine,
    evaluate,
    sort_rules,
)
from .matching import (
    MatchingEngine,
    MatchStatus,
    MatchCandidate,
    MatchResult,
    MatchingService,
    TransferCandidate,
    TransferService,
    detect_transfers,
    BatchAutoMatcher,
    BatchResult,
)
from .store import EngineStore, InMemoryStore
from .config import (
    SCHEDULE_CONFIG,
    MATCHING_CONFIG,
    TRANSFER_CONFIG,
    BUDGET_STATUS_CONFIG,
    load_rules_csv,
)
from .utils.dates import to_local_date


__version__ = "1.0.0"
__all__ = [
    # Errors
    "EngineError",
    "ValidationError",
    "ConflictError",
    "CascadeConfirmationRequired",
    "NotFoundError",
    "StoreUnavailableError",
    # Records
    "Transaction",
    "MatchRecord",
    "MatchMethod",
    "TransactionMatchState",
    "TransferPair",
    "TransferStatus",
    # Schedule
    "PeriodKind",
    "DayOfMonthType",
    "DayOfMonthRule",
    "TemplateKind",
    "ImplicitSpendMode",
    "OverrideStatus",
    "EditScope",
    "MatchPolicy",
    "RecurrenceTemplate",
    "OccurrenceRef",
    "Override",
    "PlannedTransaction",
    "Occurrence",
    "expand",
    "validate_template",
    "next_occurrence",
    "future_occurrences",
    "OccurrenceMaterializer",
    "BudgetPeriod",
    "budget_periods",
    "period_for_date",
    "calculate_budget_status",
    "TemplateService",
    # Categorisation
    "Rule",
    "RuleField",
    "RuleOperator",
    "RuleCache",
    "CategorizationRuleEngine",
    "evaluate",
    "sort_rules",
    # Matching
    "MatchingEngine",
    "MatchStatus",
    "MatchCandidate",
    "MatchResult",
    "MatchingService",
    "TransferCandidate",
    "TransferService",
    "detect_transfers",
    "BatchAutoMatcher",
    "BatchResult",
    # Store
    "EngineStore",
    "InMemoryStore",
    # Config
    "SCHEDULE_CONFIG",
    "MATCHING_CONFIG",
    "TRANSFER_CONFIG",
    "BUDGET_STATUS_CONFIG",
    "load_rules_csv",
    # Entry point
    "run_reconciliation",
    "transaction_from_dict",
]


def transaction_from_dict(data: Dict, owner_id: Optional[str] = None) -> Transaction:
    """
    Build a Transaction from a plain dictionary.

    Accepts "merchant" or "merchant_name" and ISO date strings.
    """
    return Transaction(
        id=str(data["id"]),
        owner_id=data.get("owner_id") or owner_id,
        account_id=data["account_id"],
        date=to_local_date(data["date"]),
        amount=float(data["amount"]),
        description=data.get("description") or "",
        merchant=data.get("merchant") or data.get("merchant_name"),
        notes=data.get("notes"),
        category_id=data.get("category_id"),
    )


def run_reconciliation(
    owner_id: str,
    transactions: Iterable[Union[Transaction, Dict]],
    templates: Iterable[RecurrenceTemplate] = (),
    rules: Iterable[Rule] = (),
    planned: Iterable[PlannedTransaction] = (),
    timezone: Optional[str] = None,
    as_of: Optional[date] = None,
    config: Optional[Dict] = None,
) -> Dict:
    """
    Main entry point for one-shot reconciliation.

    This function orchestrates the complete pipeline over an in-memory store:
    1. Categorize uncategorized transactions with the owner's rules
    2. Auto-match every transaction against template occurrences
    3. Detect transfers between the owner's accounts

    Args:
        owner_id: Owner of all records
        transactions: Transaction objects or dictionaries
        templates: Recurrence templates (validated on load)
        rules: Categorization rules
        planned: Standalone planned transactions
        timezone: Owner's IANA timezone
        as_of: Last day considered for transfer detection (defaults to the
            latest transaction date)
        config: Optional partial MATCHING_CONFIG override

    Returns:
        Dictionary containing:
            - summary: batch summary (processed, succeeded, matched,
              needs_review, skipped, errors)
            - matches: transaction id -> {occurrence, confidence, method}
            - pending_reviews: transaction id -> ranked candidate keys
            - categorized: number of transactions categorized by rules
            - transfers: proposed transfer pairs

    Example:
        >>> rent = RecurrenceTemplate(id="rent", owner_id="u1", name="Rent",
        ...     period_kind=PeriodKind.MONTHLY, first_occurrence=date(2024, 1, 1),
        ...     amount=-1500.0, account_id="checking",
        ...     match_policy=MatchPolicy(amount_tolerance=10.0))
        >>> result = run_reconciliation("u1", [
        ...     {"id": "t1", "account_id": "checking", "date": "2024-03-02",
        ...      "amount": -1500.0, "description": "RENT MARCH"},
        ... ], templates=[rent])
        >>> result["summary"]["matched"]
        1
    """
    store = InMemoryStore()
    if timezone:
        store.set_user_timezone(owner_id, timezone)

    loaded = []
    for item in transactions:
        transaction = item if isinstance(item, Transaction) else transaction_from_dict(item, owner_id)
        store.add_transaction(transaction)
        loaded.append(transaction)

    template_service = TemplateService(store)
    for template in templates:
        template_service.create_template(template)
    for item in planned:
        store.add_planned(item)

    # Step 1: Categorize transactions
    rule_engine = CategorizationRuleEngine(store)
    for rule in rules:
        rule_engine.create_rule(rule)
    categorized = rule_engine.apply_to_uncategorized(owner_id)

    # Step 2: Auto-match
    service = MatchingService(store, config=config)
    batch = BatchAutoMatcher(service).process_batch([t.id for t in loaded])

    # Step 3: Transfers
    if as_of is None and loaded:
        as_of = max(t.date for t in loaded)
    transfers = []
    if as_of is not None:
        transfers = TransferService(store).run_detection(owner_id, as_of)

    matches = {}
    for record in store.list_matches():
        matches[record.transaction_id] = {
            "occurrence": record.occurrence_ref.key,
            "confidence": record.confidence,
            "method": record.method.value,
        }

    pending_reviews = {}
    for transaction in loaded:
        candidates = store.get_pending_review(transaction.id)
        if candidates:
            pending_reviews[transaction.id] = [
                {"occurrence": c.occurrence_ref.key, "confidence": c.confidence}
                for c in candidates
            ]

    return {
        "summary": batch.summary(),
        "matches": matches,
        "pending_reviews": pending_reviews,
        "categorized": categorized,
        "transfers": [
            {
                "out_transaction_id": p.out_transaction_id,
                "in_transaction_id": p.in_transaction_id,
                "confidence": p.confidence,
            }
            for p in transfers
        ],
    }
