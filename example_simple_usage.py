"""
Simple examples demonstrating the Recurring Engine.

Expands a few templates, reconciles a month of transactions against them and
prints the outcome.
"""

import logging
from datetime import date

from recurring_engine import (
    DayOfMonthRule,
    EditScope,
    ImplicitSpendMode,
    InMemoryStore,
    MatchPolicy,
    PeriodKind,
    RecurrenceTemplate,
    Rule,
    RuleField,
    RuleOperator,
    TemplateKind,
    TemplateService,
    budget_periods,
    calculate_budget_status,
    run_reconciliation,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)

rent = RecurrenceTemplate(
    id="rent",
    owner_id="u1",
    name="Rent",
    period_kind=PeriodKind.MONTHLY,
    first_occurrence=date(2024, 1, 31),
    amount=-1500.0,
    account_id="checking",
    day_rule=DayOfMonthRule.last_day(),
    match_policy=MatchPolicy(amount_tolerance=10.0),
)
payday = RecurrenceTemplate(
    id="salary",
    owner_id="u1",
    name="Salary ACME",
    period_kind=PeriodKind.MONTHLY,
    first_occurrence=date(2024, 1, 31),
    amount=2500.0,
    account_id="checking",
    day_rule=DayOfMonthRule.last_weekday(),
    match_policy=MatchPolicy(amount_tolerance=50.0, match_window_days=3),
)
groceries = RecurrenceTemplate(
    id="groceries",
    owner_id="u1",
    name="Groceries",
    period_kind=PeriodKind.MONTHLY,
    first_occurrence=date(2024, 1, 1),
    amount=400.0,
    kind=TemplateKind.BUDGET,
    implicit_spend_mode=ImplicitSpendMode.DAILY,
)

# Example 1: Schedule expansion
print("=" * 60)
print("Example 1: Template Expansion and Overrides")
print("=" * 60)

store = InMemoryStore()
service = TemplateService(store)
for template in (rent, payday):
    service.create_template(template)

service.edit_occurrence("rent", date(2024, 2, 29), {"amount": -1550.0}, EditScope.THIS_ONLY)
service.skip_occurrence("salary", date(2024, 3, 29))

for template_id in ("rent", "salary"):
    print(f"\n{template_id}:")
    for occurrence in service.occurrences(template_id, date(2024, 1, 1), date(2024, 4, 30)):
        flag = "override" if occurrence.is_override else "virtual"
        print(f"  {occurrence.expected_date}  {occurrence.amount:>10.2f}  ({flag})")

# Example 2: Budget periods
print("\n" + "=" * 60)
print("Example 2: Budget Periods")
print("=" * 60)

as_of = date(2024, 3, 12)
for period in budget_periods(groceries, date(2024, 3, 1), date(2024, 3, 31)):
    implicit = period.implicit_spend(as_of, planned_spend=120.0)
    status, pct, remaining = calculate_budget_status(implicit + 120.0, period.amount)
    print(f"\n  {period.start} -> {period.end}: budget {period.amount:.2f}")
    print(f"  Implicit spend by {as_of}: {implicit:.2f}")
    print(f"  Status: {status} ({pct:.1f}% used, {remaining:.2f} left)")

# Example 3: Reconciliation
print("\n" + "=" * 60)
print("Example 3: Reconciliation")
print("=" * 60)

transactions = [
    {"id": "t1", "account_id": "checking", "date": "2024-03-01", "amount": -1500.0,
     "description": "STANDING ORDER RENT"},
    {"id": "t2", "account_id": "checking", "date": "2024-03-08", "amount": -86.20,
     "description": "COSTCO WHOLESALE 0042"},
    {"id": "t3", "account_id": "checking", "date": "2024-03-28", "amount": 2480.0,
     "description": "ACME LTD SALARY"},
    {"id": "t4", "account_id": "checking", "date": "2024-03-30", "amount": -250.0,
     "description": "TRANSFER TO SAVINGS"},
    {"id": "t5", "account_id": "savings", "date": "2024-03-30", "amount": 250.0,
     "description": "TRANSFER FROM CURRENT"},
]
rules = [
    Rule("r1", "u1", "Costco", "groceries", RuleField.DESCRIPTION, RuleOperator.CONTAINS, "costco", priority=10),
]

result = run_reconciliation(
    "u1",
    transactions,
    templates=[rent.with_changes(), payday.with_changes()],
    rules=rules,
    timezone="Europe/London",
)

summary = result["summary"]
print(f"\nProcessed: {summary['processed']}  Matched: {summary['matched']}  "
      f"Needs review: {summary['needs_review']}  Errors: {len(summary['errors'])}")
print(f"Categorized by rules: {result['categorized']}")

print("\nMatches:")
for tx_id, match in result["matches"].items():
    print(f"  {tx_id:4} -> {match['occurrence']:24} (conf: {match['confidence']:.2f}, {match['method']})")

print("\nPending review:")
for tx_id, candidates in result["pending_reviews"].items():
    keys = ", ".join(f"{c['occurrence']} ({c['confidence']:.1f})" for c in candidates)
    print(f"  {tx_id:4} -> {keys}")

print("\nTransfers:")
for pair in result["transfers"]:
    print(f"  {pair['out_transaction_id']} -> {pair['in_transaction_id']} (conf: {pair['confidence']:.1f})")

print("\n" + "=" * 60)
print("✓ All examples completed successfully!")
print("=" * 60)
