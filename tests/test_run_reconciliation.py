"""
End-to-end tests for run_reconciliation.
"""

import unittest
from datetime import date

from recurring_engine import (
    MatchPolicy,
    PeriodKind,
    PlannedTransaction,
    RecurrenceTemplate,
    Rule,
    RuleField,
    RuleOperator,
    ValidationError,
    run_reconciliation,
    transaction_from_dict,
)


class TestRunReconciliation(unittest.TestCase):
    """Test cases for the one-shot pipeline."""

    def setUp(self):
        """Set up test fixtures."""
        self.templates = [
            RecurrenceTemplate(
                id="rent", owner_id="u1", name="Rent", period_kind=PeriodKind.MONTHLY,
                first_occurrence=date(2024, 1, 1), amount=-1500.0, account_id="checking",
                match_policy=MatchPolicy(amount_tolerance=10.0),
            ),
            RecurrenceTemplate(
                id="gym", owner_id="u1", name="Gym", period_kind=PeriodKind.MONTHLY,
                first_occurrence=date(2024, 1, 5), amount=-45.0, account_id="checking",
                match_policy=MatchPolicy(amount_tolerance=5.0, auto_match_enabled=False),
            ),
        ]
        self.rules = [
            Rule("r1", "u1", "Costco", "groceries", RuleField.DESCRIPTION, RuleOperator.CONTAINS, "costco"),
        ]
        self.transactions = [
            {"id": "t1", "account_id": "checking", "date": "2024-03-02", "amount": -1500.0,
             "description": "RENT MARCH"},
            {"id": "t2", "account_id": "checking", "date": "2024-03-05", "amount": -45.0,
             "description": "PUREGYM", "merchant_name": "Gym"},
            {"id": "t3", "account_id": "checking", "date": "2024-03-06", "amount": -82.4,
             "description": "COSTCO WHOLESALE"},
            {"id": "t4", "account_id": "checking", "date": "2024-03-07", "amount": -300.0,
             "description": "TRANSFER TO SAVINGS"},
            {"id": "t5", "account_id": "savings", "date": "2024-03-07", "amount": 300.0,
             "description": "TRANSFER FROM CHECKING"},
        ]

    def test_pipeline(self):
        result = run_reconciliation("u1", self.transactions, templates=self.templates, rules=self.rules)

        self.assertEqual(result["summary"]["processed"], 5)
        self.assertEqual(result["summary"]["matched"], 1)
        self.assertEqual(result["summary"]["needs_review"], 1)
        self.assertEqual(result["summary"]["errors"], [])

        self.assertEqual(result["matches"]["t1"]["occurrence"], "rent@2024-03-01")
        self.assertEqual(result["matches"]["t1"]["method"], "AUTO")
        self.assertEqual(result["pending_reviews"]["t2"][0]["occurrence"], "gym@2024-03-05")
        self.assertEqual(result["categorized"], 1)

        self.assertEqual(len(result["transfers"]), 1)
        self.assertEqual(result["transfers"][0]["out_transaction_id"], "t4")
        self.assertEqual(result["transfers"][0]["in_transaction_id"], "t5")
        self.assertEqual(result["transfers"][0]["confidence"], 100.0)

    def test_planned_transactions(self):
        planned = [PlannedTransaction(
            id="p1", owner_id="u1", name="Costco", expected_date=date(2024, 3, 6),
            amount=-82.4, account_id="checking", match_policy=MatchPolicy(amount_tolerance=5.0),
        )]
        result = run_reconciliation("u1", self.transactions[2:3], planned=planned)
        self.assertEqual(result["matches"]["t3"]["occurrence"], "planned:p1")

    def test_empty_input(self):
        result = run_reconciliation("u1", [])
        self.assertEqual(result["summary"]["processed"], 0)
        self.assertEqual(result["transfers"], [])

    def test_invalid_template(self):
        bad = self.templates[0].with_changes(interval=0)
        with self.assertRaises(ValidationError):
            run_reconciliation("u1", self.transactions, templates=[bad])

    def test_transaction_from_dict(self):
        transaction = transaction_from_dict(self.transactions[1], owner_id="u1")
        self.assertEqual(transaction.date, date(2024, 3, 5))
        self.assertEqual(transaction.merchant, "Gym")
        self.assertEqual(transaction.owner_id, "u1")
        self.assertIsNone(transaction.category_id)


if __name__ == "__main__":
    unittest.main()
