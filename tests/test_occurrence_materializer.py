"""
Tests for the occurrence materializer: overrides over virtual occurrences.
"""

import unittest
from datetime import date, datetime

from recurring_engine.schedule.materializer import OccurrenceMaterializer
from recurring_engine.schedule.models import (
    MatchPolicy,
    Override,
    OverrideStatus,
    PeriodKind,
    PlannedTransaction,
    RecurrenceTemplate,
)
from recurring_engine.schedule.expander import expand
from recurring_engine.store.memory_store import InMemoryStore


class TestEffectiveOccurrences(unittest.TestCase):
    """Test cases for effective_occurrences."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = InMemoryStore()
        self.materializer = OccurrenceMaterializer(self.store)
        self.template = RecurrenceTemplate(
            id="phone",
            owner_id="u1",
            name="Phone bill",
            period_kind=PeriodKind.MONTHLY,
            first_occurrence=date(2024, 1, 1),
            amount=-100.0,
            account_id="acc1",
            category_id="utilities",
            created_at=datetime(2023, 12, 1),
        )
        self.start = date(2024, 1, 1)
        self.end = date(2024, 3, 31)

    def test_virtual_occurrences_inherit_template(self):
        occurrences = self.materializer.effective_occurrences(self.template, self.start, self.end)

        self.assertEqual([o.expected_date for o in occurrences],
                         [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)])
        for occurrence in occurrences:
            self.assertTrue(occurrence.is_virtual)
            self.assertEqual(occurrence.amount, -100.0)
            self.assertEqual(occurrence.account_id, "acc1")
            self.assertEqual(occurrence.category_id, "utilities")
            self.assertEqual(occurrence.owner_id, "u1")
            self.assertEqual(occurrence.template_id, "phone")

    def test_skipped_override_is_omitted(self):
        self.store.upsert_override(Override("phone", date(2024, 2, 1), status=OverrideStatus.SKIPPED))

        occurrences = self.materializer.effective_occurrences(self.template, self.start, self.end)
        expanded = expand(self.template, self.start, self.end)

        self.assertEqual(len(occurrences), len(expanded) - 1)
        self.assertNotIn(date(2024, 2, 1), [o.expected_date for o in occurrences])

    def test_customized_override_replaces_fields(self):
        policy = MatchPolicy(amount_tolerance=5.0)
        self.store.upsert_override(Override(
            "phone", date(2024, 3, 1),
            amount=-120.0, expected_date=date(2024, 3, 3), name="Phone + roaming",
            match_policy=policy,
        ))

        occurrences = self.materializer.effective_occurrences(self.template, self.start, self.end)
        march = occurrences[-1]

        self.assertTrue(march.is_override)
        self.assertFalse(march.is_virtual)
        self.assertEqual(march.amount, -120.0)
        self.assertEqual(march.expected_date, date(2024, 3, 3))
        self.assertEqual(march.ref.expected_date, date(2024, 3, 1))
        self.assertEqual(march.name, "Phone + roaming")
        self.assertEqual(march.match_policy, policy)
        # Unset override fields fall back to the template
        self.assertEqual(march.account_id, "acc1")
        self.assertEqual(march.category_id, "utilities")

    def test_sorted_by_effective_date(self):
        """A moved occurrence is ordered by its new date."""
        self.store.upsert_override(Override("phone", date(2024, 2, 1), expected_date=date(2024, 3, 5)))

        occurrences = self.materializer.effective_occurrences(self.template, self.start, self.end)

        self.assertEqual([o.expected_date for o in occurrences],
                         [date(2024, 1, 1), date(2024, 3, 1), date(2024, 3, 5)])
        self.assertEqual(occurrences[-1].ref.expected_date, date(2024, 2, 1))

    def test_materialized_occurrence_is_flagged(self):
        self.store.upsert_override(Override(
            "phone", date(2024, 1, 1),
            status=OverrideStatus.MATERIALIZED, materialized_transaction_id="tx-9",
        ))

        occurrences = self.materializer.effective_occurrences(self.template, self.start, self.end)

        self.assertEqual(len(occurrences), 3)
        self.assertTrue(occurrences[0].is_materialized)
        self.assertEqual(occurrences[0].materialized_transaction_id, "tx-9")
        self.assertFalse(occurrences[1].is_materialized)

    def test_inactive_template_yields_nothing(self):
        inactive = self.template.with_changes(is_active=False)
        self.assertEqual(self.materializer.effective_occurrences(inactive, self.start, self.end), [])

    def test_idempotent(self):
        self.store.upsert_override(Override("phone", date(2024, 2, 1), amount=-90.0))
        first = self.materializer.effective_occurrences(self.template, self.start, self.end)
        second = self.materializer.effective_occurrences(self.template, self.start, self.end)
        self.assertEqual(first, second)

    def test_never_beyond_end_date(self):
        ending = self.template.with_changes(end_date=date(2024, 2, 15))
        occurrences = self.materializer.effective_occurrences(ending, self.start, date(2024, 12, 31))
        self.assertEqual([o.expected_date for o in occurrences], [date(2024, 1, 1), date(2024, 2, 1)])

    def test_override_for_other_template_ignored(self):
        self.store.upsert_override(Override("other", date(2024, 2, 1), status=OverrideStatus.SKIPPED))
        occurrences = self.materializer.effective_occurrences(self.template, self.start, self.end)
        self.assertEqual(len(occurrences), 3)


class TestOccurrencesForTemplates(unittest.TestCase):
    """Merging templates and standalone planned transactions."""

    def setUp(self):
        self.store = InMemoryStore()
        self.materializer = OccurrenceMaterializer(self.store)

    def test_merges_templates_and_planned(self):
        weekly = RecurrenceTemplate(
            id="groceries", owner_id="u1", name="Groceries",
            period_kind=PeriodKind.WEEKLY, first_occurrence=date(2024, 1, 3), amount=-80.0,
        )
        monthly = RecurrenceTemplate(
            id="rent", owner_id="u1", name="Rent",
            period_kind=PeriodKind.MONTHLY, first_occurrence=date(2024, 1, 1), amount=-1500.0,
        )
        planned = [
            PlannedTransaction(id="p1", owner_id="u1", name="Car service",
                               expected_date=date(2024, 1, 12), amount=-300.0),
            PlannedTransaction(id="p2", owner_id="u1", name="Holiday",
                               expected_date=date(2024, 6, 1), amount=-2000.0),
        ]

        occurrences = self.materializer.occurrences_for_templates(
            [weekly, monthly], date(2024, 1, 1), date(2024, 1, 14), planned=planned
        )

        self.assertEqual(
            [(o.expected_date, o.name) for o in occurrences],
            [
                (date(2024, 1, 1), "Rent"),
                (date(2024, 1, 3), "Groceries"),
                (date(2024, 1, 10), "Groceries"),
                (date(2024, 1, 12), "Car service"),
            ],
        )
        car = occurrences[-1]
        self.assertIsNone(car.template_id)
        self.assertEqual(car.ref.planned_id, "p1")
        self.assertEqual(car.ref.key, "planned:p1")


if __name__ == "__main__":
    unittest.main()
