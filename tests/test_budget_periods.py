"""
Tests for budget periods, implicit spend accrual and budget status bands.
"""

import unittest
from datetime import date

from recurring_engine.schedule.budget_periods import (
    BudgetPeriod,
    budget_periods,
    calculate_budget_status,
    period_for_date,
)
from recurring_engine.schedule.models import (
    ImplicitSpendMode,
    Override,
    OverrideStatus,
    PeriodKind,
    RecurrenceTemplate,
    TemplateKind,
)
from recurring_engine.store.memory_store import InMemoryStore


def budget_template(mode=ImplicitSpendMode.DAILY, **kwargs):
    return RecurrenceTemplate(
        id="food",
        owner_id="u1",
        name="Food budget",
        period_kind=kwargs.pop("period_kind", PeriodKind.MONTHLY),
        first_occurrence=kwargs.pop("first", date(2024, 1, 1)),
        amount=300.0,
        kind=TemplateKind.BUDGET,
        implicit_spend_mode=mode,
        **kwargs
    )


class TestBudgetPeriods(unittest.TestCase):
    """Period derivation from BUDGET templates."""

    def test_periods_overlapping_window(self):
        periods = budget_periods(budget_template(), date(2024, 2, 10), date(2024, 3, 5))

        self.assertEqual([(p.start, p.end) for p in periods], [
            (date(2024, 2, 1), date(2024, 3, 1)),
            (date(2024, 3, 1), date(2024, 4, 1)),
        ])
        self.assertEqual(periods[0].days, 29)
        self.assertEqual(periods[0].amount, 300.0)

    def test_weekly_periods(self):
        template = budget_template(period_kind=PeriodKind.WEEKLY, first=date(2024, 1, 1))
        periods = budget_periods(template, date(2024, 1, 10), date(2024, 1, 16))
        self.assertEqual([(p.start, p.end) for p in periods], [
            (date(2024, 1, 8), date(2024, 1, 15)),
            (date(2024, 1, 15), date(2024, 1, 22)),
        ])

    def test_last_period_before_end_date(self):
        template = budget_template(end_date=date(2024, 2, 1))
        periods = budget_periods(template, date(2024, 2, 5), date(2024, 2, 20))
        self.assertEqual([(p.start, p.end) for p in periods], [(date(2024, 2, 1), date(2024, 3, 1))])

    def test_overrides_apply(self):
        store = InMemoryStore()
        store.upsert_override(Override("food", date(2024, 2, 1), amount=450.0))
        store.upsert_override(Override("food", date(2024, 3, 1), status=OverrideStatus.SKIPPED))

        periods = budget_periods(budget_template(), date(2024, 2, 1), date(2024, 4, 30), override_store=store)

        self.assertEqual([p.start for p in periods], [date(2024, 2, 1), date(2024, 4, 1)])
        self.assertEqual(periods[0].amount, 450.0)

    def test_period_for_date(self):
        period = period_for_date(budget_template(), date(2024, 2, 15))
        self.assertEqual((period.start, period.end), (date(2024, 2, 1), date(2024, 3, 1)))

    def test_period_for_date_before_first(self):
        self.assertIsNone(period_for_date(budget_template(first=date(2024, 6, 1)), date(2024, 2, 15)))

    def test_inactive_budget(self):
        template = budget_template(is_active=False)
        self.assertEqual(budget_periods(template, date(2024, 1, 1), date(2024, 12, 31)), [])


class TestImplicitSpend(unittest.TestCase):
    """Accrual of implicit spend inside a period."""

    def make_period(self, mode):
        return BudgetPeriod("food", date(2024, 2, 1), date(2024, 3, 1), 290.0, mode)

    def test_daily_accrues_linearly(self):
        period = self.make_period(ImplicitSpendMode.DAILY)
        self.assertEqual(period.implicit_spend(date(2024, 1, 31)), 0.0)
        self.assertAlmostEqual(period.implicit_spend(date(2024, 2, 1)), 10.0)
        self.assertAlmostEqual(period.implicit_spend(date(2024, 2, 10)), 100.0)
        self.assertAlmostEqual(period.implicit_spend(date(2024, 3, 20)), 290.0)

    def test_daily_excludes_planned_spend(self):
        period = self.make_period(ImplicitSpendMode.DAILY)
        self.assertAlmostEqual(period.implicit_spend(date(2024, 2, 29), planned_spend=90.0), 200.0)

    def test_end_of_period(self):
        period = self.make_period(ImplicitSpendMode.END_OF_PERIOD)
        self.assertEqual(period.implicit_spend(date(2024, 2, 28)), 0.0)
        self.assertEqual(period.implicit_spend(date(2024, 2, 29)), 290.0)

    def test_none_mode(self):
        period = self.make_period(ImplicitSpendMode.NONE)
        self.assertEqual(period.implicit_spend(date(2024, 2, 29)), 0.0)

    def test_planned_spend_exhausts_capacity(self):
        period = self.make_period(ImplicitSpendMode.DAILY)
        self.assertEqual(period.implicit_spend(date(2024, 2, 29), planned_spend=400.0), 0.0)

    def test_daily_schedule(self):
        period = self.make_period(ImplicitSpendMode.DAILY)
        schedule = period.implicit_spend_schedule()
        self.assertEqual(len(schedule), 29)
        self.assertEqual(schedule[0], (date(2024, 2, 1), -10.0))
        self.assertAlmostEqual(sum(amount for _, amount in schedule), -290.0)

    def test_daily_schedule_clipped_to_window(self):
        period = self.make_period(ImplicitSpendMode.DAILY)
        schedule = period.implicit_spend_schedule(window_start=date(2024, 2, 20), window_end=date(2024, 3, 31))
        self.assertEqual(len(schedule), 10)
        self.assertEqual(schedule[0][0], date(2024, 2, 20))
        self.assertAlmostEqual(sum(amount for _, amount in schedule), -290.0)

    def test_end_of_period_schedule(self):
        period = self.make_period(ImplicitSpendMode.END_OF_PERIOD)
        self.assertEqual(period.implicit_spend_schedule(planned_spend=-40.0), [(date(2024, 2, 29), -250.0)])
        self.assertEqual(period.implicit_spend_schedule(window_end=date(2024, 2, 28)), [])


class TestBudgetStatus(unittest.TestCase):
    """Status bands."""

    def test_bands(self):
        self.assertEqual(calculate_budget_status(45.0, 100.0), ("UNDER_BUDGET", 45.0, 55.0))
        self.assertEqual(calculate_budget_status(50.0, 100.0)[0], "ON_TRACK")
        self.assertEqual(calculate_budget_status(79.99, 100.0)[0], "ON_TRACK")
        self.assertEqual(calculate_budget_status(80.0, 100.0)[0], "WARNING")
        self.assertEqual(calculate_budget_status(100.0, 100.0), ("EXCEEDED", 100.0, 0.0))
        self.assertEqual(calculate_budget_status(150.0, 100.0)[2], -50.0)

    def test_zero_budget(self):
        self.assertEqual(calculate_budget_status(0.0, 0.0)[0], "UNDER_BUDGET")
        self.assertEqual(calculate_budget_status(10.0, 0.0)[0], "EXCEEDED")

    def test_custom_bands(self):
        config = {"bands": [{"max": 90, "status": "FINE"}], "exceeded_status": "OVER"}
        self.assertEqual(calculate_budget_status(85.0, 100.0, config)[0], "FINE")
        self.assertEqual(calculate_budget_status(95.0, 100.0, config)[0], "OVER")


if __name__ == "__main__":
    unittest.main()
