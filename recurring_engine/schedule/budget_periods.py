"""
Budget periods derived from BUDGET templates.

A budget template's occurrences are period starts; each period runs until the
next expected date (exclusive). Implicit spend models the unplanned part of a
budget's capacity being consumed over the period.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from ..config.engine_config import BUDGET_STATUS_CONFIG
from ..utils.dates import DateLike, add_months, add_years, to_local_date
from .expander import DAY_STEPS, expand, next_occurrence, period_end_date
from .models import ImplicitSpendMode, PeriodKind, RecurrenceTemplate

logger = logging.getLogger(__name__)


@dataclass
class BudgetPeriod:
    """One concrete budget period."""
    template_id: str
    start: date
    end: date  # exclusive
    amount: float
    implicit_spend_mode: ImplicitSpendMode = ImplicitSpendMode.NONE

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def contains(self, d: date) -> bool:
        return self.start <= d < self.end

    def implicit_spend(self, as_of: date, planned_spend: float = 0.0) -> float:
        """
        Implicit spend accrued by as_of.

        Args:
            as_of: Evaluation date
            planned_spend: Spend already covered by planned transactions in
                this period; only the remaining capacity accrues

        Returns:
            Accrued implicit spend (non-negative)
        """
        capacity = max(0.0, abs(self.amount) - abs(planned_spend))
        if capacity == 0 or self.implicit_spend_mode == ImplicitSpendMode.NONE:
            return 0.0

        if self.implicit_spend_mode == ImplicitSpendMode.END_OF_PERIOD:
            return capacity if as_of >= self.end - timedelta(days=1) else 0.0

        # DAILY: linear over elapsed days, today included
        if as_of < self.start or self.days <= 0:
            return 0.0
        elapsed = min(self.days, (as_of - self.start).days + 1)
        return capacity * elapsed / self.days

    def implicit_spend_schedule(
        self,
        planned_spend: float = 0.0,
        window_start: Optional[date] = None,
        window_end: Optional[date] = None,
    ) -> List[Tuple[date, float]]:
        """
        Dated implicit spend entries for a forecast window.

        DAILY spreads the remaining capacity evenly over the period days that
        fall in the window; END_OF_PERIOD books it on the period's last day.
        Amounts are negative (outflows).
        """
        capacity = max(0.0, abs(self.amount) - abs(planned_spend))
        if capacity == 0 or self.implicit_spend_mode == ImplicitSpendMode.NONE:
            return []

        lo = max(self.start, window_start) if window_start else self.start
        hi = min(self.end, window_end + timedelta(days=1)) if window_end else self.end

        if self.implicit_spend_mode == ImplicitSpendMode.END_OF_PERIOD:
            last_day = self.end - timedelta(days=1)
            if lo <= last_day < hi:
                return [(last_day, -capacity)]
            return []

        days = (hi - lo).days
        if days <= 0:
            return []
        daily = capacity / days
        return [(lo + timedelta(days=i), -daily) for i in range(days)]


def _lookback_start(template: RecurrenceTemplate, start: date) -> date:
    """A date at least one full period before start."""
    kind = template.period_kind
    if kind in DAY_STEPS:
        return start - timedelta(days=template.interval * DAY_STEPS[kind])
    if kind == PeriodKind.MONTHLY:
        # Extra week covers day rules resolving before the anchor day
        return add_months(start, -template.interval) - timedelta(days=7)
    return add_years(start, -template.interval) - timedelta(days=7)


def _period_end(template: RecurrenceTemplate, period_start: date) -> date:
    following = next_occurrence(template, period_start)
    if following is not None:
        return following
    return period_end_date(period_start, template.period_kind, template.interval)


def budget_periods(
    template: RecurrenceTemplate,
    range_start: DateLike,
    range_end: DateLike,
    override_store=None,
    timezone: Optional[str] = None,
) -> List[BudgetPeriod]:
    """
    Budget periods overlapping [range_start, range_end].

    Args:
        template: BUDGET template
        range_start: Window start (inclusive)
        range_end: Window end (inclusive)
        override_store: Optional store; overridden amounts apply and skipped
            periods are omitted
        timezone: Owner's timezone for datetime bounds

    Returns:
        Periods in ascending start order
    """
    if not template.is_active:
        return []

    tz = timezone or template.timezone
    start = to_local_date(range_start, tz)
    end = to_local_date(range_end, tz)

    overrides: Dict = {}
    if override_store is not None:
        overrides = override_store.overrides_by_date(template.id)

    periods = []
    for period_start in expand(template, _lookback_start(template, start), end):
        period_end = _period_end(template, period_start)
        if period_end <= start:
            continue

        amount = template.amount
        override = overrides.get(period_start)
        if override is not None:
            if override.is_skipped:
                continue
            if override.amount is not None:
                amount = override.amount

        periods.append(BudgetPeriod(
            template_id=template.id,
            start=period_start,
            end=period_end,
            amount=amount,
            implicit_spend_mode=template.implicit_spend_mode,
        ))

    logger.debug("Template %s: %d budget periods in window", template.id, len(periods))
    return periods


def period_for_date(
    template: RecurrenceTemplate,
    d: DateLike,
    override_store=None,
) -> Optional[BudgetPeriod]:
    """Return the budget period containing d, or None."""
    target = to_local_date(d, template.timezone)
    for period in budget_periods(template, target, target, override_store):
        if period.contains(target):
            return period
    return None


def calculate_budget_status(
    spent: float,
    budget_amount: float,
    config: Optional[Dict] = None,
) -> Tuple[str, float, float]:
    """
    Classify budget consumption.

    Args:
        spent: Amount spent in the period (positive)
        budget_amount: Budgeted amount (positive)
        config: Optional status config (defaults to BUDGET_STATUS_CONFIG)

    Returns:
        Tuple of (status, percentage, remaining)

    Example:
        >>> calculate_budget_status(45.0, 100.0)
        ('UNDER_BUDGET', 45.0, 55.0)
    """
    cfg = config or BUDGET_STATUS_CONFIG
    remaining = budget_amount - spent

    if budget_amount == 0:
        percentage = 0.0 if spent == 0 else 100.0
    else:
        percentage = (spent / budget_amount) * 100

    for band in cfg["bands"]:
        if percentage < band["max"]:
            return band["status"], percentage, remaining

    return cfg["exceeded_status"], percentage, remaining
