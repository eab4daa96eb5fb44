"""
Schedule Expander for recurring templates.

Turns a template and a date window into the ordered list of expected dates,
without touching any store. Every step is computed from the template's anchor
(first occurrence) rather than from the previous date, so month-end clamping
never drifts (31 Jan -> 29 Feb -> 31 Mar).
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterator, List, Optional

from ..config.engine_config import SCHEDULE_CONFIG
from ..errors import ValidationError
from ..utils.dates import (
    DateLike,
    add_months,
    add_years,
    clamp_day,
    first_of_weekday_in_month,
    first_weekday_of_month,
    last_day_of_month,
    last_of_weekday_in_month,
    last_weekday_of_month,
    months_between,
    to_local_date,
)
from .models import DayOfMonthRule, DayOfMonthType, MatchPolicy, PeriodKind, RecurrenceTemplate

logger = logging.getLogger(__name__)


# Fixed-length period kinds, in days per interval unit
DAY_STEPS = {
    PeriodKind.DAILY: 1,
    PeriodKind.WEEKLY: 7,
    PeriodKind.FORTNIGHTLY: 14,
}

MONTH_BASED = (PeriodKind.MONTHLY, PeriodKind.ANNUALLY)


def validate_template(template: RecurrenceTemplate, config: Optional[Dict] = None) -> None:
    """
    Reject malformed templates at creation time.

    The expander assumes every template it sees has passed this check.

    Args:
        template: Template to validate
        config: Optional schedule config (defaults to SCHEDULE_CONFIG)

    Raises:
        ValidationError: describing the first problem found
    """
    cfg = config or SCHEDULE_CONFIG

    if not isinstance(template.period_kind, PeriodKind):
        raise ValidationError(f"Unknown period kind: {template.period_kind!r}")

    if not isinstance(template.interval, int) or template.interval < 1:
        raise ValidationError("Interval must be at least 1")

    max_interval = cfg["max_interval"][template.period_kind.value]
    if template.interval > max_interval:
        raise ValidationError(
            f"{template.period_kind.value} interval cannot exceed {max_interval}"
        )

    if template.end_date is not None and template.end_date < template.first_occurrence:
        raise ValidationError("End date cannot be before the first occurrence")

    _validate_day_rule(template.day_rule, template.period_kind)
    validate_match_policy(template.match_policy)


def _validate_day_rule(rule: Optional[DayOfMonthRule], period_kind: PeriodKind) -> None:
    if rule is None:
        return

    if period_kind not in MONTH_BASED:
        raise ValidationError(
            f"Day-of-month rule {rule.type.value} is not valid for {period_kind.value} templates"
        )

    if rule.type == DayOfMonthType.FIXED:
        if rule.day is None or not 1 <= rule.day <= 31:
            raise ValidationError("FIXED day-of-month rule needs a day between 1 and 31")
    elif rule.type in (DayOfMonthType.FIRST_OF_WEEK, DayOfMonthType.LAST_OF_WEEK):
        if rule.weekday is None or not 0 <= rule.weekday <= 6:
            raise ValidationError(f"{rule.type.value} rule needs a weekday between 0 and 6")


def validate_match_policy(policy: MatchPolicy) -> None:
    """Reject negative windows and tolerances."""
    if policy.match_window_days < 0:
        raise ValidationError("Match window cannot be negative")
    if policy.amount_tolerance is not None and policy.amount_tolerance < 0:
        raise ValidationError("Amount tolerance cannot be negative")


def resolve_day(anchor: date, rule: Optional[DayOfMonthRule], default_day: int) -> date:
    """
    Resolve a day-of-month rule against the month containing anchor.

    Args:
        anchor: Any date in the computed month
        rule: Day-of-month rule (None = FIXED(default_day))
        default_day: Day used when no rule is set (the first occurrence's day)

    Returns:
        Resolved date within anchor's month
    """
    y, m = anchor.year, anchor.month

    if rule is None:
        return clamp_day(y, m, default_day)
    if rule.type == DayOfMonthType.FIXED:
        return clamp_day(y, m, rule.day)
    if rule.type == DayOfMonthType.LAST_DAY:
        return last_day_of_month(y, m)
    if rule.type == DayOfMonthType.FIRST_WEEKDAY:
        return first_weekday_of_month(y, m)
    if rule.type == DayOfMonthType.LAST_WEEKDAY:
        return last_weekday_of_month(y, m)
    if rule.type == DayOfMonthType.FIRST_OF_WEEK:
        return first_of_weekday_in_month(y, m, rule.weekday)
    if rule.type == DayOfMonthType.LAST_OF_WEEK:
        return last_of_weekday_in_month(y, m, rule.weekday)

    raise ValidationError(f"Unknown day-of-month type: {rule.type!r}")


def occurrence_at(template: RecurrenceTemplate, index: int) -> date:
    """Return the expected date of the index-th step from the anchor."""
    start = template.first_occurrence
    kind = template.period_kind

    if kind in DAY_STEPS:
        return start + timedelta(days=index * template.interval * DAY_STEPS[kind])

    if kind == PeriodKind.MONTHLY:
        anchor = add_months(start, index * template.interval)
    else:
        anchor = add_years(start, index * template.interval)

    return resolve_day(anchor, template.day_rule, start.day)


def _first_index_near(template: RecurrenceTemplate, range_start: date) -> int:
    """Index of a step at or just before range_start, so we skip whole periods."""
    start = template.first_occurrence
    if range_start <= start:
        return 0

    kind = template.period_kind
    if kind in DAY_STEPS:
        step_days = template.interval * DAY_STEPS[kind]
        index = (range_start - start).days // step_days
    elif kind == PeriodKind.MONTHLY:
        index = months_between(start, range_start) // template.interval
    else:
        index = (range_start.year - start.year) // template.interval

    # One step back covers rules that resolve earlier in the month than the anchor
    return max(0, index - 1)


def iter_expected_dates(
    template: RecurrenceTemplate,
    from_date: Optional[date] = None,
    max_iterations: Optional[int] = None,
) -> Iterator[date]:
    """
    Yield expected dates in ascending order, starting at or after from_date.

    Stops at the template's end date or after max_iterations steps.
    """
    cap = max_iterations or SCHEDULE_CONFIG["max_iterations"]
    lower = max(template.first_occurrence, from_date or template.first_occurrence)
    index = _first_index_near(template, lower)
    previous = None

    for _ in range(cap):
        current = occurrence_at(template, index)
        index += 1

        if template.end_date is not None and current > template.end_date:
            return
        if current < lower:
            continue
        if previous is not None and current <= previous:
            continue

        previous = current
        yield current

    logger.warning(
        "Expansion of template %s stopped at iteration cap (%d)", template.id, cap
    )


def expand(
    template: RecurrenceTemplate,
    range_start: DateLike,
    range_end: DateLike,
    timezone: Optional[str] = None,
    max_iterations: Optional[int] = None,
) -> List[date]:
    """
    Expand a template into the expected dates inside [range_start, range_end].

    Pure and restartable: the same arguments always give the same list.

    Args:
        template: A validated recurrence template
        range_start: Start of the window (inclusive); datetimes are converted
            to the owner's local date
        range_end: End of the window (inclusive)
        timezone: Owner's IANA timezone (defaults to template.timezone)
        max_iterations: Override for the iteration cap

    Returns:
        Ascending list of expected dates

    Example:
        >>> t = RecurrenceTemplate(id="rent", owner_id="u1", name="Rent",
        ...     period_kind=PeriodKind.MONTHLY, first_occurrence=date(2024, 1, 31),
        ...     amount=-1500.0, day_rule=DayOfMonthRule.last_day())
        >>> expand(t, date(2024, 1, 1), date(2024, 3, 31))
        [datetime.date(2024, 1, 31), datetime.date(2024, 2, 29), datetime.date(2024, 3, 31)]
    """
    tz = timezone or template.timezone
    start = to_local_date(range_start, tz)
    end = to_local_date(range_end, tz)

    if end < start or end < template.first_occurrence:
        return []
    if template.end_date is not None and start > template.end_date:
        return []

    dates = []
    for expected in iter_expected_dates(template, start, max_iterations):
        if expected > end:
            break
        dates.append(expected)

    logger.debug(
        "Expanded template %s over %s..%s into %d dates", template.id, start, end, len(dates)
    )
    return dates


def next_occurrence(template: RecurrenceTemplate, after: date) -> Optional[date]:
    """Return the first expected date strictly after `after`, or None."""
    for expected in iter_expected_dates(template, after + timedelta(days=1)):
        return expected
    return None


def future_occurrences(template: RecurrenceTemplate, count: int, from_date: date) -> List[date]:
    """Return up to `count` expected dates on or after from_date, within the lookahead."""
    horizon = add_years(from_date, SCHEDULE_CONFIG["lookahead_years"])
    result = []
    for expected in iter_expected_dates(template, from_date):
        if expected > horizon or len(result) >= count:
            break
        result.append(expected)
    return result


def period_end_date(start: date, period_kind: PeriodKind, interval: int) -> date:
    """
    Exclusive end of the period beginning at start.

    Monthly periods keep start's day where the target month allows it.
    """
    if period_kind in DAY_STEPS:
        return start + timedelta(days=interval * DAY_STEPS[period_kind])
    if period_kind == PeriodKind.MONTHLY:
        return add_months(start, interval)
    return add_years(start, interval)
