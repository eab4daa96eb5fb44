"""
Occurrence Materializer.

Combines the expander's virtual dates with the sparse override table to
produce the effective occurrences of a template in a window. Nothing is
written: the same inputs always give the same output.
"""

import logging
from datetime import date
from typing import Iterable, List, Optional

from ..utils.dates import DateLike, to_local_date
from .expander import expand
from .models import (
    Occurrence,
    OccurrenceRef,
    Override,
    PlannedTransaction,
    RecurrenceTemplate,
)

logger = logging.getLogger(__name__)


def occurrence_from_template(template: RecurrenceTemplate, expected_date: date) -> Occurrence:
    """Synthesize a virtual occurrence inheriting every field from the template."""
    return Occurrence(
        ref=OccurrenceRef(template.id, expected_date),
        expected_date=expected_date,
        amount=template.amount,
        name=template.name,
        account_id=template.account_id,
        category_id=template.category_id,
        match_policy=template.match_policy,
        owner_id=template.owner_id,
        origin_created_at=template.created_at,
    )


def apply_override(template: RecurrenceTemplate, override: Override) -> Occurrence:
    """Resolve an occurrence from its override, falling back to template fields."""
    def pick(value, default):
        return default if value is None else value

    return Occurrence(
        ref=OccurrenceRef(template.id, override.original_date),
        expected_date=pick(override.expected_date, override.original_date),
        amount=pick(override.amount, template.amount),
        name=pick(override.name, template.name),
        account_id=pick(override.account_id, template.account_id),
        category_id=pick(override.category_id, template.category_id),
        match_policy=pick(override.match_policy, template.match_policy),
        owner_id=template.owner_id,
        is_override=True,
        is_materialized=override.is_materialized,
        materialized_transaction_id=override.materialized_transaction_id,
        origin_created_at=template.created_at,
    )


def occurrence_from_planned(planned: PlannedTransaction) -> Occurrence:
    """Wrap a standalone planned transaction as an occurrence."""
    return Occurrence(
        ref=OccurrenceRef(None, planned.expected_date, planned_id=planned.id),
        expected_date=planned.expected_date,
        amount=planned.amount,
        name=planned.name,
        account_id=planned.account_id,
        category_id=planned.category_id,
        match_policy=planned.match_policy,
        owner_id=planned.owner_id,
        origin_created_at=planned.created_at,
    )


class OccurrenceMaterializer:
    """
    Produces effective occurrences for templates.

    Args:
        override_store: Any object exposing overrides_by_date(template_id)
            (an EngineStore)
    """

    def __init__(self, override_store):
        self.override_store = override_store

    def effective_occurrences(
        self,
        template: RecurrenceTemplate,
        range_start: DateLike,
        range_end: DateLike,
        timezone: Optional[str] = None,
    ) -> List[Occurrence]:
        """
        Effective occurrences of one template inside [range_start, range_end].

        Skipped overrides are omitted; other overrides replace the virtual
        occurrence at their original date. Materialized occurrences are kept
        (flagged) so callers can show them, but matching ignores them.

        Args:
            template: Template to materialize
            range_start: Window start (inclusive)
            range_end: Window end (inclusive)
            timezone: Owner's timezone for datetime bounds

        Returns:
            Occurrences sorted by effective date (stable on original date)
        """
        if not template.is_active:
            return []

        dates = expand(template, range_start, range_end, timezone)
        if not dates:
            return []

        overrides = self.override_store.overrides_by_date(template.id)
        occurrences = []
        skipped = 0

        for expected_date in dates:
            override = overrides.get(expected_date)
            if override is None:
                occurrences.append(occurrence_from_template(template, expected_date))
            elif override.is_skipped:
                skipped += 1
            else:
                occurrences.append(apply_override(template, override))

        occurrences.sort(key=lambda o: o.expected_date)
        logger.debug(
            "Template %s: %d occurrences (%d skipped) in window",
            template.id, len(occurrences), skipped,
        )
        return occurrences

    def occurrences_for_templates(
        self,
        templates: Iterable[RecurrenceTemplate],
        range_start: DateLike,
        range_end: DateLike,
        planned: Iterable[PlannedTransaction] = (),
        timezone: Optional[str] = None,
    ) -> List[Occurrence]:
        """Merge the effective occurrences of many templates and planned transactions."""
        result = []
        for template in templates:
            result.extend(self.effective_occurrences(template, range_start, range_end, timezone))

        start = to_local_date(range_start, timezone)
        end = to_local_date(range_end, timezone)
        for item in planned:
            if start <= item.expected_date <= end:
                result.append(occurrence_from_planned(item))

        result.sort(key=lambda o: o.expected_date)
        return result
