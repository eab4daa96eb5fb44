"""
Template lifecycle and edit scopes.

Edits made from a single occurrence take a scope:
- THIS_ONLY writes an override for that occurrence
- THIS_AND_FUTURE forks the template at the occurrence date
- ALL edits the template in place
"""

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from ..errors import (
    CascadeConfirmationRequired,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from ..utils.dates import DateLike
from .expander import MONTH_BASED, expand, validate_match_policy, validate_template
from .materializer import OccurrenceMaterializer
from .models import (
    DayOfMonthRule,
    EditScope,
    Occurrence,
    OccurrenceRef,
    Override,
    OverrideStatus,
    RecurrenceTemplate,
)

logger = logging.getLogger(__name__)


# Fields an override may replace on one occurrence
OCCURRENCE_FIELDS = {"amount", "expected_date", "category_id", "account_id", "name", "match_policy"}

# Fields a scoped edit may change on the template itself
TEMPLATE_FIELDS = {
    "name", "amount", "account_id", "category_id", "period_kind", "interval",
    "end_date", "day_rule", "is_active", "match_policy", "implicit_spend_mode",
    "description", "notes",
}


def _new_id() -> str:
    return str(uuid.uuid4())


class TemplateService:
    """
    Store-backed template operations.

    Args:
        store: EngineStore implementation
        id_factory: Callable producing ids for forked templates
    """

    def __init__(self, store, id_factory: Optional[Callable[[], str]] = None):
        self.store = store
        self.materializer = OccurrenceMaterializer(store)
        self.id_factory = id_factory or _new_id

    def create_template(self, template: RecurrenceTemplate) -> RecurrenceTemplate:
        """Validate and persist a new template."""
        validate_template(template)
        self.store.add_template(template)
        logger.info(
            "Created %s template %s (%s every %d)",
            template.kind.value, template.id, template.period_kind.value, template.interval,
        )
        return template

    def get_template(self, template_id: str) -> RecurrenceTemplate:
        template = self.store.get_template(template_id)
        if template is None:
            raise NotFoundError(f"Template not found: {template_id}")
        return template

    def occurrences(self, template_id: str, range_start: DateLike, range_end: DateLike) -> List[Occurrence]:
        """Effective occurrences of a stored template."""
        template = self.get_template(template_id)
        timezone = template.timezone or self.store.get_user_timezone(template.owner_id)
        return self.materializer.effective_occurrences(template, range_start, range_end, timezone)

    def _require_occurrence(self, template: RecurrenceTemplate, occurrence_date: date) -> None:
        if occurrence_date not in expand(template, occurrence_date, occurrence_date):
            raise NotFoundError(
                f"Template {template.id} has no occurrence on {occurrence_date.isoformat()}"
            )

    def edit_occurrence(
        self,
        template_id: str,
        occurrence_date: date,
        changes: Dict,
        scope: EditScope,
    ) -> Union[Override, RecurrenceTemplate]:
        """
        Edit an occurrence with the given scope.

        Args:
            template_id: Template being edited
            occurrence_date: Original expected date of the occurrence
            changes: Field name -> new value
            scope: EditScope

        Returns:
            The written Override (THIS_ONLY), the new forked template
            (THIS_AND_FUTURE) or the updated template (ALL)

        Raises:
            NotFoundError: template or occurrence missing
            ValidationError: unknown fields or an invalid result
        """
        template = self.get_template(template_id)
        self._require_occurrence(template, occurrence_date)

        if scope == EditScope.THIS_ONLY:
            return self._edit_this_only(template, occurrence_date, changes)
        if scope == EditScope.THIS_AND_FUTURE:
            return self._edit_this_and_future(template, occurrence_date, changes)
        if scope == EditScope.ALL:
            return self._edit_all(template, changes)

        raise ValidationError(f"Invalid edit scope: {scope!r}")

    def _edit_this_only(self, template: RecurrenceTemplate, occurrence_date: date, changes: Dict) -> Override:
        unknown = set(changes) - OCCURRENCE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot override fields on one occurrence: {sorted(unknown)}")
        if changes.get("match_policy") is not None:
            validate_match_policy(changes["match_policy"])

        existing = self.store.get_override(template.id, occurrence_date)
        if existing is None:
            override = Override(template_id=template.id, original_date=occurrence_date, **changes)
        else:
            status = existing.status
            if status == OverrideStatus.SKIPPED:
                status = OverrideStatus.CUSTOMIZED
            override = replace(existing, status=status, **changes)

        self.store.upsert_override(override)
        logger.info("Customized occurrence %s@%s", template.id, occurrence_date.isoformat())
        return override

    def _template_changes(self, changes: Dict) -> Dict:
        unknown = set(changes) - TEMPLATE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot change template fields: {sorted(unknown)}")
        return dict(changes)

    def _edit_all(self, template: RecurrenceTemplate, changes: Dict) -> RecurrenceTemplate:
        updated = template.with_changes(**self._template_changes(changes))
        validate_template(updated)
        self.store.update_template(updated)
        logger.info("Edited template %s in place", template.id)
        return updated

    def _edit_this_and_future(
        self,
        template: RecurrenceTemplate,
        cut: date,
        changes: Dict,
    ) -> RecurrenceTemplate:
        template_changes = self._template_changes(changes)

        if cut == template.first_occurrence:
            return self._edit_all(template, template_changes)

        fields = dict(template_changes)
        period_kind = fields.get("period_kind", template.period_kind)
        # The fork must keep the original day when no rule was set explicitly
        if "day_rule" not in fields and template.day_rule is None and period_kind in MONTH_BASED:
            fields["day_rule"] = DayOfMonthRule.fixed(template.first_occurrence.day)

        forked = template.with_changes(
            id=self.id_factory(),
            first_occurrence=cut,
            created_at=datetime.now(),
            **fields,
        )
        truncated = template.with_changes(end_date=cut - timedelta(days=1))

        validate_template(forked)
        validate_template(truncated)

        self.store.update_template(truncated)
        self.store.add_template(forked)
        moved_overrides, moved_matches = self._move_future_state(template.id, forked.id, cut)

        logger.info(
            "Forked template %s at %s into %s (%d overrides, %d matches moved)",
            template.id, cut.isoformat(), forked.id, moved_overrides, moved_matches,
        )
        return forked

    def _move_future_state(self, old_id: str, new_id: str, cut: date):
        """Re-key overrides and match records dated on/after cut to the forked template."""
        moved_overrides = 0
        for override in self.store.list_overrides(old_id):
            if override.original_date >= cut:
                self.store.delete_override(old_id, override.original_date)
                self.store.upsert_override(replace(override, template_id=new_id))
                moved_overrides += 1

        moved_matches = 0
        for record in self.store.list_matches(old_id):
            ref = record.occurrence_ref
            if ref.expected_date >= cut:
                self.store.replace_match(replace(record, occurrence_ref=OccurrenceRef(new_id, ref.expected_date)))
                moved_matches += 1

        # Pending candidates still point at the old template; the next run proposes the fork
        self.store.withdraw_pending_candidates(
            lambda ref: ref.template_id == old_id and ref.expected_date >= cut
        )

        return moved_overrides, moved_matches

    def _match_for_occurrence(self, template_id: str, occurrence_date: date):
        for record in self.store.list_matches(template_id):
            if record.occurrence_ref.expected_date == occurrence_date:
                return record
        return None

    def skip_occurrence(self, template_id: str, occurrence_date: date) -> Override:
        """
        Skip one occurrence.

        Raises:
            ConflictError: when a transaction is matched to that occurrence
        """
        template = self.get_template(template_id)
        self._require_occurrence(template, occurrence_date)

        if self._match_for_occurrence(template_id, occurrence_date) is not None:
            raise ConflictError(
                f"Occurrence {template_id}@{occurrence_date.isoformat()} is matched; unmatch it first"
            )

        override = Override(
            template_id=template_id,
            original_date=occurrence_date,
            status=OverrideStatus.SKIPPED,
        )
        self.store.upsert_override(override)
        skipped_key = OccurrenceRef(template_id, occurrence_date).key
        self.store.withdraw_pending_candidates(lambda ref: ref.key == skipped_key)
        logger.info("Skipped occurrence %s@%s", template_id, occurrence_date.isoformat())
        return override

    def materialize_occurrence(self, template_id: str, occurrence_date: date, transaction_id: str) -> Override:
        """Mark an occurrence as realised by a stored transaction; matching ignores it afterwards."""
        template = self.get_template(template_id)
        self._require_occurrence(template, occurrence_date)

        existing = self.store.get_override(template_id, occurrence_date)
        if existing is not None and existing.is_skipped:
            raise ConflictError(f"Occurrence {template_id}@{occurrence_date.isoformat()} is skipped")

        base = existing or Override(template_id=template_id, original_date=occurrence_date)
        override = replace(
            base,
            status=OverrideStatus.MATERIALIZED,
            materialized_transaction_id=transaction_id,
        )
        self.store.upsert_override(override)
        logger.info(
            "Materialized occurrence %s@%s as transaction %s",
            template_id, occurrence_date.isoformat(), transaction_id,
        )
        return override

    def revert_occurrence(self, template_id: str, occurrence_date: date) -> None:
        """Delete the override so the occurrence is virtual again."""
        self.get_template(template_id)
        if not self.store.delete_override(template_id, occurrence_date):
            raise NotFoundError(
                f"No override for {template_id}@{occurrence_date.isoformat()}"
            )
        logger.info("Reverted occurrence %s@%s", template_id, occurrence_date.isoformat())

    def delete_template(self, template_id: str, confirm_cascade: bool = False) -> Dict[str, int]:
        """
        Delete a template with its overrides.

        Args:
            template_id: Template to delete
            confirm_cascade: Must be True when the template has matched
                occurrences; their match records are deleted too

        Returns:
            Dict with overrides_deleted and matches_deleted counts

        Raises:
            CascadeConfirmationRequired: matched data exists and the cascade
                was not confirmed
        """
        self.get_template(template_id)

        matches = self.store.list_matches(template_id)
        overrides = self.store.list_overrides(template_id)
        matched_dates = {m.occurrence_ref.expected_date for m in matches}
        tied_overrides = [
            o for o in overrides
            if o.is_materialized or o.original_date in matched_dates
        ]

        if (matches or tied_overrides) and not confirm_cascade:
            raise CascadeConfirmationRequired(
                f"Template {template_id} has {len(matches)} matched occurrences; "
                "confirm the cascade to delete them",
                override_count=len(tied_overrides),
                match_count=len(matches),
            )

        matches_deleted = self.store.delete_matches_for_template(template_id) if matches else 0
        overrides_deleted = self.store.delete_overrides(template_id)
        self.store.delete_template(template_id)
        self.store.withdraw_pending_candidates(lambda ref: ref.template_id == template_id)

        logger.info(
            "Deleted template %s (%d overrides, %d matches)",
            template_id, overrides_deleted, matches_deleted,
        )
        return {"overrides_deleted": overrides_deleted, "matches_deleted": matches_deleted}
