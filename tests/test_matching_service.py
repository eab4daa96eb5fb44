"""
Tests for the store-backed match state machine.
"""

import unittest
from datetime import date, datetime, timedelta

from recurring_engine.errors import ConflictError, NotFoundError, ValidationError
from recurring_engine.matching.matching_engine import MatchStatus
from recurring_engine.matching.matching_service import MatchingService
from recurring_engine.models import MatchMethod, MatchRecord, Transaction, TransactionMatchState
from recurring_engine.schedule.models import (
    MatchPolicy,
    OccurrenceRef,
    Override,
    OverrideStatus,
    PeriodKind,
    PlannedTransaction,
    RecurrenceTemplate,
    TemplateKind,
)
from recurring_engine.schedule.template_service import TemplateService
from recurring_engine.store.memory_store import InMemoryStore


class MatchingServiceTestCase(unittest.TestCase):
    """Shared fixtures."""

    def setUp(self):
        """Set up test fixtures."""
        self.store = InMemoryStore()
        self.service = MatchingService(self.store)
        self.store.add_template(RecurrenceTemplate(
            id="gym", owner_id="u1", name="Gym", period_kind=PeriodKind.MONTHLY,
            first_occurrence=date(2024, 1, 1), amount=-50.0, account_id="acc1",
            match_policy=MatchPolicy(amount_tolerance=10.0),
        ))

    def add_tx(self, tx_id, tx_date, amount=-50.0, description="GYM MEMBERSHIP", owner_id="u1"):
        transaction = Transaction(
            id=tx_id, owner_id=owner_id, account_id="acc1", date=tx_date,
            amount=amount, description=description,
        )
        self.store.add_transaction(transaction)
        return transaction


class TestAutoMatch(MatchingServiceTestCase):

    def test_auto_writes_record(self):
        self.add_tx("t1", date(2024, 3, 2))
        result = self.service.auto_match("t1")

        self.assertEqual(result.status, MatchStatus.AUTO)
        record = self.store.get_match("t1")
        self.assertEqual(record.method, MatchMethod.AUTO)
        self.assertEqual(record.occurrence_ref.key, "gym@2024-03-01")
        self.assertEqual(record.confidence, 96.57)
        self.assertEqual(self.service.match_state("t1"), TransactionMatchState.MATCHED)

    def test_already_matched_is_idempotent(self):
        self.add_tx("t1", date(2024, 3, 2))
        self.service.auto_match("t1")
        again = self.service.auto_match("t1")

        self.assertTrue(again.already_matched)
        self.assertEqual(len(self.store.list_matches()), 1)

    def test_occurrence_claimed_by_other_transaction(self):
        self.add_tx("t1", date(2024, 3, 1))
        self.add_tx("t2", date(2024, 3, 2))
        self.service.auto_match("t1")

        result = self.service.auto_match("t2")

        self.assertNotEqual(result.status, MatchStatus.AUTO)
        self.assertIsNone(self.store.get_match("t2"))

    def test_needs_review_stores_candidates(self):
        self.store.update_template(self.store.get_template("gym").with_changes(
            match_policy=MatchPolicy(amount_tolerance=10.0, auto_match_enabled=False)
        ))
        self.add_tx("t1", date(2024, 3, 2))

        result = self.service.auto_match("t1")

        self.assertEqual(result.status, MatchStatus.NEEDS_REVIEW)
        self.assertIsNone(self.store.get_match("t1"))
        self.assertEqual(self.service.match_state("t1"), TransactionMatchState.PENDING_REVIEW)
        self.assertEqual(self.service.pending_review("t1")[0].occurrence_ref.key, "gym@2024-03-01")

    def test_no_match(self):
        self.add_tx("t1", date(2024, 3, 15))
        result = self.service.auto_match("t1")
        self.assertEqual(result.status, MatchStatus.NO_MATCH)
        self.assertEqual(self.service.match_state("t1"), TransactionMatchState.UNMATCHED)

    def test_skipped_occurrence_not_matched(self):
        self.store.upsert_override(Override("gym", date(2024, 3, 1), status=OverrideStatus.SKIPPED))
        self.add_tx("t1", date(2024, 3, 2))
        self.assertEqual(self.service.auto_match("t1").status, MatchStatus.NO_MATCH)

    def test_budget_templates_not_candidates(self):
        self.store.add_template(RecurrenceTemplate(
            id="food", owner_id="u1", name="Gym", period_kind=PeriodKind.MONTHLY,
            first_occurrence=date(2024, 1, 1), amount=-50.0, kind=TemplateKind.BUDGET,
        ))
        self.add_tx("t1", date(2024, 3, 2))
        keys = [o.ref.key for o in self.service.candidate_occurrences(self.store.get_transaction("t1"))]
        self.assertIn("gym@2024-03-01", keys)
        self.assertNotIn("food@2024-03-01", keys)

    def test_planned_transaction_matched(self):
        self.store.add_planned(PlannedTransaction(
            id="p1", owner_id="u1", name="Car service", expected_date=date(2024, 5, 10),
            amount=-300.0, account_id="acc1", match_policy=MatchPolicy(amount_tolerance=20.0),
        ))
        self.add_tx("t1", date(2024, 5, 10), amount=-300.0, description="MAIN ST CAR SERVICE")

        result = self.service.auto_match("t1")

        self.assertEqual(result.status, MatchStatus.AUTO)
        self.assertEqual(self.store.get_match("t1").occurrence_ref.key, "planned:p1")

    def test_match_window_wider_than_lookup(self):
        self.store.add_template(RecurrenceTemplate(
            id="insurance", owner_id="u1", name="Insurance", period_kind=PeriodKind.ANNUALLY,
            first_occurrence=date(2023, 6, 1), amount=-600.0, account_id="acc1",
            match_policy=MatchPolicy(amount_tolerance=10.0, match_window_days=30),
        ))
        self.add_tx("t1", date(2024, 6, 27), amount=-600.0, description="HOME INSURANCE")

        keys = [o.ref.key for o in self.service.candidate_occurrences(self.store.get_transaction("t1"))]
        self.assertIn("insurance@2024-06-01", keys)

        result = self.service.evaluate("t1")
        self.assertEqual(result.status, MatchStatus.NEEDS_REVIEW)
        self.assertEqual(result.occurrence_ref.key, "insurance@2024-06-01")

    def test_planned_window_wider_than_lookup(self):
        self.store.add_planned(PlannedTransaction(
            id="p1", owner_id="u1", name="Tax refund", expected_date=date(2024, 4, 1),
            amount=320.0, account_id="acc1",
            match_policy=MatchPolicy(amount_tolerance=5.0, match_window_days=40),
        ))
        self.add_tx("t1", date(2024, 5, 6), amount=320.0, description="HMRC TAX REFUND")

        result = self.service.evaluate("t1")
        self.assertEqual(result.status, MatchStatus.NEEDS_REVIEW)
        self.assertEqual(result.occurrence_ref.key, "planned:p1")

    def test_unknown_transaction(self):
        with self.assertRaises(NotFoundError):
            self.service.auto_match("missing")


class TestReviewFlow(MatchingServiceTestCase):

    def setUp(self):
        super().setUp()
        self.store.update_template(self.store.get_template("gym").with_changes(
            match_policy=MatchPolicy(amount_tolerance=10.0, skip_review=True)
        ))
        self.add_tx("t1", date(2024, 3, 2))
        self.service.auto_match("t1")

    def test_confirm(self):
        record = self.service.confirm_review("t1")

        self.assertEqual(record.method, MatchMethod.AUTO_REVIEWED)
        self.assertEqual(self.store.get_match("t1").occurrence_ref.key, "gym@2024-03-01")
        self.assertEqual(self.service.pending_review("t1"), [])

    def test_confirm_unknown_candidate(self):
        with self.assertRaises(NotFoundError):
            self.service.confirm_review("t1", "gym@2024-04-01")

    def test_confirm_without_review(self):
        self.add_tx("t2", date(2024, 3, 20))
        with self.assertRaises(NotFoundError):
            self.service.confirm_review("t2")

    def test_dismiss_never_reproposed(self):
        self.service.dismiss("t1", "gym@2024-03-01")

        self.assertEqual(self.service.match_state("t1"), TransactionMatchState.UNMATCHED)
        self.assertEqual(self.service.auto_match("t1").status, MatchStatus.NO_MATCH)
        self.assertEqual(self.service.auto_match("t1").status, MatchStatus.NO_MATCH)


class TestStaleReviews(MatchingServiceTestCase):
    """Pending candidates whose occurrence changed after the review was stored."""

    def setUp(self):
        super().setUp()
        self.add_tx("a", date(2024, 3, 1), amount=-45.0)
        result = self.service.auto_match("a")
        self.assertEqual(result.status, MatchStatus.NEEDS_REVIEW)
        self.assertEqual(result.confidence, 70.0)

    def test_auto_match_elsewhere_withdraws_candidate(self):
        self.add_tx("b", date(2024, 3, 1))
        self.assertEqual(self.service.auto_match("b").status, MatchStatus.AUTO)

        self.assertEqual(self.service.pending_review("a"), [])
        self.assertEqual(self.service.match_state("a"), TransactionMatchState.UNMATCHED)
        with self.assertRaises(NotFoundError):
            self.service.confirm_review("a")
        self.assertEqual([m.transaction_id for m in self.store.list_matches()], ["b"])

    def test_confirm_claimed_occurrence_conflicts(self):
        self.store.insert_match_if_absent(MatchRecord(
            transaction_id="b",
            occurrence_ref=OccurrenceRef("gym", date(2024, 3, 1)),
            confidence=90.0,
            method=MatchMethod.MANUAL,
        ))

        with self.assertRaises(ConflictError):
            self.service.confirm_review("a")
        self.assertIsNone(self.store.get_match("a"))

    def test_skip_withdraws_candidate(self):
        TemplateService(self.store).skip_occurrence("gym", date(2024, 3, 1))

        self.assertEqual(self.service.pending_review("a"), [])
        with self.assertRaises(NotFoundError):
            self.service.confirm_review("a")

    def test_confirm_skipped_occurrence_rejected(self):
        self.store.upsert_override(Override("gym", date(2024, 3, 1), status=OverrideStatus.SKIPPED))

        with self.assertRaises(ValidationError):
            self.service.confirm_review("a")
        self.assertIsNone(self.store.get_match("a"))

    def test_delete_template_withdraws_candidate(self):
        TemplateService(self.store).delete_template("gym")

        self.assertEqual(self.service.pending_review("a"), [])

    def test_confirm_deleted_template_rejected(self):
        self.store.delete_template("gym")

        with self.assertRaises(NotFoundError):
            self.service.confirm_review("a")
        self.assertEqual(self.store.list_matches(), [])

    def test_manual_link_withdraws_candidate(self):
        self.add_tx("b", date(2024, 3, 3))
        self.service.manual_link("b", OccurrenceRef("gym", date(2024, 3, 1)))

        self.assertEqual(self.service.pending_review("a"), [])


class TestManualLinkAndUnmatch(MatchingServiceTestCase):

    def test_manual_link_replaces_auto(self):
        self.add_tx("t1", date(2024, 3, 2))
        self.service.auto_match("t1")

        record = self.service.manual_link("t1", OccurrenceRef("gym", date(2024, 4, 1)))

        self.assertEqual(record.method, MatchMethod.MANUAL)
        self.assertEqual(record.confidence, 100.0)
        self.assertEqual(self.store.get_match("t1").occurrence_ref.key, "gym@2024-04-01")
        self.assertEqual(len(self.store.list_matches()), 1)

    def test_manual_link_to_claimed_occurrence(self):
        self.add_tx("t1", date(2024, 3, 2))
        self.add_tx("t2", date(2024, 3, 3))
        self.service.auto_match("t1")

        with self.assertRaises(ConflictError):
            self.service.manual_link("t2", OccurrenceRef("gym", date(2024, 3, 1)))

    def test_manual_link_validation(self):
        self.add_tx("t1", date(2024, 3, 2))
        with self.assertRaises(ValidationError):
            self.service.manual_link("t1", OccurrenceRef("gym", date(2024, 3, 2)))
        with self.assertRaises(NotFoundError):
            self.service.manual_link("t1", OccurrenceRef("nope", date(2024, 3, 1)))
        with self.assertRaises(NotFoundError):
            self.service.manual_link("t1", OccurrenceRef(None, date(2024, 3, 1), planned_id="p9"))

        self.store.upsert_override(Override("gym", date(2024, 3, 1), status=OverrideStatus.SKIPPED))
        with self.assertRaises(ValidationError):
            self.service.manual_link("t1", OccurrenceRef("gym", date(2024, 3, 1)))

    def test_manual_link_to_other_owner(self):
        self.store.add_template(RecurrenceTemplate(
            id="gym-u2", owner_id="u2", name="Gym", period_kind=PeriodKind.MONTHLY,
            first_occurrence=date(2024, 1, 1), amount=-50.0, account_id="acc1",
        ))
        self.store.add_planned(PlannedTransaction(
            id="p2", owner_id="u2", name="Gym kit", expected_date=date(2024, 3, 2), amount=-50.0,
        ))
        self.add_tx("t1", date(2024, 3, 2))

        with self.assertRaises(NotFoundError):
            self.service.manual_link("t1", OccurrenceRef("gym-u2", date(2024, 3, 1)))
        with self.assertRaises(NotFoundError):
            self.service.manual_link("t1", OccurrenceRef(None, date(2024, 3, 2), planned_id="p2"))
        self.assertIsNone(self.store.get_match("t1"))

    def test_unmatch_keeps_transaction(self):
        self.add_tx("t1", date(2024, 3, 2))
        self.service.auto_match("t1")

        self.service.unmatch("t1")

        self.assertIsNone(self.store.get_match("t1"))
        self.assertIsNotNone(self.store.get_transaction("t1"))
        with self.assertRaises(NotFoundError):
            self.service.unmatch("t1")


class TestQueries(MatchingServiceTestCase):

    def test_history_and_unmatched(self):
        self.add_tx("t1", date(2024, 2, 1))
        self.add_tx("t2", date(2024, 3, 1))
        self.add_tx("t3", date(2024, 3, 20))
        self.add_tx("other", date(2024, 3, 1), owner_id="u2")
        for tx_id in ("t1", "t2", "t3"):
            self.service.auto_match(tx_id)

        history = self.service.match_history("u1")
        self.assertEqual({r.transaction_id for r in history}, {"t1", "t2"})
        self.assertEqual([t.id for t in self.service.unmatched_transactions("u1")], ["t3"])

        future = datetime.now() + timedelta(days=1)
        self.assertEqual(self.service.match_history("u1", start=future), [])


if __name__ == "__main__":
    unittest.main()
