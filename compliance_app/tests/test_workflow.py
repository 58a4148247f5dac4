from django.test import SimpleTestCase
from django.utils import timezone

from core.errors import (
    AuthenticationRequired,
    ConflictingState,
    FeedbackRequired,
    ValidationFailed,
    INVALID_DECISION,
)
from catalog.models import RequirementDefinition
from compliance_app.logic import workflow
from compliance_app.models import ComplianceRecord, Submission

Status = ComplianceRecord.Status


def mk_record(status=Status.PENDING, submission_count=0):
    req = RequirementDefinition(pk=1, code="cpr", name="CPR", kind="file_upload")
    return ComplianceRecord(user_id=7, requirement=req, status=status, submission_count=submission_count)


class TransitionTableTests(SimpleTestCase):
    def test_no_shortcut_to_approved(self):
        self.assertFalse(workflow.can_transition(Status.PENDING, Status.APPROVED))
        self.assertFalse(workflow.can_transition(Status.REJECTED, Status.APPROVED))
        self.assertTrue(workflow.can_transition(Status.SUBMITTED, Status.APPROVED))

    def test_not_applicable_is_terminal(self):
        for target in (Status.PENDING, Status.SUBMITTED, Status.APPROVED, Status.REJECTED):
            self.assertFalse(workflow.can_transition(Status.NOT_APPLICABLE, target))


class SubmitTests(SimpleTestCase):
    def setUp(self):
        self.now = timezone.now()

    def test_pending_to_submitted(self):
        rec = mk_record()
        sub = workflow.submit(rec, {"kind": "file_upload"}, submitted_by=7, now=self.now)
        self.assertEqual(rec.status, Status.SUBMITTED)
        self.assertEqual(rec.submission_count, 1)
        self.assertEqual(rec.submitted_at, self.now)
        self.assertEqual(sub.sequence, 1)
        self.assertEqual(sub.submitted_by_id, 7)

    def test_resubmission_clears_previous_review(self):
        rec = mk_record(Status.REJECTED, submission_count=1)
        rec.reviewer_id, rec.review_notes, rec.reviewed_at = 3, "blurry scan", self.now
        sub = workflow.submit(rec, {"kind": "file_upload"}, submitted_by=7, now=self.now)
        self.assertEqual(sub.sequence, 2)
        self.assertEqual(rec.status, Status.SUBMITTED)
        self.assertIsNone(rec.reviewer_id)
        self.assertEqual(rec.review_notes, "")
        self.assertIsNone(rec.reviewed_at)

    def test_cannot_submit_from_other_states(self):
        for status in (Status.SUBMITTED, Status.APPROVED, Status.NOT_APPLICABLE):
            with self.subTest(status=status):
                rec = mk_record(status, submission_count=1)
                with self.assertRaises(ConflictingState):
                    workflow.submit(rec, {}, submitted_by=7, now=self.now)
                self.assertEqual(rec.submission_count, 1)

    def test_submit_needs_a_user(self):
        with self.assertRaises(AuthenticationRequired):
            workflow.submit(mk_record(), {}, submitted_by=None, now=self.now)


class DecideTests(SimpleTestCase):
    def setUp(self):
        self.now = timezone.now()
        self.rec = mk_record()
        self.sub = workflow.submit(self.rec, {"kind": "form"}, submitted_by=7, now=self.now)

    def test_approve(self):
        self.assertTrue(workflow.decide(self.rec, self.sub, "approve", 3, "", now=self.now))
        self.assertEqual(self.rec.status, Status.APPROVED)
        self.assertEqual(self.rec.reviewer_id, 3)
        self.assertEqual(self.sub.decision, Submission.Decision.APPROVED)
        self.assertEqual(self.sub.decided_at, self.now)

    def test_reject_keeps_feedback(self):
        workflow.decide(self.rec, self.sub, " REJECT ", 3, " Scan is unreadable ", now=self.now)
        self.assertEqual(self.rec.status, Status.REJECTED)
        self.assertEqual(self.rec.review_notes, "Scan is unreadable")
        self.assertEqual(self.sub.decision, Submission.Decision.REJECTED)

    def test_reject_without_notes_needs_feedback(self):
        for notes in ("", "   ", None):
            with self.subTest(notes=notes):
                with self.assertRaises(FeedbackRequired):
                    workflow.decide(self.rec, self.sub, "reject", 3, notes, now=self.now)
        self.assertEqual(self.rec.status, Status.SUBMITTED)

    def test_feedback_is_checked_before_state(self):
        rec = mk_record(Status.APPROVED, submission_count=1)
        sub = Submission(record=rec, sequence=1)
        with self.assertRaises(FeedbackRequired):
            workflow.decide(rec, sub, "reject", 3, "", now=self.now)

    def test_unknown_decision(self):
        with self.assertRaises(ValidationFailed) as ctx:
            workflow.decide(self.rec, self.sub, "maybe", 3, "", now=self.now)
        self.assertEqual(ctx.exception.cause, INVALID_DECISION)

    def test_reviewer_required(self):
        with self.assertRaises(AuthenticationRequired):
            workflow.decide(self.rec, self.sub, "approve", None, now=self.now)

    def test_second_approval_is_a_no_op(self):
        workflow.decide(self.rec, self.sub, "approve", 3, now=self.now)
        later = timezone.now()
        self.assertFalse(workflow.decide(self.rec, self.sub, "approve", 4, now=later))
        self.assertEqual(self.rec.reviewer_id, 3)
        self.assertEqual(self.rec.reviewed_at, self.now)

    def test_rejecting_an_approved_record_conflicts(self):
        workflow.decide(self.rec, self.sub, "approve", 3, now=self.now)
        with self.assertRaises(ConflictingState):
            workflow.decide(self.rec, self.sub, "reject", 4, "changed my mind", now=self.now)

    def test_superseded_submission_conflicts(self):
        workflow.decide(self.rec, self.sub, "reject", 3, "redo", now=self.now)
        newer = workflow.submit(self.rec, {"kind": "form"}, submitted_by=7, now=self.now)
        with self.assertRaises(ConflictingState):
            workflow.decide(self.rec, self.sub, "approve", 3, now=self.now)
        self.assertTrue(workflow.decide(self.rec, newer, "approve", 3, now=self.now))

    def test_pending_record_cannot_be_reviewed(self):
        rec = mk_record(Status.PENDING, submission_count=1)
        with self.assertRaises(ConflictingState):
            workflow.decide(rec, Submission(record=rec, sequence=1), "approve", 3, now=self.now)


class NotApplicableTests(SimpleTestCase):
    def test_override_from_any_live_state(self):
        now = timezone.now()
        for status in (Status.PENDING, Status.SUBMITTED, Status.REJECTED, Status.APPROVED):
            with self.subTest(status=status):
                rec = mk_record(status)
                self.assertTrue(workflow.mark_not_applicable(rec, 1, " left the programme ", now=now))
                self.assertEqual(rec.status, Status.NOT_APPLICABLE)
                self.assertEqual(rec.override_reason, "left the programme")

    def test_repeat_override_is_a_no_op(self):
        rec = mk_record(Status.NOT_APPLICABLE)
        self.assertFalse(workflow.mark_not_applicable(rec, 1, now=timezone.now()))
