from datetime import timedelta
from unittest import mock

from django.db import DatabaseError
from django.db.models import ProtectedError
from django.test import override_settings
from django.utils import timezone

from core.errors import (
    AuthenticationRequired,
    ConflictingState,
    FeedbackRequired,
    NotFound,
    NotPermitted,
    StoreUnavailable,
    ValidationFailed,
    INSUFFICIENT_EVIDENCE,
    SCORE_BELOW_MINIMUM,
)
from compliance_app import events, services
from compliance_app.logic import workflow
from compliance_app.models import ComplianceActivity, ComplianceRecord, Submission
from compliance_app.report import PROGRESS_REPORT_JSON_SCHEMA, progress_report
from compliance_app.store import DjangoRecordStore
from profiles.models import InstructorProfile, TierChange

from .base import BaseSetup, PDF, mk_req, mk_user

Status = ComplianceRecord.Status


class EngineSetup(BaseSetup):
    def submit(self, req, payload=None, user=None):
        user = user or self.ivy
        return services.submit_requirement(user.id, req.id, payload or self.payload_for(req))

    def current_submission(self, record):
        return Submission.objects.get(record=record, sequence=record.submission_count)

    def approve(self, req, user=None):
        record = self.submit(req, user=user)
        return services.review_submission(self.current_submission(record).id, self.rita.id, "approve")


class ListApplicableTests(EngineSetup):
    def test_role_and_tier_filtering(self):
        codes = [r.code for r in services.list_applicable_requirements(self.ivy.id)]
        self.assertEqual(codes, ["bio", "cpr", "exam", "ethics", "conduct"])

    def test_unknown_or_missing_user(self):
        with self.assertRaises(AuthenticationRequired):
            services.list_applicable_requirements(None)
        with self.assertRaises(NotFound):
            services.list_applicable_requirements(self.rita.id)

    def test_overridden_requirement_disappears(self):
        services.override_not_applicable(self.ivy.id, self.conduct.id, self.admin.id, "exempt")
        codes = [r.code for r in services.list_applicable_requirements(self.ivy.id)]
        self.assertNotIn("conduct", codes)


class AssignRequirementsTests(EngineSetup):
    def test_creates_placeholders_once(self):
        self.assertEqual(services.assign_requirements(self.ivy.id), 5)
        records = ComplianceRecord.objects.filter(user=self.ivy)
        self.assertEqual(records.count(), 5)
        self.assertTrue(all(r.status == Status.PENDING and r.version == 1 for r in records))

        cpr = records.get(requirement=self.cpr)
        self.assertAlmostEqual(cpr.due_at, timezone.now() + timedelta(days=30), delta=timedelta(minutes=1))
        self.assertIsNone(records.get(requirement=self.bio).due_at)

        first_check = cpr.last_checked_at
        self.assertEqual(services.assign_requirements(self.ivy.id), 0)
        cpr.refresh_from_db()
        self.assertGreaterEqual(cpr.last_checked_at, first_check)

    @override_settings(COMPLIANCE={"DEFAULT_DUE_DAYS": 14})
    def test_default_due_days(self):
        services.assign_requirements(self.ivy.id)
        bio = ComplianceRecord.objects.get(user=self.ivy, requirement=self.bio)
        self.assertAlmostEqual(bio.due_at, timezone.now() + timedelta(days=14), delta=timedelta(minutes=1))

    def test_emits_assignment_event(self):
        with self.captureOnCommitCallbacks(execute=True):
            services.assign_requirements(self.ivy.id)
        activity = ComplianceActivity.objects.get(action=events.REQUIREMENTS_ASSIGNED)
        self.assertEqual(len(activity.metadata["requirement_ids"]), 5)


class SubmitTests(EngineSetup):
    def test_file_upload_round_trip(self):
        record = self.submit(self.cpr)
        self.assertEqual(record.status, Status.SUBMITTED)
        self.assertEqual(record.submission_data["files"][0]["reference"], PDF["reference"])
        self.assertEqual(record.submission_count, 1)

        record = services.review_submission(self.current_submission(record).id, self.rita.id, "approve", "ok")
        record.refresh_from_db()
        self.assertEqual(record.status, Status.APPROVED)
        self.assertEqual(record.reviewer, self.rita)
        self.assertEqual(record.review_notes, "ok")
        self.assertIsNotNone(record.reviewed_at)

    def test_rejected_then_resubmitted(self):
        first = self.submit(self.cpr)
        first_sub = self.current_submission(first)
        services.review_submission(first_sub.id, self.rita.id, "reject", "Wrong document")

        second = self.submit(self.cpr, {"files": [dict(PDF, reference="evidence/2")]})
        self.assertEqual(second.status, Status.SUBMITTED)
        self.assertEqual(second.review_notes, "")

        history = list(Submission.objects.filter(record=second).order_by("sequence"))
        self.assertEqual([s.sequence for s in history], [1, 2])
        self.assertEqual(history[0].decision, Submission.Decision.REJECTED)
        self.assertEqual(history[0].review_notes, "Wrong document")
        self.assertEqual(history[1].decision, "")

        # the old submission can no longer be decided
        with self.assertRaises(ConflictingState):
            services.review_submission(first_sub.id, self.rita.id, "approve")

    def test_invalid_payload_writes_nothing(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self.submit(self.cpr, {"files": []})
        self.assertEqual(ctx.exception.cause, INSUFFICIENT_EVIDENCE)
        self.assertFalse(ComplianceRecord.objects.exists())
        self.assertFalse(Submission.objects.exists())

    def test_minimum_score(self):
        with self.assertRaises(ValidationFailed) as ctx:
            self.submit(self.exam, {"score": 65})
        self.assertEqual(ctx.exception.cause, SCORE_BELOW_MINIMUM)

        record = self.submit(self.exam, {"score": 75})
        self.assertEqual(record.status, Status.SUBMITTED)
        self.assertEqual(record.submission_data["score"], 75)

    def test_cannot_submit_twice_while_under_review(self):
        self.submit(self.bio)
        with self.assertRaises(ConflictingState):
            self.submit(self.bio)
        self.assertEqual(Submission.objects.count(), 1)

    def test_cannot_submit_after_approval(self):
        self.approve(self.bio)
        with self.assertRaises(ConflictingState):
            self.submit(self.bio)

    def test_requirement_must_exist_and_apply(self):
        with self.assertRaises(NotFound):
            services.submit_requirement(self.ivy.id, 999999, {})
        with self.assertRaises(NotFound):
            self.submit(self.advanced, {"fields": {}})
        self.ethics.deactivate()
        with self.assertRaises(NotFound):
            self.submit(self.ethics)

    def test_submitting_uses_existing_placeholder(self):
        services.assign_requirements(self.ivy.id)
        record = self.submit(self.bio)
        self.assertEqual(ComplianceRecord.objects.filter(user=self.ivy, requirement=self.bio).count(), 1)
        self.assertEqual(record.version, 2)


class ReviewTests(EngineSetup):
    def test_reject_without_notes(self):
        record = self.submit(self.bio)
        with self.assertRaises(FeedbackRequired):
            services.review_submission(self.current_submission(record).id, self.rita.id, "reject", "  ")
        record.refresh_from_db()
        self.assertEqual(record.status, Status.SUBMITTED)

    def test_double_approval_is_idempotent(self):
        record = self.submit(self.bio)
        sub_id = self.current_submission(record).id
        with self.captureOnCommitCallbacks(execute=True):
            services.review_submission(sub_id, self.rita.id, "approve")
        record.refresh_from_db()
        version = record.version

        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            again = services.review_submission(sub_id, self.rita.id, "approve")
        self.assertEqual(len(callbacks), 0)
        self.assertEqual(again.status, Status.APPROVED)
        record.refresh_from_db()
        self.assertEqual(record.version, version)
        self.assertEqual(ComplianceActivity.objects.filter(action=events.REQUIREMENT_APPROVED).count(), 1)

    def test_unknown_submission_or_reviewer(self):
        with self.assertRaises(NotFound):
            services.review_submission(424242, self.rita.id, "approve")
        with self.assertRaises(NotFound):
            services.review_submission("abc", self.rita.id, "approve")
        record = self.submit(self.bio)
        with self.assertRaises(NotFound):
            services.review_submission(self.current_submission(record).id, 999999, "approve")
        with self.assertRaises(AuthenticationRequired):
            services.review_submission(self.current_submission(record).id, None, "approve")

    def test_concurrent_approve_and_reject(self):
        """Two reviewers working from the same snapshot: exactly one decision lands."""
        record = self.submit(self.bio)
        sub_id = self.current_submission(record).id
        store = DjangoRecordStore()
        now = timezone.now()

        # both load the submission (and its record) before either writes
        first = store.get_submission(sub_id)
        second = store.get_submission(sub_id)

        workflow.decide(first.record, first, "approve", self.rita.id, now=now)
        store.upsert(first.record.user_id, first.record.requirement_id, first.record, submission=first)

        workflow.decide(second.record, second, "reject", self.rita.id, "too late", now=now)
        with self.assertRaises(ConflictingState):
            store.upsert(second.record.user_id, second.record.requirement_id, second.record, submission=second)

        record.refresh_from_db()
        self.assertEqual(record.status, Status.APPROVED)
        self.assertEqual(Submission.objects.get(pk=sub_id).decision, Submission.Decision.APPROVED)

        # the loser retrying through the engine now sees the settled state
        with self.assertRaises(ConflictingState):
            services.review_submission(sub_id, self.rita.id, "reject", "too late")

    def test_events_are_recorded_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            record = self.submit(self.bio)
        with self.captureOnCommitCallbacks(execute=True):
            services.review_submission(self.current_submission(record).id, self.rita.id, "reject", "Add surname")

        actions = list(
            ComplianceActivity.objects.filter(user=self.ivy).order_by("id").values_list("action", "actor_id")
        )
        self.assertEqual(actions, [
            (events.REQUIREMENT_SUBMITTED, self.ivy.id),
            (events.REQUIREMENT_REJECTED, self.rita.id),
        ])

    def test_failing_receiver_does_not_break_the_workflow(self):
        def broken(sender, event, **kwargs):
            raise RuntimeError("mail server down")

        events.transition.connect(broken, dispatch_uid="test-broken")
        self.addCleanup(events.transition.disconnect, dispatch_uid="test-broken")

        with self.assertLogs("compliance_app.events", level="WARNING"):
            with self.captureOnCommitCallbacks(execute=True):
                record = self.submit(self.bio)
        self.assertEqual(record.status, Status.SUBMITTED)
        self.assertTrue(ComplianceActivity.objects.filter(action=events.REQUIREMENT_SUBMITTED).exists())


class OverrideTests(EngineSetup):
    def test_override_excludes_from_progress(self):
        self.approve(self.bio)
        record = services.override_not_applicable(self.ivy.id, self.conduct.id, self.admin.id, "Exempt")
        self.assertEqual(record.status, Status.NOT_APPLICABLE)
        self.assertEqual(record.override_reason, "Exempt")
        info = services.get_progress(self.ivy.id)
        self.assertEqual((info.requirements_count, info.completed_requirements), (4, 1))

    def test_only_staff_can_override(self):
        with self.assertRaises(NotPermitted) as ctx:
            services.override_not_applicable(self.ivy.id, self.conduct.id, self.rita.id)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertFalse(ComplianceRecord.objects.filter(status=Status.NOT_APPLICABLE).exists())
        with self.assertRaises(AuthenticationRequired):
            services.override_not_applicable(self.ivy.id, self.conduct.id, None)

    def test_not_applicable_records_cannot_be_submitted(self):
        services.override_not_applicable(self.ivy.id, self.bio.id, self.admin.id)
        with self.assertRaises(ConflictingState):
            self.submit(self.bio)


class ProgressTests(EngineSetup):
    def test_fresh_instructor(self):
        info = services.get_progress(self.ivy.id)
        self.assertEqual(info.tier, "basic")
        self.assertEqual(info.role, "IT")
        self.assertEqual((info.requirements_count, info.completed_requirements), (5, 0))
        self.assertEqual(info.pending_requirements, 5)
        self.assertEqual(info.completion_percentage, 0)
        self.assertEqual(info.points_total, 75)
        self.assertEqual(info.next_requirement.name, "Bio")
        self.assertFalse(info.can_advance_tier)
        # reading progress never writes
        self.assertFalse(ComplianceRecord.objects.exists())

    def test_mixed_progress(self):
        self.approve(self.bio)
        self.approve(self.cpr)
        self.submit(self.exam)
        info = services.get_progress(self.ivy.id)
        self.assertEqual(
            (info.completed_requirements, info.in_progress_requirements, info.pending_requirements),
            (2, 1, 2),
        )
        self.assertEqual(info.completion_percentage, 40)
        self.assertEqual((info.points_earned, info.points_total), (25, 75))
        self.assertEqual(info.next_requirement.name, "Ethics")

        data = info.as_dict()
        by_type = {row["requirement_type"]: row for row in data["by_type"]}
        self.assertEqual(by_type["certification"]["percentage"], 100)
        self.assertEqual(by_type["document"]["remaining"], 1)

    def test_next_requirement_prefers_due_date(self):
        services.assign_requirements(self.ivy.id)
        self.assertEqual(services.get_progress(self.ivy.id).next_requirement.name, "Cpr")

    def test_three_of_five_then_four_of_five(self):
        for req in (self.bio, self.cpr, self.exam):
            self.approve(req)
        decision = services.can_advance_tier(self.ivy.id)
        self.assertFalse(decision.eligible)
        self.assertEqual(decision.reason, "Complete 1 more requirement(s) to advance")

        self.approve(self.ethics)
        decision = services.can_advance_tier(self.ivy.id)
        self.assertTrue(decision.eligible)
        self.assertEqual(decision.next_tier, "robust")

    def test_points_threshold(self):
        self.policy.min_points = 100
        self.policy.save()
        for req in (self.bio, self.cpr, self.exam, self.ethics):
            self.approve(req)
        self.assertEqual(services.can_advance_tier(self.ivy.id).reason, "Earn 35 more point(s) to advance")

    def test_progress_for_highest_tier(self):
        robin = mk_user("robin", role="IC", tier="robust")
        decision = services.can_advance_tier(robin.id)
        self.assertFalse(decision.eligible)
        self.assertEqual(decision.reason, "Tier robust is the highest tier.")

    def test_report(self):
        self.approve(self.bio)
        report = progress_report(self.ivy.id)
        self.assertEqual(report["instructor"]["role"], "IT")
        self.assertEqual(report["summary"]["completed_requirements"], 1)
        self.assertEqual(report["summary"]["completion_percentage"], 20)
        self.assertEqual(report["advancement"]["next_tier"], "robust")
        self.assertEqual([r["requirement"] for r in report["records"]], ["bio"])
        self.assertEqual(report["records"][0]["status"], "approved")
        self.assertEqual(report["tier_history"], [])

    def test_report_has_every_required_schema_key(self):
        self.approve(self.bio)
        report = progress_report(self.ivy.id)
        schema = PROGRESS_REPORT_JSON_SCHEMA
        self.assertLessEqual(set(schema["required"]), set(report))
        for section in ("instructor", "summary"):
            self.assertLessEqual(set(schema["properties"][section]["required"]), set(report[section]))
        record_schema = schema["properties"]["records"]["items"]
        for row in report["records"]:
            self.assertLessEqual(set(record_schema["required"]), set(row))
            self.assertIn(row["status"], record_schema["properties"]["status"]["enum"])
        self.assertIn(report["instructor"]["tier"], schema["properties"]["instructor"]["properties"]["tier"]["enum"])


class ChangeTierTests(EngineSetup):
    def test_advancement_requires_eligibility(self):
        with self.assertRaises(ConflictingState) as ctx:
            services.change_tier(self.ivy.id, "robust", self.ivy.id)
        self.assertIn("more requirement(s)", ctx.exception.message)
        self.assertEqual(InstructorProfile.objects.get(user=self.ivy).tier, "basic")

    def test_eligible_instructor_advances(self):
        for req in (self.bio, self.cpr, self.exam, self.ethics):
            self.approve(req)
        with self.captureOnCommitCallbacks(execute=True):
            change = services.change_tier(self.ivy.id, "robust", self.ivy.id, "Ready")

        self.assertEqual((change.old_tier, change.new_tier, change.reason), ("basic", "robust", "Ready"))
        self.assertEqual(InstructorProfile.objects.get(user=self.ivy).tier, "robust")
        # the robust-only requirement is assigned; basic records stay for audit
        self.assertEqual(change.requirements_affected, 1)
        self.assertTrue(ComplianceRecord.objects.filter(user=self.ivy, requirement=self.advanced).exists())
        self.assertEqual(ComplianceRecord.objects.filter(user=self.ivy, status=Status.APPROVED).count(), 4)
        self.assertTrue(ComplianceActivity.objects.filter(action=events.TIER_CHANGED).exists())
        self.assertEqual(progress_report(self.ivy.id)["tier_history"][0]["new_tier"], "robust")

    def test_admin_can_move_outside_the_path(self):
        robin = mk_user("robin", role="IP", tier="robust")
        change = services.change_tier(robin.id, "basic", self.admin.id, "Lapsed certification")
        self.assertEqual(change.changed_by, self.admin)
        self.assertEqual(TierChange.objects.filter(user=robin).count(), 1)

        with self.assertRaises(ConflictingState):
            services.change_tier(robin.id, "robust", robin.id)

    def test_instructors_cannot_step_outside_the_path(self):
        robin = mk_user("robin", role="IP", tier="robust")
        with self.assertRaises(NotPermitted):
            services.change_tier(robin.id, "basic", robin.id)
        self.assertEqual(InstructorProfile.objects.get(user=robin).tier, "robust")
        self.assertFalse(TierChange.objects.filter(user=robin).exists())

    def test_guards(self):
        with self.assertRaises(ConflictingState):
            services.change_tier(self.ivy.id, "basic", self.admin.id)
        with self.assertRaises(ValidationFailed):
            services.change_tier(self.ivy.id, "platinum", self.admin.id)
        with self.assertRaises(AuthenticationRequired):
            services.change_tier(self.ivy.id, "robust", None)

        carl = mk_user("carl", role="IC", tier="robust")
        with self.assertRaises(ConflictingState):
            services.change_tier(carl.id, "basic", self.admin.id)


class StoreFailureTests(EngineSetup):
    def test_database_errors_surface_as_store_unavailable(self):
        with mock.patch.object(ComplianceRecord.objects, "select_related", side_effect=DatabaseError("gone")):
            with self.assertRaises(StoreUnavailable) as ctx:
                services.get_progress(self.ivy.id)
        self.assertIsInstance(ctx.exception.__cause__, DatabaseError)

    def test_upsert_rejects_mismatched_key(self):
        record = ComplianceRecord(user=self.ivy, requirement=self.bio)
        with self.assertRaises(ValueError):
            DjangoRecordStore().upsert(self.ivy.id, self.cpr.id, record)

    def test_stale_write_is_refused(self):
        services.assign_requirements(self.ivy.id)
        store = DjangoRecordStore()
        stale = store.get(self.ivy.id, self.bio.id)
        self.submit(self.bio)
        stale.review_notes = "overwrite"
        with self.assertRaises(ConflictingState):
            store.upsert(self.ivy.id, self.bio.id, stale)
        self.assertEqual(ComplianceRecord.objects.get(user=self.ivy, requirement=self.bio).review_notes, "")


class EligibilityAcrossRolesTests(EngineSetup):
    def test_each_role_sees_its_own_catalog(self):
        peter = mk_user("peter", role="IP", tier="basic")
        paula = mk_user("paula", role="IP", tier="robust")
        mk_req("provider-agreement", roles=["AP"], tiers=[])
        alice = mk_user("alice", role="AP", tier="basic")

        self.assertEqual([r.code for r in services.list_applicable_requirements(peter.id)], ["ip-only"])
        self.assertEqual(
            [r.code for r in services.list_applicable_requirements(paula.id)], ["advanced", "ip-only"]
        )
        self.assertEqual(
            [r.code for r in services.list_applicable_requirements(alice.id)], ["provider-agreement"]
        )


class RetentionTests(EngineSetup):
    def test_users_with_compliance_history_cannot_be_deleted(self):
        with self.captureOnCommitCallbacks(execute=True):
            record = self.submit(self.bio)
        with self.assertRaises(ProtectedError):
            self.ivy.delete()
        with self.assertRaises(ProtectedError):
            record.delete()
        self.assertEqual(ComplianceRecord.objects.filter(user=self.ivy).count(), 1)
        self.assertEqual(Submission.objects.filter(record__user=self.ivy).count(), 1)
        self.assertTrue(ComplianceActivity.objects.filter(user=self.ivy).exists())
