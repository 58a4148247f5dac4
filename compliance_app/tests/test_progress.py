from datetime import timedelta

from django.test import SimpleTestCase
from django.utils import timezone

from catalog.models import RequirementDefinition
from compliance_app.logic.progress import aggregate, completion_percentage
from compliance_app.models import ComplianceRecord

Status = ComplianceRecord.Status


def req(pk, rtype="document", points=10, order=0):
    return RequirementDefinition(
        pk=pk, code=f"r{pk}", name=f"Requirement {pk}", kind="form",
        requirement_type=rtype, points_value=points, display_order=order,
    )


def rec(requirement, status, due_at=None):
    return ComplianceRecord(user_id=1, requirement=requirement, status=status, due_at=due_at)


class CompletionPercentageTests(SimpleTestCase):
    def test_zero_total_is_zero(self):
        self.assertEqual(completion_percentage(0, 0), 0)
        self.assertEqual(completion_percentage(3, 0), 0)

    def test_bounds(self):
        for total in range(1, 13):
            for completed in range(0, total + 1):
                pct = completion_percentage(completed, total)
                self.assertGreaterEqual(pct, 0)
                self.assertLessEqual(pct, 100)
        self.assertEqual(completion_percentage(5, 5), 100)

    def test_halves_round_up(self):
        self.assertEqual(completion_percentage(1, 8), 13)   # 12.5
        self.assertEqual(completion_percentage(1, 3), 33)
        self.assertEqual(completion_percentage(2, 3), 67)
        self.assertEqual(completion_percentage(3, 5), 60)


class AggregateTests(SimpleTestCase):
    def test_empty(self):
        p = aggregate([])
        self.assertEqual((p.total, p.percentage, p.points_total), (0, 0, 0))
        self.assertIsNone(p.next_requirement)

    def test_counts_points_and_types(self):
        a, b, c, d, e = (
            req(1, "document", 5), req(2, "certification", 20), req(3, "assessment", 30),
            req(4, "training", 10), req(5, "document", 10),
        )
        p = aggregate([
            (a, rec(a, Status.APPROVED)),
            (b, rec(b, Status.SUBMITTED)),
            (c, rec(c, Status.REJECTED)),
            (d, None),
            (e, rec(e, Status.APPROVED)),
        ])
        self.assertEqual((p.total, p.completed, p.in_progress, p.pending), (5, 2, 1, 2))
        self.assertEqual(p.percentage, 40)
        self.assertEqual((p.points_earned, p.points_total), (15, 75))
        self.assertLessEqual(p.points_earned, p.points_total)

        docs = {t.requirement_type: t for t in p.by_type}["document"]
        self.assertEqual((docs.total, docs.completed, docs.remaining, docs.percentage), (2, 2, 0, 100))
        self.assertEqual([t.requirement_type for t in p.by_type],
                         ["assessment", "certification", "document", "training"])

    def test_not_applicable_items_are_skipped(self):
        a, b = req(1), req(2)
        p = aggregate([(a, rec(a, Status.APPROVED)), (b, rec(b, Status.NOT_APPLICABLE))])
        self.assertEqual((p.total, p.percentage), (1, 100))

    def test_next_requirement_prefers_earliest_due_date(self):
        now = timezone.now()
        a, b, c, d = req(1, order=1), req(2, order=2), req(3, order=3), req(4, order=0)
        p = aggregate([
            (a, rec(a, Status.PENDING)),
            (b, rec(b, Status.REJECTED, due_at=now + timedelta(days=10))),
            (c, rec(c, Status.PENDING, due_at=now + timedelta(days=2))),
            (d, rec(d, Status.APPROVED)),
        ])
        self.assertEqual(p.next_requirement.id, 3)
        self.assertEqual(p.next_requirement.due_at, now + timedelta(days=2))

    def test_next_requirement_falls_back_to_catalog_order(self):
        a, b = req(1, order=5), req(2, order=1)
        p = aggregate([(a, None), (b, None)])
        self.assertEqual(p.next_requirement.id, 2)
