from types import SimpleNamespace

from django.test import SimpleTestCase

from compliance_app.logic.advancement import evaluate, requirements_needed
from compliance_app.logic.progress import Progress, completion_percentage


def progress(completed, total, points=0):
    return Progress(
        total=total, completed=completed, in_progress=0, pending=total - completed,
        percentage=completion_percentage(completed, total),
        points_earned=points, points_total=100,
    )


def policy(next_tier="robust", pct=80, points=None):
    return SimpleNamespace(next_tier=next_tier, min_completion_percentage=pct, min_points=points)


class EvaluateTests(SimpleTestCase):
    def test_three_of_five_needs_one_more(self):
        d = evaluate(progress(3, 5), policy(), "basic")
        self.assertFalse(d.eligible)
        self.assertEqual(d.reason, "Complete 1 more requirement(s) to advance")
        self.assertEqual(d.next_tier, "robust")

    def test_four_of_five_is_eligible(self):
        d = evaluate(progress(4, 5), policy(), "basic")
        self.assertTrue(d.eligible)
        self.assertIsNone(d.reason)
        self.assertEqual(d.as_dict(), {"eligible": True, "next_tier": "robust"})

    def test_no_policy(self):
        d = evaluate(progress(5, 5), None, "basic")
        self.assertFalse(d.eligible)
        self.assertEqual(d.reason, "No advancement policy is configured for tier basic.")

    def test_highest_tier(self):
        d = evaluate(progress(5, 5), policy(next_tier=""), "robust")
        self.assertFalse(d.eligible)
        self.assertEqual(d.reason, "Tier robust is the highest tier.")

    def test_points_gap_and_both_gaps(self):
        d = evaluate(progress(4, 5, points=40), policy(points=50), "basic")
        self.assertEqual(d.reason, "Earn 10 more point(s) to advance")
        d = evaluate(progress(1, 5, points=40), policy(points=50), "basic")
        self.assertEqual(
            d.reason,
            "Complete 3 more requirement(s) to advance; Earn 10 more point(s) to advance",
        )

    def test_nothing_to_complete(self):
        d = evaluate(progress(0, 0), policy(), "basic")
        self.assertFalse(d.eligible)
        self.assertIn("no requirements", d.reason)

    def test_unset_thresholds_always_pass(self):
        self.assertTrue(evaluate(progress(0, 5), policy(pct=None), "basic").eligible)


class RequirementsNeededTests(SimpleTestCase):
    def test_smallest_number_of_approvals(self):
        self.assertEqual(requirements_needed(3, 5, 80), 1)
        self.assertEqual(requirements_needed(0, 8, 50), 4)
        self.assertEqual(requirements_needed(0, 3, 67), 2)   # 2/3 rounds to 67
        self.assertEqual(requirements_needed(4, 5, 80), 0)
        self.assertIsNone(requirements_needed(0, 0, 80))
